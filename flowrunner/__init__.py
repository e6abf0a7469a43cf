"""
flowrunner

Workflow execution engine: validates node graphs, schedules nodes in dependency
order, records per-node run data and persists replayable execution records.
"""

__version__ = "1.0.0"
