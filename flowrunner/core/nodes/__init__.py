"""
Node handlers and registry.
"""

from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import (
    NodeRegistry,
    get_node_registry,
    node_registry,
    register_node,
)

__all__ = [
    "NodeExecutionInput",
    "NodeHandler",
    "NodeRegistry",
    "get_node_registry",
    "node_registry",
    "register_node",
]
