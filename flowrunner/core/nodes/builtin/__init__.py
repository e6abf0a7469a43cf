"""
Built-in nodes.

Importing this package registers every builtin handler with the default
node registry.
"""

from flowrunner.core.nodes.builtin.control.if_node import IfNode
from flowrunner.core.nodes.builtin.control.merge import MergeNode
from flowrunner.core.nodes.builtin.control.no_op import NoOpNode
from flowrunner.core.nodes.builtin.control.wait import WaitNode
from flowrunner.core.nodes.builtin.data.set_node import SetNode
from flowrunner.core.nodes.builtin.triggers.manual_trigger import ManualTriggerNode

__all__ = [
    "IfNode",
    "ManualTriggerNode",
    "MergeNode",
    "NoOpNode",
    "SetNode",
    "WaitNode",
]
