"""
Manual Trigger Node - entry point for manually started executions.
"""

import logging

from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import register_node

logger = logging.getLogger(__name__)


@register_node(
    "manual_trigger",
    display_name="Manual Trigger",
    description="Starts the workflow with the initial input items",
)
class ManualTriggerNode(NodeHandler):
    """
    Emits the initial input of the execution.

    Root nodes receive the initial input on port 0. When the execution was
    started without input, a single empty item is emitted so downstream nodes
    still run once.
    """

    input_count = 0

    async def execute(self, input_data: NodeExecutionInput):
        items = input_data.items(0)
        if not items:
            logger.debug(f"Manual trigger {self.node_id}: no initial input, emitting empty item")
            return [{"json": {}}]
        return items
