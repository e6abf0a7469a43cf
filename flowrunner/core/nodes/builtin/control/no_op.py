from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import register_node


@register_node("no_op", display_name="No Operation", description="Pass items through unchanged")
class NoOpNode(NodeHandler):

    async def execute(self, input_data: NodeExecutionInput):
        return input_data.items(0)
