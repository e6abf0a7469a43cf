"""
Merge Node - combine two input branches.

Runs as soon as it has been resolved by both upstream branches, even when
one of them produced nothing (e.g. the branch not taken by an IF node).
"""

import logging

from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import register_node

logger = logging.getLogger(__name__)


@register_node(
    "merge",
    display_name="Merge",
    description="Combine items from two inputs",
)
class MergeNode(NodeHandler):
    """
    Merge items from input 1 and input 2.

    Modes:
        append (default): input 1 items followed by input 2 items
        merge_by_index: pair items by position and merge their json
            (input 2 wins on key conflicts); unpaired items are kept
        pass_through: emit only the input selected by the "output" parameter
            (1 or 2)
    """

    input_count = 2

    async def execute(self, input_data: NodeExecutionInput):
        mode = input_data.parameters.get("mode", "append")
        first = input_data.items(0)
        second = input_data.items(1)

        logger.debug(f"Merge node {self.node_id} ({mode}): {len(first)} + {len(second)} item(s)")

        if mode == "append":
            return first + second

        if mode == "merge_by_index":
            merged = []
            for index in range(max(len(first), len(second))):
                if index < len(first) and index < len(second):
                    data = dict(first[index].get("json", {}))
                    data.update(second[index].get("json", {}))
                    merged.append({"json": data})
                elif index < len(first):
                    merged.append(first[index])
                else:
                    merged.append(second[index])
            return merged

        if mode == "pass_through":
            output = int(input_data.parameters.get("output", 1))
            if output not in (1, 2):
                raise ValueError(f"pass_through output must be 1 or 2, got {output}")
            return first if output == 1 else second

        raise ValueError(f"Unsupported merge mode: {mode}")
