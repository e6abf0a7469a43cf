"""
Set Node - assign fields on every item.
"""

import logging
from typing import Any, Dict

from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import register_node

logger = logging.getLogger(__name__)


def set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path ("a.b.c"), creating intermediate dicts."""
    parts = path.split(".")
    target = data
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


@register_node(
    "set",
    display_name="Set",
    description="Set field values on each item",
)
class SetNode(NodeHandler):
    """
    Assign values to item fields.

    Parameters:
        values: Mapping of dotted field path to value
        keep_only_set: Drop all other fields (default False)

    With no input items a single item holding only the assigned values is
    produced.
    """

    async def execute(self, input_data: NodeExecutionInput):
        values: Dict[str, Any] = input_data.parameters.get("values", {}) or {}
        keep_only_set = bool(input_data.parameters.get("keep_only_set", False))

        items = input_data.items(0) or [{"json": {}}]

        output = []
        for item in items:
            data = {} if keep_only_set else dict(item.get("json", {}))
            for path, value in values.items():
                set_path(data, path, value)
            new_item = {"json": data}
            if "binary" in item and not keep_only_set:
                new_item["binary"] = item["binary"]
            output.append(new_item)

        logger.debug(f"Set node {self.node_id}: assigned {len(values)} field(s) on {len(output)} item(s)")
        return output
