"""
IF Node - route items to a true or false branch.

Output port 0 receives items matching the conditions, port 1 the rest. A
branch with no items is left empty, so nodes fed only by it are skipped.
"""

import logging
from typing import Any, Callable, Dict, List

from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import register_node

logger = logging.getLogger(__name__)

_MISSING = object()


def get_path(data: Dict[str, Any], path: str) -> Any:
    """Read a dotted path, returning a sentinel when absent."""
    current: Any = data
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _is_empty(value: Any) -> bool:
    return value is _MISSING or value is None or value == "" or value == [] or value == {}


OPERATIONS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda actual, expected: actual == expected,
    "not_equals": lambda actual, expected: actual != expected,
    "greater_than": lambda actual, expected: actual is not _MISSING and actual > expected,
    "less_than": lambda actual, expected: actual is not _MISSING and actual < expected,
    "contains": lambda actual, expected: actual is not _MISSING and expected in actual,
    "is_empty": lambda actual, _: _is_empty(actual),
    "is_not_empty": lambda actual, _: not _is_empty(actual),
    "is_true": lambda actual, _: actual is True,
    "is_false": lambda actual, _: actual is False,
}


@register_node(
    "if",
    display_name="IF",
    description="Route items to true/false outputs based on conditions",
)
class IfNode(NodeHandler):
    """
    Conditional routing.

    Parameters:
        conditions: List of {"field", "operation", "value"}
        combine: "all" (default) or "any"

    A condition on a field the item does not have evaluates with the field
    missing (so "is_empty" matches and comparisons fail).
    """

    output_count = 2

    def _matches(self, item: Dict[str, Any], conditions: List[Dict[str, Any]], combine: str) -> bool:
        results = []
        for condition in conditions:
            operation = condition.get("operation", "equals")
            check = OPERATIONS.get(operation)
            if check is None:
                raise ValueError(f"Unsupported operation: {operation}")
            actual = get_path(item.get("json", {}), condition["field"])
            try:
                results.append(bool(check(actual, condition.get("value"))))
            except TypeError:
                results.append(False)

        if not results:
            return True
        return any(results) if combine == "any" else all(results)

    async def execute(self, input_data: NodeExecutionInput):
        conditions = input_data.parameters.get("conditions", []) or []
        combine = input_data.parameters.get("combine", "all")

        true_items = []
        false_items = []
        for item in input_data.items(0):
            if self._matches(item, conditions, combine):
                true_items.append(item)
            else:
                false_items.append(item)

        logger.debug(f"IF node {self.node_id}: {len(true_items)} true, {len(false_items)} false")
        return [true_items, false_items]
