"""
Node Handler Base Class

Abstract interface that all node handlers implement. Handlers are registered
by type name (see registry.py) and instantiated once per node execution.

Example:
    from flowrunner.core.nodes.base import NodeHandler, NodeExecutionInput
    from flowrunner.core.nodes.registry import register_node

    @register_node("uppercase", description="Upper-case a field")
    class UppercaseNode(NodeHandler):
        async def execute(self, input_data: NodeExecutionInput):
            field = input_data.parameters.get("field", "text")
            items = []
            for item in input_data.items():
                data = dict(item["json"])
                data[field] = str(data.get(field, "")).upper()
                items.append({"json": data})
            return items
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from flowrunner.schemas.execution import ItemCollection
from flowrunner.schemas.workflow import NodeConfiguration

if TYPE_CHECKING:
    from flowrunner.core.capabilities import BinaryStore
    from flowrunner.core.execution.cancellation import CancellationToken


@dataclass
class NodeExecutionInput:
    """
    Input data for node execution.

    Contains the item collections per input port plus metadata about the
    execution.
    """
    # Item collections, one per input port
    inputs: List[ItemCollection]

    # Execution metadata (framework-provided)
    workflow_id: str
    execution_id: str
    node_id: str

    # Node parameters
    parameters: Dict[str, Any] = field(default_factory=dict)

    # Credentials (injected by executor, decrypted)
    credentials: Optional[Dict[str, Any]] = None

    # 1-based attempt number
    attempt: int = 1

    binary_store: Optional["BinaryStore"] = None
    cancel_token: Optional["CancellationToken"] = None

    def items(self, port: int = 0) -> ItemCollection:
        """Items arriving on an input port."""
        if port >= len(self.inputs):
            return []
        return self.inputs[port]

    def checkpoint(self) -> None:
        """Raise CancellationError if the execution (or node deadline) was canceled."""
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

    def get_binary(self, item: Dict[str, Any], name: str = "data") -> bytes:
        """Load the binary payload referenced by an item."""
        if self.binary_store is None:
            raise RuntimeError("No binary store configured")
        reference = item.get("binary", {})[name]["reference"]
        return self.binary_store.get(reference)


class NodeHandler(ABC):
    """
    Abstract base class for node handlers.

    Subclasses implement execute() and may override the declared port counts.
    execute() returns any shape normalize_output() accepts: None, one item, a
    list of items (first output port) or a list of item lists (one per port).
    """

    input_count: int = 1
    output_count: int = 1

    def __init__(self, node: NodeConfiguration):
        self.node = node
        self.node_id = node.node_id
        self.parameters = node.parameters

    @abstractmethod
    async def execute(self, input_data: NodeExecutionInput) -> Any:
        """Run the node logic."""

    @classmethod
    def declared_inputs(cls, node: NodeConfiguration) -> int:
        return node.inputs if node.inputs is not None else cls.input_count

    @classmethod
    def declared_outputs(cls, node: NodeConfiguration) -> int:
        return node.outputs if node.outputs is not None else cls.output_count
