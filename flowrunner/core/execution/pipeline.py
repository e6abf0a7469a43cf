"""
Data Pipeline

Moves item collections along connections: assembles a node's per-port inputs
from upstream results and normalizes whatever a handler returns into one
item collection per output port.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Union

from flowrunner.core.capabilities import BinaryStore
from flowrunner.core.errors import NodeOutputError
from flowrunner.core.execution.graph.types import ValidatedGraph
from flowrunner.schemas.execution import Item, ItemCollection, PinData, RunData

logger = logging.getLogger(__name__)


class _NotReady:
    """Sentinel: an upstream node has no usable result yet."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_READY"


NOT_READY = _NotReady()

ITEM_KEYS = frozenset({"json", "binary"})


def upstream_output(
    source_node_id: str,
    source_port: int,
    graph: ValidatedGraph,
    run_data: RunData,
    pin_data: Optional[PinData],
) -> Union[ItemCollection, _NotReady]:
    """Items a single upstream port produced, or NOT_READY."""
    if pin_data and source_node_id in pin_data:
        return pin_data[source_node_id] if source_port == 0 else []

    if graph.is_disabled(source_node_id):
        return []

    tasks = run_data.get(source_node_id)
    if not tasks or not tasks[-1].usable:
        return NOT_READY
    return tasks[-1].output(source_port)


def assemble_inputs(
    node_id: str,
    graph: ValidatedGraph,
    run_data: RunData,
    pin_data: Optional[PinData] = None,
) -> Union[List[ItemCollection], _NotReady]:
    """
    Assemble input data for a node from its connections.

    Collections arriving on the same input port are concatenated in
    connection-declaration order. Items are deep-copied so a handler mutating
    its input cannot corrupt recorded run data.

    Args:
        node_id: Target node ID
        graph: Validated graph with connection info
        run_data: Results recorded so far
        pin_data: Pinned outputs (take precedence over run data)

    Returns:
        One item collection per input port, or NOT_READY if any upstream
        node has no usable result
    """
    inputs: List[ItemCollection] = []

    for port in range(graph.input_ports_of(node_id)):
        collection: ItemCollection = []
        for conn in graph.input_connections(node_id, port):
            items = upstream_output(conn.source_node_id, conn.source_port, graph, run_data, pin_data)
            if items is NOT_READY:
                logger.debug(f"Node {node_id} not ready: waiting on {conn.source_node_id}")
                return NOT_READY
            collection.extend(items)
        inputs.append(copy.deepcopy(collection))

    return inputs


def has_input(inputs_by_port: List[ItemCollection]) -> bool:
    return any(inputs_by_port)


def normalize_output(
    raw: Any,
    port_count: int,
    binary_store: Optional[BinaryStore] = None,
) -> List[ItemCollection]:
    """
    Normalize a handler's return value into one item collection per port.

    Accepted shapes:
    - None: every port empty
    - a dict: one item on port 0
    - a list of dicts: items on port 0
    - a list of lists: one collection per port (may be shorter than port_count)

    Bare dicts are wrapped as {"json": ...}. Raw bytes found under an item's
    "binary" key are stored in the binary store and replaced by references.

    Raises:
        NodeOutputError: The value cannot be interpreted as items
    """
    outputs: List[ItemCollection] = [[] for _ in range(max(port_count, 1))]

    if raw is None:
        return outputs

    if isinstance(raw, dict):
        outputs[0] = [_to_item(raw, binary_store)]
        return outputs

    if not isinstance(raw, (list, tuple)):
        raise NodeOutputError(f"Node output must be a dict or list, got {type(raw).__name__}")

    if not raw:
        return outputs

    if all(isinstance(entry, (list, tuple)) for entry in raw):
        if len(raw) > len(outputs):
            raise NodeOutputError(
                f"Node returned {len(raw)} output collections but declares {port_count} port(s)"
            )
        for port, collection in enumerate(raw):
            outputs[port] = [_to_item(entry, binary_store, index) for index, entry in enumerate(collection)]
        return outputs

    if all(isinstance(entry, dict) for entry in raw):
        outputs[0] = [_to_item(entry, binary_store, index) for index, entry in enumerate(raw)]
        return outputs

    raise NodeOutputError("Node output mixes items and item collections")


def _to_item(entry: Any, binary_store: Optional[BinaryStore], index: Optional[int] = None) -> Item:
    if not isinstance(entry, dict):
        error = NodeOutputError(f"Output item must be a dict, got {type(entry).__name__}")
        error.item_index = index
        raise error

    if isinstance(entry.get("json"), dict) and set(entry.keys()) <= ITEM_KEYS:
        item: Item = {"json": entry["json"]}
        if entry.get("binary"):
            item["binary"] = _store_binary(entry["binary"], binary_store, index)
        return item

    return {"json": entry}


def _store_binary(
    binary: Dict[str, Any],
    binary_store: Optional[BinaryStore],
    index: Optional[int],
) -> Dict[str, Any]:
    """Replace raw payloads with BinaryStore references."""
    stored: Dict[str, Any] = {}
    for name, value in binary.items():
        mime_type = None
        data = value
        if isinstance(value, dict):
            if "data" not in value:
                # Already a reference
                stored[name] = value
                continue
            data = value["data"]
            mime_type = value.get("mime_type")

        if not isinstance(data, (bytes, bytearray)):
            error = NodeOutputError(f"Binary property '{name}' must be bytes")
            error.item_index = index
            raise error
        if binary_store is None:
            raise NodeOutputError("Node produced binary data but no binary store is configured")

        reference = binary_store.put(bytes(data), mime_type=mime_type)
        stored[name] = {"reference": reference, "mime_type": mime_type, "size": len(data)}
    return stored
