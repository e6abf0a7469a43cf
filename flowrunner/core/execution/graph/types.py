"""
Execution Graph Types

Data structures for representing a validated workflow graph and the
per-node state the scheduler tracks while running it.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from flowrunner.schemas.workflow import Connection, NodeConfiguration


class NodeExecutionPhase(str, Enum):
    """Node execution lifecycle phases"""
    WAITING = "waiting"          # Upstream nodes not yet resolved
    RUNNABLE = "runnable"        # In the ready queue
    RUNNING = "running"          # Handler in flight
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"          # Disabled, or no input arrived (branch not taken)
    STOPPED = "stopped"          # Canceled while running


RESOLVED_PHASES = frozenset({
    NodeExecutionPhase.SUCCEEDED,
    NodeExecutionPhase.FAILED,
    NodeExecutionPhase.SKIPPED,
})


@dataclass
class NodeState:
    """
    Mutable scheduling state for a single node within one execution.

    remaining_deps counts distinct upstream nodes that have not resolved yet;
    the node becomes runnable when it reaches zero.
    """
    node_id: str
    remaining_deps: int = 0
    phase: NodeExecutionPhase = NodeExecutionPhase.WAITING

    def is_ready(self) -> bool:
        return self.remaining_deps == 0 and self.phase == NodeExecutionPhase.WAITING

    def mark_dependency_resolved(self) -> None:
        if self.remaining_deps > 0:
            self.remaining_deps -= 1

    @property
    def is_resolved(self) -> bool:
        return self.phase in RESOLVED_PHASES


@dataclass
class ValidatedGraph:
    """
    Read-only, validated view of a workflow.

    Built by GraphBuilder; safe to share between concurrent readers. Node
    iteration follows declaration order and connection lists follow
    connection-declaration order.
    """
    workflow_id: str
    nodes: Dict[str, NodeConfiguration]
    connections: List[Connection]

    # Port counts per node (outputs include the error port when declared)
    input_counts: Dict[str, int] = field(default_factory=dict)
    output_counts: Dict[str, int] = field(default_factory=dict)

    # Adjacency (built in __post_init__)
    _incoming: Dict[str, List[Connection]] = field(default_factory=dict, init=False, repr=False)
    _outgoing: Dict[str, List[Connection]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._incoming = {node_id: [] for node_id in self.nodes}
        self._outgoing = {node_id: [] for node_id in self.nodes}
        for conn in self.connections:
            self._outgoing[conn.source_node_id].append(conn)
            self._incoming[conn.target_node_id].append(conn)

    def __len__(self) -> int:
        return len(self.nodes)

    def get_node(self, node_id: str) -> NodeConfiguration:
        return self.nodes[node_id]

    def node_ids(self) -> List[str]:
        return list(self.nodes.keys())

    def is_disabled(self, node_id: str) -> bool:
        return self.nodes[node_id].disabled

    def root_nodes(self) -> List[str]:
        """Nodes with no incoming connections, in declaration order."""
        return [node_id for node_id in self.nodes if not self._incoming[node_id]]

    def sink_nodes(self) -> List[str]:
        """Nodes with no outgoing connections, in declaration order."""
        return [node_id for node_id in self.nodes if not self._outgoing[node_id]]

    def is_root(self, node_id: str) -> bool:
        return not self._incoming[node_id]

    def successors(self, node_id: str) -> List[str]:
        return _unique(conn.target_node_id for conn in self._outgoing[node_id])

    def predecessors(self, node_id: str) -> List[str]:
        return _unique(conn.source_node_id for conn in self._incoming[node_id])

    def input_ports_of(self, node_id: str) -> int:
        return self.input_counts.get(node_id, 1)

    def output_ports_of(self, node_id: str) -> int:
        return self.output_counts.get(node_id, 1)

    def input_connections(self, node_id: str, port: Optional[int] = None) -> List[Connection]:
        connections = self._incoming[node_id]
        if port is None:
            return list(connections)
        return [conn for conn in connections if conn.target_port == port]

    def output_connections(self, node_id: str) -> List[Connection]:
        return list(self._outgoing[node_id])

    def error_port(self, node_id: str) -> Optional[int]:
        """Index of the node's error output port, if it declares one."""
        if not self.nodes[node_id].error_output:
            return None
        return self.output_ports_of(node_id) - 1

    def has_error_branch(self, node_id: str) -> bool:
        """Whether the node's error port is connected to anything."""
        port = self.error_port(node_id)
        if port is None:
            return False
        return any(conn.source_port == port for conn in self._outgoing[node_id])

    def nodes_to_execute(
        self,
        pinned: Iterable[str] = (),
        destination: Optional[str] = None,
    ) -> Set[str]:
        """
        Nodes that must run to produce the requested outputs.

        One backward pass from the destination node (or, for a full run, from
        every enabled node without enabled successors). Pinned and disabled
        nodes are resolved without running, so the pass does not cross them
        and their exclusive ancestors are pruned.

        Args:
            pinned: Nodes whose output is already known (pin data, retry seeds)
            destination: Partial run target

        Returns:
            Set of node IDs to schedule
        """
        stop = set(pinned)
        stop.update(node_id for node_id, node in self.nodes.items() if node.disabled)

        if destination is not None:
            starts = [destination]
        else:
            starts = [
                node_id for node_id, node in self.nodes.items()
                if not node.disabled
                and not any(not self.nodes[succ].disabled for succ in self.successors(node_id))
            ]

        required: Set[str] = set()
        queue = deque(node_id for node_id in starts if node_id not in stop)
        required.update(queue)

        while queue:
            node_id = queue.popleft()
            for pred in self.predecessors(node_id):
                if pred in required or pred in stop:
                    continue
                required.add(pred)
                queue.append(pred)

        return required

    def descendants(self, node_ids: Iterable[str]) -> Set[str]:
        """The given nodes plus everything reachable downstream of them."""
        reached: Set[str] = set(node_ids)
        queue = deque(reached)
        while queue:
            for succ in self.successors(queue.popleft()):
                if succ not in reached:
                    reached.add(succ)
                    queue.append(succ)
        return reached


def _unique(node_ids: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered = []
    for node_id in node_ids:
        if node_id not in seen:
            seen.add(node_id)
            ordered.append(node_id)
    return ordered
