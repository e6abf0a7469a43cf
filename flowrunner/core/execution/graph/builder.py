"""
Execution Graph Builder

Validates a workflow definition and constructs the read-only graph the
scheduler runs. All structural problems are reported as GraphError before
any execution record exists.
"""

import logging
from typing import Dict, List, Optional

from flowrunner.core.errors import GraphError, GraphErrorKind
from flowrunner.core.execution.graph.types import ValidatedGraph
from flowrunner.core.nodes.registry import NodeRegistry
from flowrunner.schemas.workflow import NodeConfiguration, WorkflowDefinition

logger = logging.getLogger(__name__)


class GraphBuilder:
    """
    Builds a ValidatedGraph from a workflow definition.

    Checks, in order:
    1. Node ids are unique
    2. Node types are registered (when a registry is supplied)
    3. Every connection references existing nodes...
    4. ...and ports the nodes declare
    5. Enabled nodes form no cycle
    6. At least one node has no incoming connection (non-empty graphs)
    """

    def __init__(self, workflow: WorkflowDefinition, node_registry: Optional[NodeRegistry] = None):
        """
        Initialize graph builder.

        Args:
            workflow: Workflow definition to validate
            node_registry: Registry used to check node types and default port
                counts. Without one, port counts come from the node declaration
                or are inferred from the connections.
        """
        self.workflow = workflow
        self.node_registry = node_registry
        self.nodes_by_id: Dict[str, NodeConfiguration] = {}

    def build(self) -> ValidatedGraph:
        """
        Validate and build the graph.

        Returns:
            ValidatedGraph ready for scheduling

        Raises:
            GraphError: On the first structural problem found
        """
        logger.debug(
            f"🔨 Building graph for workflow {self.workflow.workflow_id}: "
            f"{len(self.workflow.nodes)} nodes, {len(self.workflow.connections)} connections"
        )

        self._check_unique_ids()
        self._check_node_types()
        input_counts, output_counts = self._resolve_port_counts()
        self._check_connections(input_counts, output_counts)

        cycle = self._detect_cycle()
        if cycle:
            raise GraphError(
                GraphErrorKind.CYCLE,
                f"Workflow contains a cycle: {' -> '.join(cycle)}",
                node_ids=cycle,
            )

        self._check_entry_node()

        graph = ValidatedGraph(
            workflow_id=self.workflow.workflow_id,
            nodes=dict(self.nodes_by_id),
            connections=list(self.workflow.connections),
            input_counts=input_counts,
            output_counts=output_counts,
        )
        logger.debug(
            f"✅ Graph built: {len(graph.root_nodes())} roots, {len(graph.sink_nodes())} sinks"
        )
        return graph

    def _check_unique_ids(self) -> None:
        for node in self.workflow.nodes:
            if node.node_id in self.nodes_by_id:
                raise GraphError(
                    GraphErrorKind.DUPLICATE_ID,
                    f"Duplicate node id: {node.node_id}",
                    node_ids=[node.node_id],
                )
            self.nodes_by_id[node.node_id] = node

    def _check_node_types(self) -> None:
        if self.node_registry is None:
            return
        for node in self.workflow.nodes:
            if not self.node_registry.is_registered(node.node_type):
                raise GraphError(
                    GraphErrorKind.UNKNOWN_TYPE,
                    f"Node {node.node_id} has unknown type: {node.node_type}",
                    node_ids=[node.node_id],
                )

    def _resolve_port_counts(self):
        """Declared input/output port counts; outputs include the error port."""
        input_counts: Dict[str, int] = {}
        output_counts: Dict[str, int] = {}

        for node in self.workflow.nodes:
            handler_class = self.node_registry.get(node.node_type) if self.node_registry else None

            if handler_class is not None:
                inputs = handler_class.declared_inputs(node)
                outputs = handler_class.declared_outputs(node) + (1 if node.error_output else 0)
            else:
                inputs = node.inputs if node.inputs is not None else self._inferred_count(node.node_id, "target")
                if node.outputs is not None:
                    outputs = node.outputs + (1 if node.error_output else 0)
                else:
                    # Undeclared: the highest connected port is the error port
                    outputs = self._inferred_count(node.node_id, "source")
                    if node.error_output:
                        outputs = max(outputs, 2)

            input_counts[node.node_id] = inputs
            output_counts[node.node_id] = outputs

        return input_counts, output_counts

    def _inferred_count(self, node_id: str, side: str) -> int:
        ports = [
            getattr(conn, f"{side}_port")
            for conn in self.workflow.connections
            if getattr(conn, f"{side}_node_id") == node_id
        ]
        return max(ports) + 1 if ports else 1

    def _check_connections(self, input_counts: Dict[str, int], output_counts: Dict[str, int]) -> None:
        for conn in self.workflow.connections:
            for node_id in (conn.source_node_id, conn.target_node_id):
                if node_id not in self.nodes_by_id:
                    raise GraphError(
                        GraphErrorKind.DANGLING_CONNECTION,
                        f"Connection {conn.describe()} references unknown node {node_id}",
                        node_ids=[node_id],
                    )

        for conn in self.workflow.connections:
            if conn.source_port >= output_counts[conn.source_node_id]:
                raise GraphError(
                    GraphErrorKind.INVALID_PORT,
                    f"Connection {conn.describe()}: {conn.source_node_id} has "
                    f"{output_counts[conn.source_node_id]} output port(s)",
                    node_ids=[conn.source_node_id],
                )
            if conn.target_port >= input_counts[conn.target_node_id]:
                raise GraphError(
                    GraphErrorKind.INVALID_PORT,
                    f"Connection {conn.describe()}: {conn.target_node_id} has "
                    f"{input_counts[conn.target_node_id]} input port(s)",
                    node_ids=[conn.target_node_id],
                )

    def _detect_cycle(self) -> List[str]:
        """
        Detect a cycle among enabled nodes using DFS with a recursion stack.

        Connections into or out of disabled nodes are ignored. Iterative so
        long chains do not hit the interpreter recursion limit.

        Returns:
            Cycle members in traversal order (first node repeated at the end),
            or an empty list
        """
        dependents: Dict[str, List[str]] = {
            node_id: [] for node_id, node in self.nodes_by_id.items() if not node.disabled
        }
        for conn in self.workflow.connections:
            if conn.source_node_id in dependents and conn.target_node_id in dependents:
                dependents[conn.source_node_id].append(conn.target_node_id)

        visited = set()
        rec_stack = set()

        for start in dependents:
            if start in visited:
                continue

            path: List[str] = [start]
            iterators = [iter(dependents[start])]
            visited.add(start)
            rec_stack.add(start)

            while iterators:
                dependent = next(iterators[-1], None)
                if dependent is None:
                    rec_stack.discard(path.pop())
                    iterators.pop()
                    continue
                if dependent in rec_stack:
                    cycle_start_idx = path.index(dependent)
                    return path[cycle_start_idx:] + [dependent]
                if dependent not in visited:
                    visited.add(dependent)
                    rec_stack.add(dependent)
                    path.append(dependent)
                    iterators.append(iter(dependents[dependent]))

        return []

    def _check_entry_node(self) -> None:
        if not self.nodes_by_id:
            return
        targets = {conn.target_node_id for conn in self.workflow.connections}
        if all(node_id in targets for node_id in self.nodes_by_id):
            raise GraphError(
                GraphErrorKind.NO_ENTRY_NODE,
                "Workflow has no entry node (every node has an incoming connection)",
            )


def build_execution_graph(
    workflow: WorkflowDefinition,
    node_registry: Optional[NodeRegistry] = None,
) -> ValidatedGraph:
    """
    Convenience function to build a validated graph.

    Args:
        workflow: Workflow definition
        node_registry: Optional registry for type and port checks

    Returns:
        ValidatedGraph ready for execution
    """
    return GraphBuilder(workflow, node_registry).build()
