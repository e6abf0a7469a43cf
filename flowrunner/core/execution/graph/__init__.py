from flowrunner.core.execution.graph.builder import GraphBuilder, build_execution_graph
from flowrunner.core.execution.graph.types import NodeExecutionPhase, NodeState, ValidatedGraph

__all__ = [
    "GraphBuilder",
    "NodeExecutionPhase",
    "NodeState",
    "ValidatedGraph",
    "build_execution_graph",
]
