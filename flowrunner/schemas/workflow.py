"""
Workflow Definition Schemas

Pydantic models describing a workflow graph: nodes, port-to-port connections
and workflow-level execution settings.

Ports are addressed by index. A node declares how many input and output ports
it has (or inherits the counts from its handler class); a node with
error_output enabled gets one extra output port, appended after the regular
ones, that carries failed items.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from flowrunner.config import settings


class NodeConfiguration(BaseModel):
    """
    Node configuration within a workflow.

    Immutable once an execution starts: the engine works from the validated
    graph built at run start.
    """

    node_id: str = Field(..., description="Unique node identifier")
    node_type: str = Field(..., description="Registered handler type name")
    name: str = Field(default="", description="Display name")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Handler parameters")

    disabled: bool = Field(default=False, description="Disabled nodes are skipped")

    # Retry / failure policy
    retry_on_fail: bool = Field(default=False)
    max_tries: int = Field(default=3, ge=1, description="Total attempts when retry_on_fail is set")
    wait_between_tries_ms: int = Field(
        default_factory=lambda: settings.DEFAULT_WAIT_BETWEEN_TRIES_MS,
        ge=0,
    )
    continue_on_fail: bool = Field(
        default=False,
        description="Resolve as success with empty output once retries are exhausted",
    )
    error_output: bool = Field(
        default=False,
        description="Declare an extra output port that receives the error item on failure",
    )

    # Port counts (None = use the handler class defaults)
    inputs: Optional[int] = Field(default=None, ge=0, description="Declared input port count")
    outputs: Optional[int] = Field(default=None, ge=0, description="Declared output port count")

    credentials: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Credential references; when set the executor resolves credentials for the node",
    )

    @field_validator("node_id")
    @classmethod
    def validate_node_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("node_id cannot be empty")
        return v


class Connection(BaseModel):
    """Directed port-to-port link between two nodes."""

    source_node_id: str = Field(..., description="Source node ID")
    source_port: int = Field(default=0, ge=0, description="Source output port index")
    target_node_id: str = Field(..., description="Target node ID")
    target_port: int = Field(default=0, ge=0, description="Target input port index")

    def describe(self) -> str:
        return (
            f"{self.source_node_id}[{self.source_port}] -> "
            f"{self.target_node_id}[{self.target_port}]"
        )


class WorkflowDefinition(BaseModel):
    """
    Complete workflow definition.

    Connection order is significant: when several connections feed the same
    input port, their item collections are concatenated in declaration order.
    """

    workflow_id: str = Field(..., description="Workflow identifier")
    name: str = Field(default="", description="Workflow name")
    nodes: List[NodeConfiguration] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    # Execution overrides (max_concurrent_nodes, node_timeout, execution_timeout)
    settings: Dict[str, Any] = Field(default_factory=dict)

    def get_node(self, node_id: str) -> Optional[NodeConfiguration]:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None
