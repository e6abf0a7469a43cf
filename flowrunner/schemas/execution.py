"""
Execution Schemas

Pydantic models for execution records, per-attempt run data and the
list/delete filters used by the execution store.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from flowrunner.schemas.workflow import WorkflowDefinition
from flowrunner.utils.timezone import get_local_now

# An item is {"json": {...}, "binary": {name: {...reference...}}}
Item = Dict[str, Any]
ItemCollection = List[Item]
PinData = Dict[str, ItemCollection]


class ExecutionStatus(str, Enum):
    """Execution lifecycle status"""
    NEW = "new"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"
    WAITING = "waiting"          # Parked on an external event, sealed immediately


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.SUCCESS,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELED,
    ExecutionStatus.WAITING,
})

RETRYABLE_STATUSES = frozenset({
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELED,
})


class ExecutionMode(str, Enum):
    """How the execution was initiated"""
    MANUAL = "manual"
    TRIGGER = "trigger"
    RETRY = "retry"


class TaskStatus(str, Enum):
    """Outcome of a single node attempt"""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class NodeError(BaseModel):
    """Failure of a single node attempt."""

    message: str
    error_type: str = Field(default="Error", description="Exception class name")
    description: Optional[str] = None
    item_index: Optional[int] = Field(default=None, description="Index of the item being processed")
    timeout: bool = Field(default=False, description="Attempt exceeded the node deadline")

    @classmethod
    def from_exception(cls, exc: BaseException, **kwargs) -> "NodeError":
        return cls(
            message=str(exc) or exc.__class__.__name__,
            error_type=exc.__class__.__name__,
            item_index=getattr(exc, "item_index", None),
            description=getattr(exc, "description", None),
            **kwargs,
        )


class TaskData(BaseModel):
    """
    Result of one node attempt.

    Successful attempts carry outputs_by_port; failed attempts carry error.
    An attempt recovered through continue_on_fail or an error branch has
    status SUCCESS and keeps its error for reference.
    """

    status: TaskStatus
    start_time: datetime = Field(default_factory=get_local_now)
    execution_time_ms: int = 0
    outputs_by_port: Optional[List[ItemCollection]] = None
    error: Optional[NodeError] = None
    source: Optional[str] = Field(default=None, description="Where the data came from, e.g. pin_data")

    @property
    def usable(self) -> bool:
        """Attempt can feed downstream nodes."""
        return self.status in (TaskStatus.SUCCESS, TaskStatus.SKIPPED)

    def output(self, port: int) -> ItemCollection:
        if not self.outputs_by_port or port >= len(self.outputs_by_port):
            return []
        return self.outputs_by_port[port]


RunData = Dict[str, List[TaskData]]


class ExecutionError(BaseModel):
    """Summary of the failure that ended an execution."""

    message: str
    node_id: Optional[str] = None
    error_type: Optional[str] = None


class ExecutionRecord(BaseModel):
    """
    Persisted summary, status and per-node results of one workflow run.

    Owned by the scheduler while running; sealed once the status is terminal,
    after which run data can no longer be appended.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.NEW
    mode: ExecutionMode = ExecutionMode.MANUAL

    started_at: datetime = Field(default_factory=get_local_now)
    stopped_at: Optional[datetime] = None

    run_data: RunData = Field(default_factory=dict)

    trigger_data: Optional[ItemCollection] = Field(default=None, description="Initial input items")
    pin_data: Optional[PinData] = None
    retry_of: Optional[str] = None
    workflow_snapshot: Optional[WorkflowDefinition] = None

    error: Optional[ExecutionError] = None
    cancel_reason: Optional[str] = None
    wait_till: Optional[datetime] = None
    last_node_executed: Optional[str] = None

    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_sealed(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_ms(self) -> Optional[int]:
        if self.stopped_at is None:
            return None
        return int((self.stopped_at - self.started_at).total_seconds() * 1000)

    def append_task(self, node_id: str, task: TaskData) -> None:
        """Append an attempt result for a node."""
        if self.is_sealed:
            raise RuntimeError(f"Execution {self.id} is sealed ({self.status.value})")
        self.run_data.setdefault(node_id, []).append(task)
        self.last_node_executed = node_id

    def last_task(self, node_id: str) -> Optional[TaskData]:
        tasks = self.run_data.get(node_id)
        return tasks[-1] if tasks else None

    def succeeded_nodes(self) -> List[str]:
        """Nodes whose latest attempt succeeded, in run-data order."""
        return [
            node_id for node_id, tasks in self.run_data.items()
            if tasks and tasks[-1].status == TaskStatus.SUCCESS
        ]

    def seal(
        self,
        status: ExecutionStatus,
        stopped_at: Optional[datetime] = None,
    ) -> None:
        """Move the record into a terminal status."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Cannot seal execution with non-terminal status {status.value}")
        if self.is_sealed:
            raise RuntimeError(f"Execution {self.id} is already sealed ({self.status.value})")
        self.status = status
        self.stopped_at = stopped_at or get_local_now()


class ExecutionListFilter(BaseModel):
    """Filter for listing stored executions (newest first)."""

    workflow_id: Optional[str] = None
    status: Optional[List[ExecutionStatus]] = None
    limit: int = Field(default=20, ge=1, le=1000)
    last_id: Optional[str] = Field(default=None, description="Return executions older than this one")
    first_id: Optional[str] = Field(default=None, description="Return executions newer than this one")


class ExecutionDeleteFilter(BaseModel):
    """
    Filter for deleting stored executions.

    At least one of ids or delete_before is required; filters narrows the
    selection further (workflow_id, status).
    """

    ids: Optional[List[str]] = None
    delete_before: Optional[datetime] = None
    filters: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def require_selection(self) -> "ExecutionDeleteFilter":
        if not self.ids and self.delete_before is None:
            raise ValueError("Either 'ids' or 'delete_before' must be set")
        return self
