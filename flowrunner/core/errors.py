"""
Engine Errors

Graph and store errors unwind to the caller. Node failures are absorbed into
run data and never unwind the scheduler.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from flowrunner.schemas.execution import ExecutionRecord


class EngineError(Exception):
    """Base class for all engine errors."""


# ==================== Graph ====================

class GraphErrorKind(str, Enum):
    DUPLICATE_ID = "duplicate_id"
    DANGLING_CONNECTION = "dangling_connection"
    INVALID_PORT = "invalid_port"
    CYCLE = "cycle"
    NO_ENTRY_NODE = "no_entry_node"
    UNKNOWN_TYPE = "unknown_type"


class GraphError(EngineError):
    """Structural problem in a workflow graph, raised before any node runs."""

    def __init__(
        self,
        kind: GraphErrorKind,
        message: str,
        node_ids: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.node_ids = node_ids or []

    @property
    def cycle(self) -> List[str]:
        """Cycle members in traversal order (CYCLE errors only)."""
        return self.node_ids if self.kind == GraphErrorKind.CYCLE else []


class UnknownNodeTypeError(EngineError):
    def __init__(self, node_type: str):
        super().__init__(f"Node type not registered: {node_type}")
        self.node_type = node_type


# ==================== Node execution ====================

class NodeOutputError(EngineError):
    """Handler returned data that cannot be normalized into item collections."""


class NodeTimeoutError(EngineError):
    """Node attempt ran past its deadline."""


class WaitRequested(EngineError):
    """
    Raised by a handler to park the execution until an external event.

    The node itself succeeds; the execution is sealed as waiting.
    """

    def __init__(self, wait_till: Optional[datetime] = None):
        super().__init__("Execution is waiting")
        self.wait_till = wait_till


class CancelReason(str, Enum):
    USER = "user"
    TIMEOUT = "timeout"
    NODE_TIMEOUT = "node_timeout"


class CancellationError(EngineError):
    """Raised at a cancellation checkpoint once the token has fired."""

    def __init__(self, reason: CancelReason = CancelReason.USER):
        super().__init__(f"Execution canceled ({reason.value})")
        self.reason = reason


# ==================== Capabilities ====================

class CredentialError(EngineError):
    pass


class CredentialNotFoundError(CredentialError):
    pass


class CredentialAccessDeniedError(CredentialError):
    pass


class BinaryNotFoundError(EngineError):
    def __init__(self, reference: str):
        super().__init__(f"Binary data not found: {reference}")
        self.reference = reference


# ==================== Executions ====================

class ExecutionNotFoundError(EngineError):
    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id


class ExecutionNotRetryableError(EngineError):
    pass


class WorkflowNotFoundError(EngineError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class StoreError(EngineError):
    """
    Persistence failure.

    When raised at the end of a run, record holds the sealed in-memory record
    so the caller can retry the save.
    """

    def __init__(self, message: str, record: Optional["ExecutionRecord"] = None):
        super().__init__(message)
        self.record = record
