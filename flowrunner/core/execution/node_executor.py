"""
Node Executor

Runs one node: dispatches to its registered handler with cancellation
checkpoints, credential injection, a per-node deadline, the shared global
concurrency limit and the node's retry / failure policy. Every attempt is
returned for the scheduler to append to run data; handler exceptions never
escape.
"""

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from flowrunner.core.capabilities import BinaryStore, CredentialResolver
from flowrunner.core.errors import (
    CancellationError,
    CancelReason,
    CredentialError,
    CredentialNotFoundError,
    NodeTimeoutError,
    WaitRequested,
)
from flowrunner.core.execution.cancellation import CancellationToken
from flowrunner.core.execution.pipeline import normalize_output
from flowrunner.core.nodes.base import NodeExecutionInput
from flowrunner.core.nodes.registry import NodeRegistry
from flowrunner.schemas.execution import ItemCollection, NodeError, TaskData, TaskStatus
from flowrunner.schemas.workflow import NodeConfiguration
from flowrunner.utils.timezone import get_local_now

logger = logging.getLogger(__name__)

class NodeResultStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELED = "canceled"


@dataclass
class NodeResult:
    """Outcome of running one node (all attempts)."""
    status: NodeResultStatus
    outputs_by_port: List[ItemCollection] = field(default_factory=list)
    error: Optional[NodeError] = None
    attempts: List[TaskData] = field(default_factory=list)

    # Set when the handler asked to park the execution
    wait_requested: bool = False
    wait_till: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == NodeResultStatus.SUCCESS

    @classmethod
    def skipped(cls, port_count: int) -> "NodeResult":
        outputs = [[] for _ in range(max(port_count, 1))]
        return cls(
            status=NodeResultStatus.SKIPPED,
            outputs_by_port=outputs,
            attempts=[TaskData(status=TaskStatus.SKIPPED, outputs_by_port=outputs)],
        )


class _AttemptNotStarted(Exception):
    """Internal: the execution was canceled before the handler was invoked."""


class _AttemptFailed(Exception):
    """Internal: carries a failed attempt out of _run_attempt."""

    def __init__(self, error: NodeError, retryable: bool = True):
        super().__init__(error.message)
        self.error = error
        self.retryable = retryable


class NodeExecutor:
    """
    Executes single nodes for the scheduler.

    One instance is shared by every execution of an orchestrator; it holds no
    per-execution state.
    """

    def __init__(
        self,
        node_registry: NodeRegistry,
        credential_resolver: Optional[CredentialResolver] = None,
        binary_store: Optional[BinaryStore] = None,
        global_semaphore: Optional[asyncio.Semaphore] = None,
        node_timeout: Optional[float] = None,
    ):
        """
        Args:
            node_registry: Source of handler classes
            credential_resolver: Resolves credentials for nodes that declare them
            binary_store: Store for binary payloads produced by handlers
            global_semaphore: Limit on handler invocations across all executions
            node_timeout: Default per-attempt deadline in seconds (None/0 disables)
        """
        self.node_registry = node_registry
        self.credential_resolver = credential_resolver
        self.binary_store = binary_store
        self.global_semaphore = global_semaphore
        self.node_timeout = node_timeout

    async def execute(
        self,
        node: NodeConfiguration,
        inputs_by_port: List[ItemCollection],
        cancel_token: CancellationToken,
        *,
        execution_id: str,
        workflow_id: str,
        output_count: Optional[int] = None,
        error_output_port: Optional[int] = None,
        node_timeout: Optional[float] = None,
    ) -> NodeResult:
        """
        Execute a node with its retry and failure policy.

        Args:
            node: Node configuration
            inputs_by_port: Assembled input collections
            cancel_token: Execution cancellation token
            execution_id: Owning execution
            workflow_id: Owning workflow
            output_count: Regular output port count (defaults to the handler's)
            error_output_port: Connected error port index, if any
            node_timeout: Per-attempt deadline override

        Returns:
            NodeResult with every attempt made
        """
        handler_class = self.node_registry.get_handler(node.node_type)
        if output_count is None:
            output_count = handler_class.declared_outputs(node)
        timeout = node_timeout if node_timeout is not None else self.node_timeout

        if cancel_token.is_cancelled:
            logger.debug(f"Node {node.node_id} not started: execution canceled")
            return NodeResult(status=NodeResultStatus.CANCELED)

        max_tries = node.max_tries if node.retry_on_fail else 1
        attempts: List[TaskData] = []
        last_error: Optional[NodeError] = None

        for attempt in range(1, max_tries + 1):
            start_time = get_local_now()
            started = time.perf_counter()

            try:
                raw, wait_request = await self._run_attempt(
                    handler_class,
                    node,
                    inputs_by_port,
                    cancel_token,
                    execution_id=execution_id,
                    workflow_id=workflow_id,
                    attempt=attempt,
                    timeout=timeout,
                )
                if wait_request is not None:
                    raw = [inputs_by_port[0] if inputs_by_port else []]
                outputs = self._shape_outputs(raw, output_count, node.error_output)

            except _AttemptNotStarted:
                logger.debug(f"Node {node.node_id} not invoked: execution canceled before attempt {attempt}")
                return NodeResult(status=NodeResultStatus.CANCELED, error=last_error, attempts=attempts)

            except CancellationError as e:
                # Execution-level cancel (user or timeout)
                attempts.append(self._task(TaskStatus.ERROR, start_time, started, error=NodeError.from_exception(e)))
                logger.warning(f"🛑 Node {node.node_id} canceled during attempt {attempt} ({e.reason.value})")
                return NodeResult(
                    status=NodeResultStatus.CANCELED,
                    error=attempts[-1].error,
                    attempts=attempts,
                )

            except _AttemptFailed as e:
                last_error = e.error
                attempts.append(self._task(TaskStatus.ERROR, start_time, started, error=e.error))

                if cancel_token.is_cancelled:
                    return NodeResult(status=NodeResultStatus.CANCELED, error=last_error, attempts=attempts)

                if not e.retryable or attempt >= max_tries:
                    break

                wait_ms = node.wait_between_tries_ms
                logger.warning(
                    f"Node {node.node_id} failed (attempt {attempt}/{max_tries}), "
                    f"retrying in {wait_ms}ms: {e.error.message}"
                )
                if await cancel_token.sleep(wait_ms / 1000.0):
                    return NodeResult(status=NodeResultStatus.CANCELED, error=last_error, attempts=attempts)
                continue

            attempts.append(self._task(TaskStatus.SUCCESS, start_time, started, outputs=outputs))
            logger.debug(f"Node {node.node_id} succeeded on attempt {attempt}")
            return NodeResult(
                status=NodeResultStatus.SUCCESS,
                outputs_by_port=outputs,
                attempts=attempts,
                wait_requested=wait_request is not None,
                wait_till=wait_request.wait_till if wait_request is not None else None,
            )

        return self._resolve_failure(node, inputs_by_port, output_count, error_output_port, last_error, attempts)

    async def _run_attempt(
        self,
        handler_class,
        node: NodeConfiguration,
        inputs_by_port: List[ItemCollection],
        cancel_token: CancellationToken,
        *,
        execution_id: str,
        workflow_id: str,
        attempt: int,
        timeout: Optional[float],
    ):
        """
        Run the handler once.

        Returns:
            (raw handler output, WaitRequested or None)

        Raises:
            CancellationError: The execution was canceled while the handler ran
            _AttemptNotStarted: The execution was canceled before the handler ran
            _AttemptFailed: The attempt failed (timeouts included)
        """
        if cancel_token.is_cancelled:
            raise _AttemptNotStarted()

        credentials = await self._inject_credentials(node)

        # Node-scoped token: fires with the execution or at the deadline
        node_token = cancel_token.child()
        loop = asyncio.get_running_loop()
        deadline_handle = None

        input_data = NodeExecutionInput(
            inputs=inputs_by_port,
            workflow_id=workflow_id,
            execution_id=execution_id,
            node_id=node.node_id,
            parameters=dict(node.parameters),
            credentials=credentials,
            attempt=attempt,
            binary_store=self.binary_store,
            cancel_token=node_token,
        )

        try:
            handler = handler_class(node)
            async with AsyncExitStack() as stack:
                if self.global_semaphore is not None:
                    await stack.enter_async_context(self.global_semaphore)
                # Stop may have arrived while queued for the global limit
                if cancel_token.is_cancelled:
                    raise _AttemptNotStarted()
                # Deadline covers the handler call only, not the queueing
                if timeout:
                    deadline_handle = loop.call_later(timeout, node_token.cancel, CancelReason.NODE_TIMEOUT)
                raw = await handler.execute(input_data)
            wait_request = None

        except _AttemptNotStarted:
            raise

        except WaitRequested as e:
            raw, wait_request = None, e

        except CancellationError as e:
            if e.reason == CancelReason.NODE_TIMEOUT:
                raise _AttemptFailed(self._timeout_error(node, timeout))
            raise

        except Exception as e:
            logger.error(f"Node {node.node_id} attempt {attempt} failed: {e}", exc_info=True)
            raise _AttemptFailed(NodeError.from_exception(e))

        finally:
            if deadline_handle is not None:
                deadline_handle.cancel()
            node_token.detach()

        if node_token.reason == CancelReason.NODE_TIMEOUT:
            # Returned after its deadline without checking the token
            raise _AttemptFailed(self._timeout_error(node, timeout))

        return raw, wait_request

    async def _inject_credentials(self, node: NodeConfiguration) -> Optional[Dict[str, Any]]:
        """
        Resolve credentials for a node that declares them.

        Failures are not retried: resolving again cannot change the outcome.
        """
        if not node.credentials:
            return None

        if self.credential_resolver is None:
            error = CredentialNotFoundError(f"No credential resolver configured for node {node.node_id}")
            raise _AttemptFailed(NodeError.from_exception(error), retryable=False)

        try:
            credentials = await self.credential_resolver.resolve(node.node_id)
        except CredentialError as e:
            logger.warning(f"❌ Credentials unavailable for node {node.node_id}: {e}")
            raise _AttemptFailed(NodeError.from_exception(e), retryable=False)

        logger.debug(f"🔐 Injected credentials for node {node.node_id} (fields: {list(credentials.keys())})")
        return credentials

    def _shape_outputs(self, raw: Any, output_count: int, error_output: bool) -> List[ItemCollection]:
        try:
            outputs = normalize_output(raw, output_count, self.binary_store)
        except Exception as e:
            raise _AttemptFailed(NodeError.from_exception(e))
        if error_output:
            outputs.append([])
        return outputs

    def _resolve_failure(
        self,
        node: NodeConfiguration,
        inputs_by_port: List[ItemCollection],
        output_count: int,
        error_output_port: Optional[int],
        error: NodeError,
        attempts: List[TaskData],
    ) -> NodeResult:
        """Apply continue_on_fail / error branch once attempts are exhausted."""
        port_count = max(output_count, 1) + (1 if node.error_output else 0)

        if node.continue_on_fail:
            outputs = [[] for _ in range(port_count)]
            logger.warning(f"Node {node.node_id} failed, continuing (continue_on_fail): {error.message}")
        elif error_output_port is not None:
            outputs = [[] for _ in range(port_count)]
            outputs[error_output_port] = self._error_items(node, inputs_by_port, error)
            logger.warning(f"Node {node.node_id} failed, routing to error output: {error.message}")
        else:
            logger.error(f"❌ Node {node.node_id} failed after {len(attempts)} attempt(s): {error.message}")
            return NodeResult(status=NodeResultStatus.FAILURE, error=error, attempts=attempts)

        last = attempts[-1]
        attempts[-1] = last.model_copy(update={"status": TaskStatus.SUCCESS, "outputs_by_port": outputs})
        return NodeResult(
            status=NodeResultStatus.SUCCESS,
            outputs_by_port=outputs,
            error=error,
            attempts=attempts,
        )

    @staticmethod
    def _error_items(
        node: NodeConfiguration,
        inputs_by_port: List[ItemCollection],
        error: NodeError,
    ) -> ItemCollection:
        error_data = {
            "message": error.message,
            "error_type": error.error_type,
            "node_id": node.node_id,
        }
        items = inputs_by_port[0] if inputs_by_port else []
        if not items:
            return [{"json": {"error": error_data}}]

        result = []
        for item in items:
            data = dict(item.get("json", {}))
            data["error"] = error_data
            result.append({"json": data})
        return result

    @staticmethod
    def _timeout_error(node: NodeConfiguration, timeout: Optional[float]) -> NodeError:
        error = NodeTimeoutError(f"Node {node.node_id} timed out after {timeout}s")
        return NodeError.from_exception(error, timeout=True)

    @staticmethod
    def _task(
        status: TaskStatus,
        start_time: datetime,
        started: float,
        outputs: Optional[List[ItemCollection]] = None,
        error: Optional[NodeError] = None,
    ) -> TaskData:
        return TaskData(
            status=status,
            start_time=start_time,
            execution_time_ms=int((time.perf_counter() - started) * 1000),
            outputs_by_port=outputs,
            error=error,
        )
