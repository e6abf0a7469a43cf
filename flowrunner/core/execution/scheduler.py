"""
Execution Scheduler

Reactive scheduler for a single execution:
- Nodes start as soon as every upstream node has resolved
- Bounded per-execution concurrency (max_concurrent_nodes)
- FIFO ready queue in order of becoming ready
- On failure or cancellation stop dispatching, drain in-flight nodes, seal
"""

import asyncio
import copy
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

from flowrunner.core.errors import CancelReason
from flowrunner.core.execution.cancellation import CancellationToken
from flowrunner.core.execution.graph.types import NodeExecutionPhase, NodeState, ValidatedGraph
from flowrunner.core.execution.node_executor import NodeExecutor, NodeResult, NodeResultStatus
from flowrunner.core.execution.pipeline import NOT_READY, assemble_inputs, has_input
from flowrunner.schemas.execution import (
    ExecutionError,
    ExecutionRecord,
    ExecutionStatus,
    ItemCollection,
    PinData,
    RunData,
    TaskData,
    TaskStatus,
)

logger = logging.getLogger(__name__)


class ExecutionScheduler:
    """
    Runs a validated graph to completion and fills in the execution record.

    The scheduler is the only writer of the record's run data while the
    execution runs.
    """

    def __init__(self, node_executor: NodeExecutor, config: Optional[Dict[str, Any]] = None):
        """
        Args:
            node_executor: Shared node executor
            config: Execution config (max_concurrent_nodes, node_timeout,
                execution_timeout), see get_execution_config()
        """
        self.node_executor = node_executor
        self.config = config or {}
        self.max_concurrent_nodes = max(int(self.config.get("max_concurrent_nodes") or 1), 1)

    async def run(
        self,
        graph: ValidatedGraph,
        record: ExecutionRecord,
        cancel_token: CancellationToken,
        *,
        initial_input: Optional[ItemCollection] = None,
        pin_data: Optional[PinData] = None,
        seed_run_data: Optional[RunData] = None,
        destination_node: Optional[str] = None,
    ) -> ExecutionRecord:
        """
        Execute the graph.

        Args:
            graph: Validated graph
            record: Record to fill (status NEW)
            cancel_token: Execution cancellation token
            initial_input: Items delivered to root nodes on port 0
            pin_data: Fixed outputs for nodes that must not run
            seed_run_data: Previous attempts of nodes that already succeeded
                (retry); copied verbatim and not re-run
            destination_node: Stop after this node (partial run)

        Returns:
            The sealed record

        Raises:
            Exception: Unexpected internal errors, after sealing the record failed
        """
        run = _SchedulerRun(self, graph, record, cancel_token, initial_input, pin_data or {})

        timeout_handle = None
        execution_timeout = self.config.get("execution_timeout")
        if execution_timeout:
            loop = asyncio.get_running_loop()
            timeout_handle = loop.call_later(execution_timeout, cancel_token.cancel, CancelReason.TIMEOUT)

        logger.info(
            f"🚀 Starting execution {record.id}: workflow={graph.workflow_id}, "
            f"nodes={len(graph)}, mode={record.mode.value}"
        )
        record.status = ExecutionStatus.RUNNING

        try:
            run.prepare(seed_run_data or {}, destination_node)
            await run.loop()
        except Exception as e:
            await run.abort()
            if not record.is_sealed:
                record.error = ExecutionError(
                    message=f"Internal error: {e}",
                    error_type=e.__class__.__name__,
                )
                record.seal(ExecutionStatus.FAILED)
            logger.error(f"Execution {record.id} aborted: {e}", exc_info=True)
            raise
        except asyncio.CancelledError:
            await run.abort()
            raise
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()

        run.seal()
        logger.info(
            f"🏁 Execution {record.id} finished: status={record.status.value}, "
            f"duration={record.duration_ms}ms"
        )
        return record


class _SchedulerRun:
    """State of one scheduler run."""

    def __init__(
        self,
        scheduler: ExecutionScheduler,
        graph: ValidatedGraph,
        record: ExecutionRecord,
        cancel_token: CancellationToken,
        initial_input: Optional[ItemCollection],
        pin_data: PinData,
    ):
        self.scheduler = scheduler
        self.graph = graph
        self.record = record
        self.cancel_token = cancel_token
        self.initial_input = initial_input or []
        self.pin_data = {node_id: items for node_id, items in pin_data.items() if node_id in graph.nodes}

        self.states: Dict[str, NodeState] = {
            node_id: NodeState(node_id=node_id) for node_id in graph.nodes
        }
        self.required: Set[str] = set()
        self.ready: Deque[str] = deque()
        self.running: Dict[asyncio.Task, str] = {}
        self.dispatch_order: Dict[str, int] = {}

        self.failed_node: Optional[str] = None
        self.wait_result: Optional[NodeResult] = None

    # ==================== Setup ====================

    def prepare(self, seed_run_data: RunData, destination_node: Optional[str]) -> None:
        """Resolve pinned, seeded and disabled nodes and compute the ready queue."""
        graph = self.graph
        record = self.record

        pinned = [node_id for node_id in graph.nodes if node_id in self.pin_data]
        seeded = [
            node_id for node_id in graph.nodes
            if node_id in seed_run_data and node_id not in self.pin_data and seed_run_data[node_id]
        ]

        self.required = graph.nodes_to_execute(pinned + seeded, destination_node)

        for node_id in pinned:
            outputs: List[ItemCollection] = [[] for _ in range(graph.output_ports_of(node_id))]
            outputs[0] = copy.deepcopy(self.pin_data[node_id])
            record.append_task(node_id, TaskData(
                status=TaskStatus.SUCCESS,
                outputs_by_port=outputs,
                source="pin_data",
            ))
            self.states[node_id].phase = NodeExecutionPhase.SUCCEEDED

        for node_id in seeded:
            for task in seed_run_data[node_id]:
                record.append_task(node_id, task.model_copy(deep=True))
            self.states[node_id].phase = NodeExecutionPhase.SUCCEEDED

        for node_id, node in graph.nodes.items():
            if node.disabled and node_id not in self.pin_data:
                self.states[node_id].phase = NodeExecutionPhase.SKIPPED

        for node_id in graph.nodes:
            if node_id not in self.required:
                continue
            state = self.states[node_id]
            state.remaining_deps = sum(
                1 for pred in graph.predecessors(node_id)
                if not self.states[pred].is_resolved
            )
            if state.is_ready():
                self._enqueue(node_id)

        logger.debug(
            f"Execution {record.id}: {len(self.required)} node(s) to run, "
            f"{len(pinned)} pinned, {len(seeded)} seeded, initial ready={list(self.ready)}"
        )

    # ==================== Main loop ====================

    async def loop(self) -> None:
        while True:
            if self._may_dispatch():
                self._dispatch_ready()

            if not self.running:
                break

            done, _ = await asyncio.wait(self.running.keys(), return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=lambda t: self.dispatch_order[self.running[t]]):
                node_id = self.running.pop(task)
                self._handle_result(node_id, task.result())

        if self.cancel_token.is_cancelled and (self.ready or self._pending_required()):
            logger.warning(
                f"Execution {self.record.id} canceled ({self.cancel_token.reason.value}); "
                f"{len(self._pending_required())} node(s) not dispatched"
            )

    def _may_dispatch(self) -> bool:
        return (
            not self.cancel_token.is_cancelled
            and self.failed_node is None
            and self.wait_result is None
        )

    def _dispatch_ready(self) -> None:
        while self.ready and len(self.running) < self.scheduler.max_concurrent_nodes:
            if not self._may_dispatch():
                return
            node_id = self.ready.popleft()
            inputs = self._inputs_for(node_id)

            if not self.graph.is_root(node_id) and not has_input(inputs):
                self._skip(node_id)
                continue

            self.states[node_id].phase = NodeExecutionPhase.RUNNING
            self.dispatch_order[node_id] = len(self.dispatch_order)
            task = asyncio.create_task(
                self._execute(node_id, inputs),
                name=f"node:{self.record.id}:{node_id}",
            )
            self.running[task] = node_id
            logger.debug(f"▶️ Dispatched node {node_id}")

    def _inputs_for(self, node_id: str) -> List[ItemCollection]:
        inputs = assemble_inputs(node_id, self.graph, self.record.run_data, self.pin_data)
        if inputs is NOT_READY:
            raise RuntimeError(f"Node {node_id} dispatched before its inputs were ready")
        if self.graph.is_root(node_id):
            if not inputs:
                inputs = [[]]
            inputs[0] = copy.deepcopy(self.initial_input)
        return inputs

    async def _execute(self, node_id: str, inputs: List[ItemCollection]) -> NodeResult:
        graph = self.graph
        node = graph.get_node(node_id)
        error_port = graph.error_port(node_id)
        output_count = graph.output_ports_of(node_id) - (1 if error_port is not None else 0)

        return await self.scheduler.node_executor.execute(
            node,
            inputs,
            self.cancel_token,
            execution_id=self.record.id,
            workflow_id=self.record.workflow_id,
            output_count=output_count,
            error_output_port=error_port if graph.has_error_branch(node_id) else None,
            node_timeout=self.scheduler.config.get("node_timeout"),
        )

    # ==================== Results ====================

    def _handle_result(self, node_id: str, result: NodeResult) -> None:
        for task in result.attempts:
            self.record.append_task(node_id, task)

        state = self.states[node_id]

        if result.status == NodeResultStatus.SUCCESS:
            state.phase = NodeExecutionPhase.SUCCEEDED
            logger.info(f"✅ Node {node_id} completed ({len(result.attempts)} attempt(s))")
            if result.wait_requested and self.wait_result is None:
                self.wait_result = result
                logger.info(f"⏸️ Node {node_id} requested a wait, parking execution {self.record.id}")
            self._release_successors(node_id)

        elif result.status == NodeResultStatus.FAILURE:
            state.phase = NodeExecutionPhase.FAILED
            if self.failed_node is None:
                self.failed_node = node_id
                message = result.error.message if result.error else "unknown error"
                self.record.error = ExecutionError(
                    message=f"Node {node_id} failed: {message}",
                    node_id=node_id,
                    error_type=result.error.error_type if result.error else None,
                )
                logger.error(f"❌ Node {node_id} failed, halting dispatch for execution {self.record.id}")

        elif result.status == NodeResultStatus.CANCELED:
            state.phase = NodeExecutionPhase.STOPPED
            logger.warning(f"🛑 Node {node_id} stopped by cancellation")

        else:
            state.phase = NodeExecutionPhase.SKIPPED
            self._release_successors(node_id)

    def _skip(self, node_id: str) -> None:
        """No input arrived on any port (branch not taken)."""
        result = NodeResult.skipped(self.graph.output_ports_of(node_id))
        for task in result.attempts:
            self.record.append_task(node_id, task)
        self.states[node_id].phase = NodeExecutionPhase.SKIPPED
        logger.debug(f"⏭️ Node {node_id} skipped: no input")
        self._release_successors(node_id)

    def _release_successors(self, node_id: str) -> None:
        for successor in self.graph.successors(node_id):
            if successor not in self.required:
                continue
            state = self.states[successor]
            state.mark_dependency_resolved()
            if state.is_ready():
                self._enqueue(successor)

    def _enqueue(self, node_id: str) -> None:
        self.states[node_id].phase = NodeExecutionPhase.RUNNABLE
        self.ready.append(node_id)

    def _pending_required(self) -> List[str]:
        return [
            node_id for node_id in self.required
            if self.states[node_id].phase in (NodeExecutionPhase.WAITING, NodeExecutionPhase.RUNNABLE)
        ]

    # ==================== Completion ====================

    async def abort(self) -> None:
        """Cancel in-flight node tasks after an internal error."""
        for task in self.running:
            task.cancel()
        if self.running:
            await asyncio.gather(*self.running.keys(), return_exceptions=True)
        self.running.clear()

    def seal(self) -> None:
        record = self.record

        if self.failed_node is not None:
            record.seal(ExecutionStatus.FAILED)
        elif self.cancel_token.is_cancelled:
            record.cancel_reason = self.cancel_token.reason.value
            record.seal(ExecutionStatus.CANCELED)
        elif self.wait_result is not None:
            record.wait_till = self.wait_result.wait_till
            record.seal(ExecutionStatus.WAITING)
        else:
            record.seal(ExecutionStatus.SUCCESS)
