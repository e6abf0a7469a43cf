"""
Workflow Orchestrator

High-level coordinator for workflow executions: validates the graph, creates
the execution record, runs the scheduler, keeps the active registry current
and persists the sealed record.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from flowrunner.config import Settings, get_execution_config, settings as global_settings
from flowrunner.core.capabilities import (
    BinaryStore,
    CredentialResolver,
    InMemoryBinaryStore,
    WorkflowProvider,
)
from flowrunner.core.errors import (
    CancelReason,
    ExecutionNotFoundError,
    ExecutionNotRetryableError,
    StoreError,
)
from flowrunner.core.execution.cancellation import CancellationToken
from flowrunner.core.execution.graph.builder import GraphBuilder
from flowrunner.core.execution.graph.types import ValidatedGraph
from flowrunner.core.execution.node_executor import NodeExecutor
from flowrunner.core.execution.registry import ActiveExecutionRegistry, get_active_registry
from flowrunner.core.execution.scheduler import ExecutionScheduler
from flowrunner.core.nodes.registry import NodeRegistry, get_node_registry
from flowrunner.database.repositories.execution import ExecutionRepository
from flowrunner.schemas.execution import (
    RETRYABLE_STATUSES,
    ExecutionDeleteFilter,
    ExecutionListFilter,
    ExecutionMode,
    ExecutionRecord,
    ItemCollection,
    PinData,
    RunData,
    TaskData,
    TaskStatus,
)
from flowrunner.schemas.workflow import WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """
    High-level workflow execution coordinator.

    Responsibilities:
    1. Build and validate the execution graph
    2. Merge execution config (workflow-specific + global settings)
    3. Create the execution record and register it as active
    4. Run the scheduler
    5. Persist the sealed record and unregister

    One orchestrator owns the global concurrency semaphore shared by every
    execution it runs.
    """

    def __init__(
        self,
        store: ExecutionRepository,
        node_registry: Optional[NodeRegistry] = None,
        credential_resolver: Optional[CredentialResolver] = None,
        binary_store: Optional[BinaryStore] = None,
        workflow_provider: Optional[WorkflowProvider] = None,
        active_registry: Optional[ActiveExecutionRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Execution store
            node_registry: Handler registry (builtin nodes when omitted)
            credential_resolver: Credential lookup for nodes that declare credentials
            binary_store: Binary payload store (in-memory when omitted)
            workflow_provider: Workflow lookup used by retry(load_workflow=True)
            active_registry: Registry of running executions (process-wide when omitted)
            settings: Engine settings (module-level settings when omitted)
        """
        self.store = store
        self.settings = settings or global_settings
        self.node_registry = node_registry or get_node_registry()
        self.binary_store = binary_store or InMemoryBinaryStore()
        self.workflow_provider = workflow_provider
        self.active_registry = active_registry or get_active_registry()

        self.global_semaphore = asyncio.Semaphore(self.settings.GLOBAL_MAX_CONCURRENT_NODES)
        self.node_executor = NodeExecutor(
            node_registry=self.node_registry,
            credential_resolver=credential_resolver,
            binary_store=self.binary_store,
            global_semaphore=self.global_semaphore,
        )
        logger.debug("WorkflowOrchestrator initialized")

    # ==================== Start ====================

    async def start_manual(
        self,
        workflow: WorkflowDefinition,
        initial_input: Optional[ItemCollection] = None,
        pin_data: Optional[PinData] = None,
        *,
        run_data: Optional[RunData] = None,
        start_nodes: Optional[List[str]] = None,
        destination_node: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> ExecutionRecord:
        """
        Run a workflow interactively and wait for it to finish.

        To stop or poll the run from elsewhere, choose the execution_id up
        front and run this coroutine as a task.

        Args:
            workflow: Workflow to run
            initial_input: Items delivered to root nodes
            pin_data: Fixed outputs for nodes that must not run
            run_data: Results of an earlier run to reuse (partial re-run);
                nodes whose latest attempt succeeded are not run again
            start_nodes: Nodes to run again even if run_data holds a result
                for them; their descendants are run again too
            destination_node: Only run what this node needs (partial run)
            execution_id: Id for the new execution (generated when omitted)

        Returns:
            The sealed, persisted execution record

        Raises:
            GraphError: The workflow is structurally invalid (no record created)
            ValueError: Unknown start or destination node
            StoreError: The sealed record could not be saved (error.record holds it)
        """
        metadata: Dict[str, Any] = {}
        if start_nodes:
            metadata["start_nodes"] = list(start_nodes)

        return await self._execute(
            workflow,
            mode=ExecutionMode.MANUAL,
            initial_input=initial_input,
            pin_data=pin_data,
            client_run_data=run_data,
            start_nodes=start_nodes,
            destination_node=destination_node,
            execution_id=execution_id,
            metadata=metadata,
        )

    async def start_triggered(
        self,
        workflow: WorkflowDefinition,
        trigger_data: Optional[ItemCollection] = None,
        *,
        execution_id: Optional[str] = None,
    ) -> ExecutionRecord:
        """Run a workflow for a trigger event; same path as start_manual."""
        return await self._execute(
            workflow,
            mode=ExecutionMode.TRIGGER,
            initial_input=trigger_data,
            execution_id=execution_id,
        )

    async def retry(
        self,
        execution_id: str,
        load_workflow: bool = False,
        *,
        new_execution_id: Optional[str] = None,
    ) -> ExecutionRecord:
        """
        Retry a failed or canceled execution from where it stopped.

        Creates a NEW execution that:
        1. Uses the workflow snapshot of the original run, or the current
           definition when load_workflow is set
        2. Copies the attempts of nodes that succeeded in the original run
        3. Only executes the failed frontier and what depends on it

        The original record is never modified.

        Raises:
            ExecutionNotFoundError: No stored execution with this id
            ExecutionNotRetryableError: Status not failed/canceled, or no
                workflow available to run
        """
        logger.info(f"🔄 Retry requested for execution {execution_id} (load_workflow={load_workflow})")

        original = self.store.get(execution_id)

        if original.status not in RETRYABLE_STATUSES:
            raise ExecutionNotRetryableError(
                f"Cannot retry execution with status '{original.status.value}'. "
                f"Only failed or canceled executions can be retried."
            )

        warnings: List[str] = []
        if load_workflow:
            if self.workflow_provider is None:
                raise ExecutionNotRetryableError("No workflow provider configured to load the current workflow")
            workflow = self.workflow_provider.get_workflow(original.workflow_id)
            if original.workflow_snapshot is not None:
                warnings = self._detect_structure_changes(original.workflow_snapshot, workflow)
                for warning in warnings:
                    logger.warning(f"⚠️ Retry of {execution_id}: {warning}")
        else:
            if original.workflow_snapshot is None:
                raise ExecutionNotRetryableError(f"Execution {execution_id} has no workflow snapshot")
            workflow = original.workflow_snapshot

        node_ids = {node.node_id for node in workflow.nodes}
        pinned = set(original.pin_data or {})
        seed_run_data: RunData = {
            node_id: original.run_data[node_id]
            for node_id in original.succeeded_nodes()
            if node_id in node_ids and node_id not in pinned
        }
        logger.info(f"📊 Found {len(seed_run_data)} completed node(s) to reuse")

        retry_count = int(original.metadata.get("retry_count", 0)) + 1
        metadata: Dict[str, Any] = {
            "retry_count": retry_count,
            "seeded_nodes": list(seed_run_data.keys()),
            "load_workflow": load_workflow,
        }
        if warnings:
            metadata["structure_warnings"] = warnings

        return await self._execute(
            workflow,
            mode=ExecutionMode.RETRY,
            initial_input=original.trigger_data,
            pin_data=original.pin_data,
            seed_run_data=seed_run_data,
            destination_node=original.metadata.get("destination_node"),
            execution_id=new_execution_id,
            retry_of=original.id,
            metadata=metadata,
        )

    # ==================== Control ====================

    async def stop(self, execution_id: str) -> bool:
        """
        Request cancellation of a running execution.

        Nodes already running finish (or observe the cancellation at their
        next checkpoint); the execution is then sealed as canceled.

        Raises:
            ExecutionNotFoundError: The execution is not running
        """
        entry = self.active_registry.get(execution_id)
        if entry is None:
            raise ExecutionNotFoundError(execution_id)

        if entry.cancel.cancel(CancelReason.USER):
            logger.warning(f"🛑 Stop requested for execution {execution_id}")
        else:
            logger.debug(f"Execution {execution_id} already canceled")
        return True

    # ==================== Queries ====================

    def list_current(self, workflow_id: Optional[str] = None) -> List[ExecutionRecord]:
        """Running executions plus stored ones parked in waiting status."""
        return self.store.list_current(workflow_id, active_registry=self.active_registry)

    def list(self, list_filter: Optional[ExecutionListFilter] = None) -> List[ExecutionRecord]:
        return self.store.list(list_filter)

    def get(self, execution_id: str) -> ExecutionRecord:
        """Live snapshot of a running execution, otherwise the stored record."""
        entry = self.active_registry.get(execution_id)
        if entry is not None and entry.record is not None:
            return entry.record.model_copy(deep=True)
        return self.store.get(execution_id)

    def delete(self, delete_filter: ExecutionDeleteFilter) -> int:
        return self.store.delete(delete_filter)

    # ==================== Internals ====================

    async def _execute(
        self,
        workflow: WorkflowDefinition,
        *,
        mode: ExecutionMode,
        initial_input: Optional[ItemCollection] = None,
        pin_data: Optional[PinData] = None,
        seed_run_data: Optional[RunData] = None,
        client_run_data: Optional[RunData] = None,
        start_nodes: Optional[List[str]] = None,
        destination_node: Optional[str] = None,
        execution_id: Optional[str] = None,
        retry_of: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ExecutionRecord:
        graph = GraphBuilder(workflow, self.node_registry).build()

        if destination_node is not None and destination_node not in graph.nodes:
            raise ValueError(f"Destination node not found in workflow: {destination_node}")

        unknown_start = [node_id for node_id in start_nodes or [] if node_id not in graph.nodes]
        if unknown_start:
            raise ValueError(f"Start node(s) not found in workflow: {', '.join(unknown_start)}")

        if client_run_data:
            seed_run_data = self._seed_from_run_data(graph, client_run_data, start_nodes or [])

        execution_id = execution_id or str(uuid.uuid4())
        if execution_id in self.active_registry or self.store.exists(execution_id):
            raise ValueError(f"Execution id already in use: {execution_id}")

        execution_config = get_execution_config(self.settings, workflow.settings)
        logger.debug(f"Merged execution config: {execution_config}")

        record = ExecutionRecord(
            id=execution_id,
            workflow_id=workflow.workflow_id,
            mode=mode,
            trigger_data=initial_input,
            pin_data=pin_data,
            retry_of=retry_of,
            workflow_snapshot=workflow.model_copy(deep=True),
            metadata=dict(metadata or {}),
        )
        if destination_node is not None:
            record.metadata["destination_node"] = destination_node

        cancel_token = CancellationToken()
        self.active_registry.register(record.id, cancel_token, record=record)

        scheduler = ExecutionScheduler(self.node_executor, execution_config)
        try:
            await scheduler.run(
                graph,
                record,
                cancel_token,
                initial_input=initial_input,
                pin_data=pin_data,
                seed_run_data=seed_run_data,
                destination_node=destination_node,
            )
        except Exception:
            # Scheduler sealed the record as failed; keep it, then propagate
            if record.is_sealed:
                try:
                    self.store.save(record)
                except StoreError as store_error:
                    logger.error(f"Failed to persist aborted execution {record.id}: {store_error}")
            raise
        finally:
            self.active_registry.unregister(record.id)

        self.store.save(record)
        return record

    @staticmethod
    def _seed_from_run_data(graph: ValidatedGraph, run_data: RunData, start_nodes: List[str]) -> RunData:
        """
        Pick the caller-supplied results a partial re-run can reuse.

        Start nodes and everything downstream of them run again; of the rest,
        only nodes of this graph whose latest attempt succeeded are reused.
        """
        rerun = graph.descendants(start_nodes)
        seed: RunData = {}
        for node_id, tasks in run_data.items():
            if node_id not in graph.nodes or node_id in rerun or not tasks:
                continue
            tasks = [TaskData.model_validate(task) for task in tasks]
            if tasks[-1].status == TaskStatus.SUCCESS:
                seed[node_id] = tasks
        logger.info(f"📊 Reusing supplied results of {len(seed)} node(s), re-running from {start_nodes or 'roots'}")
        return seed

    def _detect_structure_changes(
        self,
        snapshot: WorkflowDefinition,
        current: WorkflowDefinition,
    ) -> List[str]:
        """
        Detect structural changes between workflow snapshot and current version.

        Returns:
            List of warning strings (empty when the structure is unchanged)
        """
        warnings = []

        snapshot_node_ids = {node.node_id for node in snapshot.nodes}
        current_node_ids = {node.node_id for node in current.nodes}

        deleted_nodes = sorted(snapshot_node_ids - current_node_ids)
        if deleted_nodes:
            warnings.append(
                f"Deleted nodes: {len(deleted_nodes)} node(s) were removed from the workflow. "
                f"IDs: {', '.join(deleted_nodes[:5])}{'...' if len(deleted_nodes) > 5 else ''}"
            )

        added_nodes = current_node_ids - snapshot_node_ids
        if added_nodes:
            warnings.append(
                f"New nodes: {len(added_nodes)} node(s) were added to the workflow. "
                f"They will be executed if their dependencies are met."
            )

        snapshot_connections = {
            (conn.source_node_id, conn.source_port, conn.target_node_id, conn.target_port)
            for conn in snapshot.connections
        }
        current_connections = {
            (conn.source_node_id, conn.source_port, conn.target_node_id, conn.target_port)
            for conn in current.connections
        }

        removed_connections = snapshot_connections - current_connections
        added_connections = current_connections - snapshot_connections

        if removed_connections:
            warnings.append(
                f"Removed connections: {len(removed_connections)} connection(s) were removed. "
                f"Data flow between nodes may have changed."
            )
        if added_connections:
            warnings.append(
                f"New connections: {len(added_connections)} connection(s) were added. "
                f"This may affect which nodes receive data."
            )

        return warnings
