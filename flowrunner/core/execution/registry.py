"""
Active Execution Registry

Process-local table of in-flight executions, used to stop them and to list
what is currently running. Never persisted; empty after a restart.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from flowrunner.core.execution.cancellation import CancellationToken
from flowrunner.schemas.execution import ExecutionRecord
from flowrunner.utils.timezone import get_local_now

logger = logging.getLogger(__name__)


@dataclass
class ActiveExecutionEntry:
    execution_id: str
    cancel: CancellationToken
    workflow_id: Optional[str] = None
    record: Optional[ExecutionRecord] = None  # Live reference, owned by the scheduler
    started_at: datetime = field(default_factory=get_local_now)


class ActiveExecutionRegistry:
    """Thread-safe map of execution_id -> ActiveExecutionEntry."""

    def __init__(self):
        self._entries: Dict[str, ActiveExecutionEntry] = {}
        self._lock = threading.Lock()

    def register(
        self,
        execution_id: str,
        cancel: CancellationToken,
        record: Optional[ExecutionRecord] = None,
        workflow_id: Optional[str] = None,
    ) -> ActiveExecutionEntry:
        """
        Register a running execution.

        Raises:
            ValueError: The id is already registered
        """
        if workflow_id is None and record is not None:
            workflow_id = record.workflow_id

        entry = ActiveExecutionEntry(
            execution_id=execution_id,
            cancel=cancel,
            workflow_id=workflow_id,
            record=record,
        )
        with self._lock:
            if execution_id in self._entries:
                raise ValueError(f"Execution {execution_id} is already registered")
            self._entries[execution_id] = entry

        logger.debug(f"Registered active execution {execution_id} (workflow={workflow_id})")
        return entry

    def unregister(self, execution_id: str) -> Optional[ActiveExecutionEntry]:
        with self._lock:
            entry = self._entries.pop(execution_id, None)
        if entry is not None:
            logger.debug(f"Unregistered active execution {execution_id}")
        return entry

    def get(self, execution_id: str) -> Optional[ActiveExecutionEntry]:
        with self._lock:
            return self._entries.get(execution_id)

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def list_entries(self, workflow_id: Optional[str] = None) -> List[ActiveExecutionEntry]:
        with self._lock:
            entries = list(self._entries.values())
        if workflow_id is not None:
            entries = [entry for entry in entries if entry.workflow_id == workflow_id]
        return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, execution_id: str) -> bool:
        with self._lock:
            return execution_id in self._entries


_active_registry = ActiveExecutionRegistry()


def get_active_registry() -> ActiveExecutionRegistry:
    """Process-wide registry shared by every orchestrator that is not given its own."""
    return _active_registry
