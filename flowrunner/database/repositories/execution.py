"""
Execution Repository

The execution store: persists sealed execution records and serves the
list / get / delete operations. Records are immutable once stored.
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from flowrunner.core.errors import ExecutionNotFoundError, StoreError
from flowrunner.database.models.execution import Execution
from flowrunner.schemas.execution import (
    ExecutionDeleteFilter,
    ExecutionListFilter,
    ExecutionRecord,
    ExecutionStatus,
)
from flowrunner.utils.timezone import to_local

if TYPE_CHECKING:
    from flowrunner.core.execution.registry import ActiveExecutionRegistry

logger = logging.getLogger(__name__)


def _to_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored in UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _from_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    return to_local(dt) if dt is not None else None


class ExecutionRepository:
    """
    Repository for execution database operations.

    Every SQLAlchemy failure is rolled back and re-raised as StoreError.
    """

    def __init__(self, db: Session):
        """
        Initialize repository.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # ==================== Write ====================

    def save(self, record: ExecutionRecord) -> ExecutionRecord:
        """
        Persist a sealed execution record.

        Args:
            record: Record in a terminal status

        Returns:
            The saved record

        Raises:
            StoreError: Record not sealed, id already stored, or database failure
        """
        if not record.is_sealed:
            raise StoreError(
                f"Cannot store execution {record.id} in non-terminal status {record.status.value}",
                record=record,
            )

        try:
            if self.db.get(Execution, record.id) is not None:
                raise StoreError(f"Execution {record.id} is already stored and cannot be modified", record=record)

            self.db.add(self._to_model(record))
            self.db.commit()

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store execution {record.id}: {e}", exc_info=True)
            raise StoreError(f"Failed to store execution {record.id}: {e}", record=record) from e

        logger.info(f"💾 Stored execution {record.id} ({record.status.value})")
        return record

    def delete(self, delete_filter: ExecutionDeleteFilter) -> int:
        """
        Delete stored executions.

        ids and delete_before select the union of both sets; filters
        (workflow_id, status) narrows the selection further.

        Returns:
            Number of executions deleted
        """
        selectors = []
        if delete_filter.ids:
            selectors.append(Execution.id.in_(delete_filter.ids))
        if delete_filter.delete_before is not None:
            selectors.append(Execution.started_at < _to_db_time(delete_filter.delete_before))

        conditions = [or_(*selectors)]
        conditions.extend(self._filter_conditions(
            workflow_id=delete_filter.filters.get("workflow_id"),
            status=delete_filter.filters.get("status"),
        ))

        try:
            count = (
                self.db.query(Execution)
                .filter(and_(*conditions))
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete executions: {e}", exc_info=True)
            raise StoreError(f"Failed to delete executions: {e}") from e

        logger.info(f"🗑️ Deleted {count} execution(s)")
        return count

    # ==================== Read ====================

    def get(self, execution_id: str) -> ExecutionRecord:
        """
        Raises:
            ExecutionNotFoundError: No stored execution with this id
        """
        try:
            row = self.db.get(Execution, execution_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"Failed to load execution {execution_id}: {e}") from e

        if row is None:
            raise ExecutionNotFoundError(execution_id)
        return self._to_record(row)

    def exists(self, execution_id: str) -> bool:
        try:
            return self.db.get(Execution, execution_id) is not None
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"Failed to load execution {execution_id}: {e}") from e

    def list(self, list_filter: Optional[ExecutionListFilter] = None) -> List[ExecutionRecord]:
        """
        List stored executions, newest first.

        last_id returns executions older than the given one (next page),
        first_id executions newer than it (previous page).
        """
        list_filter = list_filter or ExecutionListFilter()

        try:
            query = self.db.query(Execution)

            conditions = self._filter_conditions(list_filter.workflow_id, list_filter.status)
            if list_filter.last_id:
                cursor = self._cursor_row(list_filter.last_id)
                conditions.append(or_(
                    Execution.started_at < cursor.started_at,
                    and_(Execution.started_at == cursor.started_at, Execution.id < cursor.id),
                ))
            if list_filter.first_id:
                cursor = self._cursor_row(list_filter.first_id)
                conditions.append(or_(
                    Execution.started_at > cursor.started_at,
                    and_(Execution.started_at == cursor.started_at, Execution.id > cursor.id),
                ))
            if conditions:
                query = query.filter(and_(*conditions))

            rows = (
                query.order_by(Execution.started_at.desc(), Execution.id.desc())
                .limit(list_filter.limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"Failed to list executions: {e}") from e

        return [self._to_record(row) for row in rows]

    def list_current(
        self,
        workflow_id: Optional[str] = None,
        active_registry: Optional["ActiveExecutionRegistry"] = None,
    ) -> List[ExecutionRecord]:
        """
        Executions that are not finished: live ones from the active registry
        (snapshots) followed by stored executions parked in waiting status.
        """
        current: List[ExecutionRecord] = []
        seen = set()

        if active_registry is not None:
            entries = sorted(
                active_registry.list_entries(workflow_id),
                key=lambda entry: entry.started_at,
                reverse=True,
            )
            for entry in entries:
                if entry.record is None:
                    continue
                current.append(entry.record.model_copy(deep=True))
                seen.add(entry.execution_id)

        try:
            query = self.db.query(Execution).filter(Execution.status == ExecutionStatus.WAITING.value)
            if workflow_id is not None:
                query = query.filter(Execution.workflow_id == workflow_id)
            rows = query.order_by(Execution.started_at.desc(), Execution.id.desc()).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"Failed to list current executions: {e}") from e

        current.extend(self._to_record(row) for row in rows if row.id not in seen)
        return current

    # ==================== Helpers ====================

    def _cursor_row(self, execution_id: str) -> Execution:
        row = self.db.get(Execution, execution_id)
        if row is None:
            raise ExecutionNotFoundError(execution_id)
        return row

    @staticmethod
    def _filter_conditions(workflow_id=None, status=None) -> List:
        conditions = []
        if workflow_id:
            conditions.append(Execution.workflow_id == workflow_id)
        if status:
            statuses = status if isinstance(status, (list, tuple, set)) else [status]
            conditions.append(Execution.status.in_([ExecutionStatus(value).value for value in statuses]))
        return conditions

    @staticmethod
    def _to_model(record: ExecutionRecord) -> Execution:
        data = record.model_dump(mode="json")
        return Execution(
            id=record.id,
            workflow_id=record.workflow_id,
            status=record.status.value,
            mode=record.mode.value,
            started_at=_to_db_time(record.started_at),
            stopped_at=_to_db_time(record.stopped_at),
            wait_till=_to_db_time(record.wait_till),
            trigger_data=data["trigger_data"],
            pin_data=data["pin_data"],
            workflow_snapshot=data["workflow_snapshot"],
            run_data=data["run_data"],
            last_node_executed=record.last_node_executed,
            error=data["error"],
            cancel_reason=record.cancel_reason,
            retry_of=record.retry_of,
            execution_metadata=data["metadata"],
        )

    @staticmethod
    def _to_record(row: Execution) -> ExecutionRecord:
        return ExecutionRecord.model_validate({
            "id": row.id,
            "workflow_id": row.workflow_id,
            "status": row.status,
            "mode": row.mode,
            "started_at": _from_db_time(row.started_at),
            "stopped_at": _from_db_time(row.stopped_at),
            "wait_till": _from_db_time(row.wait_till),
            "trigger_data": row.trigger_data,
            "pin_data": row.pin_data,
            "workflow_snapshot": row.workflow_snapshot,
            "run_data": row.run_data or {},
            "last_node_executed": row.last_node_executed,
            "error": row.error,
            "cancel_reason": row.cancel_reason,
            "retry_of": row.retry_of,
            "metadata": row.execution_metadata or {},
        })
