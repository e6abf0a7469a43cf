"""
Execution Model

Stores sealed workflow execution records with their per-node run data.
"""

import uuid

from sqlalchemy import JSON, Column, DateTime, String

from flowrunner.database.base import Base, get_current_timestamp


class Execution(Base):
    """
    Workflow execution record.

    Rows are written once, when the execution is sealed, and never updated.
    Timestamps are stored in UTC.
    """
    __tablename__ = "executions"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        nullable=False,
    )
    workflow_id = Column(String(255), nullable=False, index=True)

    # Status: success, failed, canceled, waiting
    status = Column(String(20), nullable=False, index=True)

    # How the execution was initiated: manual, trigger, retry
    mode = Column(String(20), nullable=False, default="manual")

    # Timing
    started_at = Column(DateTime(timezone=True), default=get_current_timestamp, nullable=False, index=True)
    stopped_at = Column(DateTime(timezone=True), nullable=True)
    wait_till = Column(DateTime(timezone=True), nullable=True)

    # Inputs
    trigger_data = Column(JSON, nullable=True)
    pin_data = Column(JSON, nullable=True)
    workflow_snapshot = Column(JSON, nullable=True)  # Workflow definition the run used

    # Results
    run_data = Column(JSON, nullable=False, default=dict)  # node_id -> list of attempts
    last_node_executed = Column(String(255), nullable=True)

    # Error handling
    error = Column(JSON, nullable=True)
    cancel_reason = Column(String(50), nullable=True)

    retry_of = Column(String(36), nullable=True, index=True)

    # Additional metadata (execution_metadata to avoid SQLAlchemy reserved word)
    execution_metadata = Column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Execution(id='{self.id}', workflow_id='{self.workflow_id}', status='{self.status}')>"
