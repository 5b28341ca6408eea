"""SQLAlchemy ORM models for workflow requests and their audit records"""

import uuid
from sqlalchemy import Column, String, Integer, DateTime, Date, ForeignKey, Text, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class WorkflowRequest(Base):
    """Loan, deposit, deposit change or withdrawal request"""

    __tablename__ = "workflow_request"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    number = Column(String(32), nullable=False, unique=True)
    request_type = Column(String(32), nullable=False, index=True)
    owner_id = Column(Text, nullable=False, index=True)
    parent_id = Column(Uuid, ForeignKey("workflow_request.id"), nullable=True, index=True)
    status = Column(String(48), nullable=False, index=True)
    current_step = Column(String(32), nullable=True)
    parameters = Column(JSON, nullable=False)
    computed_figures = Column(JSON, nullable=True)  # decimal strings
    submitted_at = Column(DateTime(timezone=True), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    activated_at = Column(Date, nullable=True)
    maturity_date = Column(Date, nullable=True)
    revision_count = Column(Integer, nullable=False, default=0)
    last_revised_at = Column(DateTime(timezone=True), nullable=True)
    last_revised_by = Column(Text, nullable=True)
    revision_notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    approvals = relationship(
        "WorkflowApprovalStep",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="WorkflowApprovalStep.position",
    )
    executions = relationship(
        "WorkflowExecutionRecord",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="WorkflowExecutionRecord.created_at",
    )
    history = relationship(
        "WorkflowHistoryEntry",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="WorkflowHistoryEntry.sequence",
    )

    # Optimistic concurrency: every flush checks and bumps the version
    __mapper_args__ = {"version_id_col": version}


class WorkflowApprovalStep(Base):
    """One stage slot of a request's approval sequence"""

    __tablename__ = "workflow_approval_step"
    __table_args__ = (UniqueConstraint("request_id", "stage", name="uq_approval_step_stage"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Uuid, ForeignKey("workflow_request.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    stage = Column(String(32), nullable=False)
    kind = Column(String(16), nullable=False)
    decision = Column(String(16), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    approver_id = Column(Text, nullable=True)

    request = relationship("WorkflowRequest", back_populates="approvals")


class WorkflowExecutionRecord(Base):
    """Disbursement or authorization confirmation"""

    __tablename__ = "workflow_execution_record"
    __table_args__ = (UniqueConstraint("request_id", "stage", name="uq_execution_record_stage"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid, ForeignKey("workflow_request.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(16), nullable=False)
    stage = Column(String(32), nullable=False)
    confirmed_by = Column(Text, nullable=False)
    occurred_on = Column(Date, nullable=False)
    occurred_time = Column(String(5), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    request = relationship("WorkflowRequest", back_populates="executions")


class WorkflowHistoryEntry(Base):
    """Append-only audit trail"""

    __tablename__ = "workflow_history_entry"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid, ForeignKey("workflow_request.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    action = Column(String(16), nullable=False)
    status = Column(String(48), nullable=False)
    current_step = Column(String(32), nullable=True)
    snapshot = Column(JSON, nullable=False)
    actor_id = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    request = relationship("WorkflowRequest", back_populates="history")
