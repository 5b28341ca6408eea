"""SQLAlchemy request store mapping ORM rows to domain aggregates"""

import copy
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from koperasi_workflow.domain.exceptions import ConflictRetry, NotFound
from koperasi_workflow.domain.models import (
    ApprovalStep,
    Decision,
    ExecutionKind,
    ExecutionRecord,
    HistoryAction,
    HistoryEntry,
    Request,
    RequestStatus,
    RequestType,
    Stage,
    StageKind,
)
from koperasi_workflow.domain.ports import RequestStore
from koperasi_workflow.domain.schemas import load_parameters
from koperasi_workflow.infrastructure.database.models import (
    WorkflowApprovalStep,
    WorkflowExecutionRecord,
    WorkflowHistoryEntry,
    WorkflowRequest,
)
from koperasi_workflow.infrastructure.database.session import session_scope


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum(enum_cls, value):
    return enum_cls(value) if value is not None else None


def _dump_figures(figures: Optional[Dict[str, Decimal]]) -> Optional[Dict[str, str]]:
    if figures is None:
        return None
    return {key: str(value) for key, value in figures.items()}


def _load_figures(figures: Optional[Dict[str, str]]) -> Optional[Dict[str, Decimal]]:
    if figures is None:
        return None
    return {key: Decimal(value) for key, value in figures.items()}


class RequestRepository:
    """Row mapping for workflow requests within one session"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, request: Request) -> WorkflowRequest:
        """Insert a request with its approval steps and history"""
        row = WorkflowRequest(id=request.id, number=request.number, request_type=request.request_type.value)
        self._apply(row, request)
        self.db.add(row)
        self.db.flush()  # assigns the version
        return row

    def lock(self, request_id: uuid.UUID) -> Optional[WorkflowRequest]:
        """Fetch a request row with SELECT ... FOR UPDATE"""
        return self.db.execute(
            select(WorkflowRequest).where(WorkflowRequest.id == request_id).with_for_update()
        ).scalar_one_or_none()

    def fetch(self, request_id: uuid.UUID) -> Optional[WorkflowRequest]:
        return self.db.get(WorkflowRequest, request_id)

    def search(
        self,
        request_type: Optional[RequestType] = None,
        status: Optional[RequestStatus] = None,
        owner_id: Optional[str] = None,
        parent_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> List[WorkflowRequest]:
        query = select(WorkflowRequest).options(
            selectinload(WorkflowRequest.approvals),
            selectinload(WorkflowRequest.executions),
            selectinload(WorkflowRequest.history),
        )
        if request_type is not None:
            query = query.where(WorkflowRequest.request_type == RequestType(request_type).value)
        if status is not None:
            query = query.where(WorkflowRequest.status == RequestStatus(status).value)
        if owner_id is not None:
            query = query.where(WorkflowRequest.owner_id == owner_id)
        if parent_id is not None:
            query = query.where(WorkflowRequest.parent_id == parent_id)
        query = query.order_by(WorkflowRequest.submitted_at.desc(), WorkflowRequest.number.desc())
        if limit is not None:
            query = query.limit(limit)
        return list(self.db.execute(query).scalars())

    def last_number(self, number_prefix: str) -> Optional[str]:
        return self.db.execute(
            select(func.max(WorkflowRequest.number)).where(WorkflowRequest.number.like(f"{number_prefix}%"))
        ).scalar()

    def save(self, row: WorkflowRequest, request: Request) -> None:
        self._apply(row, request)
        self.db.flush()

    def _apply(self, row: WorkflowRequest, request: Request) -> None:
        """Copy aggregate state onto the row; child records are only ever added or updated"""
        row.owner_id = request.owner_id
        row.parent_id = request.parent_id
        row.status = request.status.value
        row.current_step = request.current_step.value if request.current_step else None
        row.parameters = request.parameters.model_dump(mode="json")
        row.computed_figures = _dump_figures(request.computed_figures)
        row.submitted_at = request.submitted_at
        row.approved_at = request.approved_at
        row.rejected_at = request.rejected_at
        row.completed_at = request.completed_at
        row.cancelled_at = request.cancelled_at
        row.rejection_reason = request.rejection_reason
        row.activated_at = request.activated_at
        row.maturity_date = request.maturity_date
        row.revision_count = request.revision_count
        row.last_revised_at = request.last_revised_at
        row.last_revised_by = request.last_revised_by
        row.revision_notes = request.revision_notes
        # Always dirty the row so the version column is bumped
        row.updated_at = datetime.now(timezone.utc)

        steps = {step.stage: step for step in row.approvals}
        for approval in request.approvals:
            step = steps.get(approval.stage.value)
            if step is None:
                step = WorkflowApprovalStep(position=approval.position, stage=approval.stage.value)
                row.approvals.append(step)
            step.kind = approval.kind.value
            step.decision = approval.decision.value if approval.decision else None
            step.decided_at = approval.decided_at
            step.notes = approval.notes
            step.approver_id = approval.approver_id

        known_executions = {record.id for record in row.executions}
        for execution in request.executions:
            if execution.id in known_executions:
                continue
            row.executions.append(
                WorkflowExecutionRecord(
                    id=execution.id,
                    kind=execution.kind.value,
                    stage=execution.stage.value,
                    confirmed_by=execution.confirmed_by,
                    occurred_on=execution.occurred_on,
                    occurred_time=execution.occurred_time,
                    notes=execution.notes,
                    created_at=execution.created_at,
                )
            )

        known_history = {entry.id for entry in row.history}
        for index, entry in enumerate(request.history):
            if entry.id in known_history:
                continue
            row.history.append(
                WorkflowHistoryEntry(
                    id=entry.id,
                    sequence=index,
                    action=entry.action.value,
                    status=entry.status.value,
                    current_step=entry.current_step.value if entry.current_step else None,
                    snapshot=entry.snapshot,
                    actor_id=entry.actor_id,
                    notes=entry.notes,
                    created_at=entry.created_at,
                )
            )

    @staticmethod
    def to_domain(row: WorkflowRequest) -> Request:
        request_type = RequestType(row.request_type)
        return Request(
            id=row.id,
            request_type=request_type,
            number=row.number,
            owner_id=row.owner_id,
            parent_id=row.parent_id,
            status=RequestStatus(row.status),
            current_step=_enum(Stage, row.current_step),
            parameters=load_parameters(request_type, row.parameters),
            computed_figures=_load_figures(row.computed_figures),
            submitted_at=_aware(row.submitted_at),
            approved_at=_aware(row.approved_at),
            rejected_at=_aware(row.rejected_at),
            completed_at=_aware(row.completed_at),
            cancelled_at=_aware(row.cancelled_at),
            rejection_reason=row.rejection_reason,
            activated_at=row.activated_at,
            maturity_date=row.maturity_date,
            revision_count=row.revision_count,
            last_revised_at=_aware(row.last_revised_at),
            last_revised_by=row.last_revised_by,
            revision_notes=row.revision_notes,
            version=row.version,
            approvals=[
                ApprovalStep(
                    position=step.position,
                    stage=Stage(step.stage),
                    kind=StageKind(step.kind),
                    decision=_enum(Decision, step.decision),
                    decided_at=_aware(step.decided_at),
                    notes=step.notes,
                    approver_id=step.approver_id,
                )
                for step in sorted(row.approvals, key=lambda s: s.position)
            ],
            executions=[
                ExecutionRecord(
                    id=record.id,
                    kind=ExecutionKind(record.kind),
                    stage=Stage(record.stage),
                    confirmed_by=record.confirmed_by,
                    occurred_on=record.occurred_on,
                    occurred_time=record.occurred_time,
                    notes=record.notes,
                    created_at=_aware(record.created_at),
                )
                for record in sorted(row.executions, key=lambda r: r.created_at)
            ],
            history=[
                HistoryEntry(
                    id=entry.id,
                    action=HistoryAction(entry.action),
                    status=RequestStatus(entry.status),
                    current_step=_enum(Stage, entry.current_step),
                    snapshot=dict(entry.snapshot or {}),
                    actor_id=entry.actor_id,
                    notes=entry.notes,
                    created_at=_aware(entry.created_at),
                )
                for entry in sorted(row.history, key=lambda e: e.sequence)
            ],
        )


class SqlRequestStore(RequestStore):
    """RequestStore backed by SQLAlchemy; one session per operation"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def add(self, request: Request) -> Request:
        try:
            with session_scope(self.session_factory) as db:
                row = RequestRepository(db).create(request)
                request.version = row.version
        except IntegrityError as e:
            raise ConflictRetry(f"Request number {request.number} was taken concurrently") from e
        return request

    def get(self, request_id: uuid.UUID) -> Request:
        with session_scope(self.session_factory) as db:
            row = RequestRepository(db).fetch(request_id)
            if row is None:
                raise NotFound(f"Request {request_id} not found")
            return RequestRepository.to_domain(row)

    @contextmanager
    def atomic_many(self, request_ids: Iterable[uuid.UUID]) -> Iterator[Dict[uuid.UUID, Request]]:
        ordered = sorted(set(request_ids))
        db = self.session_factory()
        try:
            repository = RequestRepository(db)
            rows = {}
            for request_id in ordered:
                row = repository.lock(request_id)
                if row is None:
                    raise NotFound(f"Request {request_id} not found")
                rows[request_id] = row

            requests = {request_id: repository.to_domain(row) for request_id, row in rows.items()}
            originals = copy.deepcopy(requests)
            yield requests

            changed = [request_id for request_id in ordered if requests[request_id] != originals[request_id]]
            for request_id in changed:
                repository.save(rows[request_id], requests[request_id])
            db.commit()
            for request_id in changed:
                requests[request_id].version = rows[request_id].version
        except StaleDataError as e:
            db.rollback()
            raise ConflictRetry(f"Requests {', '.join(map(str, ordered))} were modified concurrently") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_requests(
        self,
        request_type: Optional[RequestType] = None,
        status: Optional[RequestStatus] = None,
        owner_id: Optional[str] = None,
        parent_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> List[Request]:
        with session_scope(self.session_factory) as db:
            rows = RequestRepository(db).search(request_type, status, owner_id, parent_id, limit)
            return [RequestRepository.to_domain(row) for row in rows]

    def last_number(self, number_prefix: str) -> Optional[str]:
        with session_scope(self.session_factory) as db:
            return RequestRepository(db).last_number(number_prefix)
