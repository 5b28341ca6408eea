"""Engine facade: every operation is one atomic read-validate-mutate-write unit"""

import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from koperasi_workflow.config import Settings, settings as default_settings
from koperasi_workflow.domain import revision as revision_handler
from koperasi_workflow.domain import state_machine
from koperasi_workflow.domain.exceptions import DomainException, ValidationError
from koperasi_workflow.domain.figures import Breakdown, breakdown
from koperasi_workflow.domain.models import Actor, Request, RequestStatus, RequestType
from koperasi_workflow.domain.numbering import daily_prefix, format_number, next_sequence, prefix_for
from koperasi_workflow.domain.ports import RequestStore
from koperasi_workflow.domain.schemas import (
    DRAFT_MODELS,
    DepositChangeDraft,
    ExecutionConfirmation,
    LoanDraft,
    LoanRevision,
    WithdrawalDraft,
    load,
    load_draft,
)
from koperasi_workflow.infrastructure.observability.logging import log_rejected_operation, log_transition
from koperasi_workflow.infrastructure.observability.metrics import record_rejection, record_transition
from koperasi_workflow.service.bulk import BulkResult, run_bulk
from koperasi_workflow.utils.date_utils import Clock, SystemClock


class WorkflowEngine:
    """
    Entry point for callers (HTTP handlers, jobs, tests).

    The caller's authentication layer supplies the Actor; the engine only
    enforces the role each stage requires. Expected failures are logged at
    WARNING and re-raised unchanged.
    """

    def __init__(self, store: RequestStore, settings: Optional[Settings] = None, clock: Optional[Clock] = None):
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        # Serializes number allocation and parent checks for new requests
        self._submit_lock = threading.Lock()

    # Submission

    def submit(self, draft, owner_id: str) -> Request:
        """Validate a draft, number it and persist the new request"""
        if type(draft) not in DRAFT_MODELS.values():
            raise ValidationError(f"Unsupported draft: {type(draft).__name__}")

        started = time.perf_counter()
        try:
            with self._submit_lock:
                parent, siblings = self._parent_context(draft)
                number = self._allocate_number(draft)
                request = state_machine.submit(draft, owner_id, number, self.settings, self.clock, parent, siblings)
                self.store.add(request)
        except DomainException as e:
            self._rejected("submit", None, owner_id, e)
            raise

        self._committed(request, "submit", started)
        return request

    def submit_payload(self, request_type: Union[RequestType, str], payload: dict, owner_id: str) -> Request:
        """Submit a raw payload, e.g. a decoded JSON body"""
        try:
            draft = load_draft(RequestType(request_type), payload)
        except ValueError as e:
            # Unknown request type
            raise ValidationError(str(e)) from e
        return self.submit(draft, owner_id)

    def _parent_context(self, draft):
        if not isinstance(draft, (DepositChangeDraft, WithdrawalDraft)) or draft.deposit_id is None:
            return None, ()
        parent = self.store.get(draft.deposit_id)
        siblings = self.store.list_requests(request_type=draft.request_type, parent_id=parent.id)
        return parent, siblings

    def _allocate_number(self, draft) -> str:
        loan_type = draft.loan_type if isinstance(draft, LoanDraft) else None
        prefix = prefix_for(draft.request_type, loan_type)
        today = self.clock.today()
        last = self.store.last_number(daily_prefix(prefix, today))
        return format_number(prefix, today, next_sequence(last))

    # Transitions

    def decide(self, request_id: uuid.UUID, actor: Actor, decision, notes: Optional[str] = None) -> Request:
        """Approve or reject; a deposit change is decided together with its deposit"""
        return self._transition(
            "decide",
            request_id,
            actor,
            lambda request, locked: state_machine.decide(
                request,
                actor,
                decision,
                notes,
                self.clock,
                self.settings,
                locked.get(request.parent_id),
            ),
            with_parent=True,
        )

    def confirm_execution(
        self,
        request_id: uuid.UUID,
        actor: Actor,
        confirmation: Union[ExecutionConfirmation, dict, None] = None,
    ) -> Request:
        payload = load(ExecutionConfirmation, confirmation if confirmation is not None else {})
        return self._transition(
            "confirm_execution",
            request_id,
            actor,
            lambda request, locked: state_machine.confirm_execution(request, actor, payload, self.clock, self.settings),
        )

    def cancel(self, request_id: uuid.UUID, actor: Actor) -> Request:
        return self._transition(
            "cancel",
            request_id,
            actor,
            lambda request, locked: state_machine.cancel(request, actor, self.clock),
        )

    def revise(self, request_id: uuid.UUID, actor: Actor, revision: Union[LoanRevision, dict]) -> Request:
        payload = load(LoanRevision, revision)
        return self._transition(
            "revise",
            request_id,
            actor,
            lambda request, locked: revision_handler.revise(request, actor, payload, self.settings, self.clock),
        )

    def _transition(
        self,
        operation: str,
        request_id: uuid.UUID,
        actor: Actor,
        mutate: Callable[[Request, Dict[uuid.UUID, Request]], Any],
        with_parent: bool = False,
    ) -> Request:
        started = time.perf_counter()
        try:
            request_ids = [request_id]
            if with_parent:
                request_ids.extend(self._linked_ids(request_id))
            with self.store.atomic_many(request_ids) as locked:
                seen = {key: len(value.history) for key, value in locked.items()}
                request = locked[request_id]
                mutate(request, locked)
        except DomainException as e:
            self._rejected(operation, request_id, actor.user_id, e)
            raise

        self._committed(request, operation, started)
        for key, related in locked.items():
            if key != request_id and len(related.history) > seen[key]:
                self._committed(related, operation, started)
        return request

    def _linked_ids(self, request_id: uuid.UUID) -> List[uuid.UUID]:
        """Requests a transition may write besides its own (a change's deposit)"""
        request = self.store.get(request_id)
        if request.request_type == RequestType.DEPOSIT_CHANGE and request.parent_id is not None:
            return [request.parent_id]
        return []

    def _committed(self, request: Request, operation: str, started: float) -> None:
        elapsed = time.perf_counter() - started
        entry = request.history[-1]
        record_transition(request.request_type.value, entry.action.value, elapsed, operation)
        log_transition(
            request_id=str(request.id),
            request_number=request.number,
            request_type=request.request_type.value,
            action=entry.action.value,
            actor_id=entry.actor_id,
            status=request.status.value,
            current_step=request.current_step.value if request.current_step else None,
            duration_ms=round(elapsed * 1000, 3),
        )

    @staticmethod
    def _rejected(operation: str, request_id: Optional[uuid.UUID], actor_id: Optional[str], error: DomainException) -> None:
        record_rejection(operation, error.code)
        log_rejected_operation(operation, str(request_id) if request_id else None, actor_id, error)

    # Bulk

    def bulk_decide(
        self,
        request_ids: Iterable[uuid.UUID],
        actor: Actor,
        decision,
        notes: Optional[str] = None,
    ) -> BulkResult:
        return run_bulk(
            request_ids,
            lambda request_id: self.decide(request_id, actor, decision, notes),
            self.settings.bulk_max_workers,
            "bulk_decide",
        )

    def bulk_confirm_execution(
        self,
        request_ids: Iterable[uuid.UUID],
        actor: Actor,
        confirmation: Union[ExecutionConfirmation, dict, None] = None,
    ) -> BulkResult:
        payload = load(ExecutionConfirmation, confirmation if confirmation is not None else {})
        return run_bulk(
            request_ids,
            lambda request_id: self.confirm_execution(request_id, actor, payload),
            self.settings.bulk_max_workers,
            "bulk_confirm_execution",
        )

    # Reads

    def get(self, request_id: uuid.UUID) -> Request:
        return self.store.get(request_id)

    def list_requests(
        self,
        request_type: Optional[RequestType] = None,
        status: Optional[RequestStatus] = None,
        owner_id: Optional[str] = None,
        parent_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> List[Request]:
        return self.store.list_requests(request_type, status, owner_id, parent_id, limit)

    def schedule(self, request_id: uuid.UUID) -> Breakdown:
        """Month-by-month breakdown recomputed from the request's stored parameters"""
        request = self.store.get(request_id)
        result = breakdown(request.request_type, request.parameters, self.settings)
        if result is None:
            raise ValidationError(f"{request.number} has no price yet")
        return result
