"""
Approval state machine shared by every request type.

A request walks its registry sequence one stage at a time. Decision stages
are approved or rejected by the stage's role; execution stages are confirmed
with a disbursement/authorization record. Every transition appends exactly
one history entry, and terminal requests never move again.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from koperasi_workflow.config import Settings
from koperasi_workflow.domain import intake
from koperasi_workflow.domain.exceptions import (
    AlreadyConfirmed,
    Forbidden,
    InvalidState,
    ValidationError,
)
from koperasi_workflow.domain.figures import compute_figures
from koperasi_workflow.domain.models import (
    Actor,
    ApprovalStep,
    Decision,
    ExecutionRecord,
    HistoryAction,
    HistoryEntry,
    Request,
    RequestStatus,
    RequestType,
    Stage,
    StageKind,
)
from koperasi_workflow.domain.schemas import (
    DepositChangeDraft,
    DepositChangeParameters,
    DepositDraft,
    ExecutionConfirmation,
    LoanDraft,
    WithdrawalDraft,
)
from koperasi_workflow.domain.workflows import (
    StageDefinition,
    cancellable_statuses,
    definition_for,
    is_terminal,
    next_stage,
    sequence_for,
    stage_definition,
)
from koperasi_workflow.utils.date_utils import Clock, activation_dates, add_months


def snapshot(**fields: Any) -> Dict[str, Any]:
    """JSON-safe copy of the fields a transition changed"""
    safe = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, (date, datetime)):
            value = value.isoformat()
        elif isinstance(value, dict):
            value = snapshot(**value)
        safe[key] = value
    return safe


def record_history(
    request: Request,
    action: HistoryAction,
    actor_id: str,
    now: datetime,
    notes: Optional[str] = None,
    **changed: Any,
) -> HistoryEntry:
    entry = HistoryEntry(
        action=action,
        status=request.status,
        current_step=request.current_step,
        actor_id=actor_id,
        created_at=now,
        snapshot=snapshot(**changed),
        notes=notes,
    )
    request.history.append(entry)
    return entry


def submit(
    draft,
    owner_id: str,
    number: str,
    settings: Settings,
    clock: Clock,
    parent: Optional[Request] = None,
    siblings: Iterable[Request] = (),
) -> Request:
    """
    Build a new request from a validated draft.

    One ApprovalStep is created per registry stage. The request starts at
    the first stage with its waiting status, and figures are computed when
    the parameters carry an amount.
    """
    now = clock.now()
    today = now.date()

    if isinstance(draft, LoanDraft):
        parameters = intake.loan_parameters(draft, settings)
    elif isinstance(draft, DepositDraft):
        parameters = intake.deposit_parameters(draft, settings)
    elif isinstance(draft, DepositChangeDraft):
        parameters = intake.deposit_change_parameters(draft, owner_id, settings, today, parent, siblings)
    elif isinstance(draft, WithdrawalDraft):
        parameters = intake.withdrawal_parameters(draft, owner_id, settings, today, parent, siblings)
    else:
        raise ValidationError(f"Unsupported draft: {type(draft).__name__}")

    request_type = draft.request_type
    sequence = sequence_for(request_type)
    first = sequence[0]

    request = Request(
        request_type=request_type,
        number=number,
        owner_id=owner_id,
        status=first.pending_status,
        current_step=first.stage,
        parameters=parameters,
        computed_figures=compute_figures(request_type, parameters, settings),
        parent_id=parent.id if parent is not None else None,
        submitted_at=now,
        approvals=[
            ApprovalStep(position=index, stage=definition.stage, kind=definition.kind)
            for index, definition in enumerate(sequence, start=1)
        ],
    )
    record_history(
        request,
        HistoryAction.SUBMITTED,
        owner_id,
        now,
        status=request.status,
        current_step=request.current_step,
    )
    return request


def _current_stage(request: Request, actor: Actor) -> StageDefinition:
    """Terminal check, then role gate against the current stage"""
    if is_terminal(request.request_type, request.status) or request.current_step is None:
        raise InvalidState(f"{request.number} is already {request.status.value}")

    definition = stage_definition(request.request_type, request.current_step)
    if actor.role != definition.authorized_role:
        raise Forbidden(f"Stage {definition.stage.value} requires role {definition.authorized_role.value}")
    return definition


def _coerce_decision(decision) -> Decision:
    try:
        decision = Decision(decision)
    except ValueError:
        raise ValidationError(f"Unknown decision: {decision!r}") from None
    if decision not in (Decision.APPROVED, Decision.REJECTED):
        raise ValidationError("Decision must be APPROVED or REJECTED")
    return decision


def _advance(
    request: Request,
    definition: StageDefinition,
    now: datetime,
    settings: Settings,
) -> Dict[str, Any]:
    """Move past ``definition``; returns the fields changed for the history snapshot"""
    following = next_stage(request.request_type, definition.stage)
    changed: Dict[str, Any] = {}

    # Last decision stage done: figures are frozen from here on
    if definition.kind == StageKind.DECISION and (following is None or following.kind == StageKind.EXECUTION):
        request.approved_at = now
        request.computed_figures = compute_figures(request.request_type, request.parameters, settings)
        changed["approved_at"] = now
        changed["computed_figures"] = request.computed_figures

    if following is not None:
        request.current_step = following.stage
        request.status = following.pending_status
    else:
        request.current_step = None
        request.status = definition_for(request.request_type).success_status
        if definition.kind == StageKind.EXECUTION:
            request.completed_at = now
            changed["completed_at"] = now

        if request.request_type == RequestType.DEPOSIT:
            request.activated_at, request.maturity_date = activation_dates(
                now.date(),
                request.parameters.tenor_months,
                settings.cutoff_day,
                settings.payroll_day,
            )
            changed["activated_at"] = request.activated_at
            changed["maturity_date"] = request.maturity_date

    changed["status"] = request.status
    changed["current_step"] = request.current_step
    return changed


def apply_deposit_change(deposit: Request, change: Request, actor_id: str, now: datetime, settings: Settings) -> Request:
    """
    Write an approved change's terms onto its deposit.

    Monthly amount, tenor and rate are replaced; maturity moves to the new
    tenor counted from the original activation, and the deposit's figures
    are recomputed. The admin fee is recorded on the change only.
    """
    params: DepositChangeParameters = change.parameters
    if deposit.id != change.parent_id or deposit.request_type != RequestType.DEPOSIT:
        raise InvalidState(f"{change.number} does not belong to {deposit.number}")
    if deposit.status != RequestStatus.ACTIVE:
        raise InvalidState(f"{deposit.number} is {deposit.status.value}; only ACTIVE deposits can change terms")

    update: Dict[str, Any] = {
        "monthly_amount": params.new_monthly_amount,
        "tenor_months": params.new_tenor_months,
        "interest_rate": params.interest_rate,
    }
    if params.new_amount_code is not None:
        update["amount_code"] = params.new_amount_code
    if params.new_tenor_code is not None:
        update["tenor_code"] = params.new_tenor_code

    deposit.parameters = deposit.parameters.model_copy(update=update)
    deposit.computed_figures = compute_figures(RequestType.DEPOSIT, deposit.parameters, settings)
    if deposit.activated_at is not None:
        deposit.maturity_date = add_months(deposit.activated_at, params.new_tenor_months)

    record_history(
        deposit,
        HistoryAction.CHANGE_APPLIED,
        actor_id,
        now,
        change_id=str(change.id),
        change_number=change.number,
        maturity_date=deposit.maturity_date,
        computed_figures=deposit.computed_figures,
        **update,
    )
    return deposit


def decide(
    request: Request,
    actor: Actor,
    decision,
    notes: Optional[str],
    clock: Clock,
    settings: Settings,
    parent: Optional[Request] = None,
) -> Request:
    """
    Approve or reject the current decision stage.

    Final approval of a DEPOSIT_CHANGE also applies it to ``parent``, which
    the caller must load in the same unit of work.
    """
    definition = _current_stage(request, actor)

    if definition.kind == StageKind.EXECUTION:
        raise InvalidState(f"Stage {definition.stage.value} needs an execution confirmation, not a decision")
    step = request.approval_for(definition.stage)
    if step is None or step.is_decided:
        raise InvalidState(f"Stage {definition.stage.value} is already decided")

    decision = _coerce_decision(decision)
    if (
        decision == Decision.APPROVED
        and request.request_type == RequestType.LOAN
        and definition.stage == Stage.DSP
        and request.computed_figures is None
    ):
        raise ValidationError("Loan has no price yet; revise it before approving")

    now = clock.now()
    step.decision = decision
    step.decided_at = now
    step.notes = notes
    step.approver_id = actor.user_id

    if decision == Decision.REJECTED:
        request.status = RequestStatus.REJECTED
        request.current_step = None
        request.rejected_at = now
        request.rejection_reason = notes
        record_history(
            request,
            HistoryAction.REJECTED,
            actor.user_id,
            now,
            notes,
            stage=definition.stage,
            status=request.status,
            rejection_reason=notes,
        )
        return request

    changed = _advance(request, definition, now, settings)
    record_history(request, HistoryAction.APPROVED, actor.user_id, now, notes, stage=definition.stage, **changed)

    if request.request_type == RequestType.DEPOSIT_CHANGE and request.status == RequestStatus.APPROVED:
        if parent is None:
            raise InvalidState(f"{request.number} cannot be approved without its deposit")
        apply_deposit_change(parent, request, actor.user_id, now, settings)
    return request


def confirm_execution(
    request: Request,
    actor: Actor,
    confirmation: ExecutionConfirmation,
    clock: Clock,
    settings: Settings,
) -> Request:
    """Record a disbursement or authorization and advance past the execution stage"""
    if is_terminal(request.request_type, request.status) or request.current_step is None:
        raise InvalidState(f"{request.number} is already {request.status.value}")

    target = confirmation.stage or request.current_step
    try:
        definition = stage_definition(request.request_type, target)
    except KeyError:
        raise InvalidState(f"{request.request_type.value} has no stage {target.value}") from None

    if request.execution_for(target) is not None:
        raise AlreadyConfirmed(f"Stage {target.value} of {request.number} is already confirmed")
    if definition.kind != StageKind.EXECUTION:
        raise InvalidState(f"Stage {target.value} is a decision stage")
    if actor.role != definition.authorized_role:
        raise Forbidden(f"Stage {target.value} requires role {definition.authorized_role.value}")
    if target != request.current_step:
        raise InvalidState(f"{request.number} is at {request.current_step.value}, not {target.value}")

    now = clock.now()
    record = ExecutionRecord(
        kind=definition.execution_kind,
        stage=target,
        confirmed_by=actor.user_id,
        occurred_on=confirmation.occurred_on or now.date(),
        occurred_time=confirmation.occurred_time,
        notes=confirmation.notes,
        created_at=now,
    )
    request.executions.append(record)

    step = request.approval_for(target)
    step.decision = Decision.CONFIRMED
    step.decided_at = now
    step.notes = confirmation.notes
    step.approver_id = actor.user_id

    changed = _advance(request, definition, now, settings)
    record_history(
        request,
        HistoryAction.CONFIRMED,
        actor.user_id,
        now,
        confirmation.notes,
        stage=target,
        execution_kind=record.kind,
        occurred_on=record.occurred_on,
        occurred_time=record.occurred_time,
        **changed,
    )
    return request


def cancel(request: Request, actor: Actor, clock: Clock) -> Request:
    """Owner withdraws the request while it is still under review"""
    if is_terminal(request.request_type, request.status):
        raise InvalidState(f"{request.number} is already {request.status.value}")
    if request.status not in cancellable_statuses(request.request_type):
        raise InvalidState(f"{request.number} can no longer be cancelled ({request.status.value})")
    if actor.user_id != request.owner_id:
        raise Forbidden("Only the submitting member can cancel a request")

    now = clock.now()
    request.status = RequestStatus.CANCELLED
    request.current_step = None
    request.cancelled_at = now
    record_history(
        request,
        HistoryAction.CANCELLED,
        actor.user_id,
        now,
        status=request.status,
        cancelled_at=now,
    )
    return request
