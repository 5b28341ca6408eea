"""DSP revision of a loan's amount and tenor during the first review"""

from koperasi_workflow.config import Settings
from koperasi_workflow.domain.exceptions import Forbidden, InvalidState, RevisionNotAllowed, ValidationError
from koperasi_workflow.domain.figures import compute_figures
from koperasi_workflow.domain.intake import check_loan_terms
from koperasi_workflow.domain.models import (
    Actor,
    HistoryAction,
    LoanType,
    Request,
    RequestStatus,
    RequestType,
    Role,
    Stage,
)
from koperasi_workflow.domain.schemas import LoanParameters, LoanRevision
from koperasi_workflow.domain.state_machine import record_history
from koperasi_workflow.domain.workflows import is_terminal
from koperasi_workflow.utils.date_utils import Clock

REVISABLE_STATUSES = (RequestStatus.SUBMITTED, RequestStatus.UNDER_REVIEW_DSP)

# Price fields a revision may carry, per loan type
_PRICE_FIELDS = {
    LoanType.CASH_LOAN: ("loan_amount",),
    LoanType.GOODS_REIMBURSE: ("item_price",),
    LoanType.GOODS_ONLINE: ("item_price",),
    LoanType.GOODS_PHONE: ("retail_price", "cooperative_price"),
}
_ALL_PRICE_FIELDS = ("loan_amount", "item_price", "retail_price", "cooperative_price")


def revise(loan: Request, actor: Actor, revision: LoanRevision, settings: Settings, clock: Clock) -> Request:
    """
    Overwrite a loan's monetary fields and tenor while DSP is reviewing it.

    Requirements:
    - Terminal loans are immutable (InvalidState)
    - Only loans still at the DSP step (SUBMITTED or UNDER_REVIEW_DSP)
    - Only the DSP role
    - Payload fields must match the loan type; GOODS_PHONE sets both
      retail and cooperative prices, and the cooperative price is financed
    - Status and current step are left alone

    Args:
        loan: Loan request, mutated in place
        actor: Acting DSP staff member
        revision: New figures plus mandatory revision notes
        settings: Loan limits and money quantum
        clock: Source of the revision timestamp

    Returns:
        The revised loan with recomputed figures and one REVISED history entry
    """
    if is_terminal(loan.request_type, loan.status):
        raise InvalidState(f"{loan.number} is already {loan.status.value}")
    if (
        loan.request_type != RequestType.LOAN
        or loan.current_step != Stage.DSP
        or loan.status not in REVISABLE_STATUSES
    ):
        raise RevisionNotAllowed(f"{loan.number} can only be revised while under DSP review")
    if actor.role != Role.DSP:
        raise Forbidden("Only DSP staff can revise a loan")

    params: LoanParameters = loan.parameters
    allowed = _PRICE_FIELDS[params.loan_type]

    for name in _ALL_PRICE_FIELDS:
        value = getattr(revision, name)
        if name in allowed and value is None:
            raise ValidationError(f"{name} is required to revise a {params.loan_type.value} loan")
        if name not in allowed and value is not None:
            raise ValidationError(f"{name} does not apply to a {params.loan_type.value} loan")

    update = {name: getattr(revision, name) for name in allowed}
    update["tenor_months"] = revision.tenor_months
    revised = params.model_copy(update=update)
    check_loan_terms(revised.loan_type, revised.principal, revised.tenor_months, settings)

    now = clock.now()
    loan.parameters = revised
    loan.computed_figures = compute_figures(RequestType.LOAN, revised, settings)
    loan.revision_count += 1
    loan.revision_notes = revision.revision_notes
    loan.last_revised_at = now
    loan.last_revised_by = actor.user_id

    record_history(
        loan,
        HistoryAction.REVISED,
        actor.user_id,
        now,
        revision.revision_notes,
        revision_count=loan.revision_count,
        computed_figures=loan.computed_figures,
        **update,
    )
    return loan
