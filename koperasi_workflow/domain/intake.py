"""Turn submission drafts into stored request parameters"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from koperasi_workflow.config import Settings
from koperasi_workflow.domain.calculator import classify_change
from koperasi_workflow.domain.exceptions import Forbidden, NotFound, ValidationError
from koperasi_workflow.domain.models import (
    CalculationMethod,
    LoanType,
    Request,
    RequestStatus,
    RequestType,
)
from koperasi_workflow.domain.schemas import (
    GOODS_LOAN_TYPES,
    DepositChangeDraft,
    DepositChangeParameters,
    DepositDraft,
    DepositParameters,
    LoanDraft,
    LoanParameters,
    WithdrawalDraft,
    WithdrawalParameters,
)
from koperasi_workflow.domain.workflows import is_terminal
from koperasi_workflow.utils.date_utils import months_elapsed


def check_loan_terms(loan_type: LoanType, amount: Optional[Decimal], tenor_months: int, settings: Settings) -> None:
    """Enforce configured loan limits; a missing amount (phone loan before pricing) skips the amount checks"""
    if tenor_months <= 0 or tenor_months > settings.max_loan_tenor:
        raise ValidationError(f"Loan tenor must be between 1 and {settings.max_loan_tenor} months")

    if amount is None:
        return
    if amount < settings.min_loan_amount:
        raise ValidationError(f"Loan amount must be at least {settings.min_loan_amount}")
    if loan_type in GOODS_LOAN_TYPES and amount > settings.max_goods_loan_amount:
        raise ValidationError(f"Goods loan amount cannot exceed {settings.max_goods_loan_amount}")


def installments_paid(deposit: Request, today: date) -> int:
    """Monthly deposits already due since activation, capped at the tenor"""
    if deposit.activated_at is None or today < deposit.activated_at:
        return 0
    tenor = deposit.parameters.tenor_months
    return min(months_elapsed(deposit.activated_at, today) + 1, tenor)


def collected_amount(deposit: Request, today: date) -> Decimal:
    """Principal paid into the deposit so far"""
    return deposit.parameters.monthly_amount * installments_paid(deposit, today)


def require_active_deposit(parent: Optional[Request], owner_id: str) -> Request:
    if parent is None:
        raise NotFound("Deposit not found")
    if parent.request_type != RequestType.DEPOSIT:
        raise ValidationError("Referenced request is not a deposit")
    if parent.owner_id != owner_id:
        raise Forbidden("Deposit belongs to another member")
    if parent.status != RequestStatus.ACTIVE:
        raise ValidationError("Deposit must be ACTIVE")
    return parent


def _reject_pending(siblings: Iterable[Request], request_type: RequestType, label: str) -> None:
    for sibling in siblings:
        if sibling.request_type == request_type and not is_terminal(sibling.request_type, sibling.status):
            raise ValidationError(f"Deposit already has a pending {label} ({sibling.number})")


def loan_parameters(draft: LoanDraft, settings: Settings) -> LoanParameters:
    amount = draft.loan_amount if draft.loan_type == LoanType.CASH_LOAN else draft.item_price
    check_loan_terms(draft.loan_type, amount, draft.tenor_months, settings)

    return LoanParameters(
        loan_type=draft.loan_type,
        tenor_months=draft.tenor_months,
        purpose=draft.purpose,
        interest_rate=settings.loan_interest_rate,
        loan_amount=draft.loan_amount,
        item_name=draft.item_name,
        item_price=draft.item_price,
        item_url=draft.item_url,
        purchase_date=draft.purchase_date,
        notes=draft.notes,
    )


def deposit_parameters(draft: DepositDraft, settings: Settings) -> DepositParameters:
    return DepositParameters(
        monthly_amount=draft.monthly_amount,
        tenor_months=draft.tenor_months,
        interest_rate=settings.deposit_interest_rate,
        calculation_method=CalculationMethod(settings.deposit_calculation_method.upper()),
        amount_code=draft.amount_code,
        tenor_code=draft.tenor_code,
    )


def deposit_change_parameters(
    draft: DepositChangeDraft,
    owner_id: str,
    settings: Settings,
    today: date,
    parent: Optional[Request],
    siblings: Iterable[Request] = (),
) -> DepositChangeParameters:
    """
    Validate a change against its parent deposit.

    The deposit must be ACTIVE, owned by the same member and free of other
    pending changes; the new tenor must exceed the deposits already made.
    """
    deposit = require_active_deposit(parent, owner_id)
    _reject_pending(siblings, RequestType.DEPOSIT_CHANGE, "change")

    current: DepositParameters = deposit.parameters
    change_type = classify_change(
        current.monthly_amount,
        current.tenor_months,
        draft.new_monthly_amount,
        draft.new_tenor_months,
    )

    paid = installments_paid(deposit, today)
    if draft.new_tenor_months <= paid:
        raise ValidationError(f"New tenor must exceed the {paid} deposits already made")

    return DepositChangeParameters(
        deposit_id=deposit.id,
        change_type=change_type,
        current_monthly_amount=current.monthly_amount,
        current_tenor_months=current.tenor_months,
        new_monthly_amount=draft.new_monthly_amount,
        new_tenor_months=draft.new_tenor_months,
        installments_paid=paid,
        admin_fee=settings.deposit_change_admin_fee,
        interest_rate=current.interest_rate,
        calculation_method=current.calculation_method,
        new_amount_code=draft.new_amount_code,
        new_tenor_code=draft.new_tenor_code,
    )


def withdrawal_parameters(
    draft: WithdrawalDraft,
    owner_id: str,
    settings: Settings,
    today: date,
    parent: Optional[Request],
    siblings: Iterable[Request] = (),
) -> WithdrawalParameters:
    """
    Validate a withdrawal; when it names a deposit, the deposit must be
    ACTIVE and owned by the member, have no other withdrawal in progress and
    hold at least the requested amount. Early-ness follows its maturity date.
    """
    if draft.deposit_id is not None:
        deposit = require_active_deposit(parent, owner_id)
        _reject_pending(siblings, RequestType.WITHDRAWAL, "withdrawal")

        available = collected_amount(deposit, today)
        if draft.amount > available:
            raise ValidationError(f"Withdrawal exceeds the {available} collected so far")
        is_before_maturity = deposit.maturity_date is not None and today < deposit.maturity_date
    else:
        is_before_maturity = bool(draft.is_before_maturity)

    return WithdrawalParameters(
        amount=draft.amount,
        is_before_maturity=is_before_maturity,
        penalty_rate=settings.early_withdrawal_penalty_rate,
        deposit_id=draft.deposit_id,
        reason=draft.reason,
    )
