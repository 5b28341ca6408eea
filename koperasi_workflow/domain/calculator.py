"""Financial calculator for loan installments, deposit projections and withdrawals

All functions are pure. Running accumulators stay at full Decimal precision;
only the reported figures are quantized (ROUND_HALF_UP), and per-row
components are derived from the quantized totals so rows always add up to
the totals exactly.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import List, Union

from koperasi_workflow.domain.exceptions import ValidationError
from koperasi_workflow.domain.models import (
    CalculationMethod,
    ChangeType,
    DepositChangeDelta,
    DepositMonth,
    DepositProjection,
    DepositTerms,
    LoanCalculation,
    LoanScheduleRow,
    WithdrawalCalculation,
)

Number = Union[Decimal, int, float, str]

DEFAULT_QUANTUM = Decimal("0.01")
DEFAULT_PENALTY_RATE = Decimal("3")


def _dec(value: Number) -> Decimal:
    if isinstance(value, float):
        # Floats go through str() so 0.1 stays 0.1
        return Decimal(str(value))
    return Decimal(value)


def _round(value: Decimal, quantum: Decimal) -> Decimal:
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def loan_installment(
    principal: Number,
    annual_rate_percent: Number,
    tenor_months: int,
    quantum: Decimal = DEFAULT_QUANTUM,
) -> LoanCalculation:
    """
    Flat-rate loan: interest is charged once on the original principal.

    total_interest      = principal × rate/100 × tenor/12
    total_repayment     = principal + total_interest
    monthly_installment = total_repayment / tenor

    The schedule splits principal and interest evenly; the last month
    absorbs the rounding remainder so the schedule sums to the totals.

    Example:
        12,000,000 at 12% over 12 months
        → interest 1,440,000, installment 1,120,000, repayment 13,440,000
    """
    principal = _dec(principal)
    rate = _dec(annual_rate_percent)

    if principal <= 0:
        raise ValidationError("Loan principal must be positive")
    if tenor_months <= 0:
        raise ValidationError("Loan tenor must be positive")
    if rate < 0:
        raise ValidationError("Interest rate cannot be negative")

    # Single division keeps the result exact whenever it can be
    total_interest = _round(principal * rate * tenor_months / Decimal(1200), quantum)
    total_repayment = principal + total_interest
    monthly_installment = _round(total_repayment / tenor_months, quantum)

    base_principal = _round(principal / tenor_months, quantum)
    base_interest = _round(total_interest / tenor_months, quantum)

    schedule: List[LoanScheduleRow] = []
    paid_principal = Decimal(0)
    for month in range(1, tenor_months + 1):
        if month == tenor_months:
            principal_part = principal - base_principal * (tenor_months - 1)
            interest_part = total_interest - base_interest * (tenor_months - 1)
        else:
            principal_part = base_principal
            interest_part = base_interest

        paid_principal += principal_part
        schedule.append(
            LoanScheduleRow(
                month=month,
                principal=principal_part,
                interest=interest_part,
                installment=principal_part + interest_part,
                remaining_balance=principal - paid_principal,
            )
        )

    return LoanCalculation(
        principal=principal,
        annual_rate=rate,
        tenor_months=tenor_months,
        total_interest=total_interest,
        monthly_installment=monthly_installment,
        total_repayment=total_repayment,
        schedule=schedule,
    )


def deposit_projection(
    monthly_deposit: Number,
    tenor_months: int,
    annual_rate_percent: Number,
    method: CalculationMethod = CalculationMethod.SIMPLE,
    quantum: Decimal = DEFAULT_QUANTUM,
) -> DepositProjection:
    """
    Project a recurring monthly deposit (tabungan berjangka).

    Each month the deposit is added first, then interest is credited at
    rate/12:
    - SIMPLE: on cumulative deposits only
    - COMPOUND: on cumulative deposits plus interest already credited

    SIMPLE matches the average-balance formula
    deposit × n(n+1)/2 × rate/12 over the whole tenor.
    """
    monthly_deposit = _dec(monthly_deposit)
    rate = _dec(annual_rate_percent)
    method = CalculationMethod(method)

    if monthly_deposit <= 0:
        raise ValidationError("Monthly deposit must be positive")
    if tenor_months <= 0:
        raise ValidationError("Deposit tenor must be positive")
    if rate < 0:
        raise ValidationError("Interest rate cannot be negative")

    cumulative_deposits = Decimal(0)
    accrued = Decimal(0)  # full precision
    reported_interest = Decimal(0)
    months: List[DepositMonth] = []

    for month in range(1, tenor_months + 1):
        cumulative_deposits += monthly_deposit

        if method == CalculationMethod.COMPOUND:
            base = cumulative_deposits + accrued
        else:
            base = cumulative_deposits
        accrued += base * rate / Decimal(1200)

        cumulative_interest = _round(accrued, quantum)
        months.append(
            DepositMonth(
                month=month,
                deposit=monthly_deposit,
                cumulative_deposits=cumulative_deposits,
                interest=cumulative_interest - reported_interest,
                cumulative_interest=cumulative_interest,
                total_balance=cumulative_deposits + cumulative_interest,
            )
        )
        reported_interest = cumulative_interest

    if method == CalculationMethod.COMPOUND:
        monthly_rate = rate / Decimal(1200)
        effective_rate = _round(((1 + monthly_rate) ** 12 - 1) * 100, Decimal("0.01"))
    else:
        effective_rate = rate

    final = months[-1]
    return DepositProjection(
        monthly_deposit=monthly_deposit,
        tenor_months=tenor_months,
        annual_rate=rate,
        method=method,
        total_principal=monthly_deposit * tenor_months,
        projected_interest=final.cumulative_interest,
        total_return=final.total_balance,
        effective_rate=effective_rate,
        months=months,
    )


def classify_change(
    current_amount: Number,
    current_tenor: int,
    new_amount: Number,
    new_tenor: int,
) -> ChangeType:
    """Classify a deposit change request; no change at all is invalid"""
    amount_changed = _dec(current_amount) != _dec(new_amount)
    tenor_changed = current_tenor != new_tenor

    if amount_changed and tenor_changed:
        return ChangeType.BOTH
    if amount_changed:
        return ChangeType.AMOUNT_CHANGE
    if tenor_changed:
        return ChangeType.TENOR_CHANGE
    raise ValidationError("No change proposed: amount and tenor are identical")


def deposit_change_delta(
    current: DepositTerms,
    proposed: DepositTerms,
    admin_fee: Number = Decimal(0),
    quantum: Decimal = DEFAULT_QUANTUM,
) -> DepositChangeDelta:
    """Compare projections of the current and proposed deposit terms"""
    change_type = classify_change(
        current.monthly_deposit,
        current.tenor_months,
        proposed.monthly_deposit,
        proposed.tenor_months,
    )
    admin_fee = _dec(admin_fee)
    if admin_fee < 0:
        raise ValidationError("Admin fee cannot be negative")

    before = deposit_projection(
        current.monthly_deposit, current.tenor_months, current.annual_rate, current.method, quantum
    )
    after = deposit_projection(
        proposed.monthly_deposit, proposed.tenor_months, proposed.annual_rate, proposed.method, quantum
    )

    return DepositChangeDelta(
        change_type=change_type,
        current=before,
        proposed=after,
        monthly_amount_delta=after.monthly_deposit - before.monthly_deposit,
        principal_delta=after.total_principal - before.total_principal,
        tenor_delta=after.tenor_months - before.tenor_months,
        projected_interest_delta=after.projected_interest - before.projected_interest,
        total_return_delta=after.total_return - before.total_return,
        admin_fee=admin_fee,
    )


def withdrawal_penalty(
    amount: Number,
    is_before_maturity: bool,
    penalty_rate_percent: Number = DEFAULT_PENALTY_RATE,
    quantum: Decimal = DEFAULT_QUANTUM,
) -> WithdrawalCalculation:
    """Early withdrawal pays penalty_rate% of the amount; at maturity it is free"""
    amount = _dec(amount)
    rate = _dec(penalty_rate_percent)

    if amount <= 0:
        raise ValidationError("Withdrawal amount must be positive")
    if rate < 0:
        raise ValidationError("Penalty rate cannot be negative")

    penalty = _round(amount * rate / 100, quantum) if is_before_maturity else Decimal(0)

    return WithdrawalCalculation(
        amount=amount,
        is_before_maturity=is_before_maturity,
        penalty_rate=rate if is_before_maturity else Decimal(0),
        penalty_amount=penalty,
        net_amount=amount - penalty,
    )
