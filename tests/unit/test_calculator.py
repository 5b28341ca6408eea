"""Unit tests for the financial calculator"""

import pytest
from decimal import Decimal

from koperasi_workflow.domain.calculator import (
    classify_change,
    deposit_change_delta,
    deposit_projection,
    loan_installment,
    withdrawal_penalty,
)
from koperasi_workflow.domain.exceptions import ValidationError
from koperasi_workflow.domain.models import CalculationMethod, ChangeType, DepositTerms


def test_loan_installment_flat_rate_identity():
    """12,000,000 at 12% over 12 months"""
    result = loan_installment(Decimal("12000000"), Decimal("12"), 12)

    assert result.total_interest == Decimal("1440000.00")
    assert result.monthly_installment == Decimal("1120000.00")
    assert result.total_repayment == Decimal("13440000.00")
    assert len(result.schedule) == 12


def test_loan_schedule_sums_to_totals():
    """Rows add up exactly even when the split is uneven"""
    result = loan_installment(Decimal("10000000"), Decimal("12"), 7)

    assert sum(row.principal for row in result.schedule) == Decimal("10000000")
    assert sum(row.interest for row in result.schedule) == result.total_interest
    assert sum(row.installment for row in result.schedule) == result.total_repayment
    assert result.schedule[-1].remaining_balance == 0


def test_loan_schedule_last_row_absorbs_remainder():
    """1,000,000 / 3 leaves a cent for the last month"""
    result = loan_installment(Decimal("1000000"), Decimal("0"), 3)

    assert result.schedule[0].principal == Decimal("333333.33")
    assert result.schedule[1].principal == Decimal("333333.33")
    assert result.schedule[2].principal == Decimal("333333.34")


def test_loan_remaining_balance_decreases():
    result = loan_installment(Decimal("6000000"), Decimal("12"), 6)

    balances = [row.remaining_balance for row in result.schedule]
    assert balances == sorted(balances, reverse=True)
    assert balances[0] == Decimal("5000000.00")


@pytest.mark.parametrize(
    "principal,rate,tenor",
    [(Decimal("0"), Decimal("12"), 12), (Decimal("1000000"), Decimal("12"), 0), (Decimal("1000000"), Decimal("-1"), 12)],
)
def test_loan_installment_rejects_bad_input(principal, rate, tenor):
    with pytest.raises(ValidationError):
        loan_installment(principal, rate, tenor)


def test_deposit_projection_simple_interest():
    """500,000 × 12 months at 6%: interest = 2,500 × (1 + 2 + ... + 12)"""
    result = deposit_projection(Decimal("500000"), 12, Decimal("6"))

    assert result.total_principal == Decimal("6000000")
    assert result.projected_interest == Decimal("195000.00")
    assert result.total_return == Decimal("6195000.00")
    assert result.effective_rate == Decimal("6")
    assert result.months[0].interest == Decimal("2500.00")
    assert result.months[-1].interest == Decimal("30000.00")


def test_deposit_projection_conservation():
    """Each month's balance is deposits plus interest, and interest telescopes"""
    result = deposit_projection(Decimal("333333"), 7, Decimal("5.5"))

    running_interest = Decimal(0)
    for month in result.months:
        running_interest += month.interest
        assert month.cumulative_interest == running_interest
        assert month.total_balance == month.cumulative_deposits + month.cumulative_interest
        assert month.cumulative_deposits == Decimal("333333") * month.month


def test_deposit_projection_compound_exceeds_simple():
    simple = deposit_projection(Decimal("1000000"), 24, Decimal("6"), CalculationMethod.SIMPLE)
    compound = deposit_projection(Decimal("1000000"), 24, Decimal("6"), CalculationMethod.COMPOUND)

    assert compound.projected_interest > simple.projected_interest
    assert compound.total_principal == simple.total_principal
    assert compound.effective_rate == Decimal("6.17")


def test_deposit_projection_zero_rate():
    result = deposit_projection(Decimal("100000"), 3, Decimal("0"))

    assert result.projected_interest == 0
    assert result.total_return == Decimal("300000")


def test_classify_change():
    assert classify_change(Decimal("500000"), 12, Decimal("750000"), 12) == ChangeType.AMOUNT_CHANGE
    assert classify_change(Decimal("500000"), 12, Decimal("500000"), 24) == ChangeType.TENOR_CHANGE
    assert classify_change(Decimal("500000"), 12, Decimal("750000"), 24) == ChangeType.BOTH


def test_classify_change_requires_a_change():
    with pytest.raises(ValidationError):
        classify_change(Decimal("500000"), 12, Decimal("500000.00"), 12)


def test_deposit_change_delta():
    """Doubling the monthly amount doubles principal and interest"""
    current = DepositTerms(Decimal("500000"), 12, Decimal("6"))
    proposed = DepositTerms(Decimal("1000000"), 12, Decimal("6"))

    delta = deposit_change_delta(current, proposed, Decimal("15000"))

    assert delta.change_type == ChangeType.AMOUNT_CHANGE
    assert delta.monthly_amount_delta == Decimal("500000")
    assert delta.principal_delta == Decimal("6000000")
    assert delta.tenor_delta == 0
    assert delta.projected_interest_delta == Decimal("195000.00")
    assert delta.total_return_delta == Decimal("6195000.00")
    assert delta.admin_fee == Decimal("15000")


def test_deposit_change_delta_shorter_tenor_is_negative():
    current = DepositTerms(Decimal("500000"), 24, Decimal("6"))
    proposed = DepositTerms(Decimal("500000"), 12, Decimal("6"))

    delta = deposit_change_delta(current, proposed)

    assert delta.change_type == ChangeType.TENOR_CHANGE
    assert delta.tenor_delta == -12
    assert delta.principal_delta == Decimal("-6000000")
    assert delta.total_return_delta < 0


def test_withdrawal_penalty_before_maturity():
    """Early withdrawal of 1,000,000 pays 3%"""
    result = withdrawal_penalty(Decimal("1000000"), True)

    assert result.penalty_amount == Decimal("30000.00")
    assert result.net_amount == Decimal("970000.00")
    assert result.penalty_rate == Decimal("3")


def test_withdrawal_penalty_at_maturity():
    result = withdrawal_penalty(Decimal("1000000"), False)

    assert result.penalty_amount == 0
    assert result.net_amount == Decimal("1000000")


def test_float_inputs_keep_their_decimal_value():
    """Floats are converted through str(), not their binary expansion"""
    result = withdrawal_penalty(150.5, True, 3.0)

    assert result.amount == Decimal("150.5")
    assert result.penalty_amount == Decimal("4.52")
    assert loan_installment(1200000.0, 12.0, 12).total_interest == Decimal("144000.00")


def test_withdrawal_penalty_rounds_half_up():
    """3% of 150.50 = 4.515 → 4.52"""
    result = withdrawal_penalty(Decimal("150.50"), True)

    assert result.penalty_amount == Decimal("4.52")
    assert result.net_amount == Decimal("145.98")


def test_withdrawal_penalty_rejects_non_positive_amount():
    with pytest.raises(ValidationError):
        withdrawal_penalty(Decimal("0"), True)
