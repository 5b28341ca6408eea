"""Bridge between stored request parameters and the calculator"""

from decimal import Decimal
from typing import Dict, Optional, Union

from koperasi_workflow.config import Settings
from koperasi_workflow.domain import calculator
from koperasi_workflow.domain.models import (
    DepositChangeDelta,
    DepositProjection,
    DepositTerms,
    LoanCalculation,
    RequestType,
    WithdrawalCalculation,
)
from koperasi_workflow.domain.schemas import (
    DepositChangeParameters,
    DepositParameters,
    LoanParameters,
    WithdrawalParameters,
)

Breakdown = Union[LoanCalculation, DepositProjection, DepositChangeDelta, WithdrawalCalculation]


def breakdown(request_type: RequestType, parameters, settings: Settings) -> Optional[Breakdown]:
    """Full calculator output for a request, or None while a loan has no price yet"""
    quantum = settings.money_quantum

    if request_type == RequestType.LOAN:
        params: LoanParameters = parameters
        if params.principal is None:
            return None
        return calculator.loan_installment(params.principal, params.interest_rate, params.tenor_months, quantum)

    if request_type == RequestType.DEPOSIT:
        params: DepositParameters = parameters
        return calculator.deposit_projection(
            params.monthly_amount,
            params.tenor_months,
            params.interest_rate,
            params.calculation_method,
            quantum,
        )

    if request_type == RequestType.DEPOSIT_CHANGE:
        params: DepositChangeParameters = parameters
        current = DepositTerms(
            params.current_monthly_amount,
            params.current_tenor_months,
            params.interest_rate,
            params.calculation_method,
        )
        proposed = DepositTerms(
            params.new_monthly_amount,
            params.new_tenor_months,
            params.interest_rate,
            params.calculation_method,
        )
        return calculator.deposit_change_delta(current, proposed, params.admin_fee, quantum)

    params: WithdrawalParameters = parameters
    return calculator.withdrawal_penalty(params.amount, params.is_before_maturity, params.penalty_rate, quantum)


def compute_figures(request_type: RequestType, parameters, settings: Settings) -> Optional[Dict[str, Decimal]]:
    """Flat summary of the breakdown, stored on the request as computed_figures"""
    result = breakdown(request_type, parameters, settings)
    if result is None:
        return None

    if isinstance(result, LoanCalculation):
        return {
            "principal": result.principal,
            "interest_rate": result.annual_rate,
            "tenor_months": Decimal(result.tenor_months),
            "total_interest": result.total_interest,
            "monthly_installment": result.monthly_installment,
            "total_repayment": result.total_repayment,
        }

    if isinstance(result, DepositProjection):
        return {
            "monthly_amount": result.monthly_deposit,
            "tenor_months": Decimal(result.tenor_months),
            "interest_rate": result.annual_rate,
            "total_principal": result.total_principal,
            "projected_interest": result.projected_interest,
            "total_return": result.total_return,
            "effective_rate": result.effective_rate,
        }

    if isinstance(result, DepositChangeDelta):
        return {
            "current_total_return": result.current.total_return,
            "new_total_return": result.proposed.total_return,
            "monthly_amount_delta": result.monthly_amount_delta,
            "principal_delta": result.principal_delta,
            "tenor_delta": Decimal(result.tenor_delta),
            "projected_interest_delta": result.projected_interest_delta,
            "total_return_delta": result.total_return_delta,
            "admin_fee": result.admin_fee,
        }

    return {
        "amount": result.amount,
        "penalty_rate": result.penalty_rate,
        "penalty_amount": result.penalty_amount,
        "net_amount": result.net_amount,
    }
