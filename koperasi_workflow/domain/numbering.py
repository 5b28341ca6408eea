"""Human-readable request numbers: PREFIX-YYYYMMDD-NNNN"""

from datetime import date
from typing import Optional

from koperasi_workflow.domain.models import LoanType, RequestType

LOAN_PREFIXES = {
    LoanType.CASH_LOAN: "LOAN",
    LoanType.GOODS_REIMBURSE: "REIM",
    LoanType.GOODS_ONLINE: "ONLN",
    LoanType.GOODS_PHONE: "PHNE",
}

TYPE_PREFIXES = {
    RequestType.DEPOSIT: "DEPO",
    RequestType.DEPOSIT_CHANGE: "CHG",
    RequestType.WITHDRAWAL: "WD",
}


def prefix_for(request_type: RequestType, loan_type: Optional[LoanType] = None) -> str:
    if request_type == RequestType.LOAN:
        if loan_type is None:
            raise ValueError("loan_type is required to number a loan")
        return LOAN_PREFIXES[loan_type]
    return TYPE_PREFIXES[request_type]


def daily_prefix(prefix: str, on: date) -> str:
    """Shared part of every number issued for ``prefix`` on ``on``"""
    return f"{prefix}-{on.strftime('%Y%m%d')}-"


def format_number(prefix: str, on: date, sequence: int) -> str:
    """
    Format a request number.

    Example:
        ("LOAN", 2024-03-05, 7) → "LOAN-20240305-0007"
    """
    return f"{daily_prefix(prefix, on)}{sequence:04d}"


def next_sequence(last_number: Optional[str]) -> int:
    """Sequence following the last number issued today (1 when none)"""
    if not last_number:
        return 1
    return int(last_number.rsplit("-", 1)[1]) + 1
