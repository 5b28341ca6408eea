"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class RequestType(str, Enum):
    LOAN = "LOAN"
    DEPOSIT = "DEPOSIT"
    DEPOSIT_CHANGE = "DEPOSIT_CHANGE"
    WITHDRAWAL = "WITHDRAWAL"


class LoanType(str, Enum):
    CASH_LOAN = "CASH_LOAN"
    GOODS_REIMBURSE = "GOODS_REIMBURSE"
    GOODS_ONLINE = "GOODS_ONLINE"
    GOODS_PHONE = "GOODS_PHONE"


class Role(str, Enum):
    """Organizational role claimed by the acting staff member"""

    DSP = "divisi_simpan_pinjam"
    KETUA = "ketua"
    PENGAWAS = "pengawas"
    SHOPKEEPER = "shopkeeper"


class Stage(str, Enum):
    DSP = "DIVISI_SIMPAN_PINJAM"
    KETUA = "KETUA"
    PENGAWAS = "PENGAWAS"
    DISBURSEMENT = "DISBURSEMENT"
    AUTHORIZATION = "AUTHORIZATION"
    SHOPKEEPER = "SHOPKEEPER"
    KETUA_AUTH = "KETUA_AUTH"


class StageKind(str, Enum):
    DECISION = "DECISION"
    EXECUTION = "EXECUTION"


class ExecutionKind(str, Enum):
    DISBURSEMENT = "DISBURSEMENT"
    AUTHORIZATION = "AUTHORIZATION"


class Decision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONFIRMED = "CONFIRMED"  # execution stages only


class HistoryAction(str, Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONFIRMED = "CONFIRMED"
    REVISED = "REVISED"
    CANCELLED = "CANCELLED"
    # Written on the parent deposit when a term change is approved
    CHANGE_APPLIED = "CHANGE_APPLIED"


class RequestStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW_DSP = "UNDER_REVIEW_DSP"
    UNDER_REVIEW_KETUA = "UNDER_REVIEW_KETUA"
    UNDER_REVIEW_PENGAWAS = "UNDER_REVIEW_PENGAWAS"
    # Loan execution
    APPROVED_PENDING_DISBURSEMENT = "APPROVED_PENDING_DISBURSEMENT"
    PENDING_AUTHORIZATION = "PENDING_AUTHORIZATION"
    DISBURSED = "DISBURSED"
    # Withdrawal execution
    APPROVED_WAITING_DISBURSEMENT = "APPROVED_WAITING_DISBURSEMENT"
    DISBURSEMENT_IN_PROGRESS = "DISBURSEMENT_IN_PROGRESS"
    COMPLETED = "COMPLETED"
    # Deposit / deposit change success
    ACTIVE = "ACTIVE"
    APPROVED = "APPROVED"
    # Shared terminals
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class CalculationMethod(str, Enum):
    SIMPLE = "SIMPLE"
    COMPOUND = "COMPOUND"


class ChangeType(str, Enum):
    AMOUNT_CHANGE = "AMOUNT_CHANGE"
    TENOR_CHANGE = "TENOR_CHANGE"
    BOTH = "BOTH"


@dataclass(frozen=True)
class Actor:
    """Identity and role claim supplied by the authentication layer"""

    user_id: str
    role: Optional[Role] = None


@dataclass
class ApprovalStep:
    """One stage slot in a request's sequence"""

    position: int
    stage: Stage
    kind: StageKind
    decision: Optional[Decision] = None
    decided_at: Optional[datetime] = None
    notes: Optional[str] = None
    approver_id: Optional[str] = None

    @property
    def is_decided(self) -> bool:
        return self.decision is not None


@dataclass
class ExecutionRecord:
    """Disbursement or authorization confirmation, created once per stage"""

    kind: ExecutionKind
    stage: Stage
    confirmed_by: str
    occurred_on: date
    created_at: datetime
    occurred_time: Optional[str] = None  # HH:MM
    notes: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class HistoryEntry:
    """Append-only audit trail row"""

    action: HistoryAction
    status: RequestStatus
    current_step: Optional[Stage]
    actor_id: str
    created_at: datetime
    snapshot: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class Request:
    """Monetary request aggregate shared by loans, deposits, changes and withdrawals"""

    request_type: RequestType
    number: str
    owner_id: str
    status: RequestStatus
    current_step: Optional[Stage]
    parameters: Any  # one of the schemas.*Parameters models
    computed_figures: Optional[Dict[str, Decimal]] = None
    parent_id: Optional[uuid.UUID] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    activated_at: Optional[date] = None
    maturity_date: Optional[date] = None
    revision_count: int = 0
    last_revised_at: Optional[datetime] = None
    last_revised_by: Optional[str] = None
    revision_notes: Optional[str] = None
    approvals: List[ApprovalStep] = field(default_factory=list)
    executions: List[ExecutionRecord] = field(default_factory=list)
    history: List[HistoryEntry] = field(default_factory=list)
    version: int = 0
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def approval_for(self, stage: Stage) -> Optional[ApprovalStep]:
        return next((a for a in self.approvals if a.stage == stage), None)

    def execution_for(self, stage: Stage) -> Optional[ExecutionRecord]:
        return next((e for e in self.executions if e.stage == stage), None)


# Calculator outputs


@dataclass
class LoanScheduleRow:
    """Single monthly installment in a flat-rate loan"""

    month: int
    principal: Decimal
    interest: Decimal
    installment: Decimal
    remaining_balance: Decimal


@dataclass
class LoanCalculation:
    principal: Decimal
    annual_rate: Decimal
    tenor_months: int
    total_interest: Decimal
    monthly_installment: Decimal
    total_repayment: Decimal
    schedule: List[LoanScheduleRow]


@dataclass
class DepositMonth:
    """One month of a recurring-deposit projection"""

    month: int
    deposit: Decimal
    cumulative_deposits: Decimal
    interest: Decimal
    cumulative_interest: Decimal
    total_balance: Decimal


@dataclass
class DepositProjection:
    monthly_deposit: Decimal
    tenor_months: int
    annual_rate: Decimal
    method: CalculationMethod
    total_principal: Decimal
    projected_interest: Decimal
    total_return: Decimal
    effective_rate: Decimal
    months: List[DepositMonth]


@dataclass
class DepositChangeDelta:
    change_type: ChangeType
    current: DepositProjection
    proposed: DepositProjection
    monthly_amount_delta: Decimal
    principal_delta: Decimal
    tenor_delta: int
    projected_interest_delta: Decimal
    total_return_delta: Decimal
    admin_fee: Decimal


@dataclass
class WithdrawalCalculation:
    amount: Decimal
    is_before_maturity: bool
    penalty_rate: Decimal
    penalty_amount: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class DepositTerms:
    """Parameter set fed to a deposit projection"""

    monthly_deposit: Decimal
    tenor_months: int
    annual_rate: Decimal
    method: CalculationMethod = CalculationMethod.SIMPLE
