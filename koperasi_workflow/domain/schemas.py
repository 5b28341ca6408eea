"""Pydantic schemas for submission drafts, stored parameters and action payloads"""

import uuid
from datetime import date
from decimal import Decimal
from typing import ClassVar, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from koperasi_workflow.domain.exceptions import ValidationError
from koperasi_workflow.domain.models import (
    CalculationMethod,
    ChangeType,
    LoanType,
    RequestType,
    Stage,
)

GOODS_LOAN_TYPES = (LoanType.GOODS_REIMBURSE, LoanType.GOODS_ONLINE, LoanType.GOODS_PHONE)

HH_MM_PATTERN = r"^([0-1][0-9]|2[0-3]):([0-5][0-9])$"


# Drafts (what a member submits)


class LoanDraft(BaseModel):
    """Loan application; the price field used depends on the loan type"""

    request_type: ClassVar[RequestType] = RequestType.LOAN

    loan_type: LoanType
    tenor_months: int = Field(..., gt=0, description="Repayment tenor in months")
    purpose: str = Field(..., min_length=1)
    loan_amount: Optional[Decimal] = Field(None, gt=0, description="CASH_LOAN only")
    item_name: Optional[str] = None
    item_price: Optional[Decimal] = Field(None, gt=0, description="GOODS_REIMBURSE / GOODS_ONLINE")
    item_url: Optional[str] = None
    purchase_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_shape(self) -> "LoanDraft":
        if self.loan_type == LoanType.CASH_LOAN:
            if self.loan_amount is None:
                raise ValueError("loan_amount is required for CASH_LOAN")
        elif self.loan_type in (LoanType.GOODS_REIMBURSE, LoanType.GOODS_ONLINE):
            if self.item_price is None:
                raise ValueError(f"item_price is required for {self.loan_type.value}")
            if not self.item_name:
                raise ValueError(f"item_name is required for {self.loan_type.value}")
        else:
            # Phone prices are set by DSP during review
            if not self.item_name:
                raise ValueError("item_name is required for GOODS_PHONE")
            if self.loan_amount is not None or self.item_price is not None:
                raise ValueError("GOODS_PHONE is submitted without a price")
        return self


class DepositDraft(BaseModel):
    """Recurring monthly deposit application"""

    request_type: ClassVar[RequestType] = RequestType.DEPOSIT

    monthly_amount: Decimal = Field(..., gt=0)
    tenor_months: int = Field(..., gt=0)
    amount_code: Optional[str] = None
    tenor_code: Optional[str] = None
    agreed_to_terms: bool

    @model_validator(mode="after")
    def check_terms(self) -> "DepositDraft":
        if not self.agreed_to_terms:
            raise ValueError("Terms must be accepted")
        return self


class DepositChangeDraft(BaseModel):
    request_type: ClassVar[RequestType] = RequestType.DEPOSIT_CHANGE

    deposit_id: uuid.UUID
    new_monthly_amount: Decimal = Field(..., gt=0)
    new_tenor_months: int = Field(..., gt=0)
    new_amount_code: Optional[str] = None
    new_tenor_code: Optional[str] = None
    agreed_to_terms: bool
    agreed_to_admin_fee: bool

    @model_validator(mode="after")
    def check_agreements(self) -> "DepositChangeDraft":
        if not self.agreed_to_terms:
            raise ValueError("Terms must be accepted")
        if not self.agreed_to_admin_fee:
            raise ValueError("Admin fee must be accepted")
        return self


class WithdrawalDraft(BaseModel):
    """Withdrawal of deposited funds; early status comes from the parent deposit when given"""

    request_type: ClassVar[RequestType] = RequestType.WITHDRAWAL

    amount: Decimal = Field(..., gt=0)
    deposit_id: Optional[uuid.UUID] = None
    is_before_maturity: Optional[bool] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def check_maturity_source(self) -> "WithdrawalDraft":
        if self.deposit_id is None and self.is_before_maturity is None:
            raise ValueError("Either deposit_id or is_before_maturity is required")
        return self


Draft = Union[LoanDraft, DepositDraft, DepositChangeDraft, WithdrawalDraft]

DRAFT_MODELS: Dict[RequestType, Type[BaseModel]] = {
    RequestType.LOAN: LoanDraft,
    RequestType.DEPOSIT: DepositDraft,
    RequestType.DEPOSIT_CHANGE: DepositChangeDraft,
    RequestType.WITHDRAWAL: WithdrawalDraft,
}


# Stored parameters (frozen into the request at submission, updated by revision)


class LoanParameters(BaseModel):
    loan_type: LoanType
    tenor_months: int
    purpose: str
    interest_rate: Decimal
    loan_amount: Optional[Decimal] = None
    item_name: Optional[str] = None
    item_price: Optional[Decimal] = None
    item_url: Optional[str] = None
    purchase_date: Optional[date] = None
    retail_price: Optional[Decimal] = None
    cooperative_price: Optional[Decimal] = None
    notes: Optional[str] = None

    @property
    def principal(self) -> Optional[Decimal]:
        """Amount the installments are computed on"""
        if self.loan_type == LoanType.CASH_LOAN:
            return self.loan_amount
        if self.loan_type == LoanType.GOODS_PHONE:
            return self.cooperative_price
        return self.item_price


class DepositParameters(BaseModel):
    monthly_amount: Decimal
    tenor_months: int
    interest_rate: Decimal
    calculation_method: CalculationMethod
    amount_code: Optional[str] = None
    tenor_code: Optional[str] = None


class DepositChangeParameters(BaseModel):
    deposit_id: uuid.UUID
    change_type: ChangeType
    current_monthly_amount: Decimal
    current_tenor_months: int
    new_monthly_amount: Decimal
    new_tenor_months: int
    installments_paid: int
    admin_fee: Decimal
    interest_rate: Decimal
    calculation_method: CalculationMethod
    new_amount_code: Optional[str] = None
    new_tenor_code: Optional[str] = None


class WithdrawalParameters(BaseModel):
    amount: Decimal
    is_before_maturity: bool
    penalty_rate: Decimal
    deposit_id: Optional[uuid.UUID] = None
    reason: Optional[str] = None


Parameters = Union[LoanParameters, DepositParameters, DepositChangeParameters, WithdrawalParameters]

PARAMETER_MODELS: Dict[RequestType, Type[BaseModel]] = {
    RequestType.LOAN: LoanParameters,
    RequestType.DEPOSIT: DepositParameters,
    RequestType.DEPOSIT_CHANGE: DepositChangeParameters,
    RequestType.WITHDRAWAL: WithdrawalParameters,
}


# Action payloads


class LoanRevision(BaseModel):
    """DSP correction of a loan's monetary fields during first review"""

    tenor_months: int = Field(..., gt=0)
    revision_notes: str = Field(..., min_length=1)
    loan_amount: Optional[Decimal] = Field(None, gt=0)
    item_price: Optional[Decimal] = Field(None, gt=0)
    retail_price: Optional[Decimal] = Field(None, gt=0)
    cooperative_price: Optional[Decimal] = Field(None, gt=0)

    @model_validator(mode="after")
    def check_notes(self) -> "LoanRevision":
        if not self.revision_notes.strip():
            raise ValueError("revision_notes is required")
        return self


class ExecutionConfirmation(BaseModel):
    """Disbursement or authorization evidence recorded by the executing role"""

    stage: Optional[Stage] = None  # defaults to the request's current stage
    occurred_on: Optional[date] = None  # defaults to today
    occurred_time: Optional[str] = Field(None, pattern=HH_MM_PATTERN)
    notes: Optional[str] = None


M = TypeVar("M", bound=BaseModel)


def load(model: Type[M], data: Union[M, dict]) -> M:
    """Validate a payload into ``model``, raising the domain ValidationError on failure"""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e)) from e


def load_draft(request_type: RequestType, data: dict) -> BaseModel:
    return load(DRAFT_MODELS[RequestType(request_type)], data)


def load_parameters(request_type: RequestType, data: dict) -> BaseModel:
    return load(PARAMETER_MODELS[RequestType(request_type)], data)


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)
