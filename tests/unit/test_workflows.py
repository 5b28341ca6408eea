"""Unit tests for workflow definitions and request numbering"""

import pytest
from datetime import date

from koperasi_workflow.domain.models import (
    ExecutionKind,
    LoanType,
    RequestStatus,
    RequestType,
    Role,
    Stage,
    StageKind,
)
from koperasi_workflow.domain.numbering import format_number, next_sequence, prefix_for
from koperasi_workflow.domain.workflows import (
    cancellable_statuses,
    definition_for,
    is_terminal,
    next_stage,
    sequence_for,
    stage_definition,
)


def test_loan_sequence():
    stages = [(d.stage, d.authorized_role, d.kind) for d in sequence_for(RequestType.LOAN)]

    assert stages == [
        (Stage.DSP, Role.DSP, StageKind.DECISION),
        (Stage.KETUA, Role.KETUA, StageKind.DECISION),
        (Stage.PENGAWAS, Role.PENGAWAS, StageKind.DECISION),
        (Stage.DISBURSEMENT, Role.SHOPKEEPER, StageKind.EXECUTION),
        (Stage.AUTHORIZATION, Role.KETUA, StageKind.EXECUTION),
    ]
    assert definition_for(RequestType.LOAN).success_status == RequestStatus.DISBURSED


def test_withdrawal_execution_stages():
    shop = stage_definition(RequestType.WITHDRAWAL, Stage.SHOPKEEPER)
    auth = stage_definition(RequestType.WITHDRAWAL, Stage.KETUA_AUTH)

    assert shop.execution_kind == ExecutionKind.DISBURSEMENT
    assert shop.pending_status == RequestStatus.APPROVED_WAITING_DISBURSEMENT
    assert auth.execution_kind == ExecutionKind.AUTHORIZATION
    assert auth.pending_status == RequestStatus.DISBURSEMENT_IN_PROGRESS


@pytest.mark.parametrize(
    "request_type,success",
    [
        (RequestType.DEPOSIT, RequestStatus.ACTIVE),
        (RequestType.DEPOSIT_CHANGE, RequestStatus.APPROVED),
    ],
)
def test_two_stage_workflows(request_type, success):
    assert [d.stage for d in sequence_for(request_type)] == [Stage.DSP, Stage.KETUA]
    assert definition_for(request_type).success_status == success


def test_next_stage():
    assert next_stage(RequestType.LOAN, Stage.PENGAWAS).stage == Stage.DISBURSEMENT
    assert next_stage(RequestType.LOAN, Stage.AUTHORIZATION) is None
    assert next_stage(RequestType.DEPOSIT, Stage.KETUA) is None

    with pytest.raises(KeyError):
        next_stage(RequestType.DEPOSIT, Stage.PENGAWAS)


def test_terminal_statuses():
    assert is_terminal(RequestType.LOAN, RequestStatus.DISBURSED)
    assert is_terminal(RequestType.LOAN, RequestStatus.REJECTED)
    assert is_terminal(RequestType.WITHDRAWAL, RequestStatus.CANCELLED)
    assert not is_terminal(RequestType.LOAN, RequestStatus.PENDING_AUTHORIZATION)
    # ACTIVE is terminal only for deposits
    assert not is_terminal(RequestType.LOAN, RequestStatus.ACTIVE)


def test_cancellable_statuses_exclude_execution():
    statuses = cancellable_statuses(RequestType.WITHDRAWAL)

    assert statuses == {
        RequestStatus.SUBMITTED,
        RequestStatus.UNDER_REVIEW_DSP,
        RequestStatus.UNDER_REVIEW_KETUA,
    }


@pytest.mark.parametrize(
    "request_type,loan_type,prefix",
    [
        (RequestType.LOAN, LoanType.CASH_LOAN, "LOAN"),
        (RequestType.LOAN, LoanType.GOODS_REIMBURSE, "REIM"),
        (RequestType.LOAN, LoanType.GOODS_ONLINE, "ONLN"),
        (RequestType.LOAN, LoanType.GOODS_PHONE, "PHNE"),
        (RequestType.DEPOSIT, None, "DEPO"),
        (RequestType.DEPOSIT_CHANGE, None, "CHG"),
        (RequestType.WITHDRAWAL, None, "WD"),
    ],
)
def test_number_prefixes(request_type, loan_type, prefix):
    assert prefix_for(request_type, loan_type) == prefix


def test_number_format_and_sequence():
    assert format_number("LOAN", date(2024, 3, 5), 7) == "LOAN-20240305-0007"
    assert next_sequence(None) == 1
    assert next_sequence("DEPO-20240305-0041") == 42
