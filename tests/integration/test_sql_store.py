"""Integration tests for the SQLAlchemy request store (SQLite)"""

import pytest
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

from koperasi_workflow.domain.exceptions import ConflictRetry, DomainException, Forbidden, InvalidState, NotFound
from koperasi_workflow.domain.models import Actor, Decision, HistoryAction, RequestStatus, RequestType, Role, Stage
from koperasi_workflow.domain.schemas import DepositChangeDraft, LoanParameters
from koperasi_workflow.infrastructure.database.models import WorkflowHistoryEntry, WorkflowRequest

MEMBER_ID = "member-001"


@pytest.mark.integration
def test_round_trip_preserves_aggregate(sql_engine, cash_loan_draft):
    """Stored loan reads back with decimals, enums and steps intact"""
    loan = sql_engine.submit(cash_loan_draft, MEMBER_ID)

    stored = sql_engine.get(loan.id)

    assert stored.number == "LOAN-20240310-0001"
    assert stored.request_type == RequestType.LOAN
    assert stored.status == RequestStatus.UNDER_REVIEW_DSP
    assert isinstance(stored.parameters, LoanParameters)
    assert stored.parameters.loan_amount == Decimal("12000000")
    assert stored.computed_figures["total_repayment"] == Decimal("13440000.00")
    assert [a.stage for a in stored.approvals] == [a.stage for a in loan.approvals]
    assert stored.submitted_at == loan.submitted_at
    assert stored.version == 1


@pytest.mark.integration
def test_full_loan_lifecycle_persists(sql_engine, cash_loan_draft, approve_loan, shopkeeper, ketua):
    loan = approve_loan(sql_engine, sql_engine.submit(cash_loan_draft, MEMBER_ID))
    sql_engine.confirm_execution(loan.id, shopkeeper, {"occurred_on": "2024-03-11", "occurred_time": "09:45"})
    sql_engine.confirm_execution(loan.id, ketua)

    stored = sql_engine.get(loan.id)

    assert stored.status == RequestStatus.DISBURSED
    assert stored.current_step is None
    assert [e.stage for e in stored.executions] == [Stage.DISBURSEMENT, Stage.AUTHORIZATION]
    assert stored.executions[0].occurred_on == date(2024, 3, 11)
    assert stored.executions[0].occurred_time == "09:45"
    assert all(a.is_decided for a in stored.approvals)
    assert [h.action for h in stored.history][-1] == HistoryAction.CONFIRMED
    assert len(stored.history) == 6
    assert stored.version == 6


@pytest.mark.integration
def test_failed_operation_rolls_back(sql_engine, cash_loan_draft, ketua):
    loan = sql_engine.submit(cash_loan_draft, MEMBER_ID)

    with pytest.raises(Forbidden):
        sql_engine.decide(loan.id, ketua, Decision.APPROVED)

    stored = sql_engine.get(loan.id)
    assert stored.status == RequestStatus.UNDER_REVIEW_DSP
    assert stored.version == 1
    assert len(stored.history) == 1


@pytest.mark.integration
def test_history_rows_are_appended(sql_engine, session_factory, cash_loan_draft, dsp):
    loan = sql_engine.submit(cash_loan_draft, MEMBER_ID)
    sql_engine.decide(loan.id, dsp, Decision.APPROVED, "OK")

    with session_factory() as db:
        rows = db.query(WorkflowHistoryEntry).filter(WorkflowHistoryEntry.request_id == loan.id).all()
        assert sorted(row.sequence for row in rows) == [0, 1]
        assert {row.action for row in rows} == {"SUBMITTED", "APPROVED"}


@pytest.mark.integration
def test_stale_version_raises_conflict(sql_engine, sql_store, session_factory, cash_loan_draft):
    """A concurrent writer bumping the version makes our commit fail"""
    loan = sql_engine.submit(cash_loan_draft, MEMBER_ID)

    with pytest.raises(ConflictRetry):
        with sql_store.atomic(loan.id) as request:
            with session_factory() as other:
                row = other.get(WorkflowRequest, loan.id)
                row.revision_notes = "touched elsewhere"
                other.commit()
            request.revision_notes = "ours"

    assert sql_store.get(loan.id).revision_notes == "touched elsewhere"


@pytest.mark.integration
def test_unknown_id(sql_store):
    with pytest.raises(NotFound):
        sql_store.get(uuid.uuid4())
    with pytest.raises(NotFound):
        with sql_store.atomic(uuid.uuid4()):
            pass


@pytest.mark.integration
def test_listing_and_numbering(sql_engine, cash_loan_draft, deposit_draft, member):
    first = sql_engine.submit(cash_loan_draft, MEMBER_ID)
    sql_engine.submit(cash_loan_draft, MEMBER_ID)
    sql_engine.submit(deposit_draft, "member-002")
    sql_engine.cancel(first.id, member)

    assert sql_engine.store.last_number("LOAN-20240310-") == "LOAN-20240310-0002"
    assert len(sql_engine.list_requests(request_type=RequestType.LOAN)) == 2
    assert len(sql_engine.list_requests(owner_id="member-002")) == 1
    assert [r.id for r in sql_engine.list_requests(status=RequestStatus.CANCELLED)] == [first.id]


@pytest.mark.integration
def test_deposit_activation_persists(sql_engine, deposit_draft, dsp, ketua):
    deposit = sql_engine.submit(deposit_draft, MEMBER_ID)
    sql_engine.decide(deposit.id, dsp, Decision.APPROVED)
    sql_engine.decide(deposit.id, ketua, Decision.APPROVED)

    stored = sql_engine.get(deposit.id)

    assert stored.status == RequestStatus.ACTIVE
    assert stored.activated_at == date(2024, 3, 27)
    assert stored.maturity_date == date(2025, 3, 27)
    assert stored.approved_at == sql_engine.clock.now()


@pytest.mark.integration
def test_deposit_change_written_to_deposit(sql_engine, deposit_draft, dsp, ketua):
    deposit = sql_engine.submit(deposit_draft, MEMBER_ID)
    sql_engine.decide(deposit.id, dsp, Decision.APPROVED)
    deposit = sql_engine.decide(deposit.id, ketua, Decision.APPROVED)
    change = sql_engine.submit(
        DepositChangeDraft(
            deposit_id=deposit.id,
            new_monthly_amount=Decimal("500000"),
            new_tenor_months=18,
            agreed_to_terms=True,
            agreed_to_admin_fee=True,
        ),
        MEMBER_ID,
    )
    sql_engine.decide(change.id, dsp, Decision.APPROVED)
    assert sql_engine.get(deposit.id).version == deposit.version

    sql_engine.decide(change.id, ketua, Decision.APPROVED)

    stored = sql_engine.get(deposit.id)
    assert stored.parameters.tenor_months == 18
    assert stored.maturity_date == date(2025, 9, 27)
    assert stored.computed_figures["total_principal"] == Decimal("9000000")
    assert [h.action for h in stored.history][-1] == HistoryAction.CHANGE_APPLIED
    assert stored.version == deposit.version + 1
    assert sql_engine.get(change.id).status == RequestStatus.APPROVED


@pytest.mark.integration
def test_concurrent_approvals_advance_once(sql_engine, cash_loan_draft):
    """Row locks and the version column let exactly one DSP approval through"""
    loan = sql_engine.submit(cash_loan_draft, MEMBER_ID)
    staff = [Actor(f"dsp-{i}", Role.DSP) for i in range(4)]
    barrier = threading.Barrier(len(staff))

    def approve(actor):
        barrier.wait()
        try:
            return sql_engine.decide(loan.id, actor, Decision.APPROVED)
        except DomainException as e:
            return e

    with ThreadPoolExecutor(max_workers=len(staff)) as pool:
        outcomes = list(pool.map(approve, staff))

    errors = [o for o in outcomes if isinstance(o, DomainException)]
    assert len(outcomes) - len(errors) == 1
    # Late readers hit the KETUA role gate; racing writers lose on the version
    assert {e.code for e in errors} <= {"forbidden", "conflict_retry"}

    stored = sql_engine.get(loan.id)
    assert stored.status == RequestStatus.UNDER_REVIEW_KETUA
    assert stored.approval_for(Stage.DSP).approver_id in {actor.user_id for actor in staff}
    assert [h.action for h in stored.history].count(HistoryAction.APPROVED) == 1
    assert stored.version == 2


@pytest.mark.integration
def test_revise_terminal_loan_is_invalid_state(sql_engine, cash_loan_draft, dsp, member):
    loan = sql_engine.submit(cash_loan_draft, MEMBER_ID)
    sql_engine.cancel(loan.id, member)

    with pytest.raises(InvalidState):
        sql_engine.revise(loan.id, dsp, {"loan_amount": "5000000", "tenor_months": 12, "revision_notes": "Koreksi"})

    stored = sql_engine.get(loan.id)
    assert stored.revision_count == 0
    assert stored.version == 2
