"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Generator

from sqlalchemy.orm import sessionmaker

from koperasi_workflow.config import Settings
from koperasi_workflow.domain.models import Actor, Decision, Request, Role
from koperasi_workflow.domain.schemas import DepositDraft, LoanDraft
from koperasi_workflow.infrastructure.database.models import Base
from koperasi_workflow.infrastructure.database.repositories import SqlRequestStore
from koperasi_workflow.infrastructure.database.session import build_engine, build_session_factory
from koperasi_workflow.infrastructure.memory.store import InMemoryRequestStore
from koperasi_workflow.service.engine import WorkflowEngine
from koperasi_workflow.utils.date_utils import DeterministicClock

# Before the 15th cutoff, so deposits activate on this month's payroll day
TEST_NOW = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)

MEMBER_ID = "member-001"


@pytest.fixture
def settings() -> Settings:
    """Defaults only; ignore any local .env"""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def store() -> InMemoryRequestStore:
    return InMemoryRequestStore()


@pytest.fixture
def engine(store: InMemoryRequestStore, settings: Settings, clock: DeterministicClock) -> WorkflowEngine:
    """Engine over the in-memory store"""
    return WorkflowEngine(store, settings=settings, clock=clock)


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Create test database (SQLite file per test)"""
    db_engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=db_engine)
    try:
        yield build_session_factory(db_engine)
    finally:
        Base.metadata.drop_all(bind=db_engine)
        db_engine.dispose()


@pytest.fixture
def sql_store(session_factory: sessionmaker) -> SqlRequestStore:
    return SqlRequestStore(session_factory)


@pytest.fixture
def sql_engine(sql_store: SqlRequestStore, settings: Settings, clock: DeterministicClock) -> WorkflowEngine:
    """Engine over the SQLAlchemy store"""
    return WorkflowEngine(sql_store, settings=settings, clock=clock)


# Actors


@pytest.fixture
def member() -> Actor:
    return Actor(MEMBER_ID)


@pytest.fixture
def dsp() -> Actor:
    return Actor("staff-dsp", Role.DSP)


@pytest.fixture
def ketua() -> Actor:
    return Actor("staff-ketua", Role.KETUA)


@pytest.fixture
def pengawas() -> Actor:
    return Actor("staff-pengawas", Role.PENGAWAS)


@pytest.fixture
def shopkeeper() -> Actor:
    return Actor("staff-shop", Role.SHOPKEEPER)


# Sample drafts


@pytest.fixture
def cash_loan_draft() -> LoanDraft:
    """12,000,000 at the default 12% over 12 months"""
    return LoanDraft(
        loan_type="CASH_LOAN",
        loan_amount=Decimal("12000000"),
        tenor_months=12,
        purpose="Renovasi rumah",
    )


@pytest.fixture
def phone_loan_draft() -> LoanDraft:
    """Phone loans arrive without a price"""
    return LoanDraft(
        loan_type="GOODS_PHONE",
        item_name="Samsung Galaxy A55",
        tenor_months=10,
        purpose="HP untuk kerja",
    )


@pytest.fixture
def deposit_draft() -> DepositDraft:
    """500,000 a month for 12 months at the default 6% simple"""
    return DepositDraft(monthly_amount=Decimal("500000"), tenor_months=12, agreed_to_terms=True)


@pytest.fixture
def active_deposit(
    engine: WorkflowEngine,
    deposit_draft: DepositDraft,
    dsp: Actor,
    ketua: Actor,
) -> Request:
    """Deposit approved by DSP and Ketua on TEST_NOW"""
    deposit = engine.submit(deposit_draft, MEMBER_ID)
    engine.decide(deposit.id, dsp, Decision.APPROVED)
    return engine.decide(deposit.id, ketua, Decision.APPROVED)


@pytest.fixture
def approve_loan(dsp: Actor, ketua: Actor, pengawas: Actor) -> Callable[[WorkflowEngine, Request], Request]:
    """Walk a loan through the three decision stages"""

    def _approve(workflow: WorkflowEngine, loan: Request) -> Request:
        for actor in (dsp, ketua, pengawas):
            loan = workflow.decide(loan.id, actor, Decision.APPROVED)
        return loan

    return _approve
