"""
Pytest fixtures for the ledger test suite.

Provides:
- In-memory SQLite engine, session factory and per-test session
- Deterministic clock
- Structured-logging fixtures (captured_logs)
- Factories for plans, wallets and positions

The engine uses the same SAVEPOINT hooks as init_engine_from_url() and a
StaticPool so every session shares the one in-memory database.
"""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import ledger_batch.models  # noqa: F401
import ledger_kernel.models  # noqa: F401
from ledger_kernel.db.base import Base
from ledger_kernel.db.engine import enable_sqlite_savepoints
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.values import expected_profit
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.plan import InvestmentPlan
from ledger_kernel.models.position import Position, PositionStatus
from ledger_kernel.models.wallet import Wallet
from ledger_kernel.services.plan_service import PlanService
from ledger_kernel.services.settlement_service import SettlementService
from ledger_kernel.services.transaction_ledger import TransactionLedger
from ledger_kernel.services.wallet_service import WalletService

TEST_ACTOR_ID = uuid4()

# Naive on purpose: SQLite returns naive datetimes.
TEST_NOW = datetime(2024, 6, 1, 12, 0, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, wallet_service):
            wallet_service.credit(...)
            assert any(r["message"] == "wallet_credited" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def ledger(session, clock) -> TransactionLedger:
    return TransactionLedger(session, clock)


@pytest.fixture
def wallet_service(session, clock, ledger) -> WalletService:
    return WalletService(session, clock, ledger)


@pytest.fixture
def settlement_service(session, clock, wallet_service) -> SettlementService:
    return SettlementService(session, clock, wallet_service)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_plan(session, clock):
    """Create an active plan; keyword arguments override the defaults."""

    def _make(**overrides) -> InvestmentPlan:
        params = {
            "name": f"Plan {uuid4().hex[:6]}",
            "rate": Decimal("15"),
            "duration_days": 30,
            "min_amount": Decimal("100"),
            "max_amount": None,
        }
        params.update(overrides)
        return PlanService(session, clock).create_plan(**params)

    return _make


@pytest.fixture
def make_wallet(session, clock):
    """Create a wallet with a seeded balance (no transaction emitted)."""

    def _make(
        user_id: UUID | None = None,
        balance: Decimal = Decimal("0"),
        frozen: bool = False,
        trade_balance: Decimal = Decimal("0"),
    ) -> Wallet:
        wallet = WalletService(session, clock).create_wallet(user_id or uuid4())
        wallet.balance = Decimal(balance)
        wallet.trade_balance = Decimal(trade_balance)
        wallet.frozen = frozen
        session.flush()
        return wallet

    return _make


@pytest.fixture
def make_position(session, clock):
    """Create an active position directly, bypassing the wallet debit.

    ``matured_days_ago`` > 0 puts end_date in the past, < 0 in the future.
    """

    def _make(
        user_id: UUID,
        plan: InvestmentPlan,
        amount: Decimal = Decimal("1000"),
        matured_days_ago: int = 1,
        **fields,
    ) -> Position:
        end = clock.now() - timedelta(days=matured_days_ago)
        position = Position(
            user_id=user_id,
            plan_id=plan.id,
            amount=Decimal(amount),
            start_date=end - timedelta(days=plan.duration_days),
            end_date=end,
            expected_profit=expected_profit(Decimal(amount), plan.rate),
            actual_profit=Decimal("0"),
            status=PositionStatus.ACTIVE.value,
        )
        for key, value in fields.items():
            setattr(position, key, value)
        session.add(position)
        plan.active_investments += 1
        session.flush()
        return position

    return _make
