"""
Tests for SettlementService.settle_position.

The settlement routine must be idempotent per position: the two flags
record which half already happened, so a rerun after a partial failure
only performs what is still pending and never credits twice.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.exceptions import PositionNotFoundError, WalletFrozenError
from ledger_kernel.models.transaction import Transaction, TransactionType
from ledger_kernel.services.settlement_service import (
    SettlementDisposition,
    SettlementService,
)
from ledger_kernel.services.wallet_service import WalletService


class PrincipalFailingWalletService(WalletService):
    """Fails the principal credit, after the profit credit went through."""

    def credit(self, user_id, amount, description, **kwargs):
        if kwargs.get("txn_type") == TransactionType.INVESTMENT_PRINCIPAL:
            raise RuntimeError("principal credit failed")
        return super().credit(user_id, amount, description, **kwargs)


def _transactions(session, position_id):
    return session.execute(
        select(Transaction).where(Transaction.related_position_id == position_id)
    ).scalars().all()


@pytest.fixture
def funded(make_wallet, make_plan, make_position):
    """A user with an empty wallet and one matured 1000 @ 15% position."""
    wallet = make_wallet()
    plan = make_plan(rate=Decimal("15"))
    position = make_position(wallet.user_id, plan, amount=Decimal("1000"))
    return wallet, plan, position


class TestSettlePosition:

    def test_credits_profit_and_principal(self, settlement_service, funded, clock):
        wallet, plan, position = funded

        outcome = settlement_service.settle_position(position.id)

        assert outcome.disposition is SettlementDisposition.SETTLED
        assert outcome.profit_credited == Decimal("150")
        assert outcome.principal_returned == Decimal("1000")
        assert len(outcome.transaction_references) == 2

        assert wallet.balance == Decimal("1150")
        assert position.status == "completed"
        assert position.is_profit_credited is True
        assert position.is_principal_returned is True
        assert position.actual_profit == Decimal("150")
        assert position.profit_credited_at == clock.now()
        assert position.principal_returned_at == clock.now()

    def test_emits_profit_then_principal_transactions(
        self, settlement_service, funded, session
    ):
        _, _, position = funded
        settlement_service.settle_position(position.id)

        types = sorted(t.type for t in _transactions(session, position.id))
        assert types == ["investment_principal", "investment_profit"]
        assert all(t.status == "completed" for t in _transactions(session, position.id))

    def test_releases_plan_slot_and_clears_wallet_flag(
        self, settlement_service, funded, wallet_service
    ):
        wallet, plan, position = funded
        wallet_service.refresh_active_investments_flag(wallet.user_id)
        assert wallet.has_active_investments is True

        settlement_service.settle_position(position.id)

        assert plan.active_investments == 0
        assert wallet.has_active_investments is False

    def test_zero_profit_sets_flag_without_transaction(
        self, settlement_service, make_wallet, make_plan, make_position, session
    ):
        wallet = make_wallet()
        plan = make_plan(rate=Decimal("0"))
        position = make_position(wallet.user_id, plan, amount=Decimal("200"))

        outcome = settlement_service.settle_position(position.id)

        assert len(outcome.transaction_references) == 1
        assert position.is_profit_credited is True
        assert wallet.balance == Decimal("200")
        assert [t.type for t in _transactions(session, position.id)] == [
            "investment_principal"
        ]

    def test_unknown_position(self, settlement_service):
        with pytest.raises(PositionNotFoundError):
            settlement_service.settle_position(uuid4())

    def test_logs_with_position_context(self, settlement_service, funded, captured_logs):
        _, _, position = funded
        settlement_service.settle_position(position.id)
        settled = [r for r in captured_logs() if r["message"] == "position_settled"]
        assert len(settled) == 1
        assert settled[0]["position_id"] == str(position.id)


class TestIdempotency:

    def test_second_settlement_is_a_no_op(self, settlement_service, funded, session):
        wallet, _, position = funded
        settlement_service.settle_position(position.id)
        outcome = settlement_service.settle_position(position.id)

        assert outcome.disposition is SettlementDisposition.SKIPPED_NOT_ACTIVE
        assert wallet.balance == Decimal("1150")
        assert len(_transactions(session, position.id)) == 2

    def test_profit_already_credited_only_returns_principal(
        self, settlement_service, make_wallet, make_plan, make_position, session
    ):
        wallet = make_wallet(balance=Decimal("150"))
        plan = make_plan(rate=Decimal("15"))
        position = make_position(
            wallet.user_id, plan, amount=Decimal("1000"), is_profit_credited=True,
        )

        outcome = settlement_service.settle_position(position.id)

        assert outcome.profit_credited == Decimal("0")
        assert outcome.principal_returned == Decimal("1000")
        assert wallet.balance == Decimal("1150")
        assert [t.type for t in _transactions(session, position.id)] == [
            "investment_principal"
        ]


class TestAtomicity:

    def test_principal_failure_keeps_profit_flag(
        self, settlement_service, make_wallet, make_plan, make_position, session
    ):
        """Profit credited earlier, principal now blocked by a frozen wallet."""
        wallet = make_wallet(balance=Decimal("150"), frozen=True)
        plan = make_plan(rate=Decimal("15"))
        position = make_position(
            wallet.user_id, plan, amount=Decimal("1000"), is_profit_credited=True,
        )

        savepoint = session.begin_nested()
        with pytest.raises(WalletFrozenError):
            settlement_service.settle_position(position.id)
        savepoint.rollback()

        session.refresh(position)
        session.refresh(wallet)
        assert position.is_profit_credited is True
        assert position.is_principal_returned is False
        assert position.status == "active"
        assert wallet.balance == Decimal("150")

    def test_failure_mid_routine_rolls_back_whole_position(
        self, session, clock, make_wallet, make_plan, make_position
    ):
        wallet = make_wallet()
        plan = make_plan(rate=Decimal("15"))
        position = make_position(wallet.user_id, plan, amount=Decimal("1000"))
        failing = SettlementService(
            session, clock, PrincipalFailingWalletService(session, clock)
        )

        savepoint = session.begin_nested()
        with pytest.raises(RuntimeError):
            failing.settle_position(position.id)
        savepoint.rollback()

        session.refresh(position)
        session.refresh(wallet)
        assert position.is_profit_credited is False
        assert position.is_principal_returned is False
        assert wallet.balance == Decimal("0")
        assert session.execute(
            select(func.count(Transaction.id))
        ).scalar_one() == 0

        # Once the fault clears, a rerun credits each half exactly once.
        SettlementService(session, clock).settle_position(position.id)
        assert wallet.balance == Decimal("1150")
        assert len(_transactions(session, position.id)) == 2


class TestFrozenExclusion:

    def test_frozen_position_is_skipped_untouched(
        self, settlement_service, make_wallet, make_plan, make_position, session
    ):
        wallet = make_wallet()
        plan = make_plan()
        position = make_position(wallet.user_id, plan, is_frozen=True)

        outcome = settlement_service.settle_position(position.id)

        assert outcome.disposition is SettlementDisposition.SKIPPED_FROZEN
        assert outcome.skipped
        assert position.status == "active"
        assert position.is_profit_credited is False
        assert wallet.balance == Decimal("0")
        assert _transactions(session, position.id) == []

    def test_cancelled_position_is_skipped(
        self, settlement_service, make_wallet, make_plan, make_position
    ):
        wallet = make_wallet()
        position = make_position(wallet.user_id, make_plan(), status="cancelled")

        outcome = settlement_service.settle_position(position.id)

        assert outcome.disposition is SettlementDisposition.SKIPPED_NOT_ACTIVE
        assert wallet.balance == Decimal("0")
