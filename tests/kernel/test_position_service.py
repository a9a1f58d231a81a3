"""
Tests for PositionService admin actions: freeze/unfreeze, manual
completion, termination and profit adjustment.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from ledger_kernel.exceptions import (
    InvalidStateTransitionError,
    PositionFrozenError,
    ValidationError,
)
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.services.position_service import PositionAction, PositionService
from ledger_kernel.services.settlement_service import SettlementDisposition


@pytest.fixture
def position_service(session, clock, wallet_service, settlement_service):
    return PositionService(session, clock, wallet_service, settlement_service)


@pytest.fixture
def open_position(make_wallet, make_plan, make_position):
    """1000 @ 15% that matures in ten days."""
    wallet = make_wallet()
    plan = make_plan(rate=Decimal("15"))
    position = make_position(
        wallet.user_id, plan, amount=Decimal("1000"), matured_days_ago=-10,
    )
    return wallet, plan, position


def _position_transactions(session, position_id):
    return session.execute(
        select(Transaction).where(Transaction.related_position_id == position_id)
    ).scalars().all()


class TestFreeze:

    def test_freeze_records_audit_fields(
        self, position_service, open_position, clock, test_actor_id
    ):
        _, _, position = open_position
        position_service.freeze(
            position.id, "dispute", actor_id=test_actor_id, admin_notes="ticket 12",
        )
        assert position.is_frozen is True
        assert position.frozen_at == clock.now()
        assert position.frozen_by_id == test_actor_id
        assert position.freeze_reason == "dispute"
        assert position.admin_notes == "ticket 12"
        assert position.last_reviewed_at == clock.now()

    def test_freeze_twice_rejected(self, position_service, open_position):
        _, _, position = open_position
        position_service.freeze(position.id, "dispute")
        with pytest.raises(InvalidStateTransitionError):
            position_service.freeze(position.id, "again")

    def test_unfreeze_clears_fields(self, position_service, open_position):
        _, _, position = open_position
        position_service.freeze(position.id, "dispute")
        position_service.unfreeze(position.id)
        assert position.is_frozen is False
        assert position.frozen_at is None
        assert position.freeze_reason is None

    def test_unfreeze_not_frozen_rejected(self, position_service, open_position):
        _, _, position = open_position
        with pytest.raises(InvalidStateTransitionError):
            position_service.unfreeze(position.id)


class TestCompleteManually:

    def test_completes_before_end_date(
        self, position_service, open_position, test_actor_id
    ):
        wallet, _, position = open_position

        outcome = position_service.complete_manually(position.id, actor_id=test_actor_id)

        assert outcome.disposition is SettlementDisposition.SETTLED
        assert position.status == "completed"
        assert position.manually_completed is True
        assert position.completed_by_id == test_actor_id
        assert wallet.balance == Decimal("1150")

    def test_frozen_position_cannot_complete(self, position_service, open_position):
        wallet, _, position = open_position
        position_service.freeze(position.id, "hold")

        with pytest.raises(PositionFrozenError):
            position_service.complete_manually(position.id)
        assert wallet.balance == Decimal("0")

    def test_completed_position_cannot_complete_again(
        self, position_service, open_position
    ):
        _, _, position = open_position
        position_service.complete_manually(position.id)
        with pytest.raises(InvalidStateTransitionError):
            position_service.complete_manually(position.id)


class TestTerminate:

    def test_terminate_moves_no_money(
        self, position_service, open_position, session, wallet_service
    ):
        wallet, plan, position = open_position
        wallet_service.refresh_active_investments_flag(wallet.user_id)

        position_service.terminate(position.id, reason="fraud")

        assert position.status == "cancelled"
        assert position.admin_notes == "fraud"
        assert plan.active_investments == 0
        assert wallet.balance == Decimal("0")
        assert wallet.has_active_investments is False
        assert _position_transactions(session, position.id) == []

    def test_frozen_active_position_can_be_terminated(
        self, position_service, open_position
    ):
        _, _, position = open_position
        position_service.freeze(position.id, "hold")
        position_service.terminate(position.id)
        assert position.status == "cancelled"

    def test_cancelled_position_cannot_terminate(self, position_service, open_position):
        _, _, position = open_position
        position_service.terminate(position.id)
        with pytest.raises(InvalidStateTransitionError):
            position_service.terminate(position.id)


class TestAdjustProfit:

    def test_increase_credits_difference(
        self, position_service, open_position, session
    ):
        wallet, _, position = open_position
        position_service.complete_manually(position.id)

        position_service.adjust_profit(position.id, Decimal("200"), reason="bonus")

        assert position.actual_profit == Decimal("200")
        assert wallet.balance == Decimal("1200")
        profit_txns = [
            t for t in _position_transactions(session, position.id)
            if t.type == "investment_profit"
        ]
        assert sorted(t.amount for t in profit_txns) == [Decimal("50"), Decimal("150")]

    def test_decrease_only_rewrites_profit(
        self, position_service, open_position, session, captured_logs
    ):
        wallet, _, position = open_position
        position_service.complete_manually(position.id)

        position_service.adjust_profit(position.id, Decimal("100"))

        assert position.actual_profit == Decimal("100")
        assert wallet.balance == Decimal("1150")
        assert len(_position_transactions(session, position.id)) == 2
        messages = [r["message"] for r in captured_logs()]
        assert "position_profit_reduced_without_debit" in messages

    def test_active_position_rejected(self, position_service, open_position):
        _, _, position = open_position
        with pytest.raises(InvalidStateTransitionError):
            position_service.adjust_profit(position.id, Decimal("10"))

    def test_negative_profit_rejected(self, position_service, open_position):
        _, _, position = open_position
        position_service.complete_manually(position.id)
        with pytest.raises(ValidationError):
            position_service.adjust_profit(position.id, Decimal("-1"))


class TestValidateAction:

    def test_allowed_action(self, position_service, open_position):
        _, _, position = open_position
        check = position_service.validate_action(position.id, "freeze")
        assert check.allowed is True
        assert check.error_code is None

    def test_disallowed_action_reports_code(self, position_service, open_position):
        _, _, position = open_position
        position_service.freeze(position.id, "hold")

        check = position_service.validate_action(position.id, PositionAction.COMPLETE)

        assert check.allowed is False
        assert check.error_code == "POSITION_FROZEN"
        assert position.status == "active"
