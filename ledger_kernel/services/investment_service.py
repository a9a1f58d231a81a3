"""
InvestmentService -- opens positions.

Responsibility:
    Validates an investment against the plan's limits, moves the principal
    out of the wallet and creates the active Position, atomically.

Invariants enforced:
    - Plan exists and is active.
    - min_amount <= amount <= max_amount (when set).
    - At most one active position per (user, plan) unless the plan allows
      multiple investments.
    - max_active_users caps the number of distinct users with an active
      position in the plan.
    - end_date = start_date + duration_days and
      expected_profit = amount * rate / 100, fixed at creation.

Failure modes:
    - PlanNotFoundError, InvestmentLimitError, plus any WalletService error
      (InsufficientBalanceError, WalletFrozenError, ...).  On failure the
      SAVEPOINT is rolled back and no position remains.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.values import expected_profit, maturity_date, to_decimal
from ledger_kernel.exceptions import (
    InvestmentLimitError,
    PlanNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.plan import InvestmentPlan
from ledger_kernel.models.position import Position, PositionStatus
from ledger_kernel.models.transaction import TransactionEndpoint, TransactionType
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.wallet_service import WalletService

logger = get_logger("services.investment")


class InvestmentService(BaseService[Position]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        wallet_service: WalletService | None = None,
    ):
        super().__init__(session, clock)
        self.wallets = wallet_service or WalletService(session, self.clock)

    def invest(
        self,
        user_id: UUID,
        plan_id: UUID,
        amount: Decimal,
        actor_id: UUID | None = None,
    ) -> Position:
        """Debit ``amount`` from the user's wallet and open an active position."""
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("amount", f"must be positive, got {amount}")

        plan = self.session.execute(
            select(InvestmentPlan)
            .where(InvestmentPlan.id == plan_id)
            .with_for_update()
        ).scalar_one_or_none()
        if plan is None or not plan.is_active:
            raise PlanNotFoundError(str(plan_id))

        self._check_limits(plan, user_id, amount)

        start = self.clock.now()
        with self.session.begin_nested():
            position = Position(
                user_id=user_id,
                plan_id=plan.id,
                amount=amount,
                start_date=start,
                end_date=maturity_date(start, plan.duration_days),
                expected_profit=expected_profit(amount, plan.rate),
                actual_profit=Decimal("0"),
                status=PositionStatus.ACTIVE.value,
                created_by_id=actor_id or user_id,
            )
            self.session.add(position)
            self.session.flush()

            self.wallets.debit(
                user_id,
                amount,
                f"Investment in {plan.name}",
                txn_type=TransactionType.TRADE_TO_INVESTMENT,
                source=TransactionEndpoint.WALLET,
                destination=TransactionEndpoint.INVESTMENT,
                related_position_id=position.id,
                actor_id=actor_id,
            )

            plan.total_invested = plan.total_invested + amount
            plan.active_investments = plan.active_investments + 1
            self.wallets.refresh_active_investments_flag(user_id)

        logger.info(
            "position_opened",
            extra={
                "position_id": str(position.id),
                "user_id": str(user_id),
                "plan_id": str(plan.id),
                "amount": str(amount),
                "expected_profit": str(position.expected_profit),
            },
        )
        return position

    def _check_limits(
        self, plan: InvestmentPlan, user_id: UUID, amount: Decimal
    ) -> None:
        pid = str(plan.id)
        if amount < plan.min_amount:
            raise InvestmentLimitError(
                pid, "min_amount",
                f"amount {amount} is below the plan minimum {plan.min_amount}",
            )
        if plan.max_amount is not None and amount > plan.max_amount:
            raise InvestmentLimitError(
                pid, "max_amount",
                f"amount {amount} exceeds the plan maximum {plan.max_amount}",
            )

        active_in_plan = (
            Position.plan_id == plan.id,
            Position.status == PositionStatus.ACTIVE.value,
        )
        already_active = self.session.execute(
            select(func.count(Position.id)).where(
                *active_in_plan, Position.user_id == user_id
            )
        ).scalar_one()

        if already_active and not plan.allow_multiple_investments:
            raise InvestmentLimitError(
                pid, "allow_multiple_investments",
                "user already has an active investment in this plan",
            )

        if plan.max_active_users is not None and not already_active:
            active_users = self.session.execute(
                select(func.count(func.distinct(Position.user_id))).where(
                    *active_in_plan
                )
            ).scalar_one()
            if active_users >= plan.max_active_users:
                raise InvestmentLimitError(
                    pid, "max_active_users",
                    f"plan is full ({active_users}/{plan.max_active_users} users)",
                )
