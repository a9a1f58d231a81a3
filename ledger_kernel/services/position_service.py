"""
PositionService -- administrative lifecycle actions on positions.

Responsibility:
    Freeze/unfreeze, manual completion, termination and post-completion
    profit adjustment, plus a dry-run check of whether an action is allowed.

Architecture position:
    Kernel > Services.  Manual completion delegates to SettlementService so
    both completion paths share one crediting routine.

Invariants enforced:
    - freeze only from active and not frozen; unfreeze only from frozen.
    - complete only from active and not frozen.
    - terminate only from active (completed and cancelled are terminal).
    - adjust_profit only on completed positions; only an upward difference
      moves money.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.values import to_decimal
from ledger_kernel.exceptions import (
    InvalidStateTransitionError,
    LedgerKernelError,
    PositionFrozenError,
    PositionNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.plan import InvestmentPlan
from ledger_kernel.models.position import Position, PositionStatus
from ledger_kernel.models.transaction import TransactionEndpoint, TransactionType
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.settlement_service import (
    SettlementOutcome,
    SettlementService,
)
from ledger_kernel.services.wallet_service import WalletService

logger = get_logger("services.position")


class PositionAction(str, Enum):
    FREEZE = "freeze"
    UNFREEZE = "unfreeze"
    COMPLETE = "complete"
    TERMINATE = "terminate"
    ADJUST_PROFIT = "adjust_profit"


@dataclass(frozen=True)
class ActionCheck:
    action: PositionAction
    allowed: bool
    reason: str | None = None
    error_code: str | None = None


class PositionService(BaseService[Position]):
    """Admin actions on a single position, flushed on the caller's session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        wallet_service: WalletService | None = None,
        settlement_service: SettlementService | None = None,
    ):
        super().__init__(session, clock)
        self.wallets = wallet_service or WalletService(session, self.clock)
        self.settlement = settlement_service or SettlementService(
            session, self.clock, self.wallets
        )

    def get_position(self, position_id: UUID) -> Position:
        position = self.session.get(Position, position_id)
        if position is None:
            raise PositionNotFoundError(str(position_id))
        return position

    def validate_action(
        self, position_id: UUID, action: PositionAction | str
    ) -> ActionCheck:
        """Report whether ``action`` would be accepted, without changing anything."""
        action = PositionAction(action)
        error = self._check(self.get_position(position_id), action)
        if error is None:
            return ActionCheck(action=action, allowed=True)
        return ActionCheck(
            action=action, allowed=False, reason=str(error), error_code=error.code
        )

    def freeze(
        self,
        position_id: UUID,
        reason: str,
        actor_id: UUID | None = None,
        admin_notes: str | None = None,
    ) -> Position:
        position = self._require(position_id, PositionAction.FREEZE)
        now = self.clock.now()
        position.is_frozen = True
        position.frozen_at = now
        position.frozen_by_id = actor_id
        position.freeze_reason = reason
        if admin_notes:
            position.admin_notes = admin_notes
        self._mark_reviewed(position, actor_id)
        self.session.flush()
        logger.warning(
            "position_frozen",
            extra={"position_id": str(position.id), "reason": reason},
        )
        return position

    def unfreeze(self, position_id: UUID, actor_id: UUID | None = None) -> Position:
        position = self._require(position_id, PositionAction.UNFREEZE)
        position.is_frozen = False
        position.frozen_at = None
        position.frozen_by_id = None
        position.freeze_reason = None
        self._mark_reviewed(position, actor_id)
        self.session.flush()
        logger.info("position_unfrozen", extra={"position_id": str(position.id)})
        return position

    def complete_manually(
        self, position_id: UUID, actor_id: UUID | None = None
    ) -> SettlementOutcome:
        """
        Complete an active position now, whatever its end date.

        Runs the same routine as the scheduled batch, then records who
        completed it.
        """
        position = self._require(position_id, PositionAction.COMPLETE)
        with LogContext.bind(actor_id=str(actor_id) if actor_id else None):
            outcome = self.settlement.settle_position(position.id, actor_id)
        position.manually_completed = True
        position.completed_by_id = actor_id
        self._mark_reviewed(position, actor_id)
        self.session.flush()
        logger.info(
            "position_completed_manually",
            extra={"position_id": str(position.id), "status": position.status},
        )
        return outcome

    def terminate(
        self,
        position_id: UUID,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> Position:
        """Cancel an active position.  No money moves."""
        position = self._require(position_id, PositionAction.TERMINATE)
        position.status = PositionStatus.CANCELLED.value
        if reason:
            position.admin_notes = reason
        self._mark_reviewed(position, actor_id)

        plan = self.session.get(InvestmentPlan, position.plan_id)
        if plan is not None and plan.active_investments > 0:
            plan.active_investments -= 1

        self.session.flush()
        self.wallets.refresh_active_investments_flag(position.user_id)
        logger.warning(
            "position_terminated",
            extra={"position_id": str(position.id), "reason": reason},
        )
        return position

    def adjust_profit(
        self,
        position_id: UUID,
        new_profit: Decimal,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> Position:
        """
        Change actual_profit on a completed position.

        An increase credits the difference to the wallet as
        ``investment_profit``.  A decrease only rewrites actual_profit; no
        debit is made and no transaction is recorded.
        """
        new_profit = to_decimal(new_profit)
        if new_profit < 0:
            raise ValidationError("new_profit", f"must be >= 0, got {new_profit}")
        position = self._require(position_id, PositionAction.ADJUST_PROFIT)

        old_profit = position.actual_profit
        difference = new_profit - old_profit
        if difference > 0:
            self.wallets.credit(
                position.user_id,
                difference,
                reason or f"Profit adjustment for investment {position.id}",
                txn_type=TransactionType.INVESTMENT_PROFIT,
                source=TransactionEndpoint.INVESTMENT,
                destination=TransactionEndpoint.WALLET,
                related_position_id=position.id,
                actor_id=actor_id,
            )
        elif difference < 0:
            logger.warning(
                "position_profit_reduced_without_debit",
                extra={
                    "position_id": str(position.id),
                    "old_profit": str(old_profit),
                    "new_profit": str(new_profit),
                },
            )

        position.actual_profit = new_profit
        if reason:
            position.admin_notes = reason
        self._mark_reviewed(position, actor_id)
        self.session.flush()
        logger.info(
            "position_profit_adjusted",
            extra={
                "position_id": str(position.id),
                "old_profit": str(old_profit),
                "new_profit": str(new_profit),
            },
        )
        return position

    # ------------------------------------------------------------------

    def _require(self, position_id: UUID, action: PositionAction) -> Position:
        position = self.get_position(position_id)
        error = self._check(position, action)
        if error is not None:
            raise error
        return position

    @staticmethod
    def _check(
        position: Position, action: PositionAction
    ) -> LedgerKernelError | None:
        pid = str(position.id)
        state = "frozen" if position.is_frozen else position.status

        if action is PositionAction.FREEZE:
            if not position.is_active or position.is_frozen:
                return InvalidStateTransitionError("position", pid, state, "freeze")
        elif action is PositionAction.UNFREEZE:
            if not position.is_frozen:
                return InvalidStateTransitionError(
                    "position", pid, position.status, "unfreeze"
                )
        elif action is PositionAction.COMPLETE:
            if not position.is_active:
                return InvalidStateTransitionError(
                    "position", pid, position.status, "complete"
                )
            if position.is_frozen:
                return PositionFrozenError(pid)
        elif action is PositionAction.TERMINATE:
            if not position.is_active:
                return InvalidStateTransitionError(
                    "position", pid, position.status, "terminate"
                )
        elif action is PositionAction.ADJUST_PROFIT:
            if position.status != PositionStatus.COMPLETED.value:
                return InvalidStateTransitionError(
                    "position", pid, position.status, "adjust profit of"
                )
        return None

    def _mark_reviewed(self, position: Position, actor_id: UUID | None) -> None:
        position.last_reviewed_at = self.clock.now()
        position.reviewed_by_id = actor_id
        position.updated_by_id = actor_id
