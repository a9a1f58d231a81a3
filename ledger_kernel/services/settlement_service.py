"""
SettlementService -- the per-position maturity settlement routine.

Responsibility:
    Credits profit and returns principal for one matured position, flips
    the idempotency flags, completes the position and recomputes the
    wallet's has_active_investments flag.  The scheduled batch and manual
    admin completion both call ``settle_position``.

Architecture position:
    Kernel > Services.  Depends on WalletService.  Called by the settlement
    batch task (ledger_batch) and by PositionService.complete_manually.

Invariants enforced:
    - Order within a position: check active/frozen, credit profit, return
      principal, complete, refresh wallet flag.
    - is_profit_credited / is_principal_returned flip only after the
      matching wallet credit flushed, so a rerun only performs the half
      still pending.
    - A frozen position is never altered.

Failure modes:
    - PositionNotFoundError for unknown ids.
    - Any WalletService error (frozen wallet, optimistic lock conflict)
      propagates.  The caller wraps each position in a SAVEPOINT and rolls
      it back on failure.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import PositionNotFoundError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.plan import InvestmentPlan
from ledger_kernel.models.position import Position, PositionStatus
from ledger_kernel.models.transaction import TransactionEndpoint, TransactionType
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.wallet_service import WalletService

logger = get_logger("services.settlement")


class SettlementDisposition(str, Enum):
    SETTLED = "settled"
    SKIPPED_NOT_ACTIVE = "skipped_not_active"
    SKIPPED_FROZEN = "skipped_frozen"


@dataclass(frozen=True)
class SettlementOutcome:
    """What settle_position did for one position."""

    position_id: UUID
    disposition: SettlementDisposition
    position_status: str
    profit_credited: Decimal = Decimal("0")
    principal_returned: Decimal = Decimal("0")
    transaction_references: tuple[str, ...] = ()

    @property
    def skipped(self) -> bool:
        return self.disposition is not SettlementDisposition.SETTLED

    def to_dict(self) -> dict:
        return {
            "position_id": str(self.position_id),
            "disposition": self.disposition.value,
            "position_status": self.position_status,
            "profit_credited": str(self.profit_credited),
            "principal_returned": str(self.principal_returned),
            "transaction_references": list(self.transaction_references),
        }


class SettlementService(BaseService[Position]):
    """Settles one position at a time on the caller's session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        wallet_service: WalletService | None = None,
    ):
        super().__init__(session, clock)
        self.wallets = wallet_service or WalletService(session, self.clock)

    def settle_position(
        self, position_id: UUID, actor_id: UUID | None = None
    ) -> SettlementOutcome:
        """
        Run the settlement routine for one position.

        Preconditions:
            Called inside a SAVEPOINT or a unit of work the caller can roll
            back as a whole.

        Returns:
            SettlementOutcome.  Inactive and frozen positions come back as
            skipped with nothing written.
        """
        position = self._lock_position(position_id)

        with LogContext.bind(
            position_id=str(position.id), user_id=str(position.user_id)
        ):
            if not position.is_active:
                logger.info(
                    "position_settlement_skipped",
                    extra={"reason": "not_active", "status": position.status},
                )
                return SettlementOutcome(
                    position_id=position.id,
                    disposition=SettlementDisposition.SKIPPED_NOT_ACTIVE,
                    position_status=position.status,
                )

            if position.is_frozen:
                logger.info(
                    "position_settlement_skipped",
                    extra={"reason": "frozen"},
                )
                return SettlementOutcome(
                    position_id=position.id,
                    disposition=SettlementDisposition.SKIPPED_FROZEN,
                    position_status=position.status,
                )

            references: list[str] = []
            profit = Decimal("0")
            principal = Decimal("0")
            now = self.clock.now()

            if not position.is_profit_credited:
                profit = position.expected_profit
                # A zero-rate plan has nothing to credit, but the flag still flips
                if profit > 0:
                    self.wallets.credit(
                        position.user_id,
                        profit,
                        f"Profit for investment {position.id}",
                        txn_type=TransactionType.INVESTMENT_PROFIT,
                        source=TransactionEndpoint.INVESTMENT,
                        destination=TransactionEndpoint.WALLET,
                        related_position_id=position.id,
                        actor_id=actor_id,
                    )
                    references.append(self.wallets.last_transaction.reference)
                position.is_profit_credited = True
                position.actual_profit = position.expected_profit
                position.profit_credited_at = now
                self.session.flush()

            if not position.is_principal_returned:
                principal = position.amount
                self.wallets.credit(
                    position.user_id,
                    principal,
                    f"Principal return for investment {position.id}",
                    txn_type=TransactionType.INVESTMENT_PRINCIPAL,
                    source=TransactionEndpoint.INVESTMENT,
                    destination=TransactionEndpoint.WALLET,
                    related_position_id=position.id,
                    actor_id=actor_id,
                )
                references.append(self.wallets.last_transaction.reference)
                position.is_principal_returned = True
                position.principal_returned_at = now
                self.session.flush()

            if position.is_settled:
                position.status = PositionStatus.COMPLETED.value
                position.updated_by_id = actor_id
                self._release_plan_slot(position.plan_id)
                self.session.flush()

            self.wallets.refresh_active_investments_flag(position.user_id)

            logger.info(
                "position_settled",
                extra={
                    "profit_credited": str(profit),
                    "principal_returned": str(principal),
                    "status": position.status,
                },
            )
            return SettlementOutcome(
                position_id=position.id,
                disposition=SettlementDisposition.SETTLED,
                position_status=position.status,
                profit_credited=profit,
                principal_returned=principal,
                transaction_references=tuple(references),
            )

    def _lock_position(self, position_id: UUID) -> Position:
        position = self.session.execute(
            select(Position)
            .where(Position.id == position_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if position is None:
            raise PositionNotFoundError(str(position_id))
        return position

    def _release_plan_slot(self, plan_id: UUID) -> None:
        plan = self.session.get(InvestmentPlan, plan_id)
        if plan is not None and plan.active_investments > 0:
            plan.active_investments -= 1
