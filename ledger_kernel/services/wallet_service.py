"""
WalletService -- credit/debit primitives on a user's wallet.

Responsibility:
    The only code path that mutates a wallet balance.  Each credit or debit
    updates the balance and running totals, stamps last activity and emits
    exactly one Transaction, all on the caller's unit of work.

Architecture position:
    Kernel > Services.  Depends on TransactionLedger.  Called by
    InvestmentService, SettlementService and PositionService.

Invariants enforced:
    - amount > 0 for every movement.
    - A frozen wallet rejects every movement.
    - balance never goes negative: a debit larger than the balance is
      rejected before anything is written.  The same holds for
      trade_balance on trade wallet transfers.
    - Trade wallet transfers are refused while the user holds an active
      position, and move money between the two balances without touching
      the deposit and withdrawal totals.
    - Per-wallet serialization: the row is read with SELECT ... FOR UPDATE
      and the version column turns a lost update into OptimisticLockError.

Failure modes:
    - ValidationError, WalletNotFoundError, WalletFrozenError,
      InsufficientBalanceError, ActiveInvestmentsLockError,
      OptimisticLockError.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.values import to_decimal
from ledger_kernel.exceptions import (
    ActiveInvestmentsLockError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    OptimisticLockError,
    ValidationError,
    WalletAlreadyExistsError,
    WalletFrozenError,
    WalletNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.position import Position, PositionStatus
from ledger_kernel.models.transaction import (
    Transaction,
    TransactionEndpoint,
    TransactionType,
)
from ledger_kernel.models.wallet import DEFAULT_CURRENCY, Wallet
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("services.wallet")


@dataclass(frozen=True)
class WalletBalances:
    user_id: UUID
    main_balance: Decimal
    trade_balance: Decimal
    currency: str
    frozen: bool
    has_active_investments: bool

    def to_dict(self) -> dict:
        return {
            "user_id": str(self.user_id),
            "main_balance": str(self.main_balance),
            "trade_balance": str(self.trade_balance),
            "currency": self.currency,
            "frozen": self.frozen,
            "has_active_investments": self.has_active_investments,
        }


class WalletService(BaseService[Wallet]):
    """
    Wallet accounting on the caller's session.

    Contract:
        ``credit``/``debit`` return the updated Wallet.  The emitted
        Transaction is available as ``last_transaction`` for callers that
        need its reference (settlement reports them).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: TransactionLedger | None = None,
    ):
        super().__init__(session, clock)
        self.ledger = ledger or TransactionLedger(session, self.clock)
        self.last_transaction: Transaction | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_wallet(
        self,
        user_id: UUID,
        currency: str = DEFAULT_CURRENCY,
        actor_id: UUID | None = None,
    ) -> Wallet:
        if self._find(user_id) is not None:
            raise WalletAlreadyExistsError(str(user_id))
        wallet = Wallet(
            user_id=user_id,
            balance=Decimal("0"),
            trade_balance=Decimal("0"),
            currency=currency,
            total_deposited=Decimal("0"),
            total_withdrawn=Decimal("0"),
            created_by_id=actor_id,
        )
        self.session.add(wallet)
        self.session.flush()
        logger.info("wallet_created", extra={"user_id": str(user_id)})
        return wallet

    def get_wallet(self, user_id: UUID) -> Wallet:
        wallet = self._find(user_id)
        if wallet is None:
            raise WalletNotFoundError(str(user_id))
        return wallet

    def get_balance(self, user_id: UUID) -> Decimal:
        return self.get_wallet(user_id).balance

    def freeze(
        self, user_id: UUID, reason: str, actor_id: UUID | None = None
    ) -> Wallet:
        wallet = self._lock(user_id)
        if wallet.frozen:
            raise InvalidStateTransitionError(
                "wallet", str(user_id), "frozen", "freeze"
            )
        wallet.frozen = True
        wallet.frozen_at = self.clock.now()
        wallet.frozen_by_id = actor_id
        wallet.freeze_reason = reason
        wallet.updated_by_id = actor_id
        self._flush(wallet)
        logger.warning(
            "wallet_frozen", extra={"user_id": str(user_id), "reason": reason}
        )
        return wallet

    def unfreeze(self, user_id: UUID, actor_id: UUID | None = None) -> Wallet:
        wallet = self._lock(user_id)
        if not wallet.frozen:
            raise InvalidStateTransitionError(
                "wallet", str(user_id), "active", "unfreeze"
            )
        wallet.frozen = False
        wallet.frozen_at = None
        wallet.frozen_by_id = None
        wallet.freeze_reason = None
        wallet.updated_by_id = actor_id
        self._flush(wallet)
        logger.info("wallet_unfrozen", extra={"user_id": str(user_id)})
        return wallet

    # ------------------------------------------------------------------
    # Money movement
    # ------------------------------------------------------------------

    def credit(
        self,
        user_id: UUID,
        amount: Decimal,
        description: str,
        *,
        txn_type: TransactionType = TransactionType.DEPOSIT,
        source: TransactionEndpoint = TransactionEndpoint.WALLET,
        destination: TransactionEndpoint = TransactionEndpoint.WALLET,
        related_position_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> Wallet:
        """
        Add ``amount`` to the balance and record one completed transaction.

        Raises:
            ValidationError: amount <= 0.
            WalletNotFoundError: No wallet for ``user_id``.
            WalletFrozenError: Wallet is frozen.
            OptimisticLockError: Concurrent writer updated the wallet first.
        """
        amount = self._validate_amount(amount)
        wallet = self._lock(user_id)
        if wallet.frozen:
            raise WalletFrozenError(str(user_id))

        wallet.balance = wallet.balance + amount
        wallet.total_deposited = wallet.total_deposited + amount
        wallet.last_activity_at = self.clock.now()
        wallet.updated_by_id = actor_id
        self._flush(wallet)

        self._emit(
            user_id, txn_type, amount, source, destination, description,
            related_position_id, actor_id,
        )
        logger.info(
            "wallet_credited",
            extra={
                "user_id": str(user_id),
                "amount": str(amount),
                "balance": str(wallet.balance),
                "txn_type": TransactionType(txn_type).value,
            },
        )
        return wallet

    def debit(
        self,
        user_id: UUID,
        amount: Decimal,
        description: str,
        *,
        txn_type: TransactionType = TransactionType.WITHDRAWAL,
        source: TransactionEndpoint = TransactionEndpoint.WALLET,
        destination: TransactionEndpoint = TransactionEndpoint.WALLET,
        related_position_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> Wallet:
        """
        Subtract ``amount`` from the balance and record one completed transaction.

        Raises:
            ValidationError, WalletNotFoundError, WalletFrozenError,
            OptimisticLockError as for credit.
            InsufficientBalanceError: balance < amount.  Nothing is written.
        """
        amount = self._validate_amount(amount)
        wallet = self._lock(user_id)
        if wallet.frozen:
            raise WalletFrozenError(str(user_id))
        if wallet.balance < amount:
            raise InsufficientBalanceError(str(user_id), wallet.balance, amount)

        wallet.balance = wallet.balance - amount
        wallet.total_withdrawn = wallet.total_withdrawn + amount
        wallet.last_activity_at = self.clock.now()
        wallet.updated_by_id = actor_id
        self._flush(wallet)

        self._emit(
            user_id, txn_type, amount, source, destination, description,
            related_position_id, actor_id,
        )
        logger.info(
            "wallet_debited",
            extra={
                "user_id": str(user_id),
                "amount": str(amount),
                "balance": str(wallet.balance),
                "txn_type": TransactionType(txn_type).value,
            },
        )
        return wallet

    # ------------------------------------------------------------------
    # Trade wallet
    # ------------------------------------------------------------------

    def fund_trade_wallet(
        self,
        user_id: UUID,
        amount: Decimal,
        description: str | None = None,
        actor_id: UUID | None = None,
    ) -> Wallet:
        """
        Move ``amount`` from the main balance to the trade balance.

        Raises:
            ValidationError, WalletNotFoundError, WalletFrozenError,
            OptimisticLockError as for debit.
            InsufficientBalanceError: balance < amount.
            ActiveInvestmentsLockError: The user holds an active position.
        """
        amount = self._validate_amount(amount)
        wallet = self._lock_for_trade_transfer(user_id, "fund trade wallet")
        if wallet.balance < amount:
            raise InsufficientBalanceError(str(user_id), wallet.balance, amount)

        wallet.balance = wallet.balance - amount
        wallet.trade_balance = wallet.trade_balance + amount
        return self._finish_trade_transfer(
            wallet,
            TransactionType.WALLET_TO_TRADE,
            amount,
            TransactionEndpoint.WALLET,
            TransactionEndpoint.TRADE_WALLET,
            description or f"Funding trade wallet with {amount} {wallet.currency}",
            actor_id,
        )

    def withdraw_trade_wallet(
        self,
        user_id: UUID,
        amount: Decimal,
        description: str | None = None,
        actor_id: UUID | None = None,
    ) -> Wallet:
        """
        Move ``amount`` from the trade balance back to the main balance.

        Raises:
            As for fund_trade_wallet, with InsufficientBalanceError raised
            against the trade balance.
        """
        amount = self._validate_amount(amount)
        wallet = self._lock_for_trade_transfer(user_id, "withdraw trade wallet")
        if wallet.trade_balance < amount:
            raise InsufficientBalanceError(
                str(user_id), wallet.trade_balance, amount, account="trade wallet"
            )

        wallet.trade_balance = wallet.trade_balance - amount
        wallet.balance = wallet.balance + amount
        return self._finish_trade_transfer(
            wallet,
            TransactionType.TRADE_TO_WALLET,
            amount,
            TransactionEndpoint.TRADE_WALLET,
            TransactionEndpoint.WALLET,
            description or f"Withdrawing {amount} {wallet.currency} from trade wallet",
            actor_id,
        )

    def get_balances(self, user_id: UUID) -> WalletBalances:
        """Both balances, with has_active_investments brought up to date."""
        wallet = self.refresh_active_investments_flag(user_id)
        return WalletBalances(
            user_id=user_id,
            main_balance=wallet.balance,
            trade_balance=wallet.trade_balance,
            currency=wallet.currency,
            frozen=wallet.frozen,
            has_active_investments=wallet.has_active_investments,
        )

    def refresh_active_investments_flag(self, user_id: UUID) -> Wallet:
        """has_active_investments := the user holds at least one active position."""
        wallet = self._lock(user_id)
        has_active = self._has_active_positions(user_id)
        if wallet.has_active_investments != has_active:
            wallet.has_active_investments = has_active
            self._flush(wallet)
        return wallet

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, user_id: UUID) -> Wallet | None:
        return self.session.execute(
            select(Wallet).where(Wallet.user_id == user_id)
        ).scalar_one_or_none()

    def _lock(self, user_id: UUID) -> Wallet:
        # populate_existing so the version read is the row we locked, not a
        # stale identity-map copy
        wallet = self.session.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if wallet is None:
            raise WalletNotFoundError(str(user_id))
        return wallet

    def _has_active_positions(self, user_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(
                    exists().where(
                        Position.user_id == user_id,
                        Position.status == PositionStatus.ACTIVE.value,
                    )
                )
            ).scalar()
        )

    def _lock_for_trade_transfer(self, user_id: UUID, operation: str) -> Wallet:
        wallet = self._lock(user_id)
        if wallet.frozen:
            raise WalletFrozenError(str(user_id))
        # Checked against positions, not the cached flag
        if self._has_active_positions(user_id):
            raise ActiveInvestmentsLockError(str(user_id), operation)
        return wallet

    def _finish_trade_transfer(
        self,
        wallet: Wallet,
        txn_type: TransactionType,
        amount: Decimal,
        source: TransactionEndpoint,
        destination: TransactionEndpoint,
        description: str,
        actor_id: UUID | None,
    ) -> Wallet:
        wallet.last_activity_at = self.clock.now()
        wallet.updated_by_id = actor_id
        self._flush(wallet)

        self._emit(
            wallet.user_id, txn_type, amount, source, destination, description,
            None, actor_id,
        )
        logger.info(
            "trade_wallet_transfer",
            extra={
                "user_id": str(wallet.user_id),
                "amount": str(amount),
                "txn_type": txn_type.value,
                "balance": str(wallet.balance),
                "trade_balance": str(wallet.trade_balance),
            },
        )
        return wallet

    def _flush(self, wallet: Wallet) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "wallet_optimistic_lock_conflict",
                extra={"user_id": str(wallet.user_id)},
            )
            raise OptimisticLockError("wallet", str(wallet.user_id)) from exc

    def _emit(
        self,
        user_id: UUID,
        txn_type: TransactionType,
        amount: Decimal,
        source: TransactionEndpoint,
        destination: TransactionEndpoint,
        description: str,
        related_position_id: UUID | None,
        actor_id: UUID | None,
    ) -> Transaction:
        txn = self.ledger.record(
            user_id,
            txn_type,
            amount,
            source,
            destination,
            description=description,
            related_position_id=related_position_id,
            actor_id=actor_id,
        )
        self.ledger.complete(txn.reference)
        self.last_transaction = txn
        return txn

    @staticmethod
    def _validate_amount(amount: Decimal) -> Decimal:
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("amount", f"must be positive, got {amount}")
        return amount
