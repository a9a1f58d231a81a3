"""
Module: ledger_kernel.models.wallet
Responsibility: ORM persistence for user wallets.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One wallet per user (UNIQUE user_id).
    - balance >= 0 and trade_balance >= 0 (WalletService rejects the debit
      or transfer; CHECK constraints back it).
    - Lost updates are impossible: every UPDATE bumps ``version`` and is
      conditioned on the previously read value (SQLAlchemy version_id_col).

Failure modes:
    - StaleDataError from the ORM when a concurrent writer won the race;
      WalletService translates it to OptimisticLockError.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import UUID, TrackedBase, UUIDString

DEFAULT_CURRENCY = "USDT"


class Wallet(TrackedBase):
    """A user's main balance and trade balance."""

    __tablename__ = "wallets"

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_wallet_user"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint(
            "trade_balance >= 0", name="ck_wallet_trade_balance_non_negative"
        ),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Moved to and from balance only through WalletService trade transfers
    trade_balance: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    currency: Mapped[str] = mapped_column(
        String(10), nullable=False, default=DEFAULT_CURRENCY
    )

    frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frozen_at: Mapped[datetime | None] = mapped_column(nullable=True)
    frozen_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    freeze_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_deposited: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    total_withdrawn: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    has_active_investments: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    last_activity_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Wallet user={self.user_id} balance={self.balance} {self.currency}>"
