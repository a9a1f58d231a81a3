"""
Module: ledger_kernel.models.transaction
Responsibility: ORM persistence for the transaction ledger, the append-mostly
    record of every money movement.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - reference is globally unique (UNIQUE constraint; TransactionLedger
      translates the IntegrityError to DuplicateReferenceError).
    - status moves pending -> completed or pending -> failed only.
    - Reversal sets ``reversed`` and its audit stamps; status is untouched and
      rows are never deleted.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class TransactionType(str, Enum):
    WALLET_TO_TRADE = "wallet_to_trade"
    TRADE_TO_WALLET = "trade_to_wallet"
    TRADE_TO_INVESTMENT = "trade_to_investment"
    INVESTMENT_PROFIT = "investment_profit"
    INVESTMENT_PRINCIPAL = "investment_principal"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class TransactionEndpoint(str, Enum):
    """Where money moves from or to."""

    WALLET = "wallet"
    TRADE_WALLET = "trade_wallet"
    INVESTMENT = "investment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(TrackedBase):
    """One money movement for one user."""

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        UniqueConstraint("reference", name="uq_transaction_reference"),
        Index("idx_transaction_user", "user_id"),
        Index("idx_transaction_position", "related_position_id"),
        Index("idx_transaction_type_status", "type", "status"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    type: Mapped[str] = mapped_column(String(30), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    source: Mapped[str] = mapped_column(String(20), nullable=False)

    destination: Mapped[str] = mapped_column(String(20), nullable=False)

    reference: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    related_position_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("positions.id"),
        nullable=True,
    )

    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    reversed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING.value

    def __repr__(self) -> str:
        return f"<Transaction {self.reference} {self.type} {self.amount} {self.status}>"
