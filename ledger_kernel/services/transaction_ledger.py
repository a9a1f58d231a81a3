"""
TransactionLedger -- the append-mostly record of money movement.

Responsibility:
    Creates Transaction rows with globally unique references, moves them
    pending -> completed / failed, looks them up by reference, and flags
    administrative reversals.

Architecture position:
    Kernel > Services.  Used by WalletService for every balance change and,
    through it, by settlement and investment.

Invariants enforced:
    - Reference uniqueness: checked before insert and enforced by the
      UNIQUE constraint.  The insert runs inside a SAVEPOINT so a lost race
      only rolls back this row, never the caller's unit of work.
    - Status is monotonic: only pending -> completed and pending -> failed.
    - Reversal never rewrites status and never deletes.

Failure modes:
    - DuplicateReferenceError when the reference already exists.
    - InvalidStateTransitionError on complete/fail of a non-pending row or a
      second reversal.
    - TransactionNotFoundError on lookups of unknown references or ids.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.values import to_decimal
from ledger_kernel.exceptions import (
    DuplicateReferenceError,
    InvalidStateTransitionError,
    TransactionNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.transaction import (
    Transaction,
    TransactionEndpoint,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.services.base import BaseService

logger = get_logger("services.transaction_ledger")


class TransactionLedger(BaseService[Transaction]):
    """
    Records and transitions ledger transactions on the caller's session.

    Contract:
        Every method flushes; none commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    @staticmethod
    def generate_reference(txn_type: TransactionType | str) -> str:
        """Return ``{TYPE}_{32 uppercase hex}``, e.g. ``INVESTMENT_PROFIT_3F2A...``."""
        type_value = TransactionType(txn_type).value
        return f"{type_value.upper()}_{uuid4().hex.upper()}"

    def record(
        self,
        user_id: UUID,
        txn_type: TransactionType | str,
        amount: Decimal,
        source: TransactionEndpoint | str,
        destination: TransactionEndpoint | str,
        description: str | None = None,
        related_position_id: UUID | None = None,
        reference: str | None = None,
        metadata: dict[str, Any] | None = None,
        actor_id: UUID | None = None,
    ) -> Transaction:
        """
        Create a pending transaction.

        Raises:
            ValidationError: Non-positive amount or unknown type/endpoint.
            DuplicateReferenceError: ``reference`` is already taken.
        """
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("amount", f"must be positive, got {amount}")
        try:
            txn_type = TransactionType(txn_type)
            source = TransactionEndpoint(source)
            destination = TransactionEndpoint(destination)
        except ValueError as exc:
            raise ValidationError("transaction", str(exc)) from exc

        if reference is None:
            reference = self.generate_reference(txn_type)

        existing = self.session.execute(
            select(Transaction.id).where(Transaction.reference == reference)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateReferenceError(reference)

        txn = Transaction(
            user_id=user_id,
            type=txn_type.value,
            amount=amount,
            source=source.value,
            destination=destination.value,
            reference=reference,
            status=TransactionStatus.PENDING.value,
            description=description,
            related_position_id=related_position_id,
            meta=metadata,
            created_by_id=actor_id,
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(txn)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateReferenceError(reference) from exc

        logger.info(
            "transaction_recorded",
            extra={
                "reference": reference,
                "txn_type": txn_type.value,
                "amount": str(amount),
                "user_id": str(user_id),
            },
        )
        return txn

    def complete(self, reference: str) -> Transaction:
        return self._transition(reference, TransactionStatus.COMPLETED)

    def fail(self, reference: str) -> Transaction:
        return self._transition(reference, TransactionStatus.FAILED)

    def find_by_reference(self, reference: str) -> Transaction:
        txn = self.session.execute(
            select(Transaction).where(Transaction.reference == reference)
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(reference)
        return txn

    def list_for_position(self, position_id: UUID) -> list[Transaction]:
        """All transactions linked to a position, oldest first."""
        return list(
            self.session.execute(
                select(Transaction)
                .where(Transaction.related_position_id == position_id)
                .order_by(Transaction.created_at, Transaction.reference)
            ).scalars()
        )

    def reverse(
        self,
        transaction_id: UUID,
        reason: str,
        actor_id: UUID | None = None,
    ) -> Transaction:
        """
        Flag a transaction as reversed.

        Only the ``reversed`` flag and its audit stamps change.  No
        compensating wallet movement is made here.
        """
        txn = self.session.get(Transaction, transaction_id)
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        if txn.reversed:
            raise InvalidStateTransitionError(
                "transaction", txn.reference, "reversed", "reverse"
            )

        txn.reversed = True
        txn.reversed_at = self.clock.now()
        txn.reversed_by_id = actor_id
        txn.reversal_reason = reason
        txn.updated_by_id = actor_id
        self.session.flush()

        logger.warning(
            "transaction_reversed",
            extra={"reference": txn.reference, "reason": reason},
        )
        return txn

    def _transition(
        self, reference: str, target: TransactionStatus
    ) -> Transaction:
        txn = self.find_by_reference(reference)
        if txn.status != TransactionStatus.PENDING.value:
            raise InvalidStateTransitionError(
                "transaction",
                reference,
                txn.status,
                "complete" if target is TransactionStatus.COMPLETED else "fail",
            )
        txn.status = target.value
        self.session.flush()
        logger.debug(
            "transaction_status_changed",
            extra={"reference": reference, "status": target.value},
        )
        return txn
