"""
Typed exception hierarchy for the ledger kernel.

Every error a caller may need to react to has its own class, a static
machine-readable ``code`` and structured attributes.  Callers catch by type,
never by message text:

    try:
        wallets.debit(user_id, amount, "withdrawal")
    except InsufficientBalanceError as e:
        api_response(code=e.code, balance=e.balance, requested=e.requested)

Hierarchy:

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- InvestmentLimitError
    |
    +-- NotFoundError
    |   +-- WalletNotFoundError
    |   +-- PositionNotFoundError
    |   +-- PlanNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- SettlementRunNotFoundError
    |
    +-- InvalidStateTransitionError
    |   +-- WalletAlreadyExistsError
    |
    +-- LockedError
    |   +-- WalletFrozenError
    |   +-- PositionFrozenError
    |   +-- ActiveInvestmentsLockError
    |
    +-- InsufficientBalanceError
    |
    +-- DuplicateReferenceError
    |
    +-- ConcurrencyError
        +-- OptimisticLockError
        +-- SettlementAlreadyRunningError

Propagation: kernel services raise and never swallow.  The settlement batch
executor is the one place that converts errors into per-position failure
counts.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """Base exception for all ledger kernel errors."""

    code: str = "LEDGER_KERNEL_ERROR"


# Validation


class ValidationError(LedgerKernelError):
    """Malformed input to an operation, rejected before any state change."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid {field}: {message}")


class InvestmentLimitError(ValidationError):
    """Investment violates a plan limit (min/max amount, multiplicity, user cap)."""

    code: str = "INVESTMENT_LIMIT"

    def __init__(self, plan_id: str, limit: str, message: str):
        self.plan_id = plan_id
        self.limit = limit
        super().__init__(limit, message)


# Not found


class NotFoundError(LedgerKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class WalletNotFoundError(NotFoundError):

    code: str = "WALLET_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Wallet not found for user {user_id}")


class PositionNotFoundError(NotFoundError):

    code: str = "POSITION_NOT_FOUND"

    def __init__(self, position_id: str):
        self.position_id = position_id
        super().__init__(f"Position not found: {position_id}")


class PlanNotFoundError(NotFoundError):

    code: str = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Investment plan not found or inactive: {plan_id}")


class TransactionNotFoundError(NotFoundError):

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Transaction not found: {reference}")


class SettlementRunNotFoundError(NotFoundError):

    code: str = "SETTLEMENT_RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Settlement run not found: {run_id}")


# State transitions


class InvalidStateTransitionError(LedgerKernelError):
    """Operation not allowed from the record's current state."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, current: str, action: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in state '{current}'"
        )


class WalletAlreadyExistsError(InvalidStateTransitionError):

    code: str = "WALLET_ALREADY_EXISTS"

    def __init__(self, user_id: str):
        super().__init__("wallet", user_id, "exists", "create")
        self.user_id = user_id


# Administrative locks


class LockedError(LedgerKernelError):
    """Operation blocked by an administrative lock."""

    code: str = "LOCKED"


class WalletFrozenError(LockedError):

    code: str = "WALLET_FROZEN"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Wallet for user {user_id} is frozen")


class PositionFrozenError(LockedError):

    code: str = "POSITION_FROZEN"

    def __init__(self, position_id: str):
        self.position_id = position_id
        super().__init__(f"Position {position_id} is frozen")


class ActiveInvestmentsLockError(LockedError):
    """Trade wallet transfers are blocked while the user holds active positions."""

    code: str = "ACTIVE_INVESTMENTS_LOCK"

    def __init__(self, user_id: str, operation: str):
        self.user_id = user_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} for user {user_id} while investments are active"
        )


# Balance


class InsufficientBalanceError(LedgerKernelError):
    """Debit exceeds the available balance."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        user_id: str,
        balance: Decimal,
        requested: Decimal,
        account: str = "wallet",
    ):
        self.user_id = user_id
        self.balance = balance
        self.requested = requested
        self.account = account
        super().__init__(
            f"Insufficient {account} balance for user {user_id}: "
            f"balance {balance}, requested {requested}"
        )


# Ledger references


class DuplicateReferenceError(LedgerKernelError):
    """Transaction reference already used; the caller must regenerate it."""

    code: str = "DUPLICATE_REFERENCE"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Transaction reference already exists: {reference}")


# Concurrency


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Row was modified by another transaction since it was read."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class SettlementAlreadyRunningError(ConcurrencyError):
    """A settlement run is in progress and the trigger asked not to wait."""

    code: str = "SETTLEMENT_ALREADY_RUNNING"

    def __init__(self, trigger: str):
        self.trigger = trigger
        super().__init__(
            f"Settlement run already in progress; {trigger} trigger rejected"
        )
