"""
Ledger Kernel - investment ledger core.

Wallet accounting, an append-mostly transaction ledger, the position
lifecycle and the maturity settlement routine, all written against a
caller-owned SQLAlchemy session:
- Flush-only services (the caller commits once)
- Idempotent settlement via per-position credit flags
- Typed, coded exceptions
- Structured JSON logging
"""

__version__ = "0.1.0"
