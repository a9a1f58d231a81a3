"""Tests for ledger_kernel.db.engine: session_scope unit of work."""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.exceptions import WalletNotFoundError
from ledger_kernel.services.wallet_service import WalletService


@pytest.fixture
def global_engine():
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    reset_engine()


class TestSessionScope:

    def test_commits_on_exit(self, global_engine):
        user_id = uuid4()
        with session_scope() as session:
            WalletService(session).create_wallet(user_id)

        with session_scope() as session:
            assert WalletService(session).get_balance(user_id) == Decimal("0")

    def test_rolls_back_on_exception(self, global_engine):
        user_id = uuid4()
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                WalletService(session).create_wallet(user_id)
                raise RuntimeError("abort")

        with session_scope() as session:
            with pytest.raises(WalletNotFoundError):
                WalletService(session).get_wallet(user_id)

    def test_savepoint_rollback_keeps_outer_work(self, global_engine):
        kept, dropped = uuid4(), uuid4()
        with session_scope() as session:
            wallets = WalletService(session)
            wallets.create_wallet(kept)
            savepoint = session.begin_nested()
            wallets.create_wallet(dropped)
            savepoint.rollback()

        with session_scope() as session:
            wallets = WalletService(session)
            assert wallets.get_wallet(kept)
            with pytest.raises(WalletNotFoundError):
                wallets.get_wallet(dropped)


def test_uninitialized_engine():
    reset_engine()
    with pytest.raises(RuntimeError):
        get_session()
