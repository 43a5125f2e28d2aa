"""Tests for IdempotencyGuard: token minting, compensation rules, fault mapping, no oversubscription."""
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from thumbgen.services.credits.guard import IdempotencyGuard
from thumbgen.services.credits.ledger import CreditLedger, LedgerFailure


def test_new_token_is_unique():
    tokens = {IdempotencyGuard.new_token() for _ in range(100)}
    assert len(tokens) == 100


def test_compensate_links_reservation(db, make_account, balance):
    account = make_account(credits=6)
    guard = IdempotencyGuard(CreditLedger(db))
    guard.reserve(account, 4, "res-1")

    result = guard.compensate(account, 4, "res-1", guard.new_token(), "all failed")

    assert result.applied is True
    assert balance(account) == 6


def test_compensate_rejects_reused_reservation_token(db, make_account):
    account = make_account(credits=6)
    guard = IdempotencyGuard(CreditLedger(db))
    guard.reserve(account, 4, "res-1")

    with pytest.raises(ValueError):
        guard.compensate(account, 4, "res-1", "res-1", "bad token")


def test_database_fault_becomes_result():
    ledger = MagicMock()
    ledger.reserve.side_effect = OperationalError("UPDATE", {}, Exception("db down"))
    ledger.compensate.side_effect = OperationalError("UPDATE", {}, Exception("db down"))
    guard = IdempotencyGuard(ledger)

    reserved = guard.reserve("acct", 1, "tok")
    refunded = guard.compensate("acct", 1, "tok", "ref", "x")

    assert reserved.failure_reason == LedgerFailure.DATABASE_ERROR
    assert refunded.failure_reason == LedgerFailure.DATABASE_ERROR
    assert reserved.succeeded is False


def test_lookup_is_scoped_to_account(db, make_account):
    first = make_account("acct-1", credits=5)
    make_account("acct-2", credits=5)
    guard = IdempotencyGuard(CreditLedger(db))
    guard.reserve(first, 1, "tok-1", artifact_id="art-1")

    assert guard.lookup(first, "tok-1").artifact_id == "art-1"
    assert guard.lookup("acct-2", "tok-1") is None
    assert guard.lookup(first, "missing") is None


def test_current_balance(db, make_account):
    account = make_account(credits=5)
    guard = IdempotencyGuard(CreditLedger(db))
    assert guard.current_balance(account) == 5
    assert guard.current_balance("nobody") is None


def test_concurrent_reserves_never_oversubscribe(session_factory, make_account, balance):
    account = make_account(credits=5)

    def attempt(i):
        session = session_factory()
        try:
            guard = IdempotencyGuard(CreditLedger(session))
            return guard.reserve(account, 1, f"tok-{i}")
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(attempt, range(20)))

    applied = [r for r in results if r.applied]
    rejected = [r for r in results if r.failure_reason == LedgerFailure.INSUFFICIENT]
    assert len(applied) == 5
    assert len(rejected) == 15
    assert balance(account) == 0
