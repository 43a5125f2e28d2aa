"""Tests for CreditLedger: conditional debit, token replay, refunds, history."""
from concurrent.futures import ThreadPoolExecutor

from thumbgen.models.credit_ledger import CreditLedgerEntry
from thumbgen.services.credits.ledger import CreditLedger, LedgerFailure, LedgerKind


class TestReserve:
    def test_reserve_debits_and_records_entry(self, db, make_account, balance):
        account = make_account(credits=10)
        ledger = CreditLedger(db)

        result = ledger.reserve(account, 3, "tok-1", kind=LedgerKind.GENERATION, reason="batch")

        assert result.applied is True
        assert result.duplicate is False
        assert result.remaining_balance == 7
        assert balance(account) == 7
        entry = ledger.get_entry("tok-1")
        assert entry.amount == 3
        assert entry.kind == "generation"
        assert entry.balance_after == 7

    def test_reserve_exact_balance_reaches_zero(self, db, make_account, balance):
        account = make_account(credits=4)
        result = CreditLedger(db).reserve(account, 4, "tok-1")
        assert result.applied is True
        assert balance(account) == 0

    def test_insufficient_balance_changes_nothing(self, db, make_account, balance):
        account = make_account(credits=2)
        ledger = CreditLedger(db)

        result = ledger.reserve(account, 3, "tok-1")

        assert result.applied is False
        assert result.failure_reason == LedgerFailure.INSUFFICIENT
        assert result.remaining_balance == 2
        assert result.shortfall == 1
        assert balance(account) == 2
        assert ledger.get_entry("tok-1") is None

    def test_same_token_replays_without_second_debit(self, db, make_account, balance):
        account = make_account(credits=10)
        ledger = CreditLedger(db)

        first = ledger.reserve(account, 3, "tok-1")
        second = ledger.reserve(account, 3, "tok-1")

        assert first.applied is True
        assert second.applied is False
        assert second.duplicate is True
        assert second.succeeded is True
        assert second.remaining_balance == 7
        assert second.entry_id == first.entry_id
        assert balance(account) == 7

    def test_replay_wins_over_insufficient_balance(self, db, make_account):
        account = make_account(credits=3)
        ledger = CreditLedger(db)
        ledger.reserve(account, 3, "tok-1")

        again = ledger.reserve(account, 3, "tok-1")

        assert again.duplicate is True
        assert again.failure_reason is None

    def test_token_of_another_account_conflicts(self, db, make_account, balance):
        first = make_account("acct-1", credits=5)
        other = make_account("acct-2", credits=5)
        ledger = CreditLedger(db)
        ledger.reserve(first, 1, "shared")

        result = ledger.reserve(other, 1, "shared")

        assert result.succeeded is False
        assert result.failure_reason == LedgerFailure.TOKEN_CONFLICT
        assert balance(other) == 5

    def test_unknown_account(self, db):
        result = CreditLedger(db).reserve("nobody", 1, "tok-1")
        assert result.failure_reason == LedgerFailure.ACCOUNT_NOT_FOUND

    def test_invalid_amount_and_token(self, db, make_account):
        account = make_account()
        ledger = CreditLedger(db)
        assert ledger.reserve(account, 0, "tok").failure_reason == LedgerFailure.INVALID_AMOUNT
        assert ledger.reserve(account, -2, "tok").failure_reason == LedgerFailure.INVALID_AMOUNT
        assert ledger.reserve(account, True, "tok").failure_reason == LedgerFailure.INVALID_AMOUNT
        assert ledger.reserve(account, 1, "  ").failure_reason == LedgerFailure.INVALID_TOKEN

    def test_concurrent_same_token_applies_once(self, session_factory, make_account, balance):
        account = make_account(credits=10)

        def attempt(_):
            session = session_factory()
            try:
                return CreditLedger(session).reserve(account, 3, "same-token")
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert sum(1 for r in results if r.applied) == 1
        assert all(r.succeeded for r in results)
        assert balance(account) == 7


class TestCompensate:
    def test_refund_restores_remaining_not_total(self, db, make_account, balance):
        account = make_account(credits=10)
        ledger = CreditLedger(db)
        ledger.reserve(account, 4, "res-1")

        result = ledger.compensate(account, 2, "ref-1", "partial failure", related_token="res-1")

        assert result.applied is True
        assert result.remaining_balance == 8
        assert balance(account) == 8
        assert ledger.get_balance(account) == (10, 8)
        entry = ledger.get_entry("ref-1")
        assert entry.kind == "refund"
        assert entry.amount == -2
        assert entry.related_token == "res-1"

    def test_refund_token_replays(self, db, make_account, balance):
        account = make_account(credits=10)
        ledger = CreditLedger(db)
        ledger.reserve(account, 4, "res-1")
        ledger.compensate(account, 4, "ref-1", "all failed")

        again = ledger.compensate(account, 4, "ref-1", "all failed")

        assert again.duplicate is True
        assert balance(account) == 10

    def test_refund_unknown_account(self, db):
        result = CreditLedger(db).compensate("nobody", 1, "ref-1", "x")
        assert result.failure_reason == LedgerFailure.ACCOUNT_NOT_FOUND


class TestGrantAndHistory:
    def test_grant_grows_total_and_remaining(self, db, make_account):
        account = make_account(credits=1)
        ledger = CreditLedger(db)

        result = ledger.grant(account, 5, "grant-1", "plan top-up")

        assert result.applied is True
        assert ledger.get_balance(account) == (6, 6)

    def test_open_account_is_idempotent(self, db):
        ledger = CreditLedger(db)
        assert ledger.open_account("new") is True
        assert ledger.open_account("new") is False
        assert ledger.get_balance("new") == (0, 0)

    def test_history_newest_first_with_kind_filter(self, db, make_account):
        account = make_account(credits=10)
        ledger = CreditLedger(db)
        ledger.reserve(account, 2, "res-1")
        ledger.reserve(account, 1, "res-2", kind=LedgerKind.EDIT)
        ledger.compensate(account, 1, "ref-1", "failed", related_token="res-1")

        entries, total = ledger.history(account)
        assert total == 3
        assert {e.token for e in entries} == {"res-1", "res-2", "ref-1"}

        refunds, refund_total = ledger.history(account, kind="refund")
        assert refund_total == 1
        assert refunds[0].token == "ref-1"

        page, page_total = ledger.history(account, limit=1, offset=1)
        assert len(page) == 1
        assert page_total == 3

    def test_ledger_sum_matches_balance(self, db, make_account, balance):
        account = make_account(credits=10)
        ledger = CreditLedger(db)
        ledger.reserve(account, 4, "res-1")
        ledger.compensate(account, 3, "ref-1", "failed")
        ledger.reserve(account, 2, "res-2")

        spent = sum(e.amount for e in db.query(CreditLedgerEntry).filter_by(account_id=account))
        assert balance(account) == 10 - spent
