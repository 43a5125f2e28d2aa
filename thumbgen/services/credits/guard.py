import logging
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from thumbgen.models.credit_ledger import CreditLedgerEntry
from thumbgen.services.credits.ledger import (
    CreditLedger,
    LedgerFailure,
    LedgerKind,
    LedgerResult,
)
from thumbgen.utils.metrics import balance_rejected_total, credit_operations_total

logger = logging.getLogger(__name__)


def _result_label(result: LedgerResult) -> str:
    if result.applied:
        return "applied"
    if result.duplicate:
        return "duplicate"
    if result.failure_reason == LedgerFailure.DATABASE_ERROR:
        return "error"
    return "rejected"


class IdempotencyGuard:
    """Token-keyed front for the ledger.

    One logical attempt gets one token; retrying with the same token replays
    the recorded outcome. Storage faults come back as DATABASE_ERROR results
    with the transaction rolled back, never as partial application.
    """

    def __init__(self, ledger: CreditLedger):
        self.ledger = ledger

    @staticmethod
    def new_token() -> str:
        return str(uuid4())

    def reserve(
        self,
        account_id: str,
        amount: int,
        token: str,
        *,
        kind: LedgerKind = LedgerKind.GENERATION,
        reason: str | None = None,
        artifact_id: str | None = None,
    ) -> LedgerResult:
        try:
            result = self.ledger.reserve(
                account_id, amount, token, kind=kind, reason=reason, artifact_id=artifact_id
            )
        except SQLAlchemyError as e:
            logger.exception(
                "credit_reserve_db_error",
                extra={"account_id": account_id, "token": token, "amount": amount, "error": str(e)},
            )
            result = LedgerResult(applied=False, failure_reason=LedgerFailure.DATABASE_ERROR)

        credit_operations_total.labels(operation="reserve", result=_result_label(result)).inc()
        if result.failure_reason == LedgerFailure.INSUFFICIENT:
            balance_rejected_total.inc()
            logger.info(
                "credit_reserve_insufficient",
                extra={
                    "account_id": account_id,
                    "token": token,
                    "amount": amount,
                    "shortfall": result.shortfall,
                },
            )
        elif result.succeeded:
            logger.info(
                "credit_reserved",
                extra={
                    "account_id": account_id,
                    "token": token,
                    "amount": amount,
                    "kind": kind.value,
                    "duplicate": result.duplicate,
                    "balance_after": result.remaining_balance,
                },
            )
        return result

    def compensate(
        self,
        account_id: str,
        amount: int,
        reservation_token: str,
        token: str,
        reason: str,
        *,
        artifact_id: str | None = None,
    ) -> LedgerResult:
        """Refund against `reservation_token` using a separate, fresh `token`."""
        if token == reservation_token:
            raise ValueError("compensation token must differ from the reservation token")
        try:
            result = self.ledger.compensate(
                account_id,
                amount,
                token,
                reason,
                related_token=reservation_token,
                artifact_id=artifact_id,
            )
        except SQLAlchemyError as e:
            logger.exception(
                "credit_compensate_db_error",
                extra={
                    "account_id": account_id,
                    "token": token,
                    "related_token": reservation_token,
                    "amount": amount,
                    "error": str(e),
                },
            )
            result = LedgerResult(applied=False, failure_reason=LedgerFailure.DATABASE_ERROR)

        credit_operations_total.labels(operation="compensate", result=_result_label(result)).inc()
        if result.succeeded:
            logger.info(
                "credit_compensated",
                extra={
                    "account_id": account_id,
                    "token": token,
                    "related_token": reservation_token,
                    "amount": amount,
                    "reason": reason,
                    "duplicate": result.duplicate,
                    "balance_after": result.remaining_balance,
                },
            )
        return result

    def grant(self, account_id: str, amount: int, token: str, reason: str) -> LedgerResult:
        result = self.ledger.grant(account_id, amount, token, reason)
        credit_operations_total.labels(operation="grant", result=_result_label(result)).inc()
        return result

    def lookup(self, account_id: str, token: str) -> CreditLedgerEntry | None:
        """Recorded entry for `token` on this account, if the token was already applied."""
        entry = self.ledger.get_entry(token)
        if entry is None or entry.account_id != account_id:
            return None
        return entry

    def current_balance(self, account_id: str) -> int | None:
        balance = self.ledger.get_balance(account_id)
        return balance[1] if balance else None
