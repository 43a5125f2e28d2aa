"""
Credit ledger: atomic reserve (debit) and compensate (credit) keyed by an idempotency token.

Each mutation is one transaction: a conditional UPDATE on the account row plus one
ledger row insert. The unique constraint on credit_ledger.token gives at-most-once
effect per token, including when two requests race with the same token.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from thumbgen.models.account import CreditAccount
from thumbgen.models.credit_ledger import CreditLedgerEntry

logger = logging.getLogger(__name__)


class LedgerKind(str, Enum):
    GENERATION = "generation"
    EDIT = "edit"
    REFUND = "refund"
    GRANT = "grant"


class LedgerFailure(str, Enum):
    INSUFFICIENT = "INSUFFICIENT"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_TOKEN = "INVALID_TOKEN"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    TOKEN_CONFLICT = "TOKEN_CONFLICT"
    DATABASE_ERROR = "DATABASE_ERROR"


@dataclass(frozen=True)
class LedgerResult:
    applied: bool
    duplicate: bool = False
    remaining_balance: int | None = None
    failure_reason: LedgerFailure | None = None
    shortfall: int | None = None
    entry_id: str | None = None

    @property
    def succeeded(self) -> bool:
        """Applied now or already applied earlier under the same token."""
        return self.applied or self.duplicate


class CreditLedger:
    def __init__(self, db: Session):
        self.db = db

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
        """Debit `amount` if and only if the balance covers it (single conditional UPDATE)."""
        invalid = self._validate(amount, token)
        if invalid is not None:
            return invalid
        try:
            existing = self.get_entry(token)
            if existing is not None:
                return self._replay(existing, account_id)

            result = self.db.execute(
                update(CreditAccount)
                .where(
                    CreditAccount.id == account_id,
                    CreditAccount.credits_remaining >= amount,
                )
                .values(
                    credits_remaining=CreditAccount.credits_remaining - amount,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                available = self._remaining(account_id)
                self.db.rollback()
                if available is None:
                    return LedgerResult(applied=False, failure_reason=LedgerFailure.ACCOUNT_NOT_FOUND)
                return LedgerResult(
                    applied=False,
                    remaining_balance=available,
                    failure_reason=LedgerFailure.INSUFFICIENT,
                    shortfall=amount - available,
                )
            return self._record(token, account_id, kind, amount, reason, artifact_id, None)
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def compensate(
        self,
        account_id: str,
        amount: int,
        token: str,
        reason: str,
        *,
        related_token: str | None = None,
        artifact_id: str | None = None,
    ) -> LedgerResult:
        """Credit `amount` back to remaining (refund of an earlier reservation)."""
        return self._credit(
            account_id,
            amount,
            token,
            LedgerKind.REFUND,
            reason,
            related_token=related_token,
            artifact_id=artifact_id,
            grow_total=False,
        )

    def grant(self, account_id: str, amount: int, token: str, reason: str) -> LedgerResult:
        """Top up total and remaining (operator tooling, plan allotments)."""
        return self._credit(account_id, amount, token, LedgerKind.GRANT, reason, grow_total=True)

    def open_account(self, account_id: str) -> bool:
        """Create an empty account row; False when it already exists."""
        if self._remaining(account_id) is not None:
            return False
        self.db.add(CreditAccount(id=account_id, credits_total=0, credits_remaining=0))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def get_entry(self, token: str) -> CreditLedgerEntry | None:
        return self.db.execute(
            select(CreditLedgerEntry).where(CreditLedgerEntry.token == token)
        ).scalar_one_or_none()

    def get_balance(self, account_id: str) -> tuple[int, int] | None:
        """(total, remaining) or None for an unknown account."""
        row = self.db.execute(
            select(CreditAccount.credits_total, CreditAccount.credits_remaining).where(
                CreditAccount.id == account_id
            )
        ).one_or_none()
        if row is None:
            return None
        return row[0], row[1]

    def history(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        kind: str | None = None,
    ) -> tuple[list[CreditLedgerEntry], int]:
        """Entries for one account, newest first, plus the unpaginated count."""
        conditions = [CreditLedgerEntry.account_id == account_id]
        if kind:
            conditions.append(CreditLedgerEntry.kind == kind)
        total = self.db.execute(
            select(func.count()).select_from(CreditLedgerEntry).where(*conditions)
        ).scalar_one()
        entries = (
            self.db.execute(
                select(CreditLedgerEntry)
                .where(*conditions)
                .order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id)
                .offset(offset)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return list(entries), total

    def _credit(
        self,
        account_id: str,
        amount: int,
        token: str,
        kind: LedgerKind,
        reason: str,
        *,
        related_token: str | None = None,
        artifact_id: str | None = None,
        grow_total: bool,
    ) -> LedgerResult:
        invalid = self._validate(amount, token)
        if invalid is not None:
            return invalid
        try:
            existing = self.get_entry(token)
            if existing is not None:
                return self._replay(existing, account_id)

            values = {
                "credits_remaining": CreditAccount.credits_remaining + amount,
                "updated_at": datetime.now(timezone.utc),
            }
            if grow_total:
                values["credits_total"] = CreditAccount.credits_total + amount
            result = self.db.execute(
                update(CreditAccount)
                .where(CreditAccount.id == account_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                return LedgerResult(applied=False, failure_reason=LedgerFailure.ACCOUNT_NOT_FOUND)
            return self._record(token, account_id, kind, -amount, reason, artifact_id, related_token)
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _record(
        self,
        token: str,
        account_id: str,
        kind: LedgerKind,
        signed_amount: int,
        reason: str | None,
        artifact_id: str | None,
        related_token: str | None,
    ) -> LedgerResult:
        balance = self._remaining(account_id)
        entry = CreditLedgerEntry(
            token=token,
            account_id=account_id,
            kind=kind.value,
            amount=signed_amount,
            reason=(reason or "")[:500] or None,
            artifact_id=artifact_id,
            related_token=related_token,
            balance_after=balance,
        )
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError:
            # Same token applied concurrently: undo our balance change, report the winner.
            self.db.rollback()
            existing = self.get_entry(token)
            if existing is None:
                raise
            return self._replay(existing, account_id)
        entry_id = entry.id
        self.db.commit()
        return LedgerResult(applied=True, remaining_balance=balance, entry_id=entry_id)

    def _replay(self, entry: CreditLedgerEntry, account_id: str) -> LedgerResult:
        if entry.account_id != account_id:
            logger.warning(
                "credit_ledger_token_conflict",
                extra={"token": entry.token, "account_id": account_id},
            )
            return LedgerResult(applied=False, failure_reason=LedgerFailure.TOKEN_CONFLICT)
        return LedgerResult(
            applied=False,
            duplicate=True,
            remaining_balance=entry.balance_after,
            entry_id=entry.id,
        )

    def _remaining(self, account_id: str) -> int | None:
        return self.db.execute(
            select(CreditAccount.credits_remaining).where(CreditAccount.id == account_id)
        ).scalar_one_or_none()

    @staticmethod
    def _validate(amount: int, token: str) -> LedgerResult | None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            return LedgerResult(applied=False, failure_reason=LedgerFailure.INVALID_AMOUNT)
        if not isinstance(token, str) or not token.strip():
            return LedgerResult(applied=False, failure_reason=LedgerFailure.INVALID_TOKEN)
        return None
