import logging
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from thumbgen.models.compensation import CompensationLog

logger = logging.getLogger(__name__)


class CompensationService:
    def __init__(self, db: DBSession):
        self.db = db

    def record_refund_failure(
        self,
        account_id: str,
        amount: int,
        reason: str,
        correlation_id: str,
        failure_reason: str | None = None,
    ) -> CompensationLog | None:
        """Best-effort record of a refund that did not apply, for manual reconciliation.

        Returns None when the record itself could not be written; the caller's
        response must not depend on it.
        """
        log = CompensationLog(
            id=str(uuid4()),
            account_id=account_id,
            reason=reason,
            failure_reason=failure_reason,
            comp_type="credit_refund",
            amount=amount,
            correlation_id=correlation_id,
        )
        try:
            self.db.add(log)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "compensation_log_write_failed",
                extra={
                    "account_id": account_id,
                    "amount": amount,
                    "request_id": correlation_id,
                    "error": str(e),
                },
            )
            return None
        logger.info(
            "compensation_pending_reconciliation",
            extra={"account_id": account_id, "amount": amount, "request_id": correlation_id},
        )
        return log

    def list_pending(self, limit: int = 100, offset: int = 0) -> list[CompensationLog]:
        return (
            self.db.query(CompensationLog)
            .filter(CompensationLog.status == "pending_reconciliation")
            .order_by(CompensationLog.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
