from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from thumbgen.db.base import Base


class CompensationLog(Base):
    """Refunds that could not be applied and wait for out-of-band reconciliation."""

    __tablename__ = "compensation_log"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    reason = Column(String, nullable=False)
    failure_reason = Column(String, nullable=True)
    comp_type = Column(String, nullable=False, default="credit_refund")
    amount = Column(Integer, nullable=False, default=0)
    correlation_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="pending_reconciliation")
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
