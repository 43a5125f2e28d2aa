from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from thumbgen.db.base import Base


class CreditLedgerEntry(Base):
    __tablename__ = "credit_ledger"
    __table_args__ = (UniqueConstraint("token", name="uq_credit_ledger_token"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    token = Column(String, nullable=False)
    account_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)  # generation, edit, refund, grant
    amount = Column(Integer, nullable=False)  # positive = debit, negative = credit
    reason = Column(String, nullable=True)
    artifact_id = Column(String, nullable=True)
    related_token = Column(String, nullable=True, index=True)  # reservation a refund compensates
    balance_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
