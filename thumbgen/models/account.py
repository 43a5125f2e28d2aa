from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from thumbgen.db.base import Base


class CreditAccount(Base):
    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_credit_accounts_remaining_non_negative"),
    )

    id = Column(String, primary_key=True)  # account id from the auth gateway
    credits_total = Column(Integer, nullable=False, default=0)
    credits_remaining = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
