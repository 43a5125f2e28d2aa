from datetime import datetime

from pydantic import BaseModel


class CreditsOut(BaseModel):
    account_id: str
    credits_total: int
    credits_remaining: int


class LedgerEntryOut(BaseModel):
    id: str
    kind: str
    amount: int
    reason: str | None
    artifact_id: str | None
    related_token: str | None
    balance_after: int
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditHistoryOut(BaseModel):
    entries: list[LedgerEntryOut]
    total: int
    limit: int
    offset: int


class RefundFailureOut(BaseModel):
    id: str
    account_id: str
    amount: int
    reason: str
    failure_reason: str | None
    correlation_id: str | None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
