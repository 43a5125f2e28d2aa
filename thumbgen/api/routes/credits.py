from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from thumbgen.api.deps import get_account_id
from thumbgen.db.session import get_db
from thumbgen.schemas.credits import CreditHistoryOut, CreditsOut, LedgerEntryOut
from thumbgen.services.credits.ledger import CreditLedger, LedgerKind


router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("", response_model=CreditsOut)
def get_credits(account_id: str = Depends(get_account_id), db: Session = Depends(get_db)) -> CreditsOut:
    balance = CreditLedger(db).get_balance(account_id)
    total, remaining = balance if balance is not None else (0, 0)
    return CreditsOut(account_id=account_id, credits_total=total, credits_remaining=remaining)


@router.get("/history", response_model=CreditHistoryOut)
def credit_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    kind: LedgerKind | None = Query(None),
    account_id: str = Depends(get_account_id),
    db: Session = Depends(get_db),
) -> CreditHistoryOut:
    entries, total = CreditLedger(db).history(account_id, limit, offset, kind.value if kind else None)
    return CreditHistoryOut(
        entries=[LedgerEntryOut.model_validate(entry) for entry in entries],
        total=total,
        limit=limit,
        offset=offset,
    )
