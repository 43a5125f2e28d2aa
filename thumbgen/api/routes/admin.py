from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from thumbgen.api.deps import require_admin
from thumbgen.core.config import settings
from thumbgen.db.session import get_db
from thumbgen.schemas.credits import RefundFailureOut
from thumbgen.services.artifacts.service import ArtifactService
from thumbgen.services.compensations.service import CompensationService


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/refund-failures", response_model=list[RefundFailureOut])
def refund_failures(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> list[RefundFailureOut]:
    """Refunds that did not apply and wait for manual reconciliation."""
    rows = CompensationService(db).list_pending(limit=limit, offset=offset)
    return [RefundFailureOut.model_validate(row) for row in rows]


@router.get("/cleanup/preview")
def cleanup_preview(
    db: Session = Depends(get_db),
    older_than_minutes: int = Query(settings.placeholder_stale_minutes, ge=1),
) -> dict:
    return ArtifactService(db).preview_stale(older_than_minutes)


@router.post("/cleanup/run")
def cleanup_run(
    db: Session = Depends(get_db),
    older_than_minutes: int = Query(settings.placeholder_stale_minutes, ge=1),
) -> dict:
    """Deletes pending placeholders orphaned by a crashed request. Credits are not touched."""
    return ArtifactService(db).delete_stale(older_than_minutes)
