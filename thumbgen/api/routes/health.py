import logging
import os

from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from thumbgen.api.deps import get_inflight_store, get_storage
from thumbgen.db.session import get_db
from thumbgen.services.idempotency import IdempotencyStore
from thumbgen.storage.local import LocalStorage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness: the process is up."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(
    response: Response,
    db: Session = Depends(get_db),
    inflight: IdempotencyStore = Depends(get_inflight_store),
    storage: LocalStorage = Depends(get_storage),
) -> dict:
    """Readiness: ledger database, in-flight lock store and asset directory.

    Any failed check turns the response into 503 and names the failing dependency.
    """
    checks: dict[str, str] = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = str(e)
    try:
        inflight.client.ping()
        checks["redis"] = "ok"
    except redis.RedisError as e:
        checks["redis"] = str(e)
    # the asset directory is created on first write
    target = storage.base_path if storage.base_path.exists() else storage.base_path.parent
    if target.is_dir() and os.access(target, os.W_OK):
        checks["storage"] = "ok"
    else:
        checks["storage"] = f"{storage.base_path} is not writable"

    if any(value != "ok" for value in checks.values()):
        logger.warning("readiness_check_failed", extra={"checks": checks})
        response.status_code = 503
        return {"status": "not_ready", "checks": checks}
    return {"status": "ready", "checks": checks}
