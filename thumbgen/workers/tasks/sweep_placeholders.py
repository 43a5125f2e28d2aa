"""
Celery beat task: delete pending artifact rows left behind by a crashed request.
Credits are never touched here; a reservation without outputs stays in the ledger
until reconciled by an operator.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from thumbgen.core.celery_app import celery_app
from thumbgen.core.config import settings
from thumbgen.db.session import SessionLocal
from thumbgen.services.artifacts.service import ArtifactService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="thumbgen.workers.tasks.sweep_placeholders.sweep_stale_placeholders",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_stale_placeholders(older_than_minutes: int | None = None) -> dict:
    minutes = older_than_minutes or settings.placeholder_stale_minutes
    db = SessionLocal()
    try:
        result = ArtifactService(db).delete_stale(minutes)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("placeholder_sweep_failed", extra={"error": str(e)})
        return {"ok": False, "error": str(e)}
    finally:
        db.close()
    logger.info("placeholder_sweep_done", extra={"count": result["deleted_placeholders"]})
    return {"ok": True, **result}
