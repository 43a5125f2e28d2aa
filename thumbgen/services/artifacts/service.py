import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from thumbgen.models.artifact import Thumbnail

logger = logging.getLogger(__name__)

# Columns a placeholder may be created with; anything else goes into params.
PLACEHOLDER_COLUMNS = ("title", "style", "palette", "emotion", "aspect_ratio", "quality_class", "source_artifact_id")


class ArtifactStoreError(Exception):
    """Artifact rows could not be created, finalized or removed."""


class ArtifactService:
    """Lifecycle of output rows: placeholder -> finalized | removed."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create_placeholders(
        self,
        account_id: str,
        count: int,
        fields: dict[str, Any],
        request_key: str | None = None,
    ) -> list[str]:
        """Insert exactly `count` pending rows in one transaction, or none."""
        if count < 1:
            raise ValueError("count must be >= 1")
        columns = {k: fields[k] for k in PLACEHOLDER_COLUMNS if fields.get(k) is not None}
        params = {k: v for k, v in fields.items() if k not in PLACEHOLDER_COLUMNS and v is not None}
        rows = [
            Thumbnail(
                account_id=account_id,
                request_key=request_key,
                status="pending",
                params=params,
                **columns,
            )
            for _ in range(count)
        ]
        try:
            self.db.add_all(rows)
            self.db.flush()
            ids = [row.id for row in rows]
            if len(ids) != count or not all(ids):
                raise ArtifactStoreError(f"expected {count} placeholders, got {len(ids)}")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ArtifactStoreError(f"Failed to create placeholders: {e}") from e
        except ArtifactStoreError:
            self.db.rollback()
            raise
        logger.info(
            "artifact_placeholders_created",
            extra={"account_id": account_id, "artifact_ids": ids, "request_id": request_key},
        )
        return ids

    def finalize(
        self,
        artifact_id: str,
        account_id: str,
        asset_path: str,
        asset_url: str,
        renditions: dict[int, str] | None = None,
    ) -> None:
        """Record the stored asset. Renditions are optional; the primary reference alone is enough."""
        values: dict[str, Any] = {
            "status": "finalized",
            "asset_path": asset_path,
            "asset_url": asset_url,
            "finalized_at": datetime.now(timezone.utc),
        }
        for width, url in (renditions or {}).items():
            column = f"rendition_{width}w_url"
            if hasattr(Thumbnail, column):
                values[column] = url
        try:
            updated = (
                self.db.query(Thumbnail)
                .filter(Thumbnail.id == artifact_id, Thumbnail.account_id == account_id)
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                raise ArtifactStoreError(f"artifact {artifact_id} not found for finalize")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ArtifactStoreError(f"Failed to finalize {artifact_id}: {e}") from e
        except ArtifactStoreError:
            self.db.rollback()
            raise

    def remove(self, account_id: str, artifact_ids: list[str]) -> int:
        if not artifact_ids:
            return 0
        try:
            deleted = (
                self.db.query(Thumbnail)
                .filter(Thumbnail.account_id == account_id, Thumbnail.id.in_(list(artifact_ids)))
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ArtifactStoreError(f"Failed to remove artifacts: {e}") from e
        logger.info(
            "artifacts_removed",
            extra={"account_id": account_id, "artifact_ids": list(artifact_ids), "count": deleted},
        )
        return deleted

    def get(self, account_id: str, artifact_id: str) -> Thumbnail | None:
        return (
            self.db.query(Thumbnail)
            .filter(Thumbnail.id == artifact_id, Thumbnail.account_id == account_id)
            .one_or_none()
        )

    def list_for_request(self, account_id: str, request_key: str) -> list[Thumbnail]:
        return (
            self.db.query(Thumbnail)
            .filter(Thumbnail.account_id == account_id, Thumbnail.request_key == request_key)
            .order_by(Thumbnail.created_at, Thumbnail.id)
            .all()
        )

    def _stale_query(self, older_than_minutes: int):
        threshold = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        return self.db.query(Thumbnail).filter(
            Thumbnail.status == "pending",
            Thumbnail.created_at <= threshold,
        )

    def preview_stale(self, older_than_minutes: int) -> dict[str, Any]:
        """Dry-run: placeholders left pending by a process that died mid-request."""
        return {
            "placeholders_count": self._stale_query(older_than_minutes).count(),
            "older_than_minutes": older_than_minutes,
        }

    def delete_stale(self, older_than_minutes: int) -> dict[str, Any]:
        """Delete orphaned placeholders. Rows only; credits are not touched."""
        deleted = self._stale_query(older_than_minutes).delete(synchronize_session=False)
        self.db.commit()
        return {"deleted_placeholders": deleted, "older_than_minutes": older_than_minutes}
