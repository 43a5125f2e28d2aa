from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from thumbgen.db.base import Base, JSONType


class Thumbnail(Base):
    __tablename__ = "thumbnails"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    request_key = Column(String, nullable=True, index=True)  # outer idempotency token
    status = Column(String, nullable=False, default="pending")  # pending, finalized
    title = Column(String, nullable=False)
    style = Column(String, nullable=True)
    palette = Column(String, nullable=True)
    emotion = Column(String, nullable=True)
    aspect_ratio = Column(String, nullable=False, default="16:9")
    quality_class = Column(String, nullable=False, default="1K")
    source_artifact_id = Column(String, nullable=True)  # set on edited versions
    params = Column(JSONType, nullable=False, default=dict)

    asset_path = Column(String, nullable=True)
    asset_url = Column(String, nullable=True)
    rendition_400w_url = Column(String, nullable=True)
    rendition_800w_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    finalized_at = Column(DateTime(timezone=True), nullable=True)

    def is_finalized(self) -> bool:
        return self.status == "finalized" and bool(self.asset_url)
