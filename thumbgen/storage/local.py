"""
Filesystem storage with signed, expiring URLs.
Uses itsdangerous for tamper-proof URL tokens; files are served by GET /files/{path}.
"""
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from itsdangerous import BadData, URLSafeTimedSerializer

from thumbgen.core.config import settings
from thumbgen.storage.base import Storage, StorageError

logger = logging.getLogger(__name__)


class LocalStorage(Storage):
    def __init__(
        self,
        base_path: str | None = None,
        public_base_url: str | None = None,
        secret: str | None = None,
    ) -> None:
        self.base_path = Path(base_path or settings.storage_base_path)
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.serializer = URLSafeTimedSerializer(secret or settings.asset_url_secret, salt="asset-url")

    def _resolve(self, path: str) -> Path:
        parts = [p for p in path.strip("/").split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise StorageError(f"Invalid storage path: {path!r}")
        return self.base_path.joinpath(*parts)

    def put(self, path: str, content: bytes, content_type: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            tmp.write_bytes(content)
            os.replace(tmp, target)
        except OSError as e:
            raise StorageError(f"Failed to store {path}: {e}") from e
        return path

    def get_signed_url(self, path: str, ttl_seconds: int) -> str:
        self._resolve(path)
        token = self.serializer.dumps({"p": path, "ttl": int(ttl_seconds)})
        return f"{self.public_base_url}/files/{quote(path)}?token={token}"

    def verify(self, path: str, token: str) -> bool:
        """True when `token` was issued for `path` and has not expired."""
        try:
            payload, issued_at = self.serializer.loads(token, return_timestamp=True)
        except BadData:
            return False
        if not isinstance(payload, dict) or payload.get("p") != path:
            return False
        age = (datetime.now(timezone.utc) - issued_at).total_seconds()
        return age <= int(payload.get("ttl", 0))

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("storage_delete_failed", extra={"path": path, "error": str(e)})
