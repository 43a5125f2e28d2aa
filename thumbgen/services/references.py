"""
Reference image loading: data URLs decoded inline, http(s) URLs fetched with httpx.
A reference that cannot be loaded is skipped with a warning.
"""
import base64
import binascii
import logging
import re

import httpx

from thumbgen.core.config import settings
from thumbgen.services.image_generation.base import ReferenceAsset

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(image/[\w.+-]+)?(;base64)?,(.*)$", re.DOTALL)


def _decode_data_url(url: str) -> ReferenceAsset | None:
    match = _DATA_URL.match(url)
    if not match or not match.group(2):
        return None
    try:
        data = base64.b64decode(match.group(3), validate=False)
    except (binascii.Error, ValueError):
        return None
    return ReferenceAsset(data=data, mime_type=match.group(1) or "image/png")


class ReferenceLoader:
    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client
        self.timeout = settings.reference_fetch_timeout
        self.max_bytes = settings.reference_max_bytes

    def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return self._client.get(url, timeout=self.timeout, follow_redirects=True)
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            return client.get(url)

    def load(self, url: str) -> ReferenceAsset | None:
        if url.startswith("data:"):
            asset = _decode_data_url(url)
        elif url.startswith(("http://", "https://")):
            asset = self._fetch(url)
        else:
            asset = None
        if asset is None:
            logger.warning("reference_image_skipped", extra={"url": url[:120]})
            return None
        if len(asset.data) > self.max_bytes:
            logger.warning("reference_image_too_large", extra={"url": url[:120], "count": len(asset.data)})
            return None
        return asset

    def _fetch(self, url: str) -> ReferenceAsset | None:
        try:
            resp = self._get(url)
            resp.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            # ValueError covers hostnames the IDNA codec rejects
            logger.warning("reference_image_fetch_failed", extra={"url": url[:120], "error": str(e)})
            return None
        mime_type = (resp.headers.get("content-type") or "image/png").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            return None
        return ReferenceAsset(data=resp.content, mime_type=mime_type)

    def load_all(self, urls: list[str]) -> list[ReferenceAsset]:
        assets = []
        for url in urls:
            asset = self.load(url)
            if asset is not None:
                assets.append(asset)
        return assets
