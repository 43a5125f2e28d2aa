import mimetypes

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from thumbgen.api.deps import get_storage
from thumbgen.storage.base import StorageError
from thumbgen.storage.local import LocalStorage


router = APIRouter(tags=["files"])


@router.get("/files/{path:path}")
def get_file(path: str, token: str = Query(...), storage: LocalStorage = Depends(get_storage)) -> Response:
    """Serve a stored asset behind its signed, expiring URL."""
    if not storage.verify(path, token):
        raise HTTPException(status_code=403, detail="invalid or expired link")
    try:
        content = storage.read(path)
    except StorageError:
        raise HTTPException(status_code=404, detail="not found")
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=content, media_type=media_type, headers={"Cache-Control": "private, max-age=31536000"})
