"""
Downscaled JPEG renditions (400w, 800w) of a generated image.
Best-effort: a rendition that cannot be produced is skipped, never fatal.
"""
import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rendition:
    width: int
    height: int
    filename: str
    content: bytes
    content_type: str = "image/jpeg"


def make_rendition(image_bytes: bytes, target_width: int, quality: int = 85) -> Rendition | None:
    """Fit inside `target_width` keeping the aspect ratio; never enlarges."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if not width or not height:
                return None
            if width > target_width:
                new_size = (target_width, max(1, round(target_width * height / width)))
                img = img.resize(new_size, Image.LANCZOS)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, "JPEG", quality=quality, optimize=True)
            return Rendition(
                width=img.size[0],
                height=img.size[1],
                filename=f"thumbnail-{target_width}w.jpg",
                content=out.getvalue(),
            )
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("rendition_failed", extra={"width": target_width, "error": str(e)})
        return None


def make_renditions(image_bytes: bytes, widths: list[int], quality: int = 85) -> dict[int, Rendition]:
    out: dict[int, Rendition] = {}
    for width in widths:
        rendition = make_rendition(image_bytes, width, quality)
        if rendition is not None:
            out[width] = rendition
    return out
