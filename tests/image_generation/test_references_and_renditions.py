"""Tests for reference image loading and best-effort renditions."""
import base64
import io

import httpx
from PIL import Image

from conftest import png_bytes
from thumbgen.services.references import ReferenceLoader
from thumbgen.utils.renditions import make_rendition, make_renditions


def _data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


def test_data_url_decoded():
    asset = ReferenceLoader().load(_data_url(b"abc", "image/jpeg"))
    assert asset.data == b"abc"
    assert asset.mime_type == "image/jpeg"


def test_http_reference_fetched():
    def handler(request):
        return httpx.Response(200, content=b"img", headers={"content-type": "image/webp"})

    loader = ReferenceLoader(client=httpx.Client(transport=httpx.MockTransport(handler)))
    asset = loader.load("https://cdn.example.com/face.webp")

    assert asset.data == b"img"
    assert asset.mime_type == "image/webp"


def test_failed_or_unsupported_references_skipped():
    def handler(request):
        if request.url.path == "/missing.png":
            return httpx.Response(404)
        return httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"})

    loader = ReferenceLoader(client=httpx.Client(transport=httpx.MockTransport(handler)))
    assets = loader.load_all([
        "https://x.test/missing.png",
        "https://x.test/page",
        "ftp://x.test/a.png",
        "data:image/png,notbase64",
        _data_url(b"ok"),
    ])

    assert [a.data for a in assets] == [b"ok"]


def test_oversized_reference_skipped():
    loader = ReferenceLoader()
    loader.max_bytes = 2
    assert loader.load(_data_url(b"toolarge")) is None


def test_rendition_downscales_to_jpeg():
    rendition = make_rendition(png_bytes(1600, 900), 400)

    assert rendition.width == 400
    assert rendition.height == 225
    assert rendition.filename == "thumbnail-400w.jpg"
    with Image.open(io.BytesIO(rendition.content)) as img:
        assert img.format == "JPEG"


def test_rendition_never_enlarges():
    rendition = make_rendition(png_bytes(300, 200), 800)
    assert rendition.width == 300


def test_undecodable_image_skipped():
    assert make_rendition(b"not an image", 400) is None
    assert make_renditions(b"not an image", [400, 800]) == {}
