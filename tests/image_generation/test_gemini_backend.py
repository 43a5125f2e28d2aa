"""Tests for GeminiImageBackend against a mocked generateContent endpoint."""
import base64
import json

import httpx
import pytest

from thumbgen.services.image_generation import (
    GenerationTimeout,
    ImageGenerationError,
    ImageGenerationRequest,
    ReferenceAsset,
)
from thumbgen.services.image_generation.providers.gemini import GeminiImageBackend


def _backend(handler, **config) -> GeminiImageBackend:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return GeminiImageBackend({"api_key": "k", "model": "gemini-3-pro-image-preview", **config}, client=client)


def _image_response(data: bytes = b"\x89PNG", mime_type: str = "image/png") -> dict:
    return {
        "candidates": [
            {
                "finishReason": "STOP",
                "content": {"parts": [{"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode()}}]},
            }
        ]
    }


def test_generate_returns_decoded_image():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json=_image_response(b"jpegbytes", "image/jpeg"))

    backend = _backend(handler)
    response = backend.generate(
        ImageGenerationRequest(
            prompt="make a thumbnail",
            reference_assets=[ReferenceAsset(b"ref", "image/png")],
            quality_class="2K",
            aspect_ratio="16:9",
        )
    )

    assert response.image_content == b"jpegbytes"
    assert response.mime_type == "image/jpeg"
    assert response.provider == "gemini"
    assert "gemini-3-pro-image-preview:generateContent" in seen["url"]
    assert "key=k" in seen["url"]
    parts = seen["payload"]["contents"][0]["parts"]
    assert parts[0] == {"text": "make a thumbnail"}
    assert base64.b64decode(parts[1]["inlineData"]["data"]) == b"ref"
    image_config = seen["payload"]["generationConfig"]["imageConfig"]
    assert image_config == {"aspectRatio": "16:9", "imageSize": "2K"}
    assert response.raw_response_sanitized["candidates"][0]["content"]["parts"][0]["inlineData"]["data"] == "[REDACTED]"


def test_image_size_only_for_supporting_models():
    backend = GeminiImageBackend({"api_key": "k", "model": "gemini-2.5-flash-image"})
    payload = backend.build_payload(ImageGenerationRequest(prompt="p", quality_class="4K"), backend.model_name)
    assert "imageSize" not in payload["generationConfig"]["imageConfig"]


def test_timeout_maps_to_generation_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GenerationTimeout) as exc_info:
        _backend(handler).generate(ImageGenerationRequest(prompt="p"))
    assert exc_info.value.detail == {"timeout": True}


def test_http_error_carries_status_and_retry_after():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "12"}, json={"error": {"message": "quota"}})

    with pytest.raises(ImageGenerationError) as exc_info:
        _backend(handler).generate(ImageGenerationRequest(prompt="p"))
    assert str(exc_info.value) == "quota"
    assert exc_info.value.detail["http_status"] == 429
    assert exc_info.value.detail["retry_after"] == "12"


def test_blocked_finish_reason():
    def handler(request):
        return httpx.Response(200, json={"candidates": [{"finishReason": "SAFETY", "safetyRatings": []}]})

    with pytest.raises(ImageGenerationError) as exc_info:
        _backend(handler).generate(ImageGenerationRequest(prompt="p"))
    assert exc_info.value.detail["finish_reason"] == "SAFETY"


def test_empty_success_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"candidates": [{"finishReason": "STOP", "content": {"parts": [{"text": "no"}]}}]})

    with pytest.raises(ImageGenerationError, match="No image"):
        _backend(handler).generate(ImageGenerationRequest(prompt="p"))


def test_missing_api_key():
    backend = GeminiImageBackend({"api_key": ""})
    assert backend.is_available() is False
    with pytest.raises(ImageGenerationError):
        backend.generate(ImageGenerationRequest(prompt="p"))
