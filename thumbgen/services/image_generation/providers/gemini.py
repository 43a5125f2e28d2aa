"""
Gemini image backend (Google AI generateContent).
Uses generativelanguage.googleapis.com with api_key.
200 OK with empty content is never a silent success; detail has normalized fields for the runner.
"""
import base64
import json
import logging
from typing import Any

import httpx

from thumbgen.services.image_generation.base import (
    GenerationBackend,
    GenerationTimeout,
    ImageGenerationError,
    ImageGenerationRequest,
    ImageGenerationResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.3
MAX_PRODUCTION_TEMPERATURE = 0.5
# imageSize is only sent to models that accept it
MODELS_SUPPORTING_IMAGE_SIZE: frozenset[str] = frozenset({"gemini-3-pro-image-preview"})


def _error_detail(result: dict[str, Any]) -> dict[str, Any]:
    """Block and finish fields of a Gemini response under the keys classify_failure reads."""
    result = result if isinstance(result, dict) else {}
    detail: dict[str, Any] = {}
    feedback = result.get("promptFeedback") or {}
    if feedback:
        detail["prompt_feedback"] = feedback
        if feedback.get("blockReason"):
            detail["block_reason"] = feedback["blockReason"]
    candidate = (result.get("candidates") or [{}])[0]
    for key, name in (
        ("finishReason", "finish_reason"),
        ("finishMessage", "finish_message"),
        ("safetyRatings", "safety_ratings"),
    ):
        if key in candidate:
            detail[name] = candidate[key]
    return detail


def _redact(value: Any) -> Any:
    """Response copy for logs: inline image payloads replaced."""
    if isinstance(value, dict):
        if "data" in value and "mimeType" in value:
            return {"mimeType": value["mimeType"], "data": "[REDACTED]"}
        return {k: _redact(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def _parse_safety_settings(value: Any) -> list[dict[str, Any]]:
    """Parse safety_settings from config (list of {category, threshold} or JSON string)."""
    if not value:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            return parsed if isinstance(parsed, list) else []
        except json.JSONDecodeError:
            return []
    return []


class GeminiImageBackend(GenerationBackend):
    """Gemini image generation via Google AI generateContent API."""

    def __init__(self, config: dict, client: httpx.Client | None = None) -> None:
        super().__init__(config)
        self.api_key = (config.get("api_key") or "").strip()
        endpoint = (config.get("api_endpoint") or "https://generativelanguage.googleapis.com").rstrip("/")
        self.base_url = f"{endpoint}/v1beta/models"
        self.timeout = float(config.get("timeout", 180.0))
        self.model_name = (config.get("model") or "gemini-3-pro-image-preview").strip()
        self._client = client

    @classmethod
    def from_settings(cls, settings, *, edit: bool = False) -> "GeminiImageBackend":
        return cls({
            "api_key": settings.gemini_api_key,
            "api_endpoint": settings.gemini_api_endpoint,
            "timeout": settings.gemini_timeout,
            "model": settings.gemini_edit_model if edit else settings.gemini_image_model,
            "safety_settings": settings.gemini_safety_settings or "",
        })

    def is_available(self) -> bool:
        return bool(self.api_key)

    def build_payload(self, request: ImageGenerationRequest, model: str) -> dict[str, Any]:
        temperature = request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
        temperature = min(max(0.0, float(temperature)), MAX_PRODUCTION_TEMPERATURE)

        parts: list[dict] = [{"text": request.prompt}]
        for asset in request.reference_assets:
            parts.append({
                "inlineData": {
                    "mimeType": asset.mime_type,
                    "data": base64.standard_b64encode(asset.data).decode("ascii"),
                },
            })

        image_config: dict[str, Any] = {"aspectRatio": request.aspect_ratio}
        if model in MODELS_SUPPORTING_IMAGE_SIZE and request.quality_class:
            image_config["imageSize"] = request.quality_class

        generation_config: dict[str, Any] = {
            "responseModalities": ["IMAGE"],
            "temperature": temperature,
            "imageConfig": image_config,
        }
        if request.seed is not None:
            generation_config["seed"] = int(request.seed)

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        safety_settings = _parse_safety_settings(self.config.get("safety_settings"))
        if safety_settings:
            payload["safetySettings"] = safety_settings
        return payload

    def _post(self, url: str, params: dict, payload: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, params=params, json=payload, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, params=params, json=payload)

    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        if not self.is_available():
            raise ImageGenerationError("Gemini backend not configured (missing api_key)", detail={"config": True})

        model = (request.model or self.model_name).strip() or self.model_name
        payload = self.build_payload(request, model)
        url = f"{self.base_url}/{model}:generateContent"

        try:
            resp = self._post(url, {"key": self.api_key}, payload)
            resp.raise_for_status()
            result = resp.json()
        except httpx.TimeoutException as e:
            raise GenerationTimeout("Generation timed out", detail={"timeout": True}) from e
        except httpx.HTTPStatusError as e:
            try:
                err_body = e.response.json()
            except ValueError:
                err_body = {}
            detail = _error_detail(err_body)
            detail["http_status"] = e.response.status_code
            if e.response.status_code == 429:
                retry_after = e.response.headers.get("Retry-After")
                if retry_after is not None:
                    detail["retry_after"] = retry_after
            msg = (err_body.get("error") or {}).get("message", str(e)) if isinstance(err_body, dict) else str(e)
            raise ImageGenerationError(msg, detail=detail) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ImageGenerationError(str(e), detail={}) from e

        prompt_feedback = result.get("promptFeedback", {})
        if prompt_feedback.get("blockReason"):
            detail = _error_detail(result)
            logger.warning("gemini_prompt_blocked", extra={"model_version": model, "block_reason": detail.get("block_reason")})
            raise ImageGenerationError(prompt_feedback.get("blockReason", "Request blocked"), detail=detail)

        candidates = result.get("candidates") or []
        if not candidates:
            raise ImageGenerationError("No candidates in Gemini response", detail=_error_detail(result))

        c0 = candidates[0]
        finish_reason = c0.get("finishReason", "")
        if finish_reason and finish_reason != "STOP":
            detail = _error_detail(result)
            logger.warning("gemini_response_blocked", extra={"model_version": model, "finish_reason": finish_reason})
            raise ImageGenerationError(c0.get("finishMessage") or finish_reason, detail=detail)

        image_b64: str | None = None
        mime_type = "image/png"
        for part in (c0.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and isinstance(inline.get("data"), str):
                image_b64 = inline["data"]
                mime_type = inline.get("mimeType") or inline.get("mime_type") or mime_type
                break

        if not image_b64:
            raise ImageGenerationError("No image in Gemini response", detail=_error_detail(result))

        return ImageGenerationResponse(
            image_content=base64.standard_b64decode(image_b64),
            mime_type=mime_type,
            model=model,
            provider="gemini",
            raw_response_sanitized=_redact(result),
        )
