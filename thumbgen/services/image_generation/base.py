"""
Backend-neutral request/response types and the GenerationBackend interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ReferenceAsset:
    """Inline reference image passed to the backend (raw bytes, not base64)."""
    data: bytes
    mime_type: str = "image/png"


@dataclass
class ImageGenerationRequest:
    prompt: str
    reference_assets: list[ReferenceAsset] = field(default_factory=list)
    quality_class: str = "1K"
    aspect_ratio: str = "16:9"
    model: str | None = None
    temperature: float | None = None
    seed: int | None = None


@dataclass
class ImageGenerationResponse:
    image_content: bytes
    mime_type: str
    model: str
    provider: str
    raw_response_sanitized: dict[str, Any] | None = None


class ImageGenerationError(Exception):
    """Generation failed; `detail` carries normalized fields (http_status, finish_reason, ...) for the runner."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class GenerationTimeout(ImageGenerationError):
    """Backend did not answer within its deadline. Never retried."""


class GenerationBackend(ABC):
    """Generative image service. Implementations raise GenerationTimeout or ImageGenerationError."""

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        pass
