"""
Image generation backend and runner.
"""
from .base import (
    GenerationBackend,
    GenerationTimeout,
    ImageGenerationError,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ReferenceAsset,
)
from .failure_types import FailureType, classify_failure
from .runner import generate_with_retry

__all__ = [
    "GenerationBackend",
    "GenerationTimeout",
    "ImageGenerationError",
    "ImageGenerationRequest",
    "ImageGenerationResponse",
    "ReferenceAsset",
    "FailureType",
    "classify_failure",
    "generate_with_retry",
]
