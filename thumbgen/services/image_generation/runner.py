"""
Backend runner: generate-with-retry, failure classification, structured logging.
Timeouts are surfaced immediately; the retry budget only covers transient and
heuristic-retryable failures.
"""
import logging
import random
import time
from typing import Any

import pybreaker

from thumbgen.services.image_generation.base import (
    GenerationBackend,
    GenerationTimeout,
    ImageGenerationError,
    ImageGenerationRequest,
    ImageGenerationResponse,
)
from thumbgen.services.image_generation.failure_types import classify_failure

logger = logging.getLogger(__name__)

LOG_KEYS = (
    "model_version",
    "finish_reason",
    "block_reason",
    "attempt_number",
    "success_after_retry",
    "failure_type",
    "retry_allowed",
)


def generate_with_retry(
    backend: GenerationBackend,
    request: ImageGenerationRequest,
    settings: Any,
    *,
    breaker: pybreaker.CircuitBreaker | None = None,
    sleep=time.sleep,
) -> ImageGenerationResponse:
    """
    Call the backend with the configured retry budget.
    With a breaker, each attempt goes through it; an open breaker surfaces as
    ImageGenerationError without calling the backend.
    """
    max_attempts = getattr(settings, "image_generation_retry_max_attempts", 2)
    backoff_seconds = getattr(settings, "image_generation_retry_backoff_seconds", 2.0)
    respect_retry_after = getattr(settings, "image_generation_retry_respect_retry_after", True)
    model_version = request.model or getattr(backend, "model_name", "")

    last_error: ImageGenerationError | None = None
    attempt = 0

    while attempt < max_attempts:
        attempt += 1
        try:
            if breaker is not None:
                result = breaker.call(backend.generate, request)
            else:
                result = backend.generate(request)
            if attempt > 1:
                _log_structured(
                    model_version=model_version,
                    attempt_number=attempt,
                    success_after_retry=True,
                )
            return result
        except pybreaker.CircuitBreakerError as e:
            logger.warning("image_generation_circuit_open", extra={"attempt": attempt})
            raise ImageGenerationError("Image backend circuit open", detail={"circuit_open": True}) from e
        except GenerationTimeout:
            _log_structured(
                model_version=model_version,
                attempt_number=attempt,
                success_after_retry=False,
                failure_type="timeout",
                retry_allowed=False,
            )
            raise
        except ImageGenerationError as e:
            last_error = e
            detail = e.detail or {}
            http_status = detail.get("http_status")
            failure_type, retry_allowed = classify_failure(http_status, detail)
            detail["failure_type"] = failure_type.value

            _log_structured(
                model_version=model_version,
                finish_reason=detail.get("finish_reason"),
                block_reason=detail.get("block_reason"),
                attempt_number=attempt,
                success_after_retry=False,
                failure_type=failure_type.value,
                retry_allowed=retry_allowed,
            )

            if not retry_allowed or attempt >= max_attempts:
                raise

            delay = backoff_seconds
            if http_status == 429 and respect_retry_after and detail.get("retry_after"):
                try:
                    delay = float(detail["retry_after"])
                except (TypeError, ValueError):
                    pass
            delay += random.uniform(0, 1)
            logger.info(
                "image_generation_retry_scheduled",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_seconds": round(delay, 2),
                    "failure_type": failure_type.value,
                },
            )
            sleep(delay)

    if last_error is not None:
        raise last_error
    raise RuntimeError("generate_with_retry: no result and no error")


def _log_structured(**kwargs: Any) -> None:
    extra = {k: v for k, v in kwargs.items() if k in LOG_KEYS and v is not None}
    logger.info("image_generation_result", extra=extra)
