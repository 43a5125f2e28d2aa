"""
Failure classification for the backend retry runner.
Each failed attempt maps to (FailureType, retry_allowed).
"""
from enum import Enum
from typing import Any


class FailureType(str, Enum):
    TRANSPORT_TRANSIENT = "transport_transient"  # 429, 5xx, connection reset
    TIMEOUT = "timeout"
    PROMPT_BLOCKED = "prompt_blocked"
    RESPONSE_BLOCKED = "response_blocked"  # SAFETY / OTHER, one more try is allowed
    RESPONSE_BLOCKED_STRICT = "response_blocked_strict"
    CLIENT_NON_RETRIABLE = "client_non_retriable"  # 4xx except 429


RETRYABLE_FINISH_REASONS = frozenset({"SAFETY", "OTHER"})

Classification = tuple[FailureType, bool]


def _by_status(http_status: int) -> Classification | None:
    if http_status == 429 or 500 <= http_status < 600:
        return FailureType.TRANSPORT_TRANSIENT, True
    if 400 <= http_status < 500:
        return FailureType.CLIENT_NON_RETRIABLE, False
    return None


def _by_finish_reason(finish_reason: str) -> Classification | None:
    if not finish_reason or finish_reason == "STOP":
        return None
    if finish_reason in RETRYABLE_FINISH_REASONS:
        return FailureType.RESPONSE_BLOCKED, True
    # BLOCKLIST, SPII, PROHIBITED_CONTENT, RECITATION and anything unknown
    return FailureType.RESPONSE_BLOCKED_STRICT, False


def classify_failure(http_status: int | None, detail: dict[str, Any]) -> Classification:
    if detail.get("timeout"):
        return FailureType.TIMEOUT, False

    if http_status is not None:
        classified = _by_status(http_status)
        if classified is not None:
            return classified

    if detail.get("block_reason") or (detail.get("prompt_feedback") or {}).get("blockReason"):
        return FailureType.PROMPT_BLOCKED, False

    classified = _by_finish_reason(str(detail.get("finish_reason") or "").strip().upper())
    if classified is not None:
        return classified

    # 200 without an image: not worth another paid attempt
    if detail:
        return FailureType.RESPONSE_BLOCKED, False
    return FailureType.TRANSPORT_TRANSIENT, True
