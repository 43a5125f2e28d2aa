"""
Circuit breaker implementation using pybreaker library.
State lives in Redis (shared across API workers) or in process memory
(CB_STORAGE=memory, single-process runs and tests).
"""
import logging

import pybreaker
import redis

from thumbgen.core.config import settings
from thumbgen.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")

IMAGE_BACKEND = "image_backend"


def _state_name(state) -> str:
    return getattr(state, "name", state)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": _state_name(old_state),
                "new_state": _state_name(new_state),
            },
        )
        circuit_breaker_state.labels(name=self.name).set(
            1 if _state_name(new_state) == pybreaker.STATE_OPEN else 0
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def _build_storage(name: str) -> pybreaker.CircuitBreakerStorage:
    if settings.cb_storage == "memory":
        return pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
    # CircuitRedisState expects raw bytes responses
    client = redis.Redis.from_url(settings.redis_url)
    return pybreaker.CircuitRedisState(client, namespace=f"cb:{name}")


def get_circuit_breaker(name: str = IMAGE_BACKEND, exclude: list | None = None) -> pybreaker.CircuitBreaker:
    """Get or create a circuit breaker by name (created on first use)."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            exclude=exclude or [],
            state_storage=_build_storage(name),
            listeners=[CircuitBreakerListener(name)],
            name=name,
        )
    return _breakers[name]
