"""Tests for circuit breaker construction and state reporting."""
from unittest.mock import patch

import pybreaker

from thumbgen.services import circuit_breaker
from thumbgen.services.circuit_breaker import CircuitBreakerListener, get_circuit_breaker


def test_breaker_is_created_once_per_name():
    with patch.dict(circuit_breaker._breakers, clear=True):
        first = get_circuit_breaker("test_backend")
        second = get_circuit_breaker("test_backend")

    assert first is second
    assert first.name == "test_backend"
    assert isinstance(first._state_storage, pybreaker.CircuitMemoryStorage)


def test_breaker_opens_after_threshold():
    with patch.dict(circuit_breaker._breakers, clear=True):
        breaker = get_circuit_breaker("flaky_backend")

    def fail():
        raise RuntimeError("backend down")

    for _ in range(breaker.fail_max + 1):
        try:
            breaker.call(fail)
        except (RuntimeError, pybreaker.CircuitBreakerError):
            pass

    assert breaker.current_state == pybreaker.STATE_OPEN


def test_listener_updates_gauge():
    listener = CircuitBreakerListener("gauge_test")
    with patch.object(circuit_breaker, "circuit_breaker_state") as gauge:
        listener.state_change(None, pybreaker.STATE_CLOSED, pybreaker.STATE_OPEN)
    gauge.labels.assert_called_once_with(name="gauge_test")
    gauge.labels.return_value.set.assert_called_once_with(1)
