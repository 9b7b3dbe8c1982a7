from __future__ import annotations

import pytest

import callguard.circuit_breaker.breaker as breaker_mod
from tests.callguard.support.fakes import (
    FakeClock,
    FakeLogger,
    RecordingBreakerLogger,
)


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def breaker_logger() -> RecordingBreakerLogger:
    """Provide a fresh breaker message sink per test."""
    return RecordingBreakerLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze the breaker clock so reset timeouts advance on demand."""
    fake = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", fake.now)
    return fake
