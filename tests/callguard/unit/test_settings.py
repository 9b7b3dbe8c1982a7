from __future__ import annotations

import pytest
from pydantic import ValidationError

from callguard.circuit_breaker import CircuitBreakerConfig, Isolation
from callguard.settings import BreakerSettings, prefixed_settings_config


class _PaymentsSettings(BreakerSettings):
    model_config = prefixed_settings_config("PAYMENTS_")


@pytest.fixture(autouse=True)
def _clear_breaker_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "FAILURE_THRESHOLD",
        "SUCCESS_THRESHOLD",
        "RESET_TIMEOUT",
        "OPERATION_TIMEOUT",
        "ISOLATION",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(f"CALLGUARD_{name}", raising=False)
        monkeypatch.delenv(f"PAYMENTS_{name}", raising=False)


def test_breaker_settings_defaults_build_default_config() -> None:
    settings = BreakerSettings()

    assert settings.log_level == "INFO"
    assert settings.to_config() == CircuitBreakerConfig()


def test_breaker_settings_read_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CALLGUARD_FAILURE_THRESHOLD", "3")
    monkeypatch.setenv("callguard_success_threshold", "4")
    monkeypatch.setenv("CALLGUARD_RESET_TIMEOUT", "12.5")
    monkeypatch.setenv("CALLGUARD_OPERATION_TIMEOUT", "0")
    monkeypatch.setenv("CALLGUARD_ISOLATION", "PROCESS")
    monkeypatch.setenv("CALLGUARD_LOG_LEVEL", "debug")

    settings = BreakerSettings()
    config = settings.to_config()

    assert settings.log_level == "DEBUG"
    assert config.failure_threshold == 3
    assert config.success_threshold == 4
    assert config.reset_timeout == 12.5
    assert config.operation_timeout == 0
    assert config.isolation == Isolation.PROCESS


def test_custom_prefix_reads_its_own_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CALLGUARD_FAILURE_THRESHOLD", "3")
    monkeypatch.setenv("PAYMENTS_FAILURE_THRESHOLD", "9")

    assert _PaymentsSettings().to_config().failure_threshold == 9


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("failure_threshold", 0),
        ("success_threshold", 0),
        ("reset_timeout", -1.0),
        ("isolation", "fiber"),
        ("log_level", "TRACE"),
    ],
)
def test_breaker_settings_reject_invalid_values(field: str, value: object) -> None:
    with pytest.raises(ValidationError):
        BreakerSettings(**{field: value})
