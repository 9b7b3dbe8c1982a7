from __future__ import annotations

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from callguard.circuit_breaker import CircuitBreakerConfig, Isolation
from callguard.logging import get_log_level_value

DEFAULT_ENV_PREFIX = "CALLGUARD_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment-driven circuit breaker settings.

    Subclass with ``model_config = prefixed_settings_config("PAYMENTS_")`` to
    read a second breaker's values from its own prefix.
    """

    model_config = prefixed_settings_config(DEFAULT_ENV_PREFIX)

    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout: float = 30.0
    operation_timeout: float = 5.0
    isolation: Isolation = Isolation.THREAD
    log_level: str = "INFO"

    @field_validator("isolation", "log_level", mode="before")
    @classmethod
    def _normalize_case(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.upper()

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")
        return self

    def to_config(self) -> CircuitBreakerConfig:
        """Build the immutable breaker configuration from these settings."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            success_threshold=self.success_threshold,
            reset_timeout=self.reset_timeout,
            operation_timeout=self.operation_timeout,
            isolation=self.isolation,
        )
