from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Protocol, cast

import pytest
import structlog

from callguard.logging import (
    StructlogBreakerLogger,
    configure_structlog,
    get_log_level_value,
    log_info,
    log_warning,
)
from tests.callguard.support.fakes import FakeLogger


def _configured_renderer() -> object:
    root_handler = logging.getLogger().handlers[0]
    formatter = root_handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class _RecordWithBreakerFields(Protocol):
    breaker: str
    retry_after: float


def _capturing_stdlib_logger(name: str) -> tuple[logging.Logger, _CaptureHandler]:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = _CaptureHandler()
    logger.addHandler(handler)
    return logger, handler


def test_get_log_level_value_maps_known_levels() -> None:
    assert get_log_level_value("debug") == logging.DEBUG
    assert get_log_level_value("INFO") == logging.INFO
    assert get_log_level_value(" warning ") == logging.WARNING
    assert get_log_level_value("ERROR") == logging.ERROR
    assert get_log_level_value("critical") == logging.CRITICAL


def test_get_log_level_value_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="log_level must be one of"):
        get_log_level_value("TRACE")


def test_configure_structlog_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    first_logger = configure_structlog(log_level="INFO")
    second_logger = configure_structlog(log_level="DEBUG")

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger().level == logging.DEBUG
    assert first_logger is not None
    assert second_logger is not None


def test_configure_structlog_uses_console_renderer_for_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: True, raising=False)

    configure_structlog(log_level="INFO")

    assert isinstance(_configured_renderer(), structlog.dev.ConsoleRenderer)


def test_configure_structlog_uses_json_renderer_for_non_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    configure_structlog(log_level="INFO")

    assert isinstance(_configured_renderer(), structlog.processors.JSONRenderer)


@pytest.mark.parametrize(
    ("log_fn", "level"),
    [
        (log_info, "info"),
        (log_warning, "warning"),
    ],
)
def test_structured_log_helpers_forward_keyword_fields(
    log_fn: Callable[..., None],
    level: str,
    fake_logger: FakeLogger,
) -> None:
    log_fn(fake_logger, "breaker.event", breaker="svc", attempt=3)

    assert fake_logger.calls == [
        (level, "breaker.event", {"breaker": "svc", "attempt": 3}),
    ]


def test_structured_log_helpers_support_stdlib_logger_extra() -> None:
    logger, handler = _capturing_stdlib_logger("tests.callguard.logging.helpers")

    log_info(logger, "circuit is open, request rejected", breaker="svc", retry_after=2.5)

    assert len(handler.records) == 1
    record = handler.records[0]
    typed_record = cast(_RecordWithBreakerFields, record)
    assert record.getMessage() == "circuit is open, request rejected"
    assert typed_record.breaker == "svc"
    assert typed_record.retry_after == 2.5


def test_breaker_logger_routes_errors_to_warning(fake_logger: FakeLogger) -> None:
    sink = StructlogBreakerLogger(fake_logger)

    sink.log("circuit breaker failure: boom", {"breaker": "svc", "error": "RuntimeError"})
    sink.log("circuit breaker state changed from closed to open", {"breaker": "svc"})
    sink.log("no context")

    assert fake_logger.calls == [
        (
            "warning",
            "circuit breaker failure: boom",
            {"breaker": "svc", "error": "RuntimeError"},
        ),
        (
            "info",
            "circuit breaker state changed from closed to open",
            {"breaker": "svc"},
        ),
        ("info", "no context", {}),
    ]


def test_breaker_logger_supports_stdlib_logger() -> None:
    logger, handler = _capturing_stdlib_logger("tests.callguard.logging.sink")
    sink = StructlogBreakerLogger(logger)

    sink.log("circuit is open, request rejected", {"breaker": "svc", "retry_after": 1.0})

    assert len(handler.records) == 1
    record = handler.records[0]
    assert record.levelno == logging.INFO
    assert cast(_RecordWithBreakerFields, record).breaker == "svc"


def test_breaker_logger_defaults_to_structlog_logger() -> None:
    sink = StructlogBreakerLogger()

    sink.log("circuit breaker state changed from open to half_open", {"breaker": "svc"})
