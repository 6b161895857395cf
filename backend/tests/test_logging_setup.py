"""Tests for root logger configuration."""

import logging
from typing import Any

import pytest
from pythonjsonlogger.json import JsonFormatter

from clinica import main
from clinica.core.config import settings


@pytest.fixture()
def root_logger() -> Any:
    """Restore the root logger's handlers and level after the test."""
    logger = logging.getLogger()
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_json_format_installs_json_formatter(
    root_logger: logging.Logger, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "LOG_FORMAT", "json")
    monkeypatch.setattr(settings, "LOG_LEVEL", "DEBUG")

    main._configure_logging()

    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)
    assert root_logger.level == logging.DEBUG


def test_text_format_uses_plain_formatter(
    root_logger: logging.Logger, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "LOG_FORMAT", "text")

    main._configure_logging()

    (handler,) = root_logger.handlers
    assert not isinstance(handler.formatter, JsonFormatter)
