"""Tests for logger configuration helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from rich.logging import RichHandler

from evidence_engine.core.utils.logging import (
    ROOT_LOGGER_NAME,
    configure_cli_logging,
    configure_logger,
    resolve_level,
)


@pytest.fixture
def fresh_logger() -> Iterator[str]:
    name = f"{ROOT_LOGGER_NAME}.tests.configured"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.mark.parametrize(
    ("level", "expected"),
    [
        (None, logging.INFO),
        (logging.ERROR, logging.ERROR),
        ("debug", logging.DEBUG),
        (" WARNING ", logging.WARNING),
        ("chatty", logging.INFO),
    ],
)
def test_resolve_level(level, expected) -> None:
    assert resolve_level(level) == expected


def test_configure_logger_attaches_one_handler(fresh_logger: str) -> None:
    logger = configure_logger(fresh_logger, level="debug")
    again = configure_logger(fresh_logger, level=logging.ERROR)

    assert again is logger
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.StreamHandler)
    assert logger.level == logging.ERROR


def test_configure_logger_reads_level_from_environment(
    fresh_logger: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("EVIDENCE_LOG_LEVEL", "warning")

    assert configure_logger(fresh_logger).level == logging.WARNING


def test_cli_logging_replaces_rich_handler(restore_root_logger: None) -> None:
    configure_cli_logging()
    logger = configure_cli_logging(verbose=True)

    assert sum(isinstance(h, RichHandler) for h in logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
