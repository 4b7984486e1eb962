"""Logging helpers for evidence engine components.

Purpose:
    Configure the ``evidence_engine`` logger hierarchy with a consistent
    formatter, resolve textual log levels coming from the environment and
    install the Rich console handler used by the command line interface.
External Dependencies:
    Uses the standard library ``logging`` module and ``rich.logging`` for the
    interactive handler.
Fallback Semantics:
    Unknown level names resolve to ``logging.INFO`` instead of raising so a
    typo in ``EVIDENCE_LOG_LEVEL`` never prevents evidence collection.
Timeout Strategy:
    Not applicable; operations are in-process and non-blocking.
"""

from __future__ import annotations

import logging
import os

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "evidence_engine"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(level: int | str | None, default: int = logging.INFO) -> int:
    """Translate ``level`` into a numeric logging level.

    Accepts integers, level names (``"debug"``, ``"WARNING"``) or ``None``.
    """
    if level is None:
        return default
    if isinstance(level, int):
        return level

    candidate = logging.getLevelName(str(level).strip().upper())
    return candidate if isinstance(candidate, int) else default


def configure_logger(
    name: str = ROOT_LOGGER_NAME,
    level: int | str | None = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Return a logger configured with a standard formatter.

    A ``StreamHandler`` is attached only when the logger has no handlers yet,
    so calling the helper again just updates the level.

    Args:
        name: Name of the logger to retrieve.
        level: Optional level override; falls back to ``EVIDENCE_LOG_LEVEL``
            and then ``logging.INFO``.
        fmt: Format string used when a handler has to be attached.

    Returns:
        The configured logger.
    """
    logger = logging.getLogger(name)
    effective_level = resolve_level(level if level is not None else os.environ.get("EVIDENCE_LOG_LEVEL"))

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    logger.setLevel(effective_level)

    return logger


def configure_cli_logging(verbose: bool = False) -> logging.Logger:
    """Route ``evidence_engine`` logs through a Rich handler for terminal use."""

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(rich_tracebacks=True, show_path=verbose)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else resolve_level(os.environ.get("EVIDENCE_LOG_LEVEL")))
    logger.propagate = False
    return logger


__all__ = ["ROOT_LOGGER_NAME", "configure_cli_logging", "configure_logger", "resolve_level"]
