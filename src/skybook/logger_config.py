"""Centralized logging configuration."""

from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = " | ".join(
    (
        "<lk>{time:YYYY-MM-DD HH:mm:ss.SSS}</>",
        "<lvl>{level:<8}</>",
        "<c>{name}::{function}:{line}</>",
        "{message}",
    )
)

_configured_level: str | None = None


def configure_logging(level: str = "INFO") -> None:
    global _configured_level
    normalized = level.upper()
    if _configured_level == normalized:
        return
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=normalized, backtrace=False, diagnose=False)
    _configured_level = normalized
