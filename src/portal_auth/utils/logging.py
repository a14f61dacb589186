"""Logging setup and secret masking."""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_logging(level: int | str = logging.WARNING, stream=None) -> logging.Logger:
    """Configure the ``portal-auth`` logger hierarchy.

    Args:
        level: Logging level name or number.
        stream: Output stream, ``sys.stderr`` by default.

    Returns:
        The configured ``portal-auth`` root logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger("portal-auth")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Mask everything but the first *keep_chars* characters of *value*."""
    if not value:
        return ""
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars)
