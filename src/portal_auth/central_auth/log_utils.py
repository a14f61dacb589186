"""Structured logging helpers for auth components.

This module restricts **which** contextual attributes are attached to log
records so that secrets never leak.  The adapter only injects:

- ``session_id``     – The portal session id (first 6 chars kept)
- ``provider``       – Identity provider id (``raoidc``)
- ``correlation_id`` – Request correlation id set by the middleware

Usage
-----
>>> from portal_auth.central_auth.log_utils import get_auth_logger
>>> log = get_auth_logger(
...     base_logger_name="portal-auth.auth.routes",
...     session_id="0a1b2c3d4e5f6a7b",
...     provider="raoidc",
... )
>>> log.info("Starting sign-in")
INFO portal-auth.auth.routes session_id=0a1b2c provider=raoidc ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("session_id", "provider", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "session_id":
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "portal-auth.central_auth",
    session_id: str | None = None,
    provider: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {
            "session_id": session_id,
            "provider": provider,
            "correlation_id": correlation_id,
        },
    )
