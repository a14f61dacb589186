"""Unit tests for audit events, counters and logging helpers."""

from __future__ import annotations

import io
import logging

from portal_auth.central_auth.log_utils import get_auth_logger
from portal_auth.utils.audit import LoggingAuditService
from portal_auth.utils.instrumentation import InstrumentationService
from portal_auth.utils.logging import mask_sensitive, setup_logging


# --------------------------------------------------------------------------- #
# Audit                                                                       #
# --------------------------------------------------------------------------- #
def test_audit_records_and_logs(clock, caplog) -> None:
    audit = LoggingAuditService(clock=clock)
    with caplog.at_level(logging.INFO, logger="portal-auth.audit"):
        audit.create_audit("auth.session-created", user_id="user-1")

    assert audit.events[0].event_name == "auth.session-created"
    assert audit.events[0].user_id == "user-1"
    assert audit.events[0].timestamp == clock()
    assert "event=auth.session-created user_id=user-1" in caplog.text


def test_audit_history_is_bounded() -> None:
    audit = LoggingAuditService(history_size=2)
    for i in range(5):
        audit.create_audit("auth.session-created", user_id=f"user-{i}")
    assert [e.user_id for e in audit.events] == ["user-3", "user-4"]


# --------------------------------------------------------------------------- #
# Counters                                                                    #
# --------------------------------------------------------------------------- #
def test_counters() -> None:
    service = InstrumentationService()
    service.counter("auth.login.requests").add(1)
    service.counter("auth.login.requests").add(2)
    service.counter("auth.logout.requests").add()

    assert service.value("auth.login.requests") == 3
    assert service.value("never.used") == 0
    assert service.snapshot() == {"auth.login.requests": 3, "auth.logout.requests": 1}


# --------------------------------------------------------------------------- #
# Logging                                                                     #
# --------------------------------------------------------------------------- #
def test_mask_sensitive() -> None:
    assert mask_sensitive(None) == ""
    assert mask_sensitive("short") == "*****"
    assert mask_sensitive("abcdefghijkl") == "abcd********"


def test_setup_logging_writes_to_stream() -> None:
    stream = io.StringIO()
    logger = setup_logging("INFO", stream=stream)
    try:
        logging.getLogger("portal-auth.test").info("hello")
        logging.getLogger("portal-auth.test").debug("hidden")
        assert logger.level == logging.INFO
        assert "portal-auth.test hello" in stream.getvalue()
        assert "hidden" not in stream.getvalue()
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


def test_auth_logger_only_injects_whitelisted_context(caplog) -> None:
    log = get_auth_logger(
        base_logger_name="portal-auth.test",
        session_id="0123456789abcdef",
        provider="raoidc",
        correlation_id=None,
    )
    with caplog.at_level(logging.INFO, logger="portal-auth.test"):
        log.info("sign-in started")

    record = caplog.records[-1]
    assert record.session_id == "012345"
    assert record.provider == "raoidc"
    assert not hasattr(record, "correlation_id")
