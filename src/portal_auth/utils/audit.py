"""Audit trail for authentication events.

Events go to the ``portal-auth.audit`` logger; deployments route that logger
to their audit sink.  Only the event name and the user id are recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from portal_auth.central_auth.clock import Clock, default_clock

_LOG = logging.getLogger("portal-auth.audit")


@runtime_checkable
class AuditService(Protocol):
    def create_audit(self, event_name: str, *, user_id: str) -> None: ...


@dataclass(frozen=True, slots=True)
class AuditEvent:
    event_name: str
    user_id: str
    timestamp: float


@dataclass
class LoggingAuditService:
    """Write audit events to the log and keep the last few in memory."""

    clock: Clock = default_clock
    history_size: int = 100
    events: list[AuditEvent] = field(default_factory=list)

    def create_audit(self, event_name: str, *, user_id: str) -> None:
        event = AuditEvent(event_name=event_name, user_id=user_id, timestamp=self.clock())
        self.events.append(event)
        del self.events[: -self.history_size]
        _LOG.info("audit event=%s user_id=%s", event_name, user_id)
