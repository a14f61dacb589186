"""Clock abstraction for testable time handling in the auth core.

All expiry decisions (session records, client assertions, cached discovery
metadata) depend on an injected :class:`Clock` rather than calling
``time.time()`` directly, so tests can freeze or advance time.

Example
-------
>>> from portal_auth.central_auth.clock import default_clock
>>> isinstance(default_clock(), float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Wall-clock seconds since the UNIX epoch."""
    return time.time()
