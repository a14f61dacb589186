"""Session record storage.

This module introduces a *narrow* persistence interface
(:class:`SessionStore`) with two implementations:

* :class:`MemorySessionStore` – a ``cachetools.TTLCache`` for single-process
  deployments and tests.
* :class:`DiskSessionStore` – one JSON file per session.  Writes use
  *temp-file + os.replace*; file names are hashes of the session id so an
  externally supplied cookie value never reaches the filesystem verbatim.

Records expire ``ttl_seconds`` after their last write.  Encryption at rest
is not handled here.

Environment variables
---------------------
SESSION_FILE_DIR
    Base directory for :class:`DiskSessionStore` when no path is passed.
"""

from __future__ import annotations

import json
import os
from hashlib import sha256
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import anyio
from cachetools import TTLCache

from portal_auth.central_auth.clock import Clock, default_clock

_DEFAULT_TTL_SECONDS = 1200


def _hash(text: str, length: int = 32) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@runtime_checkable
class SessionStore(Protocol):
    """Minimal persistence contract for session records."""

    async def load(self, session_id: str) -> dict[str, Any] | None: ...
    async def save(self, session_id: str, data: dict[str, Any]) -> None: ...
    async def delete(self, session_id: str) -> None: ...


class MemorySessionStore(SessionStore):
    """In-process store; records vanish on restart."""

    def __init__(
        self,
        *,
        ttl_seconds: int = _DEFAULT_TTL_SECONDS,
        maxsize: int = 10_000,
        clock: Clock = default_clock,
    ) -> None:
        self._cache: TTLCache[str, dict[str, Any]] = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds, timer=clock
        )

    async def load(self, session_id: str) -> dict[str, Any] | None:
        data = self._cache.get(session_id)
        return dict(data) if data is not None else None

    async def save(self, session_id: str, data: dict[str, Any]) -> None:
        self._cache[session_id] = dict(data)

    async def delete(self, session_id: str) -> None:
        self._cache.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._cache)


class DiskSessionStore(SessionStore):
    """JSON-file implementation of :class:`SessionStore`."""

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        ttl_seconds: int = _DEFAULT_TTL_SECONDS,
        clock: Clock = default_clock,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("SESSION_FILE_DIR")
            or Path.home() / ".portal-auth" / "sessions"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _path(self, session_id: str) -> Path:
        return self.base_dir / f"{_hash(session_id)}.json"

    def _load_sync(self, session_id: str) -> dict[str, Any] | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        with path.open(encoding="utf-8") as fh:
            record = json.load(fh)
        if record.get("expires_at", 0) <= self._clock():
            path.unlink(missing_ok=True)
            return None
        return record["data"]

    def _save_sync(self, session_id: str, data: dict[str, Any]) -> None:
        record = {"data": data, "expires_at": self._clock() + self.ttl_seconds}
        _atomic_write(self._path(session_id), record)

    def _delete_sync(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)

    async def load(self, session_id: str) -> dict[str, Any] | None:
        return await anyio.to_thread.run_sync(self._load_sync, session_id)

    async def save(self, session_id: str, data: dict[str, Any]) -> None:
        await anyio.to_thread.run_sync(self._save_sync, session_id, data)

    async def delete(self, session_id: str) -> None:
        await anyio.to_thread.run_sync(self._delete_sync, session_id)

    def cleanup_expired(self) -> int:
        """Remove expired records; return how many were deleted."""
        removed = 0
        now = self._clock()
        for p in self.base_dir.glob("*.json"):
            try:
                with p.open(encoding="utf-8") as fh:
                    expires_at = float(json.load(fh).get("expires_at", 0))
            except (OSError, ValueError):
                continue
            if expires_at <= now:
                p.unlink(missing_ok=True)
                removed += 1
        return removed
