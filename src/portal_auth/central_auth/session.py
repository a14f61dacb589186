"""Server-side session handle and the service that manages its lifecycle.

A :class:`Session` is an explicit handle passed to every function that needs
it; there is no ambient/global session.  Keys are closed over
:class:`SessionKey` so a typo fails loudly instead of silently reading
``None``.

Auth keys are never removed one by one: logout destroys the whole session
through :meth:`SessionService.destroy`.
"""

from __future__ import annotations

import logging
import secrets
from enum import Enum
from typing import Any, Callable, Mapping

from portal_auth.central_auth.models import IdToken, UserinfoToken
from portal_auth.central_auth.pkce import generate_random_string
from portal_auth.central_auth.store import SessionStore

_LOG = logging.getLogger("portal-auth.central_auth.session")

CSRF_TOKEN_BYTES = 32


class SessionKey(str, Enum):
    """Every key the auth core may read or write."""

    ID_TOKEN = "idToken"
    USERINFO_TOKEN = "userInfoToken"
    CSRF_TOKEN = "csrfToken"
    AUTH_CODE_VERIFIER = "authCodeVerifier"
    AUTH_STATE = "authState"
    AUTH_RETURN_URL = "authReturnUrl"
    CLIENT_NUMBER = "clientNumber"


_DECODERS: dict[SessionKey, Callable[[Mapping[str, Any]], Any]] = {
    SessionKey.ID_TOKEN: IdToken.from_claims,
    SessionKey.USERINFO_TOKEN: UserinfoToken.from_claims,
}


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def new_csrf_token() -> str:
    return generate_random_string(CSRF_TOKEN_BYTES)


class Session:
    """Typed view over one session record."""

    def __init__(
        self,
        session_id: str,
        data: Mapping[str, Any] | None = None,
        *,
        is_new: bool = False,
    ) -> None:
        self.id = session_id
        self.is_new = is_new
        self.modified = False
        self.destroyed = False
        self._data: dict[str, Any] = dict(data or {})

    def has(self, key: SessionKey | str) -> bool:
        return SessionKey(key).value in self._data

    def find(self, key: SessionKey | str) -> Any | None:
        """Return the value stored under *key*, or ``None`` when absent."""
        key = SessionKey(key)
        raw = self._data.get(key.value)
        if raw is None:
            return None
        decoder = _DECODERS.get(key)
        return decoder(raw) if decoder else raw

    def get(self, key: SessionKey | str) -> Any:
        """Like :meth:`find` but raises ``KeyError`` when the key is absent."""
        value = self.find(key)
        if value is None:
            raise KeyError(f"session key [{SessionKey(key).value}] not found")
        return value

    def set(self, key: SessionKey | str, value: Any) -> None:
        key = SessionKey(key)
        if key in _DECODERS:
            raise ValueError(f"{key.value} can only be written through set_tokens()")
        self._data[key.value] = value
        self.modified = True

    def set_tokens(self, id_token: IdToken, userinfo_token: UserinfoToken) -> None:
        """Store the id and userinfo tokens together.

        Both belong to the same IdP session, so their ``sid`` claims must
        agree.
        """
        if id_token.sid != userinfo_token.sid:
            raise ValueError("idToken and userInfoToken belong to different sessions")
        self._data[SessionKey.ID_TOKEN.value] = id_token.to_dict()
        self._data[SessionKey.USERINFO_TOKEN.value] = userinfo_token.to_dict()
        self.modified = True

    def clear(self) -> None:
        self._data.clear()
        self.modified = True

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def __repr__(self) -> str:
        return f"Session(id={self.id[:6]}****, keys={sorted(self._data)})"


class SessionService:
    """Load, regenerate, destroy and commit sessions against a store."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    async def get_session(self, session_id: str | None) -> Session:
        """Return the stored session for *session_id*, or a fresh one."""
        if session_id:
            data = await self.store.load(session_id)
            if data is not None:
                return Session(session_id, data)
            _LOG.debug("Session %s**** not found or expired", session_id[:6])
        return Session(new_session_id(), is_new=True)

    async def regenerate(self, session: Session) -> None:
        """Move *session* to a new, empty record with a fresh CSRF token.

        Nothing carries over from the old record, so tokens or a CSRF token
        planted before sign-in do not survive it.  The old record is removed
        at once so the previous id cannot be replayed.
        """
        old_id = session.id
        session.id = new_session_id()
        session.clear()
        session.set(SessionKey.CSRF_TOKEN, new_csrf_token())
        await self.store.delete(old_id)
        _LOG.debug("Regenerated session %s**** -> %s****", old_id[:6], session.id[:6])

    async def destroy(self, session: Session) -> None:
        await self.store.delete(session.id)
        session.destroyed = True
        _LOG.debug("Destroyed session %s****", session.id[:6])

    async def commit(self, session: Session) -> None:
        """Persist *session*; destroyed sessions are never written back."""
        if session.destroyed:
            return
        await self.store.save(session.id, session.to_dict())
