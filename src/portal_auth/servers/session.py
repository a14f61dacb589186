"""Session middleware: load the session before the handler, commit it after.

The handler sees the session as ``request.state.session``.  It is written
back exactly once, after the handler returns, so a request either persists
all of its session changes or none of them.  Destroyed sessions are removed
from the store and their cookie is cleared.
"""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from portal_auth.central_auth.session import Session, SessionKey, SessionService, new_csrf_token
from portal_auth.utils.environment import ServerConfig

_logger = logging.getLogger("portal-auth.session")


def get_session(request: Request) -> Session:
    """Return the session attached by :class:`SessionMiddleware`."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise RuntimeError("SessionMiddleware is not installed")
    return session


class SessionMiddleware(BaseHTTPMiddleware):
    """Bind one server-side :class:`Session` to each HTTP request."""

    def __init__(self, app, session_service: SessionService, config: ServerConfig) -> None:  # type: ignore[override]  # noqa: ANN001
        super().__init__(app)
        self.session_service = session_service
        self.config = config

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]  # noqa: ANN001
        cookie_value = request.cookies.get(self.config.SESSION_COOKIE_NAME)
        session = await self.session_service.get_session(cookie_value)
        if not session.has(SessionKey.CSRF_TOKEN):
            session.set(SessionKey.CSRF_TOKEN, new_csrf_token())
        request.state.session = session

        response = await call_next(request)

        if session.destroyed:
            response.delete_cookie(
                self.config.SESSION_COOKIE_NAME,
                path=self.config.SESSION_COOKIE_PATH,
                domain=self.config.SESSION_COOKIE_DOMAIN,
            )
            return response

        await self.session_service.commit(session)
        if session.id != cookie_value:
            _logger.debug("Issuing session cookie for %s****", session.id[:6])
        response.set_cookie(
            self.config.SESSION_COOKIE_NAME,
            session.id,
            max_age=self.config.SESSION_EXPIRES_SECONDS,
            path=self.config.SESSION_COOKIE_PATH,
            domain=self.config.SESSION_COOKIE_DOMAIN,
            secure=self.config.SESSION_COOKIE_SECURE,
            httponly=self.config.SESSION_COOKIE_HTTP_ONLY,
            samesite=self.config.SESSION_COOKIE_SAME_SITE,
        )
        return response
