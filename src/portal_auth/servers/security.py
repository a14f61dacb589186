"""Security checks used by every protected route.

Each check returns ``None`` when the request may continue, or the
:class:`~starlette.responses.Response` the route must return instead::

    response = await security.validate_auth_session(request, session)
    if response is not None:
        return response

Expected failures become responses (302 to login, 403, 404, 405).  An
*unexpected* exception from a validator is logged with a distinct message
and re-raised unchanged; it is never turned into a redirect.
"""

from __future__ import annotations

import functools
import logging
from typing import Awaitable, Callable, Final, Iterable
from urllib.parse import quote

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from portal_auth.central_auth.errors import CsrfTokenInvalidError
from portal_auth.central_auth.session import Session
from portal_auth.central_auth.validators import CsrfTokenValidator, RaoidcSessionValidator
from portal_auth.servers.responses import redirect_document
from portal_auth.servers.session import get_session
from portal_auth.utils.environment import ServerConfig

_LOG = logging.getLogger("portal-auth.servers.security")

LOGIN_PATH: Final[str] = "/auth/login"
INVALID_CSRF_BODY: Final[str] = "Invalid CSRF token"
SAFE_METHODS: Final[frozenset[str]] = frozenset({"GET", "HEAD", "OPTIONS"})

Endpoint = Callable[[Request], Awaitable[Response]]


def build_return_to(request: Request) -> str:
    """URL-encoded ``path?query`` of *request*, for the ``returnto`` parameter.

    The ``?`` is always present, even with an empty query, so the login flow
    returns to exactly ``/path?``.
    """
    return quote(f"{request.url.path}?{request.url.query}", safe="")


class SecurityHandler:
    """Turn validator outcomes into HTTP-level decisions."""

    def __init__(
        self,
        config: ServerConfig,
        csrf_token_validator: CsrfTokenValidator,
        raoidc_session_validator: RaoidcSessionValidator,
    ) -> None:
        self.config = config
        self.csrf_token_validator = csrf_token_validator
        self.raoidc_session_validator = raoidc_session_validator

    async def validate_auth_session(self, request: Request, session: Session) -> Response | None:
        """302 to the login entry point unless *session* is authenticated."""
        try:
            result = await self.raoidc_session_validator.validate_raoidc_session(session)
        except Exception:
            _LOG.error(
                "Auth session validation failed unexpectedly for path [%s]",
                request.url.path,
                exc_info=True,
            )
            raise

        if result.is_valid:
            return None

        _LOG.debug("Auth session is invalid: %s", result.error_message)
        return redirect_document(f"{LOGIN_PATH}?returnto={build_return_to(request)}")

    async def validate_csrf_token(self, request: Request, session: Session) -> Response | None:
        """403 ``Invalid CSRF token`` unless the submitted token matches."""
        try:
            await self.csrf_token_validator.validate_csrf_token(request, session)
        except CsrfTokenInvalidError as exc:
            _LOG.warning("CSRF token validation failed for path [%s]: %s", request.url.path, exc)
            return PlainTextResponse(INVALID_CSRF_BODY, status_code=403)
        except Exception:
            _LOG.error(
                "CSRF token validation failed unexpectedly for path [%s]",
                request.url.path,
                exc_info=True,
            )
            raise
        return None

    def validate_feature_enabled(self, feature: str) -> Response | None:
        """404 unless *feature* is listed in ``ENABLED_FEATURES``."""
        if self.config.is_feature_enabled(feature):
            return None
        _LOG.warning("Feature [%s] is not enabled; returning 404 response", feature)
        return Response(status_code=404)

    def validate_request_method(
        self, request: Request, allowed_methods: Iterable[str]
    ) -> Response | None:
        """405 with an ``Allow`` header unless the request method is allowed."""
        allowed = [m.upper() for m in allowed_methods]
        _LOG.debug(
            "Validating request method [%s] for path [%s] with allowed methods %s",
            request.method,
            request.url.path,
            allowed,
        )
        if request.method.upper() in allowed:
            return None
        _LOG.warning("Request method [%s] not allowed for path [%s]", request.method, request.url.path)
        return Response(status_code=405, headers={"Allow": ", ".join(allowed)})


def require_auth(security: SecurityHandler, *, csrf: bool = True) -> Callable[[Endpoint], Endpoint]:
    """Decorate an endpoint with the auth-session check and, for unsafe
    methods, the CSRF check.
    """

    def decorator(endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def wrapper(request: Request) -> Response:
            session = get_session(request)
            response = await security.validate_auth_session(request, session)
            if response is not None:
                return response
            if csrf and request.method.upper() not in SAFE_METHODS:
                response = await security.validate_csrf_token(request, session)
                if response is not None:
                    return response
            return await endpoint(request)

        return wrapper

    return decorator
