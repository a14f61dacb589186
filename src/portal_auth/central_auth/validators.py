"""Per-request session and CSRF validators.

:class:`RaoidcSessionValidator` reports *expected* failures (missing tokens,
expired IdP session) through :class:`ValidationResult` and never raises for
them.  Anything it does raise is unexpected and must not be treated as an
ordinary authentication failure by callers.

:class:`CsrfTokenValidator` raises :class:`CsrfTokenInvalidError`.  It
applies to every request it is given; exempting safe methods (GET/HEAD) is
the calling route's decision.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Final, Protocol

from starlette.requests import Request

from portal_auth.central_auth.errors import CsrfTokenInvalidError
from portal_auth.central_auth.models import IdToken, UserinfoToken, ValidationResult
from portal_auth.central_auth.session import Session, SessionKey

_LOG = logging.getLogger("portal-auth.central_auth.validators")

CSRF_FORM_FIELD: Final[str] = "_csrf"
CSRF_HEADER: Final[str] = "X-CSRF-Token"

_FORM_CONTENT_TYPES: Final[tuple[str, ...]] = (
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)


class SessionValidityChecker(Protocol):
    """Upstream check of an IdP session id (``RaoidcClient.validate_session``)."""

    async def validate_session(self, sid: str) -> bool: ...


def extract_value_from_session(session: Session, key: SessionKey) -> Any | None:
    """Return the value stored under *key*, or ``None``. Performs no validation."""
    return session.find(key) if session.has(key) else None


class RaoidcSessionValidator:
    """Decide whether a session still represents an authenticated RAOIDC user."""

    def __init__(self, checker: SessionValidityChecker) -> None:
        self._checker = checker

    async def validate_raoidc_session(self, session: Session) -> ValidationResult:
        _LOG.debug("Validating RAOIDC session [%s****]", session.id[:6])

        id_token: IdToken | None = extract_value_from_session(session, SessionKey.ID_TOKEN)
        if id_token is None:
            return ValidationResult.invalid(
                f"Authentication failed; idToken not found in session [{session.id}]"
            )

        userinfo_token: UserinfoToken | None = extract_value_from_session(
            session, SessionKey.USERINFO_TOKEN
        )
        if userinfo_token is None:
            return ValidationResult.invalid(
                f"Authentication failed; userInfoToken not found in session [{session.id}]"
            )

        if userinfo_token.mocked:
            _LOG.debug("Mocked user; skipping RAOIDC session validation")
            return ValidationResult.ok()

        if not await self._checker.validate_session(id_token.sid):
            return ValidationResult.invalid(
                f"Authentication failed; RAOIDC session [{session.id}] has expired"
            )

        _LOG.debug("RAOIDC session validation passed")
        return ValidationResult.ok()


class CsrfTokenValidator:
    """Compare the submitted CSRF token with the session's ``csrfToken``."""

    async def validate_csrf_token(self, request: Request, session: Session) -> None:
        """Raise :class:`CsrfTokenInvalidError` unless both tokens exist and match."""
        expected = extract_value_from_session(session, SessionKey.CSRF_TOKEN)
        submitted = await self._submitted_token(request)

        if not expected:
            raise CsrfTokenInvalidError("CSRF token not found in session")
        if not submitted:
            raise CsrfTokenInvalidError("CSRF token not found in request")
        if not hmac.compare_digest(str(submitted).encode(), str(expected).encode()):
            raise CsrfTokenInvalidError("CSRF token does not match session")

    @staticmethod
    async def _submitted_token(request: Request) -> str | None:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(_FORM_CONTENT_TYPES):
            form = await request.form()
            value = form.get(CSRF_FORM_FIELD)
            if isinstance(value, str) and value:
                return value
        return request.headers.get(CSRF_HEADER)
