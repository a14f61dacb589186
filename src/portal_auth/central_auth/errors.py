"""Exception types raised by the auth core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP
layer can transform them into responses.  ``to_payload`` never includes
token, verifier or state values.

An invalid or expired session is *not* an exception: validators report it
through :class:`~portal_auth.central_auth.models.ValidationResult`.
"""

from __future__ import annotations


class AuthError(RuntimeError):
    """Base class for expected failures of the sign-in flow."""

    error_code: str = "auth_error"
    http_status: int = 400
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None, *, provider: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.provider: str | None = provider

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        payload = {"error": self.error_code, "message": str(self)}
        if self.provider:
            payload["provider"] = self.provider
        return payload


class CallbackRequestError(AuthError):
    """The IdP redirected back with an ``error`` parameter or without a code."""

    error_code = "invalid_callback"
    default_message = "Malformed authorization callback."


class AuthStateMismatchError(AuthError):
    """The callback ``state`` does not match the one stored in the session.

    The in-flight sign-in is abandoned; the user has to restart at
    ``/auth/login``.
    """

    error_code = "state_mismatch"
    default_message = "Authorization state does not match; please sign in again."


class TokenExchangeError(AuthError):
    """The token or userinfo endpoint failed, or returned unusable tokens.

    Never retried: an authorization code is single-use.
    """

    error_code = "token_exchange_failed"
    http_status = 502
    default_message = "Could not exchange the authorization code."


class RaoidcServerError(AuthError):
    """Discovery, JWKS or session-validation calls to the IdP failed."""

    error_code = "idp_unavailable"
    http_status = 502
    default_message = "The identity provider could not be reached."


class CsrfTokenInvalidError(AuthError):
    """The submitted CSRF token is absent or differs from the session's."""

    error_code = "invalid_csrf_token"
    http_status = 403
    default_message = "Invalid CSRF token"
