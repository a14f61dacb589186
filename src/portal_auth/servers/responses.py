"""Small response helpers shared by the auth routes and the security handler."""

from __future__ import annotations

from starlette.responses import JSONResponse, RedirectResponse

from portal_auth.central_auth.errors import AuthError

RELOAD_DOCUMENT_HEADER = "X-Reload-Document"


def redirect_document(url: str, status_code: int = 302) -> RedirectResponse:
    """Redirect that tells client-side routers to do a full page navigation.

    The browser then re-sends its cookies and the server re-evaluates the
    session, which a fetch-level redirect would skip.
    """
    response = RedirectResponse(url, status_code=status_code)
    response.headers[RELOAD_DOCUMENT_HEADER] = "true"
    return response


def auth_error_response(exc: AuthError) -> JSONResponse:
    return JSONResponse(exc.to_payload(), status_code=exc.http_status)
