"""Browser-facing OIDC endpoints under ``/auth``.

One route, ``GET /auth/{slug:path}``, dispatches on the suffix:

``login``
    Forward to the default provider's login, keeping the query string.
``login/<provider>``
    Validate ``returnto``, build a PKCE sign-in request, regenerate the
    session (new id, empty record, new CSRF token), store
    verifier/state/return url, redirect to the IdP.
``callback/<provider>``
    Exchange the code, commit both tokens, audit, redirect to the return url.
``logout``
    Audit, destroy the session and redirect to the RP-initiated logout URL
    (or straight to the downstream logout URL when never authenticated).

Anything else is a 404.  Errors from the callback propagate to the
application's ``AuthError`` handler; nothing here recovers from them.

SECURITY NOTE
-------------
No raw secrets (state, code verifiers, tokens) are ever logged.
"""

from __future__ import annotations

import logging
from typing import Final

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.routing import Route

from portal_auth.central_auth.log_utils import get_auth_logger
from portal_auth.central_auth.models import IdToken
from portal_auth.central_auth.raoidc import PROVIDER_ID, generate_callback_uri
from portal_auth.central_auth.session import Session, SessionKey
from portal_auth.central_auth.validators import extract_value_from_session
from portal_auth.servers.context import MainAppContext
from portal_auth.servers.responses import redirect_document
from portal_auth.servers.session import get_session

_LOG = logging.getLogger("portal-auth.auth.routes")

SUPPORTED_PROVIDERS: Final[frozenset[str]] = frozenset({PROVIDER_ID})
SUPPORTED_LOCALES: Final[tuple[str, ...]] = ("en", "fr")
DEFAULT_RETURN_URL: Final[str] = "/"

AUDIT_SESSION_CREATED: Final[str] = "auth.session-created"
AUDIT_SESSION_DESTROYED: Final[str] = "auth.session-destroyed"


def is_local_path(url: str) -> bool:
    """True for a path on this origin.

    ``//host`` and ``/\\host`` are protocol-relative; browsers resolve both
    to another host.
    """
    return url.startswith("/") and not url.startswith(("//", "/\\"))


def current_locale(request: Request) -> str:
    """Resolve the UI locale: ``lang`` query, ``lang`` cookie, Accept-Language."""
    for candidate in (request.query_params.get("lang"), request.cookies.get("lang")):
        if candidate in SUPPORTED_LOCALES:
            return candidate
    accept = request.headers.get("accept-language", "")
    for part in accept.split(","):
        lang = part.split(";")[0].strip().lower()[:2]
        if lang in SUPPORTED_LOCALES:
            return lang
    return SUPPORTED_LOCALES[0]


class AuthRouteHandler:
    """Dispatch ``/auth/*`` requests to the login, callback and logout flows."""

    def __init__(self, ctx: MainAppContext, *, base_path: str = "/auth") -> None:
        self.ctx = ctx
        self.base_path = base_path.rstrip("/")

    def routes(self) -> list[Route]:
        return [Route(f"{self.base_path}/{{slug:path}}", self.dispatch, methods=["GET"])]

    def _counter(self, name: str) -> None:
        self.ctx.instrumentation.counter(name).add(1)

    async def dispatch(self, request: Request) -> Response:
        slug: str = request.path_params["slug"].strip("/")
        session = get_session(request)
        parts = slug.split("/")

        if parts == ["login"]:
            return await self.handle_login(request)
        if len(parts) == 2 and parts[0] == "login" and parts[1] in SUPPORTED_PROVIDERS:
            return await self.handle_login_provider(request, session, parts[1])
        if len(parts) == 2 and parts[0] == "callback" and parts[1] in SUPPORTED_PROVIDERS:
            return await self.handle_callback(request, session, parts[1])
        if parts == ["logout"]:
            return await self.handle_logout(request, session)

        _LOG.warning("Invalid auth route requested: [%s]", slug)
        self._counter("auth.unknown-route.requests")
        return Response(status_code=404)

    # ----- GET /auth/login ------------------------------------------------ #
    async def handle_login(self, request: Request) -> Response:
        self._counter("auth.login.requests")
        provider = self.ctx.config.AUTH_DEFAULT_PROVIDER
        url = f"{self.base_path}/login/{provider}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        _LOG.debug("Redirecting to default provider login [%s]", url)
        return redirect_document(url)

    # ----- GET /auth/login/{provider} ------------------------------------- #
    async def handle_login_provider(self, request: Request, session: Session, provider: str) -> Response:
        self._counter(f"auth.login.{provider}.requests")
        log = get_auth_logger(
            base_logger_name="portal-auth.auth.routes",
            session_id=session.id,
            provider=provider,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

        return_url = request.query_params.get("returnto")
        if return_url is not None and not is_local_path(return_url):
            log.warning("Invalid returnto parameter; rejecting login request")
            self._counter(f"auth.login.{provider}.requests.invalid-returnto")
            return Response("Invalid returnto parameter", status_code=400)

        redirect_uri = generate_callback_uri(_origin(request), provider)
        signin_request = await self.ctx.raoidc_client.generate_signin_request(redirect_uri)

        await self.ctx.session_service.regenerate(session)
        session.set(SessionKey.AUTH_CODE_VERIFIER, signin_request.code_verifier)
        session.set(SessionKey.AUTH_RETURN_URL, return_url or DEFAULT_RETURN_URL)
        session.set(SessionKey.AUTH_STATE, signin_request.state)

        log.info("Redirecting to identity provider for sign-in")
        return redirect_document(signin_request.auth_url)

    # ----- GET /auth/callback/{provider} ---------------------------------- #
    async def handle_callback(self, request: Request, session: Session, provider: str) -> Response:
        self._counter(f"auth.callback.{provider}.requests")
        code_verifier = extract_value_from_session(session, SessionKey.AUTH_CODE_VERIFIER)
        return_url = extract_value_from_session(session, SessionKey.AUTH_RETURN_URL) or DEFAULT_RETURN_URL
        expected_state = extract_value_from_session(session, SessionKey.AUTH_STATE)

        result = await self.ctx.raoidc_client.handle_callback(
            query_params=request.query_params,
            code_verifier=code_verifier or "",
            expected_state=expected_state,
            redirect_uri=generate_callback_uri(_origin(request), provider),
        )

        session.set_tokens(result.id_token, result.userinfo_token)
        self.ctx.audit_service.create_audit(AUDIT_SESSION_CREATED, user_id=result.id_token.sub)
        self._counter(f"auth.callback.{provider}.requests.success")

        _LOG.info(
            "Sign-in complete provider=%s correlation_id=%s",
            provider,
            getattr(request.state, "correlation_id", "-"),
        )
        return RedirectResponse(return_url, status_code=302)

    # ----- GET /auth/logout ----------------------------------------------- #
    async def handle_logout(self, request: Request, session: Session) -> Response:
        self._counter("auth.logout.requests")
        id_token: IdToken | None = extract_value_from_session(session, SessionKey.ID_TOKEN)

        if id_token is None:
            _LOG.debug("User was never authenticated; skipping RAOIDC logout")
            self._counter("auth.logout.requests.unauthenticated")
            return redirect_document(self.ctx.config.AUTH_RASCL_LOGOUT_URL)

        signout_url = self.ctx.raoidc_client.generate_signout_request(
            session_id=id_token.sid,
            locale=current_locale(request),
        )
        self.ctx.audit_service.create_audit(AUDIT_SESSION_DESTROYED, user_id=id_token.sub)
        await self.ctx.session_service.destroy(session)

        _LOG.info("Session destroyed; redirecting to RAOIDC signout")
        return redirect_document(signout_url)


def _origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"
