"""Starlette application setup for the portal auth service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from portal_auth.central_auth.clock import Clock, default_clock
from portal_auth.central_auth.errors import AuthError
from portal_auth.central_auth.raoidc import RaoidcClient
from portal_auth.central_auth.session import SessionService
from portal_auth.central_auth.store import DiskSessionStore, MemorySessionStore, SessionStore
from portal_auth.central_auth.validators import CsrfTokenValidator, RaoidcSessionValidator
from portal_auth.utils.audit import AuditService, LoggingAuditService
from portal_auth.utils.environment import ServerConfig
from portal_auth.utils.instrumentation import InstrumentationService
from portal_auth.utils.logging import mask_sensitive

from .auth import AuthRouteHandler
from .context import MainAppContext
from .correlation import CorrelationIdMiddleware
from .responses import auth_error_response
from .security import SecurityHandler
from .session import SessionMiddleware

logger = logging.getLogger("portal-auth.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def handle_auth_error(request: Request, exc: AuthError) -> Response:
    logger.warning(
        "Auth flow failed on [%s]: %s (%s)",
        request.url.path,
        exc.error_code,
        exc,
    )
    return auth_error_response(exc)


def build_session_store(config: ServerConfig, clock: Clock = default_clock) -> SessionStore:
    """Pick the session store named by ``SESSION_STORAGE_TYPE``."""
    if config.SESSION_STORAGE_TYPE == "file":
        logger.info("Using file session store in [%s]", config.SESSION_FILE_DIR or "default dir")
        return DiskSessionStore(
            config.SESSION_FILE_DIR,
            ttl_seconds=config.SESSION_EXPIRES_SECONDS,
            clock=clock,
        )
    logger.info("Using in-memory session store")
    return MemorySessionStore(ttl_seconds=config.SESSION_EXPIRES_SECONDS, clock=clock)


def build_http_client(config: ServerConfig) -> httpx.AsyncClient:
    if config.HTTP_PROXY_URL:
        logger.info("Routing IdP calls through proxy [%s]", mask_sensitive(config.HTTP_PROXY_URL, 12))
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.HTTP_TIMEOUT_SECONDS),
        proxy=config.HTTP_PROXY_URL,
    )


def create_app(
    config: ServerConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    session_store: SessionStore | None = None,
    audit_service: AuditService | None = None,
    instrumentation: InstrumentationService | None = None,
    clock: Clock = default_clock,
) -> Starlette:
    """Build the application and every service it depends on.

    Collaborators passed in are used as-is; the rest are built from *config*.
    An HTTP client created here is closed when the application shuts down.
    """
    # Compare against None: an empty store or audit log is falsy but still injected.
    owns_http_client = http_client is None
    client = build_http_client(config) if http_client is None else http_client
    if session_store is None:
        session_store = build_session_store(config, clock)
    if audit_service is None:
        audit_service = LoggingAuditService(clock=clock)
    if instrumentation is None:
        instrumentation = InstrumentationService()
    session_service = SessionService(session_store)
    raoidc_client = RaoidcClient(config, client, clock=clock)
    security_handler = SecurityHandler(
        config,
        CsrfTokenValidator(),
        RaoidcSessionValidator(raoidc_client),
    )
    ctx = MainAppContext(
        config=config,
        session_service=session_service,
        raoidc_client=raoidc_client,
        security_handler=security_handler,
        audit_service=audit_service,
        instrumentation=instrumentation,
    )

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Portal auth server starting (provider=%s)", config.AUTH_DEFAULT_PROVIDER)
        try:
            yield
        finally:
            if owns_http_client:
                await client.aclose()
            logger.info("Portal auth server shutdown complete.")

    routes = [
        Route("/health", health_check, methods=["GET"]),
        *AuthRouteHandler(ctx).routes(),
    ]
    # Outermost first: the correlation id exists before the session is loaded.
    middleware = [
        Middleware(CorrelationIdMiddleware),
        Middleware(SessionMiddleware, session_service=session_service, config=config),
    ]
    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={AuthError: handle_auth_error},
        lifespan=lifespan,
    )
    app.state.context = ctx
    return app
