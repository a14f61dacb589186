"""Central authentication core package.

This namespace hosts the **HTTP-agnostic** pieces of the RAOIDC sign-in
flow; Starlette wiring lives in :mod:`portal_auth.servers`.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
pkce
    Proof-Key for Code Exchange, state and nonce helpers.
models
    Immutable dataclasses for tokens, sign-in requests and results.
errors
    Exception types used by the central auth logic.
session
    Typed session keys, the per-request session and its lifecycle service.
store
    Memory and disk session stores.
raoidc
    Discovery, sign-in, callback, logout and session-validity calls.
validators
    RAOIDC session and CSRF token validators.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .errors import (  # noqa: F401
    AuthError,
    AuthStateMismatchError,
    CallbackRequestError,
    CsrfTokenInvalidError,
    RaoidcServerError,
    TokenExchangeError,
)
from .log_utils import get_auth_logger  # noqa: F401
from .models import (  # noqa: F401
    CallbackResult,
    IdToken,
    ServerMetadata,
    SigninRequest,
    UserinfoToken,
    ValidationResult,
)
from .pkce import code_challenge_s256, generate_code_verifier  # noqa: F401
from .raoidc import RaoidcClient  # noqa: F401
from .session import Session, SessionKey, SessionService  # noqa: F401
from .store import DiskSessionStore, MemorySessionStore, SessionStore  # noqa: F401
from .validators import CsrfTokenValidator, RaoidcSessionValidator  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    # pkce
    "generate_code_verifier",
    "code_challenge_s256",
    # models
    "IdToken",
    "UserinfoToken",
    "SigninRequest",
    "CallbackResult",
    "ValidationResult",
    "ServerMetadata",
    # errors
    "AuthError",
    "CallbackRequestError",
    "AuthStateMismatchError",
    "TokenExchangeError",
    "RaoidcServerError",
    "CsrfTokenInvalidError",
    # sessions
    "Session",
    "SessionKey",
    "SessionService",
    "SessionStore",
    "MemorySessionStore",
    "DiskSessionStore",
    # idp + validators
    "RaoidcClient",
    "RaoidcSessionValidator",
    "CsrfTokenValidator",
    # logging helpers
    "get_auth_logger",
]
