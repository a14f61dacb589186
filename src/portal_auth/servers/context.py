from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from portal_auth.central_auth.raoidc import RaoidcClient
    from portal_auth.central_auth.session import SessionService
    from portal_auth.servers.security import SecurityHandler
    from portal_auth.utils.audit import AuditService
    from portal_auth.utils.environment import ServerConfig
    from portal_auth.utils.instrumentation import InstrumentationService


@dataclass(frozen=True)
class MainAppContext:
    """
    Services built once at application start and shared by all requests.
    Route handlers receive this object instead of reaching for singletons.
    """

    config: ServerConfig
    session_service: SessionService
    raoidc_client: RaoidcClient
    security_handler: SecurityHandler
    audit_service: AuditService
    instrumentation: InstrumentationService
