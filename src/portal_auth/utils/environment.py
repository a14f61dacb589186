"""Server configuration read from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Final, Mapping, Tuple

logger = logging.getLogger("portal-auth.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")

SESSION_STORAGE_TYPES: Final[Tuple[str, ...]] = ("memory", "file")
SAME_SITE_VALUES: Final[Tuple[str, ...]] = ("lax", "strict", "none")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _csv(value: str | None) -> tuple[str, ...]:
    return tuple(item.strip() for item in (value or "").split(",") if item.strip())


def _required(env: Mapping[str, str], key: str) -> str:
    value = (env.get(key) or "").strip()
    if not value:
        raise ValueError(f"Environment variable {key} is required")
    return value


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be an integer") from None


@dataclass(frozen=True)
class ServerConfig:
    """Settings for the auth routes, the RAOIDC client and the session store."""

    AUTH_RAOIDC_BASE_URL: str
    AUTH_RAOIDC_CLIENT_ID: str
    AUTH_RASCL_LOGOUT_URL: str
    AUTH_LOGOUT_REDIRECT_URL: str = ""
    AUTH_JWT_PRIVATE_KEY: str | None = None
    AUTH_DEFAULT_PROVIDER: str = "raoidc"
    AUTH_RAOIDC_METADATA_CACHE_TTL_SECONDS: int = 24 * 60 * 60
    ENABLED_FEATURES: tuple[str, ...] = field(default_factory=tuple)
    HTTP_PROXY_URL: str | None = None
    HTTP_TIMEOUT_SECONDS: int = 30
    SESSION_STORAGE_TYPE: str = "memory"
    SESSION_FILE_DIR: str | None = None
    SESSION_EXPIRES_SECONDS: int = 1200
    SESSION_COOKIE_NAME: str = "__portal_session"
    SESSION_COOKIE_PATH: str = "/"
    SESSION_COOKIE_DOMAIN: str | None = None
    SESSION_COOKIE_SAME_SITE: str = "lax"
    SESSION_COOKIE_SECURE: bool = True
    SESSION_COOKIE_HTTP_ONLY: bool = True
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ServerConfig":
        """Build a config from *env* (``os.environ`` by default).

        Raises:
            ValueError: If a required variable is missing or a value is invalid.
        """
        env = os.environ if env is None else env

        storage_type = (env.get("SESSION_STORAGE_TYPE") or "memory").strip().lower()
        if storage_type not in SESSION_STORAGE_TYPES:
            raise ValueError(
                f"SESSION_STORAGE_TYPE must be one of {', '.join(SESSION_STORAGE_TYPES)}"
            )
        same_site = (env.get("SESSION_COOKIE_SAME_SITE") or "lax").strip().lower()
        if same_site not in SAME_SITE_VALUES:
            raise ValueError(
                f"SESSION_COOKIE_SAME_SITE must be one of {', '.join(SAME_SITE_VALUES)}"
            )

        config = cls(
            AUTH_RAOIDC_BASE_URL=_required(env, "AUTH_RAOIDC_BASE_URL").rstrip("/"),
            AUTH_RAOIDC_CLIENT_ID=_required(env, "AUTH_RAOIDC_CLIENT_ID"),
            AUTH_RASCL_LOGOUT_URL=_required(env, "AUTH_RASCL_LOGOUT_URL"),
            AUTH_LOGOUT_REDIRECT_URL=(env.get("AUTH_LOGOUT_REDIRECT_URL") or "").strip(),
            AUTH_JWT_PRIVATE_KEY=(env.get("AUTH_JWT_PRIVATE_KEY") or None),
            AUTH_DEFAULT_PROVIDER=(env.get("AUTH_DEFAULT_PROVIDER") or "raoidc").strip(),
            AUTH_RAOIDC_METADATA_CACHE_TTL_SECONDS=_int(
                env, "AUTH_RAOIDC_METADATA_CACHE_TTL_SECONDS", 24 * 60 * 60
            ),
            ENABLED_FEATURES=_csv(env.get("ENABLED_FEATURES")),
            HTTP_PROXY_URL=(env.get("HTTP_PROXY_URL") or "").strip() or None,
            HTTP_TIMEOUT_SECONDS=_int(env, "HTTP_TIMEOUT_SECONDS", 30),
            SESSION_STORAGE_TYPE=storage_type,
            SESSION_FILE_DIR=(env.get("SESSION_FILE_DIR") or "").strip() or None,
            SESSION_EXPIRES_SECONDS=_int(env, "SESSION_EXPIRES_SECONDS", 1200),
            SESSION_COOKIE_NAME=(env.get("SESSION_COOKIE_NAME") or "__portal_session").strip(),
            SESSION_COOKIE_PATH=(env.get("SESSION_COOKIE_PATH") or "/").strip(),
            SESSION_COOKIE_DOMAIN=(env.get("SESSION_COOKIE_DOMAIN") or "").strip() or None,
            SESSION_COOKIE_SAME_SITE=same_site,
            SESSION_COOKIE_SECURE=_truthy(env.get("SESSION_COOKIE_SECURE", "true")),
            SESSION_COOKIE_HTTP_ONLY=_truthy(env.get("SESSION_COOKIE_HTTP_ONLY", "true")),
            LOG_LEVEL=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )
        if not config.AUTH_LOGOUT_REDIRECT_URL:
            logger.warning(
                "AUTH_LOGOUT_REDIRECT_URL not set; authenticated logouts will "
                "redirect to AUTH_RASCL_LOGOUT_URL without ending the RAOIDC session."
            )
        return config

    def is_feature_enabled(self, feature: str) -> bool:
        return feature in self.ENABLED_FEATURES
