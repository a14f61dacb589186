"""Unit tests for ServerConfig.from_env."""

from __future__ import annotations

import pytest

from portal_auth.utils.environment import ServerConfig

BASE_ENV = {
    "AUTH_RAOIDC_BASE_URL": "https://idp.example.com/",
    "AUTH_RAOIDC_CLIENT_ID": "portal-client",
    "AUTH_RASCL_LOGOUT_URL": "https://rascl.example.com/logout",
}


def test_defaults() -> None:
    config = ServerConfig.from_env(BASE_ENV)

    assert config.AUTH_RAOIDC_BASE_URL == "https://idp.example.com"
    assert config.AUTH_DEFAULT_PROVIDER == "raoidc"
    assert config.AUTH_RAOIDC_METADATA_CACHE_TTL_SECONDS == 86400
    assert config.SESSION_STORAGE_TYPE == "memory"
    assert config.SESSION_EXPIRES_SECONDS == 1200
    assert config.SESSION_COOKIE_SECURE is True
    assert config.SESSION_COOKIE_HTTP_ONLY is True
    assert config.HTTP_PROXY_URL is None
    assert config.ENABLED_FEATURES == ()


def test_missing_logout_template_warns(caplog) -> None:
    ServerConfig.from_env(BASE_ENV)
    assert "AUTH_LOGOUT_REDIRECT_URL not set" in caplog.text


@pytest.mark.parametrize("missing", sorted(BASE_ENV))
def test_missing_required_variable(missing: str) -> None:
    env = {k: v for k, v in BASE_ENV.items() if k != missing}
    with pytest.raises(ValueError, match=missing):
        ServerConfig.from_env(env)


def test_overrides() -> None:
    config = ServerConfig.from_env(
        {
            **BASE_ENV,
            "ENABLED_FEATURES": "dashboard, payments ,",
            "SESSION_STORAGE_TYPE": "FILE",
            "SESSION_FILE_DIR": "/var/lib/portal/sessions",
            "SESSION_COOKIE_SECURE": "false",
            "SESSION_COOKIE_SAME_SITE": "Strict",
            "SESSION_EXPIRES_SECONDS": "600",
            "HTTP_PROXY_URL": "http://proxy.internal:3128",
            "LOG_LEVEL": "debug",
        }
    )

    assert config.ENABLED_FEATURES == ("dashboard", "payments")
    assert config.is_feature_enabled("payments")
    assert not config.is_feature_enabled("admin")
    assert config.SESSION_STORAGE_TYPE == "file"
    assert config.SESSION_FILE_DIR == "/var/lib/portal/sessions"
    assert config.SESSION_COOKIE_SECURE is False
    assert config.SESSION_COOKIE_SAME_SITE == "strict"
    assert config.SESSION_EXPIRES_SECONDS == 600
    assert config.HTTP_PROXY_URL == "http://proxy.internal:3128"
    assert config.LOG_LEVEL == "DEBUG"


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("SESSION_STORAGE_TYPE", "redis"),
        ("SESSION_COOKIE_SAME_SITE", "sometimes"),
        ("SESSION_EXPIRES_SECONDS", "twenty"),
    ],
)
def test_invalid_values(key: str, value: str) -> None:
    with pytest.raises(ValueError, match=key):
        ServerConfig.from_env({**BASE_ENV, key: value})


def test_reads_process_environment(monkeypatch) -> None:
    for key, value in BASE_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("AUTH_DEFAULT_PROVIDER", "raoidc")
    assert ServerConfig.from_env().AUTH_RAOIDC_CLIENT_ID == "portal-client"
