"""Shared fixtures: test config, RSA signing keys and a fake RAOIDC server.

The fake IdP is an ``httpx.MockTransport`` handler, so every test runs
without network access.
"""

from __future__ import annotations

import json
import time
from typing import Any
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwe
from jwt.algorithms import RSAAlgorithm

from portal_auth.utils.environment import ServerConfig

IDP_BASE_URL = "https://idp.example.com"
CLIENT_ID = "portal-client"
RASCL_LOGOUT_URL = "https://rascl.example.com/logout"
LOGOUT_TEMPLATE = (
    f"{IDP_BASE_URL}/logout?client_id={{clientId}}"
    "&shared_session_id={sharedSessionId}&ui_locales={uiLocales}"
)
PORTAL_BASE_URL = "https://portal.example.com"
SIGNING_KID = "idp-key-1"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# --------------------------------------------------------------------------- #
# Keys                                                                        #
# --------------------------------------------------------------------------- #
@pytest.fixture(scope="session")
def idp_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def client_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def client_private_key_pem(client_private_key: rsa.RSAPrivateKey) -> str:
    return client_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


# --------------------------------------------------------------------------- #
# Config                                                                      #
# --------------------------------------------------------------------------- #
def build_config(**overrides: Any) -> ServerConfig:
    values: dict[str, Any] = {
        "AUTH_RAOIDC_BASE_URL": IDP_BASE_URL,
        "AUTH_RAOIDC_CLIENT_ID": CLIENT_ID,
        "AUTH_RASCL_LOGOUT_URL": RASCL_LOGOUT_URL,
        "AUTH_LOGOUT_REDIRECT_URL": LOGOUT_TEMPLATE,
    }
    values.update(overrides)
    return ServerConfig(**values)


@pytest.fixture
def make_config():
    """Factory for a test ``ServerConfig`` with keyword overrides."""
    return build_config


@pytest.fixture
def config() -> ServerConfig:
    return build_config()


# --------------------------------------------------------------------------- #
# Fake RAOIDC                                                                 #
# --------------------------------------------------------------------------- #
class FakeIdp:
    """Minimal RAOIDC: discovery, JWKS, token, userinfo and validatesession."""

    def __init__(self, private_key: rsa.RSAPrivateKey, kid: str = SIGNING_KID) -> None:
        self.private_key = private_key
        self.kid = kid
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.userinfo_status = 200
        self.discovery_status = 200
        self.session_active: bool | None = True
        self.validatesession_status = 200
        self.id_token_claims: dict[str, Any] = {}
        self.userinfo_claims: dict[str, Any] = {}
        self.signing_key: rsa.RSAPrivateKey | None = None
        # When set, issued tokens are nested JWTs encrypted to this key.
        self.encrypt_to: rsa.RSAPublicKey | None = None
        self.jwe_algorithm = "RSA-OAEP-256"

    # helpers --------------------------------------------------------------- #
    def sign(self, claims: dict[str, Any]) -> str:
        now = int(time.time())
        payload = {
            "iss": IDP_BASE_URL,
            "aud": CLIENT_ID,
            "sub": "user-123",
            "sid": "idp-session-1",
            "iat": now,
            "nbf": now,
            "exp": now + 300,
            "jti": "jti-1",
        }
        payload.update(claims)
        return jwt.encode(
            payload,
            self.signing_key or self.private_key,
            algorithm="RS256",
            headers={"kid": self.kid},
        )

    def issue(self, claims: dict[str, Any]) -> str:
        """Sign *claims* and, with ``encrypt_to`` set, wrap them in a JWE."""
        token = self.sign(claims)
        if self.encrypt_to is None:
            return token
        return self.encrypt(token)

    def encrypt(self, token: str) -> str:
        public_pem = self.encrypt_to.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return jwe.encrypt(
            token.encode("utf-8"),
            public_pem,
            encryption="A256GCM",
            algorithm=self.jwe_algorithm,
            cty="JWT",
        ).decode("ascii")

    @property
    def jwks(self) -> dict[str, Any]:
        jwk = RSAAlgorithm.to_jwk(self.private_key.public_key(), as_dict=True)
        jwk.update({"kid": self.kid, "use": "sig", "alg": "RS256"})
        return {"keys": [jwk]}

    @property
    def discovery(self) -> dict[str, Any]:
        return {
            "issuer": IDP_BASE_URL,
            "authorization_endpoint": f"{IDP_BASE_URL}/authorize",
            "token_endpoint": f"{IDP_BASE_URL}/token",
            "userinfo_endpoint": f"{IDP_BASE_URL}/userinfo",
            "jwks_uri": f"{IDP_BASE_URL}/jwks",
            "end_session_endpoint": f"{IDP_BASE_URL}/logout",
        }

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def token_form(self) -> dict[str, str]:
        """Form fields of the last token request."""
        request = next(r for r in reversed(self.requests) if r.url.path == "/token")
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    # transport ------------------------------------------------------------- #
    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status)
            return httpx.Response(200, json=self.discovery)
        if path == "/jwks":
            return httpx.Response(200, json=self.jwks)
        if path == "/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={
                    "access_token": "access-token-xyz",
                    "token_type": "Bearer",
                    "id_token": self.issue(self.id_token_claims),
                },
            )
        if path == "/userinfo":
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status)
            return httpx.Response(
                200, json={"userinfo_token": self.issue({"sin": "123456789", **self.userinfo_claims})}
            )
        if path == "/validatesession":
            if self.validatesession_status != 200:
                return httpx.Response(self.validatesession_status)
            return httpx.Response(200, content=json.dumps(self.session_active))
        return httpx.Response(404)


@pytest.fixture
def fake_idp(idp_private_key: rsa.RSAPrivateKey) -> FakeIdp:
    return FakeIdp(idp_private_key)


@pytest.fixture
async def idp_http_client(fake_idp: FakeIdp):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_idp.handler)) as client:
        yield client


class MutableClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


