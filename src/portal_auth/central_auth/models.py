"""Typed, immutable records used by the auth core."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Mapping


def _known(cls: type, claims: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in claims.items() if k in names}


@dataclass(frozen=True, slots=True)
class IdToken:
    """Verified claims of the RAOIDC id token.

    ``sid`` is the IdP session id; ``sub`` identifies the user.
    """

    sid: str
    sub: str
    iss: str | None = None
    jti: str | None = None
    nbf: int | None = None
    exp: int | None = None
    iat: int | None = None
    aud: str | list[str] | None = None
    nonce: str | None = None
    locale: str | None = None

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "IdToken":
        return cls(**_known(cls, claims))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class UserinfoToken:
    """Verified claims of the RAOIDC userinfo token.

    ``mocked`` marks non-production test identities; sessions carrying a
    mocked token skip the upstream session-validity check.
    """

    sid: str
    sub: str
    iss: str | None = None
    jti: str | None = None
    nbf: int | None = None
    exp: int | None = None
    iat: int | None = None
    aud: str | list[str] | None = None
    sin: str | None = None
    locale: str | None = None
    mocked: bool = False

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "UserinfoToken":
        return cls(**_known(cls, claims))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SigninRequest:
    """An in-flight authorization request.

    ``code_verifier`` and ``state`` are persisted in the session by the
    caller until the callback consumes them.
    """

    auth_url: str
    code_verifier: str
    state: str


@dataclass(frozen=True, slots=True)
class CallbackResult:
    access_token: str
    id_token: IdToken
    userinfo_token: UserinfoToken


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of a validator; the only channel for *expected* failures."""

    is_valid: bool
    error_message: str | None = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def invalid(cls, error_message: str) -> "ValidationResult":
        return cls(is_valid=False, error_message=error_message)


@dataclass(frozen=True, slots=True)
class ServerMetadata:
    """Subset of the RFC 8414 discovery document used by the client."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    end_session_endpoint: str | None = None
    jwks: dict[str, Any] = field(default_factory=dict)

    _REQUIRED = (
        "issuer",
        "authorization_endpoint",
        "token_endpoint",
        "userinfo_endpoint",
        "jwks_uri",
    )

    @classmethod
    def from_discovery(
        cls, document: Mapping[str, Any], jwks: Mapping[str, Any]
    ) -> "ServerMetadata":
        """Build metadata, raising ``ValueError`` on missing endpoints or keys."""
        for name in cls._REQUIRED:
            if not document.get(name):
                raise ValueError(f"server metadata has no {name}")
        if not jwks.get("keys"):
            raise ValueError("JWK set has no keys")
        return cls(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            userinfo_endpoint=document["userinfo_endpoint"],
            jwks_uri=document["jwks_uri"],
            end_session_endpoint=document.get("end_session_endpoint"),
            jwks=dict(jwks),
        )
