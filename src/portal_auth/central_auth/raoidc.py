"""RaoidcClient – all calls to the RAOIDC identity provider.

The client is **HTTP-framework agnostic**: it takes plain values (query
parameter mappings, redirect URIs) and returns typed records.  It never
reads or writes the portal session; callers persist ``code_verifier`` and
``state`` before the redirect and commit the tokens after a successful
callback.

Discovery metadata and the JWK set are cached in a ``cachetools.TTLCache``
(``AUTH_RAOIDC_METADATA_CACHE_TTL_SECONDS``).  Token exchange is never
retried because an authorization code is single-use.

With ``AUTH_JWT_PRIVATE_KEY`` set, id and userinfo tokens may arrive as
nested JWTs encrypted to that key (JWE, ``RSA-OAEP-256``).  They are
decrypted with python-jose and the inner JWS is verified with PyJWT.

SECURITY NOTE
-------------
Verifiers, state, codes and tokens are never logged.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from hashlib import sha256
from typing import Any, Final, Mapping
from urllib.parse import quote, urlencode

import httpx
import jwt
from cachetools import TTLCache
from cryptography.hazmat.primitives import serialization
from jose import jwe
from jose.exceptions import JOSEError
from jwt.algorithms import RSAAlgorithm

from portal_auth.central_auth.clock import Clock, default_clock
from portal_auth.central_auth.errors import (
    AuthStateMismatchError,
    CallbackRequestError,
    RaoidcServerError,
    TokenExchangeError,
)
from portal_auth.central_auth.models import (
    CallbackResult,
    IdToken,
    ServerMetadata,
    SigninRequest,
    UserinfoToken,
)
from portal_auth.central_auth.pkce import (
    code_challenge_s256,
    generate_code_verifier,
    generate_nonce,
    generate_random_string,
    generate_state,
)
from portal_auth.utils.environment import ServerConfig

_LOG = logging.getLogger("portal-auth.central_auth.raoidc")

PROVIDER_ID: Final[str] = "raoidc"
SCOPE: Final[str] = "openid profile"
TOKEN_ALGORITHMS: Final[list[str]] = ["RS256", "RS512", "PS256"]
JWE_KEY_MANAGEMENT_ALGORITHMS: Final[frozenset[str]] = frozenset({"RSA-OAEP-256"})
CLIENT_ASSERTION_TYPE: Final[str] = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
CLIENT_ASSERTION_TTL_SECONDS: Final[int] = 60
CLOCK_SKEW_SECONDS: Final[int] = 60

_TEMPLATE_VAR = re.compile(r"\{(\w+)\}")


def expand_template(template: str, variables: Mapping[str, str]) -> str:
    """Replace ``{name}`` placeholders with URL-encoded *variables*.

    Unknown placeholders are left untouched.
    """

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return quote(str(variables[name]), safe="")

    return _TEMPLATE_VAR.sub(_sub, template)


def generate_callback_uri(base_uri: str, provider: str) -> str:
    return f"{base_uri.rstrip('/')}/auth/callback/{provider}"


def _jwk_thumbprint(jwk: Mapping[str, Any]) -> str:
    """RFC 7638 thumbprint of an RSA JWK."""
    canonical = json.dumps(
        {"e": jwk["e"], "kty": jwk["kty"], "n": jwk["n"]},
        separators=(",", ":"),
        sort_keys=True,
    )
    digest = sha256(canonical.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class RaoidcClient:
    """OIDC relying-party operations against RAOIDC."""

    def __init__(
        self,
        config: ServerConfig,
        http_client: httpx.AsyncClient,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config
        self._http = http_client
        self._clock = clock
        self._metadata_cache: TTLCache[str, ServerMetadata] = TTLCache(
            maxsize=4,
            ttl=config.AUTH_RAOIDC_METADATA_CACHE_TTL_SECONDS,
            timer=clock,
        )
        self._private_key = None
        self._private_key_pem: bytes | None = None
        self._private_key_id: str | None = None
        if config.AUTH_JWT_PRIVATE_KEY:
            self._load_private_key(config.AUTH_JWT_PRIVATE_KEY)

    def _load_private_key(self, pem: str) -> None:
        try:
            key = serialization.load_pem_private_key(
                pem.replace("\\n", "\n").encode("utf-8"), password=None
            )
        except ValueError:
            raise ValueError("AUTH_JWT_PRIVATE_KEY is not a valid PEM private key") from None
        public_jwk = json.loads(RSAAlgorithm.to_jwk(key.public_key()))
        self._private_key = key
        self._private_key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        self._private_key_id = _jwk_thumbprint(public_jwk)

    # ------------------------------------------------------------------ #
    # Discovery                                                          #
    # ------------------------------------------------------------------ #
    async def fetch_server_metadata(self) -> ServerMetadata:
        """Return discovery metadata and JWKS, cached per base URL."""
        base_url = self.config.AUTH_RAOIDC_BASE_URL
        cached = self._metadata_cache.get(base_url)
        if cached is not None:
            return cached

        discovery_url = f"{base_url}/.well-known/openid-configuration"
        _LOG.info("Fetching OIDC server metadata from [%s]", discovery_url)
        document = await self._get_json(discovery_url, "server metadata")
        jwks_uri = document.get("jwks_uri") if isinstance(document, dict) else None
        if not jwks_uri:
            raise RaoidcServerError("Server metadata has no jwks endpoint", provider=PROVIDER_ID)

        _LOG.info("Fetching OIDC server public keys from [%s]", jwks_uri)
        jwks = await self._get_json(jwks_uri, "server jwks")
        try:
            metadata = ServerMetadata.from_discovery(document, jwks)
        except (ValueError, AttributeError) as exc:
            raise RaoidcServerError(f"Invalid server metadata: {exc}", provider=PROVIDER_ID) from exc

        self._metadata_cache[base_url] = metadata
        _LOG.info("Created new server metadata cache entry for [%s]", base_url)
        return metadata

    async def _get_json(self, url: str, what: str) -> Any:
        try:
            resp = await self._http.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise RaoidcServerError(f"Error fetching {what}: {exc}", provider=PROVIDER_ID) from exc
        if resp.status_code != 200:
            raise RaoidcServerError(
                f"Error fetching {what}: non-200 status {resp.status_code}",
                provider=PROVIDER_ID,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise RaoidcServerError(f"Error fetching {what}: invalid JSON", provider=PROVIDER_ID) from exc

    # ------------------------------------------------------------------ #
    # Sign-in                                                            #
    # ------------------------------------------------------------------ #
    async def generate_signin_request(self, redirect_uri: str) -> SigninRequest:
        """Build a PKCE authorization request for *redirect_uri*."""
        _LOG.debug("Generating OIDC signin request")
        metadata = await self.fetch_server_metadata()

        code_verifier = generate_code_verifier()
        state = generate_state()
        query_params: dict[str, str] = {
            "client_id": self.config.AUTH_RAOIDC_CLIENT_ID,
            "code_challenge": code_challenge_s256(code_verifier),
            "code_challenge_method": "S256",
            "nonce": generate_nonce(),
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": SCOPE,
            "state": state,
        }
        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        auth_url = f"{metadata.authorization_endpoint}{separator}{urlencode(query_params)}"
        return SigninRequest(auth_url=auth_url, code_verifier=code_verifier, state=state)

    def generate_signout_request(self, *, session_id: str, locale: str) -> str:
        """Return the RP-initiated logout URL for RAOIDC session *session_id*."""
        _LOG.debug("Generating OIDC signout request")
        template = self.config.AUTH_LOGOUT_REDIRECT_URL
        if not template:
            return self.config.AUTH_RASCL_LOGOUT_URL
        return expand_template(
            template,
            {
                "clientId": self.config.AUTH_RAOIDC_CLIENT_ID,
                "sharedSessionId": session_id,
                "uiLocales": locale,
            },
        )

    # ------------------------------------------------------------------ #
    # Callback                                                           #
    # ------------------------------------------------------------------ #
    async def handle_callback(
        self,
        *,
        query_params: Mapping[str, str],
        code_verifier: str,
        expected_state: str | None,
        redirect_uri: str,
    ) -> CallbackResult:
        """Validate the callback and exchange its code for tokens.

        The ``state`` comparison happens before any network call; a
        mismatch aborts the flow.

        Raises
        ------
        CallbackRequestError
            The IdP reported an error or no code was returned.
        AuthStateMismatchError
            ``state`` differs from *expected_state*.
        TokenExchangeError
            Token/userinfo endpoint failure or unusable tokens.
        """
        _LOG.debug("Handling OIDC callback")
        error = query_params.get("error")
        auth_code = query_params.get("code")
        state = query_params.get("state")

        if error:
            raise CallbackRequestError(f"Unexpected error: {error}", provider=PROVIDER_ID)
        if not auth_code:
            raise CallbackRequestError("Missing authorization code in response", provider=PROVIDER_ID)
        if not state or not expected_state or state != expected_state:
            _LOG.warning("CSRF error: incoming state does not match expected state")
            raise AuthStateMismatchError(provider=PROVIDER_ID)

        try:
            metadata = await self.fetch_server_metadata()
        except RaoidcServerError as exc:
            raise TokenExchangeError(str(exc), provider=PROVIDER_ID) from exc

        token_set = await self._fetch_token_set(metadata, auth_code, code_verifier, redirect_uri)
        id_token = IdToken.from_claims(self._decode_token(token_set["id_token"], metadata, "id token"))

        userinfo_token = await self._fetch_userinfo(metadata, token_set["access_token"])
        if userinfo_token.sid != id_token.sid:
            raise TokenExchangeError(
                "idToken and userInfoToken belong to different sessions",
                provider=PROVIDER_ID,
            )

        _LOG.info("Exchanged authorization code for provider=%s", PROVIDER_ID)
        return CallbackResult(
            access_token=token_set["access_token"],
            id_token=id_token,
            userinfo_token=userinfo_token,
        )

    async def _fetch_token_set(
        self,
        metadata: ServerMetadata,
        auth_code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> dict[str, Any]:
        _LOG.debug("Exchanging authorization code for access/id tokens")
        payload: dict[str, str] = {
            "client_id": self.config.AUTH_RAOIDC_CLIENT_ID,
            "code": auth_code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        assertion = self._client_assertion(metadata.issuer)
        if assertion:
            payload["client_assertion_type"] = CLIENT_ASSERTION_TYPE
            payload["client_assertion"] = assertion

        try:
            resp = await self._http.post(
                metadata.token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Token request failed: {exc}", provider=PROVIDER_ID) from exc

        if not resp.is_success:
            raise TokenExchangeError(
                f"Token endpoint returned {resp.status_code}", provider=PROVIDER_ID
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise TokenExchangeError("Token response is not JSON", provider=PROVIDER_ID) from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            raise TokenExchangeError("Token response missing access_token", provider=PROVIDER_ID)
        if not data.get("id_token"):
            raise TokenExchangeError("Token response missing id_token", provider=PROVIDER_ID)
        return data

    async def _fetch_userinfo(self, metadata: ServerMetadata, access_token: str) -> UserinfoToken:
        _LOG.debug("Fetching user info")
        try:
            resp = await self._http.get(
                metadata.userinfo_endpoint,
                headers={
                    "Accept": "application/json, application/jwt",
                    "Authorization": f"Bearer {access_token}",
                },
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Userinfo request failed: {exc}", provider=PROVIDER_ID) from exc

        if resp.status_code != 200:
            raise TokenExchangeError(
                f"Userinfo endpoint returned {resp.status_code}", provider=PROVIDER_ID
            )
        try:
            token = resp.json().get("userinfo_token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise TokenExchangeError("No userinfo token found in token set", provider=PROVIDER_ID)
        return UserinfoToken.from_claims(self._decode_token(token, metadata, "userinfo token"))

    def _decrypt_token(self, token: str, what: str) -> str:
        """Unwrap a compact JWE addressed to this client.

        RAOIDC encrypts id and userinfo tokens to the client key when one is
        registered; the plaintext is the signed JWT.  Five segments mark a
        JWE, anything else is returned unchanged.
        """
        if token.count(".") != 4:
            return token
        if self._private_key_pem is None:
            raise TokenExchangeError(
                f"Encrypted {what} received but AUTH_JWT_PRIVATE_KEY is not set",
                provider=PROVIDER_ID,
            )
        try:
            alg = jwe.get_unverified_header(token).get("alg")
        except JOSEError as exc:
            raise TokenExchangeError(f"Malformed {what}: {exc}", provider=PROVIDER_ID) from exc
        if alg not in JWE_KEY_MANAGEMENT_ALGORITHMS:
            raise TokenExchangeError(
                f"Unsupported {what} key management algorithm [{alg}]",
                provider=PROVIDER_ID,
            )
        try:
            return jwe.decrypt(token, self._private_key_pem).decode("utf-8")
        except (JOSEError, ValueError) as exc:
            raise TokenExchangeError(f"Cannot decrypt {what}: {exc}", provider=PROVIDER_ID) from exc

    def _decode_token(self, token: str, metadata: ServerMetadata, what: str) -> dict[str, Any]:
        """Decrypt if needed, then verify signature, issuer and audience."""
        token = self._decrypt_token(token, what)
        try:
            kid = jwt.get_unverified_header(token).get("kid")
            key = self._signing_key(metadata, kid)
            return jwt.decode(
                token,
                key=key,
                algorithms=TOKEN_ALGORITHMS,
                audience=self.config.AUTH_RAOIDC_CLIENT_ID,
                issuer=metadata.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["sub", "sid"]},
            )
        except (jwt.PyJWTError, LookupError) as exc:
            raise TokenExchangeError(f"Invalid {what}: {exc}", provider=PROVIDER_ID) from exc

    @staticmethod
    def _signing_key(metadata: ServerMetadata, kid: str | None) -> Any:
        keys = jwt.PyJWKSet.from_dict(metadata.jwks).keys
        if kid is None and len(keys) == 1:
            return keys[0].key
        for jwk in keys:
            if jwk.key_id == kid:
                return jwk.key
        raise LookupError(f"no signing key matches kid [{kid}]")

    def _client_assertion(self, issuer: str) -> str | None:
        """Signed ``private_key_jwt`` assertion, or ``None`` without a key."""
        if self._private_key is None:
            return None
        now = int(self._clock())
        payload = {
            "aud": issuer,
            "exp": now + CLIENT_ASSERTION_TTL_SECONDS,
            "iat": now,
            "iss": self.config.AUTH_RAOIDC_CLIENT_ID,
            "jti": generate_random_string(32),
            "nbf": now,
            "sub": self.config.AUTH_RAOIDC_CLIENT_ID,
        }
        return jwt.encode(
            payload,
            self._private_key,
            algorithm="PS256",
            headers={"kid": self._private_key_id},
        )

    # ------------------------------------------------------------------ #
    # Session validity                                                   #
    # ------------------------------------------------------------------ #
    async def validate_session(self, sid: str) -> bool:
        """Ask RAOIDC whether shared session *sid* is still active.

        Raises
        ------
        RaoidcServerError
            Transport failure or non-200 response.
        """
        url = f"{self.config.AUTH_RAOIDC_BASE_URL}/validatesession"
        params = {"client_id": self.config.AUTH_RAOIDC_CLIENT_ID, "shared_session_id": sid}
        data = await self._get_json(f"{url}?{urlencode(params)}", "session validation")
        return data is True
