"""PKCE (Proof Key for Code Exchange) and random-token helpers.

RFC 7636 binds the authorization code to a *code verifier* generated by the
relying party.  Only the verifier's S256 *code challenge* travels to the
authorization endpoint; the verifier itself is kept server-side in the
session until the callback exchanges the code.

The ``state`` and ``nonce`` values of the authorization request are
independent random strings produced by :func:`generate_random_string`.

This module performs **no logging** of verifiers, challenges or state.
"""

from __future__ import annotations

import base64
import secrets
from hashlib import sha256
from typing import Final

# RFC-7636 §4.1 mandates the verifier length between 43 and 128 characters.
_VERIFIER_LEN: Final[int] = 64
_ALLOWED_CHARS: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)

STATE_BYTES: Final[int] = 32
NONCE_BYTES: Final[int] = 16


def generate_code_verifier(length: int = _VERIFIER_LEN) -> str:
    """Generate a high-entropy code verifier.

    Parameters
    ----------
    length:
        Desired length between 43 and 128 characters (default 64).

    Returns
    -------
    str
        The generated code verifier.
    """
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be 43-128 characters")
    return "".join(secrets.choice(_ALLOWED_CHARS) for _ in range(length))


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_random_string(num_bytes: int) -> str:
    """Return ``num_bytes`` of cryptographically secure randomness as hex."""
    return secrets.token_hex(num_bytes)


def generate_state() -> str:
    return generate_random_string(STATE_BYTES)


def generate_nonce() -> str:
    return generate_random_string(NONCE_BYTES)
