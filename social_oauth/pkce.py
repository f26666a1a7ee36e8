"""CSRF state and PKCE (Proof Key for Code Exchange) generation

All randomness comes from the ``secrets`` module (the OS CSPRNG). If the
random source is unavailable the exception propagates; there is no weaker
fallback.
"""

import base64
import hashlib
import secrets

from .models import PkceCodes

CODE_CHALLENGE_METHOD = "S256"

# 32 bytes -> 43 URL-safe characters, 256 bits of entropy
STATE_BYTES = 32
# 64 bytes -> 86 character verifier (RFC 7636 allows 43-128)
VERIFIER_BYTES = 64


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def new_state() -> str:
    """Generate an opaque anti-forgery state token

    Returns:
        URL-safe random string
    """
    return secrets.token_urlsafe(STATE_BYTES)


def compute_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a verifier

    Args:
        code_verifier: PKCE code verifier

    Returns:
        base64url(SHA-256(verifier)) without padding
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def new_pkce_pair() -> PkceCodes:
    """Generate PKCE code verifier and challenge

    Returns:
        PkceCodes with a high-entropy verifier and its S256 challenge
    """
    code_verifier = _b64url(secrets.token_bytes(VERIFIER_BYTES))
    return PkceCodes(
        code_verifier=code_verifier,
        code_challenge=compute_code_challenge(code_verifier),
    )
