"""PKCE (RFC 7636) code challenge computation and verification."""
from __future__ import annotations

import base64
import enum
import hashlib
import hmac
import re
import secrets

_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


class CodeChallengeMethod(str, enum.Enum):
    S256 = "S256"
    PLAIN = "plain"


def parse_method(method: str | None) -> CodeChallengeMethod:
    """Return the method for *method*, defaulting to ``S256``.

    Raises
    ------
    ValueError
        If *method* names an unsupported method.
    """
    if not method:
        return CodeChallengeMethod.S256
    try:
        return CodeChallengeMethod(method)
    except ValueError:
        raise ValueError(f"Unsupported code_challenge_method: {method!r}") from None


def generate_code_verifier(num_bytes: int = 32) -> str:
    """Return a random verifier of 43+ url-safe characters."""
    return base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).rstrip(b"=").decode("ascii")


def compute_code_challenge(
    verifier: str, method: CodeChallengeMethod = CodeChallengeMethod.S256
) -> str:
    """Return the challenge for *verifier*: BASE64URL(SHA256(verifier)) or the verifier itself."""
    if method is CodeChallengeMethod.PLAIN:
        return verifier
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_verifier(
    verifier: str, challenge: str, method: CodeChallengeMethod = CodeChallengeMethod.S256
) -> bool:
    """Return True if *verifier* matches *challenge*. Comparison is constant time."""
    if not _VERIFIER_PATTERN.match(verifier):
        return False
    expected = compute_code_challenge(verifier, method)
    return hmac.compare_digest(expected.encode("utf-8"), challenge.encode("utf-8"))
