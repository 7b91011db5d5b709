"""Challenge-response certificate login."""
from __future__ import annotations

from pki_auth.auth.challenge import Challenge, ChallengeIssuer, ConsumeResult
from pki_auth.auth.login import AuthAttempt, AuthState, LoginBinder, LoginError, LoginResult
from pki_auth.auth.signature import safe_b64decode, sign_data, verify_signature

__all__ = [
    "AuthAttempt",
    "AuthState",
    "Challenge",
    "ChallengeIssuer",
    "ConsumeResult",
    "LoginBinder",
    "LoginError",
    "LoginResult",
    "safe_b64decode",
    "sign_data",
    "verify_signature",
]
