"""AuthorizationCodeStore — single-use authorization codes.

Codes are 32 random bytes in hex with a ten minute default lifetime.
:meth:`AuthorizationCodeStore.redeem` removes the code under the lock
before checking anything else, so a code can be redeemed at most once
even when the check that follows fails.
"""
from __future__ import annotations

import datetime
import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass

from pki_auth.oauth.errors import OAuthError, OAuthErrorCode
from pki_auth.oauth.pkce import CodeChallengeMethod

logger = logging.getLogger(__name__)

DEFAULT_CODE_TTL_SECONDS = 600


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class AuthorizationCode:
    """An authorization code bound to a user, client and redirect target."""

    code: str
    user_id: str
    client_id: str
    redirect_uri: str
    scope: str
    expires_at: datetime.datetime
    code_challenge: str | None = None
    code_challenge_method: CodeChallengeMethod | None = None
    used: bool = False

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


class AuthorizationCodeStore:
    """In-memory store of outstanding authorization codes.

    Parameters
    ----------
    ttl_seconds:
        Code lifetime.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_CODE_TTL_SECONDS,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._ttl = datetime.timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._codes: dict[str, AuthorizationCode] = {}
        self._lock = threading.Lock()

    def issue(
        self,
        user_id: str,
        client_id: str,
        redirect_uri: str,
        scope: str = "",
        code_challenge: str | None = None,
        code_challenge_method: CodeChallengeMethod | None = None,
    ) -> AuthorizationCode:
        now = self._clock()
        code = AuthorizationCode(
            code=secrets.token_hex(32),
            user_id=user_id,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            expires_at=now + self._ttl,
            code_challenge=code_challenge or None,
            code_challenge_method=(
                (code_challenge_method or CodeChallengeMethod.S256) if code_challenge else None
            ),
        )
        with self._lock:
            self._purge(now)
            self._codes[code.code] = code
        logger.debug("Issued authorization code %s... for client %s", code.code[:8], client_id)
        return code

    def redeem(self, code: str) -> AuthorizationCode:
        """Consume *code* and return it.

        Raises
        ------
        OAuthError
            ``invalid_grant`` if the code is unknown, already used or expired.
        """
        now = self._clock()
        with self._lock:
            record = self._codes.pop(code, None)
        if record is None or record.used:
            raise OAuthError(OAuthErrorCode.INVALID_GRANT)
        record.used = True
        if record.is_expired(now):
            raise OAuthError(OAuthErrorCode.INVALID_GRANT, "Code expired")
        return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)

    def _purge(self, now: datetime.datetime) -> None:
        expired = [c for c, record in self._codes.items() if record.is_expired(now)]
        for code in expired:
            del self._codes[code]
