"""TokenService — authorization code exchange, refresh, introspection and revocation.

Access and refresh tokens are opaque random strings held in a
:class:`TokenStore`. Each pair is bound to one user and one client and
has independent expirations. Revoking either half revokes the pair.
"""
from __future__ import annotations

import datetime
import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from pki_auth.audit.logger import AuditLogger
from pki_auth.oauth.clients import ClientRegistry, OAuthClient
from pki_auth.oauth.codes import AuthorizationCode, AuthorizationCodeStore
from pki_auth.oauth.errors import OAuthError, OAuthErrorCode
from pki_auth.oauth.pkce import CodeChallengeMethod, verify_code_verifier
from pki_auth.registry.user_registry import UserRegistry

logger = logging.getLogger(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"
SUPPORTED_GRANT_TYPES = (GRANT_AUTHORIZATION_CODE, GRANT_REFRESH_TOKEN)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class TokenRecord:
    """A stored access/refresh token pair."""

    access_token: str
    refresh_token: str
    user_id: str
    client_id: str
    scope: str
    issued_at: datetime.datetime
    access_expires_at: datetime.datetime
    refresh_expires_at: datetime.datetime
    revoked: bool = False

    def access_active(self, now: datetime.datetime | None = None) -> bool:
        return not self.revoked and (now or _utcnow()) < self.access_expires_at

    def refresh_active(self, now: datetime.datetime | None = None) -> bool:
        return not self.revoked and (now or _utcnow()) < self.refresh_expires_at


@dataclass(frozen=True)
class TokenResponse:
    """Successful ``/token`` response body."""

    access_token: str
    refresh_token: str
    expires_in: int
    scope: str = ""
    token_type: str = "Bearer"

    def to_dict(self) -> dict[str, object]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
            "scope": self.scope,
        }


class TokenStore:
    """Thread-safe store indexing token pairs by access and refresh token."""

    def __init__(self) -> None:
        self._by_access: dict[str, TokenRecord] = {}
        self._by_refresh: dict[str, TokenRecord] = {}
        self._lock = threading.Lock()

    def add(self, record: TokenRecord) -> None:
        """Store *record*, dropping revoked and fully expired pairs first."""
        with self._lock:
            self._purge(record.issued_at)
            self._by_access[record.access_token] = record
            self._by_refresh[record.refresh_token] = record

    def find(self, token: str) -> TokenRecord | None:
        """Return the pair *token* belongs to, as access or refresh token."""
        with self._lock:
            return self._by_access.get(token) or self._by_refresh.get(token)

    def find_access(self, token: str) -> TokenRecord | None:
        with self._lock:
            return self._by_access.get(token)

    def take_refresh(self, token: str) -> TokenRecord | None:
        """Revoke and return the pair for refresh *token*, or None if not active."""
        with self._lock:
            record = self._by_refresh.get(token)
            if record is None or record.revoked:
                return None
            record.revoked = True
            return record

    def revoke(self, token: str) -> TokenRecord | None:
        with self._lock:
            record = self._by_access.get(token) or self._by_refresh.get(token)
            if record is None or record.revoked:
                return None
            record.revoked = True
            return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_access)

    def _purge(self, now: datetime.datetime) -> None:
        stale = [r for r in self._by_access.values() if not r.refresh_active(now)]
        for record in stale:
            del self._by_access[record.access_token]
            self._by_refresh.pop(record.refresh_token, None)


class TokenService:
    """The OAuth2 token endpoint logic.

    Parameters
    ----------
    clients:
        Registered clients.
    codes:
        Outstanding authorization codes.
    users:
        User registry, to confirm the code's user still exists.
    tokens:
        Token storage. A fresh store is created when omitted.
    audit:
        Audit logger.
    access_token_ttl_seconds, refresh_token_ttl_seconds:
        Token lifetimes.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        clients: ClientRegistry,
        codes: AuthorizationCodeStore,
        users: UserRegistry,
        tokens: TokenStore | None = None,
        audit: AuditLogger | None = None,
        access_token_ttl_seconds: int = 3600,
        refresh_token_ttl_seconds: int = 30 * 24 * 3600,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._clients = clients
        self._codes = codes
        self._users = users
        self._tokens = tokens or TokenStore()
        self._audit = audit or AuditLogger()
        self._access_ttl = access_token_ttl_seconds
        self._refresh_ttl = refresh_token_ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def exchange(
        self,
        grant_type: str,
        client_id: str,
        client_secret: str | None = None,
        code: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
        refresh_token: str | None = None,
    ) -> TokenResponse:
        """Run the ``/token`` grant named by *grant_type*.

        Raises
        ------
        OAuthError
            With the RFC 6749 error code describing the failure.
        """
        if grant_type == GRANT_AUTHORIZATION_CODE:
            return self.exchange_code(
                code=code or "",
                client_id=client_id,
                redirect_uri=redirect_uri or "",
                client_secret=client_secret,
                code_verifier=code_verifier,
            )
        if grant_type == GRANT_REFRESH_TOKEN:
            return self.refresh(refresh_token or "", client_id, client_secret)
        raise OAuthError(OAuthErrorCode.UNSUPPORTED_GRANT_TYPE)

    def exchange_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        """Redeem an authorization code for a token pair.

        The client authenticates with its secret, or proves possession of
        the PKCE verifier when the code carries a challenge. The code is
        consumed before any binding check, so a rejected attempt burns it.
        """
        if not code or not client_id:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "code and client_id are required")
        client = self._authenticate_client(client_id, client_secret)

        record = self._codes.redeem(code)
        if record.client_id != client.client_id:
            logger.warning("Code for client %s presented by %s", record.client_id, client_id)
            raise OAuthError(OAuthErrorCode.INVALID_GRANT)
        if record.redirect_uri != redirect_uri:
            logger.warning("redirect_uri mismatch for client %s", client_id)
            raise OAuthError(OAuthErrorCode.INVALID_GRANT)
        self._check_pkce(record, client, client_secret, code_verifier)

        if self._users.find(record.user_id) is None:
            raise OAuthError(OAuthErrorCode.INVALID_GRANT)

        return self._issue(record.user_id, client.client_id, record.scope, GRANT_AUTHORIZATION_CODE)

    def refresh(
        self, refresh_token: str, client_id: str, client_secret: str | None = None
    ) -> TokenResponse:
        """Rotate a token pair. The presented pair is revoked."""
        if not refresh_token or not client_id:
            raise OAuthError(
                OAuthErrorCode.INVALID_REQUEST, "refresh_token and client_id are required"
            )
        client = self._authenticate_client(client_id, client_secret)
        if client.is_confidential and client_secret is None:
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT)

        now = self._clock()
        record = self._tokens.take_refresh(refresh_token)
        if record is None or record.client_id != client.client_id or now >= record.refresh_expires_at:
            raise OAuthError(OAuthErrorCode.INVALID_GRANT)
        return self._issue(record.user_id, client.client_id, record.scope, GRANT_REFRESH_TOKEN)

    # ------------------------------------------------------------------
    # Token inspection
    # ------------------------------------------------------------------

    def introspect(self, token: str) -> dict[str, object]:
        """RFC 7662 introspection. Anything not active is ``{"active": False}``."""
        if not token:
            return {"active": False}
        now = self._clock()
        record = self._tokens.find(token)
        if record is None:
            return {"active": False}
        if token == record.access_token:
            active, expires_at, kind = record.access_active(now), record.access_expires_at, "access_token"
        else:
            active, expires_at, kind = record.refresh_active(now), record.refresh_expires_at, "refresh_token"
        if not active:
            return {"active": False}
        return {
            "active": True,
            "sub": record.user_id,
            "client_id": record.client_id,
            "scope": record.scope,
            "token_type": kind,
            "iat": int(record.issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }

    def revoke(self, token: str) -> None:
        """RFC 7009 revocation. Unknown or already revoked tokens are ignored."""
        if not token:
            return
        record = self._tokens.revoke(token)
        if record is not None:
            self._audit.log_token_revoked(record.user_id, record.client_id)
            logger.info("Revoked tokens for user %s, client %s", record.user_id, record.client_id)

    def authenticate_bearer(self, access_token: str) -> TokenRecord | None:
        """Return the pair for an active access token, or None."""
        record = self._tokens.find_access(access_token)
        if record is None or not record.access_active(self._clock()):
            return None
        return record

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _authenticate_client(self, client_id: str, client_secret: str | None) -> OAuthClient:
        client = self._clients.get(client_id)
        if client is None:
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT)
        if client_secret is not None and not client.check_secret(client_secret):
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT)
        return client

    @staticmethod
    def _check_pkce(
        record: AuthorizationCode,
        client: OAuthClient,
        client_secret: str | None,
        code_verifier: str | None,
    ) -> None:
        if record.code_challenge:
            if not code_verifier:
                raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "code_verifier required")
            method = record.code_challenge_method or CodeChallengeMethod.S256
            if not verify_code_verifier(code_verifier, record.code_challenge, method):
                raise OAuthError(OAuthErrorCode.INVALID_GRANT, "PKCE verification failed")
            return
        # No PKCE on the code: only an authenticated confidential client may redeem it.
        if not client.is_confidential or client_secret is None:
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT)

    def _issue(self, user_id: str, client_id: str, scope: str, grant_type: str) -> TokenResponse:
        now = self._clock()
        record = TokenRecord(
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(48),
            user_id=user_id,
            client_id=client_id,
            scope=scope,
            issued_at=now,
            access_expires_at=now + datetime.timedelta(seconds=self._access_ttl),
            refresh_expires_at=now + datetime.timedelta(seconds=self._refresh_ttl),
        )
        self._tokens.add(record)
        self._audit.log_token_issued(user_id, client_id, grant_type)
        logger.info("Issued tokens to client %s for user %s (%s)", client_id, user_id, grant_type)
        return TokenResponse(
            access_token=record.access_token,
            refresh_token=record.refresh_token,
            expires_in=self._access_ttl,
            scope=scope,
        )
