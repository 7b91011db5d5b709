"""LoginBinder — verifies a signed challenge and mints an authorization code.

One call to :meth:`LoginBinder.verify_and_login` is one authentication
attempt. It walks the attempt through::

    CHALLENGE_ISSUED -> SIGNED -> VERIFIED -> CODE_ISSUED

or ends in FAILED at any step. The signature check is the only step that
establishes that the caller holds the certificate's private key; the
others are bookkeeping around it.

Failures are returned as a :class:`LoginError` value. The specific reason
is logged at WARNING and written to the audit trail, never returned to
the browser.
"""
from __future__ import annotations

import datetime
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from pki_auth.audit.logger import AuditLogger
from pki_auth.auth.challenge import ChallengeIssuer, ConsumeResult
from pki_auth.auth.signature import safe_b64decode, verify_signature
from pki_auth.certificates.errors import CertificateError
from pki_auth.oauth.clients import ClientRegistry
from pki_auth.oauth.codes import AuthorizationCode, AuthorizationCodeStore
from pki_auth.oauth.pkce import CodeChallengeMethod
from pki_auth.registry.certificate_registry import CertificateRegistry
from pki_auth.registry.records import CertificateRecord, UserRecord
from pki_auth.registry.user_registry import UserRegistry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AuthState(str, enum.Enum):
    """States of one authentication attempt."""

    CHALLENGE_ISSUED = "CHALLENGE_ISSUED"
    SIGNED = "SIGNED"
    VERIFIED = "VERIFIED"
    CODE_ISSUED = "CODE_ISSUED"
    FAILED = "FAILED"


_TRANSITIONS: dict[AuthState, frozenset[AuthState]] = {
    AuthState.CHALLENGE_ISSUED: frozenset({AuthState.SIGNED, AuthState.FAILED}),
    AuthState.SIGNED: frozenset({AuthState.VERIFIED, AuthState.FAILED}),
    AuthState.VERIFIED: frozenset({AuthState.CODE_ISSUED, AuthState.FAILED}),
    AuthState.CODE_ISSUED: frozenset(),
    AuthState.FAILED: frozenset(),
}


class LoginError(str, enum.Enum):
    """Trust failure kinds. All are reported to the browser identically."""

    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    CHALLENGE_EXPIRED = "CHALLENGE_EXPIRED"


@dataclass
class AuthAttempt:
    """State tracker for one attempt. Terminal states accept no transitions."""

    state: AuthState = AuthState.CHALLENGE_ISSUED
    history: list[AuthState] = field(default_factory=lambda: [AuthState.CHALLENGE_ISSUED])

    def advance(self, target: AuthState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)


@dataclass(frozen=True)
class LoginResult:
    """Outcome of :meth:`LoginBinder.verify_and_login`.

    ``reason`` is for server-side logs only.
    """

    state: AuthState
    code: AuthorizationCode | None = None
    user: UserRecord | None = None
    error: LoginError | None = None
    reason: str = ""

    @property
    def success(self) -> bool:
        return self.state is AuthState.CODE_ISSUED


class LoginBinder:
    """Binds a proof of key possession to an OAuth2 authorization code.

    Parameters
    ----------
    challenges:
        The challenge issuer whose challenges are accepted.
    certificates:
        Registry of issued certificates. The public key is read from here.
    users:
        User registry.
    codes:
        Authorization code store.
    clients:
        Registered OAuth clients.
    audit:
        Audit logger.
    clock:
        Returns the current UTC time (certificate validity checks).
    """

    def __init__(
        self,
        challenges: ChallengeIssuer,
        certificates: CertificateRegistry,
        users: UserRegistry,
        codes: AuthorizationCodeStore,
        clients: ClientRegistry,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._challenges = challenges
        self._certificates = certificates
        self._users = users
        self._codes = codes
        self._clients = clients
        self._audit = audit or AuditLogger()
        self._clock = clock

    def verify_and_login(
        self,
        challenge: str,
        signature: str,
        serial_number: str,
        client_id: str,
        redirect_uri: str,
        scope: str = "",
        code_challenge: str | None = None,
        code_challenge_method: CodeChallengeMethod | None = None,
    ) -> LoginResult:
        """Verify *signature* over *challenge* and issue a code on success.

        The client and redirect URI are checked first; an invalid pair
        raises :class:`~pki_auth.oauth.errors.OAuthError` without touching
        the challenge. Every later failure consumes the challenge.
        """
        self._clients.require_redirect(client_id, redirect_uri)
        attempt = AuthAttempt()

        verified = self._verify(attempt, challenge, signature, serial_number)
        if isinstance(verified, LoginResult):
            return verified
        record = verified

        user = self._users.find(record.user_id)
        if user is None:
            return self._fail(attempt, LoginError.USER_NOT_FOUND, serial_number, "owner missing")
        self._audit.log_authentication(True, record.serial_number, user_id=user.user_id)

        code = self._codes.issue(
            user_id=user.user_id,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        attempt.advance(AuthState.CODE_ISSUED)
        self._audit.log_code_issued(user.user_id, client_id, redirect_uri)
        logger.info("Certificate login for user %s via client %s", user.user_id, client_id)
        return LoginResult(state=attempt.state, code=code, user=user)

    def verify_possession(
        self, challenge: str, signature: str, serial_number: str
    ) -> CertificateRecord | None:
        """Return the certificate record if *signature* proves possession of its key.

        Runs the same challenge, certificate and signature checks as
        :meth:`verify_and_login` but mints no code. Returns None on any
        trust failure.
        """
        verified = self._verify(AuthAttempt(), challenge, signature, serial_number)
        if isinstance(verified, LoginResult):
            return None
        self._audit.log_authentication(True, verified.serial_number, user_id=verified.user_id)
        return verified

    def _verify(
        self, attempt: AuthAttempt, challenge: str, signature: str, serial_number: str
    ) -> CertificateRecord | LoginResult:
        consumed = self._challenges.consume(challenge)
        if consumed is not ConsumeResult.OK:
            return self._fail(attempt, LoginError.CHALLENGE_EXPIRED, serial_number, f"challenge {consumed.value}")
        try:
            challenge_bytes = safe_b64decode(challenge)
        except ValueError:
            return self._fail(attempt, LoginError.CHALLENGE_EXPIRED, serial_number, "challenge undecodable")
        if not signature:
            return self._fail(attempt, LoginError.INVALID_SIGNATURE, serial_number, "empty signature")
        attempt.advance(AuthState.SIGNED)

        record = self._certificates.find(serial_number)
        if record is None:
            return self._fail(attempt, LoginError.USER_NOT_FOUND, serial_number, "unknown serial")
        if not record.is_usable(self._clock()):
            return self._fail(
                attempt,
                LoginError.USER_NOT_FOUND,
                serial_number,
                f"certificate {record.status.value.lower()}, valid until {record.not_after.isoformat()}",
                user_id=record.user_id,
            )

        try:
            valid = verify_signature(record.public_key_pem, challenge_bytes, signature)
        except CertificateError as exc:
            logger.error("Stored public key for serial %s is unusable: %s", serial_number, exc)
            valid = False
        if not valid:
            return self._fail(
                attempt, LoginError.INVALID_SIGNATURE, serial_number, "signature mismatch", user_id=record.user_id
            )
        attempt.advance(AuthState.VERIFIED)
        return record

    def _fail(
        self,
        attempt: AuthAttempt,
        error: LoginError,
        serial_number: str,
        reason: str,
        user_id: str = "",
    ) -> LoginResult:
        attempt.advance(AuthState.FAILED)
        logger.warning("Authentication failed (%s) for serial %s: %s", error.value, serial_number, reason)
        self._audit.log_authentication(False, serial_number, user_id=user_id, reason=reason)
        return LoginResult(state=attempt.state, error=error, reason=reason)
