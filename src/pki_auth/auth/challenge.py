"""ChallengeIssuer — single-use, short-lived login challenges.

A challenge is 32 random bytes rendered as standard base64. It is bound
to nothing but its own value: the page that requests it and the page that
submits the signature may be different windows. Replay protection rests
on single use plus a short expiry.

:meth:`ChallengeIssuer.consume` marks the challenge used before it looks
at the expiry, under one lock, so two concurrent submissions of the same
value can never both succeed.
"""
from __future__ import annotations

import base64
import datetime
import enum
import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 32
DEFAULT_CHALLENGE_TTL_SECONDS = 300


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ConsumeResult(str, enum.Enum):
    """Outcome of :meth:`ChallengeIssuer.consume`."""

    OK = "ok"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    UNKNOWN = "unknown"


@dataclass
class Challenge:
    """An issued challenge.

    Parameters
    ----------
    value:
        Base64 text of the random challenge bytes. The client signs the
        decoded bytes.
    issued_at, expires_at:
        Validity window (UTC).
    consumed:
        Set once the challenge has been presented.
    """

    value: str
    issued_at: datetime.datetime
    expires_at: datetime.datetime
    consumed: bool = False

    @property
    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.value)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def to_dict(self) -> dict[str, object]:
        return {
            "challenge": self.value,
            "expiresAt": self.expires_at.isoformat(),
        }


class ChallengeIssuer:
    """Issues and consumes challenges held in process memory.

    Parameters
    ----------
    ttl_seconds:
        Challenge lifetime.
    clock:
        Returns the current UTC time. Tests inject a fixed clock.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_CHALLENGE_TTL_SECONDS,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = datetime.timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._challenges: dict[str, Challenge] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self) -> Challenge:
        """Create, remember and return a fresh challenge."""
        now = self._clock()
        challenge = Challenge(
            value=base64.b64encode(secrets.token_bytes(CHALLENGE_BYTES)).decode("ascii"),
            issued_at=now,
            expires_at=now + self._ttl,
        )
        with self._lock:
            self._purge(now)
            self._challenges[challenge.value] = challenge
        logger.debug("Issued challenge expiring at %s", challenge.expires_at.isoformat())
        return challenge

    def consume(self, value: str) -> ConsumeResult:
        """Mark *value* used and report whether it was still valid.

        The first call for an issued, unexpired value returns ``OK``. Any
        later call returns ``ALREADY_USED``. An expired value is consumed
        as well and returns ``EXPIRED``.
        """
        now = self._clock()
        with self._lock:
            challenge = self._challenges.get(value)
            if challenge is None:
                return ConsumeResult.UNKNOWN
            if challenge.consumed:
                return ConsumeResult.ALREADY_USED
            challenge.consumed = True
        if challenge.is_expired(now):
            return ConsumeResult.EXPIRED
        return ConsumeResult.OK

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def _purge(self, now: datetime.datetime) -> None:
        # Consumed entries are kept for one extra TTL so replays are
        # reported as ALREADY_USED rather than UNKNOWN.
        horizon = now - self._ttl
        stale = [v for v, c in self._challenges.items() if c.expires_at < horizon]
        for value in stale:
            del self._challenges[value]
