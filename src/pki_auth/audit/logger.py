"""AuditLogger — JSONL audit trail for issuance and authentication events.

Each security-relevant event (CA bootstrap, certificate issuance and
revocation, signature verification, authorization codes, tokens) is
appended as one JSON line to the configured file. Without a file the
events go to an in-memory buffer that can be drained via
:meth:`AuditLogger.drain_buffer`.

Details never include passwords, private keys, codes or tokens.
"""
from __future__ import annotations

import datetime
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class AuditEvent:
    """A single auditable event.

    Parameters
    ----------
    action:
        Upper-case action name (e.g. ``CERTIFICATE_ISSUED``).
    user_id:
        The user concerned, or an empty string.
    client_id:
        The OAuth client concerned, or an empty string.
    details:
        Arbitrary key-value metadata.
    timestamp:
        UTC datetime of the event. Defaults to now.
    """

    action: str
    user_id: str = ""
    client_id: str = ""
    details: dict[str, object] = field(default_factory=dict)
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "user_id": self.user_id,
            "client_id": self.client_id,
            "details": self.details,
        }


class AuditLogger:
    """Append-only, thread-safe JSONL audit logger.

    Parameters
    ----------
    log_path:
        Path to the JSONL file. Parent directories are created. If None,
        events are buffered in memory only.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._buffer: list[str] = []
        self._lock = threading.Lock()

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict(), separators=(",", ":"), ensure_ascii=False, default=str)
        with self._lock:
            if self._log_path is not None:
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            else:
                self._buffer.append(line)

    def record(
        self, action: str, user_id: str = "", client_id: str = "", **details: object
    ) -> None:
        """Log an event without constructing :class:`AuditEvent` by hand."""
        self.log(
            AuditEvent(action=action, user_id=user_id, client_id=client_id, details=dict(details))
        )

    # ------------------------------------------------------------------
    # Convenience event loggers
    # ------------------------------------------------------------------

    def log_ca_initialized(self, root_serial: str, intermediate_serial: str) -> None:
        self.record(
            "CA_INITIALIZED",
            root_serial=root_serial,
            intermediate_serial=intermediate_serial,
        )

    def log_certificate_issued(self, user_id: str, serial_number: str, subject_dn: str) -> None:
        self.record(
            "CERTIFICATE_ISSUED",
            user_id=user_id,
            serial_number=serial_number,
            subject_dn=subject_dn,
        )

    def log_certificate_renewed(
        self, user_id: str, old_serial_number: str, new_serial_number: str
    ) -> None:
        self.record(
            "CERTIFICATE_RENEWED",
            user_id=user_id,
            old_serial_number=old_serial_number,
            new_serial_number=new_serial_number,
        )

    def log_certificate_revoked(self, user_id: str, serial_number: str) -> None:
        self.record("CERTIFICATE_REVOKED", user_id=user_id, serial_number=serial_number)

    def log_authentication(
        self, success: bool, serial_number: str, user_id: str = "", reason: str = ""
    ) -> None:
        """Log a signature verification outcome. *reason* stays server-side."""
        if success:
            self.record("SIGNATURE_VERIFIED", user_id=user_id, serial_number=serial_number)
        else:
            self.record(
                "AUTHENTICATION_FAILED",
                user_id=user_id,
                serial_number=serial_number,
                reason=reason,
            )

    def log_code_issued(self, user_id: str, client_id: str, redirect_uri: str) -> None:
        self.record(
            "AUTHORIZATION_CODE_ISSUED",
            user_id=user_id,
            client_id=client_id,
            redirect_uri=redirect_uri,
        )

    def log_token_issued(self, user_id: str, client_id: str, grant_type: str) -> None:
        self.record("TOKEN_ISSUED", user_id=user_id, client_id=client_id, grant_type=grant_type)

    def log_token_revoked(self, user_id: str, client_id: str) -> None:
        self.record("TOKEN_REVOKED", user_id=user_id, client_id=client_id)

    # ------------------------------------------------------------------
    # Buffer access
    # ------------------------------------------------------------------

    def drain_buffer(self) -> list[str]:
        """Return and clear the in-memory buffer (only used without a log path)."""
        with self._lock:
            events = list(self._buffer)
            self._buffer.clear()
        return events

    def read_log(self, tail: int | None = None) -> list[dict[str, object]]:
        """Return parsed events in chronological order, optionally the last *tail*."""
        with self._lock:
            if self._log_path is None or not self._log_path.exists():
                lines = list(self._buffer)
            else:
                lines = self._log_path.read_text(encoding="utf-8").splitlines()

        parsed: list[dict[str, object]] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            try:
                parsed.append(json.loads(stripped))
            except json.JSONDecodeError:
                continue

        if tail is not None:
            return parsed[-tail:]
        return parsed
