"""CertificateRegistry — issued certificates keyed by serial number.

The registry is the server's record of what it has issued. The
authentication path reads the public key from here, never from the
presented certificate, and a revoked record is never trusted again.

Serial numbers are unique within the registry: registering a serial a
second time raises :class:`DuplicateSerialError`. Records live in a
:class:`~pki_auth.registry.store.RegistryStore`; every read goes to the
store, so records written by another process are visible immediately.
"""
from __future__ import annotations

import datetime
import threading
from dataclasses import replace

from pki_auth.certificates.errors import DuplicateSerialError
from pki_auth.registry.records import CertificateRecord, CertificateStatus
from pki_auth.registry.store import InMemoryRegistryStore, RegistryStore


class CertificateNotFoundError(KeyError):
    """Raised when a serial number is not present in the registry."""

    def __init__(self, serial_number: str) -> None:
        super().__init__(f"No certificate registered with serial {serial_number}")


class CertificateRegistry:
    """Thread-safe registry of issued certificates.

    Parameters
    ----------
    store:
        Storage backend. Defaults to a fresh in-memory store.
    """

    def __init__(self, store: RegistryStore | None = None) -> None:
        self._store = store or InMemoryRegistryStore()
        self._lock = threading.Lock()

    def register(self, record: CertificateRecord) -> CertificateRecord:
        """Add *record*.

        Raises
        ------
        DuplicateSerialError
            If the serial number is already registered.
        """
        key = _normalize_serial(record.serial_number)
        with self._lock:
            if self._store.load_certificate(key) is not None:
                raise DuplicateSerialError(record.serial_number)
            self._store.save_certificate(key, record)
        return record

    def get(self, serial_number: str) -> CertificateRecord:
        """Return the record for *serial_number*.

        Raises
        ------
        CertificateNotFoundError
            If the serial is unknown.
        """
        record = self.find(serial_number)
        if record is None:
            raise CertificateNotFoundError(serial_number)
        return record

    def find(self, serial_number: str) -> CertificateRecord | None:
        """Return the record for *serial_number*, or None."""
        with self._lock:
            return self._store.load_certificate(_normalize_serial(serial_number))

    def revoke(self, serial_number: str) -> CertificateRecord:
        """Mark a certificate as revoked. Revoking twice is a no-op."""
        return self._set_status(serial_number, CertificateStatus.REVOKED)

    def mark_renewed(self, serial_number: str) -> CertificateRecord:
        """Mark a certificate as replaced by a renewal.

        A revoked certificate stays revoked.
        """
        return self._set_status(serial_number, CertificateStatus.RENEWED)

    def list_all(self, status: CertificateStatus | None = None) -> list[CertificateRecord]:
        """Return every certificate (optionally only those in *status*), newest first."""
        with self._lock:
            records = self._store.list_certificates()
        if status is not None:
            records = [r for r in records if r.status is status]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def list_for_user(self, user_id: str) -> list[CertificateRecord]:
        """Return a user's certificates, newest first."""
        return [r for r in self.list_all() if r.user_id == user_id]

    def latest_for_user(self, user_id: str) -> CertificateRecord | None:
        records = self.list_for_user(user_id)
        return records[0] if records else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._store.list_certificates())

    def __contains__(self, serial_number: object) -> bool:
        if not isinstance(serial_number, str):
            return False
        return self.find(serial_number) is not None

    def _set_status(self, serial_number: str, status: CertificateStatus) -> CertificateRecord:
        key = _normalize_serial(serial_number)
        with self._lock:
            record = self._store.load_certificate(key)
            if record is None:
                raise CertificateNotFoundError(serial_number)
            if record.status is status or record.status is CertificateStatus.REVOKED:
                return record
            updated = replace(
                record,
                status=status,
                revoked_at=(
                    datetime.datetime.now(datetime.timezone.utc)
                    if status is CertificateStatus.REVOKED
                    else None
                ),
            )
            self._store.save_certificate(key, updated)
            return updated


def _normalize_serial(serial_number: str) -> str:
    """Uppercase and strip separators so ``ab:cd`` and ``ABCD`` match."""
    return serial_number.replace(":", "").replace(" ", "").upper()


__all__ = [
    "CertificateNotFoundError",
    "CertificateRecord",
    "CertificateRegistry",
    "CertificateStatus",
]
