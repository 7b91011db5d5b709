"""Registry storage — abstract interface and backends.

RegistryStore defines the storage contract behind the certificate and
user registries. InMemoryRegistryStore keeps records in process memory;
FilesystemRegistryStore persists them as one JSON file per record so that
the CLI and a running server see the same registry.

Stores do no locking of their own. The registries serialize access.
"""
from __future__ import annotations

import json
import logging
import os
import re
import urllib.parse
from abc import ABC, abstractmethod
from pathlib import Path

from pki_auth.registry.records import CertificateRecord, UserRecord

logger = logging.getLogger(__name__)

_SERIAL_KEY = re.compile(r"[0-9A-F]+")


class RegistryStore(ABC):
    """Abstract base class for registry storage backends."""

    @abstractmethod
    def save_certificate(self, key: str, record: CertificateRecord) -> None:
        """Persist *record* under the normalized serial *key*, replacing any previous one."""

    @abstractmethod
    def load_certificate(self, key: str) -> CertificateRecord | None:
        """Return the record stored under *key*, or None."""

    @abstractmethod
    def list_certificates(self) -> list[CertificateRecord]:
        """Return every stored certificate record."""

    @abstractmethod
    def save_user(self, record: UserRecord) -> None:
        """Persist *record*, replacing any previous one with the same id."""

    @abstractmethod
    def load_user(self, user_id: str) -> UserRecord | None:
        """Return the user stored under *user_id*, or None."""

    @abstractmethod
    def list_users(self) -> list[UserRecord]:
        """Return every stored user."""


class InMemoryRegistryStore(RegistryStore):
    """Process-local registry store, used by tests and throwaway servers."""

    def __init__(self) -> None:
        self._certificates: dict[str, CertificateRecord] = {}
        self._users: dict[str, UserRecord] = {}

    def save_certificate(self, key: str, record: CertificateRecord) -> None:
        self._certificates[key] = record

    def load_certificate(self, key: str) -> CertificateRecord | None:
        return self._certificates.get(key)

    def list_certificates(self) -> list[CertificateRecord]:
        return list(self._certificates.values())

    def save_user(self, record: UserRecord) -> None:
        self._users[record.user_id] = record

    def load_user(self, user_id: str) -> UserRecord | None:
        return self._users.get(user_id)

    def list_users(self) -> list[UserRecord]:
        return list(self._users.values())


class FilesystemRegistryStore(RegistryStore):
    """Filesystem-backed registry store.

    Layout under *base_dir*: ``certificates/<SERIAL>.json`` and
    ``users/<quoted user id>.json``. Each file is written to a temporary
    name and renamed into place, so a reader never sees a partial record.

    Parameters
    ----------
    base_dir:
        Directory holding the registry. Created on first save.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    # ------------------------------------------------------------------
    # RegistryStore interface
    # ------------------------------------------------------------------

    def save_certificate(self, key: str, record: CertificateRecord) -> None:
        if not _SERIAL_KEY.fullmatch(key):
            raise ValueError(f"Serial {key!r} is not a hex string")
        self._write(self._certificate_dir / f"{key}.json", record.to_json())

    def load_certificate(self, key: str) -> CertificateRecord | None:
        if not _SERIAL_KEY.fullmatch(key):
            return None
        data = self._read(self._certificate_dir / f"{key}.json")
        return CertificateRecord.from_json(data) if data is not None else None

    def list_certificates(self) -> list[CertificateRecord]:
        return [CertificateRecord.from_json(data) for data in self._read_all(self._certificate_dir)]

    def save_user(self, record: UserRecord) -> None:
        self._write(self._user_path(record.user_id), record.to_json())

    def load_user(self, user_id: str) -> UserRecord | None:
        data = self._read(self._user_path(user_id))
        return UserRecord.from_json(data) if data is not None else None

    def list_users(self) -> list[UserRecord]:
        return [UserRecord.from_json(data) for data in self._read_all(self._user_dir)]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @property
    def _certificate_dir(self) -> Path:
        return self._base_dir / "certificates"

    @property
    def _user_dir(self) -> Path:
        return self._base_dir / "users"

    def _user_path(self, user_id: str) -> Path:
        return self._user_dir / f"{urllib.parse.quote(user_id, safe='')}.json"

    def _write(self, path: Path, data: dict[str, object]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug("Wrote registry record %s", path)

    def _read(self, path: Path) -> dict[str, object] | None:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _read_all(self, directory: Path) -> list[dict[str, object]]:
        if not directory.exists():
            return []
        return [
            json.loads(path.read_text(encoding="utf-8"))
            for path in sorted(directory.glob("*.json"))
        ]
