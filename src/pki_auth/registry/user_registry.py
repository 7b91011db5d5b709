"""UserRegistry — end users who own issued certificates.

A user is created the first time a certificate is issued for them. Users
carry no credential of any kind; authentication is purely by certificate
signature.
"""
from __future__ import annotations

import datetime
import threading
import uuid
from dataclasses import replace

from pki_auth.registry.records import UserRecord
from pki_auth.registry.store import InMemoryRegistryStore, RegistryStore


class UserNotFoundError(KeyError):
    """Raised when a user_id is not present in the registry."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id!r} is not registered.")


class UserRegistry:
    """Thread-safe user registry backed by a :class:`RegistryStore`."""

    def __init__(self, store: RegistryStore | None = None) -> None:
        self._store = store or InMemoryRegistryStore()
        self._lock = threading.Lock()

    def get_or_create(
        self, name: str, email: str = "", user_id: str | None = None
    ) -> UserRecord:
        """Return the user with *user_id*, creating it if needed.

        An existing user's name and e-mail are updated when they differ.
        A new identifier is generated when *user_id* is not given.
        """
        user_id = user_id or uuid.uuid4().hex
        now = datetime.datetime.now(datetime.timezone.utc)
        with self._lock:
            existing = self._store.load_user(user_id)
            if existing is None:
                record = UserRecord(user_id=user_id, name=name, email=email)
            elif existing.name != name or (email and existing.email != email):
                record = replace(
                    existing, name=name, email=email or existing.email, updated_at=now
                )
            else:
                return existing
            self._store.save_user(record)
            return record

    def get(self, user_id: str) -> UserRecord:
        record = self.find(user_id)
        if record is None:
            raise UserNotFoundError(user_id)
        return record

    def find(self, user_id: str) -> UserRecord | None:
        with self._lock:
            return self._store.load_user(user_id)

    def __contains__(self, user_id: object) -> bool:
        return isinstance(user_id, str) and self.find(user_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._store.list_users())


__all__ = ["UserNotFoundError", "UserRecord", "UserRegistry"]
