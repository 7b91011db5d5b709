"""Registries of issued certificates and their owning users."""
from __future__ import annotations

from pki_auth.registry.certificate_registry import (
    CertificateNotFoundError,
    CertificateRegistry,
)
from pki_auth.registry.records import CertificateRecord, CertificateStatus, UserRecord
from pki_auth.registry.store import (
    FilesystemRegistryStore,
    InMemoryRegistryStore,
    RegistryStore,
)
from pki_auth.registry.user_registry import UserNotFoundError, UserRegistry

__all__ = [
    "CertificateNotFoundError",
    "CertificateRecord",
    "CertificateRegistry",
    "CertificateStatus",
    "FilesystemRegistryStore",
    "InMemoryRegistryStore",
    "RegistryStore",
    "UserNotFoundError",
    "UserRecord",
    "UserRegistry",
]
