"""CA material storage and the signing-key cache.

CAStore defines the storage contract for root and intermediate key
material. FilesystemCAStore persists it as four PEM files under a base
directory, with the private keys written ``0o600`` and optionally
encrypted with a passphrase.

:meth:`CAStore.load` reports an uninitialized store with the
:data:`NOT_INITIALIZED` sentinel rather than raising, so callers can
offer a bootstrap step.

SigningKeyCache holds the parsed intermediate certificate and key. It is
built once at startup and handed to every component that signs.
"""
from __future__ import annotations

import enum
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from pki_auth.certificates.errors import CANotInitializedError
from pki_auth.certificates.pem import load_certificate, load_rsa_private_key

logger = logging.getLogger(__name__)

_ROOT_CERT = "root.crt"
_ROOT_KEY = "root.key"
_INTERMEDIATE_CERT = "intermediate.crt"
_INTERMEDIATE_KEY = "intermediate.key"


class NotInitialized(enum.Enum):
    """Sentinel type returned by :meth:`CAStore.load` for an empty store."""

    TOKEN = "not_initialized"


NOT_INITIALIZED = NotInitialized.TOKEN


@dataclass(frozen=True)
class CAMaterial:
    """PEM-encoded root and intermediate certificate/key pairs.

    The intermediate is signed by the root and is the pair used for
    issuing user certificates. Key PEMs are unencrypted in memory.
    """

    root_cert_pem: str
    root_key_pem: str
    intermediate_cert_pem: str
    intermediate_key_pem: str

    def chain_pem(self) -> str:
        """Return the intermediate followed by the root certificate."""
        return self.intermediate_cert_pem.rstrip("\n") + "\n" + self.root_cert_pem


@dataclass(frozen=True)
class SigningMaterial:
    """Parsed intermediate certificate and private key."""

    certificate: x509.Certificate
    private_key: RSAPrivateKey
    certificate_pem: str


class CAStore(ABC):
    """Abstract base class for CA material storage backends."""

    @abstractmethod
    def load(self) -> CAMaterial | NotInitialized:
        """Return the stored material, or :data:`NOT_INITIALIZED`."""

    @abstractmethod
    def save(self, material: CAMaterial) -> None:
        """Persist *material*, replacing anything stored before."""

    def is_initialized(self) -> bool:
        """Return True if :meth:`load` would return material."""
        return self.load() is not NOT_INITIALIZED


class InMemoryCAStore(CAStore):
    """Process-local CA store, used by tests and throwaway servers."""

    def __init__(self, material: CAMaterial | None = None) -> None:
        self._material = material
        self._lock = threading.Lock()

    def load(self) -> CAMaterial | NotInitialized:
        with self._lock:
            return self._material if self._material is not None else NOT_INITIALIZED

    def save(self, material: CAMaterial) -> None:
        with self._lock:
            self._material = material


class FilesystemCAStore(CAStore):
    """Filesystem-backed CA store.

    Layout under *base_dir*: ``root.crt``, ``root.key``,
    ``intermediate.crt``, ``intermediate.key``. Keys are written with mode
    ``0o600``; when *key_passphrase* is set they are PKCS#8-encrypted on
    disk and decrypted on load.

    Parameters
    ----------
    base_dir:
        Directory holding the CA files. Created on first save.
    key_passphrase:
        Optional passphrase for at-rest key encryption.
    """

    def __init__(self, base_dir: Path, key_passphrase: bytes | None = None) -> None:
        self._base_dir = base_dir
        self._passphrase = key_passphrase

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def load(self) -> CAMaterial | NotInitialized:
        paths = [
            self._base_dir / name
            for name in (_ROOT_CERT, _ROOT_KEY, _INTERMEDIATE_CERT, _INTERMEDIATE_KEY)
        ]
        if not all(path.exists() for path in paths):
            return NOT_INITIALIZED

        root_cert, root_key, inter_cert, inter_key = (
            path.read_text(encoding="ascii") for path in paths
        )
        return CAMaterial(
            root_cert_pem=root_cert,
            root_key_pem=self._decrypt(root_key),
            intermediate_cert_pem=inter_cert,
            intermediate_key_pem=self._decrypt(inter_key),
        )

    def save(self, material: CAMaterial) -> None:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        (self._base_dir / _ROOT_CERT).write_text(material.root_cert_pem, encoding="ascii")
        (self._base_dir / _INTERMEDIATE_CERT).write_text(
            material.intermediate_cert_pem, encoding="ascii"
        )
        self._write_private(_ROOT_KEY, self._encrypt(material.root_key_pem))
        self._write_private(_INTERMEDIATE_KEY, self._encrypt(material.intermediate_key_pem))
        logger.info("Saved CA material to %s", self._base_dir)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _write_private(self, name: str, data: str) -> None:
        path = self._base_dir / name
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(data)
        os.chmod(path, 0o600)

    def _encrypt(self, key_pem: str) -> str:
        if self._passphrase is None:
            return key_pem
        key = load_rsa_private_key(key_pem)
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(self._passphrase),
        ).decode("ascii")

    def _decrypt(self, key_pem: str) -> str:
        if self._passphrase is None:
            return key_pem
        key = load_rsa_private_key(key_pem, passphrase=self._passphrase)
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")


class SigningKeyCache:
    """Lazily populated, read-mostly cache of the intermediate signing pair.

    :meth:`get` parses the intermediate from the store on first use and
    returns the cached pair afterwards without taking the lock.
    :meth:`invalidate` (CA rotation) and the first population are
    serialized by a lock.

    Parameters
    ----------
    store:
        The CA store to read from.
    """

    def __init__(self, store: CAStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._cached: SigningMaterial | None = None

    @property
    def store(self) -> CAStore:
        return self._store

    def get(self) -> SigningMaterial:
        """Return the intermediate certificate and key.

        Raises
        ------
        CANotInitializedError
            If the store holds no CA material.
        """
        cached = self._cached
        if cached is not None:
            return cached

        with self._lock:
            if self._cached is None:
                material = self._store.load()
                if material is NOT_INITIALIZED:
                    raise CANotInitializedError()
                assert isinstance(material, CAMaterial)
                self._cached = SigningMaterial(
                    certificate=load_certificate(material.intermediate_cert_pem),
                    private_key=load_rsa_private_key(material.intermediate_key_pem),
                    certificate_pem=material.intermediate_cert_pem,
                )
                logger.info("Signing key loaded into cache")
            return self._cached

    def invalidate(self) -> None:
        """Drop the cached pair so the next :meth:`get` reloads from the store."""
        with self._lock:
            self._cached = None
        logger.info("Signing key cache invalidated")
