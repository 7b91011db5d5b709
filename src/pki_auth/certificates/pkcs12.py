"""PKCS#12 packaging of a user certificate and its private key.

The bundle is the only artifact that carries a user's private key out of
the issuance call. The password is used once to derive the encryption
key and is not retained.

Two encryption profiles are available:

``legacy`` (default)
    PBES1 SHA1 / 3-key Triple-DES with 100 000 KDF rounds and an SHA-1
    MAC. This is what existing verifying clients are known to read.
``modern``
    PBES2 / AES-256-CBC with 100 000 KDF rounds and an SHA-256 MAC.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import pkcs12

from pki_auth.certificates.errors import UnsupportedKeyFormatError
from pki_auth.certificates.pem import load_certificate, load_rsa_private_key

logger = logging.getLogger(__name__)

KDF_ROUNDS = 100_000


class Pkcs12Profile(str, enum.Enum):
    """Password-based encryption profile for PKCS#12 bundles."""

    LEGACY = "legacy"
    MODERN = "modern"


@dataclass
class UnpackedBundle:
    """Contents of a decrypted PKCS#12 bundle."""

    certificate: x509.Certificate
    private_key: RSAPrivateKey
    ca_certificates: list[x509.Certificate]
    friendly_name: str | None


def package_pkcs12(
    certificate_pem: str | bytes,
    private_key_pem: str | bytes,
    password: str,
    friendly_name: str | None = None,
    ca_certificate_pems: list[str] | None = None,
    profile: Pkcs12Profile = Pkcs12Profile.LEGACY,
) -> bytes:
    """Bundle a certificate and its private key into an encrypted PKCS#12 blob.

    Parameters
    ----------
    certificate_pem:
        PEM-encoded end-entity certificate.
    private_key_pem:
        PEM-encoded RSA private key matching the certificate.
    password:
        User-chosen bundle password. Must be non-empty.
    friendly_name:
        Optional friendly name stored in the bundle.
    ca_certificate_pems:
        Optional chain certificates to include.
    profile:
        Encryption profile (see module docstring).

    Returns
    -------
    bytes
        DER-encoded PKCS#12 data.

    Raises
    ------
    MalformedPEMError
        If the certificate or key is not valid PEM.
    UnsupportedKeyFormatError
        If the key is not RSA.
    ValueError
        If the password is empty or the key does not match the certificate.
    """
    if not password:
        raise ValueError("A non-empty password is required to package PKCS#12")

    cert = load_certificate(certificate_pem)
    key = load_rsa_private_key(private_key_pem)

    if cert.public_key().public_numbers() != key.public_key().public_numbers():
        raise ValueError("Private key does not match the certificate public key")

    cas = [load_certificate(pem) for pem in (ca_certificate_pems or [])]

    blob = pkcs12.serialize_key_and_certificates(
        name=friendly_name.encode("utf-8") if friendly_name else None,
        key=key,
        cert=cert,
        cas=cas or None,
        encryption_algorithm=_encryption(password.encode("utf-8"), profile),
    )
    logger.debug("Packaged PKCS#12 bundle (%d bytes, profile=%s)", len(blob), profile.value)
    return blob


def unpack_pkcs12(data: bytes, password: str) -> UnpackedBundle:
    """Decrypt a PKCS#12 bundle produced by :func:`package_pkcs12`.

    Raises
    ------
    ValueError
        If the password is wrong or the data is corrupt.
    UnsupportedKeyFormatError
        If the bundle holds a non-RSA key.
    """
    loaded = pkcs12.load_pkcs12(data, password.encode("utf-8"))
    if loaded.cert is None or loaded.key is None:
        raise ValueError("PKCS#12 bundle does not contain a certificate and key")
    if not isinstance(loaded.key, RSAPrivateKey):
        raise UnsupportedKeyFormatError(
            f"Bundle key must be RSA, got {type(loaded.key).__name__}"
        )

    friendly_name = loaded.cert.friendly_name
    return UnpackedBundle(
        certificate=loaded.cert.certificate,
        private_key=loaded.key,
        ca_certificates=[entry.certificate for entry in loaded.additional_certs],
        friendly_name=friendly_name.decode("utf-8") if friendly_name else None,
    )


def _encryption(
    password: bytes, profile: Pkcs12Profile
) -> serialization.KeySerializationEncryption:
    builder = serialization.PrivateFormat.PKCS12.encryption_builder().kdf_rounds(KDF_ROUNDS)
    if profile is Pkcs12Profile.LEGACY:
        builder = builder.key_cert_algorithm(
            pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC
        ).hmac_hash(hashes.SHA1())
    else:
        builder = builder.key_cert_algorithm(
            pkcs12.PBES.PBESv2SHA256AndAES256CBC
        ).hmac_hash(hashes.SHA256())
    return builder.build(password)
