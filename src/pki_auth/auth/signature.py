"""RSA signature verification for login challenges.

Signatures are RSASSA-PKCS1-v1_5 over SHA-256, transported as base64.
The Agent and browsers disagree on alphabet and padding, so decoding
accepts standard and url-safe base64 with or without ``=`` padding.
"""
from __future__ import annotations

import base64
import binascii
import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from pki_auth.certificates.errors import MalformedPEMError, UnsupportedKeyFormatError
from pki_auth.certificates.pem import normalize_pem

logger = logging.getLogger(__name__)


def safe_b64decode(text: str) -> bytes:
    """Decode standard or url-safe base64, tolerating missing padding.

    Raises
    ------
    ValueError
        If *text* is not base64 in either alphabet.
    """
    cleaned = "".join(text.split())
    cleaned = cleaned.replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 data: {exc}") from exc


def load_rsa_public_key(public_key_pem: str | bytes) -> RSAPublicKey:
    """Parse a PEM ``PUBLIC KEY`` block into an RSA public key."""
    try:
        key = serialization.load_pem_public_key(normalize_pem(public_key_pem).encode("ascii"))
    except ValueError as exc:
        raise MalformedPEMError(f"Cannot parse public key: {exc}") from exc
    if not isinstance(key, RSAPublicKey):
        raise UnsupportedKeyFormatError(f"Expected an RSA public key, got {type(key).__name__}")
    return key


def sign_data(private_key: RSAPrivateKey, data: bytes) -> str:
    """Sign *data* the way the Agent does and return standard base64.

    Used by tests and by local tooling that holds the key itself.
    """
    signature = private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def verify_signature(public_key_pem: str, data: bytes, signature_b64: str) -> bool:
    """Return True if *signature_b64* is a valid signature of *data*.

    Undecodable signatures and mismatches return False. A public key that
    cannot be parsed is an integrity failure and raises.
    """
    key = load_rsa_public_key(public_key_pem)
    try:
        signature = safe_b64decode(signature_b64)
    except ValueError:
        logger.debug("Signature is not valid base64")
        return False
    try:
        key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True
