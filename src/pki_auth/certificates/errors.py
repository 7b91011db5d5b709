"""Exception types raised by the certificate subsystem."""
from __future__ import annotations


class CertificateError(Exception):
    """Base class for certificate issuance and parsing failures."""


class MalformedPEMError(CertificateError, ValueError):
    """Raised when PEM input is missing its markers or cannot be decoded."""


class UnsupportedKeyFormatError(CertificateError, TypeError):
    """Raised when a private key parses but is not an RSA key."""


class CANotInitializedError(CertificateError):
    """Raised when signing material is requested before CA bootstrap."""

    def __init__(self) -> None:
        super().__init__(
            "Certificate authority is not initialized. "
            "Run 'pki-auth ca init' (or POST /admin/ca/init) first."
        )


class CAAlreadyInitializedError(CertificateError):
    """Raised when bootstrap is attempted on an initialized store."""

    def __init__(self) -> None:
        super().__init__("Certificate authority is already initialized.")


class DuplicateSerialError(CertificateError):
    """Raised when a serial number is already present in the registry."""

    def __init__(self, serial_number: str) -> None:
        super().__init__(f"Serial number {serial_number} is already registered.")
        self.serial_number = serial_number
