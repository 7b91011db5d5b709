"""Certificate authority for user client certificates.

Provides root/intermediate CA bootstrap, user certificate issuance,
PKCS#12 packaging, subject-name transcoding and CA material storage.
"""
from __future__ import annotations

from pki_auth.certificates.ca import BootstrapResult, bootstrap_ca
from pki_auth.certificates.errors import (
    CAAlreadyInitializedError,
    CANotInitializedError,
    CertificateError,
    DuplicateSerialError,
    MalformedPEMError,
    UnsupportedKeyFormatError,
)
from pki_auth.certificates.factory import (
    IssuedCertificate,
    ParsedCertificate,
    generate_serial_number,
    issue_intermediate_ca,
    issue_root_ca,
    issue_user_certificate,
    parse_certificate,
)
from pki_auth.certificates.names import (
    SubjectInfo,
    build_subject_dn,
    from_portable_name,
    parse_subject_dn,
    to_portable_name,
)
from pki_auth.certificates.pkcs12 import (
    Pkcs12Profile,
    UnpackedBundle,
    package_pkcs12,
    unpack_pkcs12,
)
from pki_auth.certificates.store import (
    NOT_INITIALIZED,
    CAMaterial,
    CAStore,
    FilesystemCAStore,
    InMemoryCAStore,
    SigningKeyCache,
    SigningMaterial,
)

__all__ = [
    "BootstrapResult",
    "CAAlreadyInitializedError",
    "CAMaterial",
    "CANotInitializedError",
    "CAStore",
    "CertificateError",
    "DuplicateSerialError",
    "FilesystemCAStore",
    "InMemoryCAStore",
    "IssuedCertificate",
    "MalformedPEMError",
    "NOT_INITIALIZED",
    "ParsedCertificate",
    "Pkcs12Profile",
    "SigningKeyCache",
    "SigningMaterial",
    "SubjectInfo",
    "UnpackedBundle",
    "UnsupportedKeyFormatError",
    "bootstrap_ca",
    "build_subject_dn",
    "from_portable_name",
    "generate_serial_number",
    "issue_intermediate_ca",
    "issue_root_ca",
    "issue_user_certificate",
    "package_pkcs12",
    "parse_certificate",
    "parse_subject_dn",
    "to_portable_name",
    "unpack_pkcs12",
]
