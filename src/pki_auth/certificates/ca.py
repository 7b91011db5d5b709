"""Certificate authority bootstrap.

Creates the root/intermediate pair once and saves it to a CA store. The
root signs only the intermediate; the intermediate signs every user
certificate.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from pki_auth.certificates.errors import CAAlreadyInitializedError
from pki_auth.certificates.factory import (
    CA_KEY_SIZE,
    IssuedCertificate,
    issue_intermediate_ca,
    issue_root_ca,
)
from pki_auth.certificates.names import SubjectInfo
from pki_auth.certificates.pem import load_certificate, load_rsa_private_key
from pki_auth.certificates.store import CAMaterial, CAStore, SigningKeyCache

logger = logging.getLogger(__name__)

DEFAULT_ROOT_SUBJECT = SubjectInfo(
    common_name="PKI Auth Root CA", organization="PKI Auth", country="KR"
)
DEFAULT_INTERMEDIATE_SUBJECT = SubjectInfo(
    common_name="PKI Auth Intermediate CA", organization="PKI Auth", country="KR"
)


@dataclass(frozen=True)
class BootstrapResult:
    """Root and intermediate certificates produced by :func:`bootstrap_ca`."""

    root: IssuedCertificate
    intermediate: IssuedCertificate

    def to_material(self) -> CAMaterial:
        return CAMaterial(
            root_cert_pem=self.root.certificate_pem,
            root_key_pem=self.root.private_key_pem,
            intermediate_cert_pem=self.intermediate.certificate_pem,
            intermediate_key_pem=self.intermediate.private_key_pem,
        )


def bootstrap_ca(
    store: CAStore,
    cache: SigningKeyCache | None = None,
    root_subject: SubjectInfo = DEFAULT_ROOT_SUBJECT,
    intermediate_subject: SubjectInfo = DEFAULT_INTERMEDIATE_SUBJECT,
    root_validity_years: int = 10,
    intermediate_validity_years: int = 5,
    key_size: int = CA_KEY_SIZE,
    force: bool = False,
) -> BootstrapResult:
    """Generate a root and intermediate CA and persist them.

    Parameters
    ----------
    store:
        Destination store.
    cache:
        Signing-key cache to invalidate after saving, if one is in use.
    root_subject, intermediate_subject:
        Subjects of the two CA certificates.
    root_validity_years, intermediate_validity_years:
        Lifetimes (defaults 10 and 5 years).
    key_size:
        RSA key size for both CA keys (default 4096).
    force:
        Replace existing material (rotation). Without it an initialized
        store is left untouched.

    Raises
    ------
    CAAlreadyInitializedError
        If the store is initialized and *force* is False.
    """
    if store.is_initialized() and not force:
        raise CAAlreadyInitializedError()

    root = issue_root_ca(root_subject, validity_years=root_validity_years, key_size=key_size)
    intermediate = issue_intermediate_ca(
        intermediate_subject,
        root_cert=load_certificate(root.certificate_pem),
        root_key=load_rsa_private_key(root.private_key_pem),
        validity_years=intermediate_validity_years,
        key_size=key_size,
    )
    result = BootstrapResult(root=root, intermediate=intermediate)
    store.save(result.to_material())

    if cache is not None:
        cache.invalidate()

    logger.info(
        "CA initialized: root serial=%s, intermediate serial=%s",
        root.serial_number,
        intermediate.serial_number,
    )
    return result
