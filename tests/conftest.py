"""Shared fixtures: one CA per test session, fresh registries per test."""
from __future__ import annotations

import datetime
from collections.abc import Callable

import pytest
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from pki_auth.certificates import (
    CAMaterial,
    InMemoryCAStore,
    SigningKeyCache,
    SubjectInfo,
    bootstrap_ca,
    issue_user_certificate,
)
from pki_auth.certificates.pem import load_rsa_private_key
from pki_auth.registry import CertificateRecord, CertificateRegistry, UserRegistry

EnrollFn = Callable[..., tuple[CertificateRecord, RSAPrivateKey]]


@pytest.fixture(scope="session")
def ca_material() -> CAMaterial:
    """Root and intermediate CA with 2048-bit keys, generated once."""
    return bootstrap_ca(InMemoryCAStore(), key_size=2048).to_material()


@pytest.fixture()
def ca_store(ca_material: CAMaterial) -> InMemoryCAStore:
    return InMemoryCAStore(ca_material)


@pytest.fixture()
def signing_keys(ca_store: InMemoryCAStore) -> SigningKeyCache:
    return SigningKeyCache(ca_store)


@pytest.fixture()
def certificates() -> CertificateRegistry:
    return CertificateRegistry()


@pytest.fixture()
def users() -> UserRegistry:
    return UserRegistry()


@pytest.fixture()
def enroll(
    signing_keys: SigningKeyCache, certificates: CertificateRegistry, users: UserRegistry
) -> EnrollFn:
    """Issue and register a user certificate, returning the record and its private key."""

    def _enroll(
        common_name: str = "김철수",
        email: str = "",
        now: datetime.datetime | None = None,
        validity_years: int = 1,
    ) -> tuple[CertificateRecord, RSAPrivateKey]:
        signing = signing_keys.get()
        issued = issue_user_certificate(
            SubjectInfo(common_name=common_name, email=email),
            ca_cert=signing.certificate,
            ca_key=signing.private_key,
            validity_years=validity_years,
            now=now,
        )
        user = users.get_or_create(name=common_name, email=email)
        record = certificates.register(
            CertificateRecord(
                serial_number=issued.serial_number,
                user_id=user.user_id,
                subject_dn=issued.subject_dn,
                display_name=common_name,
                issuer_dn=issued.issuer_dn,
                public_key_pem=issued.public_key_pem,
                certificate_pem=issued.certificate_pem,
                not_before=issued.not_before,
                not_after=issued.not_after,
            )
        )
        return record, load_rsa_private_key(issued.private_key_pem)

    return _enroll
