"""Tests for pki_auth.certificates.factory — CA and user certificate issuance."""
from __future__ import annotations

import datetime
from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509.oid import ExtendedKeyUsageOID

from pki_auth.certificates import (
    CAMaterial,
    SigningKeyCache,
    SubjectInfo,
    generate_serial_number,
    issue_user_certificate,
    parse_certificate,
)
from pki_auth.certificates.factory import serial_to_hex
from pki_auth.certificates.names import to_portable_name
from pki_auth.certificates.pem import load_certificate


def _verify_signed_by(cert: x509.Certificate, issuer: x509.Certificate) -> None:
    issuer.public_key().verify(  # type: ignore[union-attr]
        cert.signature,
        cert.tbs_certificate_bytes,
        padding.PKCS1v15(),
        cert.signature_hash_algorithm,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Serial numbers
# ---------------------------------------------------------------------------


class TestSerialNumbers:
    def test_serial_is_32_uppercase_hex_chars(self) -> None:
        serial = generate_serial_number()
        assert len(serial) == 32
        assert serial == serial.upper()
        int(serial, 16)

    def test_serials_differ(self) -> None:
        assert len({generate_serial_number() for _ in range(50)}) == 50

    def test_serial_to_hex_pads_leading_zeros(self) -> None:
        assert serial_to_hex(0xAB) == "AB".zfill(32)
        assert serial_to_hex(int("0F" * 16, 16)) == "0F" * 16

    def test_high_bit_is_cleared(self) -> None:
        with patch("pki_auth.certificates.factory.secrets.token_bytes", return_value=b"\xff" * 16):
            serial = generate_serial_number()
        assert serial == "7F" + "FF" * 15
        assert int(serial, 16) < 2**127


# ---------------------------------------------------------------------------
# CA hierarchy
# ---------------------------------------------------------------------------


class TestCAHierarchy:
    def test_root_is_self_signed_ca(self, ca_material: CAMaterial) -> None:
        root = load_certificate(ca_material.root_cert_pem)
        constraints = root.extensions.get_extension_for_class(x509.BasicConstraints)
        assert constraints.critical
        assert constraints.value.ca is True
        assert root.subject == root.issuer
        _verify_signed_by(root, root)

    def test_root_key_usage_is_cert_and_crl_sign(self, ca_material: CAMaterial) -> None:
        root = load_certificate(ca_material.root_cert_pem)
        usage = root.extensions.get_extension_for_class(x509.KeyUsage)
        assert usage.critical
        assert usage.value.key_cert_sign
        assert usage.value.crl_sign
        assert not usage.value.digital_signature

    def test_intermediate_signed_by_root_with_path_len_zero(self, ca_material: CAMaterial) -> None:
        root = load_certificate(ca_material.root_cert_pem)
        intermediate = load_certificate(ca_material.intermediate_cert_pem)
        constraints = intermediate.extensions.get_extension_for_class(x509.BasicConstraints)
        assert constraints.value.ca is True
        assert constraints.value.path_length == 0
        assert intermediate.issuer == root.subject
        _verify_signed_by(intermediate, root)

    def test_validity_windows_are_ordered(self, ca_material: CAMaterial) -> None:
        for pem in (ca_material.root_cert_pem, ca_material.intermediate_cert_pem):
            parsed = parse_certificate(pem)
            assert parsed.not_before < parsed.not_after


# ---------------------------------------------------------------------------
# User certificates
# ---------------------------------------------------------------------------


class TestUserCertificate:
    @pytest.fixture()
    def issued(self, signing_keys: SigningKeyCache):
        signing = signing_keys.get()
        return issue_user_certificate(
            SubjectInfo(common_name="김철수", country="KR", email="kim@example.com"),
            ca_cert=signing.certificate,
            ca_key=signing.private_key,
        )

    def test_issuer_dn_equals_intermediate_subject(
        self, issued, ca_material: CAMaterial
    ) -> None:
        intermediate = parse_certificate(ca_material.intermediate_cert_pem)
        assert issued.issuer_dn == intermediate.subject_dn
        assert parse_certificate(issued.certificate_pem).issuer_dn == intermediate.subject_dn

    def test_signed_by_intermediate(self, issued, ca_material: CAMaterial) -> None:
        _verify_signed_by(
            load_certificate(issued.certificate_pem),
            load_certificate(ca_material.intermediate_cert_pem),
        )

    def test_subject_dn_keeps_original_name(self, issued) -> None:
        assert issued.subject_dn == "CN=김철수, C=KR"

    def test_certificate_carries_portable_cn(self, issued) -> None:
        parsed = parse_certificate(issued.certificate_pem)
        assert parsed.subject_dn == f"CN={to_portable_name('김철수')}, C=KR"
        assert parsed.subject_dn.isascii()

    def test_serial_matches_certificate(self, issued) -> None:
        assert parse_certificate(issued.certificate_pem).serial_number == issued.serial_number

    def test_end_entity_extensions(self, issued) -> None:
        cert = load_certificate(issued.certificate_pem)
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
        assert constraints.value.ca is False
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert usage.digital_signature
        assert usage.content_commitment
        assert usage.key_encipherment
        assert not usage.key_cert_sign
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert ExtendedKeyUsageOID.CLIENT_AUTH in eku
        assert ExtendedKeyUsageOID.EMAIL_PROTECTION in eku

    def test_email_is_written_as_san(self, issued) -> None:
        cert = load_certificate(issued.certificate_pem)
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.RFC822Name) == ["kim@example.com"]

    def test_no_san_without_email(self, signing_keys: SigningKeyCache) -> None:
        signing = signing_keys.get()
        issued = issue_user_certificate(
            SubjectInfo(common_name="Alice"),
            ca_cert=signing.certificate,
            ca_key=signing.private_key,
        )
        cert = load_certificate(issued.certificate_pem)
        with pytest.raises(x509.ExtensionNotFound):
            cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)

    def test_validity_years(self, signing_keys: SigningKeyCache) -> None:
        signing = signing_keys.get()
        start = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)
        issued = issue_user_certificate(
            SubjectInfo(common_name="Alice"),
            ca_cert=signing.certificate,
            ca_key=signing.private_key,
            validity_years=2,
            now=start,
        )
        assert issued.not_before == start
        assert issued.not_after == start.replace(year=2026)

    def test_validity_capped_at_ca_expiry(self, signing_keys: SigningKeyCache) -> None:
        signing = signing_keys.get()
        issued = issue_user_certificate(
            SubjectInfo(common_name="Alice"),
            ca_cert=signing.certificate,
            ca_key=signing.private_key,
            validity_years=10,
        )
        assert issued.not_after == signing.certificate.not_valid_after_utc
        cert = load_certificate(issued.certificate_pem)
        assert cert.not_valid_after_utc <= signing.certificate.not_valid_after_utc

    def test_leap_day_start(self, signing_keys: SigningKeyCache) -> None:
        signing = signing_keys.get()
        start = datetime.datetime(2024, 2, 29, tzinfo=datetime.timezone.utc)
        issued = issue_user_certificate(
            SubjectInfo(common_name="Alice"),
            ca_cert=signing.certificate,
            ca_key=signing.private_key,
            now=start,
        )
        assert issued.not_after == datetime.datetime(2025, 2, 28, tzinfo=datetime.timezone.utc)

    def test_rejects_small_key(self, signing_keys: SigningKeyCache) -> None:
        signing = signing_keys.get()
        with pytest.raises(ValueError, match="key_size"):
            issue_user_certificate(
                SubjectInfo(common_name="Alice"),
                ca_cert=signing.certificate,
                ca_key=signing.private_key,
                key_size=1024,
            )

    def test_rejects_zero_validity(self, signing_keys: SigningKeyCache) -> None:
        signing = signing_keys.get()
        with pytest.raises(ValueError, match="validity_years"):
            issue_user_certificate(
                SubjectInfo(common_name="Alice"),
                ca_cert=signing.certificate,
                ca_key=signing.private_key,
                validity_years=0,
            )

    def test_parsed_expiry(self, issued) -> None:
        parsed = parse_certificate(issued.certificate_pem)
        assert not parsed.is_expired()
        assert parsed.is_expired(parsed.not_after + datetime.timedelta(seconds=1))
