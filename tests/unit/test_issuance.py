"""Tests for pki_auth.issuance — IssuanceService."""
from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import patch

import pytest

from pki_auth.audit import AuditLogger
from pki_auth.certificates import (
    CANotInitializedError,
    DuplicateSerialError,
    InMemoryCAStore,
    Pkcs12Profile,
    SigningKeyCache,
    unpack_pkcs12,
)
from pki_auth.certificates.names import extract_common_name, name_to_dn
from pki_auth.issuance import IssuanceError, IssuanceRequest, IssuanceService
from pki_auth.registry import (
    CertificateNotFoundError,
    CertificateRegistry,
    CertificateStatus,
    UserRegistry,
)

PASSWORD = "s3cret-pass"


@pytest.fixture()
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture()
def service(
    signing_keys: SigningKeyCache,
    certificates: CertificateRegistry,
    users: UserRegistry,
    audit: AuditLogger,
) -> Iterator[IssuanceService]:
    svc = IssuanceService(signing_keys, certificates, users, audit=audit)
    yield svc
    svc.shutdown()


class TestIssue:
    def test_issues_bundle_for_non_ascii_name(self, service: IssuanceService) -> None:
        result = service.issue(IssuanceRequest(common_name="김철수", country="kr"), PASSWORD)
        assert result.subject_dn == "CN=김철수, C=KR"

        bundle = unpack_pkcs12(result.p12_bytes, PASSWORD)
        assert extract_common_name(name_to_dn(bundle.certificate.subject)) == "김철수"
        assert len(bundle.ca_certificates) == 1

    def test_records_certificate_and_user(
        self, service: IssuanceService, certificates: CertificateRegistry, users: UserRegistry
    ) -> None:
        result = service.issue(IssuanceRequest(common_name="Alice", email="a@example.com"), PASSWORD)
        record = certificates.get(result.serial_number)
        assert record.user_id == result.user_id
        assert record.display_name == "Alice"
        assert record.public_key_pem == result.public_key_pem
        assert users.get(result.user_id).email == "a@example.com"

    def test_reissue_for_existing_user(self, service: IssuanceService, certificates: CertificateRegistry) -> None:
        first = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        second = service.issue(IssuanceRequest(common_name="Alice", user_id=first.user_id), PASSWORD)
        assert second.user_id == first.user_id
        assert second.serial_number != first.serial_number
        assert len(certificates.list_for_user(first.user_id)) == 2

    def test_p12_base64(self, service: IssuanceService) -> None:
        import base64

        result = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        assert base64.b64decode(result.p12_base64) == result.p12_bytes

    def test_modern_profile(
        self, signing_keys: SigningKeyCache, certificates: CertificateRegistry, users: UserRegistry
    ) -> None:
        svc = IssuanceService(signing_keys, certificates, users, pkcs12_profile=Pkcs12Profile.MODERN)
        try:
            result = svc.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        finally:
            svc.shutdown()
        assert unpack_pkcs12(result.p12_bytes, PASSWORD).certificate is not None

    def test_audits_without_password(self, service: IssuanceService, audit: AuditLogger) -> None:
        result = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        events = audit.read_log()
        assert events[-1]["action"] == "CERTIFICATE_ISSUED"
        assert events[-1]["details"]["serial_number"] == result.serial_number  # type: ignore[index]
        assert all(PASSWORD not in line for line in audit.drain_buffer())

    def test_result_holds_no_password(self, service: IssuanceService) -> None:
        result = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        assert PASSWORD not in repr(result)


class TestValidation:
    @pytest.mark.parametrize(
        ("request_", "password", "message"),
        [
            (IssuanceRequest(common_name=""), PASSWORD, "commonName"),
            (IssuanceRequest(common_name="   "), PASSWORD, "commonName"),
            (IssuanceRequest(common_name="Alice"), "", "password is required"),
            (IssuanceRequest(common_name="Alice"), "short", "at least 8"),
            (IssuanceRequest(common_name="Alice", validity_years=0), PASSWORD, "validityYears"),
            (IssuanceRequest(common_name="Alice", validity_years=6), PASSWORD, "validityYears"),
            (IssuanceRequest(common_name="Alice", country="KOR"), PASSWORD, "country"),
            (IssuanceRequest(common_name="Alice", country="K!"), PASSWORD, "country"),
            (IssuanceRequest(common_name="x" * 65), PASSWORD, "too long"),
            (IssuanceRequest(common_name="Alice", organization="o" * 65), PASSWORD, "too long"),
            (IssuanceRequest(common_name="Alice", email="김@example.com"), PASSWORD, "ASCII"),
            (IssuanceRequest(common_name="Alice", email="no-at-sign"), PASSWORD, "name@domain"),
        ],
    )
    def test_rejects(self, service: IssuanceService, request_: IssuanceRequest, password: str, message: str) -> None:
        with pytest.raises(IssuanceError, match=message):
            service.issue(request_, password)

    def test_rejected_request_records_nothing(
        self, service: IssuanceService, certificates: CertificateRegistry
    ) -> None:
        with pytest.raises(IssuanceError):
            service.issue(IssuanceRequest(common_name="Alice"), "")
        assert len(certificates) == 0

    def test_idna_domain_is_encoded(self, service: IssuanceService, users: UserRegistry) -> None:
        result = service.issue(IssuanceRequest(common_name="Kim", email="kim@예시.kr"), PASSWORD)
        email = users.get(result.user_id).email
        assert email.startswith("kim@xn--")
        assert email.endswith(".kr")

    def test_country_is_uppercased(self, service: IssuanceService, certificates: CertificateRegistry) -> None:
        result = service.issue(IssuanceRequest(common_name="Kim", country="kr"), PASSWORD)
        assert certificates.get(result.serial_number).country == "KR"


class TestFailures:
    def test_uninitialized_ca(self, certificates: CertificateRegistry, users: UserRegistry) -> None:
        svc = IssuanceService(SigningKeyCache(InMemoryCAStore()), certificates, users)
        try:
            with pytest.raises(CANotInitializedError):
                svc.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        finally:
            svc.shutdown()

    def test_serial_collision_is_retried(
        self, service: IssuanceService, certificates: CertificateRegistry
    ) -> None:
        original = certificates.register
        calls: list[str] = []

        def collide_once(record):  # type: ignore[no-untyped-def]
            calls.append(record.serial_number)
            if len(calls) == 1:
                raise DuplicateSerialError(record.serial_number)
            return original(record)

        with patch.object(certificates, "register", side_effect=collide_once):
            result = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)

        assert len(calls) == 2
        assert result.serial_number == calls[1]

    def test_persistent_collision_raises(
        self, service: IssuanceService, certificates: CertificateRegistry
    ) -> None:
        with patch.object(
            certificates, "register", side_effect=DuplicateSerialError("00")
        ) as register:
            with pytest.raises(DuplicateSerialError):
                service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        assert register.call_count == 3

    def test_failed_build_creates_no_user(
        self, service: IssuanceService, certificates: CertificateRegistry, users: UserRegistry
    ) -> None:
        with patch("pki_auth.issuance.package_pkcs12", side_effect=ValueError("boom")):
            with pytest.raises(ValueError, match="boom"):
                service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        assert len(users) == 0
        assert len(certificates) == 0


class TestRenew:
    def test_replaces_certificate(
        self, service: IssuanceService, certificates: CertificateRegistry, audit: AuditLogger
    ) -> None:
        first = service.issue(
            IssuanceRequest(common_name="김철수", email="kim@example.com", organization="Example", country="KR"),
            PASSWORD,
        )
        renewed = service.renew(first.serial_number, PASSWORD, validity_years=2)

        assert renewed.serial_number != first.serial_number
        assert renewed.user_id == first.user_id
        assert renewed.subject_dn == first.subject_dn
        assert renewed.renewed_from == first.serial_number
        assert renewed.public_key_pem != first.public_key_pem
        assert certificates.get(first.serial_number).status is CertificateStatus.RENEWED
        record = certificates.get(renewed.serial_number)
        assert record.status is CertificateStatus.ACTIVE
        assert record.renewed_from == first.serial_number
        assert record.email == "kim@example.com"

        action = audit.read_log()[-1]
        assert action["action"] == "CERTIFICATE_RENEWED"
        assert action["details"]["new_serial_number"] == renewed.serial_number  # type: ignore[index]

    def test_revoked_certificate_is_refused(
        self, service: IssuanceService, certificates: CertificateRegistry
    ) -> None:
        first = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        certificates.revoke(first.serial_number)
        with pytest.raises(IssuanceError, match="revoked"):
            service.renew(first.serial_number, PASSWORD)
        assert len(certificates) == 1

    def test_renewing_twice_is_refused(self, service: IssuanceService) -> None:
        first = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        service.renew(first.serial_number, PASSWORD)
        with pytest.raises(IssuanceError, match="already been renewed"):
            service.renew(first.serial_number, PASSWORD)

    def test_unknown_serial(self, service: IssuanceService) -> None:
        with pytest.raises(CertificateNotFoundError):
            service.renew("DEADBEEF", PASSWORD)

    def test_weak_password(self, service: IssuanceService) -> None:
        first = service.issue(IssuanceRequest(common_name="Alice"), PASSWORD)
        with pytest.raises(IssuanceError, match="at least 8"):
            service.renew(first.serial_number, "short")
