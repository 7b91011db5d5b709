"""IssuanceService — user certificate issuance end to end.

Validates the request, generates the key pair and certificate on a
dedicated worker thread, packages the PKCS#12 bundle with the caller's
password and records the certificate and its owner. Nothing is recorded
until the certificate and bundle have been built.

The password is used once to encrypt the bundle. Nothing returned by this
module and nothing stored in a registry can hold it.
"""
from __future__ import annotations

import base64
import datetime
import logging
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace

from pki_auth.audit.logger import AuditLogger
from pki_auth.certificates.errors import DuplicateSerialError
from pki_auth.certificates.factory import IssuedCertificate, issue_user_certificate
from pki_auth.certificates.names import SubjectInfo, to_portable_name
from pki_auth.certificates.pkcs12 import Pkcs12Profile, package_pkcs12
from pki_auth.certificates.store import SigningKeyCache
from pki_auth.registry.certificate_registry import CertificateRegistry
from pki_auth.registry.records import CertificateRecord, CertificateStatus
from pki_auth.registry.user_registry import UserRegistry

logger = logging.getLogger(__name__)

_SERIAL_ATTEMPTS = 3
# Upper bound for CN and O (RFC 5280 ub-common-name, ub-organization-name).
_MAX_NAME_LENGTH = 64
_COUNTRY_CODE = re.compile(r"[A-Za-z]{2}")


class IssuanceError(ValueError):
    """Raised for malformed issuance requests (missing name, weak password)."""


@dataclass(frozen=True)
class IssuanceRequest:
    """Fields accepted at the issuance boundary.

    Parameters
    ----------
    common_name:
        The user's name, in its original script.
    email:
        Optional e-mail, written as an rfc822Name SAN. The local part must
        be ASCII; an internationalized domain is IDNA-encoded.
    organization, country:
        Optional subject fields. ``country`` is a two-letter code.
    validity_years:
        Certificate lifetime (default 1 year).
    user_id:
        Existing user to issue for. A new user is created when omitted.
        Only trusted callers may set this.
    """

    common_name: str
    email: str = ""
    organization: str = ""
    country: str = ""
    validity_years: int = 1
    user_id: str | None = None


@dataclass(frozen=True)
class IssuanceResult:
    """What the issuance call hands back to the user."""

    user_id: str
    serial_number: str
    subject_dn: str
    issuer_dn: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    public_key_pem: str
    p12_bytes: bytes
    renewed_from: str | None = None

    @property
    def p12_base64(self) -> str:
        return base64.b64encode(self.p12_bytes).decode("ascii")


class IssuanceService:
    """Issues user certificates signed by the cached intermediate CA.

    Parameters
    ----------
    signing_keys:
        Signing-key cache (intermediate certificate and key).
    certificates:
        Registry the issued certificate is recorded in.
    users:
        Registry of certificate owners.
    audit:
        Audit logger.
    pkcs12_profile:
        Encryption profile for bundles.
    min_password_length:
        Minimum accepted password length.
    max_validity_years:
        Upper bound on ``validity_years``.
    key_size:
        RSA key size for user keys.
    executor:
        Worker for key generation. A private single-thread executor is
        created when omitted.
    """

    def __init__(
        self,
        signing_keys: SigningKeyCache,
        certificates: CertificateRegistry,
        users: UserRegistry,
        audit: AuditLogger | None = None,
        pkcs12_profile: Pkcs12Profile = Pkcs12Profile.LEGACY,
        min_password_length: int = 8,
        max_validity_years: int = 5,
        key_size: int = 2048,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._signing_keys = signing_keys
        self._certificates = certificates
        self._users = users
        self._audit = audit or AuditLogger()
        self._profile = pkcs12_profile
        self._min_password_length = min_password_length
        self._max_validity_years = max_validity_years
        self._key_size = key_size
        # CPU-bound key generation runs on this worker.
        self._owns_worker = executor is None
        self._worker = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="pki-issuance"
        )

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def issue(
        self, request: IssuanceRequest, password: str, timeout: float | None = 120.0
    ) -> IssuanceResult:
        """Issue a certificate and PKCS#12 bundle for *request*.

        Raises
        ------
        IssuanceError
            If the request or password is unacceptable.
        CANotInitializedError
            If no CA material exists yet.
        """
        request = self._validate(request, password)
        future = self._worker.submit(self._issue_blocking, request, password)
        return future.result(timeout=timeout)

    def renew(
        self,
        serial_number: str,
        password: str,
        validity_years: int = 1,
        timeout: float | None = 120.0,
    ) -> IssuanceResult:
        """Issue a replacement for the certificate *serial_number*.

        The new certificate has a fresh key pair and the old one's
        subject and owner. The old certificate is marked RENEWED and can
        no longer be used to log in.

        Raises
        ------
        CertificateNotFoundError
            If the serial is unknown.
        IssuanceError
            If the certificate is revoked or already renewed, or the
            password is unacceptable.
        """
        record = self._certificates.get(serial_number)
        _check_renewable(record)
        request = self._validate(
            IssuanceRequest(
                common_name=record.display_name,
                email=record.email,
                organization=record.organization,
                country=record.country,
                validity_years=validity_years,
                user_id=record.user_id,
            ),
            password,
        )
        future = self._worker.submit(
            self._issue_blocking, request, password, record.serial_number
        )
        return future.result(timeout=timeout)

    def shutdown(self) -> None:
        if self._owns_worker:
            self._worker.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _validate(self, request: IssuanceRequest, password: str) -> IssuanceRequest:
        """Check *request* and return it with normalized name, e-mail and country."""
        common_name = (request.common_name or "").strip()
        if not common_name:
            raise IssuanceError("commonName is required")
        if not password:
            raise IssuanceError("password is required")
        if len(password) < self._min_password_length:
            raise IssuanceError(
                f"password must be at least {self._min_password_length} characters"
            )
        if not 1 <= request.validity_years <= self._max_validity_years:
            raise IssuanceError(
                f"validityYears must be between 1 and {self._max_validity_years}"
            )
        if len(to_portable_name(common_name)) > _MAX_NAME_LENGTH:
            raise IssuanceError("commonName is too long")
        if request.organization and len(to_portable_name(request.organization)) > _MAX_NAME_LENGTH:
            raise IssuanceError("organization is too long")
        if request.country and not _COUNTRY_CODE.fullmatch(request.country):
            raise IssuanceError("country must be a two-letter code")
        email = _normalize_email(request.email) if request.email else ""
        return replace(
            request, common_name=common_name, email=email, country=request.country.upper()
        )

    def _issue_blocking(
        self, request: IssuanceRequest, password: str, renewed_from: str | None = None
    ) -> IssuanceResult:
        if renewed_from is not None:
            _check_renewable(self._certificates.get(renewed_from))
        signing = self._signing_keys.get()
        subject = SubjectInfo(
            common_name=request.common_name,
            organization=request.organization,
            country=request.country,
            email=request.email,
        )
        user_id = request.user_id or uuid.uuid4().hex

        for attempt in range(1, _SERIAL_ATTEMPTS + 1):
            issued = issue_user_certificate(
                subject,
                ca_cert=signing.certificate,
                ca_key=signing.private_key,
                validity_years=request.validity_years,
                key_size=self._key_size,
            )
            p12 = package_pkcs12(
                issued.certificate_pem,
                issued.private_key_pem,
                password,
                friendly_name=subject.common_name,
                ca_certificate_pems=[signing.certificate_pem],
                profile=self._profile,
            )
            try:
                self._certificates.register(_to_record(issued, user_id, subject, renewed_from))
                break
            except DuplicateSerialError:
                logger.warning(
                    "Serial collision on %s (attempt %d), reissuing",
                    issued.serial_number,
                    attempt,
                )
        else:
            raise DuplicateSerialError(issued.serial_number)

        user = self._users.get_or_create(
            name=subject.common_name, email=request.email, user_id=user_id
        )
        self._audit.log_certificate_issued(user.user_id, issued.serial_number, issued.subject_dn)
        if renewed_from is not None:
            self._certificates.mark_renewed(renewed_from)
            self._audit.log_certificate_renewed(user.user_id, renewed_from, issued.serial_number)
            logger.info("Renewed certificate %s as %s", renewed_from, issued.serial_number)
        logger.info("Issued certificate serial=%s for user %s", issued.serial_number, user.user_id)

        return IssuanceResult(
            user_id=user.user_id,
            serial_number=issued.serial_number,
            subject_dn=issued.subject_dn,
            issuer_dn=issued.issuer_dn,
            not_before=issued.not_before,
            not_after=issued.not_after,
            public_key_pem=issued.public_key_pem,
            p12_bytes=p12,
            renewed_from=renewed_from,
        )


def _check_renewable(record: CertificateRecord) -> None:
    if record.status is CertificateStatus.REVOKED:
        raise IssuanceError("Cannot renew a revoked certificate")
    if record.status is CertificateStatus.RENEWED:
        raise IssuanceError("Certificate has already been renewed")


def _normalize_email(email: str) -> str:
    """Return *email* with its domain in IDNA (ASCII) form.

    The local part is not transcoded and must already be printable ASCII.
    """
    local, sep, domain = email.strip().rpartition("@")
    if not sep or not local or not domain or any(c.isspace() for c in email.strip()):
        raise IssuanceError("email must look like name@domain")
    if not (local.isascii() and local.isprintable()):
        raise IssuanceError("email local part must be ASCII")
    try:
        ascii_domain = domain.encode("idna").decode("ascii")
    except UnicodeError as exc:
        raise IssuanceError(f"email domain is not a valid domain name: {exc}") from exc
    return f"{local}@{ascii_domain}"


def _to_record(
    issued: IssuedCertificate,
    user_id: str,
    subject: SubjectInfo,
    renewed_from: str | None = None,
) -> CertificateRecord:
    return CertificateRecord(
        serial_number=issued.serial_number,
        user_id=user_id,
        subject_dn=issued.subject_dn,
        display_name=subject.common_name,
        issuer_dn=issued.issuer_dn,
        public_key_pem=issued.public_key_pem,
        certificate_pem=issued.certificate_pem,
        not_before=issued.not_before,
        not_after=issued.not_after,
        email=subject.email,
        organization=subject.organization,
        country=subject.country,
        renewed_from=renewed_from,
    )
