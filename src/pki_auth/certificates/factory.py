"""Certificate factory — key generation and X.509 issuance.

Issues the three kinds of certificate the service needs:

* a self-signed root CA (bootstrap only),
* an intermediate CA signed by the root with ``pathLenConstraint=0``,
  which is the key that signs every user certificate,
* end-entity user certificates for client authentication.

Serial numbers are 16 random bytes rendered as uppercase hex. All
certificates are signed with SHA-256.
"""
from __future__ import annotations

import datetime
import logging
import secrets
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import ExtendedKeyUsageOID

from pki_auth.certificates.names import (
    SubjectInfo,
    build_subject_dn,
    name_to_dn,
    subject_to_x509_name,
)
from pki_auth.certificates.pem import load_certificate

logger = logging.getLogger(__name__)

CA_KEY_SIZE = 4096
USER_KEY_SIZE = 2048
MIN_KEY_SIZE = 2048
SERIAL_NUMBER_BYTES = 16


@dataclass(frozen=True)
class IssuedCertificate:
    """A freshly issued certificate together with its key material.

    Parameters
    ----------
    serial_number:
        Uppercase hex serial number.
    subject_dn:
        Authoritative, human-readable subject DN (never transcoded).
    issuer_dn:
        DN of the signing certificate's subject.
    not_before, not_after:
        Validity window (UTC).
    public_key_pem, private_key_pem, certificate_pem:
        PEM-encoded material. The private key is unencrypted; it must be
        packaged (PKCS#12) or stored encrypted before leaving the process.
    """

    serial_number: str
    subject_dn: str
    issuer_dn: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    public_key_pem: str
    private_key_pem: str
    certificate_pem: str


@dataclass(frozen=True)
class ParsedCertificate:
    """Fields read back from a PEM certificate by :func:`parse_certificate`."""

    serial_number: str
    subject_dn: str
    issuer_dn: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    public_key_pem: str

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        """Return True if *now* (default: current UTC time) is past ``not_after``."""
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return now > self.not_after


# ------------------------------------------------------------------
# Serial numbers
# ------------------------------------------------------------------


def generate_serial_number() -> str:
    """Return 16 random bytes, high bit cleared, as uppercase hex (32 characters)."""
    while True:
        raw = bytearray(secrets.token_bytes(SERIAL_NUMBER_BYTES))
        # X.509 serials must be positive and fit in 20 DER octets.
        raw[0] &= 0x7F
        if any(raw):
            return raw.hex().upper()


def serial_to_hex(serial: int) -> str:
    """Render an integer serial in the same form as :func:`generate_serial_number`."""
    text = f"{serial:X}"
    if len(text) % 2:
        text = "0" + text
    return text.zfill(SERIAL_NUMBER_BYTES * 2)


# ------------------------------------------------------------------
# Issuance
# ------------------------------------------------------------------


def issue_root_ca(
    subject: SubjectInfo,
    validity_years: int = 10,
    key_size: int = CA_KEY_SIZE,
    now: datetime.datetime | None = None,
) -> IssuedCertificate:
    """Generate a self-signed root CA certificate.

    The certificate carries a critical ``basicConstraints`` with
    ``cA=true`` and a critical ``keyUsage`` limited to ``keyCertSign``
    and ``cRLSign``.

    Parameters
    ----------
    subject:
        Subject (and issuer) fields.
    validity_years:
        Lifetime in years.
    key_size:
        RSA modulus size. Defaults to 4096; must be at least 2048.
    now:
        Override for the start of the validity window.
    """
    key = _generate_key(key_size)
    name = subject_to_x509_name(subject)
    not_before, not_after = _validity(validity_years, now)
    serial = generate_serial_number()

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(int(serial, 16))
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(_ca_key_usage(), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .sign(key, hashes.SHA256())
    )

    logger.info("Issued root CA %s, serial=%s", build_subject_dn(subject), serial)
    return _to_issued(cert, key, serial, build_subject_dn(subject), name_to_dn(name))


def issue_intermediate_ca(
    subject: SubjectInfo,
    root_cert: x509.Certificate,
    root_key: RSAPrivateKey,
    validity_years: int = 5,
    key_size: int = CA_KEY_SIZE,
    now: datetime.datetime | None = None,
) -> IssuedCertificate:
    """Generate an intermediate CA certificate signed by the root.

    ``pathLenConstraint`` is 0, so the intermediate can sign end-entity
    certificates but no further CAs.
    """
    key = _generate_key(key_size)
    name = subject_to_x509_name(subject)
    not_before, not_after = _validity(validity_years, now)
    serial = generate_serial_number()

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(root_cert.subject)
        .public_key(key.public_key())
        .serial_number(int(serial, 16))
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(_ca_key_usage(), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .add_extension(_authority_key_id(root_cert), critical=False)
        .sign(root_key, hashes.SHA256())
    )

    logger.info("Issued intermediate CA %s, serial=%s", build_subject_dn(subject), serial)
    return _to_issued(
        cert, key, serial, build_subject_dn(subject), name_to_dn(root_cert.subject)
    )


def issue_user_certificate(
    subject: SubjectInfo,
    ca_cert: x509.Certificate,
    ca_key: RSAPrivateKey,
    validity_years: int = 1,
    key_size: int = USER_KEY_SIZE,
    now: datetime.datetime | None = None,
) -> IssuedCertificate:
    """Issue an end-entity certificate for client authentication.

    The common name (and organization) are written into the certificate
    in portable form; the returned ``subject_dn`` keeps the original
    text.

    Extensions: ``basicConstraints cA=false``, ``keyUsage`` =
    digitalSignature, nonRepudiation, keyEncipherment, ``extKeyUsage`` =
    clientAuth, emailProtection, and an rfc822Name ``subjectAltName``
    when ``subject.email`` is set.

    ``notAfter`` never extends past the signing CA's own ``notAfter``.
    """
    key = _generate_key(key_size)
    name = subject_to_x509_name(subject, portable_cn=True)
    not_before, not_after = _validity(validity_years, now)
    ca_not_after = ca_cert.not_valid_after_utc
    if not_after > ca_not_after:
        logger.warning(
            "Requested validity ends after the signing CA (%s); capping", ca_not_after.isoformat()
        )
        not_after = ca_not_after
    serial = generate_serial_number()

    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(int(serial, 16))
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=True,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.EMAIL_PROTECTION]
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .add_extension(_authority_key_id(ca_cert), critical=False)
    )
    if subject.email:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.RFC822Name(subject.email)]),
            critical=False,
        )

    cert = builder.sign(ca_key, hashes.SHA256())

    logger.info("Issued user certificate serial=%s", serial)
    return _to_issued(
        cert, key, serial, build_subject_dn(subject), name_to_dn(ca_cert.subject)
    )


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


def parse_certificate(pem: str | bytes) -> ParsedCertificate:
    """Read the identifying fields of a PEM certificate.

    The subject DN is returned exactly as stored in the certificate, so a
    user certificate's CN appears in portable form.

    Raises
    ------
    MalformedPEMError
        If the input is not a parseable PEM certificate.
    """
    cert = load_certificate(pem)
    return ParsedCertificate(
        serial_number=serial_to_hex(cert.serial_number),
        subject_dn=name_to_dn(cert.subject),
        issuer_dn=name_to_dn(cert.issuer),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        public_key_pem=_public_key_pem(cert.public_key()),
    )


# ------------------------------------------------------------------
# Internal
# ------------------------------------------------------------------


def _generate_key(key_size: int) -> RSAPrivateKey:
    if key_size < MIN_KEY_SIZE:
        raise ValueError(f"key_size must be at least {MIN_KEY_SIZE} bits, got {key_size}")
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def _validity(
    years: int, now: datetime.datetime | None
) -> tuple[datetime.datetime, datetime.datetime]:
    if years < 1:
        raise ValueError(f"validity_years must be at least 1, got {years}")
    start = (now or datetime.datetime.now(datetime.timezone.utc)).replace(microsecond=0)
    try:
        end = start.replace(year=start.year + years)
    except ValueError:
        # 29 February in a non-leap target year.
        end = start.replace(year=start.year + years, day=28)
    return start, end


def _ca_key_usage() -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=False,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=True,
        crl_sign=True,
        encipher_only=False,
        decipher_only=False,
    )


def _authority_key_id(issuer_cert: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    try:
        ski = issuer_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)
    except x509.ExtensionNotFound:
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(
            issuer_cert.public_key()  # type: ignore[arg-type]
        )


def _public_key_pem(public_key: object) -> str:
    return public_key.public_bytes(  # type: ignore[attr-defined]
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def _to_issued(
    cert: x509.Certificate,
    key: RSAPrivateKey,
    serial: str,
    subject_dn: str,
    issuer_dn: str,
) -> IssuedCertificate:
    return IssuedCertificate(
        serial_number=serial,
        subject_dn=subject_dn,
        issuer_dn=issuer_dn,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        public_key_pem=_public_key_pem(key.public_key()),
        private_key_pem=key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii"),
        certificate_pem=cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
    )
