"""Record types held by the certificate and user registries.

Both records are frozen; a status change or profile update produces a new
record that replaces the stored one. :meth:`to_json` and ``from_json``
give the full stored form (including key material for certificates);
``to_dict`` is the public view returned over HTTP.
"""
from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _parse_time(value: str | None) -> datetime.datetime | None:
    return datetime.datetime.fromisoformat(value) if value else None


class CertificateStatus(str, enum.Enum):
    """Lifecycle status of an issued certificate.

    ``RENEWED`` marks a certificate that was replaced by a renewal. Only
    ``ACTIVE`` certificates can be used to log in.
    """

    ACTIVE = "ACTIVE"
    RENEWED = "RENEWED"
    REVOKED = "REVOKED"


@dataclass(frozen=True)
class CertificateRecord:
    """Registry entry for one issued user certificate.

    Parameters
    ----------
    serial_number:
        Uppercase hex serial number.
    user_id:
        Owning user.
    subject_dn:
        Authoritative subject DN with the original (untranscoded) name.
    display_name:
        Human-readable common name.
    issuer_dn:
        Issuer DN.
    public_key_pem:
        Public key used to verify login signatures.
    certificate_pem:
        The issued certificate.
    not_before, not_after:
        Validity window (UTC).
    status:
        ACTIVE, RENEWED or REVOKED.
    created_at:
        When the record was registered.
    revoked_at:
        When the record was revoked, if it was.
    email, organization, country:
        Subject fields kept for renewal.
    renewed_from:
        Serial of the certificate this one replaced, if any.
    """

    serial_number: str
    user_id: str
    subject_dn: str
    display_name: str
    issuer_dn: str
    public_key_pem: str
    certificate_pem: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    status: CertificateStatus = CertificateStatus.ACTIVE
    created_at: datetime.datetime = field(default_factory=_utcnow)
    revoked_at: datetime.datetime | None = None
    email: str = ""
    organization: str = ""
    country: str = ""
    renewed_from: str | None = None

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        now = now or _utcnow()
        return now > self.not_after

    def is_usable(self, now: datetime.datetime | None = None) -> bool:
        """Return True if the record is active and inside its validity window."""
        now = now or _utcnow()
        return (
            self.status is CertificateStatus.ACTIVE
            and self.not_before <= now <= self.not_after
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "serial_number": self.serial_number,
            "user_id": self.user_id,
            "subject_dn": self.subject_dn,
            "display_name": self.display_name,
            "issuer_dn": self.issuer_dn,
            "not_before": self.not_before.isoformat(),
            "not_after": self.not_after.isoformat(),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "renewed_from": self.renewed_from,
        }

    def to_json(self) -> dict[str, object]:
        data = self.to_dict()
        data.update(
            public_key_pem=self.public_key_pem,
            certificate_pem=self.certificate_pem,
            email=self.email,
            organization=self.organization,
            country=self.country,
        )
        return data

    @classmethod
    def from_json(cls, data: dict[str, object]) -> "CertificateRecord":
        return cls(
            serial_number=str(data["serial_number"]),
            user_id=str(data["user_id"]),
            subject_dn=str(data["subject_dn"]),
            display_name=str(data["display_name"]),
            issuer_dn=str(data["issuer_dn"]),
            public_key_pem=str(data["public_key_pem"]),
            certificate_pem=str(data["certificate_pem"]),
            not_before=datetime.datetime.fromisoformat(str(data["not_before"])),
            not_after=datetime.datetime.fromisoformat(str(data["not_after"])),
            status=CertificateStatus(data["status"]),
            created_at=datetime.datetime.fromisoformat(str(data["created_at"])),
            revoked_at=_parse_time(data.get("revoked_at")),  # type: ignore[arg-type]
            email=str(data.get("email", "")),
            organization=str(data.get("organization", "")),
            country=str(data.get("country", "")),
            renewed_from=data.get("renewed_from"),  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class UserRecord:
    """A registered end user.

    Parameters
    ----------
    user_id:
        Stable identifier, used as the OAuth ``sub``.
    name:
        Display name (original text, may be non-ASCII).
    email:
        Optional e-mail address.
    created_at, updated_at:
        UTC timestamps.
    """

    user_id: str
    name: str
    email: str = ""
    created_at: datetime.datetime = field(default_factory=_utcnow)
    updated_at: datetime.datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def to_json(self) -> dict[str, object]:
        return self.to_dict()

    @classmethod
    def from_json(cls, data: dict[str, object]) -> "UserRecord":
        return cls(
            user_id=str(data["user_id"]),
            name=str(data["name"]),
            email=str(data.get("email", "")),
            created_at=datetime.datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.datetime.fromisoformat(str(data["updated_at"])),
        )
