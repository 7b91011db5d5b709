"""Subject naming — portable name transcoding and Distinguished Name strings.

User certificates carry their common name in a portable, ASCII-only form
so that legacy verifying clients never see raw UTF-8 in the subject. The
human-readable name is kept alongside the certificate (in the registry)
and is what gets displayed and matched.

Portable form
-------------
A name that contains any non-ASCII character is written as
``B64_<base64 of the UTF-8 bytes>``. A pure ASCII name is written as is,
unless it already starts with the ``B64_`` prefix, in which case it is
encoded too so that decoding stays unambiguous.

Distinguished Name strings
--------------------------
DN strings are rendered in the fixed order ``CN, OU, O, L, ST, C``,
comma-separated, omitting empty fields. :func:`parse_subject_dn` reads
the same format back.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from cryptography import x509
from cryptography.x509.oid import NameOID

PORTABLE_PREFIX = "B64_"

# (short name, dataclass field, OID) in canonical DN order.
_DN_FIELDS: tuple[tuple[str, str, x509.ObjectIdentifier], ...] = (
    ("CN", "common_name", NameOID.COMMON_NAME),
    ("OU", "organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("O", "organization", NameOID.ORGANIZATION_NAME),
    ("L", "locality", NameOID.LOCALITY_NAME),
    ("ST", "state", NameOID.STATE_OR_PROVINCE_NAME),
    ("C", "country", NameOID.COUNTRY_NAME),
)

_SHORT_NAMES: dict[x509.ObjectIdentifier, str] = {oid: short for short, _, oid in _DN_FIELDS}


@dataclass(frozen=True)
class SubjectInfo:
    """Subject fields of a certificate, in their human-readable form.

    Parameters
    ----------
    common_name:
        Subject common name (may contain non-ASCII characters).
    organizational_unit, organization, locality, state, country:
        Optional DN components. Empty strings are treated as absent.
    email:
        Optional e-mail address, written as an rfc822Name SAN on user
        certificates. Not part of the DN string.
    """

    common_name: str
    organizational_unit: str = ""
    organization: str = ""
    locality: str = ""
    state: str = ""
    country: str = ""
    email: str = ""


# ------------------------------------------------------------------
# Portable names
# ------------------------------------------------------------------


def to_portable_name(raw: str) -> str:
    """Return the ASCII-safe form of *raw*."""
    if raw.isascii() and not raw.startswith(PORTABLE_PREFIX):
        return raw
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return f"{PORTABLE_PREFIX}{encoded}"


def from_portable_name(portable: str) -> str:
    """Invert :func:`to_portable_name`.

    Values without the prefix are returned unchanged. A prefixed value
    whose payload does not decode is also returned unchanged rather than
    being replaced by a guess.
    """
    if not portable.startswith(PORTABLE_PREFIX):
        return portable
    try:
        decoded = base64.b64decode(portable[len(PORTABLE_PREFIX):], validate=True)
        return decoded.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return portable


def is_portable_encoded(name: str) -> bool:
    """Return True if *name* carries the portable-encoding prefix."""
    return name.startswith(PORTABLE_PREFIX)


# ------------------------------------------------------------------
# DN strings
# ------------------------------------------------------------------


def build_subject_dn(subject: SubjectInfo) -> str:
    """Render *subject* as ``CN=..., OU=..., O=..., L=..., ST=..., C=...``."""
    parts = [
        f"{short}={getattr(subject, attr)}"
        for short, attr, _ in _DN_FIELDS
        if getattr(subject, attr)
    ]
    return ", ".join(parts)


def parse_subject_dn(dn: str) -> SubjectInfo:
    """Parse a DN string produced by :func:`build_subject_dn`.

    Unknown attribute types are ignored. Raises ``ValueError`` when the
    string contains no common name.
    """
    values: dict[str, str] = {}
    by_short = {short: attr for short, attr, _ in _DN_FIELDS}
    for part in dn.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        attr = by_short.get(key.strip().upper())
        if attr is not None and attr not in values:
            values[attr] = value.strip()

    if not values.get("common_name"):
        raise ValueError(f"DN has no common name: {dn!r}")
    return SubjectInfo(**values)


def name_to_dn(name: x509.Name) -> str:
    """Render an ``x509.Name`` as a DN string in its attribute order."""
    parts: list[str] = []
    for attribute in name:
        short = _SHORT_NAMES.get(attribute.oid, attribute.oid.dotted_string)
        parts.append(f"{short}={attribute.value}")
    return ", ".join(parts)


def subject_to_x509_name(subject: SubjectInfo, portable_cn: bool = False) -> x509.Name:
    """Build an ``x509.Name`` in canonical DN order.

    Parameters
    ----------
    subject:
        The subject fields.
    portable_cn:
        When True the common name and organization are written in
        portable form.
    """
    attributes: list[x509.NameAttribute] = []
    for _, attr, oid in _DN_FIELDS:
        value = getattr(subject, attr)
        if not value:
            continue
        if portable_cn and attr in ("common_name", "organization"):
            value = to_portable_name(value)
        attributes.append(x509.NameAttribute(oid, value))
    return x509.Name(attributes)


def extract_common_name(dn: str, decode: bool = True) -> str:
    """Return the CN of a DN string, decoded from portable form by default.

    Falls back to the whole DN when no ``CN=`` component is present.
    """
    for part in dn.split(","):
        key, sep, value = part.strip().partition("=")
        if sep and key.strip().upper() == "CN":
            cn = value.strip()
            return from_portable_name(cn) if decode else cn
    return dn
