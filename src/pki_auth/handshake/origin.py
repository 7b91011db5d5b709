"""OriginPolicy — which window origins may take part in the handshake."""
from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, field


def normalize_origin(origin: str) -> str:
    """Return ``scheme://host[:port]`` in lower case, or an empty string.

    Default ports are dropped so ``https://a.example:443`` equals
    ``https://a.example``. Opaque origins (``"null"``) normalize to "".
    """
    parsed = urllib.parse.urlsplit(origin.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return ""
    host = parsed.hostname.lower()
    try:
        port = parsed.port
    except ValueError:
        return ""
    default = 443 if parsed.scheme == "https" else 80
    if port is not None and port != default:
        return f"{parsed.scheme}://{host}:{port}"
    return f"{parsed.scheme}://{host}"


@dataclass(frozen=True)
class OriginPolicy:
    """Allow-list of exact origins plus https domain suffixes.

    Parameters
    ----------
    allowed_origins:
        Origins accepted verbatim (after normalization).
    domain_suffixes:
        Domains whose https subdomains are accepted, e.g. ``example.com``
        admits ``https://login.example.com`` but not ``http://...`` or
        ``https://evilexample.com``.
    """

    allowed_origins: tuple[str, ...] = field(default_factory=tuple)
    domain_suffixes: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def single(cls, origin: str) -> "OriginPolicy":
        return cls(allowed_origins=(origin,))

    def is_allowed(self, origin: str) -> bool:
        normalized = normalize_origin(origin)
        if not normalized:
            return False
        if normalized in {normalize_origin(o) for o in self.allowed_origins}:
            return True

        parsed = urllib.parse.urlsplit(normalized)
        if parsed.scheme != "https" or parsed.hostname is None:
            return False
        host = parsed.hostname
        for suffix in self.domain_suffixes:
            suffix = suffix.lower().lstrip(".")
            if host.endswith("." + suffix):
                return True
        return False
