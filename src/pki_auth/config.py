"""Runtime configuration for the authentication server.

All settings have working defaults for local development. Deployments
set them through ``PKI_AUTH_*`` environment variables (see
:meth:`PkiAuthConfig.from_env`); CLI options override both.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

from pki_auth.certificates.pkcs12 import Pkcs12Profile

_ENV_PREFIX = "PKI_AUTH_"


@dataclass(frozen=True)
class PkiAuthConfig:
    """Settings shared by the CA, login and OAuth components.

    Parameters
    ----------
    ca_store_path:
        Directory holding the root and intermediate CA files.
    ca_key_passphrase:
        Optional passphrase for encrypting CA keys at rest.
    challenge_ttl_seconds:
        Lifetime of a login challenge.
    authorization_code_ttl_seconds:
        Lifetime of an authorization code.
    access_token_ttl_seconds, refresh_token_ttl_seconds:
        Token lifetimes.
    issuer_url:
        Public base URL of this server, used in discovery metadata.
    surface_url:
        URL of the certificate-selection page ``/authorize`` redirects to.
    admin_secret:
        Shared secret for ``POST /admin/ca/init``. Empty disables the
        endpoint.
    agent_url:
        Base URL of the local signing Agent (used by ``pki-auth login``).
    pkcs12_profile:
        PKCS#12 encryption profile for issued bundles.
    min_password_length:
        Minimum bundle password length accepted at issuance.
    max_validity_years:
        Upper bound on user certificate validity.
    audit_log_path:
        JSONL audit file. None keeps events in memory.
    registry_path:
        Directory of the certificate and user registry. Defaults to
        ``registry/`` inside ``ca_store_path`` (see :attr:`registry_dir`).
    """

    ca_store_path: Path = field(default_factory=lambda: Path.cwd() / "ca-store")
    ca_key_passphrase: str = ""
    challenge_ttl_seconds: int = 300
    authorization_code_ttl_seconds: int = 600
    access_token_ttl_seconds: int = 3600
    refresh_token_ttl_seconds: int = 30 * 24 * 3600
    issuer_url: str = "http://localhost:8080"
    surface_url: str = "http://localhost:8080/auth/certificate"
    admin_secret: str = ""
    agent_url: str = "https://localhost:52443"
    pkcs12_profile: Pkcs12Profile = Pkcs12Profile.LEGACY
    min_password_length: int = 8
    max_validity_years: int = 5
    audit_log_path: Path | None = None
    registry_path: Path | None = None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "PkiAuthConfig":
        """Build a config from ``PKI_AUTH_<FIELD>`` environment variables.

        Unset variables keep their defaults. Integer fields that do not
        parse raise ``ValueError`` naming the variable.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            overrides[f.name] = _coerce(f.name, raw)
        return cls(**overrides)  # type: ignore[arg-type]

    def with_overrides(self, **changes: object) -> "PkiAuthConfig":
        """Return a copy with the non-None *changes* applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def key_passphrase_bytes(self) -> bytes | None:
        return self.ca_key_passphrase.encode("utf-8") if self.ca_key_passphrase else None

    @property
    def registry_dir(self) -> Path:
        """Directory shared by ``pki-auth cert issue`` and ``pki-auth serve``."""
        return self.registry_path or self.ca_store_path / "registry"


def _coerce(name: str, raw: str) -> object:
    if name in ("ca_store_path", "audit_log_path", "registry_path"):
        return Path(raw)
    if name == "pkcs12_profile":
        return Pkcs12Profile(raw.lower())
    if name.endswith("_seconds") or name in ("min_password_length", "max_validity_years"):
        try:
            return int(raw)
        except ValueError as exc:
            raise ValueError(f"{_ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}") from exc
    return raw
