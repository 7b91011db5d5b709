"""pki-auth — certificate authority and certificate-based OAuth2 login.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import pki_auth
>>> pki_auth.__version__
'0.1.0'

Quick start
-----------
::

    from pki_auth import (
        # Certificate authority
        InMemoryCAStore, SigningKeyCache, bootstrap_ca, IssuanceService,
        # Login
        ChallengeIssuer, LoginBinder,
        # OAuth2
        ClientRegistry, AuthorizationCodeStore, TokenService,
        # Configuration
        PkiAuthConfig,
    )
"""
from __future__ import annotations

__version__: str = "0.1.0"

from pki_auth.audit import AuditLogger
from pki_auth.auth import ChallengeIssuer, LoginBinder, LoginError, LoginResult
from pki_auth.certificates import (
    CANotInitializedError,
    FilesystemCAStore,
    InMemoryCAStore,
    SigningKeyCache,
    bootstrap_ca,
    from_portable_name,
    to_portable_name,
)
from pki_auth.config import PkiAuthConfig
from pki_auth.issuance import IssuanceError, IssuanceRequest, IssuanceResult, IssuanceService
from pki_auth.oauth import (
    AuthorizationCodeStore,
    ClientRegistry,
    OAuthError,
    OAuthErrorCode,
    TokenService,
)
from pki_auth.registry import (
    CertificateRegistry,
    FilesystemRegistryStore,
    InMemoryRegistryStore,
    UserRegistry,
)

__all__ = [
    "__version__",
    "AuditLogger",
    "AuthorizationCodeStore",
    "CANotInitializedError",
    "CertificateRegistry",
    "ChallengeIssuer",
    "ClientRegistry",
    "FilesystemCAStore",
    "FilesystemRegistryStore",
    "InMemoryCAStore",
    "InMemoryRegistryStore",
    "IssuanceError",
    "IssuanceRequest",
    "IssuanceResult",
    "IssuanceService",
    "LoginBinder",
    "LoginError",
    "LoginResult",
    "OAuthError",
    "OAuthErrorCode",
    "PkiAuthConfig",
    "SigningKeyCache",
    "TokenService",
    "UserRegistry",
    "bootstrap_ca",
    "from_portable_name",
    "to_portable_name",
]
