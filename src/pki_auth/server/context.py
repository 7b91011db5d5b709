"""ServerContext — the services one server process shares between requests.

Everything the route handlers need is constructed once here and passed
to them explicitly. In particular the signing-key cache exists exactly
once per process and is handed to every component that signs.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from pki_auth.audit.logger import AuditLogger
from pki_auth.auth.challenge import ChallengeIssuer
from pki_auth.auth.login import LoginBinder
from pki_auth.certificates.factory import CA_KEY_SIZE
from pki_auth.certificates.store import CAStore, FilesystemCAStore, SigningKeyCache
from pki_auth.config import PkiAuthConfig
from pki_auth.issuance import IssuanceService
from pki_auth.oauth.clients import ClientRegistry
from pki_auth.oauth.codes import AuthorizationCodeStore
from pki_auth.oauth.tokens import TokenService
from pki_auth.registry.certificate_registry import CertificateRegistry
from pki_auth.registry.store import FilesystemRegistryStore, RegistryStore
from pki_auth.registry.user_registry import UserRegistry

logger = logging.getLogger(__name__)


@dataclass
class ServerContext:
    """Long-lived services behind the HTTP routes."""

    config: PkiAuthConfig
    ca_store: CAStore
    signing_keys: SigningKeyCache
    certificates: CertificateRegistry
    users: UserRegistry
    clients: ClientRegistry
    challenges: ChallengeIssuer
    codes: AuthorizationCodeStore
    tokens: TokenService
    login: LoginBinder
    issuance: IssuanceService
    audit: AuditLogger
    worker: ThreadPoolExecutor = field(repr=False)
    ca_key_size: int = CA_KEY_SIZE

    @classmethod
    def from_config(
        cls,
        config: PkiAuthConfig,
        ca_store: CAStore | None = None,
        registry_store: RegistryStore | None = None,
        user_key_size: int = 2048,
        ca_key_size: int = CA_KEY_SIZE,
    ) -> "ServerContext":
        """Wire up all services for *config*.

        Parameters
        ----------
        config:
            Server settings.
        ca_store:
            CA store to use. Defaults to a filesystem store at
            ``config.ca_store_path``.
        registry_store:
            Certificate and user registry storage. Defaults to a filesystem
            store at ``config.registry_dir``.
        user_key_size:
            RSA key size for issued user keys.
        ca_key_size:
            RSA key size used when bootstrapping the CA over HTTP.
        """
        store = ca_store or FilesystemCAStore(
            config.ca_store_path, key_passphrase=config.key_passphrase_bytes
        )
        audit = AuditLogger(config.audit_log_path)
        signing_keys = SigningKeyCache(store)
        registry_store = registry_store or FilesystemRegistryStore(config.registry_dir)
        certificates = CertificateRegistry(registry_store)
        users = UserRegistry(registry_store)
        clients = ClientRegistry()
        challenges = ChallengeIssuer(ttl_seconds=config.challenge_ttl_seconds)
        codes = AuthorizationCodeStore(ttl_seconds=config.authorization_code_ttl_seconds)
        worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pki-keygen")

        tokens = TokenService(
            clients=clients,
            codes=codes,
            users=users,
            audit=audit,
            access_token_ttl_seconds=config.access_token_ttl_seconds,
            refresh_token_ttl_seconds=config.refresh_token_ttl_seconds,
        )
        login = LoginBinder(
            challenges=challenges,
            certificates=certificates,
            users=users,
            codes=codes,
            clients=clients,
            audit=audit,
        )
        issuance = IssuanceService(
            signing_keys=signing_keys,
            certificates=certificates,
            users=users,
            audit=audit,
            pkcs12_profile=config.pkcs12_profile,
            min_password_length=config.min_password_length,
            max_validity_years=config.max_validity_years,
            key_size=user_key_size,
            executor=worker,
        )
        if not store.is_initialized():
            logger.warning(
                "CA store is not initialized; run `pki-auth ca init` or POST /admin/ca/init"
            )
        return cls(
            config=config,
            ca_store=store,
            signing_keys=signing_keys,
            certificates=certificates,
            users=users,
            clients=clients,
            challenges=challenges,
            codes=codes,
            tokens=tokens,
            login=login,
            issuance=issuance,
            audit=audit,
            worker=worker,
            ca_key_size=ca_key_size,
        )

    def close(self) -> None:
        """Stop the key-generation worker."""
        self.worker.shutdown(wait=True)
