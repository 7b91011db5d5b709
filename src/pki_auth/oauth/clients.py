"""ClientRegistry — registered OAuth2 relying applications.

A client with a secret is confidential and authenticates at ``/token``
with it. A client without one is public and must use PKCE instead.
"""
from __future__ import annotations

import hmac
import secrets
import threading
import urllib.parse
from dataclasses import dataclass, field

from pki_auth.oauth.errors import OAuthError, OAuthErrorCode


@dataclass(frozen=True)
class OAuthClient:
    """A registered relying application.

    Parameters
    ----------
    client_id:
        Public identifier.
    name:
        Display name.
    redirect_uris:
        Exact redirect URIs the client may use.
    client_secret:
        Shared secret for confidential clients, or None for public ones.
    """

    client_id: str
    name: str
    redirect_uris: tuple[str, ...] = field(default_factory=tuple)
    client_secret: str | None = None

    @property
    def is_confidential(self) -> bool:
        return self.client_secret is not None

    def allows_redirect(self, redirect_uri: str) -> bool:
        return redirect_uri in self.redirect_uris

    def check_secret(self, client_secret: str | None) -> bool:
        """Constant-time comparison of *client_secret* with the stored secret."""
        if self.client_secret is None or client_secret is None:
            return False
        return hmac.compare_digest(
            self.client_secret.encode("utf-8"), client_secret.encode("utf-8")
        )

    def to_dict(self, include_secret: bool = False) -> dict[str, object]:
        data: dict[str, object] = {
            "client_id": self.client_id,
            "name": self.name,
            "redirect_uris": list(self.redirect_uris),
            "confidential": self.is_confidential,
        }
        if include_secret and self.client_secret is not None:
            data["client_secret"] = self.client_secret
        return data


class ClientRegistry:
    """Thread-safe in-memory registry of OAuth clients."""

    def __init__(self) -> None:
        self._clients: dict[str, OAuthClient] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        redirect_uris: list[str],
        confidential: bool = True,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> OAuthClient:
        """Register a client and return it, generating credentials as needed.

        Raises
        ------
        ValueError
            If *name* is empty, no redirect URI is given, a URI is not an
            absolute http(s) URI, or *client_id* is already taken.
        """
        if not name:
            raise ValueError("Client name is required")
        if not redirect_uris:
            raise ValueError("At least one redirect URI is required")
        for uri in redirect_uris:
            _validate_redirect_uri(uri)

        client = OAuthClient(
            client_id=client_id or secrets.token_hex(16),
            name=name,
            redirect_uris=tuple(redirect_uris),
            client_secret=(client_secret or secrets.token_hex(32)) if confidential else None,
        )
        with self._lock:
            if client.client_id in self._clients:
                raise ValueError(f"Client {client.client_id!r} is already registered")
            self._clients[client.client_id] = client
        return client

    def get(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            return self._clients.get(client_id)

    def list_clients(self) -> list[OAuthClient]:
        with self._lock:
            return list(self._clients.values())

    def require_redirect(self, client_id: str, redirect_uri: str) -> OAuthClient:
        """Return the client if it exists and allows *redirect_uri*.

        Raises
        ------
        OAuthError
            ``invalid_client`` for an unknown client, ``invalid_request``
            for a redirect URI the client did not register.
        """
        client = self.get(client_id)
        if client is None:
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT)
        if not client.allows_redirect(redirect_uri):
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Invalid redirect_uri")
        return client

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)


def _validate_redirect_uri(uri: str) -> None:
    parsed = urllib.parse.urlparse(uri)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Redirect URI must be an absolute http(s) URI: {uri!r}")
    if parsed.fragment:
        raise ValueError(f"Redirect URI must not contain a fragment: {uri!r}")
