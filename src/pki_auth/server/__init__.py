"""HTTP server for certificate login, issuance and the OAuth2 endpoints."""
from __future__ import annotations

from pki_auth.server.app import PkiAuthHTTPServer, create_server, run_server
from pki_auth.server.context import ServerContext

__all__ = ["PkiAuthHTTPServer", "ServerContext", "create_server", "run_server"]
