"""HTTP server for pki-auth using stdlib http.server.

Routes:
    GET       /health                                — health check
    GET       /ca/chain                              — public CA certificates
    GET|POST  /auth/challenge                        — issue a login challenge
    POST      /auth/verify-and-login                 — verify signature, mint code
    POST      /certificates/issue                    — issue a user certificate
    POST      /certificates/renew                    — renew a certificate
    GET       /certificates/<serial>                 — certificate detail (owner or admin)
    GET       /users/<id>/certificates               — a user's certificates (owner or admin)
    GET       /admin/certificates                    — paginated certificate listing
    POST      /admin/ca/init                         — bootstrap the CA
    POST      /admin/clients                         — register an OAuth client
    POST      /admin/certificates/revoke             — revoke a certificate
    GET       /oauth/authorize                       — redirect to the certificate surface
    POST      /oauth/token                           — code / refresh token exchange
    POST      /oauth/introspect                      — token introspection
    POST      /oauth/revoke                          — token revocation
    GET|POST  /oauth/userinfo                        — bearer-protected user info
    GET       /.well-known/oauth-authorization-server — server metadata

Usage:
    pki-auth serve --port 8080
"""
from __future__ import annotations

import json
import logging
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from pki_auth.server import routes
from pki_auth.server.context import ServerContext

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_MAX_BODY_BYTES = 1024 * 1024


class PkiAuthHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server that carries the shared :class:`ServerContext`."""

    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], context: ServerContext) -> None:
        self.context = context
        super().__init__(server_address, PkiAuthHandler)


class PkiAuthHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the pki-auth server.

    Request bodies may be JSON or form-encoded; responses are JSON except
    for the ``/oauth/authorize`` redirect.
    """

    server: PkiAuthHTTPServer
    server_version = "pki-auth"

    def log_message(self, format: str, *args: object) -> None:
        """Override to route access logs through the Python logging system."""
        logger.debug(format, *args)

    @property
    def context(self) -> ServerContext:
        return self.server.context

    # ── GET ───────────────────────────────────────────────────────────────────

    def do_GET(self) -> None:
        """Handle all GET requests by routing on the URL path."""
        parsed = urllib.parse.urlparse(self.path)
        path = parsed.path.rstrip("/")
        ctx = self.context
        params = {k: v[0] for k, v in urllib.parse.parse_qs(parsed.query).items()}
        authorization = self.headers.get("Authorization")
        admin_secret = self.headers.get("X-Admin-Secret")
        segments = path.strip("/").split("/")

        if path == "/health":
            self._send_result(routes.handle_health(ctx))
        elif path == "/ca/chain":
            self._send_result(routes.handle_ca_chain(ctx))
        elif path == "/auth/challenge":
            self._send_result(routes.handle_challenge(ctx))
        elif path == "/admin/certificates":
            self._send_result(routes.handle_list_certificates(ctx, params, admin_secret))
        elif len(segments) == 2 and segments[0] == "certificates":
            self._send_result(
                routes.handle_certificate_detail(ctx, segments[1], authorization, admin_secret)
            )
        elif len(segments) == 3 and segments[0] == "users" and segments[2] == "certificates":
            user_id = urllib.parse.unquote(segments[1])
            self._send_result(
                routes.handle_user_certificates(ctx, user_id, authorization, admin_secret)
            )
        elif path == "/oauth/authorize":
            self._send_result(routes.handle_authorize(ctx, params))
        elif path == "/oauth/userinfo":
            self._send_result(routes.handle_userinfo(ctx, authorization))
        elif path == "/.well-known/oauth-authorization-server":
            self._send_result(routes.handle_metadata(ctx))
        else:
            self._send_json(404, {"error": "Not found", "detail": f"No route for GET {path}"})

    # ── POST ──────────────────────────────────────────────────────────────────

    def do_POST(self) -> None:
        """Handle all POST requests by routing on the URL path."""
        parsed = urllib.parse.urlparse(self.path)
        path = parsed.path.rstrip("/")
        ctx = self.context

        body = self._read_body()
        if body is None:
            return
        admin_secret = self.headers.get("X-Admin-Secret")

        if path == "/auth/challenge":
            result = routes.handle_challenge(ctx)
        elif path == "/auth/verify-and-login":
            result = routes.handle_verify_and_login(ctx, body)
        elif path == "/certificates/issue":
            result = routes.handle_issue_certificate(ctx, body, admin_secret)
        elif path == "/certificates/renew":
            result = routes.handle_renew_certificate(ctx, body, admin_secret)
        elif path == "/admin/ca/init":
            result = routes.handle_ca_init(ctx, body, admin_secret)
        elif path == "/admin/clients":
            result = routes.handle_register_client(ctx, body, admin_secret)
        elif path == "/admin/certificates/revoke":
            result = routes.handle_revoke_certificate(ctx, body, admin_secret)
        elif path == "/oauth/token":
            result = routes.handle_token(ctx, body)
        elif path == "/oauth/introspect":
            result = routes.handle_introspect(ctx, body)
        elif path == "/oauth/revoke":
            result = routes.handle_revoke(ctx, body)
        elif path == "/oauth/userinfo":
            result = routes.handle_userinfo(ctx, self.headers.get("Authorization"))
        else:
            result = 404, {"error": "Not found", "detail": f"No route for POST {path}"}
        self._send_result(result)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _send_result(self, result: routes.RouteResult) -> None:
        status, data = result
        if status in (301, 302, 303) and "location" in data:
            self.send_response(status)
            self.send_header("Location", str(data["location"]))
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        self._send_json(status, data)

    def _send_json(self, status: int, data: dict[str, object]) -> None:
        """Serialize *data* to JSON and send an HTTP response with *status*."""
        body = json.dumps(data, default=str, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def _read_body(self) -> dict[str, object] | None:
        """Read and parse a JSON or form-encoded request body.

        Returns None (and sends a 400 or 413 error response) if the body
        cannot be used.
        """
        try:
            content_length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            self._send_json(400, {"error": "Invalid Content-Length"})
            return None
        if content_length == 0:
            return {}
        if content_length > _MAX_BODY_BYTES:
            self._send_json(413, {"error": "Request body too large"})
            return None

        raw = self.rfile.read(content_length)
        content_type = self.headers.get("Content-Type", "").split(";")[0].strip().lower()
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            self._send_json(400, {"error": "Invalid body encoding", "detail": str(exc)})
            return None

        if content_type == _FORM_CONTENT_TYPE:
            return {k: v[0] for k, v in urllib.parse.parse_qs(text).items()}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            self._send_json(400, {"error": "Invalid JSON", "detail": str(exc)})
            return None
        if not isinstance(parsed, dict):
            self._send_json(400, {"error": "Invalid JSON", "detail": "Body must be an object"})
            return None
        return parsed


def create_server(
    context: ServerContext, host: str = "127.0.0.1", port: int = 8080
) -> PkiAuthHTTPServer:
    """Create (but do not start) the pki-auth HTTP server.

    Parameters
    ----------
    context:
        Services shared by all requests.
    host:
        Bind address (default ``"127.0.0.1"``).
    port:
        TCP port to listen on (default 8080). Pass 0 for an ephemeral port.

    Returns
    -------
    PkiAuthHTTPServer
        A configured server instance ready to call ``serve_forever()`` on.
    """
    server = PkiAuthHTTPServer((host, port), context)
    logger.info("pki-auth server created at http://%s:%d", host, server.server_address[1])
    return server


def run_server(context: ServerContext, host: str = "127.0.0.1", port: int = 8080) -> None:
    """Create and run the pki-auth HTTP server (blocking)."""
    server = create_server(context, host=host, port=port)
    logger.info("Serving pki-auth on http://%s:%d, press Ctrl-C to stop", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down pki-auth server.")
    finally:
        server.server_close()
        context.close()
