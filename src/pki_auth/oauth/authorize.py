"""The ``/authorize`` step and authorization server metadata.

``/authorize`` does not authenticate anyone itself. It validates the
client and redirect URI and hands the request parameters on to the
certificate-selection surface, which runs the challenge/sign flow.
"""
from __future__ import annotations

import urllib.parse
from dataclasses import dataclass

from pki_auth.oauth.clients import ClientRegistry
from pki_auth.oauth.errors import OAuthError, OAuthErrorCode
from pki_auth.oauth.pkce import CodeChallengeMethod, parse_method


@dataclass(frozen=True)
class AuthorizeRequest:
    """Validated ``/authorize`` query parameters."""

    client_id: str
    redirect_uri: str
    scope: str = ""
    state: str = ""
    code_challenge: str | None = None
    code_challenge_method: CodeChallengeMethod | None = None

    def to_query(self) -> dict[str, str]:
        query = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": self.state,
        }
        if self.code_challenge:
            query["code_challenge"] = self.code_challenge
            method = self.code_challenge_method or CodeChallengeMethod.S256
            query["code_challenge_method"] = method.value
        return query


def validate_authorize_request(
    clients: ClientRegistry, params: dict[str, str]
) -> AuthorizeRequest:
    """Check ``/authorize`` parameters against the client registry.

    Raises
    ------
    OAuthError
        ``invalid_request`` for missing parameters or a bad redirect URI,
        ``unsupported_response_type`` unless ``response_type=code``,
        ``invalid_client`` for an unknown client.
    """
    client_id = params.get("client_id", "")
    redirect_uri = params.get("redirect_uri", "")
    if not client_id or not redirect_uri:
        raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Missing required parameters")
    if params.get("response_type") != "code":
        raise OAuthError(OAuthErrorCode.UNSUPPORTED_RESPONSE_TYPE)

    client = clients.require_redirect(client_id, redirect_uri)

    code_challenge = params.get("code_challenge") or None
    method = None
    if code_challenge:
        try:
            method = parse_method(params.get("code_challenge_method"))
        except ValueError as exc:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, str(exc)) from exc
    elif not client.is_confidential:
        raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Public clients must use PKCE")

    return AuthorizeRequest(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=params.get("scope", ""),
        state=params.get("state", ""),
        code_challenge=code_challenge,
        code_challenge_method=method,
    )


def build_surface_redirect(surface_url: str, request: AuthorizeRequest) -> str:
    """Return the certificate-selection URL carrying *request*'s parameters."""
    parts = urllib.parse.urlsplit(surface_url)
    existing = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    query = urllib.parse.urlencode(existing + list(request.to_query().items()))
    return urllib.parse.urlunsplit(parts._replace(query=query))


def build_client_redirect(redirect_uri: str, code: str, state: str = "") -> str:
    """Return *redirect_uri* with ``code`` and ``state`` appended."""
    parts = urllib.parse.urlsplit(redirect_uri)
    existing = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    params = [("code", code)]
    if state:
        params.append(("state", state))
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(existing + params)))


def server_metadata(issuer_url: str) -> dict[str, object]:
    """RFC 8414 authorization server metadata for *issuer_url*."""
    base = issuer_url.rstrip("/")
    return {
        "issuer": base,
        "authorization_endpoint": f"{base}/oauth/authorize",
        "token_endpoint": f"{base}/oauth/token",
        "revocation_endpoint": f"{base}/oauth/revoke",
        "introspection_endpoint": f"{base}/oauth/introspect",
        "userinfo_endpoint": f"{base}/oauth/userinfo",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": [m.value for m in CodeChallengeMethod],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "none"],
        "scopes_supported": ["openid", "profile", "email"],
    }
