"""OAuth2 authorization-code grant with PKCE, bound to certificate login."""
from __future__ import annotations

from pki_auth.oauth.authorize import (
    AuthorizeRequest,
    build_client_redirect,
    build_surface_redirect,
    server_metadata,
    validate_authorize_request,
)
from pki_auth.oauth.clients import ClientRegistry, OAuthClient
from pki_auth.oauth.codes import AuthorizationCode, AuthorizationCodeStore
from pki_auth.oauth.errors import OAuthError, OAuthErrorCode
from pki_auth.oauth.pkce import (
    CodeChallengeMethod,
    compute_code_challenge,
    generate_code_verifier,
    verify_code_verifier,
)
from pki_auth.oauth.tokens import TokenRecord, TokenResponse, TokenService, TokenStore

__all__ = [
    "AuthorizationCode",
    "AuthorizationCodeStore",
    "AuthorizeRequest",
    "ClientRegistry",
    "CodeChallengeMethod",
    "OAuthClient",
    "OAuthError",
    "OAuthErrorCode",
    "TokenRecord",
    "TokenResponse",
    "TokenService",
    "TokenStore",
    "build_client_redirect",
    "build_surface_redirect",
    "compute_code_challenge",
    "generate_code_verifier",
    "server_metadata",
    "validate_authorize_request",
    "verify_code_verifier",
]
