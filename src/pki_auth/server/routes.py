"""Route handler functions for the pki-auth HTTP server.

Each function accepts the :class:`ServerContext` and parsed request data
and returns a tuple of (status_code, response_dict). The HTTP handler in
app.py calls these functions and serializes the results. A 302 result
carries its target in ``response_dict["location"]``.
"""
from __future__ import annotations

import dataclasses
import hmac
import logging
import math

from pydantic import ValidationError

from pki_auth import __version__
from pki_auth.certificates.ca import (
    DEFAULT_INTERMEDIATE_SUBJECT,
    DEFAULT_ROOT_SUBJECT,
    bootstrap_ca,
)
from pki_auth.certificates.errors import CAAlreadyInitializedError, CANotInitializedError
from pki_auth.certificates.store import NOT_INITIALIZED, CAMaterial
from pki_auth.issuance import IssuanceError, IssuanceRequest, IssuanceResult
from pki_auth.oauth.authorize import (
    build_client_redirect,
    build_surface_redirect,
    server_metadata,
    validate_authorize_request,
)
from pki_auth.oauth.errors import OAuthError, OAuthErrorCode
from pki_auth.oauth.pkce import parse_method
from pki_auth.oauth.tokens import TokenRecord
from pki_auth.registry.certificate_registry import CertificateNotFoundError
from pki_auth.registry.records import CertificateRecord
from pki_auth.server.context import ServerContext
from pki_auth.server.models import (
    CAInitRequest,
    CAInitResponse,
    CertificateListQuery,
    ChallengeResponse,
    ErrorResponse,
    HealthResponse,
    IssueCertificateRequest,
    IssueCertificateResponse,
    LoginUser,
    RegisterClientRequest,
    RenewCertificateRequest,
    RevokeCertificateRequest,
    TokenParam,
    TokenRequest,
    UserInfoResponse,
    VerifyAndLoginRequest,
    VerifyAndLoginResponse,
)

logger = logging.getLogger(__name__)

RouteResult = tuple[int, dict[str, object]]

# Every trust failure gets this exact body.
_AUTH_FAILED: dict[str, object] = {"error": "authentication_failed"}


def _validation_error(exc: ValidationError) -> RouteResult:
    return 422, ErrorResponse(error="Validation error", detail=str(exc)).model_dump()


def _oauth_error(exc: OAuthError) -> RouteResult:
    return exc.http_status, dict(exc.to_dict())


def _ca_not_initialized(exc: CANotInitializedError) -> RouteResult:
    return 503, ErrorResponse(error="ca_not_initialized", detail=str(exc)).model_dump()


def _check_admin(ctx: ServerContext, admin_secret: str | None) -> RouteResult | None:
    expected = ctx.config.admin_secret
    if not expected:
        return 403, ErrorResponse(
            error="Forbidden", detail="Admin endpoints are disabled (no admin secret configured)."
        ).model_dump()
    if admin_secret is None or not hmac.compare_digest(
        expected.encode("utf-8"), admin_secret.encode("utf-8")
    ):
        return 401, ErrorResponse(error="Unauthorized").model_dump()
    return None


def _bearer_token(ctx: ServerContext, authorization: str | None) -> TokenRecord | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return ctx.tokens.authenticate_bearer(authorization[len("Bearer "):].strip())


# ── Service ──────────────────────────────────────────────────────────────────


def handle_health(ctx: ServerContext) -> RouteResult:
    """Handle GET /health."""
    response = HealthResponse(
        version=__version__,
        ca_initialized=ctx.ca_store.is_initialized(),
        certificate_count=len(ctx.certificates),
    )
    return 200, response.model_dump()


def handle_ca_chain(ctx: ServerContext) -> RouteResult:
    """Handle GET /ca/chain: the public root and intermediate certificates."""
    material = ctx.ca_store.load()
    if material is NOT_INITIALIZED:
        return _ca_not_initialized(CANotInitializedError())
    assert isinstance(material, CAMaterial)
    return 200, {
        "root": material.root_cert_pem,
        "intermediate": material.intermediate_cert_pem,
    }


# ── Certificate login ────────────────────────────────────────────────────────


def handle_challenge(ctx: ServerContext) -> RouteResult:
    """Handle GET|POST /auth/challenge."""
    challenge = ctx.challenges.issue()
    response = ChallengeResponse(
        challenge=challenge.value, expires_at=challenge.expires_at.isoformat()
    )
    return 200, response.to_wire()


def handle_verify_and_login(ctx: ServerContext, body: dict[str, object]) -> RouteResult:
    """Handle POST /auth/verify-and-login.

    Malformed requests and unknown clients get specific errors. Every
    trust failure gets the same opaque 401 body; the reason is logged
    server-side by the login binder.

    Parameters
    ----------
    ctx:
        Server services.
    body:
        Parsed request body.

    Returns
    -------
    tuple[int, dict[str, object]]
        HTTP status code and response dictionary.
    """
    try:
        request = VerifyAndLoginRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    method = None
    if request.code_challenge:
        try:
            method = parse_method(request.code_challenge_method)
        except ValueError as exc:
            return 400, {"error": OAuthErrorCode.INVALID_REQUEST.value, "error_description": str(exc)}

    try:
        result = ctx.login.verify_and_login(
            challenge=request.challenge,
            signature=request.signature,
            serial_number=request.certificate_serial_number,
            client_id=request.client_id,
            redirect_uri=request.redirect_uri,
            scope=request.scope,
            code_challenge=request.code_challenge,
            code_challenge_method=method,
        )
    except OAuthError as exc:
        return _oauth_error(exc)

    if not result.success or result.code is None or result.user is None:
        return 401, dict(_AUTH_FAILED)

    response = VerifyAndLoginResponse(
        code=result.code.code,
        state=request.state,
        redirect_url=build_client_redirect(request.redirect_uri, result.code.code, request.state),
        user=LoginUser(id=result.user.user_id, name=result.user.name, email=result.user.email),
    )
    return 200, response.to_wire()


# ── Issuance ─────────────────────────────────────────────────────────────────


def _issued_response(result: IssuanceResult) -> dict[str, object]:
    return IssueCertificateResponse(
        user_id=result.user_id,
        serial_number=result.serial_number,
        subject_dn=result.subject_dn,
        issuer_dn=result.issuer_dn,
        not_before=result.not_before.isoformat(),
        not_after=result.not_after.isoformat(),
        public_key_pem=result.public_key_pem,
        p12_base64=result.p12_base64,
        renewed_from=result.renewed_from,
    ).to_wire()


def handle_issue_certificate(
    ctx: ServerContext, body: dict[str, object], admin_secret: str | None = None
) -> RouteResult:
    """Handle POST /certificates/issue.

    Returns 201 with the certificate fields and base64 PKCS#12 bundle,
    400 for caller errors and 503 while the CA is not initialized.
    ``userId`` binds the certificate to an existing user and is only
    accepted with a valid ``X-Admin-Secret`` (403 otherwise).
    """
    try:
        request = IssueCertificateRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    if request.user_id is not None and _check_admin(ctx, admin_secret) is not None:
        logger.warning("Rejected issuance for userId %s without admin secret", request.user_id)
        return 403, ErrorResponse(
            error="Forbidden", detail="userId may only be set by an administrator"
        ).model_dump()

    issuance_request = IssuanceRequest(
        common_name=request.common_name,
        email=request.email,
        organization=request.organization,
        country=request.country,
        validity_years=request.validity_years,
        user_id=request.user_id,
    )
    try:
        result = ctx.issuance.issue(issuance_request, request.password)
    except IssuanceError as exc:
        return 400, ErrorResponse(error="invalid_request", detail=str(exc)).model_dump()
    except CANotInitializedError as exc:
        return _ca_not_initialized(exc)
    return 201, _issued_response(result)


def handle_renew_certificate(
    ctx: ServerContext, body: dict[str, object], admin_secret: str | None = None
) -> RouteResult:
    """Handle POST /certificates/renew.

    An administrator may renew any certificate. Anyone else must sign a
    fresh challenge with the certificate being renewed; a failed proof
    gets the opaque 401. Revoked and already renewed certificates are
    refused with 400.
    """
    try:
        request = RenewCertificateRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    if _check_admin(ctx, admin_secret) is not None:
        if not request.challenge or not request.signature:
            return 401, dict(_AUTH_FAILED)
        record = ctx.login.verify_possession(
            request.challenge, request.signature, request.serial_number
        )
        if record is None:
            return 401, dict(_AUTH_FAILED)

    try:
        result = ctx.issuance.renew(
            request.serial_number, request.password, validity_years=request.validity_years
        )
    except CertificateNotFoundError:
        return 404, ErrorResponse(error="Not found", detail="Unknown serial number").model_dump()
    except IssuanceError as exc:
        return 400, ErrorResponse(error="invalid_request", detail=str(exc)).model_dump()
    except CANotInitializedError as exc:
        return _ca_not_initialized(exc)
    return 201, _issued_response(result)


# ── Certificate listings ─────────────────────────────────────────────────────


def _certificate_with_owner(ctx: ServerContext, record: CertificateRecord) -> dict[str, object]:
    data = record.to_dict()
    owner = ctx.users.find(record.user_id)
    data["user"] = (
        {"id": owner.user_id, "name": owner.name, "email": owner.email} if owner else None
    )
    return data


def _caller_user_id(
    ctx: ServerContext, authorization: str | None, admin_secret: str | None
) -> tuple[str | None, RouteResult | None]:
    """Return (None, None) for an administrator, (user_id, None) for a bearer, or an error."""
    if admin_secret is not None and _check_admin(ctx, admin_secret) is None:
        return None, None
    token = _bearer_token(ctx, authorization)
    if token is None:
        return None, (401, {"error": "invalid_token"})
    return token.user_id, None


def handle_user_certificates(
    ctx: ServerContext,
    user_id: str,
    authorization: str | None,
    admin_secret: str | None = None,
) -> RouteResult:
    """Handle GET /users/<user_id>/certificates.

    The bearer token must belong to *user_id* (``me`` names the token's
    own user), or the caller must send ``X-Admin-Secret``.
    """
    caller, denied = _caller_user_id(ctx, authorization, admin_secret)
    if denied is not None:
        return denied
    if user_id == "me" and caller is not None:
        user_id = caller
    if caller is not None and caller != user_id:
        return 403, ErrorResponse(error="Forbidden").model_dump()
    if ctx.users.find(user_id) is None:
        return 404, ErrorResponse(error="Not found", detail="Unknown user").model_dump()
    records = ctx.certificates.list_for_user(user_id)
    return 200, {"certificates": [record.to_dict() for record in records]}


def handle_certificate_detail(
    ctx: ServerContext,
    serial_number: str,
    authorization: str | None,
    admin_secret: str | None = None,
) -> RouteResult:
    """Handle GET /certificates/<serial>: the owner or an administrator."""
    caller, denied = _caller_user_id(ctx, authorization, admin_secret)
    if denied is not None:
        return denied
    record = ctx.certificates.find(serial_number)
    if record is None or (caller is not None and record.user_id != caller):
        return 404, ErrorResponse(error="Not found", detail="Unknown serial number").model_dump()
    return 200, {"certificate": _certificate_with_owner(ctx, record)}


def handle_list_certificates(
    ctx: ServerContext, params: dict[str, str], admin_secret: str | None
) -> RouteResult:
    """Handle GET /admin/certificates?status=&page=&limit=."""
    denied = _check_admin(ctx, admin_secret)
    if denied is not None:
        return denied
    try:
        query = CertificateListQuery.model_validate(params)
    except ValidationError as exc:
        return _validation_error(exc)

    records = ctx.certificates.list_all(status=query.status)
    start = (query.page - 1) * query.limit
    page = records[start:start + query.limit]
    return 200, {
        "certificates": [_certificate_with_owner(ctx, record) for record in page],
        "pagination": {
            "page": query.page,
            "limit": query.limit,
            "total": len(records),
            "totalPages": math.ceil(len(records) / query.limit),
        },
    }


# ── Admin ────────────────────────────────────────────────────────────────────


def handle_ca_init(
    ctx: ServerContext, body: dict[str, object], admin_secret: str | None
) -> RouteResult:
    """Handle POST /admin/ca/init (header ``X-Admin-Secret``).

    Key generation runs on the shared key-generation worker, so it never
    overlaps a user issuance.
    """
    denied = _check_admin(ctx, admin_secret)
    if denied is not None:
        return denied
    try:
        request = CAInitRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    root_subject, intermediate_subject = DEFAULT_ROOT_SUBJECT, DEFAULT_INTERMEDIATE_SUBJECT
    overrides = {
        key: value
        for key, value in (("organization", request.organization), ("country", request.country))
        if value
    }
    if overrides:
        root_subject = dataclasses.replace(root_subject, **overrides)
        intermediate_subject = dataclasses.replace(intermediate_subject, **overrides)

    future = ctx.worker.submit(
        bootstrap_ca,
        ctx.ca_store,
        cache=ctx.signing_keys,
        root_subject=root_subject,
        intermediate_subject=intermediate_subject,
        key_size=ctx.ca_key_size,
        force=request.force,
    )
    try:
        result = future.result()
    except CAAlreadyInitializedError as exc:
        return 409, ErrorResponse(error="Conflict", detail=str(exc)).model_dump()

    ctx.audit.log_ca_initialized(result.root.serial_number, result.intermediate.serial_number)
    response = CAInitResponse(
        root_serial_number=result.root.serial_number,
        intermediate_serial_number=result.intermediate.serial_number,
        root_subject_dn=result.root.subject_dn,
        intermediate_subject_dn=result.intermediate.subject_dn,
    )
    return 201, response.to_wire()


def handle_register_client(
    ctx: ServerContext, body: dict[str, object], admin_secret: str | None
) -> RouteResult:
    """Handle POST /admin/clients. The secret is returned once, here."""
    denied = _check_admin(ctx, admin_secret)
    if denied is not None:
        return denied
    try:
        request = RegisterClientRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)
    try:
        client = ctx.clients.register(
            name=request.name,
            redirect_uris=request.redirect_uris,
            confidential=request.confidential,
        )
    except ValueError as exc:
        return 400, ErrorResponse(error="invalid_request", detail=str(exc)).model_dump()
    ctx.audit.record("OAUTH_CLIENT_REGISTERED", client_id=client.client_id, name=client.name)
    return 201, client.to_dict(include_secret=True)


def handle_revoke_certificate(
    ctx: ServerContext, body: dict[str, object], admin_secret: str | None
) -> RouteResult:
    """Handle POST /admin/certificates/revoke."""
    denied = _check_admin(ctx, admin_secret)
    if denied is not None:
        return denied
    try:
        request = RevokeCertificateRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)
    try:
        record = ctx.certificates.revoke(request.serial_number)
    except CertificateNotFoundError:
        return 404, ErrorResponse(error="Not found", detail="Unknown serial number").model_dump()
    ctx.audit.log_certificate_revoked(record.user_id, record.serial_number)
    return 200, record.to_dict()


# ── OAuth2 ───────────────────────────────────────────────────────────────────


def handle_authorize(ctx: ServerContext, params: dict[str, str]) -> RouteResult:
    """Handle GET /oauth/authorize: 302 to the certificate surface."""
    try:
        request = validate_authorize_request(ctx.clients, params)
    except OAuthError as exc:
        return _oauth_error(exc)
    return 302, {"location": build_surface_redirect(ctx.config.surface_url, request)}


def handle_token(ctx: ServerContext, body: dict[str, object]) -> RouteResult:
    """Handle POST /oauth/token."""
    try:
        request = TokenRequest.model_validate(body)
    except ValidationError as exc:
        return 400, {"error": OAuthErrorCode.INVALID_REQUEST.value, "error_description": str(exc)}
    try:
        response = ctx.tokens.exchange(
            grant_type=request.grant_type,
            client_id=request.client_id,
            client_secret=request.client_secret,
            code=request.code,
            redirect_uri=request.redirect_uri,
            code_verifier=request.code_verifier,
            refresh_token=request.refresh_token,
        )
    except OAuthError as exc:
        return _oauth_error(exc)
    return 200, response.to_dict()


def handle_introspect(ctx: ServerContext, body: dict[str, object]) -> RouteResult:
    """Handle POST /oauth/introspect. Anything unusable is ``{"active": false}``."""
    try:
        request = TokenParam.model_validate(body)
    except ValidationError:
        return 200, {"active": False}
    return 200, ctx.tokens.introspect(request.token)


def handle_revoke(ctx: ServerContext, body: dict[str, object]) -> RouteResult:
    """Handle POST /oauth/revoke. Always 200, per RFC 7009."""
    try:
        request = TokenParam.model_validate(body)
    except ValidationError:
        return 200, {}
    ctx.tokens.revoke(request.token)
    return 200, {}


def handle_userinfo(ctx: ServerContext, authorization: str | None) -> RouteResult:
    """Handle GET|POST /oauth/userinfo (Bearer access token)."""
    if not authorization or not authorization.startswith("Bearer "):
        return 401, {"error": "invalid_token", "error_description": "Missing Bearer token"}
    record = _bearer_token(ctx, authorization)
    if record is None:
        return 401, {"error": "invalid_token"}
    user = ctx.users.find(record.user_id)
    if user is None:
        return 401, {"error": "invalid_token"}

    certificate = ctx.certificates.latest_for_user(user.user_id)
    response = UserInfoResponse(
        sub=user.user_id,
        name=user.name,
        email=user.email,
        certificate_id=certificate.serial_number if certificate else None,
        certificate_status=certificate.status.value if certificate else None,
        certificate_expires=certificate.not_after.isoformat() if certificate else None,
    )
    return 200, response.model_dump()


def handle_metadata(ctx: ServerContext) -> RouteResult:
    """Handle GET /.well-known/oauth-authorization-server."""
    return 200, server_metadata(ctx.config.issuer_url)


__all__ = [
    "RouteResult",
    "handle_authorize",
    "handle_ca_chain",
    "handle_ca_init",
    "handle_certificate_detail",
    "handle_challenge",
    "handle_health",
    "handle_introspect",
    "handle_issue_certificate",
    "handle_list_certificates",
    "handle_metadata",
    "handle_register_client",
    "handle_renew_certificate",
    "handle_revoke",
    "handle_revoke_certificate",
    "handle_token",
    "handle_user_certificates",
    "handle_userinfo",
    "handle_verify_and_login",
]
