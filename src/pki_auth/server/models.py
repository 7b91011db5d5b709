"""Pydantic request/response models for the pki-auth HTTP server.

Browser-facing endpoints use camelCase on the wire; the OAuth endpoints
use the snake_case parameter names of RFC 6749.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from pki_auth.registry.records import CertificateStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, mode="json")


class ChallengeResponse(_CamelModel):
    """Response body for GET|POST /auth/challenge."""

    challenge: str
    expires_at: str


class VerifyAndLoginRequest(_CamelModel):
    """Request body for POST /auth/verify-and-login."""

    challenge: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    certificate_serial_number: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    redirect_uri: str = Field(min_length=1)
    scope: str = ""
    state: str = ""
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class LoginUser(_CamelModel):
    id: str
    name: str
    email: str = ""


class VerifyAndLoginResponse(_CamelModel):
    """Response body for POST /auth/verify-and-login.

    ``redirectUrl`` is the client redirect URI carrying ``code`` and
    ``state``, for a surface running as a standalone page.
    """

    success: bool = True
    code: str
    state: str = ""
    redirect_url: str
    user: LoginUser


class IssueCertificateRequest(_CamelModel):
    """Request body for POST /certificates/issue.

    ``password`` only encrypts the returned PKCS#12 bundle.
    """

    common_name: str = Field(min_length=1)
    password: str
    email: str = ""
    organization: str = ""
    country: str = ""
    validity_years: int = 1
    user_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class IssueCertificateResponse(_CamelModel):
    """Response body for POST /certificates/issue."""

    user_id: str
    serial_number: str
    subject_dn: str = Field(alias="subjectDN")
    issuer_dn: str = Field(alias="issuerDN")
    not_before: str
    not_after: str
    public_key_pem: str
    p12_base64: str = Field(alias="p12Base64")
    renewed_from: Optional[str] = None


class RenewCertificateRequest(_CamelModel):
    """Request body for POST /certificates/renew.

    Without ``X-Admin-Secret`` the caller proves possession of the
    certificate being renewed by signing a fresh challenge.
    """

    serial_number: str = Field(min_length=1)
    password: str
    validity_years: int = 1
    challenge: Optional[str] = None
    signature: Optional[str] = None


class CAInitRequest(_CamelModel):
    """Request body for POST /admin/ca/init."""

    force: bool = False
    organization: Optional[str] = None
    country: Optional[str] = None


class CAInitResponse(_CamelModel):
    root_serial_number: str
    intermediate_serial_number: str
    root_subject_dn: str = Field(alias="rootSubjectDN")
    intermediate_subject_dn: str = Field(alias="intermediateSubjectDN")


class RegisterClientRequest(_CamelModel):
    """Request body for POST /admin/clients."""

    name: str = Field(min_length=1)
    redirect_uris: list[str] = Field(min_length=1)
    confidential: bool = True


class RevokeCertificateRequest(_CamelModel):
    serial_number: str = Field(min_length=1)


class CertificateListQuery(BaseModel):
    """Query parameters for GET /admin/certificates."""

    status: Optional[CertificateStatus] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class TokenRequest(BaseModel):
    """Form or JSON body for POST /oauth/token."""

    grant_type: str = ""
    client_id: str = ""
    client_secret: Optional[str] = None
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    refresh_token: Optional[str] = None


class TokenParam(BaseModel):
    """Body for POST /oauth/introspect and /oauth/revoke."""

    token: str = ""
    token_type_hint: Optional[str] = None


class UserInfoResponse(BaseModel):
    sub: str
    name: str
    email: str = ""
    certificate_id: Optional[str] = None
    certificate_status: Optional[str] = None
    certificate_expires: Optional[str] = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = "ok"
    service: str = "pki-auth"
    version: str = "0.1.0"
    ca_initialized: bool = False
    certificate_count: int = 0


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str = ""


__all__ = [
    "CAInitRequest",
    "CAInitResponse",
    "CertificateListQuery",
    "ChallengeResponse",
    "ErrorResponse",
    "HealthResponse",
    "IssueCertificateRequest",
    "IssueCertificateResponse",
    "LoginUser",
    "RegisterClientRequest",
    "RenewCertificateRequest",
    "RevokeCertificateRequest",
    "TokenParam",
    "TokenRequest",
    "UserInfoResponse",
    "VerifyAndLoginRequest",
    "VerifyAndLoginResponse",
]
