"""OAuth2 error codes and the exception that carries them."""
from __future__ import annotations

import enum


class OAuthErrorCode(str, enum.Enum):
    """RFC 6749 section 5.2 error codes used by this server."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    INVALID_TOKEN = "invalid_token"


# invalid_client is 401 per RFC 6749; everything else is a 400.
_HTTP_STATUS = {
    OAuthErrorCode.INVALID_CLIENT: 401,
    OAuthErrorCode.INVALID_TOKEN: 401,
}


class OAuthError(Exception):
    """An OAuth2 protocol error.

    Parameters
    ----------
    code:
        The error code returned to the client.
    description:
        Optional ``error_description``. Must not reveal why a grant was
        rejected beyond what the client already knows.
    """

    def __init__(self, code: OAuthErrorCode, description: str = "") -> None:
        self.code = code
        self.description = description
        super().__init__(f"{code.value}: {description}" if description else code.value)

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self.code, 400)

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.code.value}
        if self.description:
            body["error_description"] = self.description
        return body
