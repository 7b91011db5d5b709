"""Typed envelopes for the cross-window authentication handshake.

The embedding page and the embedded certificate surface exchange
``{type, payload}`` messages over ``postMessage``. Each ``type`` has its
own payload model, and :func:`parse_message` rejects anything that does
not fit one of them before it reaches session logic.

Wire field names are camelCase (``clientId``, ``redirectUri``); Python
attributes are snake_case.
"""
from __future__ import annotations

import enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class HandshakeProtocolError(ValueError):
    """Raised for a message that is not a valid handshake envelope."""


class MessageType(str, enum.Enum):
    REQUEST = "PKI_AUTH_REQUEST"
    RESPONSE = "PKI_AUTH_RESPONSE"
    ERROR = "PKI_AUTH_ERROR"
    CANCEL = "PKI_AUTH_CANCEL"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class AuthRequestPayload(_WireModel):
    """What the embedding page asks the surface to do."""

    client_id: str = Field(min_length=1)
    redirect_uri: str = Field(min_length=1)
    scope: str = ""
    state: str = ""
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class AuthResponsePayload(_WireModel):
    code: str = Field(min_length=1)
    state: str = ""


class AuthErrorPayload(_WireModel):
    error: str = Field(min_length=1)
    error_description: Optional[str] = None
    state: str = ""


class CancelPayload(_WireModel):
    state: str = ""


class RequestMessage(_WireModel):
    type: Literal["PKI_AUTH_REQUEST"] = "PKI_AUTH_REQUEST"
    payload: AuthRequestPayload
    request_id: Optional[str] = None


class ResponseMessage(_WireModel):
    type: Literal["PKI_AUTH_RESPONSE"] = "PKI_AUTH_RESPONSE"
    payload: AuthResponsePayload
    request_id: Optional[str] = None


class ErrorMessage(_WireModel):
    type: Literal["PKI_AUTH_ERROR"] = "PKI_AUTH_ERROR"
    payload: AuthErrorPayload
    request_id: Optional[str] = None


class CancelMessage(_WireModel):
    type: Literal["PKI_AUTH_CANCEL"] = "PKI_AUTH_CANCEL"
    payload: CancelPayload = Field(default_factory=CancelPayload)
    request_id: Optional[str] = None


HandshakeMessage = Annotated[
    Union[RequestMessage, ResponseMessage, ErrorMessage, CancelMessage],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[HandshakeMessage] = TypeAdapter(HandshakeMessage)


def parse_message(data: object) -> RequestMessage | ResponseMessage | ErrorMessage | CancelMessage:
    """Validate a raw ``postMessage`` payload into a typed envelope.

    Raises
    ------
    HandshakeProtocolError
        If *data* is not a mapping or matches no envelope type.
    """
    if not isinstance(data, dict):
        raise HandshakeProtocolError(f"Handshake message must be an object, got {type(data).__name__}")
    try:
        return _ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise HandshakeProtocolError(f"Invalid handshake message: {exc}") from exc
