"""Cross-window handshake between a relying page and the certificate surface."""
from __future__ import annotations

from pki_auth.handshake.messages import (
    AuthErrorPayload,
    AuthRequestPayload,
    AuthResponsePayload,
    CancelMessage,
    ErrorMessage,
    HandshakeProtocolError,
    MessageType,
    RequestMessage,
    ResponseMessage,
    parse_message,
)
from pki_auth.handshake.origin import OriginPolicy, normalize_origin
from pki_auth.handshake.session import (
    POPUP_CLOSE_DELAY_SECONDS,
    EmbedderSession,
    EmbedderStatus,
    SurfaceAuthError,
    SurfaceContext,
    SurfaceReply,
    SurfaceSession,
    detect_surface_context,
)

__all__ = [
    "AuthErrorPayload",
    "AuthRequestPayload",
    "AuthResponsePayload",
    "CancelMessage",
    "EmbedderSession",
    "EmbedderStatus",
    "ErrorMessage",
    "HandshakeProtocolError",
    "MessageType",
    "OriginPolicy",
    "POPUP_CLOSE_DELAY_SECONDS",
    "RequestMessage",
    "ResponseMessage",
    "SurfaceAuthError",
    "SurfaceContext",
    "SurfaceReply",
    "SurfaceSession",
    "detect_surface_context",
    "normalize_origin",
    "parse_message",
]
