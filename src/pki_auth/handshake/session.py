"""Both ends of the cross-window handshake.

:class:`EmbedderSession` is the relying application's page. It sends one
``PKI_AUTH_REQUEST`` with a locally generated ``state`` and accepts one
final message back, only from the authentication server's origin and
only carrying that exact ``state``. Anything else is discarded without
changing the session.

:class:`SurfaceSession` is the certificate-selection page hosted by the
authentication server inside an iframe or popup. It answers a request
with ``PKI_AUTH_RESPONSE`` or ``PKI_AUTH_ERROR``, always echoing the
request's ``state`` unmodified. A popup asks to be closed
:data:`POPUP_CLOSE_DELAY_SECONDS` after its final message.
"""
from __future__ import annotations

import enum
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass

from pki_auth.handshake.messages import (
    AuthErrorPayload,
    AuthRequestPayload,
    AuthResponsePayload,
    CancelMessage,
    ErrorMessage,
    HandshakeProtocolError,
    RequestMessage,
    ResponseMessage,
    parse_message,
)
from pki_auth.handshake.origin import OriginPolicy, normalize_origin

logger = logging.getLogger(__name__)

POPUP_CLOSE_DELAY_SECONDS = 2.0


class SurfaceContext(str, enum.Enum):
    """How the certificate surface is hosted."""

    IFRAME = "iframe"
    POPUP = "popup"
    STANDALONE = "standalone"


def detect_surface_context(is_top_window: bool, has_opener: bool) -> SurfaceContext:
    """Classify the hosting window.

    *is_top_window* is ``window.self === window.top``; *has_opener* is
    ``window.opener != null``. A framed page is an iframe even if it also
    has an opener.
    """
    if not is_top_window:
        return SurfaceContext.IFRAME
    if has_opener:
        return SurfaceContext.POPUP
    return SurfaceContext.STANDALONE


# ---------------------------------------------------------------------------
# Embedding page
# ---------------------------------------------------------------------------


class EmbedderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class EmbedderSession:
    """State of the relying application's page during one handshake.

    Parameters
    ----------
    server_origin:
        Origin of the authentication server's surface. Messages from any
        other origin are ignored.
    client_id, redirect_uri, scope:
        OAuth request parameters.
    code_challenge, code_challenge_method:
        Optional PKCE parameters.
    state:
        Anti-forgery value. Generated when omitted.
    """

    def __init__(
        self,
        server_origin: str,
        client_id: str,
        redirect_uri: str,
        scope: str = "",
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        state: str | None = None,
    ) -> None:
        self._policy = OriginPolicy.single(server_origin)
        self._server_origin = normalize_origin(server_origin)
        self._state = state or secrets.token_urlsafe(16)
        self._request = RequestMessage(
            payload=AuthRequestPayload(
                client_id=client_id,
                redirect_uri=redirect_uri,
                scope=scope,
                state=self._state,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
            ),
            request_id=secrets.token_hex(8),
        )
        self.status = EmbedderStatus.PENDING
        self.code: str | None = None
        self.error: str | None = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def target_origin(self) -> str:
        """The ``targetOrigin`` to pass to ``postMessage``."""
        return self._server_origin

    def build_request(self) -> dict[str, object]:
        """Return the ``PKI_AUTH_REQUEST`` envelope to post to the surface."""
        return self._request.to_wire()

    def handle_message(self, origin: str, data: object) -> bool:
        """Process one incoming message. Return True if it ended the session."""
        if self.status is not EmbedderStatus.PENDING:
            logger.debug("Ignoring message after session ended (%s)", self.status.value)
            return False
        if not self._policy.is_allowed(origin):
            logger.warning("Discarding handshake message from unexpected origin %r", origin)
            return False
        try:
            message = parse_message(data)
        except HandshakeProtocolError as exc:
            logger.warning("Discarding malformed handshake message: %s", exc)
            return False

        if isinstance(message, RequestMessage):
            return False
        if message.payload.state != self._state:
            logger.warning("Discarding handshake message with mismatched state")
            return False

        if isinstance(message, ResponseMessage):
            self.code = message.payload.code
            self.status = EmbedderStatus.COMPLETED
        elif isinstance(message, ErrorMessage):
            self.error = message.payload.error
            self.status = EmbedderStatus.FAILED
        else:
            self.status = EmbedderStatus.CANCELLED
        return True


# ---------------------------------------------------------------------------
# Embedded surface
# ---------------------------------------------------------------------------


class SurfaceAuthError(Exception):
    """Raised by the surface's authenticate callback to report an OAuth error."""

    def __init__(self, error: str, description: str | None = None) -> None:
        self.error = error
        self.description = description
        super().__init__(error if description is None else f"{error}: {description}")


@dataclass(frozen=True)
class SurfaceReply:
    """A message the surface should post, and where."""

    message: dict[str, object]
    target_origin: str
    close_after_seconds: float | None = None


class SurfaceSession:
    """The certificate-selection surface's side of the handshake.

    Parameters
    ----------
    context:
        Hosting context, from :func:`detect_surface_context`.
    embedder_policy:
        Origins allowed to embed the surface and receive codes.
    authenticate:
        Runs the challenge/sign/verify flow for a request and returns the
        authorization code. Raises :class:`SurfaceAuthError` on failure.
    """

    def __init__(
        self,
        context: SurfaceContext,
        embedder_policy: OriginPolicy,
        authenticate: Callable[[AuthRequestPayload], str],
    ) -> None:
        self._context = context
        self._policy = embedder_policy
        self._authenticate = authenticate
        self._finished = False

    @property
    def context(self) -> SurfaceContext:
        return self._context

    @property
    def finished(self) -> bool:
        return self._finished

    def handle_message(self, origin: str, data: object) -> SurfaceReply | None:
        """Process one incoming message and return the reply to post, if any."""
        if self._finished:
            return None
        if not self._policy.is_allowed(origin):
            logger.warning("Surface ignoring message from unauthorized origin %r", origin)
            return None
        try:
            message = parse_message(data)
        except HandshakeProtocolError as exc:
            logger.warning("Surface ignoring malformed message: %s", exc)
            return None

        target = normalize_origin(origin)
        if isinstance(message, RequestMessage):
            return self._finish(self._run(message), target)
        if isinstance(message, CancelMessage):
            reply = ErrorMessage(
                payload=AuthErrorPayload(error="access_denied", state=message.payload.state),
                request_id=message.request_id,
            )
            return self._finish(reply, target)
        return None

    def _run(self, message: RequestMessage) -> ResponseMessage | ErrorMessage:
        state = message.payload.state
        try:
            code = self._authenticate(message.payload)
        except SurfaceAuthError as exc:
            return ErrorMessage(
                payload=AuthErrorPayload(
                    error=exc.error, error_description=exc.description, state=state
                ),
                request_id=message.request_id,
            )
        return ResponseMessage(
            payload=AuthResponsePayload(code=code, state=state),
            request_id=message.request_id,
        )

    def _finish(self, reply: ResponseMessage | ErrorMessage, target: str) -> SurfaceReply:
        self._finished = True
        close_after = POPUP_CLOSE_DELAY_SECONDS if self._context is SurfaceContext.POPUP else None
        return SurfaceReply(
            message=reply.to_wire(), target_origin=target, close_after_seconds=close_after
        )
