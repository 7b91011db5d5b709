"""CertificateLoginFlow — the full login as a relying page would drive it.

1. fetch a challenge from the authentication server,
2. have the Agent sign it with the chosen certificate,
3. submit challenge, signature and serial number to the server,
4. receive an authorization code.

Used by ``pki-auth login`` to exercise a deployment end to end.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import requests

from pki_auth.agent.client import AgentClient

logger = logging.getLogger(__name__)


class LoginFlowError(Exception):
    """Raised when the authentication server rejects a step of the flow."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class LoginOutcome:
    code: str
    state: str
    serial_number: str
    user: dict[str, object] = field(default_factory=dict)


class CertificateLoginFlow:
    """Drive a certificate login against one server through one Agent.

    Parameters
    ----------
    agent:
        The Agent to sign with.
    server_url:
        Base URL of the authentication server.
    timeout:
        Per-request timeout in seconds.
    session:
        Optional :class:`requests.Session` for server calls.
    """

    def __init__(
        self,
        agent: AgentClient,
        server_url: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._agent = agent
        self._server = server_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch_challenge(self) -> str:
        body = self._post("/auth/challenge", {})
        challenge = body.get("challenge")
        if not isinstance(challenge, str) or not challenge:
            raise LoginFlowError("Server returned no challenge")
        return challenge

    def login(
        self,
        cert_id: str,
        password: str,
        client_id: str,
        redirect_uri: str,
        scope: str = "",
        state: str = "",
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
    ) -> LoginOutcome:
        """Run the flow and return the authorization code.

        Raises
        ------
        AgentPasswordError
            If the Agent rejects *password*.
        AgentError
            If the Agent fails otherwise.
        LoginFlowError
            If the server rejects the challenge request or the login.
        """
        challenge = self.fetch_challenge()
        signed = self._agent.sign(cert_id, challenge, password)
        payload: dict[str, object] = {
            "challenge": challenge,
            "signature": signed.signature,
            "certificateSerialNumber": signed.serial_number,
            "clientId": client_id,
            "redirectUri": redirect_uri,
            "scope": scope,
            "state": state,
        }
        if code_challenge:
            payload["codeChallenge"] = code_challenge
            payload["codeChallengeMethod"] = code_challenge_method or "S256"

        body = self._post("/auth/verify-and-login", payload)
        code = body.get("code")
        if not isinstance(code, str) or not code:
            raise LoginFlowError("Server returned no authorization code")
        user = body.get("user")
        logger.info("Certificate login succeeded for serial %s", signed.serial_number)
        return LoginOutcome(
            code=code,
            state=str(body.get("state") or ""),
            serial_number=signed.serial_number,
            user=user if isinstance(user, dict) else {},
        )

    def _post(self, path: str, payload: dict[str, object]) -> dict[str, object]:
        try:
            response = self._session.post(self._server + path, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            raise LoginFlowError(f"Request to {path} failed: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if not response.ok:
            error = body.get("error") or f"HTTP {response.status_code}"
            raise LoginFlowError(f"{path}: {error}", response.status_code)
        return body
