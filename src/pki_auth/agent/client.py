"""AgentClient — HTTP client for the local signing Agent.

The Agent is a user-trusted process on the user's machine that holds
certificate private keys. This client speaks its network contract:

    GET  /health
    GET  /certificates?drive=<id>
    POST /certificates/<certId>/sign   {data, password} -> {signature, serialNumber}

The password goes to the Agent only. Nothing here forwards it anywhere
else or keeps it after the call.
"""
from __future__ import annotations

import logging
import urllib.parse
from typing import Union

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_AGENT_URL = "https://localhost:52443"
DEFAULT_PATH_PREFIX = "/api"


class AgentError(Exception):
    """Raised when the Agent is unreachable or returns an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AgentPasswordError(AgentError):
    """Raised when the Agent rejects the certificate password (HTTP 401)."""


class _AgentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AgentCertificate(_AgentModel):
    """A certificate the Agent found on a storage medium."""

    cert_id: str
    serial_number: str
    subject_dn: str = Field(alias="subjectDN")
    issuer_dn: str = Field(alias="issuerDN")
    not_after: str
    is_expired: bool = False


class AgentSignature(_AgentModel):
    signature: str
    serial_number: str


class AgentClient:
    """Client for one Agent instance.

    Parameters
    ----------
    base_url:
        Agent origin, e.g. ``https://localhost:52443``.
    path_prefix:
        Path the Agent mounts its API under.
    timeout:
        Per-request timeout in seconds.
    verify:
        TLS verification setting passed to requests. The Agent usually
        serves a locally generated certificate; pass its CA bundle path.
    session:
        Optional pre-configured :class:`requests.Session`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_AGENT_URL,
        path_prefix: str = DEFAULT_PATH_PREFIX,
        timeout: float = 10.0,
        verify: Union[bool, str] = True,
        session: requests.Session | None = None,
    ) -> None:
        self._base = base_url.rstrip("/") + "/" + path_prefix.strip("/")
        self._base = self._base.rstrip("/")
        self._timeout = timeout
        self._verify = verify
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    def health(self) -> bool:
        """Return True if the Agent answers its health check."""
        try:
            response = self._session.get(
                self._url("/health"), timeout=self._timeout, verify=self._verify
            )
        except requests.RequestException as exc:
            logger.debug("Agent health check failed: %s", exc)
            return False
        return response.ok

    def list_certificates(self, drive: str = "C") -> list[AgentCertificate]:
        """Return the certificates on *drive*, in the Agent's order."""
        payload = self._request("GET", "/certificates", params={"drive": drive})
        if not isinstance(payload, list):
            raise AgentError("Agent returned a non-list certificate response")
        try:
            return [AgentCertificate.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise AgentError(f"Agent returned a malformed certificate entry: {exc}") from exc

    def sign(self, cert_id: str, data: str, password: str) -> AgentSignature:
        """Ask the Agent to sign *data* (the base64 challenge) with *cert_id*.

        Raises
        ------
        AgentPasswordError
            If the Agent rejects *password*.
        AgentError
            For any other failure.
        """
        path = f"/certificates/{urllib.parse.quote(cert_id, safe='')}/sign"
        payload = self._request("POST", path, json={"data": data, "password": password})
        try:
            return AgentSignature.model_validate(payload)
        except ValidationError as exc:
            raise AgentError(f"Agent returned a malformed signature response: {exc}") from exc

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return self._base + path

    def _request(self, method: str, path: str, **kwargs: object) -> object:
        try:
            response = self._session.request(
                method, self._url(path), timeout=self._timeout, verify=self._verify, **kwargs
            )
        except requests.RequestException as exc:
            raise AgentError(f"Agent request failed: {exc}") from exc

        if response.status_code == 401:
            raise AgentPasswordError(_error_message(response, "Invalid certificate password"), 401)
        if not response.ok:
            raise AgentError(
                _error_message(response, f"Agent returned HTTP {response.status_code}"),
                response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise AgentError("Agent returned invalid JSON") from exc


def _error_message(response: requests.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return default
