"""Client side of the local signing Agent's network contract."""
from __future__ import annotations

from pki_auth.agent.client import (
    AgentCertificate,
    AgentClient,
    AgentError,
    AgentPasswordError,
    AgentSignature,
)
from pki_auth.agent.flow import CertificateLoginFlow, LoginFlowError, LoginOutcome

__all__ = [
    "AgentCertificate",
    "AgentClient",
    "AgentError",
    "AgentPasswordError",
    "AgentSignature",
    "CertificateLoginFlow",
    "LoginFlowError",
    "LoginOutcome",
]
