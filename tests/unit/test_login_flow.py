"""Tests for pki_auth.agent.flow — CertificateLoginFlow."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from pki_auth.agent import AgentPasswordError, AgentSignature, CertificateLoginFlow, LoginFlowError


def _response(status_code: int, body: object) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    return response


@pytest.fixture()
def agent() -> MagicMock:
    agent = MagicMock()
    agent.sign.return_value = AgentSignature(signature="c2ln", serial_number="0A1B")
    return agent


@pytest.fixture()
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def flow(agent: MagicMock, session: MagicMock) -> CertificateLoginFlow:
    return CertificateLoginFlow(agent, "https://auth.example/", session=session)


class TestLogin:
    def test_success(self, flow: CertificateLoginFlow, agent: MagicMock, session: MagicMock) -> None:
        session.post.side_effect = [
            _response(200, {"challenge": "Y2hhbA=="}),
            _response(200, {"success": True, "code": "c0de", "state": "s1", "user": {"name": "김철수"}}),
        ]
        outcome = flow.login(
            "c-1", "pw", "app", "https://app.example/cb", scope="openid", state="s1", code_challenge="abc"
        )

        assert outcome.code == "c0de"
        assert outcome.state == "s1"
        assert outcome.serial_number == "0A1B"
        assert outcome.user == {"name": "김철수"}
        agent.sign.assert_called_once_with("c-1", "Y2hhbA==", "pw")

        url, = session.post.call_args_list[1][0]
        body = session.post.call_args_list[1][1]["json"]
        assert url == "https://auth.example/auth/verify-and-login"
        assert body == {
            "challenge": "Y2hhbA==",
            "signature": "c2ln",
            "certificateSerialNumber": "0A1B",
            "clientId": "app",
            "redirectUri": "https://app.example/cb",
            "scope": "openid",
            "state": "s1",
            "codeChallenge": "abc",
            "codeChallengeMethod": "S256",
        }
        assert "pw" not in str(body)

    def test_rejected_login(self, flow: CertificateLoginFlow, session: MagicMock) -> None:
        session.post.side_effect = [
            _response(200, {"challenge": "Y2hhbA=="}),
            _response(401, {"error": "authentication_failed"}),
        ]
        with pytest.raises(LoginFlowError) as excinfo:
            flow.login("c-1", "pw", "app", "https://app.example/cb")
        assert excinfo.value.status_code == 401
        assert "authentication_failed" in str(excinfo.value)

    def test_password_error_propagates(
        self, flow: CertificateLoginFlow, agent: MagicMock, session: MagicMock
    ) -> None:
        session.post.return_value = _response(200, {"challenge": "Y2hhbA=="})
        agent.sign.side_effect = AgentPasswordError("Invalid certificate password", 401)
        with pytest.raises(AgentPasswordError):
            flow.login("c-1", "bad", "app", "https://app.example/cb")
        assert session.post.call_count == 1

    def test_missing_challenge(self, flow: CertificateLoginFlow, session: MagicMock) -> None:
        session.post.return_value = _response(200, {})
        with pytest.raises(LoginFlowError, match="no challenge"):
            flow.fetch_challenge()

    def test_server_unreachable(self, flow: CertificateLoginFlow, session: MagicMock) -> None:
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(LoginFlowError, match="failed"):
            flow.fetch_challenge()
