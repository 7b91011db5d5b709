"""Tests for pki_auth.oauth.clients — ClientRegistry."""
from __future__ import annotations

import pytest

from pki_auth.oauth import ClientRegistry, OAuthError, OAuthErrorCode

REDIRECT_URI = "https://app.example/callback"


class TestRegister:
    def test_confidential_client_gets_secret(self) -> None:
        client = ClientRegistry().register("App", [REDIRECT_URI])
        assert client.is_confidential
        assert client.client_secret and len(client.client_secret) == 64
        assert client.client_id

    def test_public_client_has_no_secret(self) -> None:
        client = ClientRegistry().register("SPA", [REDIRECT_URI], confidential=False)
        assert not client.is_confidential
        assert client.client_secret is None

    def test_explicit_credentials(self) -> None:
        client = ClientRegistry().register(
            "App", [REDIRECT_URI], client_id="app", client_secret="secret"
        )
        assert client.client_id == "app"
        assert client.check_secret("secret")

    def test_duplicate_client_id_rejected(self) -> None:
        registry = ClientRegistry()
        registry.register("App", [REDIRECT_URI], client_id="app")
        with pytest.raises(ValueError, match="already registered"):
            registry.register("Other", [REDIRECT_URI], client_id="app")

    @pytest.mark.parametrize(
        "uri",
        ["/relative", "ftp://app.example/cb", "https://app.example/cb#frag", "https:///no-host"],
    )
    def test_invalid_redirect_uri_rejected(self, uri: str) -> None:
        with pytest.raises(ValueError):
            ClientRegistry().register("App", [uri])

    def test_requires_name_and_redirect(self) -> None:
        with pytest.raises(ValueError):
            ClientRegistry().register("", [REDIRECT_URI])
        with pytest.raises(ValueError):
            ClientRegistry().register("App", [])


class TestClientSecret:
    def test_wrong_secret(self) -> None:
        client = ClientRegistry().register("App", [REDIRECT_URI], client_secret="secret")
        assert not client.check_secret("Secret")
        assert not client.check_secret(None)

    def test_public_client_never_matches(self) -> None:
        client = ClientRegistry().register("SPA", [REDIRECT_URI], confidential=False)
        assert not client.check_secret("anything")

    def test_to_dict_hides_secret_by_default(self) -> None:
        client = ClientRegistry().register("App", [REDIRECT_URI])
        assert "client_secret" not in client.to_dict()
        assert client.to_dict(include_secret=True)["client_secret"] == client.client_secret


class TestRequireRedirect:
    def test_exact_match(self) -> None:
        registry = ClientRegistry()
        registry.register("App", [REDIRECT_URI], client_id="app")
        assert registry.require_redirect("app", REDIRECT_URI).client_id == "app"

    def test_unknown_client(self) -> None:
        with pytest.raises(OAuthError) as excinfo:
            ClientRegistry().require_redirect("nope", REDIRECT_URI)
        assert excinfo.value.code is OAuthErrorCode.INVALID_CLIENT
        assert excinfo.value.http_status == 401

    @pytest.mark.parametrize(
        "uri", [REDIRECT_URI + "/", REDIRECT_URI + "?x=1", "https://APP.example/callback"]
    )
    def test_no_prefix_or_case_matching(self, uri: str) -> None:
        registry = ClientRegistry()
        registry.register("App", [REDIRECT_URI], client_id="app")
        with pytest.raises(OAuthError) as excinfo:
            registry.require_redirect("app", uri)
        assert excinfo.value.code is OAuthErrorCode.INVALID_REQUEST
        assert excinfo.value.to_dict() == {
            "error": "invalid_request",
            "error_description": "Invalid redirect_uri",
        }

    def test_list_clients(self) -> None:
        registry = ClientRegistry()
        registry.register("A", [REDIRECT_URI])
        registry.register("B", [REDIRECT_URI])
        assert {c.name for c in registry.list_clients()} == {"A", "B"}
        assert len(registry) == 2
