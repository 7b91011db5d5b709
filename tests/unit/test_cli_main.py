"""Tests for pki_auth.cli.main — CLI commands via Click test runner."""
from __future__ import annotations

import json
import stat
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from pki_auth import __version__
from pki_auth.agent import AgentCertificate, AgentPasswordError, LoginOutcome
from pki_auth.certificates import CAMaterial, FilesystemCAStore, unpack_pkcs12
from pki_auth.certificates.factory import serial_to_hex
from pki_auth.cli.main import cli
from pki_auth.config import PkiAuthConfig
from pki_auth.server.context import ServerContext

REDIRECT_URI = "https://app.example/callback"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def runner(monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    monkeypatch.delenv("PKI_AUTH_CA_KEY_PASSPHRASE", raising=False)
    monkeypatch.delenv("PKI_AUTH_AUDIT_LOG_PATH", raising=False)
    monkeypatch.delenv("PKI_AUTH_REGISTRY_PATH", raising=False)
    return CliRunner()


@pytest.fixture()
def store_dir(tmp_path: Path, ca_material: CAMaterial) -> Path:
    path = tmp_path / "ca-store"
    FilesystemCAStore(path).save(ca_material)
    return path


@pytest.fixture()
def clients_file(tmp_path: Path) -> Path:
    return tmp_path / "clients.json"


# ---------------------------------------------------------------------------
# Root CLI
# ---------------------------------------------------------------------------


class TestRootCLI:
    def test_help_exits_zero(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("ca", "cert", "client", "serve", "login"):
            assert command in result.output

    def test_version_option(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_version_command(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert f"pki-auth v{__version__}" in result.output


# ---------------------------------------------------------------------------
# ca
# ---------------------------------------------------------------------------


class TestCaCommands:
    def test_init_creates_store(self, runner: CliRunner, tmp_path: Path) -> None:
        store = tmp_path / "new-store"
        result = runner.invoke(
            cli, ["ca", "init", "--store", str(store), "--key-size", "2048", "-o", "Example"]
        )
        assert result.exit_code == 0, result.output
        assert "CA initialized" in result.output
        assert FilesystemCAStore(store).is_initialized()

    def test_init_refuses_existing_store(self, runner: CliRunner, store_dir: Path) -> None:
        result = runner.invoke(cli, ["ca", "init", "--store", str(store_dir), "--key-size", "2048"])
        assert result.exit_code == 1
        assert "--force" in result.output

    def test_init_rejects_small_key(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["ca", "init", "--store", str(tmp_path / "s"), "--key-size", "1024"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_show(self, runner: CliRunner, store_dir: Path) -> None:
        result = runner.invoke(cli, ["ca", "show", "--store", str(store_dir)])
        assert result.exit_code == 0, result.output
        assert "root" in result.output

    def test_show_uninitialized(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["ca", "show", "--store", str(tmp_path / "empty")])
        assert result.exit_code == 1
        assert "not initialized" in result.output


# ---------------------------------------------------------------------------
# cert
# ---------------------------------------------------------------------------


class TestCertCommands:
    def test_issue_writes_private_p12(self, runner: CliRunner, store_dir: Path, tmp_path: Path) -> None:
        out = tmp_path / "kim.p12"
        result = runner.invoke(
            cli,
            [
                "cert", "issue", "김철수",
                "--email", "kim@example.com",
                "--password", "correct horse",
                "--out", str(out),
                "--store", str(store_dir),
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Issued" in result.output
        assert stat.S_IMODE(out.stat().st_mode) == 0o600
        bundle = unpack_pkcs12(out.read_bytes(), "correct horse")
        assert len(bundle.ca_certificates) == 1

    def test_issue_prompts_for_password(self, runner: CliRunner, store_dir: Path, tmp_path: Path) -> None:
        out = tmp_path / "prompted.p12"
        result = runner.invoke(
            cli,
            ["cert", "issue", "Kim", "--out", str(out), "--store", str(store_dir)],
            input="correct horse\ncorrect horse\n",
        )
        assert result.exit_code == 0, result.output
        assert out.exists()

    def test_issue_short_password(self, runner: CliRunner, store_dir: Path, tmp_path: Path) -> None:
        result = runner.invoke(
            cli,
            ["cert", "issue", "Kim", "--password", "short", "--out", str(tmp_path / "x.p12"), "--store", str(store_dir)],
        )
        assert result.exit_code == 1
        assert "password" in result.output

    def test_issue_without_ca(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(
            cli,
            ["cert", "issue", "Kim", "--password", "correct horse", "--store", str(tmp_path / "empty")],
        )
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_issued_certificate_is_visible_to_server(
        self, runner: CliRunner, store_dir: Path, tmp_path: Path
    ) -> None:
        out = tmp_path / "kim.p12"
        result = runner.invoke(
            cli,
            ["cert", "issue", "Kim", "--password", "correct horse", "--out", str(out), "--store", str(store_dir)],
        )
        assert result.exit_code == 0, result.output
        serial = unpack_pkcs12(out.read_bytes(), "correct horse").certificate.serial_number

        context = ServerContext.from_config(
            PkiAuthConfig(ca_store_path=store_dir), ca_store=FilesystemCAStore(store_dir)
        )
        try:
            record = context.certificates.find(serial_to_hex(serial))
        finally:
            context.close()
        assert record is not None
        assert record.display_name == "Kim"
        assert context.users.get(record.user_id).name == "Kim"

    def test_renew_and_list(self, runner: CliRunner, store_dir: Path, tmp_path: Path) -> None:
        registry = tmp_path / "registry"
        first = tmp_path / "first.p12"
        runner.invoke(
            cli,
            [
                "cert", "issue", "Kim", "--password", "correct horse",
                "--out", str(first), "--store", str(store_dir), "--registry", str(registry),
            ],
        )
        serial = serial_to_hex(unpack_pkcs12(first.read_bytes(), "correct horse").certificate.serial_number)

        result = runner.invoke(
            cli,
            [
                "cert", "renew", serial, "--password", "correct horse",
                "--out", str(tmp_path / "second.p12"), "--store", str(store_dir), "--registry", str(registry),
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Renewed" in result.output

        result = runner.invoke(
            cli, ["cert", "list", "--status", "RENEWED", "--store", str(store_dir), "--registry", str(registry)]
        )
        assert result.exit_code == 0, result.output
        assert serial in result.output

    def test_renew_unknown_serial(self, runner: CliRunner, store_dir: Path) -> None:
        result = runner.invoke(
            cli, ["cert", "renew", "DEADBEEF", "--password", "correct horse", "--store", str(store_dir)]
        )
        assert result.exit_code == 1
        assert "no certificate" in result.output

    def test_list_empty(self, runner: CliRunner, store_dir: Path) -> None:
        result = runner.invoke(cli, ["cert", "list", "--store", str(store_dir)])
        assert result.exit_code == 0
        assert "No certificates" in result.output

    def test_inspect_pem(self, runner: CliRunner, tmp_path: Path, ca_material: CAMaterial) -> None:
        pem = tmp_path / "root.pem"
        pem.write_text(ca_material.root_cert_pem, encoding="ascii")
        result = runner.invoke(cli, ["cert", "inspect", str(pem)])
        assert result.exit_code == 0, result.output
        assert "Certificate: root.pem" in result.output
        assert "PKI Auth Root CA" in result.output

    def test_inspect_p12(self, runner: CliRunner, store_dir: Path, tmp_path: Path) -> None:
        out = tmp_path / "kim.p12"
        runner.invoke(
            cli,
            ["cert", "issue", "Kim", "--password", "correct horse", "--out", str(out), "--store", str(store_dir)],
        )
        result = runner.invoke(cli, ["cert", "inspect", str(out)], input="correct horse\n")
        assert result.exit_code == 0, result.output
        assert "Kim" in result.output

    def test_inspect_wrong_password(self, runner: CliRunner, store_dir: Path, tmp_path: Path) -> None:
        out = tmp_path / "kim.p12"
        runner.invoke(
            cli,
            ["cert", "issue", "Kim", "--password", "correct horse", "--out", str(out), "--store", str(store_dir)],
        )
        result = runner.invoke(cli, ["cert", "inspect", str(out), "--password", "wrong password"])
        assert result.exit_code == 1
        assert "Cannot read certificate" in result.output


# ---------------------------------------------------------------------------
# client
# ---------------------------------------------------------------------------


class TestClientCommands:
    def test_add_confidential(self, runner: CliRunner, clients_file: Path) -> None:
        result = runner.invoke(
            cli, ["client", "add", "App", "-r", REDIRECT_URI, "--clients-file", str(clients_file)]
        )
        assert result.exit_code == 0, result.output
        assert "Client secret" in result.output
        data = json.loads(clients_file.read_text(encoding="utf-8"))
        assert data["clients"][0]["name"] == "App"
        assert data["clients"][0]["client_secret"]
        assert stat.S_IMODE(clients_file.stat().st_mode) == 0o600

    def test_add_public(self, runner: CliRunner, clients_file: Path) -> None:
        result = runner.invoke(
            cli, ["client", "add", "SPA", "-r", REDIRECT_URI, "--public", "--clients-file", str(clients_file)]
        )
        assert result.exit_code == 0
        assert "Client secret" not in result.output
        entry = json.loads(clients_file.read_text(encoding="utf-8"))["clients"][0]
        assert entry["confidential"] is False
        assert "client_secret" not in entry

    def test_add_invalid_redirect(self, runner: CliRunner, clients_file: Path) -> None:
        result = runner.invoke(
            cli, ["client", "add", "App", "-r", "/relative", "--clients-file", str(clients_file)]
        )
        assert result.exit_code == 1
        assert not clients_file.exists()

    def test_list_round_trips_clients(self, runner: CliRunner, clients_file: Path) -> None:
        runner.invoke(cli, ["client", "add", "App", "-r", REDIRECT_URI, "--clients-file", str(clients_file)])
        runner.invoke(
            cli, ["client", "add", "SPA", "-r", REDIRECT_URI, "--public", "--clients-file", str(clients_file)]
        )
        result = runner.invoke(cli, ["client", "list", "--clients-file", str(clients_file)])
        assert result.exit_code == 0
        assert "OAuth Clients" in result.output
        assert "public" in result.output
        assert "confidential" in result.output

    def test_list_empty(self, runner: CliRunner, clients_file: Path) -> None:
        result = runner.invoke(cli, ["client", "list", "--clients-file", str(clients_file)])
        assert result.exit_code == 0
        assert "No clients registered" in result.output


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLoginCommand:
    def test_lists_certificates_without_cert_id(self, runner: CliRunner) -> None:
        agent = MagicMock()
        agent.list_certificates.return_value = [
            AgentCertificate.model_validate(
                {
                    "certId": "c-1",
                    "serialNumber": "0A1B",
                    "subjectDN": "CN=Kim",
                    "issuerDN": "CN=CA",
                    "notAfter": "2026-01-01",
                }
            )
        ]
        with patch("pki_auth.agent.AgentClient", return_value=agent):
            result = runner.invoke(
                cli, ["login", "--client-id", "app", "--redirect-uri", REDIRECT_URI, "--drive", "D"]
            )
        assert result.exit_code == 1
        assert "c-1" in result.output
        assert "--cert-id" in result.output
        agent.list_certificates.assert_called_once_with("D")

    def test_login_prints_code(self, runner: CliRunner) -> None:
        flow = MagicMock()
        flow.login.return_value = LoginOutcome(code="c0de", state="s", serial_number="0A1B")
        with patch("pki_auth.agent.AgentClient"), patch(
            "pki_auth.agent.CertificateLoginFlow", return_value=flow
        ):
            result = runner.invoke(
                cli,
                ["login", "--cert-id", "c-1", "--client-id", "app", "--redirect-uri", REDIRECT_URI],
                input="pw\n",
            )
        assert result.exit_code == 0, result.output
        assert "c0de" in result.output
        assert "code_verifier" in result.output
        kwargs = flow.login.call_args.kwargs
        assert kwargs["password"] == "pw"
        assert kwargs["code_challenge"]

    def test_login_without_pkce(self, runner: CliRunner) -> None:
        flow = MagicMock()
        flow.login.return_value = LoginOutcome(code="c0de", state="s", serial_number="0A1B")
        with patch("pki_auth.agent.AgentClient"), patch(
            "pki_auth.agent.CertificateLoginFlow", return_value=flow
        ):
            result = runner.invoke(
                cli,
                ["login", "--cert-id", "c-1", "--client-id", "app", "--redirect-uri", REDIRECT_URI, "--no-pkce"],
                input="pw\n",
            )
        assert result.exit_code == 0
        assert "code_verifier" not in result.output
        assert flow.login.call_args.kwargs["code_challenge"] is None

    def test_wrong_password(self, runner: CliRunner) -> None:
        flow = MagicMock()
        flow.login.side_effect = AgentPasswordError("Invalid certificate password", 401)
        with patch("pki_auth.agent.AgentClient"), patch(
            "pki_auth.agent.CertificateLoginFlow", return_value=flow
        ):
            result = runner.invoke(
                cli,
                ["login", "--cert-id", "c-1", "--client-id", "app", "--redirect-uri", REDIRECT_URI],
                input="bad\n",
            )
        assert result.exit_code == 1
        assert "rejected the certificate password" in result.output
