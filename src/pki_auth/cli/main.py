"""CLI entry point for pki-auth.

Invoked as::

    pki-auth [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m pki_auth

Commands
--------
version        Show version information
ca init        Create the root and intermediate CA
ca show        Show the stored CA certificates
cert issue     Issue a user certificate into a password-protected .p12 file
cert renew     Replace a certificate with a freshly keyed one
cert list      List the certificates in the registry
cert inspect   Show the fields of a PEM or PKCS#12 certificate
client add     Register an OAuth client in a clients file
client list    List the clients in a clients file
serve          Run the authentication server
login          Log in through the local Agent and print the authorization code

Settings not given as options come from ``PKI_AUTH_*`` environment
variables (see :class:`pki_auth.config.PkiAuthConfig`).
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from pki_auth import __version__

console = Console()


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="pki-auth")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level.",
)
def cli(log_level: str) -> None:
    """Certificate authority and certificate-based OAuth2 login."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    console.print(f"[bold]pki-auth[/bold] v{__version__}")


# ------------------------------------------------------------------
# ca command group
# ------------------------------------------------------------------


@cli.group(name="ca")
def ca_group() -> None:
    """Manage the certificate authority."""


@ca_group.command(name="init")
@click.option("--store", "store_path", type=click.Path(file_okay=False), default=None, help="CA store directory.")
@click.option("--organization", "-o", default=None, help="Organization for both CA subjects.")
@click.option("--country", "-c", default=None, help="Two-letter country for both CA subjects.")
@click.option("--key-size", type=int, default=4096, show_default=True, help="RSA key size for CA keys.")
@click.option("--force", is_flag=True, help="Replace existing CA material.")
def ca_init_command(
    store_path: str | None,
    organization: str | None,
    country: str | None,
    key_size: int,
    force: bool,
) -> None:
    """Create the root and intermediate CA and save them to the store."""
    import dataclasses

    from pki_auth.certificates import CAAlreadyInitializedError, bootstrap_ca
    from pki_auth.certificates.ca import DEFAULT_INTERMEDIATE_SUBJECT, DEFAULT_ROOT_SUBJECT

    config = _load_config(ca_store_path=Path(store_path) if store_path else None)
    store = _ca_store(config)

    overrides = {k: v for k, v in (("organization", organization), ("country", country)) if v}
    root_subject = dataclasses.replace(DEFAULT_ROOT_SUBJECT, **overrides)
    intermediate_subject = dataclasses.replace(DEFAULT_INTERMEDIATE_SUBJECT, **overrides)

    try:
        with console.status("Generating CA keys..."):
            result = bootstrap_ca(
                store,
                root_subject=root_subject,
                intermediate_subject=intermediate_subject,
                key_size=key_size,
                force=force,
            )
    except CAAlreadyInitializedError as exc:
        console.print(f"[red]Error:[/red] {exc} Use --force to replace it.")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    console.print(f"[green]CA initialized[/green] in [bold]{config.ca_store_path}[/bold]")
    console.print(f"  Root:         {result.root.subject_dn} ({result.root.serial_number})")
    console.print(
        f"  Intermediate: {result.intermediate.subject_dn} ({result.intermediate.serial_number})"
    )


@ca_group.command(name="show")
@click.option("--store", "store_path", type=click.Path(file_okay=False), default=None, help="CA store directory.")
def ca_show_command(store_path: str | None) -> None:
    """Show the stored root and intermediate certificates."""
    from pki_auth.certificates import NOT_INITIALIZED, parse_certificate

    config = _load_config(ca_store_path=Path(store_path) if store_path else None)
    material = _ca_store(config).load()
    if material is NOT_INITIALIZED:
        console.print(
            f"[yellow]CA not initialized[/yellow] in {config.ca_store_path}. Run `pki-auth ca init`."
        )
        sys.exit(1)

    table = Table(title=f"CA: {config.ca_store_path}", show_header=True)
    table.add_column("Role", style="cyan")
    table.add_column("Subject")
    table.add_column("Issuer")
    table.add_column("Serial")
    table.add_column("Not After")
    for role, pem in (("root", material.root_cert_pem), ("intermediate", material.intermediate_cert_pem)):
        parsed = parse_certificate(pem)
        table.add_row(
            role,
            parsed.subject_dn,
            parsed.issuer_dn,
            parsed.serial_number,
            parsed.not_after.strftime("%Y-%m-%d"),
        )
    console.print(table)


# ------------------------------------------------------------------
# cert command group
# ------------------------------------------------------------------


@cli.group(name="cert")
def cert_group() -> None:
    """Issue and inspect user certificates."""


_REGISTRY_OPTION = click.option(
    "--registry",
    "registry_path",
    type=click.Path(file_okay=False),
    default=None,
    help="Registry directory (default: registry/ inside the CA store).",
)


@cert_group.command(name="issue")
@click.argument("common_name")
@click.option("--email", "-e", default="", help="E-mail address (written as a SAN).")
@click.option("--organization", "-o", default="", help="Organization.")
@click.option("--country", "-c", default="", help="Two-letter country code.")
@click.option("--validity-years", type=int, default=1, show_default=True, help="Certificate lifetime.")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Password protecting the .p12 file.",
)
@click.option("--out", "out_path", type=click.Path(dir_okay=False), default=None, help="Output .p12 path.")
@click.option("--store", "store_path", type=click.Path(file_okay=False), default=None, help="CA store directory.")
@_REGISTRY_OPTION
def cert_issue_command(
    common_name: str,
    email: str,
    organization: str,
    country: str,
    validity_years: int,
    password: str,
    out_path: str | None,
    store_path: str | None,
    registry_path: str | None,
) -> None:
    """Issue a certificate for COMMON_NAME and write it as a PKCS#12 file.

    The certificate is recorded in the same registry ``pki-auth serve``
    reads, so it can be used to log in straight away.
    """
    from pki_auth.certificates import CANotInitializedError
    from pki_auth.issuance import IssuanceError, IssuanceRequest

    config = _load_config(
        ca_store_path=Path(store_path) if store_path else None,
        registry_path=Path(registry_path) if registry_path else None,
    )
    service = _issuance_service(config)
    request = IssuanceRequest(
        common_name=common_name,
        email=email,
        organization=organization,
        country=country,
        validity_years=validity_years,
    )
    try:
        with console.status("Generating key pair..."):
            result = service.issue(request, password)
    except (IssuanceError, CANotInitializedError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    finally:
        service.shutdown()

    target = Path(out_path) if out_path else Path(f"{result.serial_number}.p12")
    _write_bundle(target, result.p12_bytes)

    console.print(f"[green]Issued[/green] certificate for [bold]{common_name}[/bold]")
    _print_result(result, target)


@cert_group.command(name="renew")
@click.argument("serial_number")
@click.option("--validity-years", type=int, default=1, show_default=True, help="Certificate lifetime.")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Password protecting the new .p12 file.",
)
@click.option("--out", "out_path", type=click.Path(dir_okay=False), default=None, help="Output .p12 path.")
@click.option("--store", "store_path", type=click.Path(file_okay=False), default=None, help="CA store directory.")
@_REGISTRY_OPTION
def cert_renew_command(
    serial_number: str,
    validity_years: int,
    password: str,
    out_path: str | None,
    store_path: str | None,
    registry_path: str | None,
) -> None:
    """Replace the certificate SERIAL_NUMBER with a freshly keyed one."""
    from pki_auth.certificates import CANotInitializedError
    from pki_auth.issuance import IssuanceError
    from pki_auth.registry import CertificateNotFoundError

    config = _load_config(
        ca_store_path=Path(store_path) if store_path else None,
        registry_path=Path(registry_path) if registry_path else None,
    )
    service = _issuance_service(config)
    try:
        with console.status("Generating key pair..."):
            result = service.renew(serial_number, password, validity_years=validity_years)
    except CertificateNotFoundError:
        console.print(f"[red]Error:[/red] no certificate with serial {serial_number}")
        sys.exit(1)
    except (IssuanceError, CANotInitializedError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    finally:
        service.shutdown()

    target = Path(out_path) if out_path else Path(f"{result.serial_number}.p12")
    _write_bundle(target, result.p12_bytes)

    console.print(f"[green]Renewed[/green] certificate {serial_number}")
    _print_result(result, target)


@cert_group.command(name="list")
@click.option("--status", type=click.Choice(["ACTIVE", "RENEWED", "REVOKED"]), default=None, help="Filter by status.")
@click.option("--store", "store_path", type=click.Path(file_okay=False), default=None, help="CA store directory.")
@_REGISTRY_OPTION
def cert_list_command(status: str | None, store_path: str | None, registry_path: str | None) -> None:
    """List certificates recorded in the registry."""
    from pki_auth.registry import CertificateRegistry, CertificateStatus, FilesystemRegistryStore

    config = _load_config(
        ca_store_path=Path(store_path) if store_path else None,
        registry_path=Path(registry_path) if registry_path else None,
    )
    registry = CertificateRegistry(FilesystemRegistryStore(config.registry_dir))
    records = registry.list_all(status=CertificateStatus(status) if status else None)
    if not records:
        console.print("[yellow]No certificates recorded.[/yellow]")
        return

    table = Table(title="Certificates", show_header=True)
    table.add_column("Serial", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Not after")
    for record in records:
        table.add_row(
            record.serial_number,
            record.display_name,
            record.status.value,
            record.not_after.strftime("%Y-%m-%d"),
        )
    console.print(table)


@cert_group.command(name="inspect")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--password", default=None, help="Password, for PKCS#12 files.")
def cert_inspect_command(path: str, password: str | None) -> None:
    """Show the fields of the certificate at PATH (PEM or .p12)."""
    from cryptography.hazmat.primitives import serialization

    from pki_auth.certificates import CertificateError, parse_certificate, unpack_pkcs12
    from pki_auth.certificates.names import extract_common_name

    data = Path(path).read_bytes()
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            pem = data.decode("ascii")
        else:
            if password is None:
                password = click.prompt("PKCS#12 password", hide_input=True)
            bundle = unpack_pkcs12(data, password)
            pem = bundle.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")
        parsed = parse_certificate(pem)
    except (CertificateError, ValueError) as exc:
        console.print(f"[red]Error:[/red] Cannot read certificate: {exc}")
        sys.exit(1)

    table = Table(title=f"Certificate: {Path(path).name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Common name", extract_common_name(parsed.subject_dn))
    table.add_row("Subject", parsed.subject_dn)
    table.add_row("Issuer", parsed.issuer_dn)
    table.add_row("Serial", parsed.serial_number)
    table.add_row("Not before", parsed.not_before.isoformat())
    table.add_row("Not after", parsed.not_after.isoformat())
    table.add_row("Expired", "yes" if parsed.is_expired() else "no")
    console.print(table)


# ------------------------------------------------------------------
# client command group
# ------------------------------------------------------------------


@cli.group(name="client")
def client_group() -> None:
    """Manage OAuth clients in a clients file."""


@client_group.command(name="add")
@click.argument("name")
@click.option("--redirect-uri", "-r", multiple=True, required=True, help="Allowed redirect URI (repeatable).")
@click.option("--public", is_flag=True, help="Register a public client (PKCE, no secret).")
@click.option(
    "--clients-file",
    type=click.Path(dir_okay=False),
    default="clients.json",
    show_default=True,
    help="JSON file holding registered clients.",
)
def client_add_command(
    name: str, redirect_uri: tuple[str, ...], public: bool, clients_file: str
) -> None:
    """Register an OAuth client called NAME."""
    registry = _load_clients(clients_file)
    try:
        client = registry.register(name=name, redirect_uris=list(redirect_uri), confidential=not public)
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    _save_clients(registry, clients_file)

    console.print(f"[green]Registered[/green] client [bold]{name}[/bold]")
    console.print(f"  Client ID:     {client.client_id}")
    if client.client_secret:
        console.print(f"  Client secret: {client.client_secret}")
    console.print(f"  Redirect URIs: {', '.join(client.redirect_uris)}")


@client_group.command(name="list")
@click.option(
    "--clients-file",
    type=click.Path(dir_okay=False),
    default="clients.json",
    show_default=True,
    help="JSON file holding registered clients.",
)
def client_list_command(clients_file: str) -> None:
    """List the registered OAuth clients."""
    registry = _load_clients(clients_file)
    clients = registry.list_clients()
    if not clients:
        console.print("[yellow]No clients registered.[/yellow]")
        return

    table = Table(title="OAuth Clients", show_header=True)
    table.add_column("Client ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type", justify="center")
    table.add_column("Redirect URIs")
    for client in clients:
        table.add_row(
            client.client_id,
            client.name,
            "confidential" if client.is_confidential else "public",
            "\n".join(client.redirect_uris),
        )
    console.print(table)


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@cli.command(name="serve")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8080, show_default=True, help="TCP port.")
@click.option("--store", "store_path", type=click.Path(file_okay=False), default=None, help="CA store directory.")
@click.option(
    "--clients-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="JSON file of OAuth clients to load at startup.",
)
@click.option("--issuer-url", default=None, help="Public base URL of this server.")
@click.option("--surface-url", default=None, help="URL of the certificate-selection page.")
@_REGISTRY_OPTION
def serve_command(
    host: str,
    port: int,
    store_path: str | None,
    registry_path: str | None,
    clients_file: str | None,
    issuer_url: str | None,
    surface_url: str | None,
) -> None:
    """Run the authentication server."""
    from pki_auth.server import ServerContext, run_server

    config = _load_config(
        ca_store_path=Path(store_path) if store_path else None,
        registry_path=Path(registry_path) if registry_path else None,
        issuer_url=issuer_url,
        surface_url=surface_url,
    )
    context = ServerContext.from_config(
        config, ca_store=_ca_store(config), registry_store=_registry_store(config)
    )
    if clients_file:
        for client in _load_clients(clients_file).list_clients():
            context.clients.register(
                name=client.name,
                redirect_uris=list(client.redirect_uris),
                confidential=client.is_confidential,
                client_id=client.client_id,
                client_secret=client.client_secret,
            )
    console.print(f"[bold]pki-auth[/bold] serving on http://{host}:{port} (Ctrl-C to stop)")
    run_server(context, host=host, port=port)


# ------------------------------------------------------------------
# login
# ------------------------------------------------------------------


@cli.command(name="login")
@click.option("--server", "server_url", default=None, help="Authentication server URL (defaults to the issuer URL).")
@click.option("--agent-url", default=None, help="Agent base URL.")
@click.option("--insecure", is_flag=True, help="Skip TLS verification of the Agent.")
@click.option("--drive", default="C", show_default=True, help="Drive the Agent searches for certificates.")
@click.option("--cert-id", default=None, help="Agent certificate ID. Lists certificates when omitted.")
@click.option("--client-id", required=True, help="OAuth client ID.")
@click.option("--redirect-uri", required=True, help="Registered redirect URI.")
@click.option("--scope", default="openid profile email", show_default=True)
@click.option("--pkce/--no-pkce", default=True, show_default=True, help="Send a PKCE S256 challenge.")
def login_command(
    server_url: str | None,
    agent_url: str | None,
    insecure: bool,
    drive: str,
    cert_id: str | None,
    client_id: str,
    redirect_uri: str,
    scope: str,
    pkce: bool,
) -> None:
    """Log in with a certificate held by the local Agent."""
    import secrets

    from pki_auth.agent import (
        AgentClient,
        AgentError,
        AgentPasswordError,
        CertificateLoginFlow,
        LoginFlowError,
    )
    from pki_auth.oauth.pkce import compute_code_challenge, generate_code_verifier

    config = _load_config(agent_url=agent_url)
    agent = AgentClient(config.agent_url, verify=not insecure)

    if cert_id is None:
        try:
            certificates = agent.list_certificates(drive)
        except AgentError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            sys.exit(1)
        table = Table(title=f"Certificates on drive {drive}", show_header=True)
        table.add_column("Cert ID", style="cyan")
        table.add_column("Subject")
        table.add_column("Serial")
        table.add_column("Not After")
        table.add_column("Expired", justify="center")
        for cert in certificates:
            table.add_row(
                cert.cert_id,
                cert.subject_dn,
                cert.serial_number,
                cert.not_after,
                "yes" if cert.is_expired else "no",
            )
        console.print(table)
        console.print("Re-run with [bold]--cert-id[/bold] to log in.")
        sys.exit(1)

    password = click.prompt("Certificate password", hide_input=True)
    verifier = generate_code_verifier() if pkce else None
    flow = CertificateLoginFlow(agent, server_url or config.issuer_url)
    try:
        outcome = flow.login(
            cert_id=cert_id,
            password=password,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=secrets.token_urlsafe(16),
            code_challenge=compute_code_challenge(verifier) if verifier else None,
        )
    except AgentPasswordError:
        console.print("[red]Error:[/red] The Agent rejected the certificate password.")
        sys.exit(1)
    except (AgentError, LoginFlowError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    console.print("[green]Login succeeded[/green]")
    console.print(f"  Serial: {outcome.serial_number}")
    console.print(f"  Code:   {outcome.code}")
    if verifier:
        console.print(f"  code_verifier: {verifier}")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _load_config(**overrides: object):  # type: ignore[no-untyped-def]
    """Return the environment config with non-None CLI *overrides* applied."""
    from pki_auth.config import PkiAuthConfig

    try:
        config = PkiAuthConfig.from_env()
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    return config.with_overrides(**overrides)


def _ca_store(config):  # type: ignore[no-untyped-def]
    from pki_auth.certificates import FilesystemCAStore

    return FilesystemCAStore(config.ca_store_path, key_passphrase=config.key_passphrase_bytes)


def _registry_store(config):  # type: ignore[no-untyped-def]
    from pki_auth.registry import FilesystemRegistryStore

    return FilesystemRegistryStore(config.registry_dir)


def _issuance_service(config):  # type: ignore[no-untyped-def]
    """Build an IssuanceService over the on-disk CA and registry."""
    from pki_auth.audit.logger import AuditLogger
    from pki_auth.certificates import SigningKeyCache
    from pki_auth.issuance import IssuanceService
    from pki_auth.registry import CertificateRegistry, UserRegistry

    store = _registry_store(config)
    return IssuanceService(
        signing_keys=SigningKeyCache(_ca_store(config)),
        certificates=CertificateRegistry(store),
        users=UserRegistry(store),
        audit=AuditLogger(config.audit_log_path),
        pkcs12_profile=config.pkcs12_profile,
        min_password_length=config.min_password_length,
        max_validity_years=config.max_validity_years,
    )


def _write_bundle(target: Path, p12_bytes: bytes) -> None:
    target.write_bytes(p12_bytes)
    target.chmod(0o600)


def _print_result(result, target: Path) -> None:  # type: ignore[no-untyped-def]
    console.print(f"  User:       {result.user_id}")
    console.print(f"  Serial:     {result.serial_number}")
    console.print(f"  Subject:    {result.subject_dn}")
    console.print(f"  Issuer:     {result.issuer_dn}")
    console.print(f"  Valid:      {result.not_before:%Y-%m-%d} .. {result.not_after:%Y-%m-%d}")
    console.print(f"  Written to: {target}")


def _load_clients(clients_file: str):  # type: ignore[no-untyped-def]
    """Load a ClientRegistry from a JSON file, or return an empty one."""
    from pki_auth.oauth import ClientRegistry

    registry = ClientRegistry()
    path = Path(clients_file)
    if not path.exists():
        return registry
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"[red]Error:[/red] {clients_file} is not valid JSON: {exc}")
        sys.exit(1)
    for entry in data.get("clients", []):
        registry.register(
            name=entry["name"],
            redirect_uris=list(entry["redirect_uris"]),
            confidential=entry.get("client_secret") is not None,
            client_id=entry["client_id"],
            client_secret=entry.get("client_secret"),
        )
    return registry


def _save_clients(registry, clients_file: str) -> None:  # type: ignore[no-untyped-def]
    """Persist clients, secrets included, to a JSON file readable only by its owner."""
    path = Path(clients_file)
    data = {"clients": [client.to_dict(include_secret=True) for client in registry.list_clients()]}
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    path.chmod(0o600)


if __name__ == "__main__":
    cli()
