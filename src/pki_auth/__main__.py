from pki_auth.cli.main import cli

cli()
