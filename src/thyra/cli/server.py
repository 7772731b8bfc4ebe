"""The ``server`` command: run the Thyra HTTP API."""

from __future__ import annotations

import click

from ._common import THYRA_HOME, console, resolve_config


def register_server_commands(main: click.Group) -> None:
    """Register the server command."""

    @main.command("server")
    @click.option("--home", default=THYRA_HOME, type=click.Path(), help="Thyra home directory.")
    @click.option("--port", "-p", type=int, default=None, help="Port to listen on (default 3000).")
    @click.option("--host", default=None, help="Interface to bind (default 0.0.0.0).")
    @click.option("--api-key", "-k", default=None, help="Require this API key on /api/*.")
    @click.option("--db/--no-db", "db_enabled", default=None, help="Enable the upload log.")
    @click.option("--wallet", "wallet_path", type=click.Path(), default=None, help="Wallet JWK path.")
    @click.option("--log-level", "-l", default=None,
                  type=click.Choice(["debug", "info", "warning", "error"]), help="Log level.")
    def server(home, port, host, api_key, db_enabled, wallet_path, log_level):
        """Start the Thyra API server.

        Loads (or creates) the wallet, bootstraps the drive on first run,
        and serves the upload API and share pages.

        Examples:

            thyra server

            thyra server --port 8080 --api-key secret --db
        """
        from ..config import setup_logging
        from ..errors import ThyraError
        from ..server import run_server

        config = resolve_config(
            home,
            port=port,
            host=host,
            api_key=api_key,
            db_enabled=db_enabled,
            wallet_path=wallet_path,
            log_level=log_level,
        )
        setup_logging(config)
        console.print(
            f"\n[bold cyan]Thyra[/] starting on [cyan]{config.host}:{config.port}[/] "
            f"(api key: {config.masked_api_key}, upload log: {'on' if config.db_enabled else 'off'})\n"
        )
        try:
            run_server(config)
        except (ThyraError, OSError) as exc:
            console.print(f"[red]Server failed: {exc}[/]")
            raise SystemExit(1)
