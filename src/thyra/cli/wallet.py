"""Wallet commands: address, export. These read the local wallet file."""

from __future__ import annotations

import click
from rich.panel import Panel

from ._common import THYRA_HOME, console, resolve_config


def register_wallet_commands(main: click.Group) -> None:
    """Register the wallet command group."""

    @main.group()
    def wallet():
        """Wallet — the Arweave key that signs every upload.

        Back it up: losing it loses the drive's ownership, and every
        drive-mode key is derived from it.
        """

    @wallet.command("address")
    @click.option("--home", default=THYRA_HOME, type=click.Path(), help="Thyra home directory.")
    def wallet_address(home):
        """Show the wallet's Arweave address."""
        from ..errors import ThyraError
        from ..wallet import Wallet

        config = resolve_config(home)
        try:
            w = Wallet.load(config.wallet_path)
        except FileNotFoundError:
            console.print(f"[yellow]No wallet at {config.wallet_path}. Run 'thyra server' once to create one.[/]")
            raise SystemExit(1)
        except ThyraError as exc:
            console.print(f"[red]{exc}[/]")
            raise SystemExit(1)
        console.print(f"[bold]Address:[/] [cyan]{w.address}[/]")

    @wallet.command("export")
    @click.argument("path", type=click.Path(dir_okay=False))
    @click.option("--home", default=THYRA_HOME, type=click.Path(), help="Thyra home directory.")
    def wallet_export(path, home):
        """Copy the wallet JWK to PATH.

        Examples:

            thyra wallet export /mnt/usb/thyra-wallet.json
        """
        from ..errors import ThyraError
        from ..wallet import Wallet

        config = resolve_config(home)
        try:
            w = Wallet.load(config.wallet_path)
            exported = w.export(path)
        except FileNotFoundError:
            console.print(f"[yellow]No wallet at {config.wallet_path}.[/]")
            raise SystemExit(1)
        except (ThyraError, OSError) as exc:
            console.print(f"[red]Export failed: {exc}[/]")
            raise SystemExit(1)
        console.print(Panel(
            f"[bold green]Wallet exported[/]\n"
            f"Address: {w.address}\n"
            f"Path: [cyan]{exported}[/]\n"
            f"[dim]This file is a private key. Store it offline.[/]",
            title="Wallet Export",
            border_style="green",
        ))
