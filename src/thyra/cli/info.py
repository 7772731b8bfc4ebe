"""Inspection commands: config, drive."""

from __future__ import annotations

import click
from rich.table import Table

from ._common import THYRA_HOME, console, resolve_config


def register_info_commands(main: click.Group) -> None:
    """Register config and drive."""

    @main.command("config")
    @click.option("--home", default=THYRA_HOME, type=click.Path(), help="Thyra home directory.")
    def config_cmd(home):
        """Show the resolved configuration (API key masked)."""
        config = resolve_config(home)
        table = Table(title="Thyra Configuration", show_header=False)
        table.add_column("Setting", style="bold")
        table.add_column("Value", style="cyan")
        for name, value in config.model_dump().items():
            if name == "api_key":
                value = config.masked_api_key
            table.add_row(name, str(value))
        console.print(table)

    @main.command("drive")
    @click.option("--home", default=THYRA_HOME, type=click.Path(), help="Thyra home directory.")
    def drive_cmd(home):
        """Show the deployment's drive, if one has been created."""
        from ..drive import load_drive_state

        config = resolve_config(home)
        state = load_drive_state(config.drive_state_path)
        if state is None:
            console.print(f"[yellow]No drive state at {config.drive_state_path}.[/]")
            console.print("[dim]A drive is created the first time the server starts.[/]")
            return
        table = Table(title=config.drive_name, show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value", style="cyan")
        table.add_row("Drive ID", state.drive_id)
        table.add_row("Root folder ID", state.root_folder_id)
        table.add_row("Drive tx", state.drive_tx_id)
        table.add_row("Root folder tx", state.root_folder_tx_id)
        table.add_row("Created (ms)", str(state.created_at))
        table.add_row("ArDrive", f"https://app.ardrive.io/#/drives/{state.drive_id}")
        console.print(table)
