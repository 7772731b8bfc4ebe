"""Upload commands: upload, message, list. These talk to a running server."""

from __future__ import annotations

import json
import mimetypes
from datetime import datetime
from pathlib import Path

import click
from rich.panel import Panel
from rich.table import Table

from ._common import console, make_client

ENCRYPTION_CHOICES = click.Choice(["none", "random", "drive", "custom"])


def _server_options(fn):
    fn = click.option("--api-key", "-k", default=None, help="API key (or env API_KEY).")(fn)
    fn = click.option("--server", "-s", default=None, help="Server URL (or env THYRA_SERVER).")(fn)
    return fn


def _print_result(result: dict, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result, indent=2))
        return
    lines = [
        "[bold green]Stored on Arweave[/]",
        f"ID: {result['id']}",
        f"URL: [cyan]{result['url']}[/]",
        f"Size: {result['size']} bytes",
        f"Encrypted: {'yes' if result['encrypted'] else 'no'}",
    ]
    if result.get("shareUrl"):
        lines.append(f"Share: [cyan]{result['shareUrl']}[/]")
        lines.append("[dim]Anyone with the share link can decrypt. Keep it safe.[/]")
    console.print(Panel("\n".join(lines), title="Upload Complete", border_style="green"))


def register_upload_commands(main: click.Group) -> None:
    """Register upload, message, and list."""

    @main.command("upload")
    @click.argument("file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--encryption", "-e", type=ENCRYPTION_CHOICES, default="random", help="Encryption mode.")
    @click.option("--key", "custom_key", default=None, help="Key for --encryption custom (hex or base64).")
    @click.option("--note", "-n", default=None, help="Note stored in the upload log.")
    @click.option("--json", "as_json", is_flag=True, help="Print the raw API response.")
    @_server_options
    def upload(file, encryption, custom_key, note, as_json, server, api_key):
        """Upload a file through the Thyra server.

        Examples:

            thyra upload report.pdf

            thyra upload notes.txt -e none --note "public notes"
        """
        from ..errors import ThyraError

        path = Path(file)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            result = make_client(server, api_key).upload_file(
                path, encryption=encryption, custom_key=custom_key, note=note, content_type=content_type,
            )
        except ThyraError as exc:
            console.print(f"[red]Upload failed: {exc}[/]")
            raise SystemExit(1)
        _print_result(result, as_json)

    @main.command("message")
    @click.argument("text")
    @click.option("--encryption", "-e", type=ENCRYPTION_CHOICES, default="random", help="Encryption mode.")
    @click.option("--key", "custom_key", default=None, help="Key for --encryption custom (hex or base64).")
    @click.option("--note", "-n", default=None, help="Note stored in the upload log.")
    @click.option("--no-store", is_flag=True, help="Do not record this upload in the log.")
    @click.option("--json", "as_json", is_flag=True, help="Print the raw API response.")
    @_server_options
    def message(text, encryption, custom_key, note, no_store, as_json, server, api_key):
        """Store a text message.

        Examples:

            thyra message "Hello Arweave!"
        """
        from ..errors import ThyraError

        try:
            result = make_client(server, api_key).upload_message(
                text, encryption=encryption, custom_key=custom_key, note=note, store=not no_store,
            )
        except ThyraError as exc:
            console.print(f"[red]Upload failed: {exc}[/]")
            raise SystemExit(1)
        _print_result(result, as_json)

    @main.command("list")
    @click.option("--since", type=int, default=None, help="Only uploads at or after this epoch-ms timestamp.")
    @click.option("--id", "upload_id", default=None, help="Filter by upload id (substring).")
    @click.option("--note", "-n", default=None, help="Filter by note (substring).")
    @click.option("--limit", type=int, default=20, show_default=True, help="Maximum rows.")
    @click.option("--json", "as_json", is_flag=True, help="Print the raw API response.")
    @_server_options
    def list_cmd(since, upload_id, note, limit, as_json, server, api_key):
        """List recent uploads from the server's upload log."""
        from ..errors import ThyraError

        try:
            uploads = make_client(server, api_key).list_uploads(
                since=since, id=upload_id, note=note, limit=limit,
            )
        except ThyraError as exc:
            console.print(f"[red]Could not list uploads: {exc}[/]")
            raise SystemExit(1)

        if as_json:
            click.echo(json.dumps(uploads, indent=2))
            return
        if not uploads:
            console.print("[dim]No uploads found.[/]")
            return

        table = Table(title="Uploads")
        table.add_column("Upload ID", style="cyan", no_wrap=True)
        table.add_column("When")
        table.add_column("Size", justify="right")
        table.add_column("Enc")
        table.add_column("Note")
        table.add_column("URL", style="dim")
        for row in uploads:
            when = datetime.fromtimestamp(row["timestamp"] / 1000).strftime("%Y-%m-%d %H:%M") if row.get("timestamp") else ""
            table.add_row(
                row["id"],
                when,
                str(row.get("size", "")),
                "yes" if row.get("encrypted") else "no",
                row.get("note") or "",
                row["url"],
            )
        console.print(table)
