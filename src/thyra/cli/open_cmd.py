"""The ``open`` command: decrypt a share link locally."""

from __future__ import annotations

from pathlib import Path

import click

from ._common import THYRA_HOME, console, resolve_config


def register_open_commands(main: click.Group) -> None:
    """Register the open command."""

    @main.command("open")
    @click.argument("link")
    @click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
                  help="Write plaintext here (default: decrypted_<id>[.txt]).")
    @click.option("--stdout", "to_stdout", is_flag=True, help="Write plaintext to stdout.")
    @click.option("--home", default=THYRA_HOME, type=click.Path(), help="Thyra home directory.")
    def open_cmd(link, output, to_stdout, home):
        """Fetch and decrypt a share link.

        The key is read from the link's #decrypt= fragment and never sent
        anywhere; only the record id goes to the gateway.

        Examples:

            thyra open 'https://host/share/<id>#decrypt=...'
        """
        from ..errors import ThyraError
        from ..network import ArweaveClient
        from ..share import open_share_link

        config = resolve_config(home)
        client = ArweaveClient(config.gateway_url, config.upload_url, timeout=config.timeout)
        try:
            content = open_share_link(link, client)
        except ThyraError as exc:
            console.print(f"[red]{exc}[/]")
            raise SystemExit(1)

        if to_stdout:
            click.get_binary_stream("stdout").write(content.data)
            return
        target = Path(output or content.suggested_filename)
        target.write_bytes(content.data)
        kind = "text" if content.is_text else "binary"
        console.print(f"[green]Decrypted {len(content.data)} bytes ({kind}) to[/] [cyan]{target}[/]")
