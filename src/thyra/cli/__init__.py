"""
Thyra CLI — store and share content on Arweave.

Each command group lives in its own module and is registered on the
main Click group here.

Entry point: thyra.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="thyra")
def main():
    """Thyra — permanent, encrypted storage on Arweave.

    Run the API server, upload files and messages, and open share links.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .server import register_server_commands
from .upload import register_upload_commands
from .wallet import register_wallet_commands
from .info import register_info_commands
from .open_cmd import register_open_commands

register_server_commands(main)
register_upload_commands(main)
register_wallet_commands(main)
register_info_commands(main)
register_open_commands(main)
