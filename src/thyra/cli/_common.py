"""Shared utilities for the CLI command modules.

Provides the Rich console, config resolution from command options,
and the API client factory.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import THYRA_HOME
from ..client import DEFAULT_SERVER_URL, ThyraClient
from ..config import ThyraConfig, load_config

console = Console()

SERVER_URL_ENV = "THYRA_SERVER"


def resolve_config(home: str, **overrides) -> ThyraConfig:
    """Load config for ``home`` with CLI flags taking precedence."""
    return load_config(home=Path(home).expanduser(), overrides=overrides)


def make_client(server: Optional[str], api_key: Optional[str]) -> ThyraClient:
    """API client for ``--server``, falling back to THYRA_SERVER then localhost."""
    base_url = server or os.environ.get(SERVER_URL_ENV) or DEFAULT_SERVER_URL
    return ThyraClient(base_url, api_key=api_key or os.environ.get("API_KEY"))


__all__ = ["THYRA_HOME", "console", "make_client", "resolve_config"]
