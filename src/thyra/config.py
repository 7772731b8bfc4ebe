"""
Thyra configuration.

Settings resolve in four layers, later layers winning:

    1. Built-in defaults (ThyraConfig field defaults)
    2. ``<home>/config.yaml``
    3. Environment variables (PORT, API_KEY, DB_ENABLED, ... and THYRA_*)
    4. Explicit overrides, usually CLI flags

Paths left unset are placed under the Thyra home directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

from . import THYRA_HOME, __version__

logger = logging.getLogger("thyra.config")

CONFIG_FILE = "config.yaml"
LOG_DIR = "logs"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

DEFAULT_GATEWAY_URL = "https://arweave.net"
DEFAULT_UPLOAD_URL = "https://upload.ardrive.io/v1/tx"

# env var -> config field
ENV_VARS = {
    "PORT": "port",
    "HOST": "host",
    "API_KEY": "api_key",
    "DB_ENABLED": "db_enabled",
    "DB_PATH": "db_path",
    "WALLET_PATH": "wallet_path",
    "LOG_LEVEL": "log_level",
    "NODE_ENV": "environment",
    "THYRA_ENV": "environment",
    "THYRA_DRIVE_STATE_PATH": "drive_state_path",
    "THYRA_GATEWAY_URL": "gateway_url",
    "THYRA_UPLOAD_URL": "upload_url",
    "THYRA_TIMEOUT": "timeout",
    "THYRA_PUBLIC_URL": "public_url",
}


class ThyraConfig(BaseModel):
    """Resolved configuration for a Thyra deployment."""

    home: Path = Path(THYRA_HOME)
    host: str = "0.0.0.0"
    port: int = 3000
    api_key: Optional[str] = None
    public_url: Optional[str] = Field(default=None, description="Origin used in share links")
    wallet_path: Optional[Path] = None
    drive_state_path: Optional[Path] = None
    db_enabled: bool = False
    db_path: Optional[Path] = None
    log_level: str = "info"
    environment: str = "development"
    gateway_url: str = DEFAULT_GATEWAY_URL
    upload_url: str = DEFAULT_UPLOAD_URL
    app_name: str = "Thyra"
    app_version: str = __version__
    drive_name: str = "Thyra Uploads"
    timeout: Optional[float] = Field(default=60.0, description="Network timeout in seconds")
    lock_timeout: float = 30.0
    lock_stale_after: float = 300.0

    def model_post_init(self, __context: Any) -> None:
        self.home = Path(self.home).expanduser()
        if self.wallet_path is None:
            self.wallet_path = self.home / "wallet.json"
        if self.drive_state_path is None:
            self.drive_state_path = self.home / "drive-state.json"
        if self.db_path is None:
            self.db_path = self.home / "uploads.db"
        self.gateway_url = self.gateway_url.rstrip("/")

    @property
    def masked_api_key(self) -> str:
        """API key safe for display: last three characters only."""
        return mask_secret(self.api_key)

    @property
    def log_file(self) -> Path:
        return self.home / LOG_DIR / "thyra.log"


def mask_secret(value: Optional[str]) -> str:
    """Render a secret as ``***abc``, or ``None`` when unset."""
    if not value:
        return "None"
    return "***" + value[-3:]


def _read_config_file(home: Path) -> dict:
    """Load ``config.yaml`` from the home directory.

    Returns:
        Parsed mapping, or an empty dict if the file is absent or invalid.
    """
    config_file = home / CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        logger.warning("Failed to load config: %s — using defaults", exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a mapping", config_file)
        return {}
    return data


def _read_env(environ: Optional[dict] = None) -> dict:
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for var, field in ENV_VARS.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        if field == "db_enabled":
            values[field] = raw.strip().lower() == "true"
        else:
            values[field] = raw
    return values


def load_config(
    home: Optional[Path] = None,
    overrides: Optional[dict] = None,
    environ: Optional[dict] = None,
) -> ThyraConfig:
    """Resolve the configuration for this process.

    Args:
        home: Thyra home directory. Defaults to THYRA_HOME.
        overrides: Highest-precedence values; None entries are ignored.
        environ: Environment mapping to read instead of ``os.environ``.

    Returns:
        A fully resolved ThyraConfig.
    """
    home_path = Path(home or THYRA_HOME).expanduser()

    values: dict[str, Any] = {}
    values.update(_read_config_file(home_path))
    values.update(_read_env(environ))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    values["home"] = home_path

    return ThyraConfig(**values)


def setup_logging(config: ThyraConfig, console: bool = True) -> None:
    """Configure file and console logging for a Thyra process."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()

    try:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(config.log_file)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    except OSError as exc:
        logger.warning("File logging disabled (%s)", exc)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    root.setLevel(level)
