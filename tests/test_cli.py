"""Tests for the thyra CLI."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from thyra import __version__, cipher
from thyra.cli import main
from thyra.client import ThyraClient
from thyra.errors import ApiError
from thyra.network import ArweaveClient
from thyra.share import build_share_link
from thyra.wallet import Wallet

TX_ID = "C" * 43

UPLOAD_RESPONSE = {
    "success": True,
    "id": TX_ID,
    "uploadId": "u-1",
    "url": f"https://arweave.net/{TX_ID}",
    "shareUrl": f"http://localhost:3000/share/{TX_ID}#decrypt=abc",
    "timestamp": 1700000000000,
    "encrypted": True,
    "size": 128,
}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestMain:
    """Tests for the top-level group."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--help"])
        for command in ("server", "upload", "message", "list", "wallet", "config", "drive", "open"):
            assert command in result.output


class TestServerCommand:
    """Tests for `thyra server`."""

    def test_flags_override_config(self, runner: CliRunner, thyra_home: Path) -> None:
        with patch("thyra.server.run_server") as run, patch("thyra.config.setup_logging"):
            result = runner.invoke(
                main,
                ["server", "--home", str(thyra_home), "--port", "8080", "--api-key", "secret", "--db"],
                env={"PORT": "9000"},
            )
        assert result.exit_code == 0, result.output
        config = run.call_args.args[0]
        assert config.port == 8080
        assert config.api_key == "secret"
        assert config.db_enabled
        assert "secret" not in result.output
        assert "***ret" in result.output

    def test_startup_failure_exits_nonzero(self, runner: CliRunner, thyra_home: Path) -> None:
        with patch("thyra.server.run_server", side_effect=OSError("address in use")), \
                patch("thyra.config.setup_logging"):
            result = runner.invoke(main, ["server", "--home", str(thyra_home)])
        assert result.exit_code == 1
        assert "address in use" in result.output


class TestUploadCommands:
    """Tests for upload, message, and list."""

    def test_message(self, runner: CliRunner) -> None:
        with patch.object(ThyraClient, "upload_message", return_value=UPLOAD_RESPONSE) as upload:
            result = runner.invoke(main, ["message", "Hello Arweave!", "--note", "hi"])
        assert result.exit_code == 0, result.output
        assert TX_ID in result.output
        upload.assert_called_once_with(
            "Hello Arweave!", encryption="random", custom_key=None, note="hi", store=True,
        )

    def test_message_json_output(self, runner: CliRunner) -> None:
        with patch.object(ThyraClient, "upload_message", return_value=UPLOAD_RESPONSE):
            result = runner.invoke(main, ["message", "x", "--json", "--no-store", "-e", "none"])
        assert json.loads(result.output) == UPLOAD_RESPONSE

    def test_message_failure(self, runner: CliRunner) -> None:
        error = ApiError(401, "UNAUTHORIZED", "Valid API key required")
        with patch.object(ThyraClient, "upload_message", side_effect=error):
            result = runner.invoke(main, ["message", "x"])
        assert result.exit_code == 1
        assert "UNAUTHORIZED" in result.output

    def test_upload_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        with patch.object(ThyraClient, "upload_file", return_value=UPLOAD_RESPONSE) as upload:
            result = runner.invoke(main, ["upload", str(path), "-e", "drive"])
        assert result.exit_code == 0, result.output
        args, kwargs = upload.call_args
        assert args[0] == path
        assert kwargs["encryption"] == "drive"
        assert kwargs["content_type"] == "text/plain"

    def test_upload_missing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(main, ["upload", str(tmp_path / "absent.bin")])
        assert result.exit_code == 2

    def test_server_url_from_env(self, runner: CliRunner) -> None:
        seen = {}

        def fake_upload(self, text, **kwargs):
            seen["url"] = self.base_url
            seen["key"] = self.api_key
            return UPLOAD_RESPONSE

        with patch.object(ThyraClient, "upload_message", fake_upload):
            runner.invoke(main, ["message", "x"], env={"THYRA_SERVER": "http://remote:9000/", "API_KEY": "k1"})
        assert seen == {"url": "http://remote:9000", "key": "k1"}

    def test_list(self, runner: CliRunner) -> None:
        rows = [{
            "id": "up-1", "url": "https://arweave.net/x", "share_url": None,
            "timestamp": 1700000000000, "encrypted": False, "size": 5, "note": "memo",
        }]
        with patch.object(ThyraClient, "list_uploads", return_value=rows) as list_uploads:
            result = runner.invoke(main, ["list", "--note", "memo", "--limit", "5"])
        assert result.exit_code == 0, result.output
        assert "up-1" in result.output
        list_uploads.assert_called_once_with(since=None, id=None, note="memo", limit=5)

    def test_list_empty(self, runner: CliRunner) -> None:
        with patch.object(ThyraClient, "list_uploads", return_value=[]):
            result = runner.invoke(main, ["list"])
        assert "No uploads found" in result.output


class TestWalletCommands:
    """Tests for wallet address and export."""

    def test_address(self, runner: CliRunner, thyra_home: Path, wallet: Wallet) -> None:
        wallet.export(thyra_home / "wallet.json")
        result = runner.invoke(main, ["wallet", "address", "--home", str(thyra_home)])
        assert result.exit_code == 0, result.output
        assert wallet.address in result.output

    def test_address_without_wallet(self, runner: CliRunner, thyra_home: Path) -> None:
        result = runner.invoke(main, ["wallet", "address", "--home", str(thyra_home)])
        assert result.exit_code == 1
        assert "No wallet" in result.output

    def test_export(self, runner: CliRunner, thyra_home: Path, wallet: Wallet, tmp_path: Path) -> None:
        wallet.export(thyra_home / "wallet.json")
        target = tmp_path / "backup.json"
        result = runner.invoke(main, ["wallet", "export", str(target), "--home", str(thyra_home)])
        assert result.exit_code == 0, result.output
        assert Wallet.load(target).address == wallet.address


class TestInfoCommands:
    """Tests for config and drive."""

    def test_config_masks_api_key(self, runner: CliRunner, thyra_home: Path) -> None:
        result = runner.invoke(main, ["config", "--home", str(thyra_home)], env={"API_KEY": "supersecret"})
        assert result.exit_code == 0, result.output
        assert "***ret" in result.output
        assert "supersecret" not in result.output

    def test_drive_absent(self, runner: CliRunner, thyra_home: Path) -> None:
        result = runner.invoke(main, ["drive", "--home", str(thyra_home)])
        assert result.exit_code == 0
        assert "No drive state" in result.output

    def test_drive_present(self, runner: CliRunner, thyra_home: Path) -> None:
        (thyra_home / "drive-state.json").write_text(json.dumps({
            "driveId": "d-123", "rootFolderId": "f-456",
            "driveTxId": "tx-d", "rootFolderTxId": "tx-f", "createdAt": 1,
        }))
        result = runner.invoke(main, ["drive", "--home", str(thyra_home)])
        assert result.exit_code == 0, result.output
        assert "d-123" in result.output
        assert "f-456" in result.output


class TestOpenCommand:
    """Tests for `thyra open`."""

    def test_decrypts_to_file(self, runner: CliRunner, thyra_home: Path, tmp_path: Path) -> None:
        key = os.urandom(32)
        stored = cipher.envelope_to_bytes(cipher.encrypt(b"shared secret", key))
        link = build_share_link("https://thyra.test", TX_ID, key)
        out = tmp_path / "out.txt"

        with patch.object(ArweaveClient, "fetch", return_value=stored) as fetch:
            result = runner.invoke(main, ["open", link, "--output", str(out), "--home", str(thyra_home)])

        assert result.exit_code == 0, result.output
        assert out.read_bytes() == b"shared secret"
        fetch.assert_called_once_with(TX_ID)

    def test_stdout(self, runner: CliRunner, thyra_home: Path) -> None:
        key = os.urandom(32)
        stored = cipher.envelope_to_bytes(cipher.encrypt(b"to stdout", key))
        with patch.object(ArweaveClient, "fetch", return_value=stored):
            result = runner.invoke(
                main,
                ["open", build_share_link("https://t", TX_ID, key), "--stdout", "--home", str(thyra_home)],
            )
        assert result.exit_code == 0
        assert result.stdout_bytes == b"to stdout"

    def test_invalid_key_never_fetches(self, runner: CliRunner, thyra_home: Path) -> None:
        with patch.object(ArweaveClient, "fetch") as fetch:
            result = runner.invoke(
                main, ["open", f"https://t/share/{TX_ID}#decrypt=", "--home", str(thyra_home)]
            )
        assert result.exit_code == 1
        assert "No decryption key" in result.output
        fetch.assert_not_called()
