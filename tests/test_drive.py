"""Tests for drive bootstrap and the init lock."""

from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path

import pytest

from thyra.drive import DriveLockTimeout, DriveTree, InitLock, file_tags, load_drive_state
from thyra.models import DriveState
from thyra.transactions import StorageTransactionBuilder
from thyra.wallet import Wallet


def _tree(wallet: Wallet, network, state_path: Path, **kwargs) -> DriveTree:
    return DriveTree(StorageTransactionBuilder(wallet, network), state_path, lock_timeout=2.0, **kwargs)


def _tag_dict(item) -> dict:
    return {t.name: t.value for t in item.tags}


class TestBootstrap:
    """Tests for first-run drive creation."""

    def test_creates_drive_then_folder(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        state = _tree(wallet, fake_network, tmp_path / "drive-state.json").bootstrap()

        assert state is not None
        assert len(fake_network.submitted) == 2
        drive_item, folder_item = fake_network.submitted
        drive_tags = _tag_dict(drive_item)
        folder_tags = _tag_dict(folder_item)

        assert drive_tags["Entity-Type"] == "drive"
        assert drive_tags["Drive-Privacy"] == "public"
        assert drive_tags["Drive-Id"] == state.drive_id
        assert drive_tags["ArFS"] == "0.11"
        assert json.loads(drive_item.data) == {"name": "Thyra Uploads", "rootFolderId": state.root_folder_id}

        assert folder_tags["Entity-Type"] == "folder"
        assert folder_tags["Folder-Id"] == state.root_folder_id
        assert folder_tags["Drive-Id"] == state.drive_id
        assert json.loads(folder_item.data) == {"name": "Root"}

        assert state.drive_tx_id == drive_item.id
        assert state.root_folder_tx_id == folder_item.id

    def test_state_file_uses_camel_case(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        path = tmp_path / "drive-state.json"
        state = _tree(wallet, fake_network, path).bootstrap()
        data = json.loads(path.read_text())
        assert data["driveId"] == state.drive_id
        assert data["rootFolderId"] == state.root_folder_id
        assert {"driveTxId", "rootFolderTxId", "createdAt"} <= set(data)

    def test_idempotent(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        """A second bootstrap reuses the state and submits nothing."""
        path = tmp_path / "drive-state.json"
        first = _tree(wallet, fake_network, path).bootstrap()
        second = _tree(wallet, fake_network, path).bootstrap()
        assert first.drive_id == second.drive_id
        assert len(fake_network.submitted) == 2

    def test_reads_existing_state_file(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        path = tmp_path / "drive-state.json"
        path.write_text(json.dumps({
            "driveId": "d-1", "rootFolderId": "f-1",
            "driveTxId": "tx-d", "rootFolderTxId": "tx-f", "createdAt": 1,
        }))
        state = _tree(wallet, fake_network, path).bootstrap()
        assert state.drive_id == "d-1"
        assert fake_network.submitted == []

    def test_failed_drive_submission_leaves_no_state(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        fake_network.fail_status = 500
        path = tmp_path / "drive-state.json"
        assert _tree(wallet, fake_network, path).bootstrap() is None
        assert not path.exists()

    def test_failed_folder_submission_leaves_no_state(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        fake_network.fail_status = 500
        fake_network.fail_after = 1
        path = tmp_path / "drive-state.json"
        assert _tree(wallet, fake_network, path).bootstrap() is None
        assert not path.exists()
        assert len(fake_network.submitted) == 1

    def test_unreadable_state_is_not_replaced(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        path = tmp_path / "drive-state.json"
        path.write_text("{broken")
        assert _tree(wallet, fake_network, path).bootstrap() is None
        assert path.read_text() == "{broken"
        assert fake_network.submitted == []

    def test_lock_released_after_bootstrap(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        path = tmp_path / "drive-state.json"
        _tree(wallet, fake_network, path).bootstrap()
        assert not (tmp_path / "drive-state.json.lock").exists()

    def test_concurrent_bootstrap_creates_one_drive(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        path = tmp_path / "drive-state.json"
        results: list[DriveState] = []

        def run() -> None:
            results.append(_tree(wallet, fake_network, path).bootstrap())

        threads = [threading.Thread(target=run) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({r.drive_id for r in results}) == 1
        assert len(fake_network.submitted) == 2


class TestInitLock:
    """Tests for the bootstrap lock file."""

    def test_times_out_when_held(self, tmp_path: Path) -> None:
        path = tmp_path / "state.lock"
        with InitLock(path):
            with pytest.raises(DriveLockTimeout):
                InitLock(path, timeout=0.2, poll_interval=0.05).acquire()

    def test_breaks_stale_lock(self, tmp_path: Path) -> None:
        path = tmp_path / "state.lock"
        path.write_text("12345")
        old = time.time() - 1000
        os.utime(path, (old, old))
        with InitLock(path, timeout=0.2, stale_after=10):
            assert path.read_text() == str(os.getpid())
        assert not path.exists()

    def test_stale_break_keeps_a_newer_lock(self, tmp_path: Path) -> None:
        path = tmp_path / "state.lock"
        path.write_text("12345")
        old = time.time() - 1000
        os.utime(path, (old, old))
        lock = InitLock(path, stale_after=10)
        seen = lock._stale_stat()
        assert seen is not None

        # another waiter breaks the stale lock and takes a fresh one
        path.unlink()
        path.write_text("67890")

        lock._break_stale(seen)
        assert path.read_text() == "67890"
        assert [p.name for p in tmp_path.iterdir()] == ["state.lock"]

    def test_fresh_lock_is_not_stale(self, tmp_path: Path) -> None:
        path = tmp_path / "state.lock"
        path.write_text("12345")
        assert InitLock(path, stale_after=10)._stale_stat() is None

    def test_bootstrap_soft_fails_on_lock_timeout(self, wallet: Wallet, fake_network, tmp_path: Path) -> None:
        path = tmp_path / "drive-state.json"
        with InitLock(tmp_path / "drive-state.json.lock"):
            tree = DriveTree(StorageTransactionBuilder(wallet, fake_network), path, lock_timeout=0.2)
            assert tree.bootstrap() is None
        assert fake_network.submitted == []


class TestFileTags:
    """Tests for per-upload ArFS tags."""

    def test_file_tags(self) -> None:
        drive = DriveState(drive_id="d", root_folder_id="f", drive_tx_id="x", root_folder_tx_id="y")
        tags = {t.name: t.value for t in file_tags(drive)}
        assert tags["Entity-Type"] == "file"
        assert tags["Drive-Id"] == "d"
        assert tags["Parent-Folder-Id"] == "f"
        assert tags["File-Id"] != {t.name: t.value for t in file_tags(drive)}["File-Id"]

    def test_load_drive_state_missing(self, tmp_path: Path) -> None:
        assert load_drive_state(tmp_path / "nope.json") is None
