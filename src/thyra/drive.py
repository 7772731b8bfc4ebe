"""
Drive tree — one drive, one root folder, created once per deployment.

Uploads are organized with ArFS tags so they show up as files in a
"Thyra Uploads" drive. Bootstrapping submits two metadata records
(drive, then root folder) and writes their identifiers to a JSON state
file. Every later start reads that file and trusts it.

Bootstrap is create-if-absent under an exclusive lock file, so two
processes starting together cannot mint two drives. If either
submission fails nothing is written and the deployment runs without a
drive; uploads are then plain, untagged records.

State file (drive-state.json):
    {
      "driveId": "...", "rootFolderId": "...",
      "driveTxId": "...", "rootFolderTxId": "...",
      "createdAt": 1700000000000, "unixTime": 1700000000
    }
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .errors import ThyraError
from .models import DriveState, Tag
from .transactions import StorageTransactionBuilder

logger = logging.getLogger("thyra.drive")

ARFS_VERSION = "0.11"
ROOT_FOLDER_NAME = "Root"


class DriveLockTimeout(ThyraError):
    """Another process held the bootstrap lock for too long."""

    code = "DRIVE_LOCK_TIMEOUT"


class InitLock:
    """Advisory single-writer lock backed by an exclusively created file.

    Args:
        path: Lock file path.
        timeout: Seconds to wait for the lock.
        stale_after: Seconds after which an abandoned lock is broken.
        poll_interval: Seconds between attempts.
    """

    def __init__(
        self,
        path: Path,
        timeout: float = 30.0,
        stale_after: float = 300.0,
        poll_interval: float = 0.1,
    ) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self._held = False

    def acquire(self) -> None:
        """Block until the lock file is ours.

        Raises:
            DriveLockTimeout: If the lock is still held after ``timeout``.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                seen = self._stale_stat()
                if seen is not None:
                    self._break_stale(seen)
                    continue
                if time.monotonic() >= deadline:
                    raise DriveLockTimeout(f"Timed out waiting for {self.path}")
                time.sleep(self.poll_interval)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            self._held = True
            return

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def _stale_stat(self) -> Optional[os.stat_result]:
        """Stat of the current lock file if it is older than ``stale_after``."""
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return st if time.time() - st.st_mtime > self.stale_after else None

    def _break_stale(self, seen: os.stat_result) -> None:
        """Remove the lock file judged stale as ``seen``, and nothing newer.

        The file is renamed aside first, so only one waiter can take it. If
        what was taken is not the file that was judged stale (another waiter
        broke it and re-acquired in between), it is put back.
        """
        aside = self.path.with_name(f"{self.path.name}.{os.getpid()}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return
        taken = aside.stat()
        if (taken.st_ino, taken.st_mtime_ns) == (seen.st_ino, seen.st_mtime_ns):
            logger.warning("Breaking stale bootstrap lock %s", self.path)
        else:
            try:
                os.link(aside, self.path)
            except FileExistsError:
                logger.debug("Lock %s re-created before restore", self.path)
        aside.unlink(missing_ok=True)

    def __enter__(self) -> "InitLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


def load_drive_state(path: Path) -> Optional[DriveState]:
    """Read a drive state file.

    Returns:
        DriveState, or None if the file is absent or unreadable.
    """
    path = Path(path).expanduser()
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return DriveState.model_validate(data)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
        logger.error("Drive state %s is unreadable: %s", path, exc)
        return None


def file_tags(drive: DriveState) -> list[Tag]:
    """ArFS tags placing one upload in the drive's root folder."""
    return [
        Tag(name="Entity-Type", value="file"),
        Tag(name="Drive-Id", value=drive.drive_id),
        Tag(name="File-Id", value=str(uuid.uuid4())),
        Tag(name="Parent-Folder-Id", value=drive.root_folder_id),
        Tag(name="ArFS", value=ARFS_VERSION),
    ]


class DriveTree:
    """Bootstraps and remembers the deployment's drive.

    Args:
        builder: Submits the drive and folder records.
        state_path: Where DriveState is persisted.
        app_name: ``App-Name`` tag value.
        app_version: ``App-Version`` tag value.
        drive_name: Display name of the drive.
        lock_timeout: Seconds to wait for a concurrent bootstrap.
        lock_stale_after: Seconds before a leftover lock is broken.
    """

    def __init__(
        self,
        builder: StorageTransactionBuilder,
        state_path: Path,
        app_name: str = "Thyra",
        app_version: str = "1.0.0",
        drive_name: str = "Thyra Uploads",
        lock_timeout: float = 30.0,
        lock_stale_after: float = 300.0,
    ) -> None:
        self.builder = builder
        self.state_path = Path(state_path).expanduser()
        self.app_name = app_name
        self.app_version = app_version
        self.drive_name = drive_name
        self._lock = InitLock(
            self.state_path.with_name(self.state_path.name + ".lock"),
            timeout=lock_timeout,
            stale_after=lock_stale_after,
        )

    def load(self) -> Optional[DriveState]:
        """Read persisted state without creating anything.

        Returns:
            DriveState, or None if no usable state file exists.
        """
        return load_drive_state(self.state_path)

    def bootstrap(self) -> Optional[DriveState]:
        """Return the deployment's drive, creating it on first run.

        Returns:
            DriveState, or None if creation failed (no-drive mode).
        """
        try:
            with self._lock:
                existing = self.load()
                if existing is not None:
                    logger.info("Thyra Uploads drive found: %s", existing.drive_id)
                    logger.debug(
                        "Drive tx %s, root folder tx %s",
                        existing.drive_tx_id,
                        existing.root_folder_tx_id,
                    )
                    return existing
                if self.state_path.exists():
                    logger.error("Refusing to replace unreadable %s; continuing without a drive", self.state_path)
                    return None
                return self._create()
        except (ThyraError, OSError) as exc:
            logger.error("Drive creation failed: %s", exc)
            logger.info("Continuing without managed drive")
            return None

    def _base_tags(self, drive_id: str) -> list[Tag]:
        return [
            Tag(name="App-Name", value=self.app_name),
            Tag(name="App-Version", value=self.app_version),
            Tag(name="ArFS", value=ARFS_VERSION),
            Tag(name="Content-Type", value="application/json"),
            Tag(name="Drive-Id", value=drive_id),
        ]

    def drive_tags(self, drive_id: str, unix_time: int) -> list[Tag]:
        return self._base_tags(drive_id) + [
            Tag(name="Drive-Privacy", value="public"),
            Tag(name="Entity-Type", value="drive"),
            Tag(name="Unix-Time", value=str(unix_time)),
        ]

    def folder_tags(self, drive_id: str, folder_id: str, unix_time: int) -> list[Tag]:
        return self._base_tags(drive_id) + [
            Tag(name="Entity-Type", value="folder"),
            Tag(name="Folder-Id", value=folder_id),
            Tag(name="Unix-Time", value=str(unix_time)),
        ]

    def _create(self) -> DriveState:
        logger.info('Creating "%s" drive...', self.drive_name)
        drive_id = str(uuid.uuid4())
        root_folder_id = str(uuid.uuid4())
        unix_time = int(time.time())

        drive_meta = json.dumps({"name": self.drive_name, "rootFolderId": root_folder_id})
        drive_result = self.builder.submit(
            drive_meta.encode("utf-8"),
            "application/json",
            self.drive_tags(drive_id, unix_time),
        )
        logger.info("Drive uploaded: %s", drive_result["id"])

        folder_meta = json.dumps({"name": ROOT_FOLDER_NAME})
        folder_result = self.builder.submit(
            folder_meta.encode("utf-8"),
            "application/json",
            self.folder_tags(drive_id, root_folder_id, unix_time),
        )
        logger.info("Root folder uploaded: %s", folder_result["id"])

        state = DriveState(
            drive_id=drive_id,
            root_folder_id=root_folder_id,
            drive_tx_id=drive_result["id"],
            root_folder_tx_id=folder_result["id"],
            unix_time=unix_time,
        )
        self._persist(state)
        logger.info("Drive created: https://app.ardrive.io/#/drives/%s", drive_id)
        return state

    def _persist(self, state: DriveState) -> None:
        """Write state atomically: temp file, then replace."""
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.state_path.with_name(self.state_path.name + ".tmp")
        tmp.write_text(json.dumps(state.to_file(), indent=2), encoding="utf-8")
        os.replace(tmp, self.state_path)
