"""
Upload log — an optional local record of what this deployment stored.

A single SQLite table. Rows never contain key material: share URLs
are written without their fragment. A failed write is logged and never
fails the upload that produced it.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .models import UploadRecord
from .share import strip_fragment

logger = logging.getLogger("thyra.uploads")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS uploads (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    share_url TEXT,
    timestamp INTEGER,
    encrypted BOOLEAN,
    size INTEGER,
    note TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


class UploadLog:
    """SQLite-backed upload history.

    Args:
        path: Database file.
        enabled: When False every method is a no-op.
    """

    def __init__(self, path: Path, enabled: bool = True) -> None:
        self.path = Path(path).expanduser()
        self.enabled = enabled
        self._lock = threading.Lock()
        self._initialized = False

    def initialize(self) -> None:
        """Create the database and table if needed."""
        if not self.enabled:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_SCHEMA)
        self._initialized = True
        logger.info("Upload log initialized: %s", self.path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def save(self, record: UploadRecord) -> bool:
        """Insert or replace one record.

        Returns:
            True if written, False if disabled or the write failed.
        """
        if not self.enabled:
            return False
        if not self._initialized:
            self.initialize()
        share_url = strip_fragment(record.share_url) if record.share_url else None
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO uploads "
                    "(id, url, share_url, timestamp, encrypted, size, note) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.url,
                        share_url,
                        record.timestamp,
                        record.encrypted,
                        record.size,
                        record.note,
                    ),
                )
        except sqlite3.Error as exc:
            logger.error("Failed to log upload %s: %s", record.id, exc)
            return False
        return True

    def list_uploads(
        self,
        since: Optional[int] = None,
        id: Optional[str] = None,
        note: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[UploadRecord]:
        """Query uploads, newest first.

        Args:
            since: Only uploads with ``timestamp >= since`` (epoch ms).
            id: Substring match on id.
            note: Substring match on note.
            limit: Maximum rows; 0 returns none.

        Raises:
            ValueError: If ``limit`` is negative.
        """
        if not self.enabled:
            return []
        if not self._initialized:
            self.initialize()

        query = "SELECT * FROM uploads WHERE 1=1"
        params: list = []
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(int(since))
        if id:
            query += " AND id LIKE ?"
            params.append(f"%{id}%")
        if note:
            query += " AND note LIKE ?"
            params.append(f"%{note}%")
        query += " ORDER BY timestamp DESC"
        if limit is not None:
            if int(limit) < 0:
                raise ValueError("limit must not be negative")
            query += " LIMIT ?"
            params.append(int(limit))

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            UploadRecord(
                id=row["id"],
                url=row["url"],
                share_url=row["share_url"],
                timestamp=row["timestamp"],
                encrypted=bool(row["encrypted"]),
                size=row["size"],
                note=row["note"],
            )
            for row in rows
        ]
