"""
Index of unconfirmed uploads.

Maps a confirmation token to the identity hash and staged blob it belongs
to, so confirming an upload does not need to scan the staging directory.
Entries older than the configured TTL are treated as expired.
"""

from __future__ import annotations

import os
import sqlite3
import time
from typing import List, Optional

from .errors import StorageError
from .models import PendingUpload


class PendingUploadStore:
    """
    SQLite-based index of pending uploads.

    Suitable for single-instance deployments. Data is persisted to disk
    and survives restarts.
    """

    def __init__(self, path: str, ttl_seconds: Optional[int] = None):
        """
        Initialize the index.

        Args:
            path: Path to SQLite database file
            ttl_seconds: Lifetime of an entry; None keeps entries forever
        """
        self.path = path
        self.ttl_seconds = ttl_seconds
        self._ensure_directory()
        self._init_db()

    def _ensure_directory(self) -> None:
        dir_path = os.path.dirname(self.path)
        if dir_path and not os.path.exists(dir_path):
            os.makedirs(dir_path, exist_ok=True)

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, check_same_thread=False)

    def _init_db(self) -> None:
        con = self._conn()
        try:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_uploads (
                    token TEXT PRIMARY KEY,
                    identity_hash TEXT NOT NULL,
                    staged_key TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            # Index for TTL cleanup queries
            con.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_pending_uploads_created
                ON pending_uploads(created_at)
                """
            )
            con.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialize pending upload index {self.path}: {e}") from e
        finally:
            con.close()

    def _expired(self, created_at: float, now: Optional[float] = None) -> bool:
        if self.ttl_seconds is None:
            return False
        return ((now or time.time()) - created_at) > self.ttl_seconds

    def add(self, upload: PendingUpload) -> None:
        con = self._conn()
        try:
            con.execute(
                """
                INSERT INTO pending_uploads (token, identity_hash, staged_key, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(token) DO UPDATE SET
                    identity_hash=excluded.identity_hash,
                    staged_key=excluded.staged_key,
                    created_at=excluded.created_at
                """,
                (upload.token, upload.identity_hash, upload.staged_key, upload.created_at),
            )
            con.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot index pending upload: {e}") from e
        finally:
            con.close()

    def lookup(self, token: str) -> Optional[PendingUpload]:
        """
        Retrieve the entry for ``token``.

        Expired entries are returned too; check them with ``is_expired``.

        Returns:
            The pending upload, or None if unknown
        """
        con = self._conn()
        try:
            row = con.execute(
                "SELECT identity_hash, staged_key, created_at "
                "FROM pending_uploads WHERE token=?",
                (token,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read pending upload index: {e}") from e
        finally:
            con.close()

        if not row:
            return None
        identity_hash, staged_key, created_at = row
        return PendingUpload(token, identity_hash, staged_key, float(created_at))

    def for_identity(self, identity_hash: str) -> List[PendingUpload]:
        """All entries staged for ``identity_hash``, oldest first."""
        con = self._conn()
        try:
            rows = con.execute(
                "SELECT token, staged_key, created_at FROM pending_uploads "
                "WHERE identity_hash=? ORDER BY created_at",
                (identity_hash,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read pending upload index: {e}") from e
        finally:
            con.close()
        return [PendingUpload(t, identity_hash, k, float(c)) for t, k, c in rows]

    def is_expired(self, upload: PendingUpload) -> bool:
        return self._expired(upload.created_at)

    def remove(self, token: str) -> None:
        con = self._conn()
        try:
            con.execute("DELETE FROM pending_uploads WHERE token=?", (token,))
            con.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot update pending upload index: {e}") from e
        finally:
            con.close()

    def cleanup_expired(self) -> List[PendingUpload]:
        """
        Remove all expired entries.

        Returns:
            The entries that were removed
        """
        if self.ttl_seconds is None:
            return []
        cutoff = time.time() - self.ttl_seconds
        con = self._conn()
        try:
            rows = con.execute(
                "SELECT token, identity_hash, staged_key, created_at "
                "FROM pending_uploads WHERE created_at < ?",
                (cutoff,),
            ).fetchall()
            con.execute("DELETE FROM pending_uploads WHERE created_at < ?", (cutoff,))
            con.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot clean up pending upload index: {e}") from e
        finally:
            con.close()
        return [PendingUpload(t, h, k, float(c)) for t, h, k, c in rows]
