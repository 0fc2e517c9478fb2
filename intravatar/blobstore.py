"""
Blob storage for avatar images.

Keys are paths relative to a root directory; absolute paths pass through
unchanged. The same store holds published avatars (``avatars/{hash}``)
and staged uploads (``unconfirmed/{token}-{hash}``).
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

from .errors import BlobNotFound, StorageError

AVATAR_DIR = "avatars"
UNCONFIRMED_DIR = "unconfirmed"


def avatar_key(identity_hash: str) -> str:
    return f"{AVATAR_DIR}/{identity_hash}"


def unconfirmed_key(identity_hash: str, token: str) -> str:
    return f"{UNCONFIRMED_DIR}/{token}-{identity_hash}"


class BlobStore:
    """Abstract base class for blob storage backends."""

    def load(self, key: str) -> bytes:
        """
        Read a blob.

        Raises:
            BlobNotFound: If no blob exists under ``key``
            StorageError: On any other I/O failure
        """
        raise NotImplementedError

    def save(self, key: str, data: bytes) -> None:
        """Write ``data`` under ``key``, replacing any existing blob."""
        raise NotImplementedError

    def rename(self, from_key: str, to_key: str) -> None:
        """Atomically move a blob, replacing the target if it exists."""
        raise NotImplementedError

    def find_by_prefix(self, directory: str, prefix: str) -> str:
        """
        Find the first file name in ``directory`` starting with ``prefix``.

        Raises:
            BlobNotFound: If nothing matches
        """
        raise NotImplementedError

    def last_modified(self, key: str) -> datetime:
        """Modification time of a blob (UTC)."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove a blob; missing blobs are ignored."""
        raise NotImplementedError

    def full_name(self, key: str) -> str:
        """Full name of ``key`` for logging and debugging purposes."""
        raise NotImplementedError


class FileBlobStore(BlobStore):
    """
    Blob store backed by the local file system.

    Not safe across processes: concurrent renames of the same key race
    and the last one wins.
    """

    def __init__(self, root: str):
        self.root = root

    def _path(self, key: str) -> str:
        if os.path.isabs(key):
            return key
        return os.path.join(self.root, key)

    def ensure_dirs(self, *directories: str) -> None:
        """Create the given directories below the root."""
        for d in directories:
            try:
                os.makedirs(self._path(d), exist_ok=True)
            except OSError as e:
                raise StorageError(f"Cannot create directory {self._path(d)}: {e}") from e

    def load(self, key: str) -> bytes:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise BlobNotFound(f"No such blob: {path}") from e
        except OSError as e:
            raise StorageError(f"Error reading {path}: {e}") from e

    def save(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Error writing {path}: {e}") from e

    def rename(self, from_key: str, to_key: str) -> None:
        src, dst = self._path(from_key), self._path(to_key)
        try:
            parent = os.path.dirname(dst)
            if parent:
                os.makedirs(parent, exist_ok=True)
            os.replace(src, dst)
        except FileNotFoundError as e:
            raise BlobNotFound(f"No such blob: {src}") from e
        except OSError as e:
            raise StorageError(f"Error renaming {src} to {dst}: {e}") from e

    def find_by_prefix(self, directory: str, prefix: str) -> str:
        path = self._path(directory)
        try:
            names = sorted(os.listdir(path))
        except FileNotFoundError as e:
            raise BlobNotFound(f"No such directory: {path}") from e
        except OSError as e:
            raise StorageError(f"Error listing {path}: {e}") from e
        for name in names:
            if name.startswith(prefix):
                return name
        raise BlobNotFound(f"No file in {path} starts with {prefix!r}")

    def last_modified(self, key: str) -> datetime:
        path = self._path(key)
        try:
            return datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc)
        except FileNotFoundError as e:
            raise BlobNotFound(f"No such blob: {path}") from e
        except OSError as e:
            raise StorageError(f"Error reading {path}: {e}") from e

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Error deleting {path}: {e}") from e

    def full_name(self, key: str) -> str:
        return self._path(key)
