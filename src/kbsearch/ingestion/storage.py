"""
Blob storage for uploaded document binaries.

Keys look like ``users/<user_id>/<ms>-<name>`` for personal uploads and
``orgs/<organization_id>/<ms>-<name>`` for organization uploads.
"""

import logging
import re
import threading
import time
from pathlib import Path
from typing import Optional, Protocol

from kbsearch.config import settings

logger = logging.getLogger(__name__)

MAX_KEY_NAME_LENGTH = 100

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def generate_storage_key(
    user_id: str,
    filename: str,
    organization_id: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Generate a unique storage key for a document.

    Args:
        user_id: Uploading user
        filename: Original file name
        organization_id: Organization the upload belongs to, if any
        timestamp_ms: Millisecond timestamp (default: now)

    Returns:
        Storage key with a sanitized file name of at most 100 characters

    Example:
        >>> generate_storage_key("u1", "Q3 plan (final).pdf", timestamp_ms=1700000000000)
        'users/u1/1700000000000-Q3_plan__final_.pdf'
    """
    timestamp = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    sanitized = _UNSAFE_NAME_CHARS.sub("_", filename)[:MAX_KEY_NAME_LENGTH]

    if organization_id:
        return f"orgs/{organization_id}/{timestamp}-{sanitized}"
    return f"users/{user_id}/{timestamp}-{sanitized}"


class BlobStorage(Protocol):
    """Key/value storage for document binaries."""

    def put(self, key: str, content: bytes, content_type: Optional[str] = None) -> str: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


class LocalBlobStorage:
    """
    Filesystem blob storage rooted at a directory.

    Keys map to relative paths under the root; keys that would escape the
    root are rejected.
    """

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = Path(root or settings.storage_dir).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"Storage key escapes storage root: {key}")
        return path

    def put(self, key: str, content: bytes, content_type: Optional[str] = None) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.debug(f"Stored {len(content)} bytes at {path}")
        return key

    def get(self, key: str) -> bytes:
        """
        Read a stored binary.

        Raises:
            FileNotFoundError: If nothing is stored under ``key``
        """
        return self._path(key).read_bytes()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class InMemoryBlobStorage:
    """Blob storage held in a dictionary; for tests and local runs."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, content: bytes, content_type: Optional[str] = None) -> str:
        with self._lock:
            self._blobs[key] = bytes(content)
        return key

    def get(self, key: str) -> bytes:
        with self._lock:
            if key not in self._blobs:
                raise FileNotFoundError(f"No blob stored under key: {key}")
            return self._blobs[key]

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)
