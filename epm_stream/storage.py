#!/usr/bin/env python3
"""
Snapshot Storage for the EPM Stream Service

Keeps the "last stack": a single file holding the most recently transmitted
or received stream. The file is fully overwritten by every generate or ingest
operation, never appended to.

All access goes through one lock so generate, ingest and replay operations
serialize on the snapshot instead of racing on the same path.
"""

import io
import logging
import os
import threading
from pathlib import Path
from typing import BinaryIO, Optional

from .models import DEFAULT_SNAPSHOT_PATH


# =============================================================================
# Constants
# =============================================================================

# Owner read/write, group/other read
SNAPSHOT_FILE_MODE = 0o644


# =============================================================================
# Writer Handle
# =============================================================================

class SnapshotWriter:
    """
    Write handle on a freshly truncated snapshot.

    Holds the store lock until closed.
    """

    def __init__(self, stream: BinaryIO, lock: threading.Lock, on_close=None):
        self._stream = stream
        self._lock = lock
        self._on_close = on_close
        self.bytes_written = 0
        self.closed = False

    def write(self, data: bytes) -> int:
        written = self._stream.write(data)
        self.bytes_written += len(data)
        return written

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            if self._on_close:
                self._on_close(self._stream)
            else:
                self._stream.close()
        finally:
            self._lock.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


# =============================================================================
# Storage Manager
# =============================================================================

class SnapshotStore:
    """
    File-backed snapshot of the last stream.

    Args:
        path: Snapshot file path.
        lock: Mutual-exclusion guard. A private lock by default.
    """

    def __init__(self, path: str = DEFAULT_SNAPSHOT_PATH, lock: Optional[threading.Lock] = None):
        self.path = Path(path)
        self.lock = lock or threading.Lock()
        self.logger = logging.getLogger("SnapshotStore")

    def begin_write(self) -> SnapshotWriter:
        """
        Truncate the snapshot and return a writer holding the lock.

        Raises:
            OSError: If the file cannot be created. The lock is released.
        """
        self.lock.acquire()
        try:
            stream = self._open_truncated()
        except BaseException:
            self.lock.release()
            raise
        return SnapshotWriter(stream, self.lock, on_close=self._finish_write)

    def _open_truncated(self) -> BinaryIO:
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SNAPSHOT_FILE_MODE)
        return os.fdopen(fd, "wb")

    def _finish_write(self, stream: BinaryIO):
        stream.close()

    def overwrite(self, data: bytes) -> int:
        """
        Replace the snapshot with `data` verbatim.

        Returns:
            Number of bytes written.
        """
        with self.begin_write() as writer:
            writer.write(data)
        self.logger.debug(f"Snapshot overwritten: {len(data)} bytes -> {self.path}")
        return len(data)

    def read(self) -> bytes:
        """
        Read the whole snapshot.

        Raises:
            FileNotFoundError: If no snapshot has been written yet.
        """
        with self.lock:
            return self._read_unlocked()

    def _read_unlocked(self) -> bytes:
        with open(self.path, "rb") as f:
            return f.read()

    def exists(self) -> bool:
        return self.path.exists()

    def size(self) -> int:
        """Snapshot size in bytes, 0 if it does not exist."""
        with self.lock:
            return self.path.stat().st_size if self.path.exists() else 0

    def describe(self) -> str:
        return str(self.path)


class MemorySnapshotStore(SnapshotStore):
    """In-memory snapshot with the same locking behavior, for tests and dry runs."""

    def __init__(self, data: Optional[bytes] = None, lock: Optional[threading.Lock] = None):
        super().__init__(path=":memory:", lock=lock)
        self._data = data

    def _open_truncated(self) -> BinaryIO:
        self._data = b""
        return io.BytesIO()

    def _finish_write(self, stream: BinaryIO):
        self._data = stream.getvalue()
        stream.close()

    def _read_unlocked(self) -> bytes:
        if self._data is None:
            raise FileNotFoundError(f"No snapshot stored in {self.describe()}")
        return self._data

    def exists(self) -> bool:
        return self._data is not None

    def size(self) -> int:
        with self.lock:
            return len(self._data) if self._data is not None else 0

    def describe(self) -> str:
        return "memory"
