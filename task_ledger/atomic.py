"""
Atomic file operations and file locking utilities.

Provides replace-on-write persistence for the ledger and its detail
records, and inter-process locking so several CLI invocations never
interleave their mutations.
"""

import os
import fcntl
import json
import tempfile
import time
import atexit
from pathlib import Path
from typing import Any, Optional

from task_ledger.errors import PersistenceError


class AtomicFileWriter:
    """
    Atomic file writer using temp file + atomic replace.

    Ensures that the ledger is never observed partially written.
    Writes to a temporary file in the target directory first, then
    atomically replaces the target file using os.replace().
    """

    @staticmethod
    def write_text(filepath: Path, content: str) -> None:
        """
        Atomically write text content to a file.

        Args:
            filepath: Target file path
            content: Text to write

        Raises:
            PersistenceError: If the write fails (temp file is cleaned up)
        """
        filepath = Path(filepath)

        temp_path = None
        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)

            # Same directory as the target so os.replace stays on one filesystem
            with tempfile.NamedTemporaryFile(
                mode='w',
                dir=filepath.parent,
                prefix=f".{filepath.name}.",
                suffix='.tmp',
                delete=False,
                encoding='utf-8'
            ) as tmp_file:
                temp_path = Path(tmp_file.name)
                tmp_file.write(content)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            os.replace(temp_path, filepath)

        except OSError as e:
            if temp_path and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise PersistenceError(f"Could not write {filepath}: {e}") from e

    @staticmethod
    def write_json(filepath: Path, data: Any, indent: int = 2) -> None:
        """
        Atomically write JSON data to a file.

        Args:
            filepath: Target file path
            data: Data to serialize as JSON
            indent: JSON indentation level

        Raises:
            PersistenceError: If the write fails
        """
        try:
            content = json.dumps(data, indent=indent, default=str)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Could not serialize {filepath}: {e}") from e

        AtomicFileWriter.write_text(filepath, content + "\n")

    @staticmethod
    def read_json(filepath: Path, default: Any = None) -> Any:
        """
        Read a JSON file.

        Args:
            filepath: File to read
            default: Returned when the file does not exist

        Returns:
            Parsed JSON data or default value

        Raises:
            PersistenceError: If the file exists but cannot be read or decoded
        """
        filepath = Path(filepath)

        if not filepath.exists():
            return default

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupt JSON in {filepath}: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Could not read {filepath}: {e}") from e


class FileLock:
    """
    File-based lock using fcntl for inter-process synchronization.

    Usage:
        lock = FileLock("/path/to/tasks.lock")
        with lock:
            # Critical section
            ...

    The lock file itself is left in place on release; unlinking it would
    let a waiter lock an orphaned inode while a newcomer locks a fresh one.
    """

    def __init__(self, lockfile: Path, timeout: float = 10.0):
        """
        Initialize file lock.

        Args:
            lockfile: Path to lock file (created if needed)
            timeout: Default seconds to wait in the context manager
        """
        self.lockfile = Path(lockfile)
        self.timeout = timeout
        self.fd: Optional[Any] = None
        self._atexit_registered = False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Acquire exclusive lock with timeout.

        Args:
            timeout: Maximum seconds to wait for lock (defaults to self.timeout)

        Returns:
            True if lock acquired, False if timeout
        """
        if self.fd is not None:
            return True

        timeout = self.timeout if timeout is None else timeout
        self.lockfile.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + timeout

        while True:
            fd = open(self.lockfile, 'a+')
            try:
                fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except (BlockingIOError, PermissionError):
                # Lock held by another process (or another handle in this one)
                fd.close()
                if time.monotonic() >= deadline:
                    return False
                time.sleep(0.05)
                continue
            except BaseException:
                fd.close()
                raise

            # Write process info for debugging
            fd.seek(0)
            fd.truncate()
            fd.write(f"{os.getpid()}:{time.time()}\n")
            fd.flush()
            self.fd = fd

            if not self._atexit_registered:
                atexit.register(self.release)
                self._atexit_registered = True

            return True

    def release(self) -> None:
        """Release the lock."""
        if self.fd is None:
            return

        try:
            fcntl.flock(self.fd.fileno(), fcntl.LOCK_UN)
        except OSError:
            pass
        finally:
            self.fd.close()
            self.fd = None

    def __enter__(self):
        """Context manager entry."""
        if not self.acquire():
            raise PersistenceError(
                f"Could not acquire lock {self.lockfile} within {self.timeout}s; retry later"
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.release()
        return False

    def is_locked(self) -> bool:
        """
        Check if the lock is currently held by any handle.

        Returns:
            True if locked
        """
        if not self.lockfile.exists():
            return False

        with open(self.lockfile, 'a+') as test_fd:
            try:
                fcntl.flock(test_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except (BlockingIOError, PermissionError):
                return True
            fcntl.flock(test_fd.fileno(), fcntl.LOCK_UN)
            return False
