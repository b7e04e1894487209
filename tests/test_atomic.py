"""Tests for task_ledger atomic module."""

import json
from unittest.mock import patch

import pytest

from task_ledger.atomic import AtomicFileWriter, FileLock
from task_ledger.errors import PersistenceError


class TestAtomicFileWriter:
    """Tests for AtomicFileWriter."""

    def test_write_json_creates_parents(self, tmp_path):
        """Test JSON is written and parent directories are created."""
        target = tmp_path / "nested" / "dir" / "data.json"
        AtomicFileWriter.write_json(target, {"a": 1})

        assert json.loads(target.read_text()) == {"a": 1}

    def test_write_replaces_existing(self, tmp_path):
        """Test an existing file is replaced as a whole."""
        target = tmp_path / "data.json"
        target.write_text('{"old": true, "padding": "' + "x" * 200 + '"}')

        AtomicFileWriter.write_json(target, {"new": True})

        assert json.loads(target.read_text()) == {"new": True}

    def test_no_temp_files_left(self, tmp_path):
        """Test temporary files are not left behind."""
        target = tmp_path / "data.txt"
        AtomicFileWriter.write_text(target, "hello\n")

        assert [p.name for p in tmp_path.iterdir()] == ["data.txt"]

    def test_failed_replace_keeps_original(self, tmp_path):
        """Test a failed replace leaves the previous content and no temp file."""
        target = tmp_path / "data.json"
        AtomicFileWriter.write_json(target, {"version": 1})

        with patch("task_ledger.atomic.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError, match="disk full"):
                AtomicFileWriter.write_json(target, {"version": 2})

        assert json.loads(target.read_text()) == {"version": 1}
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    def test_read_json_missing_returns_default(self, tmp_path):
        """Test reading a missing file returns the default."""
        assert AtomicFileWriter.read_json(tmp_path / "missing.json") is None
        assert AtomicFileWriter.read_json(tmp_path / "missing.json", default={}) == {}

    def test_read_json_corrupt(self, tmp_path):
        """Test corrupt JSON raises PersistenceError."""
        target = tmp_path / "bad.json"
        target.write_text("{not json")

        with pytest.raises(PersistenceError, match="Corrupt JSON"):
            AtomicFileWriter.read_json(target)

    def test_write_json_unserializable(self, tmp_path):
        """Test values that cannot be encoded raise PersistenceError."""
        target = tmp_path / "data.json"
        with pytest.raises(PersistenceError, match="Could not serialize"):
            AtomicFileWriter.write_json(target, {1j: "complex key"})
        assert not target.exists()


class TestFileLock:
    """Tests for FileLock."""

    def test_acquire_and_release(self, tmp_path):
        """Test basic acquire/release."""
        lock = FileLock(tmp_path / "test.lock")

        assert lock.acquire(timeout=1)
        assert lock.is_locked()

        lock.release()
        assert not lock.is_locked()

    def test_lock_file_kept_after_release(self, tmp_path):
        """Test the lock file stays in place after release."""
        lock = FileLock(tmp_path / "test.lock")
        with lock:
            pass
        assert (tmp_path / "test.lock").exists()

    def test_second_handle_times_out(self, tmp_path):
        """Test a second lock on the same file cannot be acquired."""
        first = FileLock(tmp_path / "test.lock")
        second = FileLock(tmp_path / "test.lock", timeout=0.1)

        with first:
            assert second.acquire(timeout=0.1) is False
            with pytest.raises(PersistenceError, match="Could not acquire lock"):
                with second:
                    pass

        assert second.acquire(timeout=0.1)
        second.release()

    def test_reacquire_is_noop(self, tmp_path):
        """Test acquiring a held lock through the same object succeeds."""
        lock = FileLock(tmp_path / "test.lock")
        assert lock.acquire()
        assert lock.acquire()
        lock.release()

    def test_release_without_acquire(self, tmp_path):
        """Test releasing an unheld lock is harmless."""
        FileLock(tmp_path / "test.lock").release()
