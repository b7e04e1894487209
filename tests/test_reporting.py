"""Tests for task_ledger reporting module."""

import pytest

from task_ledger.errors import UnknownTaskError, ValidationError
from task_ledger.reporting import Reporter


@pytest.fixture
def reporter(store):
    return Reporter(store)


class TestReporter:
    """Tests for the Reporter."""

    def test_summary_empty(self, reporter):
        """Test the summary of a ledger that does not exist yet."""
        summary = reporter.status_summary()

        assert summary.total == 0
        assert summary.counts == {"pending": 0, "in-progress": 0, "done": 0, "skipped": 0}
        assert summary.current_task_id is None
        assert summary.next_task_id is None
        assert summary.last_updated is None

    def test_summary(self, three_tasks, reporter):
        """Test counts, current and next."""
        three_tasks.start_task()

        summary = reporter.status_summary()
        assert summary.total == 3
        assert summary.counts["pending"] == 2
        assert summary.counts["in-progress"] == 1
        assert summary.current_task_id == "001"
        assert summary.next_task_id == "002"
        assert summary.last_updated is not None

    def test_summary_idempotent(self, three_tasks, reporter):
        """Test repeated summaries are identical."""
        assert reporter.status_summary() == reporter.status_summary()

    def test_list_filters(self, three_tasks, reporter):
        """Test listing by status and worker."""
        three_tasks.start_task()
        three_tasks.skip_task("003")

        assert [t.id for t in reporter.list_tasks()] == ["001", "002", "003"]
        assert [t.id for t in reporter.list_tasks(status="pending")] == ["002"]
        assert [t.id for t in reporter.list_tasks(status="skipped")] == ["003"]
        assert [t.id for t in reporter.list_tasks(worker="frontend")] == ["001"]
        assert reporter.list_tasks(status="done") == []

    def test_list_unknown_status(self, reporter):
        """Test an unknown status filter is rejected."""
        with pytest.raises(ValidationError):
            reporter.list_tasks(status="blocked")

    def test_listing_is_restartable(self, three_tasks, store):
        """Test the store listing can be iterated more than once."""
        listing = store.list()
        assert [t.id for t in listing] == [t.id for t in listing]

        three_tasks.create_task("Fourth", "d.py", "p")
        assert len(list(listing)) == 4

    def test_current_and_next(self, three_tasks, reporter):
        """Test current and next task lookups."""
        assert reporter.current_task() is None
        assert reporter.next_task().id == "001"

        three_tasks.start_task()
        assert reporter.current_task().id == "001"
        assert reporter.next_task().id == "002"

    def test_task_details(self, three_tasks, reporter, details_dir):
        """Test details combine the task and its record."""
        three_tasks.start_task()

        details = reporter.task_details("1")
        assert details["task"]["id"] == "001"
        assert details["details"]["ASSIGNED_AGENT"] == "frontend"
        assert details["details_file"] == str(details_dir / "task-001.txt")

    def test_task_details_missing_record(self, three_tasks, reporter, details_dir):
        """Test a missing record is rendered from the ledger without writing."""
        (details_dir / "task-002.txt").unlink()

        details = reporter.task_details("002")
        assert details["details"]["TITLE"] == "Users endpoint"
        assert not (details_dir / "task-002.txt").exists()

    def test_task_details_unknown(self, reporter):
        """Test details for a missing task."""
        with pytest.raises(UnknownTaskError):
            reporter.task_details("123")
