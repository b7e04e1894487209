"""Tests for task_ledger models module."""

import pytest
from pydantic import ValidationError as SchemaError

from task_ledger.errors import UnknownTaskError, ValidationError
from task_ledger.models import (
    CapabilityRule, Ledger, Metadata, RuleKind, Task, TaskStatus, WorkerProfile, WorkerTable,
    detail_filename, format_task_id, normalize_task_id,
)


def _task(number, status=TaskStatus.PENDING, agent=None):
    task_id = format_task_id(number)
    return Task(
        id=task_id,
        filename=detail_filename(task_id),
        title=f"Task {task_id}",
        file="src/app.py",
        prompt="Do it",
        status=status,
        assigned_agent=agent,
    )


class TestTaskIds:
    """Tests for task id helpers."""

    def test_format_task_id(self):
        """Test ids are zero-padded to three digits."""
        assert format_task_id(1) == "001"
        assert format_task_id(42) == "042"
        assert format_task_id(999) == "999"

    def test_format_task_id_out_of_range(self):
        """Test ids outside 1..999 are rejected."""
        with pytest.raises(ValidationError):
            format_task_id(0)
        with pytest.raises(ValidationError):
            format_task_id(1000)

    def test_normalize_task_id(self):
        """Test user input is normalized to canonical ids."""
        assert normalize_task_id("1") == "001"
        assert normalize_task_id("01") == "001"
        assert normalize_task_id(" 003 ") == "003"
        assert normalize_task_id(7) == "007"

    @pytest.mark.parametrize("value", ["abc", "", "-1", "1.5", "task-001"])
    def test_normalize_task_id_invalid(self, value):
        """Test malformed ids raise ValidationError."""
        with pytest.raises(ValidationError):
            normalize_task_id(value)

    def test_detail_filename(self):
        """Test detail record naming."""
        assert detail_filename("007") == "task-007.txt"


class TestTask:
    """Tests for Task model."""

    def test_defaults(self):
        """Test new tasks are pending and unassigned."""
        task = _task(1)
        assert task.status == TaskStatus.PENDING
        assert task.assigned_agent is None
        assert task.number == 1
        assert task.created_at

    def test_id_must_be_three_digits(self):
        """Test the id validator rejects non-canonical ids."""
        with pytest.raises(SchemaError):
            Task(id="1", filename="task-1.txt", title="t", file="f", prompt="p")

    def test_is_terminal(self):
        """Test done and skipped are terminal."""
        assert _task(1, TaskStatus.DONE, "backend").is_terminal()
        assert _task(1, TaskStatus.SKIPPED).is_terminal()
        assert not _task(1).is_terminal()
        assert not _task(1, TaskStatus.IN_PROGRESS, "backend").is_terminal()

    def test_to_record_omits_unset_agent(self):
        """Test assigned_agent is only serialized when set."""
        assert "assigned_agent" not in _task(1).to_record()
        record = _task(1, TaskStatus.IN_PROGRESS, "backend").to_record()
        assert record["assigned_agent"] == "backend"
        assert record["status"] == "in-progress"

    def test_descriptor(self):
        """Test the descriptor carries title, file and prompt."""
        descriptor = _task(1).descriptor()
        assert descriptor.title == "Task 001"
        assert descriptor.file == "src/app.py"
        assert descriptor.prompt == "Do it"


class TestMetadata:
    """Tests for Metadata model."""

    def test_from_tasks(self):
        """Test counts come from a full scan."""
        tasks = [
            _task(1, TaskStatus.DONE, "a"),
            _task(2, TaskStatus.IN_PROGRESS, "a"),
            _task(3),
            _task(4),
            _task(5, TaskStatus.SKIPPED),
        ]
        metadata = Metadata.from_tasks(tasks)
        assert metadata.counts() == {
            "pending": 2,
            "in-progress": 1,
            "done": 1,
            "skipped": 1,
        }

    def test_same_counts_ignores_timestamp(self):
        """Test count comparison ignores last_updated."""
        first = Metadata(last_updated="2025-01-01T00:00:00", pending_count=1)
        second = Metadata(last_updated="2025-06-01T00:00:00", pending_count=1)
        assert first.same_counts(second)
        assert not first.same_counts(Metadata(pending_count=2))


class TestLedger:
    """Tests for Ledger model."""

    def test_empty_ledger(self):
        """Test an empty ledger."""
        ledger = Ledger()
        assert ledger.tasks == []
        assert ledger.next_task_id() == "001"
        assert ledger.get_in_progress() is None
        assert ledger.get_next_pending() is None
        assert ledger.invariant_violations() == []

    def test_next_task_id_follows_last(self):
        """Test the next id follows the highest existing id."""
        ledger = Ledger(tasks=[_task(1), _task(5)])
        assert ledger.next_task_id() == "006"

    def test_next_task_id_exhausted(self):
        """Test creating past 999 fails."""
        ledger = Ledger(tasks=[_task(999)])
        with pytest.raises(ValidationError, match="full"):
            ledger.next_task_id()

    def test_get_task_unknown(self):
        """Test unknown ids raise UnknownTaskError."""
        with pytest.raises(UnknownTaskError) as exc_info:
            Ledger(tasks=[_task(1)]).get_task("002")
        assert exc_info.value.task_id == "002"

    def test_next_pending_is_lowest_id(self):
        """Test the next pending task is the lowest pending id."""
        ledger = Ledger(tasks=[_task(1, TaskStatus.DONE, "a"), _task(2), _task(3)])
        assert ledger.get_next_pending().id == "002"

    def test_recompute_metadata(self):
        """Test recompute replaces stale counts."""
        ledger = Ledger(tasks=[_task(1), _task(2)], metadata=Metadata(done_count=7))
        ledger.recompute_metadata()
        assert ledger.metadata.pending_count == 2
        assert ledger.metadata.done_count == 0

    def test_violation_ids_not_increasing(self):
        """Test duplicate or unordered ids are reported."""
        problems = Ledger(tasks=[_task(2), _task(1)]).invariant_violations()
        assert any("strictly increasing" in p for p in problems)

    def test_violation_multiple_in_progress(self):
        """Test more than one in-progress task is reported."""
        ledger = Ledger(tasks=[
            _task(1, TaskStatus.IN_PROGRESS, "a"),
            _task(2, TaskStatus.IN_PROGRESS, "b"),
        ])
        assert any("multiple" in p for p in ledger.invariant_violations())

    def test_violation_agent_rules(self):
        """Test assigned_agent must match the status."""
        assert Ledger(tasks=[_task(1, TaskStatus.DONE)]).invariant_violations()
        assert Ledger(tasks=[_task(1, TaskStatus.IN_PROGRESS)]).invariant_violations()
        assert Ledger(tasks=[_task(1, TaskStatus.DONE, "a")]).invariant_violations() == []

    def test_reset_task_keeps_agent(self):
        """Test a pending task may carry the worker of an earlier dispatch."""
        assert Ledger(tasks=[_task(1, TaskStatus.PENDING, "a")]).invariant_violations() == []

    def test_violation_filename(self):
        """Test a filename that does not match the id is reported."""
        task = _task(1).model_copy(update={"filename": "other.txt"})
        assert Ledger(tasks=[task]).invariant_violations()

    def test_record_shape(self):
        """Test the persisted shape has tasks and metadata."""
        ledger = Ledger(tasks=[_task(1)])
        ledger.recompute_metadata()
        record = ledger.to_record()
        assert set(record) == {"tasks", "metadata"}
        assert record["metadata"]["pending_count"] == 1
        assert record["tasks"][0]["id"] == "001"


class TestWorkerTable:
    """Tests for capability rules and worker tables."""

    def test_rule_requires_patterns(self):
        """Test rules need at least one non-blank pattern."""
        with pytest.raises(SchemaError):
            CapabilityRule(kind=RuleKind.PATH, patterns=[" ", ""])

    def test_rule_strips_patterns(self):
        """Test patterns are stripped."""
        rule = CapabilityRule(kind=RuleKind.KEYWORD, patterns=[" ui ", "layout"])
        assert rule.patterns == ["ui", "layout"]
        assert rule.precedence == 0

    def test_worker_requires_id(self):
        """Test worker ids must not be blank."""
        with pytest.raises(SchemaError):
            WorkerProfile(id="  ")

    def test_display_name_falls_back_to_id(self):
        """Test display name defaults to the id."""
        assert WorkerProfile(id="backend").display_name == "backend"
        assert WorkerProfile(id="backend", name="Back-end").display_name == "Back-end"

    def test_duplicate_worker_ids_rejected(self):
        """Test worker ids are unique."""
        with pytest.raises(SchemaError):
            WorkerTable(workers=[WorkerProfile(id="a"), WorkerProfile(id="a")])

    def test_default_must_be_registered(self):
        """Test the default worker must be in the table."""
        with pytest.raises(SchemaError):
            WorkerTable(workers=[WorkerProfile(id="a")], default_worker="b")

    def test_get_worker(self, worker_table):
        """Test lookup by id."""
        assert worker_table.get_worker("backend").name == "Back-end Developer"
        assert worker_table.get_worker("missing") is None
        assert worker_table.worker_ids() == ["frontend", "backend", "coordinator"]
