"""Test fixtures for task-ledger tests."""

import json
from pathlib import Path

import pytest

from task_ledger.models import CapabilityRule, RuleKind, WorkerProfile, WorkerTable
from task_ledger.service import TaskLedgerService
from task_ledger.store import TaskStore
from task_ledger.workers import default_worker_table


@pytest.fixture
def workspace(tmp_path):
    """Create a workspace with an empty tasks directory."""
    (tmp_path / "tasks").mkdir()
    return tmp_path


@pytest.fixture
def ledger_file(workspace):
    """Path of the ledger JSON file (not created)."""
    return workspace / "tasks" / "tasks.json"


@pytest.fixture
def details_dir(workspace):
    """Directory for task-XXX.txt detail records."""
    return workspace / "tasks" / "details"


@pytest.fixture
def store(ledger_file, details_dir):
    """Create a TaskStore over the temporary ledger."""
    return TaskStore(ledger_file, details_dir=details_dir, lock_timeout=2.0)


@pytest.fixture
def worker_table():
    """A small capability table with a coordinator default."""
    return WorkerTable(
        workers=[
            WorkerProfile(
                id="frontend",
                name="Front-end Developer",
                rules=[
                    CapabilityRule(kind=RuleKind.PATH, patterns=["*.tsx", "*.css"], precedence=1),
                    CapabilityRule(kind=RuleKind.KEYWORD, patterns=["ui", "layout"], precedence=1),
                ],
            ),
            WorkerProfile(
                id="backend",
                name="Back-end Developer",
                rules=[
                    CapabilityRule(kind=RuleKind.PATH, patterns=["*.py", "api/*"], precedence=1),
                    CapabilityRule(kind=RuleKind.KEYWORD, patterns=["endpoint", "database"], precedence=1),
                ],
            ),
            WorkerProfile(id="coordinator", name="Coordinator"),
        ],
        default_worker="coordinator",
    )


@pytest.fixture
def builtin_workers():
    """The built-in worker table."""
    return default_worker_table()


@pytest.fixture
def service(store, worker_table):
    """Create a TaskLedgerService over the temporary ledger."""
    svc = TaskLedgerService(store, workers=worker_table)
    yield svc
    svc.close()


@pytest.fixture
def three_tasks(service):
    """Service with three pending tasks (001 frontend, 002 backend, 003 docs)."""
    service.create_task("Login form", "src/Login.tsx", "Build the login form")
    service.create_task("Users endpoint", "api/users.py", "Add the users endpoint")
    service.create_task("Release notes", "NOTES.txt", "Summarize the release")
    return service


@pytest.fixture
def write_ledger(ledger_file):
    """Write raw ledger data to disk, bypassing the store."""

    def _write(tasks, **metadata):
        counts = {"pending_count": 0, "in_progress_count": 0, "done_count": 0, "skipped_count": 0}
        for task in tasks:
            key = task["status"].replace("-", "_") + "_count"
            counts[key] += 1
        counts.update(metadata)
        data = {
            "tasks": tasks,
            "metadata": {"last_updated": "2025-01-31T10:00:00", **counts},
        }
        ledger_file.write_text(json.dumps(data, indent=2))
        return data

    return _write


def make_task_record(number, status="pending", assigned_agent=None, **fields):
    """Raw ledger record for a task."""
    task_id = str(number).zfill(3)
    record = {
        "id": task_id,
        "filename": f"task-{task_id}.txt",
        "title": fields.get("title", f"Task {task_id}"),
        "file": fields.get("file", f"src/module_{task_id}.py"),
        "status": status,
        "prompt": fields.get("prompt", f"Do task {task_id}"),
        "created_at": "2025-01-31T10:00:00",
        "updated_at": "2025-01-31T10:00:00",
    }
    if assigned_agent:
        record["assigned_agent"] = assigned_agent
    return record


@pytest.fixture
def task_record():
    """Factory for raw ledger task records."""
    return make_task_record
