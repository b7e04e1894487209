"""
Reporting Interface: read-only views over the Task Store.
"""

from typing import Any, Dict, List, Optional

from task_ledger.errors import PersistenceError
from task_ledger.lifecycle import parse_status
from task_ledger.models import StatusSummary, Task
from task_ledger.store import TaskStore, parse_detail_record, render_detail_record


class Reporter:
    """Status summaries and filtered listings. Never mutates the ledger."""

    def __init__(self, store: TaskStore):
        self.store = store

    def status_summary(self) -> StatusSummary:
        ledger = self.store.snapshot()
        current = ledger.get_in_progress()
        upcoming = ledger.get_next_pending()

        return StatusSummary(
            counts=ledger.scan_counts(),
            total=len(ledger.tasks),
            current_task_id=current.id if current else None,
            next_task_id=upcoming.id if upcoming else None,
            last_updated=ledger.metadata.last_updated if self.store.exists() else None,
        )

    def list_tasks(
        self,
        status: Optional[str] = None,
        worker: Optional[str] = None
    ) -> List[Task]:
        """
        List tasks in id order.

        Args:
            status: Only tasks with this status
            worker: Only tasks assigned to this worker
        """
        wanted = parse_status(status) if status is not None else None

        def keep(task: Task) -> bool:
            if wanted is not None and task.status != wanted:
                return False
            if worker is not None and task.assigned_agent != worker:
                return False
            return True

        return list(self.store.list(keep))

    def current_task(self) -> Optional[Task]:
        return self.store.snapshot().get_in_progress()

    def next_task(self) -> Optional[Task]:
        return self.store.snapshot().get_next_pending()

    def task_details(self, task_id: str) -> Dict[str, Any]:
        """
        A task together with its companion detail record.

        When the record file is missing it is rendered from the ledger
        instead (nothing is written).
        """
        task = self.store.get(task_id)
        path = self.store.details_path(task.id)

        if path.exists():
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                raise PersistenceError(f"Could not read {path}: {e}") from e
            record = parse_detail_record(text)
        else:
            record = parse_detail_record(render_detail_record(task))

        return {
            "task": task.to_record(),
            "details": record,
            "details_file": str(path),
        }
