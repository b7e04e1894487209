"""
Lifecycle Controller: the single serialization point for ledger mutation.

Allowed edges:

    pending      -> in-progress   (dispatch only, sets assigned_agent)
    pending      -> skipped
    in-progress  -> done
    in-progress  -> pending       (explicit reset, keeps the last assigned_agent)

done and skipped are terminal. Every other edge is a ValidationError.
A task whose external execution fails stays in-progress until an operator
completes or resets it; nothing here times out or rolls back on its own.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, FrozenSet, Iterator, List, Optional, TYPE_CHECKING

from task_ledger.errors import ConcurrencyError, NotFoundError, ValidationError
from task_ledger.events import EventBus
from task_ledger.models import Ledger, Task, TaskStatus, TransitionEvent, normalize_task_id

if TYPE_CHECKING:
    from task_ledger.store import TaskStore


logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.SKIPPED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.DONE, TaskStatus.PENDING}),
    TaskStatus.DONE: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}


def parse_status(value) -> TaskStatus:
    """Coerce a status value, raising ValidationError for unknown ones."""
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(f"Unknown status {value!r} (expected one of: {allowed})") from None


def validate_transition(task: Task, new_status: TaskStatus) -> None:
    """
    Check an edge against the transition table.

    Raises:
        ValidationError: If the edge is not allowed
    """
    if task.is_terminal():
        raise ValidationError(
            f"Task {task.id} is {task.status.value}, a terminal state; "
            f"it cannot become {new_status.value}"
        )
    if new_status not in ALLOWED_TRANSITIONS[task.status]:
        raise ValidationError(
            f"Task {task.id} cannot go from {task.status.value} to {new_status.value}"
        )


class LifecycleController:
    """
    Validates and applies state transitions against the Task Store.

    All mutations are serialized behind one re-entrant lock and run inside
    a single store transaction, so a rejected request leaves the ledger
    exactly as it was. TransitionEvents are published only once the
    outermost serialized scope has committed.
    """

    def __init__(self, store: "TaskStore", events: Optional[EventBus] = None):
        """
        Initialize the controller.

        Args:
            store: Task Store owning the ledger
            events: Bus that receives a TransitionEvent after each commit
        """
        self.store = store
        self.events = events or EventBus()

        # Always taken before the store's own mutex
        self.lock = threading.RLock()
        self._depth = 0
        self._pending_events: List[TransitionEvent] = []

    @contextmanager
    def serialized(self) -> Iterator[Ledger]:
        """
        Mutation scope: controller lock + store transaction.

        Nested scopes join the outermost one. Events queued inside the
        scope are published after it commits and dropped if it fails.
        """
        with self.lock:
            outermost = self._depth == 0
            self._depth += 1
            try:
                with self.store.transaction() as ledger:
                    yield ledger
            except BaseException:
                if outermost:
                    self._pending_events = []
                raise
            finally:
                self._depth -= 1

            if outermost:
                events, self._pending_events = self._pending_events, []
                for event in events:
                    self.events.publish(event)

    def create(self, title: str, file: str, prompt: str) -> Task:
        """Create a pending task."""
        with self.serialized():
            task = self.store.create(title, file, prompt)
            self._queue_event(None, task)

        logger.info(f"[{task.id}] Created: {task.title} ({task.file})")
        return task

    def begin(
        self,
        task_id: str,
        resolve_worker: Callable[[Task], str]
    ) -> Task:
        """
        Move a pending task to in-progress.

        Checks run in order: task exists, edge allowed, no other task
        in-progress, worker resolvable. Any failure leaves the ledger unchanged.

        Args:
            task_id: Task to start
            resolve_worker: Picks the worker id for the task; may raise DispatchError

        Returns:
            The updated task
        """
        task_id = normalize_task_id(task_id)

        with self.serialized() as ledger:
            task = ledger.get_task(task_id)
            validate_transition(task, TaskStatus.IN_PROGRESS)

            current = ledger.get_in_progress()
            if current is not None:
                raise ConcurrencyError(task_id, current.id)

            worker_id = resolve_worker(task.model_copy())
            updated = self.store.apply_status(task_id, TaskStatus.IN_PROGRESS, worker_id)
            self._queue_event(TaskStatus.PENDING, updated)

        logger.info(f"[{task_id}] Started, assigned to {updated.assigned_agent}")
        return updated

    def complete(self, task_id: Optional[str] = None) -> Task:
        """
        Mark an in-progress task done.

        Args:
            task_id: Task to complete (defaults to the current in-progress task)

        Raises:
            NotFoundError: If no task_id is given and nothing is in progress
        """
        with self.serialized() as ledger:
            if task_id is None:
                current = ledger.get_in_progress()
                if current is None:
                    raise NotFoundError("No task is in progress")
                task_id = current.id
            updated = self.store.apply_status(task_id, TaskStatus.DONE)
            self._queue_event(TaskStatus.IN_PROGRESS, updated)

        logger.info(f"[{updated.id}] Completed by {updated.assigned_agent}")
        return updated

    def skip(self, task_id: str) -> Task:
        """Skip a pending task."""
        with self.serialized():
            updated = self.store.apply_status(task_id, TaskStatus.SKIPPED)
            self._queue_event(TaskStatus.PENDING, updated)

        logger.info(f"[{updated.id}] Skipped")
        return updated

    def reset(self, task_id: str) -> Task:
        """Return an in-progress task to pending after a failed execution."""
        with self.serialized():
            updated = self.store.apply_status(task_id, TaskStatus.PENDING)
            self._queue_event(TaskStatus.IN_PROGRESS, updated)

        logger.warning(f"[{updated.id}] Reset to pending (was assigned to {updated.assigned_agent})")
        return updated

    def _queue_event(self, from_status: Optional[TaskStatus], task: Task) -> None:
        self._pending_events.append(
            TransitionEvent(
                task_id=task.id,
                from_status=from_status,
                to_status=task.status,
                assigned_agent=task.assigned_agent,
                at=task.updated_at,
            )
        )
