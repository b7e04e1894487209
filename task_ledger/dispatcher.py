"""
Dispatch Coordinator.

Composes the Capability Matcher and the Lifecycle Controller: picks the
top-ranked worker for a task and moves the task to in-progress as one
atomic unit (match + transition + persist).
"""

import logging
from typing import List, Optional

from task_ledger.errors import DispatchError, NotFoundError
from task_ledger.lifecycle import LifecycleController
from task_ledger.matcher import match
from task_ledger.models import Task, WorkerTable


logger = logging.getLogger(__name__)


class DispatchCoordinator:
    """
    Assigns workers to tasks.

    Rules:
    - Only one task may be in-progress at a time (enforced by the controller)
    - The worker is the first entry of the matcher's ranking
    - An explicit worker must be registered in the worker table
    """

    def __init__(self, controller: LifecycleController, workers: WorkerTable):
        """
        Initialize dispatch coordinator.

        Args:
            controller: Lifecycle controller that applies the transition
            workers: Capability table used for ranking
        """
        self.controller = controller
        self.workers = workers

    def rank(self, task: Task) -> List[str]:
        """Ranked eligible worker ids for a task."""
        return match(task.descriptor(), self.workers)

    def select_worker(self, task: Task, worker_id: Optional[str] = None) -> str:
        """
        Pick the worker for a task.

        Args:
            task: Task being dispatched
            worker_id: Explicit worker, bypassing the ranking

        Returns:
            Worker id

        Raises:
            DispatchError: If the explicit worker is unknown or nobody is eligible
        """
        if worker_id is not None:
            if self.workers.get_worker(worker_id) is None:
                raise DispatchError(f"Worker '{worker_id}' is not registered")
            logger.debug(f"[{task.id}] Explicit assignment to {worker_id}")
            return worker_id

        ranking = self.rank(task)
        if not ranking:
            raise DispatchError(
                f"No eligible worker for task {task.id} ({task.file}) and no default worker"
            )

        logger.debug(f"[{task.id}] Worker ranking: {ranking}")
        return ranking[0]

    def assign(self, task_id: str, worker_id: Optional[str] = None) -> Task:
        """
        Dispatch a pending task.

        Args:
            task_id: Task to dispatch
            worker_id: Optional explicit worker

        Returns:
            The task, now in-progress with assigned_agent set

        Raises:
            UnknownTaskError, ValidationError, ConcurrencyError, DispatchError;
            none of them change the ledger
        """
        return self.controller.begin(
            task_id,
            resolve_worker=lambda task: self.select_worker(task, worker_id)
        )

    # "delegate task" is the same operation
    delegate = assign

    def start(self, worker_id: Optional[str] = None) -> Task:
        """
        Dispatch the lowest-id pending task.

        Raises:
            NotFoundError: If there are no pending tasks
        """
        with self.controller.serialized() as ledger:
            task = ledger.get_next_pending()
            if task is None:
                raise NotFoundError("No pending tasks")
            return self.assign(task.id, worker_id)
