"""
Error taxonomy for the task ledger.

Every error raised by the ledger core derives from LedgerError so callers
can catch the whole family at one seam (the CLI and the command surface).

Recoverable, never mutate the ledger:
- ValidationError   malformed input or disallowed transition
- NotFoundError     unknown task id (UnknownTaskError for tasks)
- ConcurrencyError  a second task would become in-progress
- DispatchError     no eligible worker

Abort the operation, last persisted ledger stays authoritative:
- PersistenceError  storage read/write failure
- ConsistencyError  metadata and task counts diverge on load
"""


class LedgerError(Exception):
    """Base class for all task ledger errors."""

    @property
    def error_type(self) -> str:
        """
        Taxonomy name used in structured command results.

        Subclasses such as UnknownTaskError report their family
        (NotFoundError); the message still names the task.
        """
        for cls in type(self).__mro__:
            if LedgerError in cls.__bases__:
                return cls.__name__
        return LedgerError.__name__


class ValidationError(LedgerError):
    """Malformed input or a transition the lifecycle does not allow."""


class NotFoundError(LedgerError):
    """A referenced entity does not exist."""


class UnknownTaskError(NotFoundError):
    """No task with the requested id exists in the ledger."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Unknown task: {task_id}")


class ConcurrencyError(LedgerError):
    """Another task is already in progress."""

    def __init__(self, task_id: str, current_id: str):
        self.task_id = task_id
        self.current_id = current_id
        super().__init__(
            f"Cannot start task {task_id}: task {current_id} is already in-progress"
        )


class DispatchError(LedgerError):
    """No worker is eligible for the task."""


class PersistenceError(LedgerError):
    """The ledger could not be read from or written to storage."""


class ConsistencyError(LedgerError):
    """The stored ledger violates its invariants; run repair() or fix the file."""
