"""
Task ledger service.

One owned instance wires the store, controller, dispatcher, reporter and
event bus together and is passed explicitly to whoever needs it. It also
hosts the in-process command surface: every command returns a
CommandResult with either the data or a typed error.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from task_ledger.config import ConfigManager
from task_ledger.dispatcher import DispatchCoordinator
from task_ledger.errors import LedgerError, ValidationError
from task_ledger.events import EventBus
from task_ledger.lifecycle import LifecycleController
from task_ledger.models import (
    CommandResult, ErrorInfo, Metadata, StatusSummary, Task, TransitionEvent, WorkerTable,
)
from task_ledger.reporting import Reporter
from task_ledger.store import TaskStore
from task_ledger.workers import default_worker_table


logger = logging.getLogger(__name__)


# Command phrase -> handler method
COMMANDS: Dict[str, str] = {
    "list tasks": "_cmd_list_tasks",
    "task status": "_cmd_task_status",
    "start task": "_cmd_start_task",
    "complete task": "_cmd_complete_task",
    "skip task": "_cmd_skip_task",
    "reset task": "_cmd_reset_task",
    "current task": "_cmd_current_task",
    "next task": "_cmd_next_task",
    "task details": "_cmd_task_details",
    "create task": "_cmd_create_task",
    "assign task": "_cmd_assign_task",
    "delegate task": "_cmd_assign_task",
    "repair ledger": "_cmd_repair_ledger",
}


def _task_data(task: Optional[Task]) -> Optional[Dict[str, Any]]:
    return task.to_record() if task is not None else None


class TaskLedgerService:
    """
    The task ledger and capability-based dispatcher behind one object.

    Usage:
        with TaskLedgerService.from_config(ConfigManager()) as service:
            service.create_task("Login page", "src/Login.tsx", "Build the form")
            service.start_task()
    """

    def __init__(
        self,
        store: TaskStore,
        workers: Optional[WorkerTable] = None,
        events: Optional[EventBus] = None
    ):
        """
        Initialize the service.

        Args:
            store: Task Store owning the ledger
            workers: Capability table (defaults to the built-in table)
            events: Event bus for transition subscribers
        """
        self.store = store
        self.workers = workers if workers is not None else default_worker_table()
        self.events = events or EventBus()

        self.controller = LifecycleController(store, self.events)
        self.dispatcher = DispatchCoordinator(self.controller, self.workers)
        self.reporter = Reporter(store)

        self._closed = False

    @classmethod
    def from_config(cls, config_manager: ConfigManager) -> "TaskLedgerService":
        """Build a service from a loaded configuration."""
        settings = config_manager.config.settings
        store = TaskStore(
            config_manager.ledger_file,
            details_dir=config_manager.details_dir,
            lock_timeout=settings.lock_timeout,
        )
        return cls(store, workers=config_manager.workers)

    @classmethod
    def open(
        cls,
        ledger_file: Path,
        details_dir: Optional[Path] = None,
        workers: Optional[WorkerTable] = None
    ) -> "TaskLedgerService":
        """Build a service directly over a ledger file."""
        return cls(TaskStore(ledger_file, details_dir=details_dir), workers=workers)

    # Lifetime

    def close(self) -> None:
        """Drop subscribers; the service must not be used afterwards."""
        if self._closed:
            return
        self.events.clear()
        self._closed = True
        logger.debug(f"Service for {self.store.ledger_file} closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _ensure_open(self) -> None:
        if self._closed:
            raise ValidationError("Task ledger service is closed")

    def subscribe(self, callback: Callable[[TransitionEvent], None]) -> Callable[[], None]:
        """Subscribe to committed transitions."""
        self._ensure_open()
        return self.events.subscribe(callback)

    @property
    def ledger_view(self) -> Mapping[str, Task]:
        """Read-only id -> task mapping (copies; never the live records)."""
        return MappingProxyType({task.id: task for task in self.store.snapshot().tasks})

    # Operations

    def create_task(self, title: str, file: str, prompt: str) -> Task:
        self._ensure_open()
        return self.controller.create(title, file, prompt)

    def start_task(self, worker_id: Optional[str] = None) -> Task:
        self._ensure_open()
        return self.dispatcher.start(worker_id)

    def assign_task(self, task_id: Optional[str] = None, worker_id: Optional[str] = None) -> Task:
        """Dispatch a task (the next pending one when no id is given)."""
        self._ensure_open()
        if task_id is None:
            return self.dispatcher.start(worker_id)
        return self.dispatcher.assign(task_id, worker_id)

    delegate_task = assign_task

    def complete_task(self, task_id: Optional[str] = None) -> Task:
        self._ensure_open()
        return self.controller.complete(task_id)

    def skip_task(self, task_id: str) -> Task:
        self._ensure_open()
        return self.controller.skip(task_id)

    def reset_task(self, task_id: str) -> Task:
        self._ensure_open()
        return self.controller.reset(task_id)

    def status_summary(self) -> StatusSummary:
        self._ensure_open()
        return self.reporter.status_summary()

    def list_tasks(self, status: Optional[str] = None, worker: Optional[str] = None) -> List[Task]:
        self._ensure_open()
        return self.reporter.list_tasks(status=status, worker=worker)

    def current_task(self) -> Optional[Task]:
        self._ensure_open()
        return self.reporter.current_task()

    def next_task(self) -> Optional[Task]:
        self._ensure_open()
        return self.reporter.next_task()

    def task_details(self, task_id: str) -> Dict[str, Any]:
        self._ensure_open()
        return self.reporter.task_details(task_id)

    def repair(self) -> Metadata:
        self._ensure_open()
        with self.controller.lock:
            return self.store.repair()

    # Command surface

    @staticmethod
    def parse_command(command: str) -> Tuple[str, List[str]]:
        """
        Split "task details 003" into ("task details", ["003"]).

        Raises:
            ValidationError: If no known command phrase matches
        """
        words = command.split()
        phrase = " ".join(words[:2]).lower()
        if phrase not in COMMANDS:
            raise ValidationError(f"Unknown command: {command!r}")
        return phrase, words[2:]

    def run(self, command: str, *args: Any, **kwargs: Any) -> CommandResult:
        """
        Run a command phrase and capture the outcome.

        Args:
            command: Phrase such as "start task" or "task details 003"
            *args: Positional arguments appended after any inline ones
            **kwargs: Named arguments (title/file/prompt, task_id, worker, status)

        Returns:
            CommandResult with data on success or a typed error
        """
        phrase = command.strip().lower()
        try:
            phrase, inline = self.parse_command(command)
            handler = getattr(self, COMMANDS[phrase])
            data = handler(list(inline) + [str(a) for a in args], kwargs)
        except LedgerError as e:
            logger.debug(f"Command '{phrase}' failed: {e.error_type}: {e}")
            return CommandResult(
                ok=False,
                command=phrase,
                error=ErrorInfo(type=e.error_type, message=str(e)),
            )
        return CommandResult(ok=True, command=phrase, data=data)

    @staticmethod
    def _arg(
        args: List[str],
        kwargs: Dict[str, Any],
        index: int,
        name: str,
        required: bool = False
    ) -> Optional[str]:
        if name in kwargs and kwargs[name] is not None:
            return str(kwargs[name])
        if index < len(args):
            return args[index]
        if required:
            raise ValidationError(f"Missing argument: {name}")
        return None

    @staticmethod
    def _max_args(args: List[str], count: int, usage: str) -> None:
        if len(args) > count:
            raise ValidationError(f"Too many arguments; usage: {usage}")

    def _cmd_list_tasks(self, args, kwargs):
        self._max_args(args, 1, "list tasks [status]")
        status = self._arg(args, kwargs, 0, "status")
        worker = kwargs.get("worker")
        return [t.to_record() for t in self.list_tasks(status=status, worker=worker)]

    def _cmd_task_status(self, args, kwargs):
        self._max_args(args, 0, "task status")
        return self.status_summary().model_dump(mode="json")

    def _cmd_start_task(self, args, kwargs):
        self._max_args(args, 0, "start task")
        return _task_data(self.start_task(kwargs.get("worker")))

    def _cmd_complete_task(self, args, kwargs):
        self._max_args(args, 1, "complete task [id]")
        return _task_data(self.complete_task(self._arg(args, kwargs, 0, "task_id")))

    def _cmd_skip_task(self, args, kwargs):
        self._max_args(args, 1, "skip task <id>")
        return _task_data(self.skip_task(self._arg(args, kwargs, 0, "task_id", required=True)))

    def _cmd_reset_task(self, args, kwargs):
        self._max_args(args, 1, "reset task <id>")
        return _task_data(self.reset_task(self._arg(args, kwargs, 0, "task_id", required=True)))

    def _cmd_current_task(self, args, kwargs):
        self._max_args(args, 0, "current task")
        return _task_data(self.current_task())

    def _cmd_next_task(self, args, kwargs):
        self._max_args(args, 0, "next task")
        return _task_data(self.next_task())

    def _cmd_task_details(self, args, kwargs):
        self._max_args(args, 1, "task details <id>")
        return self.task_details(self._arg(args, kwargs, 0, "task_id", required=True))

    def _cmd_create_task(self, args, kwargs):
        self._max_args(args, 3, "create task <title> <file> <prompt>")
        task = self.create_task(
            self._arg(args, kwargs, 0, "title", required=True),
            self._arg(args, kwargs, 1, "file", required=True),
            self._arg(args, kwargs, 2, "prompt", required=True),
        )
        return _task_data(task)

    def _cmd_assign_task(self, args, kwargs):
        self._max_args(args, 2, "assign task [id] [worker]")
        task_id = self._arg(args, kwargs, 0, "task_id")
        worker = self._arg(args, kwargs, 1, "worker")
        return _task_data(self.assign_task(task_id, worker))

    def _cmd_repair_ledger(self, args, kwargs):
        self._max_args(args, 0, "repair ledger")
        return self.repair().model_dump(mode="json")
