"""
Data models for the task ledger.

Defines Pydantic models for tasks, ledger metadata, worker capability
tables, configuration and command results.
"""

from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from task_ledger.errors import ValidationError, UnknownTaskError


# Task ids are fixed-width, zero-padded decimal strings
ID_WIDTH = 3
MAX_TASK_NUMBER = 10 ** ID_WIDTH - 1


def _now() -> str:
    return datetime.now().isoformat()


class TaskStatus(str, Enum):
    """Task lifecycle status."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    SKIPPED = "skipped"


# Metadata field holding the count for each status
STATUS_COUNT_FIELDS = {
    TaskStatus.PENDING: "pending_count",
    TaskStatus.IN_PROGRESS: "in_progress_count",
    TaskStatus.DONE: "done_count",
    TaskStatus.SKIPPED: "skipped_count",
}


def format_task_id(number: int) -> str:
    """Format a task number as a fixed-width id (7 -> "007")."""
    if number < 1 or number > MAX_TASK_NUMBER:
        raise ValidationError(
            f"Task number {number} outside the range 1..{MAX_TASK_NUMBER}"
        )
    return str(number).zfill(ID_WIDTH)


def normalize_task_id(value: Any) -> str:
    """
    Normalize user input into a canonical task id.

    Accepts "1", "01", "001" or 1 and returns "001".

    Raises:
        ValidationError: If the value is not a task number
    """
    text = str(value).strip()
    if not text.isdigit():
        raise ValidationError(f"Invalid task id: {value!r}")
    return format_task_id(int(text))


def detail_filename(task_id: str) -> str:
    """Name of the companion detail record for a task."""
    return f"task-{task_id}.txt"


class TaskDescriptor(BaseModel):
    """The parts of a task the capability matcher looks at."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    file: str = ""
    prompt: str = ""


class Task(BaseModel):
    """
    A unit of work in the ledger.

    Identity (id, title, file, prompt) never changes after creation;
    only status, assigned_agent and the timestamps are mutable.
    """

    id: str = Field(..., description="Fixed-width task id (001, 002, ...)")
    filename: str = Field(..., description="Companion detail record file name")
    title: str = Field(..., description="Short task title")
    file: str = Field(..., description="Target artifact path")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Lifecycle status")
    prompt: str = Field(..., description="Instruction text for the worker")
    assigned_agent: Optional[str] = Field(default=None, description="Worker id set on dispatch")

    # Timestamps
    created_at: str = Field(default_factory=_now, description="When the task was created")
    updated_at: str = Field(default_factory=_now, description="When the task last changed")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if len(v) != ID_WIDTH or not v.isdigit():
            raise ValueError(f"Task id must be {ID_WIDTH} digits: {v!r}")
        return v

    @property
    def number(self) -> int:
        return int(self.id)

    def is_terminal(self) -> bool:
        """Done and skipped tasks never change again."""
        return self.status in (TaskStatus.DONE, TaskStatus.SKIPPED)

    def descriptor(self) -> TaskDescriptor:
        return TaskDescriptor(title=self.title, file=self.file, prompt=self.prompt)

    def to_record(self) -> Dict[str, Any]:
        """Serialize for the ledger file (assigned_agent omitted when unset)."""
        return self.model_dump(mode="json", exclude_none=True)


class Metadata(BaseModel):
    """Aggregate counts derived from the task collection."""

    last_updated: str = Field(default_factory=_now)
    pending_count: int = 0
    in_progress_count: int = 0
    done_count: int = 0
    skipped_count: int = 0

    @classmethod
    def from_tasks(cls, tasks: List[Task], last_updated: Optional[str] = None) -> "Metadata":
        """Build metadata from a full scan of the tasks."""
        counts = {field: 0 for field in STATUS_COUNT_FIELDS.values()}
        for task in tasks:
            counts[STATUS_COUNT_FIELDS[task.status]] += 1
        return cls(last_updated=last_updated or _now(), **counts)

    def counts(self) -> Dict[str, int]:
        """Counts keyed by status value."""
        return {
            status.value: getattr(self, field)
            for status, field in STATUS_COUNT_FIELDS.items()
        }

    def same_counts(self, other: "Metadata") -> bool:
        return self.counts() == other.counts()


class Ledger(BaseModel):
    """
    The durable collection of tasks plus derived metadata.

    Persisted as {"tasks": [...], "metadata": {...}}.
    """

    tasks: List[Task] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=Metadata)

    def scan_counts(self) -> Dict[str, int]:
        """Count tasks by status value with a full scan."""
        return Metadata.from_tasks(self.tasks).counts()

    def recompute_metadata(self) -> Metadata:
        """Replace metadata with a fresh full-scan result."""
        self.metadata = Metadata.from_tasks(self.tasks)
        return self.metadata

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get_task(self, task_id: str) -> Task:
        """Get a task by canonical id or raise UnknownTaskError."""
        task = self.find_task(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def get_in_progress(self) -> Optional[Task]:
        """The single in-progress task, if any."""
        for task in self.tasks:
            if task.status == TaskStatus.IN_PROGRESS:
                return task
        return None

    def get_next_pending(self) -> Optional[Task]:
        """Lowest-id pending task (tasks are kept in id order)."""
        for task in self.tasks:
            if task.status == TaskStatus.PENDING:
                return task
        return None

    def next_task_id(self) -> str:
        """
        Id for the next created task.

        Raises:
            ValidationError: If the fixed-width id space is exhausted
        """
        last = self.tasks[-1].number if self.tasks else 0
        if last >= MAX_TASK_NUMBER:
            raise ValidationError(
                f"Ledger is full: task ids are limited to {ID_WIDTH} digits"
            )
        return format_task_id(last + 1)

    def invariant_violations(self) -> List[str]:
        """
        Structural problems that repair() cannot fix.

        Returns:
            List of human-readable violations (empty when the ledger is sound)
        """
        problems = []
        previous = 0
        in_progress = []

        for task in self.tasks:
            if task.number <= previous:
                problems.append(f"task id {task.id} is not strictly increasing")
            previous = max(previous, task.number)

            if task.filename != detail_filename(task.id):
                problems.append(f"task {task.id} has filename {task.filename!r}")

            if task.status == TaskStatus.IN_PROGRESS:
                in_progress.append(task.id)

            # pending and skipped tasks keep the worker of an earlier dispatch after a reset
            dispatched = task.status in (TaskStatus.IN_PROGRESS, TaskStatus.DONE)
            if dispatched and not task.assigned_agent:
                problems.append(f"task {task.id} is {task.status.value} without an assigned agent")

        if len(in_progress) > 1:
            problems.append(f"multiple tasks in-progress: {', '.join(in_progress)}")

        return problems

    def to_record(self) -> Dict[str, Any]:
        return {
            "tasks": [task.to_record() for task in self.tasks],
            "metadata": self.metadata.model_dump(mode="json"),
        }


class RuleKind(str, Enum):
    """What a capability rule matches against."""
    PATH = "path"           # Glob over the target artifact path
    KEYWORD = "keyword"     # Whole words in title and prompt


class CapabilityRule(BaseModel):
    """
    A pattern mapping task descriptors to a worker.

    Higher precedence classes win; within a class, path rules
    outrank keyword rules.
    """

    kind: RuleKind = Field(..., description="path or keyword")
    patterns: List[str] = Field(..., description="Globs (path) or words (keyword)")
    precedence: int = Field(default=0, description="Precedence class, higher is stronger")

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: List[str]) -> List[str]:
        cleaned = [p.strip() for p in v if p and p.strip()]
        if not cleaned:
            raise ValueError("A capability rule needs at least one pattern")
        return cleaned


class WorkerProfile(BaseModel):
    """A worker and its ordered capability rules."""

    id: str = Field(..., description="Unique worker id")
    name: str = Field(default="", description="Display name")
    rules: List[CapabilityRule] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Worker id must not be empty")
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.id


class WorkerTable(BaseModel):
    """
    Registered workers in registration order.

    Registration order breaks ties between equally ranked workers.
    """

    workers: List[WorkerProfile] = Field(default_factory=list)
    default_worker: Optional[str] = Field(
        default=None,
        description="Coordinator worker used when no rule matches"
    )

    @model_validator(mode="after")
    def validate_table(self) -> "WorkerTable":
        seen = set()
        for worker in self.workers:
            if worker.id in seen:
                raise ValueError(f"Duplicate worker id: {worker.id}")
            seen.add(worker.id)
        if self.default_worker is not None and self.default_worker not in seen:
            raise ValueError(f"Default worker is not registered: {self.default_worker}")
        return self

    def worker_ids(self) -> List[str]:
        return [worker.id for worker in self.workers]

    def get_worker(self, worker_id: str) -> Optional[WorkerProfile]:
        for worker in self.workers:
            if worker.id == worker_id:
                return worker
        return None


class StatusSummary(BaseModel):
    """Read-only view of the ledger status."""

    counts: Dict[str, int] = Field(default_factory=dict)
    total: int = 0
    current_task_id: Optional[str] = None
    next_task_id: Optional[str] = None
    last_updated: Optional[str] = None


class TransitionEvent(BaseModel):
    """Published after a committed ledger mutation."""

    task_id: str
    from_status: Optional[TaskStatus] = None  # None for creation
    to_status: TaskStatus
    assigned_agent: Optional[str] = None
    at: str = Field(default_factory=_now)


class ErrorInfo(BaseModel):
    type: str
    message: str


class CommandResult(BaseModel):
    """Structured result of a command: data on success, typed error otherwise."""

    ok: bool
    command: str
    data: Any = None
    error: Optional[ErrorInfo] = None


class LedgerSettings(BaseModel):
    """Storage and watcher settings."""

    # Storage (relative paths resolve against the workspace)
    ledger_file: str = Field(default="tasks/tasks.json", description="Ledger JSON file")
    details_dir: str = Field(default="tasks/details", description="Directory for task-XXX.txt records")

    # Locking
    lock_timeout: float = Field(default=10.0, description="Seconds to wait for the ledger lock")

    # Watcher settings
    watch_debounce_ms: int = Field(default=500, description="Debounce delay for ledger change events")


class LedgerConfig(BaseModel):
    """Complete ledger configuration."""

    version: str = "1.0"
    settings: LedgerSettings = Field(default_factory=LedgerSettings)
    workers: WorkerTable = Field(default_factory=WorkerTable)

    # Metadata
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)
