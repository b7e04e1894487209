"""
Task Store: owner of the durable ledger.

The ledger is a JSON file with two top-level fields, "tasks" and
"metadata". Each task also has a companion plain-text detail record
(task-XXX.txt) with line-oriented KEY: value fields.

Every mutation runs inside transaction(): the ledger is re-read from disk
under an inter-process lock, changed on a working copy, and only committed
(metadata recomputed, replacement file written, then swapped in) when the
block exits cleanly. Readers never see a partially written ledger.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Set, Tuple

from pydantic import ValidationError as SchemaError

from task_ledger.atomic import AtomicFileWriter, FileLock
from task_ledger.errors import ConsistencyError, ValidationError
from task_ledger.lifecycle import parse_status, validate_transition
from task_ledger.models import (
    Ledger, Metadata, Task, TaskStatus,
    detail_filename, normalize_task_id,
)


logger = logging.getLogger(__name__)


# Detail record keys, in file order
DETAIL_KEYS = ("ID", "TITLE", "FILE", "PROMPT", "ASSIGNED_AGENT")


def render_detail_record(task: Task) -> str:
    """Render the companion KEY: value record for a task."""
    lines = [
        f"ID: {task.id}",
        f"TITLE: {task.title}",
        f"FILE: {task.file}",
        f"PROMPT: {task.prompt}",
    ]
    if task.assigned_agent:
        lines.append(f"ASSIGNED_AGENT: {task.assigned_agent}")
    return "\n".join(lines) + "\n"


def parse_detail_record(text: str) -> Dict[str, str]:
    """
    Parse a KEY: value detail record.

    Blank lines are ignored. Values may contain ": ".

    Raises:
        ValidationError: If a non-blank line has no KEY: separator
    """
    fields = {}
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            raise ValidationError(f"Malformed detail record line {number}: {line!r}")
        fields[key.strip().upper()] = value.strip()
    return fields


def _check_text(name: str, value: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"Task {name} must not be empty")
    value = str(value).strip()
    if "\n" in value or "\r" in value:
        raise ValidationError(f"Task {name} must be a single line")
    return value


class TaskListing:
    """
    Lazy, finite, restartable listing of tasks in id order.

    Each iteration scans a fresh snapshot of the ledger.
    """

    def __init__(self, store: "TaskStore", predicate: Optional[Callable[[Task], bool]] = None):
        self._store = store
        self._predicate = predicate

    def __iter__(self) -> Iterator[Task]:
        for task in self._store.snapshot().tasks:
            if self._predicate is None or self._predicate(task):
                yield task


class TaskStore:
    """
    Durable task ledger with atomic persistence.

    Loading is lazy so that a ledger failing its consistency check can
    still be repaired through the same store instance.
    """

    def __init__(
        self,
        ledger_file: Path,
        details_dir: Optional[Path] = None,
        lock_timeout: float = 10.0
    ):
        """
        Initialize the store.

        Args:
            ledger_file: Path to the ledger JSON file
            details_dir: Directory for task-XXX.txt records (defaults to <ledger dir>/details)
            lock_timeout: Seconds to wait for the inter-process ledger lock
        """
        self.ledger_file = Path(ledger_file)
        self.details_dir = Path(details_dir) if details_dir else self.ledger_file.parent / "details"

        # Inter-process lock next to the ledger, in-process re-entrant mutex
        self.lock = FileLock(self.ledger_file.with_suffix(".lock"), timeout=lock_timeout)
        self._mutex = threading.RLock()

        self._ledger: Optional[Ledger] = None
        self._loaded_stamp: Optional[Tuple[int, int, int, int]] = None
        self._working: Optional[Ledger] = None
        self._dirty: Set[str] = set()

    # Loading

    def _stamp(self) -> Optional[Tuple[int, int, int, int]]:
        """Identity of the ledger file on disk; every atomic replace changes it."""
        try:
            st = self.ledger_file.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_size, st.st_mtime_ns, st.st_ctime_ns)

    def _remember(self, ledger: Ledger, stamp: Optional[Tuple[int, int, int, int]]) -> None:
        self._ledger = ledger
        self._loaded_stamp = stamp

    def _read(self, verify: bool = True) -> Ledger:
        """Read the ledger from disk (an absent file is an empty ledger)."""
        data = AtomicFileWriter.read_json(self.ledger_file)

        if data is None:
            return Ledger()

        try:
            ledger = Ledger.model_validate(data)
        except SchemaError as e:
            raise ConsistencyError(f"Ledger {self.ledger_file} does not match the schema: {e}") from e

        if verify:
            self._verify(ledger)

        logger.debug(f"Loaded ledger {self.ledger_file} ({len(ledger.tasks)} tasks)")
        return ledger

    def _verify(self, ledger: Ledger) -> None:
        problems = ledger.invariant_violations()
        if problems:
            raise ConsistencyError(
                f"Ledger {self.ledger_file} is inconsistent: {'; '.join(problems)}"
            )

        scanned = Metadata.from_tasks(ledger.tasks)
        if not ledger.metadata.same_counts(scanned):
            raise ConsistencyError(
                f"Ledger metadata {ledger.metadata.counts()} does not match "
                f"task scan {scanned.counts()}; run repair()"
            )

    def load(self) -> Ledger:
        """
        (Re)load the ledger from disk and verify it.

        Raises:
            PersistenceError: If the file cannot be read or decoded
            ConsistencyError: If metadata or invariants do not hold
        """
        with self._mutex:
            stamp = self._stamp()
            self._remember(self._read(verify=True), stamp)
            return self._ledger

    @property
    def ledger(self) -> Ledger:
        """
        The last committed ledger.

        Re-read when another process or store instance has replaced the
        file since it was last loaded.
        """
        with self._mutex:
            if self._ledger is None or (
                self._working is None and self._stamp() != self._loaded_stamp
            ):
                self.load()
            return self._ledger

    def snapshot(self) -> Ledger:
        """Deep copy of the current ledger; mutating it never affects the store."""
        with self._mutex:
            return self.ledger.model_copy(deep=True)

    def exists(self) -> bool:
        return self.ledger_file.exists()

    # Persistence

    def _persist(self, ledger: Ledger) -> None:
        AtomicFileWriter.write_json(self.ledger_file, ledger.to_record(), indent=2)
        logger.debug(f"Persisted ledger {self.ledger_file} ({len(ledger.tasks)} tasks)")

    def _write_detail(self, task: Task) -> None:
        AtomicFileWriter.write_text(self.details_dir / task.filename, render_detail_record(task))

    def details_path(self, task_id: str) -> Path:
        return self.details_dir / detail_filename(normalize_task_id(task_id))

    @contextmanager
    def transaction(self) -> Iterator[Ledger]:
        """
        Open a mutation scope over a fresh working copy of the ledger.

        Nested transactions in the same thread share the outermost working
        copy; only the outermost one commits. An exception anywhere in the
        scope discards the working copy, leaving disk and memory untouched.

        Raises:
            PersistenceError: If the lock cannot be acquired or the write fails
            ConsistencyError: If the stored ledger (or the result) is inconsistent
        """
        with self._mutex:
            if self._working is not None:
                yield self._working
                return

            with self.lock:
                working = self._read(verify=True)
                self._working = working
                self._dirty = set()
                try:
                    yield working

                    working.recompute_metadata()
                    self._verify(working)

                    # Detail records first; the ledger write is the commit point
                    for task_id in sorted(self._dirty):
                        self._write_detail(working.get_task(task_id))
                    self._persist(working)

                    self._remember(working, self._stamp())
                finally:
                    self._working = None
                    self._dirty = set()

    def initialize(self) -> bool:
        """
        Persist an empty ledger if none exists yet.

        Returns:
            True if a new ledger file was written
        """
        with self._mutex, self.lock:
            if self.ledger_file.exists():
                return False
            ledger = Ledger()
            ledger.recompute_metadata()
            self._persist(ledger)
            self.details_dir.mkdir(parents=True, exist_ok=True)
            self._remember(ledger, self._stamp())
            logger.info(f"Initialized empty ledger at {self.ledger_file}")
            return True

    # Operations

    def create(self, title: str, file: str, prompt: str) -> Task:
        """
        Append a new pending task with the next id.

        Raises:
            ValidationError: If a field is empty or multi-line, or ids are exhausted
        """
        title = _check_text("title", title)
        file = _check_text("file", file)
        prompt = _check_text("prompt", prompt)

        with self.transaction() as ledger:
            task_id = ledger.next_task_id()
            task = Task(
                id=task_id,
                filename=detail_filename(task_id),
                title=title,
                file=file,
                prompt=prompt,
            )
            ledger.tasks.append(task)
            self._dirty.add(task_id)

        return task.model_copy()

    def get(self, task_id: str) -> Task:
        """
        Get a task by id.

        Raises:
            ValidationError: If the id is malformed
            UnknownTaskError: If no such task exists
        """
        return self.ledger.get_task(normalize_task_id(task_id)).model_copy()

    def list(self, predicate: Optional[Callable[[Task], bool]] = None) -> TaskListing:
        return TaskListing(self, predicate)

    def apply_status(
        self,
        task_id: str,
        new_status: TaskStatus,
        assigned_agent: Optional[str] = None
    ) -> Task:
        """
        Apply a validated status change and persist it.

        Args:
            task_id: Task to change
            new_status: Target status (must be an allowed edge)
            assigned_agent: Worker id, required for and only allowed on dispatch

        Returns:
            Copy of the updated task
        """
        task_id = normalize_task_id(task_id)
        new_status = parse_status(new_status)

        with self.transaction() as ledger:
            task = ledger.get_task(task_id)
            validate_transition(task, new_status)

            if new_status == TaskStatus.IN_PROGRESS:
                if not assigned_agent:
                    raise ValidationError(f"Task {task_id} needs an assigned worker to start")
                task.assigned_agent = assigned_agent
            elif assigned_agent is not None:
                raise ValidationError("A worker can only be assigned when a task starts")

            task.status = new_status
            task.updated_at = datetime.now().isoformat()
            self._dirty.add(task_id)

        return task.model_copy()

    def repair(self) -> Metadata:
        """
        Recompute metadata from the tasks and re-persist the ledger.

        Detail records are regenerated as well. Structural violations
        (duplicate ids, several in-progress tasks) are not repairable.

        Raises:
            ConsistencyError: If the task collection itself is invalid
        """
        with self._mutex, self.lock:
            ledger = self._read(verify=False)

            problems = ledger.invariant_violations()
            if problems:
                raise ConsistencyError(
                    f"Ledger cannot be repaired automatically: {'; '.join(problems)}"
                )

            stored = ledger.metadata.counts()
            ledger.recompute_metadata()

            for task in ledger.tasks:
                self._write_detail(task)
            self._persist(ledger)
            self._remember(ledger, self._stamp())

            if stored != ledger.metadata.counts():
                logger.warning(f"Repaired ledger metadata: {stored} -> {ledger.metadata.counts()}")
            else:
                logger.info("Ledger metadata already consistent; re-persisted")

            return ledger.metadata.model_copy()
