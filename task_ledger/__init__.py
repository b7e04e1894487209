"""
Task Ledger - durable task ledger with capability-based dispatch.

Keeps an ordered list of tasks in a JSON ledger, moves them through a
fixed lifecycle and assigns each dispatched task to the best-matching
worker from a capability table.

Layout (relative to the workspace):
- tasks/tasks.json         - the ledger (tasks + metadata)
- tasks/details/task-XXX.txt - companion detail records
- .task-ledger/config.json - settings and worker table
"""

__version__ = "1.0.0"

from task_ledger.errors import (
    LedgerError,
    ValidationError,
    NotFoundError,
    UnknownTaskError,
    ConcurrencyError,
    DispatchError,
    PersistenceError,
    ConsistencyError,
)

from task_ledger.models import (
    Task,
    TaskStatus,
    TaskDescriptor,
    Ledger,
    Metadata,
    CapabilityRule,
    RuleKind,
    WorkerProfile,
    WorkerTable,
    StatusSummary,
    TransitionEvent,
    CommandResult,
    LedgerConfig,
    LedgerSettings,
)

from task_ledger.config import ConfigManager
from task_ledger.store import TaskStore
from task_ledger.matcher import match, explain
from task_ledger.lifecycle import LifecycleController
from task_ledger.dispatcher import DispatchCoordinator
from task_ledger.reporting import Reporter
from task_ledger.events import EventBus
from task_ledger.service import TaskLedgerService
from task_ledger.watcher import LedgerWatcher

__all__ = [
    # Errors
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "UnknownTaskError",
    "ConcurrencyError",
    "DispatchError",
    "PersistenceError",
    "ConsistencyError",
    # Models
    "Task",
    "TaskStatus",
    "TaskDescriptor",
    "Ledger",
    "Metadata",
    "CapabilityRule",
    "RuleKind",
    "WorkerProfile",
    "WorkerTable",
    "StatusSummary",
    "TransitionEvent",
    "CommandResult",
    "LedgerConfig",
    "LedgerSettings",
    # Components
    "ConfigManager",
    "TaskStore",
    "match",
    "explain",
    "LifecycleController",
    "DispatchCoordinator",
    "Reporter",
    "EventBus",
    "TaskLedgerService",
    "LedgerWatcher",
]
