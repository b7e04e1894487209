"""
Command-line interface for task-ledger.

Grouped command structure:
- tasks:   list, show, create, start, complete, skip, reset, assign, delegate
- ledger:  init, status, current, next, repair, watch
- workers: list, add, rm, match
"""

import sys
import time
import logging
import argparse
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as SchemaError

from task_ledger.config import ConfigManager
from task_ledger.errors import LedgerError
from task_ledger.matcher import explain, match
from task_ledger.models import (
    CapabilityRule, RuleKind, StatusSummary, Task, TaskDescriptor, TaskStatus, WorkerProfile,
)
from task_ledger.service import TaskLedgerService
from task_ledger.watcher import LedgerWatcher


logger = logging.getLogger("task-ledger")


STATUS_ICONS = {
    TaskStatus.PENDING: "⏳",
    TaskStatus.IN_PROGRESS: "🔄",
    TaskStatus.DONE: "✅",
    TaskStatus.SKIPPED: "⏭️ ",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)]
    )

    # Suppress verbose watchdog library logging
    logging.getLogger("watchdog.observers.inotify_buffer").setLevel(logging.WARNING)
    logging.getLogger("watchdog.observers").setLevel(logging.WARNING)


def _config_manager(args) -> ConfigManager:
    return ConfigManager(args.config, workspace=args.workspace)


def _open_service(args) -> TaskLedgerService:
    return TaskLedgerService.from_config(_config_manager(args))


def _print_error(error: Exception) -> int:
    if isinstance(error, LedgerError):
        print(f"❌ {error.error_type}: {error}", file=sys.stderr)
    else:
        print(f"❌ Error: {error}", file=sys.stderr)
    return 1


def _format_task(task: Task) -> str:
    line = f"{STATUS_ICONS[task.status]} {task.id}  {task.title}  [{task.file}]"
    if task.assigned_agent:
        line += f"  → {task.assigned_agent}"
    return line


def _print_task(task: Task, heading: str) -> None:
    print(f"\n{heading}")
    print(f"   ID:       {task.id}")
    print(f"   Title:    {task.title}")
    print(f"   File:     {task.file}")
    print(f"   Status:   {task.status.value}")
    print(f"   Worker:   {task.assigned_agent or '(unassigned)'}")
    print(f"   Updated:  {task.updated_at}")


def _print_summary(summary: StatusSummary) -> None:
    print("=" * 60)
    print("📊 Task Ledger Status")
    print("=" * 60)
    print(f"\n📋 Tasks: {summary.total}")
    print(f"   Pending:     {summary.counts.get(TaskStatus.PENDING.value, 0)}")
    print(f"   In progress: {summary.counts.get(TaskStatus.IN_PROGRESS.value, 0)}")
    print(f"   Done:        {summary.counts.get(TaskStatus.DONE.value, 0)}")
    print(f"   Skipped:     {summary.counts.get(TaskStatus.SKIPPED.value, 0)}")
    print(f"\n🔄 Current: {summary.current_task_id or 'none'}")
    print(f"⏭️  Next:    {summary.next_task_id or 'none'}")
    if summary.last_updated:
        print(f"\nLast updated: {summary.last_updated}")


# =============================================================================
# INIT / STATUS
# =============================================================================

def cmd_init(args):
    """Initialize configuration and an empty ledger in the workspace."""
    try:
        config_manager = _config_manager(args)

        if config_manager.config_file.exists() and not args.force:
            print(f"⚠️  Configuration already exists: {config_manager.config_file}")
            print("   Use --force to rewrite it with the current settings")
        else:
            config_manager.save_config()
            print(f"💾 Configuration saved: {config_manager.config_file}")

        service = TaskLedgerService.from_config(config_manager)
        if service.store.initialize():
            print(f"✅ Created ledger: {service.store.ledger_file}")
        else:
            print(f"✅ Ledger already exists: {service.store.ledger_file}")

        print(f"\n📁 Workspace: {config_manager.workspace}")
        print(f"   Details:   {service.store.details_dir}")
        print(f"   Workers:   {', '.join(config_manager.workers.worker_ids()) or '(none)'}")
        print(f"   Default:   {config_manager.workers.default_worker or '(none)'}")
    except LedgerError as e:
        return _print_error(e)

    return 0


def cmd_status(args):
    """Show ledger status summary."""
    try:
        with _open_service(args) as service:
            _print_summary(service.status_summary())
    except LedgerError as e:
        return _print_error(e)
    return 0


def cmd_current(args):
    """Show the in-progress task."""
    try:
        with _open_service(args) as service:
            task = service.current_task()
    except LedgerError as e:
        return _print_error(e)

    if task is None:
        print("📭 No task in progress")
    else:
        _print_task(task, "🔄 Current task:")
    return 0


def cmd_next(args):
    """Show the next pending task."""
    try:
        with _open_service(args) as service:
            task = service.next_task()
    except LedgerError as e:
        return _print_error(e)

    if task is None:
        print("📭 No pending tasks")
    else:
        _print_task(task, "⏭️  Next task:")
    return 0


# =============================================================================
# TASK COMMANDS
# =============================================================================

def cmd_list(args):
    """List tasks."""
    try:
        with _open_service(args) as service:
            tasks = service.list_tasks(status=args.status, worker=args.worker)
    except LedgerError as e:
        return _print_error(e)

    print("\n📋 Tasks:")
    if not tasks:
        print("  (none)")
        return 0

    for task in tasks:
        print(f"  {_format_task(task)}")
    return 0


def cmd_show(args):
    """Show a task and its detail record."""
    try:
        with _open_service(args) as service:
            details = service.task_details(args.task_id)
            task = service.store.get(args.task_id)
    except LedgerError as e:
        return _print_error(e)

    _print_task(task, f"📄 Task {task.id}:")
    print(f"   Created:  {task.created_at}")
    print(f"\n📝 Detail record ({details['details_file']}):")
    for key, value in details["details"].items():
        print(f"   {key}: {value}")
    return 0


def cmd_create(args):
    """Create a pending task."""
    try:
        with _open_service(args) as service:
            task = service.create_task(args.title, args.file, args.prompt)
    except LedgerError as e:
        return _print_error(e)

    print(f"✅ Created task {task.id}: {task.title}")
    print(f"   File: {task.file}")
    return 0


def cmd_start(args):
    """Dispatch the next pending task."""
    try:
        with _open_service(args) as service:
            task = service.start_task(args.worker)
    except LedgerError as e:
        return _print_error(e)

    print(f"🚀 Started task {task.id}: {task.title}")
    print(f"   Assigned to: {task.assigned_agent}")
    return 0


def cmd_assign(args):
    """Dispatch a specific task (or the next pending one)."""
    try:
        with _open_service(args) as service:
            task = service.assign_task(args.task_id, args.worker)
    except LedgerError as e:
        return _print_error(e)

    print(f"🚀 Task {task.id} assigned to {task.assigned_agent}")
    return 0


def cmd_complete(args):
    """Mark a task done."""
    try:
        with _open_service(args) as service:
            task = service.complete_task(args.task_id)
    except LedgerError as e:
        return _print_error(e)

    print(f"✅ Completed task {task.id}: {task.title}")
    return 0


def cmd_skip(args):
    """Skip a pending task."""
    try:
        with _open_service(args) as service:
            task = service.skip_task(args.task_id)
    except LedgerError as e:
        return _print_error(e)

    print(f"⏭️  Skipped task {task.id}: {task.title}")
    return 0


def cmd_reset(args):
    """Return an in-progress task to pending."""
    try:
        with _open_service(args) as service:
            task = service.reset_task(args.task_id)
    except LedgerError as e:
        return _print_error(e)

    print(f"↩️  Task {task.id} is pending again")
    return 0


def cmd_repair(args):
    """Recompute ledger metadata."""
    try:
        with _open_service(args) as service:
            metadata = service.repair()
    except LedgerError as e:
        return _print_error(e)

    print("🔧 Ledger repaired")
    for status, count in metadata.counts().items():
        print(f"   {status}: {count}")
    return 0


def cmd_watch(args):
    """Reprint the status summary whenever the ledger changes."""
    try:
        config_manager = _config_manager(args)
        service = TaskLedgerService.from_config(config_manager)
        _print_summary(service.status_summary())
    except LedgerError as e:
        return _print_error(e)

    def on_change(path: Path) -> None:
        try:
            print()
            _print_summary(service.status_summary())
        except LedgerError as e:
            _print_error(e)

    watcher = LedgerWatcher(
        service.store.ledger_file,
        on_change,
        debounce_ms=config_manager.config.settings.watch_debounce_ms
    )
    if not watcher.start():
        service.close()
        print("❌ Ledger directory does not exist; run 'task-ledger init' first", file=sys.stderr)
        return 1

    try:
        started = time.monotonic()
        while args.seconds <= 0 or time.monotonic() - started < args.seconds:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("\n\nInterrupted")
    finally:
        watcher.stop()
        service.close()

    return 0


# =============================================================================
# WORKERS COMMANDS
# =============================================================================

def cmd_workers_list(args):
    """List registered workers."""
    try:
        table = _config_manager(args).workers
    except LedgerError as e:
        return _print_error(e)

    print("\n👷 Workers (registration order):")
    if not table.workers:
        print("  (none)")
        return 0

    for worker in table.workers:
        marker = " (default)" if worker.id == table.default_worker else ""
        print(f"\n  {worker.id}{marker}")
        print(f"      Name: {worker.display_name}")
        for rule in worker.rules:
            print(f"      {rule.kind.value} [p{rule.precedence}]: {', '.join(rule.patterns)}")
    return 0


def cmd_workers_add(args):
    """Register a worker."""
    try:
        rules = []
        if args.path:
            rules.append(CapabilityRule(kind=RuleKind.PATH, patterns=args.path, precedence=args.precedence))
        if args.keyword:
            rules.append(CapabilityRule(kind=RuleKind.KEYWORD, patterns=args.keyword, precedence=args.precedence))
        worker = WorkerProfile(id=args.worker_id, name=args.name or "", rules=rules)
    except SchemaError as e:
        return _print_error(e)

    try:
        config_manager = _config_manager(args)
        config_manager.add_worker(worker)
        if args.default:
            config_manager.set_default_worker(worker.id)
    except LedgerError as e:
        return _print_error(e)

    print(f"\n✅ Added worker '{worker.id}' with {len(rules)} rule(s)")
    return 0


def cmd_workers_rm(args):
    """Remove a worker."""
    try:
        removed = _config_manager(args).remove_worker(args.worker_id)
    except LedgerError as e:
        return _print_error(e)

    if not removed:
        print(f"❌ Worker not found: {args.worker_id}", file=sys.stderr)
        return 1

    print(f"✅ Removed worker '{args.worker_id}'")
    return 0


def cmd_workers_match(args):
    """Show how the matcher ranks workers for a descriptor."""
    try:
        table = _config_manager(args).workers
    except LedgerError as e:
        return _print_error(e)

    descriptor = TaskDescriptor(title=args.title or "", file=args.file or "", prompt=args.prompt or "")
    ranking = match(descriptor, table)

    print("\n🎯 Ranking:")
    if not ranking:
        print("  (no eligible worker)")
    for position, worker_id in enumerate(ranking, start=1):
        print(f"  {position}. {worker_id}")

    if args.explain:
        print("\n🔍 Rule matches:")
        for detail in explain(descriptor, table):
            if not detail.matches:
                continue
            hits = ", ".join(
                f"{m.rule.kind.value}:{m.pattern} [p{m.rule.precedence}]" for m in detail.matches
            )
            print(f"  {detail.worker_id}: {hits}")
    return 0


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="task-ledger",
        description="Task ledger and capability-based dispatcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Initialize the workspace
  task-ledger init

  # Create and dispatch tasks
  task-ledger create --title "Login form" --file src/Login.tsx --prompt "Build the form"
  task-ledger start
  task-ledger complete

  # Inspect
  task-ledger status
  task-ledger list --status pending
  task-ledger show 001

  # Workers
  task-ledger workers list
  task-ledger workers match --file src/App.vue --explain
        """
    )

    parser.add_argument("--config", type=Path, default=None, help="Path to configuration file")
    parser.add_argument("--workspace", type=Path, default=None, help="Workspace root (default: $TASK_LEDGER_WORKSPACE or cwd)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log ledger activity")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init", help="Initialize configuration and ledger")
    init_parser.add_argument("--force", action="store_true", help="Rewrite an existing configuration")
    init_parser.set_defaults(func=cmd_init)

    status_parser = subparsers.add_parser("status", help="Show ledger status")
    status_parser.set_defaults(func=cmd_status)

    list_parser = subparsers.add_parser("list", help="List tasks")
    list_parser.add_argument("--status", help="Only tasks with this status")
    list_parser.add_argument("--worker", help="Only tasks assigned to this worker")
    list_parser.set_defaults(func=cmd_list)

    current_parser = subparsers.add_parser("current", help="Show the in-progress task")
    current_parser.set_defaults(func=cmd_current)

    next_parser = subparsers.add_parser("next", help="Show the next pending task")
    next_parser.set_defaults(func=cmd_next)

    show_parser = subparsers.add_parser("show", help="Show task details")
    show_parser.add_argument("task_id", help="Task ID")
    show_parser.set_defaults(func=cmd_show)

    create_parser = subparsers.add_parser("create", help="Create a task")
    create_parser.add_argument("--title", required=True, help="Task title")
    create_parser.add_argument("--file", required=True, help="Target artifact path")
    create_parser.add_argument("--prompt", required=True, help="Instruction text")
    create_parser.set_defaults(func=cmd_create)

    start_parser = subparsers.add_parser("start", help="Dispatch the next pending task")
    start_parser.add_argument("--worker", help="Assign this worker instead of ranking")
    start_parser.set_defaults(func=cmd_start)

    for name in ("assign", "delegate"):
        assign_parser = subparsers.add_parser(name, help="Dispatch a task to the best worker")
        assign_parser.add_argument("task_id", nargs="?", default=None, help="Task ID (default: next pending)")
        assign_parser.add_argument("--worker", help="Assign this worker instead of ranking")
        assign_parser.set_defaults(func=cmd_assign)

    complete_parser = subparsers.add_parser("complete", help="Mark a task done")
    complete_parser.add_argument("task_id", nargs="?", default=None, help="Task ID (default: current)")
    complete_parser.set_defaults(func=cmd_complete)

    skip_parser = subparsers.add_parser("skip", help="Skip a pending task")
    skip_parser.add_argument("task_id", help="Task ID")
    skip_parser.set_defaults(func=cmd_skip)

    reset_parser = subparsers.add_parser("reset", help="Return an in-progress task to pending")
    reset_parser.add_argument("task_id", help="Task ID")
    reset_parser.set_defaults(func=cmd_reset)

    repair_parser = subparsers.add_parser("repair", help="Recompute ledger metadata")
    repair_parser.set_defaults(func=cmd_repair)

    watch_parser = subparsers.add_parser("watch", help="Follow ledger changes")
    watch_parser.add_argument("--seconds", type=float, default=0, help="Stop after N seconds (0 = until Ctrl-C)")
    watch_parser.set_defaults(func=cmd_watch)

    # Workers subcommands
    workers_parser = subparsers.add_parser("workers", help="Manage workers")
    workers_subparsers = workers_parser.add_subparsers(dest="workers_command", help="Workers commands")

    workers_list_parser = workers_subparsers.add_parser("list", help="List workers")
    workers_list_parser.set_defaults(func=cmd_workers_list)

    workers_add_parser = workers_subparsers.add_parser("add", help="Register a worker")
    workers_add_parser.add_argument("worker_id", help="Unique worker ID")
    workers_add_parser.add_argument("--name", help="Display name")
    workers_add_parser.add_argument("--path", nargs="+", help="Path glob patterns")
    workers_add_parser.add_argument("--keyword", nargs="+", help="Prompt keywords")
    workers_add_parser.add_argument("--precedence", type=int, default=0, help="Precedence class of the rules")
    workers_add_parser.add_argument("--default", action="store_true", help="Make this the default worker")
    workers_add_parser.set_defaults(func=cmd_workers_add)

    workers_rm_parser = workers_subparsers.add_parser("rm", help="Remove a worker")
    workers_rm_parser.add_argument("worker_id", help="Worker ID to remove")
    workers_rm_parser.set_defaults(func=cmd_workers_rm)

    workers_match_parser = workers_subparsers.add_parser("match", help="Rank workers for a task descriptor")
    workers_match_parser.add_argument("--file", help="Target artifact path")
    workers_match_parser.add_argument("--title", help="Task title")
    workers_match_parser.add_argument("--prompt", help="Instruction text")
    workers_match_parser.add_argument("--explain", action="store_true", help="Show matching rules")
    workers_match_parser.set_defaults(func=cmd_workers_match)

    return parser


def main(argv: Optional[list] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if hasattr(args, 'func'):
        return args.func(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
