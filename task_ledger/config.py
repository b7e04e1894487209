"""
Configuration management for task-ledger.

Handles locating the workspace, loading and saving the ledger
configuration, and editing the registered worker table.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError as SchemaError

from task_ledger.atomic import AtomicFileWriter, FileLock
from task_ledger.errors import NotFoundError, ValidationError
from task_ledger.models import LedgerConfig, LedgerSettings, WorkerProfile, WorkerTable
from task_ledger.workers import default_worker_table


logger = logging.getLogger(__name__)


# Environment variable naming the workspace (may come from a .env file)
ENV_VAR_NAME = "TASK_LEDGER_WORKSPACE"

# Config location relative to the workspace
CONFIG_DIR_NAME = ".task-ledger"
CONFIG_FILE_NAME = "config.json"


def resolve_workspace(workspace: Optional[str] = None, env_file: Optional[Path] = None) -> Path:
    """
    Resolve the workspace directory.

    Order: explicit argument, TASK_LEDGER_WORKSPACE (environment or .env), cwd.

    Args:
        workspace: Explicit workspace path
        env_file: .env file to load (defaults to ./.env)
    """
    if workspace:
        return Path(workspace).expanduser().resolve()

    env_file = Path(env_file) if env_file else Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    path = os.environ.get(ENV_VAR_NAME)
    if path:
        return Path(path).expanduser().resolve()

    return Path.cwd().resolve()


def default_config_file(workspace: Path) -> Path:
    return Path(workspace) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


class ConfigManager:
    """
    Manages task ledger configuration.

    Handles loading configuration from disk, making updates,
    and persisting changes atomically.
    """

    def __init__(self, config_file: Optional[Path] = None, workspace: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to configuration file. Defaults to <workspace>/.task-ledger/config.json
            workspace: Workspace root. Defaults to resolve_workspace()
        """
        self.workspace = Path(workspace).expanduser().resolve() if workspace else resolve_workspace()
        self.config_file = Path(config_file) if config_file else default_config_file(self.workspace)

        # Lock file for config access
        self.lock = FileLock(self.config_file.with_suffix('.lock'), timeout=5)

        # Load or create default config
        self.config = self._load_config()

    def _load_config(self) -> LedgerConfig:
        """
        Load configuration from file or create default.

        Raises:
            PersistenceError: If the file cannot be read or decoded
            ValidationError: If the file does not describe a valid configuration
        """
        data = AtomicFileWriter.read_json(self.config_file)

        if data is None:
            return self._create_default_config()

        if not isinstance(data, dict):
            raise ValidationError(f"Invalid config file {self.config_file}: expected an object")

        # Configs without a worker table get the built-in one
        if "workers" not in data:
            data["workers"] = default_worker_table().model_dump(mode="json")

        try:
            return LedgerConfig.model_validate(data)
        except SchemaError as e:
            raise ValidationError(f"Invalid config file {self.config_file}: {e}") from e

    def _create_default_config(self) -> LedgerConfig:
        """Create default configuration."""
        return LedgerConfig(workers=default_worker_table())

    def save_config(self) -> None:
        """Save configuration atomically with locking."""
        self.config.updated_at = datetime.now().isoformat()
        with self.lock:
            AtomicFileWriter.write_json(self.config_file, self.config.model_dump(mode="json"), indent=2)
        logger.debug(f"Saved config {self.config_file}")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self.config = self._load_config()

    # Resolved paths

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.workspace / path

    @property
    def ledger_file(self) -> Path:
        return self._resolve(self.config.settings.ledger_file)

    @property
    def details_dir(self) -> Path:
        return self._resolve(self.config.settings.details_dir)

    # Worker management

    @property
    def workers(self) -> WorkerTable:
        return self.config.workers

    def _replace_workers(self, workers: List[WorkerProfile], default_worker: Optional[str]) -> None:
        try:
            self.config.workers = WorkerTable(workers=workers, default_worker=default_worker)
        except SchemaError as e:
            raise ValidationError(f"Invalid worker table: {e}") from e

    def add_worker(self, worker: WorkerProfile) -> WorkerProfile:
        """
        Register a worker at the end of the table (lowest tie-break priority).

        Raises:
            ValidationError: If the worker id already exists
        """
        if self.workers.get_worker(worker.id):
            raise ValidationError(f"Worker ID already exists: {worker.id}")

        self._replace_workers(self.workers.workers + [worker], self.workers.default_worker)
        self.save_config()
        return worker

    def remove_worker(self, worker_id: str) -> bool:
        """
        Remove a worker by id.

        Returns:
            True if removed, False if not found
        """
        if self.workers.get_worker(worker_id) is None:
            return False

        remaining = [w for w in self.workers.workers if w.id != worker_id]
        default = self.workers.default_worker
        if default == worker_id:
            logger.warning(f"Removed worker '{worker_id}' was the default worker; no default is set now")
            default = None

        self._replace_workers(remaining, default)
        self.save_config()
        return True

    def set_default_worker(self, worker_id: Optional[str]) -> None:
        """
        Set (or clear, with None) the coordinator used when no rule matches.

        Raises:
            NotFoundError: If the worker is not registered
        """
        if worker_id is not None and self.workers.get_worker(worker_id) is None:
            raise NotFoundError(f"Worker '{worker_id}' is not registered")

        self._replace_workers(list(self.workers.workers), worker_id)
        self.save_config()

    # Settings management

    def update_settings(self, **kwargs) -> None:
        """
        Update ledger settings.

        Args:
            **kwargs: Settings to update (ledger_file, details_dir, lock_timeout, watch_debounce_ms)
        """
        data = self.config.settings.model_dump()
        for key, value in kwargs.items():
            if key not in data:
                raise ValidationError(f"Unknown setting: {key}")
            data[key] = value

        try:
            self.config.settings = LedgerSettings.model_validate(data)
        except SchemaError as e:
            raise ValidationError(f"Invalid setting value: {e}") from e

        self.save_config()
