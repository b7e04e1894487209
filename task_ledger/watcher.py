"""
Watchdog-based monitoring of the ledger file.

Lets long-running observers (the CLI `watch` command, dashboards) react
when another process commits a change to the ledger. Ledger writes are
atomic replaces, so a commit shows up as a move onto the ledger path.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, Optional

from watchdog.observers import Observer
from watchdog.events import (
    FileSystemEventHandler, FileCreatedEvent, FileModifiedEvent, FileMovedEvent,
)


logger = logging.getLogger(__name__)


class DebounceTracker:
    """
    Tracks file events with debouncing to prevent duplicate processing.

    Multiple events within the debounce window are coalesced into a single event.
    """

    def __init__(self, debounce_ms: int = 500):
        """
        Initialize debounce tracker.

        Args:
            debounce_ms: Debounce delay in milliseconds
        """
        self.debounce_seconds = debounce_ms / 1000.0
        self._last_events: Dict[str, float] = {}

    def should_process(self, file_path: str) -> bool:
        """
        Check if file event should be processed (debounced).

        Args:
            file_path: Path to file that triggered event

        Returns:
            True if event should be processed, False if debounced
        """
        now = time.monotonic()
        last_event_time = self._last_events.get(file_path)

        if last_event_time is not None and now - last_event_time < self.debounce_seconds:
            return False

        self._last_events[file_path] = now
        return True

    def cleanup_old_events(self, max_age_seconds: float = 60.0) -> None:
        """Forget event timestamps older than max_age_seconds."""
        cutoff = time.monotonic() - max_age_seconds
        self._last_events = {
            path: ts
            for path, ts in self._last_events.items()
            if ts > cutoff
        }


class LedgerWatcher(FileSystemEventHandler):
    """
    Watches the ledger file and calls back when it changes.

    Only events that land on the ledger path itself are reported; the
    temporary files of an atomic write are ignored.
    """

    def __init__(
        self,
        ledger_file: Path,
        callback: Callable[[Path], None],
        debounce_ms: int = 500
    ):
        """
        Initialize ledger watcher.

        Args:
            ledger_file: Ledger JSON file to watch
            callback: Called with the ledger path after each (debounced) change
            debounce_ms: Debounce delay in milliseconds
        """
        super().__init__()

        self.ledger_file = Path(ledger_file).resolve()
        self.callback = callback
        self.debounce = DebounceTracker(debounce_ms)
        self._observer: Optional[Observer] = None

    def on_created(self, event: FileCreatedEvent) -> None:
        if event.is_directory:
            return
        self._handle_file_event(event.src_path, "created")

    def on_modified(self, event: FileModifiedEvent) -> None:
        if event.is_directory:
            return
        self._handle_file_event(event.src_path, "modified")

    def on_moved(self, event: FileMovedEvent) -> None:
        # Atomic replace: temp file moved onto the ledger
        if event.is_directory:
            return
        self._handle_file_event(event.dest_path, "replaced")

    def _handle_file_event(self, file_path, event_type: str) -> None:
        """
        Process a file event that may concern the ledger.

        Args:
            file_path: Path from the watchdog event
            event_type: created, modified or replaced
        """
        path = Path(os.fsdecode(file_path)).resolve()
        if path != self.ledger_file:
            return

        key = str(path)
        if not self.debounce.should_process(key):
            logger.debug(f"Debounced {event_type} event for: {path.name}")
            return

        logger.debug(f"Ledger {event_type}: {path}")

        try:
            self.callback(self.ledger_file)
        except Exception as e:
            logger.error(
                f"Error in ledger change callback for {path.name}: {e}",
                exc_info=True
            )

        self.debounce.cleanup_old_events()

    def start(self) -> bool:
        """
        Start watching the ledger directory.

        Returns:
            True if the observer was started
        """
        if self._observer is not None:
            logger.warning(f"Observer already running for {self.ledger_file}")
            return True

        watch_path = self.ledger_file.parent
        if not watch_path.exists():
            logger.error(f"Ledger directory does not exist: {watch_path}")
            return False

        self._observer = Observer()
        self._observer.schedule(
            event_handler=self,
            path=str(watch_path),
            recursive=False
        )
        self._observer.start()
        logger.info(f"Watching ledger: {self.ledger_file}")
        return True

    def stop(self) -> None:
        """Stop and clean up the observer."""
        if self._observer is None:
            return

        try:
            self._observer.stop()
            self._observer.join(timeout=5.0)
        except RuntimeError as e:
            logger.error(f"Error stopping ledger observer: {e}", exc_info=True)
        finally:
            self._observer = None
            logger.debug(f"Stopped watching {self.ledger_file}")

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()
