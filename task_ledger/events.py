"""
In-process transition events.

Notification (banners, chat messages, dashboards) is not part of the
ledger core; collaborators subscribe here and are called after a
mutation has been committed.
"""

import logging
import threading
from typing import Callable, List

from task_ledger.models import TransitionEvent


logger = logging.getLogger(__name__)

Subscriber = Callable[[TransitionEvent], None]


class EventBus:
    """
    Fan-out of TransitionEvents to subscribers.

    A failing subscriber is logged and skipped; it never fails or
    undoes the mutation that produced the event.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber.

        Args:
            callback: Called with each TransitionEvent

        Returns:
            Function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: TransitionEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    f"Error in transition subscriber for task {event.task_id}: {e}",
                    exc_info=True
                )

    def clear(self) -> None:
        """Drop all subscribers (service teardown)."""
        with self._lock:
            self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)
