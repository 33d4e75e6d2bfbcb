"""Persistence contracts used by the sync controller."""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from processor.models import Event

logger = logging.getLogger(__name__)

SelectionCallback = Callable[[Optional[str]], None]


class SelectionStore(ABC):
    """Persisted key-value holder of the selected group name."""

    @abstractmethod
    def load_selection(self) -> Optional[str]:
        """Return the stored group name, or None if nothing was selected."""

    @abstractmethod
    def subscribe(self, callback: SelectionCallback) -> Callable[[], None]:
        """
        Register for change notifications.

        Values may repeat; consumers are expected to debounce.

        Args:
            callback: Called with the new group name on every write

        Returns:
            Function that removes the registration
        """


class MostRecentEventCache(ABC):
    """Cache of the most recent real event of the selected group."""

    @abstractmethod
    def save_most_recent(self, event: Event) -> None:
        """Persist an event as the most recent one."""


class InMemoryPreferences(SelectionStore, MostRecentEventCache):
    """Thread-safe in-memory implementation of both persistence contracts."""

    def __init__(self, selection: Optional[str] = None):
        self._lock = threading.Lock()
        self._selection = selection
        self._most_recent: Optional[Event] = None
        self._callbacks: List[SelectionCallback] = []

    def load_selection(self) -> Optional[str]:
        with self._lock:
            return self._selection

    def set_selection(self, name: Optional[str]) -> None:
        """Store a group name and notify every subscriber."""
        with self._lock:
            self._selection = name
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(name)

    def subscribe(self, callback: SelectionCallback) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def save_most_recent(self, event: Event) -> None:
        if event.is_sentinel:
            raise ValueError(f"Refusing to store placeholder event '{event.id}'")
        with self._lock:
            self._most_recent = event
        logger.debug(f"Stored most recent event {event.id}")

    @property
    def most_recent(self) -> Optional[Event]:
        with self._lock:
            return self._most_recent
