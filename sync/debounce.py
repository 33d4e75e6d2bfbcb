"""Timer-based debouncing of change notifications."""
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Calls ``callback`` with the latest value once no new value arrived for ``interval`` seconds."""

    def __init__(self, interval: float, callback: Callable[[Any], None]):
        self.interval = interval
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

    def trigger(self, value: Any) -> None:
        if self.interval <= 0:
            self._callback(value)
            return
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._generation += 1
            timer = threading.Timer(
                self.interval, self._fire, args=(self._generation, value)
            )
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer:
                self._timer.cancel()
                self._timer = None

    def _fire(self, generation: int, value: Any) -> None:
        with self._lock:
            # a newer trigger or cancel raced with this timer
            if generation != self._generation:
                return
            self._timer = None
        self._callback(value)
