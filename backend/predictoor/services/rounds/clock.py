import threading
import time


class SystemClock:
    """Wall clock in epoch seconds."""

    def now(self) -> float:
        return time.time()


class FrozenClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def set(self, value: float) -> None:
        with self._lock:
            self._now = float(value)

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now
