import threading


class GlobalCounter:
    """Process-wide counter shared by every request thread."""

    def __init__(self, start: int = 0):
        self._lock = threading.Lock()
        self._count = start

    def increment(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def snapshot(self) -> int:
        with self._lock:
            return self._count
