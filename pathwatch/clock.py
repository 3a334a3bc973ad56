import threading
import time


class SystemClock:
    def now_ms(self):
        return int(time.time() * 1000)

    def monotonic(self):
        return time.monotonic()

    def wait(self, event, timeout):
        """Block up to `timeout` seconds; returns True if `event` got set."""
        if timeout <= 0:
            return event.is_set()
        return event.wait(timeout)


class FakeClock:
    """Clock whose waits advance simulated time instead of sleeping.

    Safe to share between threads; every wait moves the clock forward by the
    full timeout unless the event is already set.
    """

    def __init__(self, start_ms=1_700_000_000_000):
        self._lock = threading.Lock()
        self._ms = start_ms

    def now_ms(self):
        with self._lock:
            return self._ms

    def monotonic(self):
        with self._lock:
            return self._ms / 1000.0

    def advance(self, seconds):
        with self._lock:
            self._ms += int(round(seconds * 1000))

    def wait(self, event, timeout):
        if event.is_set():
            return True
        if timeout > 0:
            self.advance(timeout)
        return event.is_set()
