import threading
from collections import deque
from dataclasses import dataclass

import numpy as np

from . import constants


@dataclass(frozen=True)
class ProbeSample:
    timestamp_ms: int
    success: bool
    rtt_ms: int


@dataclass(frozen=True)
class DnsSample:
    timestamp_ms: int
    elapsed_ms: int


class SampleQueue:
    """FIFO of samples shared by probe threads; only the tick driver trims it."""

    def __init__(self, max_len):
        self.max_len = max_len
        self._items = deque()
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._items)

    def append(self, sample):
        with self._lock:
            self._items.append(sample)

    def trim(self):
        with self._lock:
            while len(self._items) > self.max_len:
                self._items.popleft()

    def clear(self):
        with self._lock:
            self._items.clear()

    def items(self):
        with self._lock:
            return list(self._items)


class TimeSeries:
    """Index-aligned value/timestamp arrays capped at `max_len` points."""

    def __init__(self, max_len=constants.SERIES_MAX):
        self.max_len = max_len
        self.values = np.array([], dtype=float)
        self.timestamps = np.array([], dtype=np.int64)

    def __len__(self):
        return len(self.values)

    def append(self, value, timestamp_ms):
        self.values = np.append(self.values, float(value))
        self.timestamps = np.append(self.timestamps, np.int64(timestamp_ms))
        excess = len(self.values) - self.max_len
        if excess > 0:
            self.values = self.values[excess:]
            self.timestamps = self.timestamps[excess:]

    def clear(self):
        self.values = np.array([], dtype=float)
        self.timestamps = np.array([], dtype=np.int64)

    def copy(self):
        return self.values.copy(), self.timestamps.copy()


def percentile_int(values, pct):
    """Linear-interpolated percentile truncated to whole milliseconds."""
    if len(values) == 0:
        return 0
    return int(np.percentile(np.asarray(values, dtype=float), pct))


def successful_rtts(samples, start_ms=None, end_ms=None, inclusive=True):
    rtts = []
    for sample in samples:
        if not sample.success:
            continue
        if start_ms is not None:
            if inclusive and sample.timestamp_ms < start_ms:
                continue
            if not inclusive and sample.timestamp_ms <= start_ms:
                continue
        if end_ms is not None:
            if inclusive and sample.timestamp_ms > end_ms:
                continue
            if not inclusive and sample.timestamp_ms >= end_ms:
                continue
        rtts.append(sample.rtt_ms)
    return rtts
