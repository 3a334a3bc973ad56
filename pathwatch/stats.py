"""Bounded-memory streaming estimators for the probe results.

Nothing in here keeps per-sample history beyond a fixed-size buffer, so the
engine can run for weeks with flat memory.
"""

import math
import threading
from dataclasses import dataclass
from typing import Optional

from . import constants


class P2QuantileEstimator:
    """Single-quantile P-square estimator (Jain & Chlamtac, 1985).

    Five markers track the minimum, p/2, p, (1+p)/2 and maximum. Marker
    heights stay non-decreasing after every `add`.
    """

    def __init__(self, p: float):
        if not 0.0 < p < 1.0:
            raise ValueError(f"quantile must be in (0, 1), got {p!r}")
        self.p = p
        self.reset()

    def reset(self):
        self.count = 0
        self.heights = []
        self.positions = [1.0, 2.0, 3.0, 4.0, 5.0]
        p = self.p
        self.desired = [1.0, 1.0 + 2.0 * p, 1.0 + 4.0 * p, 3.0 + 2.0 * p, 5.0]
        self.increments = [0.0, p / 2.0, p, (1.0 + p) / 2.0, 1.0]

    def add(self, x: float):
        x = float(x)
        self.count += 1
        if self.count <= 5:
            self.heights.append(x)
            if self.count == 5:
                self.heights.sort()
            return

        q = self.heights
        n = self.positions
        if x < q[0]:
            q[0] = x
            k = 0
        elif x < q[1]:
            k = 0
        elif x < q[2]:
            k = 1
        elif x < q[3]:
            k = 2
        elif x <= q[4]:
            k = 3
        else:
            q[4] = x
            k = 3

        for i in range(k + 1, 5):
            n[i] += 1.0
        for i in (1, 2, 3):
            self.desired[i] += self.increments[i]

        for i in (1, 2, 3):
            d = self.desired[i] - n[i]
            if (d >= 1.0 and n[i + 1] - n[i] > 1.0) or (d <= -1.0 and n[i - 1] - n[i] < -1.0):
                step = 1 if d > 0 else -1
                candidate = self._parabolic(i, step)
                if q[i - 1] < candidate < q[i + 1]:
                    q[i] = candidate
                else:
                    q[i] = self._linear(i, step)
                n[i] += step

    def _parabolic(self, i, d):
        q = self.heights
        n = self.positions
        return q[i] + d / (n[i + 1] - n[i - 1]) * (
            (n[i] - n[i - 1] + d) * (q[i + 1] - q[i]) / (n[i + 1] - n[i])
            + (n[i + 1] - n[i] - d) * (q[i] - q[i - 1]) / (n[i] - n[i - 1])
        )

    def _linear(self, i, d):
        q = self.heights
        n = self.positions
        return q[i] + d * (q[i + d] - q[i]) / (n[i + d] - n[i])

    def current(self) -> Optional[float]:
        if self.count == 0:
            return None
        if self.count < 5:
            ordered = sorted(self.heights)
            rank = int(round((self.count - 1) * self.p))
            return ordered[min(max(rank, 0), self.count - 1)]
        return self.heights[2]


class WelfordAccumulator:
    """Running mean and population variance in a single pass."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.count = 0
        self.mean = 0.0
        self.m2 = 0.0

    def add(self, x: float):
        self.count += 1
        delta = x - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (x - self.mean)

    @property
    def variance(self) -> float:
        return self.m2 / self.count if self.count > 1 else 0.0

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)


class RingLossWindow:
    """Success/failure outcomes over the most recent `capacity` probes."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity!r}")
        self.capacity = capacity
        self.reset()

    def reset(self):
        self._slots = [False] * self.capacity
        self._head = 0
        self.count = 0
        self.successes = 0

    def add(self, success: bool):
        if self.count == self.capacity:
            self.successes -= self._slots[self._head]
        else:
            self.count += 1
        self._slots[self._head] = bool(success)
        self.successes += bool(success)
        self._head = (self._head + 1) % self.capacity

    @property
    def failures(self) -> int:
        return self.count - self.successes

    @property
    def loss_percent(self) -> float:
        if self.count == 0:
            return 0.0
        return 100.0 * self.failures / self.count


@dataclass(frozen=True)
class StatsReading:
    latency_p50: Optional[float]
    latency_p95: Optional[float]
    jitter: float
    loss: float
    loss_count: int
    dns_p50: Optional[float]
    dns_p90: Optional[float]

    @property
    def has_latency(self):
        return self.latency_p50 is not None and self.loss_count > 0


class StreamingStats:
    """Estimators for the primary target and the DNS timings, behind one lock.

    Probe completions race to update these from worker threads, so every
    mutation and every read goes through `self.lock`.
    """

    def __init__(self, loss_window=constants.LOSS_WINDOW):
        self.lock = threading.Lock()
        self.latency_p50 = P2QuantileEstimator(0.5)
        self.latency_p95 = P2QuantileEstimator(0.95)
        self.jitter = WelfordAccumulator()
        self.loss = RingLossWindow(loss_window)
        self.dns_p50 = P2QuantileEstimator(0.5)
        self.dns_p90 = P2QuantileEstimator(0.9)

    def record_ping(self, success, rtt_ms):
        with self.lock:
            self.loss.add(success)
            if success:
                self.latency_p50.add(rtt_ms)
                self.latency_p95.add(rtt_ms)
                self.jitter.add(rtt_ms)

    def record_dns(self, elapsed_ms):
        with self.lock:
            self.dns_p50.add(elapsed_ms)
            self.dns_p90.add(elapsed_ms)

    def reset(self):
        with self.lock:
            for estimator in (
                self.latency_p50,
                self.latency_p95,
                self.jitter,
                self.loss,
                self.dns_p50,
                self.dns_p90,
            ):
                estimator.reset()

    def read(self) -> StatsReading:
        with self.lock:
            return StatsReading(
                latency_p50=self.latency_p50.current(),
                latency_p95=self.latency_p95.current(),
                jitter=self.jitter.stddev,
                loss=self.loss.loss_percent,
                loss_count=self.loss.count,
                dns_p50=self.dns_p50.current(),
                dns_p90=self.dns_p90.current(),
            )
