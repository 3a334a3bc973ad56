import logging
import threading
from dataclasses import replace

from . import constants
from .axis import AxisRangeTracker
from .bloat import BUSY, BloatTestRunner, upload_zero_stream
from .clock import SystemClock
from .controllers import collection
from .controllers.scheduler import ScheduleController
from .data import SampleQueue, TimeSeries
from .net import TargetResolver
from .ping import Prober, lookup_host, send_echo
from .snapshot import HealthSnapshot, build_text_snapshot
from .stats import StreamingStats
from .status import StatusEvaluator

logger = logging.getLogger(__name__)

SERIES_NAMES = ("latency", "jitter", "loss", "dns")


class NetworkHealthEngine:
    """Owns the probing pipeline and publishes immutable snapshots.

    Call `start()` to begin probing and `stop()` to cancel all in-flight
    work; `snapshot()` and `series()` can be polled from any thread, or
    register a callback with `subscribe()` to receive each snapshot after a
    tick.
    """

    def __init__(self, resolver=None, clock=None, echo=send_echo, lookup=lookup_host,
                 uploader=upload_zero_stream):
        self.clock = clock or SystemClock()
        self.resolver = resolver or TargetResolver()
        self.stats = StreamingStats()
        self.queues = {
            "public": SampleQueue(constants.PING_SAMPLES_MAX),
            "gateway": SampleQueue(constants.PING_SAMPLES_MAX),
            "resolver": SampleQueue(constants.PING_SAMPLES_MAX),
            "dns": SampleQueue(constants.DNS_SAMPLES_MAX),
        }
        self.buffers = {name: TimeSeries(constants.SERIES_MAX) for name in SERIES_NAMES}
        self.status_evaluator = StatusEvaluator()
        self.axis = AxisRangeTracker()
        self.prober = Prober(self.stats, self.clock, echo=echo, lookup=lookup)
        self.scheduler = ScheduleController(
            self.resolver,
            self.prober,
            self.queues,
            self.clock,
            on_reset=self.reset,
            on_tick=self.recompute,
        )
        self.bloat = BloatTestRunner(
            self.prober,
            self.queues,
            lambda: self.scheduler.targets,
            self.clock,
            uploader=uploader,
            cancel=self.scheduler.stop_event,
        )

        self._lock = threading.Lock()
        self._snapshot = HealthSnapshot()
        self._subscribers = []

    @property
    def targets(self):
        return self.scheduler.targets

    @property
    def link(self):
        return self.scheduler.link

    def start(self):
        logger.info("starting probes (public target %s)", self.resolver.public)
        self.scheduler.start()

    def stop(self):
        self.scheduler.stop()
        logger.info("probes stopped")

    def reset(self):
        with self._lock:
            for queue in self.queues.values():
                queue.clear()
            for series in self.buffers.values():
                series.clear()
            self.stats.reset()

    def recompute(self):
        with self._lock:
            snapshot = collection.collect_data(self)
            self._snapshot = snapshot
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("snapshot subscriber %r failed", callback)
        return snapshot

    def snapshot(self) -> HealthSnapshot:
        return self._snapshot

    def series(self, name):
        """Return copies of (values, timestamps) for one metric."""
        if name not in self.buffers:
            raise ValueError(f"unknown series {name!r}")
        with self._lock:
            return self.buffers[name].copy()

    def subscribe(self, callback):
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def run_upload_bloat_test(self, duration=constants.BLOAT_DEFAULT_DURATION):
        with self._lock:
            self._snapshot = replace(self._snapshot, bloat_running=True)
        result = self.bloat.run(duration)
        if result is BUSY:
            # the running test owns the bloat fields until it finishes
            return result
        with self._lock:
            self._snapshot = replace(
                self._snapshot,
                bloat_delta=result.delta_text,
                bloat_detail=result.detail,
                last_bloat_run=result.last_run_text,
                bloat_running=self.bloat.running,
            )
        return result

    def build_text_snapshot(self):
        return build_text_snapshot(self._snapshot)
