"""Upload bufferbloat test.

Compares the idle public-target median RTT with the median measured while a
zero-filled upload saturates the uplink. The upload and an accelerated ping
loop share one deadline and one stop event.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import requests

from . import constants
from .data import percentile_int, successful_rtts
from .snapshot import clock_text

logger = logging.getLogger(__name__)

LOW = "LOW"
MED = "MED"
HIGH = "HIGH"


@dataclass(frozen=True)
class BloatResult:
    delta_text: str
    detail: str
    last_run_text: str = ""
    delta_ms: Optional[int] = None
    severity: Optional[str] = None
    baseline_ms: Optional[int] = None
    load_ms: Optional[int] = None


IDLE = BloatResult(constants.PLACEHOLDER, "Run the 10s upload test to estimate bufferbloat.")
WARMING_UP = BloatResult(
    "Baseline warming up, try again in ~20s",
    "Collecting idle samples for a stable baseline.",
)
NO_DATA = BloatResult("No data", "No under-load samples collected during the test.")
FAILED = BloatResult("Test failed", "Upload test encountered an error.")
BUSY = BloatResult("Test already running", "Wait for the current upload test to finish.")


def severity_for(delta_ms):
    if delta_ms >= constants.BLOAT_HIGH_MS:
        return HIGH
    if delta_ms >= constants.BLOAT_MED_MS:
        return MED
    return LOW


def upload_zero_stream(stop_event, duration, endpoint=constants.UPLOAD_ENDPOINT):
    """POST zero bytes to `endpoint` until `stop_event` is set or `duration` passes."""
    deadline = time.monotonic() + duration
    chunk = bytes(constants.UPLOAD_CHUNK_SIZE)

    def body():
        while not stop_event.is_set() and time.monotonic() < deadline:
            yield chunk

    response = requests.post(
        endpoint,
        data=body(),
        timeout=(constants.UPLOAD_CONNECT_TIMEOUT, duration + constants.UPLOAD_CONNECT_TIMEOUT),
    )
    logger.debug("upload finished with HTTP %s", response.status_code)
    return response.status_code


class BloatTestRunner:
    def __init__(self, prober, queues, targets, clock, uploader=upload_zero_stream,
                 ping_interval=constants.BLOAT_PING_INTERVAL, cancel=None):
        self.prober = prober
        self.queues = queues
        self.targets = targets
        self.clock = clock
        self.uploader = uploader
        self.ping_interval = ping_interval
        self.cancel = cancel or threading.Event()
        self.result = IDLE
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self):
        return self._running

    def run(self, duration=constants.BLOAT_DEFAULT_DURATION):
        with self._lock:
            if self._running:
                return BUSY
            self._running = True
        try:
            result = self._run(duration)
        except Exception:
            logger.warning("upload bloat test failed", exc_info=True)
            result = FAILED
        finally:
            self._running = False
        self.result = result
        return result

    def _run(self, duration):
        public = self.queues["public"]
        now_ms = self.clock.now_ms()
        baseline = successful_rtts(public.items(), start_ms=now_ms - constants.BLOAT_BASELINE_WINDOW_MS)
        if len(baseline) < constants.BLOAT_MIN_BASELINE_SAMPLES:
            return WARMING_UP
        baseline_ms = percentile_int(baseline, 50)

        stop = threading.Event()
        errors = []

        def upload():
            try:
                self.uploader(stop, duration)
            except Exception as exc:
                errors.append(exc)
                stop.set()

        start_ms = self.clock.now_ms()
        deadline = self.clock.monotonic() + duration
        upload_thread = threading.Thread(target=upload, daemon=True, name="bloat-upload")
        upload_thread.start()
        self._ping_loop(stop, deadline)
        stop.set()
        upload_thread.join(constants.UPLOAD_CONNECT_TIMEOUT * 2)
        end_ms = self.clock.now_ms()
        if errors:
            raise errors[0]

        load = successful_rtts(public.items(), start_ms, end_ms, inclusive=False)
        stamp = f"Tested at {clock_text(end_ms)}"
        if not load:
            return BloatResult(NO_DATA.delta_text, NO_DATA.detail, stamp)

        load_ms = percentile_int(load, 50)
        delta = max(0, load_ms - baseline_ms)
        severity = severity_for(delta)
        logger.info("bufferbloat: idle %d ms, load %d ms, +%d ms %s", baseline_ms, load_ms, delta, severity)
        return BloatResult(
            delta_text=f"+{delta} ms ({severity})",
            detail=f"Idle p50 {baseline_ms} ms → Load p50 {load_ms} ms (+{delta} ms {severity})",
            last_run_text=stamp,
            delta_ms=delta,
            severity=severity,
            baseline_ms=baseline_ms,
            load_ms=load_ms,
        )

    def _ping_loop(self, stop, deadline):
        while not (stop.is_set() or self.cancel.is_set()) and self.clock.monotonic() < deadline:
            started = self.clock.monotonic()
            self._ping_all()
            remaining = min(self.ping_interval - (self.clock.monotonic() - started),
                            deadline - self.clock.monotonic())
            if self.clock.wait(stop, remaining):
                break

    def _ping_all(self):
        targets = self.targets()
        plan = [(targets.public, self.queues["public"], True)]
        if targets.gateway:
            plan.append((targets.gateway, self.queues["gateway"], False))
        if targets.resolver:
            plan.append((targets.resolver, self.queues["resolver"], False))
        workers = [
            threading.Thread(target=self.prober.ping, args=(host, queue), kwargs={"primary": primary},
                             daemon=True, name=f"bloat-ping-{host}")
            for host, queue, primary in plan
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
