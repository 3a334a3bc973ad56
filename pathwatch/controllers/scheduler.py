"""1 Hz probe scheduler.

Each tick, in order: apply a debounced target re-discovery, dispatch the
staggered echo probes (throttled while in offline backoff), start a DNS
timing probe every DNS_EVERY_N_TICKS ticks, trim the sample queues and hand
over to the recompute callback. A second loop polls the link every
LINK_POLL_INTERVAL seconds and raises the network-change notification.
"""

import logging
import threading
from dataclasses import dataclass

from .. import constants
from ..net import TargetSet

logger = logging.getLogger(__name__)


@dataclass
class BackoffState:
    consecutive_all_fail_ticks: int = 0
    active: bool = False
    probe_every_n_ticks: int = constants.BACKOFF_PROBE_EVERY_N_TICKS
    threshold: int = constants.BACKOFF_AFTER_FAILED_TICKS

    def should_probe(self, tick):
        return not self.active or tick % self.probe_every_n_ticks == 0

    def record(self, attempted, any_success):
        """Update from one tick's outcome; returns True when `active` flipped."""
        was_active = self.active
        if any_success:
            self.consecutive_all_fail_ticks = 0
            self.active = False
        elif attempted:
            self.consecutive_all_fail_ticks += 1
            if self.consecutive_all_fail_ticks > self.threshold:
                self.active = True
        return was_active != self.active

    def reset(self):
        self.consecutive_all_fail_ticks = 0
        self.active = False


class ScheduleController:
    def __init__(self, resolver, prober, queues, clock, on_reset=None, on_tick=None,
                 interval=constants.TICK_INTERVAL):
        self.resolver = resolver
        self.prober = prober
        self.queues = queues
        self.clock = clock
        self.on_reset = on_reset
        self.on_tick = on_tick
        self.interval = interval

        self.targets = TargetSet(public=resolver.public)
        self.link = "Detecting link…"
        self.tick_count = 0
        self.path_generation = 0
        self.backoff = BackoffState()
        self.stop_event = threading.Event()

        self._change_lock = threading.Lock()
        self._change_pending = False
        self._change_at = 0.0
        self._threads = []

    # -- targets -------------------------------------------------------

    def discover(self):
        try:
            self.targets = self.resolver.discover()
        except Exception:
            logger.exception("target discovery failed")
        logger.info("targets: %s", " | ".join(self.targets.summaries()))
        return self.targets

    def notify_network_change(self):
        with self._change_lock:
            self._change_pending = True
            self._change_at = self.clock.monotonic()

    def apply_pending_change(self):
        with self._change_lock:
            if not self._change_pending:
                return False
            if self.clock.monotonic() - self._change_at < constants.NIC_CHANGE_DEBOUNCE:
                return False
            self._change_pending = False

        before = self.targets
        after = self.discover()
        if before.same_path(after):
            return False
        logger.info("network path changed (gateway %s -> %s, resolver %s -> %s); resetting",
                    before.gateway, after.gateway, before.resolver, after.resolver)
        with self.prober.record_lock:
            self.path_generation += 1
            self.backoff.reset()
            if self.on_reset is not None:
                self.on_reset()
        return True

    # -- probes --------------------------------------------------------

    def probe_plan(self):
        targets = self.targets
        plan = []
        if targets.gateway:
            plan.append((targets.gateway, self.queues["gateway"], constants.STAGGER_GATEWAY, False))
        if targets.resolver:
            plan.append((targets.resolver, self.queues["resolver"], constants.STAGGER_RESOLVER, False))
        plan.append((targets.public, self.queues["public"], constants.STAGGER_PUBLIC, True))
        return plan

    def dispatch_probes(self, plan):
        """Run the planned probes concurrently; returns the completed outcomes."""
        results = [None] * len(plan)

        def run(index, host, queue, delay, primary):
            if delay > 0 and self.clock.wait(self.stop_event, delay):
                return
            results[index] = self.prober.ping(host, queue, primary=primary)

        workers = [
            threading.Thread(target=run, args=(i, *probe), daemon=True, name=f"probe-{probe[0]}")
            for i, probe in enumerate(plan)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        return [r for r in results if r is not None]

    def start_dns_probe(self):
        generation = self.path_generation

        def is_current():
            return self.path_generation == generation

        return self._spawn(self.prober.time_dns, "dns-timing", self.queues["dns"],
                           self.targets.resolver, is_current)

    def trim_queues(self):
        for queue in self.queues.values():
            queue.trim()

    def tick(self):
        self.tick_count += 1
        try:
            self.apply_pending_change()

            if self.backoff.should_probe(self.tick_count):
                outcomes = self.dispatch_probes(self.probe_plan())
                if self.backoff.record(bool(outcomes), any(outcomes)):
                    if self.backoff.active:
                        logger.info("no responses for %d ticks; probing every %d ticks",
                                    self.backoff.consecutive_all_fail_ticks,
                                    self.backoff.probe_every_n_ticks)
                    else:
                        logger.info("responses resumed; leaving offline backoff")

            if self.tick_count % constants.DNS_EVERY_N_TICKS == 0:
                self.start_dns_probe()

            self.trim_queues()

            if self.on_tick is not None:
                self.on_tick()
        except Exception:
            logger.exception("tick %d failed", self.tick_count)

    # -- lifecycle -----------------------------------------------------

    def _spawn(self, target, name, *args):
        self._threads = [t for t in self._threads if t.is_alive()]
        thread = threading.Thread(target=target, args=args, daemon=True, name=name)
        self._threads.append(thread)
        thread.start()
        return thread

    def poll_link(self, last_fingerprint=None):
        self.link = self.resolver.describe_link(self.targets.interface)
        fingerprint = self.resolver.fingerprint()
        if last_fingerprint is not None and fingerprint != last_fingerprint:
            logger.info("network change detected")
            self.notify_network_change()
        return fingerprint

    def _link_poll_loop(self):
        fingerprint = None
        while not self.stop_event.is_set():
            try:
                fingerprint = self.poll_link(fingerprint)
            except Exception:
                logger.exception("link poll failed")
            if self.clock.wait(self.stop_event, constants.LINK_POLL_INTERVAL):
                break

    def _tick_loop(self):
        self.discover()
        self._spawn(self._link_poll_loop, "link-poll")
        deadline = self.clock.monotonic() + self.interval
        while not self.clock.wait(self.stop_event, deadline - self.clock.monotonic()):
            self.tick()
            now = self.clock.monotonic()
            deadline += self.interval
            while deadline <= now:
                deadline += self.interval

    def start(self):
        self.stop_event.clear()
        self._spawn(self._tick_loop, "tick")

    def stop(self, timeout=2.0):
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
