import itertools
import logging
import re
import subprocess
import threading
import time
import uuid

import dns.exception
import dns.resolver

from . import constants
from .data import DnsSample, ProbeSample

logger = logging.getLogger(__name__)


def send_echo(host, timeout=constants.ECHO_TIMEOUT):
    """Send one ICMP echo with the system ping tool.

    Returns (success, rtt_ms); on failure rtt_ms is the time spent waiting.
    """
    start = time.perf_counter()
    try:
        result = subprocess.run(
            ["ping", "-c", "1", "-W", "1", host],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return False, int(timeout * 1000)
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    match = re.search(r"time=([\d.]+)", result.stdout)
    if result.returncode != 0 or not match:
        return False, elapsed_ms
    return True, int(round(float(match.group(1))))


def lookup_host(host, nameserver=None, timeout=constants.DNS_TIMEOUT_MS / 1000.0):
    """Resolve `host` once; DNS errors propagate to the caller."""
    resolver = dns.resolver.Resolver()
    if nameserver:
        resolver.nameservers = [nameserver]
    resolver.cache = None
    resolver.lifetime = timeout
    resolver.timeout = timeout
    return resolver.resolve(host, "A", raise_on_no_answer=False)


class Prober:
    """Runs single echo and DNS-timing probes and records what they observed."""

    def __init__(self, stats, clock, echo=send_echo, lookup=lookup_host,
                 dns_hosts=constants.DNS_TEST_HOSTS):
        self.stats = stats
        self.clock = clock
        self.echo = echo
        self.lookup = lookup
        self._dns_hosts = itertools.cycle(dns_hosts)
        self.record_lock = threading.Lock()

    def ping(self, host, queue, primary=False):
        try:
            success, rtt_ms = self.echo(host)
        except Exception:
            logger.debug("echo to %s raised", host, exc_info=True)
            success, rtt_ms = False, 0
        queue.append(ProbeSample(self.clock.now_ms(), success, rtt_ms))
        if primary:
            self.stats.record_ping(success, rtt_ms)
        if not success:
            logger.debug("echo to %s failed after %d ms", host, rtt_ms)
        return success

    def time_dns(self, queue, nameserver=None, is_current=None):
        """Time one uncached lookup and record it.

        `is_current` is checked under `record_lock` just before recording; a
        false answer drops the measurement and returns None.
        """
        host = f"{uuid.uuid4().hex[:8]}.{next(self._dns_hosts)}"
        limit_ms = constants.DNS_TIMEOUT_MS
        start = time.perf_counter()
        try:
            self.lookup(host, nameserver, limit_ms / 1000.0)
            elapsed_ms = int((time.perf_counter() - start) * 1000)
        except dns.exception.Timeout:
            elapsed_ms = limit_ms
        except (dns.exception.DNSException, OSError) as exc:
            # NXDOMAIN is the expected answer for a random label
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            logger.debug("lookup of %s: %s", host, type(exc).__name__)
        elapsed_ms = min(elapsed_ms, limit_ms)
        with self.record_lock:
            if is_current is not None and not is_current():
                logger.debug("dropping DNS timing for %s from a previous path", nameserver)
                return None
            queue.append(DnsSample(self.clock.now_ms(), elapsed_ms))
            self.stats.record_dns(elapsed_ms)
        return elapsed_ms
