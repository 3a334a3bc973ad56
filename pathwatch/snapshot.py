from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from . import constants

P = constants.PLACEHOLDER


def format_ms(ms):
    if ms >= 1000:
        return f"{ms / 1000.0:.1f} s"
    return f"{ms} ms"


def clock_text(timestamp_ms, fmt="%H:%M:%S"):
    return datetime.fromtimestamp(timestamp_ms / 1000.0).strftime(fmt)


@dataclass(frozen=True)
class HealthSnapshot:
    """Everything the presentation layer shows, as plain immutable values."""

    timestamp_ms: int = 0
    latency_p50: str = P
    latency_p95: str = f"p95 {P}"
    jitter: str = P
    loss: str = f"loss {P}"
    loss_pct: str = P
    dns_median: str = P
    dns_detail: str = ""
    bloat_delta: str = P
    bloat_detail: str = "Run the 10s upload test to estimate bufferbloat."
    last_bloat_run: str = ""
    bloat_running: bool = False
    link: str = "Detecting link…"
    status: str = "UNKNOWN"
    status_reason: str = ""
    last_updated: str = "↻ …"
    has_recent_loss: bool = False
    backoff_active: bool = False
    targets: Tuple[str, ...] = ()
    axis_bounds: Dict[str, Optional[float]] = field(default_factory=dict)


def latency_fields(reading):
    if reading.has_latency:
        loss = f"{reading.loss:.1f}%"
        return {
            "latency_p50": f"{round(reading.latency_p50)} ms",
            "latency_p95": f"p95 {round(reading.latency_p95)} ms",
            "jitter": f"{reading.jitter:.0f} ms",
            "loss": f"loss {loss}",
            "loss_pct": loss,
        }
    return {
        "latency_p50": P,
        "latency_p95": f"p95 {P}",
        "jitter": P,
        "loss": f"loss {P}",
        "loss_pct": P,
    }


def dns_fields(reading):
    if reading.dns_p50 is None:
        return {"dns_median": P, "dns_detail": ""}
    return {
        "dns_median": format_ms(round(reading.dns_p50)),
        "dns_detail": f"p90 {format_ms(round(reading.dns_p90))}",
    }


def build_text_snapshot(snapshot):
    lines = [clock_text(snapshot.timestamp_ms, "%Y-%m-%d %H:%M:%S")]
    if snapshot.targets:
        lines.append(" | ".join(snapshot.targets))
    lines.append(f"Link: {snapshot.link}")
    lines.append(f"Ping public: {snapshot.latency_p50} / {snapshot.jitter} / {snapshot.loss}")
    lines.append(f"DNS: {snapshot.dns_median} ({snapshot.dns_detail})")
    lines.append(f"Bufferbloat: {snapshot.bloat_delta}")
    lines.append(f"Status: {snapshot.status} ({snapshot.status_reason})")
    return "\n".join(lines) + "\n"
