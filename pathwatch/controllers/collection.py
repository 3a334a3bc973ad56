from .. import constants
from ..snapshot import HealthSnapshot, clock_text, dns_fields, latency_fields


def collect_data(engine):
    """Fold the current estimator state into series, axes and a new snapshot.

    `engine` is the NetworkHealthEngine instance; called once per tick from
    the scheduler thread.
    """
    now_ms = engine.clock.now_ms()
    reading = engine.stats.read()
    status = engine.status_evaluator.evaluate(reading)

    latency = reading.latency_p50 if reading.has_latency else None
    engine.axis.update("latency", latency)
    engine.axis.update("jitter", reading.jitter)
    engine.axis.update("loss", reading.loss)

    if reading.has_latency:
        engine.buffers["latency"].append(reading.latency_p50, now_ms)
        engine.buffers["jitter"].append(reading.jitter, now_ms)
        engine.buffers["loss"].append(reading.loss, now_ms)
    if reading.dns_p50 is not None:
        engine.buffers["dns"].append(reading.dns_p50, now_ms)

    cutoff = now_ms - constants.RECENT_LOSS_WINDOW_MS
    recent_loss = any(
        not sample.success and sample.timestamp_ms >= cutoff
        for sample in engine.queues["public"].items()
    )

    bloat = engine.bloat.result
    return HealthSnapshot(
        timestamp_ms=now_ms,
        bloat_delta=bloat.delta_text,
        bloat_detail=bloat.detail,
        last_bloat_run=bloat.last_run_text,
        bloat_running=engine.bloat.running,
        link=engine.link,
        status=status.tier,
        status_reason=status.reason,
        last_updated=f"↻ {clock_text(now_ms)}",
        has_recent_loss=recent_loss,
        backoff_active=engine.scheduler.backoff.active,
        targets=tuple(engine.targets.summaries()),
        axis_bounds=engine.axis.bounds(),
        **latency_fields(reading),
        **dns_fields(reading),
    )
