from dataclasses import dataclass

from . import constants

GREEN = "GREEN"
AMBER = "AMBER"
RED = "RED"


@dataclass(frozen=True)
class HealthStatus:
    tier: str
    score: int
    reason: str


def evaluate(latency_p50, jitter, loss, dns_p50=None):
    """Score current streaming values into a health tier plus explanation.

    `latency_p50` of None means the primary target has no estimate yet, in
    which case only the DNS condition can contribute.
    """
    score = 0
    reasons = []

    if latency_p50 is not None:
        if loss > constants.LOSS_RED_PCT:
            score += 2
            reasons.append(f"{loss:.1f}% loss")
        elif loss > constants.LOSS_AMBER_PCT:
            score += 1
            reasons.append(f"{loss:.1f}% loss")

        if jitter > constants.JITTER_RED_MS:
            score += 2
            reasons.append(f"jitter {jitter:.0f} ms")
        elif jitter > constants.JITTER_AMBER_MS:
            score += 1
            reasons.append(f"jitter {jitter:.0f} ms")

        if latency_p50 > constants.LATENCY_RED_MS:
            score += 2
            reasons.append(f"latency {round(latency_p50)} ms")
        elif latency_p50 > constants.LATENCY_AMBER_MS:
            score += 1
            reasons.append(f"latency {round(latency_p50)} ms")

    if dns_p50 is not None and dns_p50 > constants.DNS_SLOW_MS:
        score += 1
        reasons.append(f"DNS {round(dns_p50)} ms")

    if score >= 3:
        tier = RED
    elif score >= 1:
        tier = AMBER
    else:
        tier = GREEN
    reason = "; ".join(reasons) if reasons else constants.HEALTHY_REASON
    return HealthStatus(tier, score, reason)


class StatusEvaluator:
    def evaluate(self, reading) -> HealthStatus:
        latency = reading.latency_p50 if reading.has_latency else None
        return evaluate(latency, reading.jitter, reading.loss, reading.dns_p50)
