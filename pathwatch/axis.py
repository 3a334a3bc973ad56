from dataclasses import dataclass
from typing import Optional

from . import constants


def snap_to_ladder(value, cap, ladder=constants.AXIS_LADDER):
    for rung in ladder:
        if value <= rung:
            return float(rung)
    return float(cap)


@dataclass
class AxisRange:
    current_upper_bound: Optional[float] = None
    last_value: Optional[float] = None

    def offer(self, proposed):
        """Adopt `proposed` only if it moves more than the hysteresis band."""
        current = self.current_upper_bound
        if current is None:
            self.current_upper_bound = proposed
        elif abs(proposed - current) / max(1.0, current) > constants.AXIS_HYSTERESIS:
            self.current_upper_bound = proposed
        return self.current_upper_bound


class AxisRangeTracker:
    """Sticky chart upper bounds for latency, jitter and loss."""

    def __init__(self, metrics=constants.AXIS_METRICS):
        self.metrics = dict(metrics)
        self.ranges = {name: AxisRange() for name in self.metrics}

    def propose(self, metric, value):
        try:
            multiplier, floor, headroom, low, high, default = self.metrics[metric]
        except KeyError:
            raise ValueError(f"unknown axis metric {metric!r}") from None
        base = default if value is None else max(floor, value * multiplier)
        clamped = max(low, min(high, base * headroom))
        return snap_to_ladder(clamped, high)

    def update(self, metric, value):
        proposed = self.propose(metric, value)
        axis = self.ranges[metric]
        axis.last_value = value
        return axis.offer(proposed)

    def bounds(self):
        return {name: axis.current_upper_bound for name, axis in self.ranges.items()}
