import pytest

from pathwatch import constants
from pathwatch.axis import AxisRange, AxisRangeTracker, snap_to_ladder
from pathwatch.stats import StatsReading
from pathwatch.status import AMBER, GREEN, RED, StatusEvaluator, evaluate


def test_loss_alone_scores_amber():
    status = evaluate(latency_p50=50, jitter=10, loss=3.0, dns_p50=None)
    assert status.score == 2
    assert status.tier == AMBER
    assert "3.0% loss" in status.reason


def test_healthy_link_is_green_with_fixed_message():
    status = evaluate(latency_p50=20, jitter=3, loss=0.0, dns_p50=40)
    assert status.tier == GREEN
    assert status.score == 0
    assert status.reason == constants.HEALTHY_REASON


def test_no_data_is_green():
    status = evaluate(latency_p50=None, jitter=0.0, loss=0.0, dns_p50=None)
    assert status.tier == GREEN
    assert status.reason == constants.HEALTHY_REASON


def test_every_condition_is_reported():
    status = evaluate(latency_p50=130, jitter=55, loss=1.0, dns_p50=200)
    assert status.score == 1 + 2 + 2 + 1
    assert status.tier == RED
    assert status.reason == "1.0% loss; jitter 55 ms; latency 130 ms; DNS 200 ms"


@pytest.mark.parametrize(
    "latency, jitter, loss, expected",
    [
        (61, 0, 0.0, 1),
        (60, 0, 0.0, 0),
        (121, 0, 0.0, 2),
        (10, 21, 0.0, 1),
        (10, 20, 0.0, 0),
        (10, 51, 0.0, 2),
        (10, 0, 0.6, 1),
        (10, 0, 0.5, 0),
        (10, 0, 2.0, 1),
        (10, 0, 2.1, 2),
    ],
)
def test_threshold_boundaries(latency, jitter, loss, expected):
    assert evaluate(latency, jitter, loss).score == expected


def test_slow_dns_counts_without_latency_estimate():
    status = evaluate(latency_p50=None, jitter=0.0, loss=0.0, dns_p50=151)
    assert status.tier == AMBER
    assert status.reason == "DNS 151 ms"


def test_evaluator_ignores_latency_before_any_probe():
    reading = StatsReading(
        latency_p50=200.0, latency_p95=250.0, jitter=60.0, loss=10.0,
        loss_count=0, dns_p50=None, dns_p90=None,
    )
    assert StatusEvaluator().evaluate(reading).tier == GREEN


def test_small_change_keeps_previous_bound():
    axis = AxisRange(current_upper_bound=100.0)
    assert axis.offer(108.0) == 100.0
    assert axis.current_upper_bound == 100.0


def test_large_change_moves_bound():
    axis = AxisRange(current_upper_bound=100.0)
    assert axis.offer(130.0) == 130.0


def test_first_proposal_is_adopted():
    axis = AxisRange()
    assert axis.offer(40.0) == 40.0


def test_snap_rounds_up_to_ladder():
    assert snap_to_ladder(41, 300) == 50
    assert snap_to_ladder(50, 300) == 50
    assert snap_to_ladder(700, 600) == 600


def test_tracker_proposals_follow_clamp_and_ladder():
    tracker = AxisRangeTracker()
    assert tracker.propose("latency", None) == 150
    assert tracker.propose("latency", 10) == 50
    assert tracker.propose("latency", 1000) == 300
    assert tracker.propose("jitter", 0) == 20
    assert tracker.propose("loss", 0) == 10
    assert tracker.propose("loss", None) == 10
    assert tracker.propose("loss", 50) == 30


def test_tracker_is_sticky_under_noise():
    tracker = AxisRangeTracker()
    first = tracker.update("latency", 30)
    for value in (29, 30, 28, 26, 24):
        assert tracker.update("latency", value) == first
    assert tracker.update("latency", 100) == 300
    assert tracker.bounds()["latency"] == 300
    assert tracker.ranges["latency"].last_value == 100


def test_tracker_rejects_unknown_metric():
    with pytest.raises(ValueError):
        AxisRangeTracker().propose("throughput", 1)
