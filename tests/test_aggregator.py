from __future__ import annotations

from datetime import datetime

import pytest

from diamond_metrics.aggregator import (
    aggregate,
    aggregate_by_date,
    aggregates_to_frame,
    percent_change,
    percent_in,
    percent_meeting,
    percentile_subset,
)
from diamond_metrics.comparator import ThresholdTable
from diamond_metrics.models import Sample
from diamond_metrics.zones import SprayScheme


def _swing(session: str | None = None, when: datetime | None = None, **metrics: float) -> Sample:
    labels = {"session_id": session} if session else {}
    return Sample(timestamp=when, source_type="swing", metrics=metrics, labels=labels)


def test_percent_meeting_threshold_per_band() -> None:
    samples = [_swing(bat_speed=60.0), _swing(bat_speed=70.0), _swing(bat_speed=80.0)]
    table = ThresholdTable("levels", {"youth": 60, "highschool": 67, "college": 75})

    result = aggregate(samples, thresholds={"bat_speed": table})["all"]

    assert result.percent_of("bat_speed", "youth") == pytest.approx(100.0)
    assert result.percent_of("bat_speed", "highschool") == pytest.approx(200.0 / 3.0)
    assert result.percent_of("bat_speed", "college") == pytest.approx(100.0 / 3.0)


def test_empty_input_yields_single_group_with_missing_means() -> None:
    result = aggregate([], metrics=["bat_speed", "power"])
    assert list(result) == ["all"]
    summary = result["all"]
    assert summary.count == 0
    assert summary.mean_of("bat_speed") is None
    assert summary.max_of("power") is None


def test_empty_input_grouped_yields_no_groups() -> None:
    assert aggregate([], "session_id") == {}


def test_mean_uses_only_samples_carrying_the_metric() -> None:
    samples = [
        _swing(bat_speed=70.0, power=2.0),
        _swing(bat_speed=74.0),
        _swing(power=3.0),
    ]
    summary = aggregate(samples, metrics=["rotational_acceleration"])["all"]
    assert summary.count == 3
    assert summary.mean_of("bat_speed") == pytest.approx(72.0)
    assert summary.mean_of("power") == pytest.approx(2.5)
    assert summary.max_of("bat_speed") == pytest.approx(74.0)
    assert summary.mean_of("rotational_acceleration") is None
    assert summary.mean_of("never_tracked") is None


def test_threshold_percent_is_none_when_metric_absent() -> None:
    table = ThresholdTable("levels", {"youth": 60})
    summary = aggregate([_swing(power=2.0)], thresholds={"bat_speed": table})["all"]
    assert summary.percent_of("bat_speed", "youth") is None


def test_group_by_label_excludes_unlabelled_unless_requested() -> None:
    samples = [
        _swing("a", bat_speed=70.0),
        _swing("a", bat_speed=72.0),
        _swing("b", bat_speed=65.0),
        _swing(None, bat_speed=90.0),
    ]
    grouped = aggregate(samples, "session_id")
    assert set(grouped) == {"a", "b"}
    assert grouped["a"].count == 2
    assert grouped["a"].mean_of("bat_speed") == pytest.approx(71.0)

    with_unclassified = aggregate(samples, "session_id", include_unclassified=True)
    assert with_unclassified[None].count == 1


def test_group_by_zone_scheme() -> None:
    hits = [
        Sample(timestamp=None, source_type="hit", metrics={"horizontal_angle": angle, "exit_velocity": ev})
        for angle, ev in [(-30.0, 100.0), (-20.0, 90.0), (0.0, 85.0), (40.0, 70.0)]
    ]
    grouped = aggregate(hits, SprayScheme())
    assert grouped["pull"].count == 2
    assert grouped["pull"].mean_of("exit_velocity") == pytest.approx(95.0)
    assert grouped["center"].count == 1
    assert grouped["opposite"].max_of("exit_velocity") == pytest.approx(70.0)


def test_group_by_callable() -> None:
    samples = [_swing(bat_speed=61.0), _swing(bat_speed=79.0)]
    grouped = aggregate(samples, lambda s: "fast" if s.metrics["bat_speed"] >= 70 else "slow")
    assert grouped["fast"].count == 1
    assert grouped["slow"].count == 1


def test_percent_helpers() -> None:
    assert percent_meeting([], 10.0) is None
    assert percent_meeting([None, 5.0, 15.0], 10.0) == pytest.approx(50.0)
    samples = [_swing(bat_speed=60.0), _swing(bat_speed=70.0), _swing(power=1.0)]
    rate = percent_in(
        samples,
        lambda s: None if s.get("bat_speed") is None else s.metrics["bat_speed"] >= 65,
    )
    assert rate == pytest.approx(50.0)


def test_percentile_subset_keeps_top_share() -> None:
    samples = [_swing(bat_speed=float(value)) for value in (60, 65, 70, 75, 80)]
    top = percentile_subset(samples, "bat_speed", 25)
    assert sorted(sample.metrics["bat_speed"] for sample in top) == [65.0, 70.0, 75.0, 80.0]
    assert percentile_subset([_swing(power=1.0)], "bat_speed", 25) == []


def test_percent_change_handles_first_zero_and_missing() -> None:
    changes = percent_change([100.0, 110.0, 0.0, 50.0, None, 20.0])
    assert changes[0] is None
    assert changes[1] == pytest.approx(10.0)
    assert changes[2] == pytest.approx(-100.0)
    assert changes[3] is None
    assert changes[4] is None
    assert changes[5] is None


def test_aggregate_by_date_buckets_by_week() -> None:
    samples = [
        _swing(when=datetime(2024, 1, 1), bat_speed=60.0),
        _swing(when=datetime(2024, 1, 3), bat_speed=70.0),
        _swing(when=datetime(2024, 1, 9), bat_speed=75.0),
        _swing(when=datetime(2024, 1, 10), power=2.0),
        _swing(bat_speed=99.0),
    ]
    weekly = aggregate_by_date(samples, "W", metrics=["bat_speed"])
    assert list(weekly["bucket"]) == ["2024-W01", "2024-W02"]
    assert list(weekly["count"]) == [2, 2]
    assert weekly.iloc[0]["bat_speed_mean"] == pytest.approx(65.0)
    assert weekly.iloc[1]["bat_speed_max"] == pytest.approx(75.0)

    monthly = aggregate_by_date(samples, "M", metrics=["bat_speed"])
    assert list(monthly["bucket"]) == ["2024-01"]


def test_aggregate_by_date_rejects_unknown_frequency() -> None:
    with pytest.raises(ValueError):
        aggregate_by_date([], "Q", metrics=["bat_speed"])


def test_aggregate_by_date_empty_has_columns() -> None:
    frame = aggregate_by_date([], "D", metrics=["bat_speed"], group_by="session_id")
    assert list(frame.columns) == ["bucket", "group", "count", "bat_speed_mean", "bat_speed_max"]
    assert frame.empty


def test_aggregates_to_frame_flattens_groups() -> None:
    table = ThresholdTable("levels", {"youth": 60})
    grouped = aggregate(
        [_swing("a", bat_speed=70.0), _swing("b", bat_speed=55.0)],
        "session_id",
        thresholds={"bat_speed": table},
    )
    frame = aggregates_to_frame(grouped)
    assert list(frame["key"]) == ["a", "b"]
    assert list(frame["bat_speed_pct_youth"]) == [100.0, 0.0]
