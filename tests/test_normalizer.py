from __future__ import annotations

import dataclasses
import math
from datetime import datetime, timedelta, timezone

import pytest

from diamond_metrics.models import Sample
from diamond_metrics.normalizer import normalize, normalize_one


def test_normalize_maps_export_names_to_canonical_metrics() -> None:
    records = [
        {
            "sessionId": "s1",
            "date": "2024-05-01T17:30:00Z",
            "batSpeed": 68.2,
            "peakHandSpeed": "21.5",
            "attackAngle": 9,
            "swingDetails": "ignored",
        }
    ]
    samples = normalize(records, "swing")
    assert len(samples) == 1
    sample = samples[0]
    assert dict(sample.metrics) == {"bat_speed": 68.2, "peak_hand_speed": 21.5, "attack_angle": 9.0}
    assert sample.session_id == "s1"
    assert sample.timestamp == datetime(2024, 5, 1, 17, 30)


def test_normalize_accepts_canonical_names() -> None:
    samples = normalize([{"exit_velocity": 92.0, "launch_angle": 14.0}], "hit")
    assert dict(samples[0].metrics) == {"exit_velocity": 92.0, "launch_angle": 14.0}


@pytest.mark.parametrize(
    "bad_value",
    [None, float("nan"), float("inf"), float("-inf"), "fast", "", "nan", True, [1.0], {"v": 1}],
)
def test_normalize_never_includes_non_finite_values(bad_value) -> None:
    samples = normalize([{"batSpeed": bad_value, "power": 2.1}], "swing")
    assert len(samples) == 1
    assert "bat_speed" not in samples[0].metrics
    assert all(math.isfinite(value) for value in samples[0].metrics.values())


def test_records_without_usable_metrics_are_dropped() -> None:
    records = [
        {"batSpeed": None, "power": float("nan")},
        {"batSpeed": "n/a"},
        {"notes": "no metrics at all"},
        "not a record",
        42,
    ]
    assert normalize(records, "swing") == []


def test_numeric_strings_with_thousands_separators_are_accepted() -> None:
    samples = normalize([{"spinRate": "2,315", "pitchReleaseSpeed": " 88.4 "}], "pitch")
    assert samples[0].metrics["spin_rate"] == pytest.approx(2315.0)
    assert samples[0].metrics["release_speed"] == pytest.approx(88.4)


def test_zero_is_missing_only_applies_to_named_metrics() -> None:
    records = [{"velo": 0, "dist": 0, "LA": 0}]
    samples = normalize(records, "hit", zero_is_missing=("exit_velocity", "distance"))
    assert dict(samples[0].metrics) == {"launch_angle": 0.0}

    kept = normalize(records, "hit")
    assert kept[0].metrics["exit_velocity"] == 0.0


def test_unparseable_timestamp_becomes_none() -> None:
    samples = normalize([{"velo": 90, "date": "last tuesday"}], "hit")
    assert samples[0].timestamp is None


def test_timestamp_falls_back_through_known_fields() -> None:
    samples = normalize([{"velo": 90, "createdAt": "2024-03-02"}], "hit")
    assert samples[0].timestamp == datetime(2024, 3, 2)


def test_labels_are_copied_as_stripped_strings() -> None:
    samples = normalize(
        [{"velo": 90, "batting": " L ", "pType": "FB", "res": "", "sessionId": 17}],
        "hit",
    )
    labels = dict(samples[0].labels)
    assert labels == {"batting": "L", "pitch_type": "FB", "session_id": "17"}


def test_unknown_source_type_raises() -> None:
    with pytest.raises(ValueError):
        normalize([{"velo": 90}], "golf")


def test_normalize_one_returns_none_for_empty_record() -> None:
    assert normalize_one({"velo": None}, "hit") is None
    assert normalize_one(["velo", 90], "hit") is None
    sample = normalize_one({"jumpHeight": 41.2, "testType": "CMJ"}, "forcePlateTrial")
    assert sample is not None
    assert sample.metrics["jump_height"] == pytest.approx(41.2)
    assert sample.labels["test_type"] == "CMJ"


def test_samples_are_immutable() -> None:
    sample = Sample(timestamp=None, source_type="swing", metrics={"bat_speed": 70.0})
    with pytest.raises(dataclasses.FrozenInstanceError):
        sample.source_type = "hit"  # type: ignore[misc]
    with pytest.raises(TypeError):
        sample.metrics["bat_speed"] = 1.0  # type: ignore[index]


def test_offset_timestamps_are_converted_to_naive_utc() -> None:
    samples = normalize(
        [
            {"velo": 90, "date": "2024-03-02T10:00:00Z"},
            {"velo": 91, "date": "2024-03-02T12:00:00+02:00"},
            {"velo": 92, "date": "2024-03-03"},
        ],
        "hit",
    )
    assert [sample.timestamp for sample in samples] == [
        datetime(2024, 3, 2, 10, 0),
        datetime(2024, 3, 2, 10, 0),
        datetime(2024, 3, 3),
    ]
    assert max(sample.timestamp for sample in samples) == datetime(2024, 3, 3)


def test_sample_drops_timezone_from_aware_timestamp() -> None:
    aware = datetime(2024, 3, 2, 5, 0, tzinfo=timezone(timedelta(hours=-5)))
    sample = Sample(timestamp=aware, source_type="hit", metrics={"exit_velocity": 90.0})
    assert sample.timestamp == datetime(2024, 3, 2, 10, 0)
    assert sample.timestamp.tzinfo is None


def test_oversized_integer_reading_is_dropped() -> None:
    samples = normalize([{"velo": 10**400, "LA": 12}], "hit")
    assert dict(samples[0].metrics) == {"launch_angle": 12.0}
