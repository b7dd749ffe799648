from __future__ import annotations

import pytest

from diamond_metrics.comparator import ThresholdTable, compare, compare_many
from diamond_metrics.errors import DivisionByZeroBenchmark


def test_percent_difference_against_benchmark() -> None:
    result = compare(110, ThresholdTable("norms", {"bench": 100}))
    assert result.percent_diff["bench"] == pytest.approx(10.0)
    assert result.band == "bench"
    assert result.ok


def test_zero_benchmark_is_reported_not_raised() -> None:
    table = ThresholdTable("norms", {"bench": 0, "other": 80})
    result = compare(90, table)
    assert result.percent_diff["bench"] is None
    assert isinstance(result.errors["bench"], DivisionByZeroBenchmark)
    assert result.percent_diff["other"] == pytest.approx(12.5)
    assert not result.ok


def test_band_below_every_cutoff_is_none() -> None:
    table = ThresholdTable.from_mapping("bat_speed", {"youth": 60, "high school": 67})
    result = compare(55.0, table)
    assert result.band is None
    assert result.percent_diff["youth"] == pytest.approx(-100.0 * 5 / 60)


def test_compare_does_not_mutate_table() -> None:
    table = ThresholdTable("norms", {"a": 10, "b": 20})
    before = table.to_dict()
    compare(15, table)
    assert table.to_dict() == before
    with pytest.raises(TypeError):
        table.cutoffs["a"] = 0  # type: ignore[index]


def test_compare_many_returns_one_result_per_table() -> None:
    tables = [
        ThresholdTable("80-85 mph", {"jump_height": 40.0}),
        ThresholdTable("85-90 mph", {"jump_height": 44.0}),
    ]
    results = compare_many(42.0, tables)
    assert set(results) == {"80-85 mph", "85-90 mph"}
    assert results["80-85 mph"].percent_diff["jump_height"] == pytest.approx(5.0)
    assert results["85-90 mph"].band is None


@pytest.mark.parametrize("value", [float("nan"), float("inf"), None, "90", 10**400])
def test_compare_rejects_non_finite_values(value) -> None:
    with pytest.raises(ValueError):
        compare(value, ThresholdTable("norms", {"bench": 100}))


@pytest.mark.parametrize("cutoff", [float("nan"), "fast", None, True, 10**400])
def test_from_mapping_rejects_bad_cutoffs(cutoff) -> None:
    with pytest.raises(ValueError):
        ThresholdTable.from_mapping("norms", {"bench": cutoff})


def test_result_to_dict_is_plain_data() -> None:
    payload = compare(90, ThresholdTable("norms", {"bench": 0})).to_dict()
    assert payload["table"] == "norms"
    assert payload["percent_diff"] == {"bench": None}
    assert "zero" in payload["errors"]["bench"]
