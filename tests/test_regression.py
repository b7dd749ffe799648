from __future__ import annotations

import math

import pytest

from diamond_metrics.errors import DegenerateInput, FitError, InsufficientData
from diamond_metrics.regression import evaluate, fit, fit_line, index_trend, trend_segment


def test_fit_recovers_exact_line() -> None:
    points = [(x, 2 * x + 3) for x in range(-5, 6)]
    line = fit_line(points)
    assert line.slope == pytest.approx(2.0, abs=1e-9)
    assert line.intercept == pytest.approx(3.0, abs=1e-9)
    assert line.n == 11
    assert evaluate(line, 10.0) == pytest.approx(23.0)


def test_fit_accepts_xy_mappings_and_skips_non_finite_points() -> None:
    points = [{"x": 0, "y": 1}, {"x": 1, "y": 3}, {"x": float("nan"), "y": 100}, {"x": 2}, (3, None)]
    line = fit_line(points)
    assert line.n == 2
    assert line.slope == pytest.approx(2.0)
    assert line.intercept == pytest.approx(1.0)


def test_constant_x_is_degenerate_and_never_nan() -> None:
    result = fit([(5, 1), (5, 2), (5, 7)])
    assert isinstance(result, DegenerateInput)
    assert result.x_value == 5.0
    with pytest.raises(DegenerateInput):
        fit_line([(5, 1), (5, 2), (5, 7)])


@pytest.mark.parametrize("points", [[], [(1.0, 2.0)], [(1.0, float("inf")), (2.0, 3.0)]])
def test_fewer_than_two_points_is_insufficient(points) -> None:
    result = fit(points)
    assert isinstance(result, InsufficientData)
    assert isinstance(result, FitError)


def test_extrapolation_is_flagged_not_refused() -> None:
    line = fit_line([(0, 0), (10, 10)])
    assert not line.extrapolates(5.0)
    assert line.extrapolates(11.0)
    assert line.evaluate(20.0) == pytest.approx(20.0)


def test_evaluate_rejects_non_finite_x() -> None:
    line = fit_line([(0, 0), (1, 1)])
    with pytest.raises(ValueError):
        evaluate(line, float("nan"))


def test_trend_segment_spans_observed_range() -> None:
    line = fit_line([(2, 5), (4, 9), (6, 13)])
    segment = trend_segment(line)
    assert segment == [{"x": 2.0, "y": pytest.approx(5.0)}, {"x": 6.0, "y": pytest.approx(13.0)}]


def test_index_trend_returns_fitted_values_per_position() -> None:
    fitted = index_trend([10.0, None, 14.0, 16.0])
    assert len(fitted) == 4
    assert fitted[1] == pytest.approx(12.0)
    assert all(math.isfinite(value) for value in fitted)
    assert index_trend([10.0]) == []
