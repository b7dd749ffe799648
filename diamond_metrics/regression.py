from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import DegenerateInput, FitError, InsufficientData

logger = logging.getLogger(__name__)

__all__ = [
    "RegressionLine",
    "fit_line",
    "fit",
    "evaluate",
    "trend_segment",
    "index_trend",
]

Point = Union[Tuple[Any, Any], Mapping[str, Any]]


@dataclass(frozen=True)
class RegressionLine:
    """Least-squares line ``y = slope * x + intercept`` with the x-range it was fitted on."""

    slope: float
    intercept: float
    n: int
    x_min: float
    x_max: float

    def evaluate(self, x: float) -> float:
        if isinstance(x, bool) or not isinstance(x, (int, float)) or not math.isfinite(x):
            raise ValueError(f"x must be a finite number; received {x!r}.")
        return self.slope * float(x) + self.intercept

    def extrapolates(self, x: float) -> bool:
        """True when `x` lies outside the observed x-range."""
        return x < self.x_min or x > self.x_max

    def to_dict(self) -> Dict[str, float]:
        return {
            "slope": self.slope,
            "intercept": self.intercept,
            "n": self.n,
            "x_min": self.x_min,
            "x_max": self.x_max,
        }


def _point_coordinates(point: Point) -> Tuple[float, float]:
    try:
        if isinstance(point, Mapping):
            x, y = point.get("x"), point.get("y")
        else:
            x, y = point
        if isinstance(x, bool) or isinstance(y, bool):
            return math.nan, math.nan
        return float(x), float(y)
    except (TypeError, ValueError):
        return math.nan, math.nan


def _as_arrays(points: Iterable[Point]) -> Tuple[np.ndarray, np.ndarray]:
    pairs = [_point_coordinates(point) for point in points]
    if not pairs:
        return np.empty(0), np.empty(0)
    data = np.asarray(pairs, dtype=float)
    mask = np.isfinite(data).all(axis=1)
    return data[mask, 0], data[mask, 1]


def fit_line(points: Iterable[Point]) -> RegressionLine:
    """
    Fit an ordinary least-squares line to ``(x, y)`` pairs.

    Points may be 2-tuples or ``{"x": ..., "y": ...}`` mappings; pairs with a
    missing or non-finite coordinate are ignored. Raises InsufficientData when
    fewer than two usable points remain and DegenerateInput when every x is
    identical (zero denominator).
    """
    x, y = _as_arrays(points)
    n = int(x.size)
    if n < 2:
        raise InsufficientData(n)

    sum_x = float(x.sum())
    sum_y = float(y.sum())
    sum_xy = float((x * y).sum())
    sum_xx = float((x * x).sum())
    denominator = n * sum_xx - sum_x**2
    if denominator == 0 or float(np.ptp(x)) == 0.0:
        raise DegenerateInput(float(x[0]), n)

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    if not (math.isfinite(slope) and math.isfinite(intercept)):
        raise DegenerateInput(float(x[0]), n)

    return RegressionLine(
        slope=slope,
        intercept=intercept,
        n=n,
        x_min=float(x.min()),
        x_max=float(x.max()),
    )


def fit(points: Iterable[Point]) -> Union[RegressionLine, FitError]:
    """Like :func:`fit_line` but returns the FitError instead of raising it."""
    try:
        return fit_line(points)
    except FitError as exc:
        logger.debug("Trend line unavailable: %s", exc)
        return exc


def evaluate(line: RegressionLine, x: float) -> float:
    return line.evaluate(x)


def trend_segment(line: RegressionLine) -> List[Dict[str, float]]:
    """Endpoints of the fitted line across the observed x-range, as ``[{x, y}, {x, y}]``."""
    return [
        {"x": line.x_min, "y": line.evaluate(line.x_min)},
        {"x": line.x_max, "y": line.evaluate(line.x_max)},
    ]


def index_trend(values: Sequence[Optional[float]]) -> List[float]:
    """
    Fit a line over positions ``0..n-1`` and return the fitted value at each position.

    Used for progression tables. Missing values are skipped for the fit but
    still receive a fitted value. Returns an empty list when no line can be fitted.
    """
    points = [(index, value) for index, value in enumerate(values) if value is not None]
    result = fit(points)
    if isinstance(result, FitError):
        return []
    return [result.evaluate(index) for index in range(len(values))]
