from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence, Tuple, Union

from .models import Sample

if TYPE_CHECKING:  # pragma: no cover
    from .comparator import ThresholdTable
    from .config import SprayCutoffs, StrikeZoneBounds

__all__ = [
    "PULL",
    "CENTER",
    "OPPOSITE",
    "INSIDE",
    "OUTSIDE",
    "SprayScheme",
    "GridScheme",
    "LevelScheme",
    "BoxScheme",
    "Scheme",
    "classify",
]

PULL = "pull"
CENTER = "center"
OPPOSITE = "opposite"
INSIDE = "inside"
OUTSIDE = "outside"


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return value if math.isfinite(value) else None


def _check_range(name: str, bounds: Tuple[float, float]) -> Tuple[float, float]:
    low, high = float(bounds[0]), float(bounds[1])
    if not (math.isfinite(low) and math.isfinite(high)) or low >= high:
        raise ValueError(f"{name} must be a finite (low, high) pair with low < high; received {bounds!r}.")
    return low, high


@dataclass(frozen=True)
class SprayScheme:
    """
    Pull/center/opposite partition of a batted-ball direction.

    The angle is read from `angle_metric` or, when absent, derived from spray
    chart coordinates as ``degrees(atan2(x, y))`` so straightaway center is 0.
    Negative angles are the pull side for a right-handed hitter; hitters whose
    handedness label starts with "L" are mirrored. Angles equal to a cutoff
    count as center.
    """

    pull_cutoff: float = -15.0
    opposite_cutoff: float = 15.0
    angle_metric: str = "horizontal_angle"
    x_metric: str = "spray_x"
    y_metric: str = "spray_y"
    handedness_label: Optional[str] = "batting"

    def __post_init__(self) -> None:
        if self.pull_cutoff > self.opposite_cutoff:
            raise ValueError("pull_cutoff must not exceed opposite_cutoff.")

    @classmethod
    def from_config(cls, cutoffs: "SprayCutoffs", **overrides) -> "SprayScheme":
        return cls(
            pull_cutoff=cutoffs.pull_cutoff,
            opposite_cutoff=cutoffs.opposite_cutoff,
            **overrides,
        )

    def angle(self, sample: Sample) -> Optional[float]:
        angle = _finite(sample.get(self.angle_metric))
        if angle is None:
            x = _finite(sample.get(self.x_metric))
            y = _finite(sample.get(self.y_metric))
            if x is None or y is None or (x == 0 and y == 0):
                return None
            angle = math.degrees(math.atan2(x, y))
        if self.handedness_label:
            side = sample.labels.get(self.handedness_label, "")
            if side[:1].upper() == "L":
                angle = -angle
        return angle

    def classify_angle(self, angle: float) -> str:
        if angle < self.pull_cutoff:
            return PULL
        if angle > self.opposite_cutoff:
            return OPPOSITE
        return CENTER

    def classify(self, sample: Sample) -> Optional[str]:
        angle = self.angle(sample)
        return None if angle is None else self.classify_angle(angle)


@dataclass(frozen=True)
class GridScheme:
    """
    rows x cols partition of a bounded plane.

    Cells are labelled "1".."rows*cols" left-to-right starting from the top row.
    Bounds are inclusive and a value on the upper bound lands in the last cell
    of that axis. Points outside the bounds are not clamped.
    """

    x_metric: str = "plate_x"
    y_metric: str = "plate_y"
    x_range: Tuple[float, float] = (-0.83, 0.83)
    y_range: Tuple[float, float] = (1.513, 3.67)
    rows: int = 3
    cols: int = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "x_range", _check_range("x_range", self.x_range))
        object.__setattr__(self, "y_range", _check_range("y_range", self.y_range))
        if self.rows < 1 or self.cols < 1:
            raise ValueError("rows and cols must be at least 1.")

    @classmethod
    def from_bounds(
        cls,
        bounds: "StrikeZoneBounds",
        *,
        x_metric: str = "plate_x",
        y_metric: str = "plate_y",
    ) -> "GridScheme":
        return cls(
            x_metric=x_metric,
            y_metric=y_metric,
            x_range=(bounds.x_min, bounds.x_max),
            y_range=(bounds.y_min, bounds.y_max),
            rows=bounds.rows,
            cols=bounds.cols,
        )

    @property
    def labels(self) -> list[str]:
        return [str(index) for index in range(1, self.rows * self.cols + 1)]

    @staticmethod
    def _bucket(value: float, bounds: Tuple[float, float], count: int) -> Optional[int]:
        low, high = bounds
        if value < low or value > high:
            return None
        index = int((value - low) / (high - low) * count)
        return min(index, count - 1)

    def classify_point(self, x: float, y: float) -> Optional[str]:
        col = self._bucket(x, self.x_range, self.cols)
        row_from_bottom = self._bucket(y, self.y_range, self.rows)
        if col is None or row_from_bottom is None:
            return None
        row = self.rows - 1 - row_from_bottom
        return str(row * self.cols + col + 1)

    def classify(self, sample: Sample) -> Optional[str]:
        x = _finite(sample.get(self.x_metric))
        y = _finite(sample.get(self.y_metric))
        if x is None or y is None:
            return None
        return self.classify_point(x, y)


@dataclass(frozen=True)
class LevelScheme:
    """Banding of one scalar against ordered ``(label, cutoff)`` pairs."""

    levels: Tuple[Tuple[str, float], ...]
    metric: str = "value"

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "levels",
            tuple((str(label), float(cutoff)) for label, cutoff in self.levels),
        )

    @classmethod
    def from_table(cls, table: "ThresholdTable", metric: str = "value") -> "LevelScheme":
        return cls(levels=tuple(table.cutoffs.items()), metric=metric)

    @classmethod
    def from_levels(cls, levels: Sequence[Tuple[str, float]], metric: str) -> "LevelScheme":
        return cls(levels=tuple(levels), metric=metric)

    def classify_value(self, value: Optional[float]) -> Optional[str]:
        """Highest cutoff met wins; equal cutoffs resolve to the later entry."""
        value = _finite(value)
        if value is None:
            return None
        best_label: Optional[str] = None
        best_cutoff = -math.inf
        for label, cutoff in self.levels:
            if value >= cutoff and cutoff >= best_cutoff:
                best_label, best_cutoff = label, cutoff
        return best_label

    def classify(self, sample: Sample) -> Optional[str]:
        return self.classify_value(sample.get(self.metric))


@dataclass(frozen=True)
class BoxScheme:
    """Inside/outside test for a rectangular target window on two metrics."""

    x_metric: str
    x_range: Tuple[float, float]
    y_metric: str
    y_range: Tuple[float, float]

    def __post_init__(self) -> None:
        for name in ("x_range", "y_range"):
            low, high = getattr(self, name)
            if low > high:
                raise ValueError(f"{name} must be ordered (low, high).")

    def classify(self, sample: Sample) -> Optional[str]:
        x = _finite(sample.get(self.x_metric))
        y = _finite(sample.get(self.y_metric))
        if x is None or y is None:
            return None
        x_low, x_high = self.x_range
        y_low, y_high = self.y_range
        inside = x_low <= x <= x_high and y_low <= y <= y_high
        return INSIDE if inside else OUTSIDE


Scheme = Union[SprayScheme, GridScheme, LevelScheme, BoxScheme]


def classify(sample: Sample, scheme: Scheme) -> Optional[str]:
    """Return the zone label for `sample` under `scheme`, or None when it cannot be placed."""
    return scheme.classify(sample)
