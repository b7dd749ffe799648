from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from .errors import DivisionByZeroBenchmark
from .zones import LevelScheme

logger = logging.getLogger(__name__)

__all__ = ["ThresholdTable", "ComparisonResult", "compare", "compare_many", "percent_difference"]


def _coerce_cutoff(name: str, label: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Cutoff {label!r} in table {name!r} must be a number; received {value!r}.")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValueError(
            f"Cutoff {label!r} in table {name!r} must be a number; received {value!r}."
        ) from exc
    if not math.isfinite(number):
        raise ValueError(f"Cutoff {label!r} in table {name!r} must be finite; received {value!r}.")
    return number


@dataclass(frozen=True)
class ThresholdTable:
    """Named benchmark cutoffs (band name -> value), read-only once built."""

    name: str
    cutoffs: Mapping[str, float]

    def __post_init__(self) -> None:
        cleaned = {
            str(label): _coerce_cutoff(self.name, str(label), value)
            for label, value in dict(self.cutoffs).items()
        }
        object.__setattr__(self, "cutoffs", MappingProxyType(cleaned))

    @classmethod
    def from_mapping(cls, name: str, mapping: Mapping[str, Any]) -> "ThresholdTable":
        if not isinstance(mapping, Mapping):
            raise ValueError(f"Threshold table {name!r} must be a mapping; received {mapping!r}.")
        return cls(name=name, cutoffs=dict(mapping))

    @classmethod
    def from_levels(cls, name: str, levels: Sequence[Tuple[str, float]]) -> "ThresholdTable":
        return cls(name=name, cutoffs=dict(levels))

    def to_dict(self) -> Dict[str, float]:
        return dict(self.cutoffs)


@dataclass(frozen=True)
class ComparisonResult:
    """Band and per-benchmark percentage differences for one value against one table."""

    table: ThresholdTable
    value: float
    band: Optional[str]
    percent_diff: Mapping[str, Optional[float]]
    errors: Mapping[str, DivisionByZeroBenchmark] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table.name,
            "value": self.value,
            "band": self.band,
            "percent_diff": dict(self.percent_diff),
            "errors": {name: str(error) for name, error in self.errors.items()},
        }


def percent_difference(value: float, benchmark: float) -> float:
    """``(value - benchmark) / benchmark * 100``; a zero benchmark raises ZeroDivisionError."""
    return (value - benchmark) / benchmark * 100.0


def compare(value: float, table: ThresholdTable) -> ComparisonResult:
    """
    Compare `value` with every benchmark in `table`.

    A zero benchmark yields ``None`` for that entry and records a
    :class:`DivisionByZeroBenchmark` in ``errors``; the other entries are still
    computed. The band uses the same highest-cutoff-met rule as LevelScheme.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Comparison value must be a finite number; received {value!r}.")
    try:
        value = float(value)
    except OverflowError as exc:
        raise ValueError(f"Comparison value must be a finite number; received {value!r}.") from exc
    if not math.isfinite(value):
        raise ValueError(f"Comparison value must be a finite number; received {value!r}.")

    diffs: Dict[str, Optional[float]] = {}
    errors: Dict[str, DivisionByZeroBenchmark] = {}
    for name, benchmark in table.cutoffs.items():
        if benchmark == 0:
            diffs[name] = None
            errors[name] = DivisionByZeroBenchmark(name)
            logger.warning("Benchmark %r in table %r is zero; skipping percent difference.", name, table.name)
            continue
        diffs[name] = percent_difference(value, benchmark)

    band = LevelScheme.from_table(table).classify_value(value)
    return ComparisonResult(
        table=table,
        value=value,
        band=band,
        percent_diff=MappingProxyType(diffs),
        errors=MappingProxyType(errors),
    )


def compare_many(
    value: float,
    tables: Union[Mapping[str, ThresholdTable], Iterable[ThresholdTable]],
) -> Dict[str, ComparisonResult]:
    """Compare one value against several tables, keyed by table name."""
    if isinstance(tables, Mapping):
        items = list(tables.values())
    else:
        items = list(tables)
    return {table.name: compare(value, table) for table in items}
