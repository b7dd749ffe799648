from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .comparator import ThresholdTable
from .models import Sample

__all__ = [
    "ALL",
    "SessionAggregate",
    "aggregate",
    "aggregate_by_date",
    "aggregates_to_frame",
    "bucket_label",
    "percent_in",
    "percent_meeting",
    "percentile_subset",
    "percent_change",
]

ALL = "all"
FREQUENCIES = ("D", "W", "M")

GroupBy = Union[None, str, Callable[[Sample], Optional[Hashable]], Any]


@dataclass(frozen=True)
class SessionAggregate:
    """Read-only summary statistics for one group of samples."""

    key: Optional[Hashable]
    count: int
    mean: Mapping[str, Optional[float]] = field(default_factory=dict)
    maximum: Mapping[str, Optional[float]] = field(default_factory=dict)
    percent_meeting: Mapping[str, Mapping[str, Optional[float]]] = field(default_factory=dict)

    def mean_of(self, metric: str) -> Optional[float]:
        return self.mean.get(metric)

    def max_of(self, metric: str) -> Optional[float]:
        return self.maximum.get(metric)

    def percent_of(self, metric: str, band: str) -> Optional[float]:
        return self.percent_meeting.get(metric, {}).get(band)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "count": self.count,
            "mean": dict(self.mean),
            "max": dict(self.maximum),
            "percent_meeting": {metric: dict(bands) for metric, bands in self.percent_meeting.items()},
        }


def _key_function(group_by: GroupBy) -> Callable[[Sample], Optional[Hashable]]:
    if group_by is None:
        return lambda sample: ALL
    if isinstance(group_by, str):
        label = group_by
        return lambda sample: sample.labels.get(label)
    classify = getattr(group_by, "classify", None)
    if callable(classify):
        return classify
    if callable(group_by):
        return group_by
    raise TypeError(f"Unsupported group_by value: {group_by!r}")


def _present(samples: Sequence[Sample], metric: str) -> List[float]:
    return [value for value in (sample.get(metric) for sample in samples) if value is not None]


def percent_meeting(values: Iterable[Optional[float]], cutoff: float) -> Optional[float]:
    """Percentage (0-100) of present values at or above `cutoff`; None when nothing is present."""
    present = [value for value in values if value is not None and math.isfinite(value)]
    if not present:
        return None
    meeting = sum(1 for value in present if value >= cutoff)
    return 100.0 * meeting / len(present)


def percent_in(samples: Iterable[Sample], predicate: Callable[[Sample], Optional[bool]]) -> Optional[float]:
    """
    Percentage of samples for which `predicate` is truthy.

    A predicate result of None means the sample cannot be judged (missing
    metric) and leaves it out of the denominator.
    """
    verdicts = [predicate(sample) for sample in samples]
    judged = [verdict for verdict in verdicts if verdict is not None]
    if not judged:
        return None
    return 100.0 * sum(1 for verdict in judged if verdict) / len(judged)


def _summarise(
    key: Optional[Hashable],
    samples: Sequence[Sample],
    metrics: Sequence[str],
    thresholds: Mapping[str, ThresholdTable],
) -> SessionAggregate:
    tracked: Dict[str, None] = {}
    for sample in samples:
        for metric in sample.metrics:
            tracked.setdefault(metric, None)
    for metric in metrics:
        tracked.setdefault(metric, None)

    means: Dict[str, Optional[float]] = {}
    maxima: Dict[str, Optional[float]] = {}
    for metric in tracked:
        present = _present(samples, metric)
        means[metric] = sum(present) / len(present) if present else None
        maxima[metric] = max(present) if present else None

    percents: Dict[str, Mapping[str, Optional[float]]] = {}
    for metric, table in thresholds.items():
        present = _present(samples, metric)
        percents[metric] = MappingProxyType(
            {band: percent_meeting(present, cutoff) for band, cutoff in table.cutoffs.items()}
        )

    return SessionAggregate(
        key=key,
        count=len(samples),
        mean=MappingProxyType(means),
        maximum=MappingProxyType(maxima),
        percent_meeting=MappingProxyType(percents),
    )


def aggregate(
    samples: Iterable[Sample],
    group_by: GroupBy = None,
    *,
    metrics: Sequence[str] | None = None,
    thresholds: Mapping[str, ThresholdTable] | None = None,
    include_unclassified: bool = False,
) -> Dict[Optional[Hashable], SessionAggregate]:
    """
    Summarise samples per group.

    `group_by` may be None (one ``"all"`` group), a label name such as
    ``"session_id"``, a zone scheme, or any callable returning a key. Samples
    whose key is None are left out unless `include_unclassified` is set, in
    which case they are collected under the None key.

    Means and maxima only consider samples carrying the metric; a tracked
    metric that no sample carries reports None, never zero.
    """
    key_of = _key_function(group_by)
    metrics = list(metrics or [])
    thresholds = dict(thresholds or {})

    groups: Dict[Optional[Hashable], List[Sample]] = {}
    if group_by is None:
        groups[ALL] = []
    for sample in samples:
        key = key_of(sample)
        if key is None and not include_unclassified:
            continue
        groups.setdefault(key, []).append(sample)

    return {key: _summarise(key, members, metrics, thresholds) for key, members in groups.items()}


def percentile_subset(samples: Iterable[Sample], metric: str, percentile: float) -> List[Sample]:
    """
    Samples whose `metric` is at or above the given percentile of that metric.

    ``percentile=25`` keeps the top 75 % (the "top 75 % exit velocity" subset).
    Samples without the metric are excluded.
    """
    if not 0 <= percentile <= 100:
        raise ValueError(f"percentile must be between 0 and 100; received {percentile!r}.")
    carrying = [sample for sample in samples if sample.get(metric) is not None]
    if not carrying:
        return []
    cutoff = float(np.percentile([sample.metrics[metric] for sample in carrying], percentile))
    return [sample for sample in carrying if sample.metrics[metric] >= cutoff]


def percent_change(values: Sequence[Optional[float]]) -> List[Optional[float]]:
    """Successive percentage changes; None for the first entry and after a zero or missing predecessor."""
    changes: List[Optional[float]] = []
    previous: Optional[float] = None
    for index, value in enumerate(values):
        if index == 0 or value is None or not previous:
            changes.append(None)
        else:
            changes.append((value - previous) / previous * 100.0)
        previous = value
    return changes


def bucket_label(moment, freq: str) -> str:
    """Date bucket label: ``YYYY-MM-DD`` for D, ISO ``YYYY-Www`` for W, ``YYYY-MM`` for M."""
    if freq == "D":
        return moment.date().isoformat() if hasattr(moment, "date") else moment.isoformat()
    if freq == "W":
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    if freq == "M":
        return f"{moment.year}-{moment.month:02d}"
    raise ValueError(f"freq must be one of {', '.join(FREQUENCIES)}; received {freq!r}.")


def aggregate_by_date(
    samples: Iterable[Sample],
    freq: str = "D",
    *,
    metrics: Sequence[str],
    group_by: GroupBy = None,
) -> pd.DataFrame:
    """
    Per date-bucket count, mean and max for each metric as a DataFrame.

    Samples without a timestamp are skipped. When `group_by` is given a
    ``group`` column is added and rows are produced per (bucket, group).
    """
    if freq not in FREQUENCIES:
        raise ValueError(f"freq must be one of {', '.join(FREQUENCIES)}; received {freq!r}.")
    key_of = _key_function(group_by) if group_by is not None else None
    keys = ["bucket"] + (["group"] if key_of else [])
    columns = keys + ["count"]
    for metric in metrics:
        columns.extend([f"{metric}_mean", f"{metric}_max"])

    records: list[dict[str, object]] = []
    for sample in samples:
        if sample.timestamp is None:
            continue
        row: dict[str, object] = {"bucket": bucket_label(sample.timestamp, freq)}
        if key_of:
            group = key_of(sample)
            if group is None:
                continue
            row["group"] = group
        for metric in metrics:
            value = sample.get(metric)
            row[metric] = np.nan if value is None else value
        records.append(row)

    if not records:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(records)
    for metric in metrics:
        df[metric] = pd.to_numeric(df[metric])
    grouped = df.groupby(keys, sort=True)
    summary = grouped.size().rename("count").to_frame()
    for metric in metrics:
        summary[f"{metric}_mean"] = grouped[metric].mean()
        summary[f"{metric}_max"] = grouped[metric].max()
    summary = summary.reset_index()
    return summary[columns]


def aggregates_to_frame(aggregates: Mapping[Optional[Hashable], SessionAggregate]) -> pd.DataFrame:
    """Flatten aggregates into one row per group for tabular export."""
    rows: list[dict[str, object]] = []
    for key, summary in aggregates.items():
        row: dict[str, object] = {"key": key, "count": summary.count}
        for metric, value in summary.mean.items():
            row[f"{metric}_mean"] = value
            row[f"{metric}_max"] = summary.maximum.get(metric)
        for metric, bands in summary.percent_meeting.items():
            for band, percent in bands.items():
                row[f"{metric}_pct_{band}"] = percent
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=["key", "count"])
    return pd.DataFrame(rows)
