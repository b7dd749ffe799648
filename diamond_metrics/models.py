from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

SWING = "swing"
HIT = "hit"
PITCH = "pitch"
FORCE_PLATE_TRIAL = "forcePlateTrial"
SOURCE_TYPES = (SWING, HIT, PITCH, FORCE_PLATE_TRIAL)

__all__ = [
    "SOURCE_TYPES",
    "SWING",
    "HIT",
    "PITCH",
    "FORCE_PLATE_TRIAL",
    "Sample",
    "coerce_metric",
    "parse_timestamp",
    "require_source_type",
]


def require_source_type(source_type: str) -> str:
    """Reject source types the engine has no field map for."""
    if source_type not in SOURCE_TYPES:
        choices = ", ".join(SOURCE_TYPES)
        raise ValueError(f"Unknown source type {source_type!r}; expected one of: {choices}.")
    return source_type


def coerce_metric(value: Any) -> float | None:
    """
    Convert a loosely-typed reading into a finite float.

    Returns None rather than raising: sensor exports routinely contain blanks,
    nulls and placeholder text, and those readings are simply absent. Numeric
    strings are accepted, including thousands separators from spreadsheet exports.
    Booleans are not numbers here even though Python treats them as ints.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        stripped = value.strip().replace(",", "")
        if not stripped:
            return None
        try:
            number = float(stripped)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    return number


def _as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse `datetime`, `date` or ISO-8601 text (a trailing `Z` is allowed); None otherwise.

    Offset-aware values are converted to UTC and returned naive so timestamps
    from mixed exports stay comparable. Naive values are taken as UTC already.
    """
    if isinstance(value, datetime):
        return _as_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not isinstance(value, str):
        return None

    candidate = value.strip()
    if not candidate:
        return None
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return _as_naive_utc(parsed)


@dataclass(frozen=True)
class Sample:
    """One measured event (swing, batted ball, pitch or force-plate trial)."""

    timestamp: Optional[datetime]
    source_type: str
    metrics: Mapping[str, float]
    labels: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        require_source_type(self.source_type)
        if self.timestamp is not None:
            object.__setattr__(self, "timestamp", _as_naive_utc(self.timestamp))
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    @property
    def session_id(self) -> Optional[str]:
        return self.labels.get("session_id")

    @property
    def day(self) -> Optional[date]:
        return self.timestamp.date() if self.timestamp else None

    def get(self, metric: str) -> float | None:
        return self.metrics.get(metric)

    def to_dict(self) -> dict[str, Any]:
        """Make the sample JSON serialisable."""
        payload: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "source_type": self.source_type,
            "metrics": dict(self.metrics),
        }
        if self.labels:
            payload["labels"] = dict(self.labels)
        return payload
