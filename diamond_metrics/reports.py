"""Report builders that compose the metric engine into per-technology views.

Each builder takes the raw records the storage layer returns, normalises them,
and produces a frozen report object whose ``to_dict()`` output is plain JSON
(numbers, strings, lists and ``None``). Missing data never raises here: a trend
that cannot be fitted is reported as ``None`` with a reason, and a statistic
with no contributing samples is ``None``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .aggregator import (
    ALL,
    aggregate,
    aggregate_by_date,
    percent_change,
    percent_in,
    percent_meeting,
    percentile_subset,
)
from .comparator import ComparisonResult, ThresholdTable, compare, compare_many
from .config import AppConfig, get_config
from .errors import FitError
from .models import FORCE_PLATE_TRIAL, HIT, PITCH, SWING, Sample, coerce_metric
from .normalizer import normalize
from .regression import RegressionLine, fit, index_trend, trend_segment
from .zones import INSIDE, BoxScheme, GridScheme, LevelScheme, SprayScheme

logger = logging.getLogger(__name__)

__all__ = [
    "REPORT_KINDS",
    "TrendResult",
    "BlastReport",
    "HitTraxReport",
    "TrackmanReport",
    "CommandReport",
    "ForcePlateProgression",
    "SquaredUpReport",
    "ArmCareReport",
    "build_blast_report",
    "build_hittrax_report",
    "build_trackman_report",
    "build_command_report",
    "build_force_plate_progression",
    "build_squared_up_report",
    "classify_arm_care",
    "build_report",
]

BLAST_METRICS = (
    "bat_speed",
    "peak_hand_speed",
    "rotational_acceleration",
    "power",
    "early_connection",
    "connection_at_impact",
)
BLAST_MAX_METRICS = ("bat_speed", "peak_hand_speed", "rotational_acceleration", "power")
HITTRAX_METRICS = ("exit_velocity", "distance", "launch_angle")
TRACKMAN_METRICS = (
    "release_speed",
    "spin_rate",
    "horizontal_break",
    "induced_vertical_break",
    "vertical_approach_angle",
)
UNKNOWN_PITCH = "Unknown"

ARM_CARE_FIELDS = {
    "ir": ("irtarmStrength", "ir_strength", "ir"),
    "er": ("ertarmStrength", "er_strength", "er"),
    "scaption": ("starmStrength", "scaption_strength", "scaption"),
    "total": ("totalStrength", "total_strength", "total"),
}


def _clean(value: Any) -> Any:
    """Convert numpy/pandas scalars to builtins and NaN to None."""
    if value is None:
        return None
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if hasattr(value, "item"):
        return _clean(value.item())
    return value


def _frame_records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    return [{key: _clean(value) for key, value in row.items()} for row in frame.to_dict("records")]


def _session_date(samples: Sequence[Sample]) -> Optional[str]:
    days = [sample.day for sample in samples if sample.day is not None]
    return min(days).isoformat() if days else None


def _by_session(samples: Sequence[Sample]) -> Dict[str, List[Sample]]:
    sessions: Dict[str, List[Sample]] = {}
    for sample in samples:
        if sample.session_id is not None:
            sessions.setdefault(sample.session_id, []).append(sample)
    return sessions


def _sorted_by_time(samples: Iterable[Sample]) -> List[Sample]:
    return sorted(
        (sample for sample in samples if sample.timestamp is not None),
        key=lambda sample: sample.timestamp,
    )


def _pitch_type(sample: Sample) -> str:
    return sample.labels.get("pitch_type") or UNKNOWN_PITCH


@dataclass(frozen=True)
class TrendResult:
    """A fitted trend line or the reason it was suppressed."""

    name: str
    line: Optional[RegressionLine]
    reason: Optional[str] = None
    points: Tuple[Tuple[float, float], ...] = ()

    @property
    def available(self) -> bool:
        return self.line is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "line": self.line.to_dict() if self.line else None,
            "segment": trend_segment(self.line) if self.line else None,
            "reason": self.reason,
            "points": [{"x": x, "y": y} for x, y in self.points],
        }


def _trend(name: str, samples: Sequence[Sample], x_metric: str, y_metric: str) -> TrendResult:
    points = tuple(
        (sample.metrics[x_metric], sample.metrics[y_metric])
        for sample in samples
        if x_metric in sample.metrics and y_metric in sample.metrics
    )
    result = fit(points)
    if isinstance(result, FitError):
        logger.warning("Suppressing %s trend line: %s", name, result)
        return TrendResult(name=name, line=None, reason=str(result), points=points)
    return TrendResult(name=name, line=result, points=points)


def _level_table(name: str, levels: Sequence[Tuple[str, float]]) -> ThresholdTable:
    return ThresholdTable.from_levels(name, levels)


@dataclass(frozen=True)
class BlastReport:
    swing_count: int
    session_averages: List[Dict[str, Any]]
    maxima: Dict[str, Optional[float]]
    fast_swing_rates: Dict[str, Optional[float]]
    level: Optional[ComparisonResult]
    connection_trend: TrendResult
    attack_efficiency_trend: TrendResult
    in_target_window: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swing_count": self.swing_count,
            "session_averages": self.session_averages,
            "maxima": self.maxima,
            "fast_swing_rates": self.fast_swing_rates,
            "level": self.level.to_dict() if self.level else None,
            "connection_trend": self.connection_trend.to_dict(),
            "attack_efficiency_trend": self.attack_efficiency_trend.to_dict(),
            "in_target_window": self.in_target_window,
        }


def build_blast_report(records: Iterable[Any], *, config: AppConfig | None = None) -> BlastReport:
    """Per-session swing averages, bat-speed level rates and the two Blast scatter trends."""
    cfg = config or get_config()
    samples = normalize(records, SWING)
    levels = _level_table("bat_speed_levels", cfg.bat_speed_levels)

    overall = aggregate(samples, metrics=BLAST_METRICS, thresholds={"bat_speed": levels})[ALL]
    per_session = aggregate(samples, "session_id", metrics=BLAST_METRICS)
    sessions = _by_session(samples)
    session_rows = [
        {
            "session_id": key,
            "date": _session_date(sessions.get(key, [])),
            "count": summary.count,
            **{f"avg_{metric}": summary.mean_of(metric) for metric in BLAST_METRICS},
        }
        for key, summary in per_session.items()
    ]
    session_rows.sort(key=lambda row: (row["date"] or "", row["session_id"]))

    max_bat_speed = overall.max_of("bat_speed")
    level = compare(max_bat_speed, levels) if max_bat_speed is not None else None

    window = BoxScheme(
        x_metric="attack_angle",
        x_range=cfg.attack_window,
        y_metric="on_plane_efficiency",
        y_range=cfg.efficiency_window,
    )
    in_window = percent_in(samples, lambda sample: _in_box(window, sample))

    return BlastReport(
        swing_count=overall.count,
        session_averages=session_rows,
        maxima={metric: overall.max_of(metric) for metric in BLAST_MAX_METRICS},
        fast_swing_rates=dict(overall.percent_meeting.get("bat_speed", {})),
        level=level,
        connection_trend=_trend("connection", samples, "early_connection", "connection_at_impact"),
        attack_efficiency_trend=_trend(
            "attack_efficiency", samples, "attack_angle", "on_plane_efficiency"
        ),
        in_target_window=in_window,
    )


def _in_box(scheme: BoxScheme, sample: Sample) -> Optional[bool]:
    zone = scheme.classify(sample)
    return None if zone is None else zone == INSIDE


@dataclass(frozen=True)
class HitTraxReport:
    hit_count: int
    session_averages: List[Dict[str, Any]]
    max_exit_velocity: Optional[float]
    max_distance: Optional[float]
    hard_hit_rate: Optional[float]
    spray_distribution: Dict[str, Dict[str, Any]]
    zone_positive_rates: Dict[str, Optional[float]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hit_count": self.hit_count,
            "session_averages": self.session_averages,
            "max_exit_velocity": self.max_exit_velocity,
            "max_distance": self.max_distance,
            "hard_hit_rate": self.hard_hit_rate,
            "spray_distribution": self.spray_distribution,
            "zone_positive_rates": self.zone_positive_rates,
        }


def _strike_zone_key(grid: GridScheme):
    valid = set(grid.labels)

    def key(sample: Sample) -> Optional[str]:
        label = sample.labels.get("strike_zone")
        if label in valid:
            return label
        return grid.classify(sample)

    return key


def build_hittrax_report(records: Iterable[Any], *, config: AppConfig | None = None) -> HitTraxReport:
    """
    Exit-velocity session report.

    Zero exit velocity or distance readings are treated as missing. The
    per-zone "positive result" rate is the share of batted balls in that
    strike-zone cell that are both in the top exit-velocity subset and inside
    the launch-angle window.
    """
    cfg = config or get_config()
    samples = normalize(records, HIT, zero_is_missing=("exit_velocity", "distance"))
    hard_hit = ThresholdTable("hard_hit", {"hard_hit": cfg.hard_hit_mph})

    overall = aggregate(samples, metrics=HITTRAX_METRICS, thresholds={"exit_velocity": hard_hit})[ALL]
    per_session = aggregate(
        samples,
        "session_id",
        metrics=HITTRAX_METRICS,
        thresholds={"exit_velocity": hard_hit},
    )
    sessions = _by_session(samples)
    session_rows = [
        {
            "session_id": key,
            "date": _session_date(sessions.get(key, [])),
            "count": summary.count,
            "avg_exit_velocity": summary.mean_of("exit_velocity"),
            "max_exit_velocity": summary.max_of("exit_velocity"),
            "max_distance": summary.max_of("distance"),
            "avg_launch_angle": summary.mean_of("launch_angle"),
            "hard_hit_rate": summary.percent_of("exit_velocity", "hard_hit"),
        }
        for key, summary in per_session.items()
    ]
    session_rows.sort(key=lambda row: (row["date"] or "", row["session_id"]))

    spray = SprayScheme.from_config(cfg.spray)
    spray_groups = aggregate(samples, spray, metrics=("exit_velocity",))
    placed = sum(group.count for group in spray_groups.values())
    spray_distribution = {
        zone: {
            "count": spray_groups[zone].count if zone in spray_groups else 0,
            "percent": (100.0 * spray_groups[zone].count / placed) if placed and zone in spray_groups else None,
            "avg_exit_velocity": spray_groups[zone].mean_of("exit_velocity") if zone in spray_groups else None,
        }
        for zone in ("pull", "center", "opposite")
    }

    grid = GridScheme.from_bounds(cfg.strike_zone)
    zone_key = _strike_zone_key(grid)
    top = {id(sample) for sample in percentile_subset(samples, "exit_velocity", cfg.positive_result_percentile)}
    low, high = cfg.launch_window

    def positive(sample: Sample) -> Optional[bool]:
        if sample.get("exit_velocity") is None:
            return None
        angle = sample.get("launch_angle")
        return id(sample) in top and angle is not None and low <= angle <= high

    zone_members: Dict[str, List[Sample]] = {label: [] for label in grid.labels}
    for sample in samples:
        cell = zone_key(sample)
        if cell is not None:
            zone_members[cell].append(sample)
    zone_rates = {cell: percent_in(members, positive) for cell, members in zone_members.items()}

    return HitTraxReport(
        hit_count=overall.count,
        session_averages=session_rows,
        max_exit_velocity=overall.max_of("exit_velocity"),
        max_distance=overall.max_of("distance"),
        hard_hit_rate=overall.percent_of("exit_velocity", "hard_hit"),
        spray_distribution=spray_distribution,
        zone_positive_rates=zone_rates,
    )


@dataclass(frozen=True)
class TrackmanReport:
    pitch_count: int
    peak_speeds: Dict[str, Optional[float]]
    average_speeds: List[Dict[str, Any]]
    pitch_types: Dict[str, Dict[str, Any]]
    sessions: List[Dict[str, Any]]
    benchmarks: Dict[str, Dict[str, ComparisonResult]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pitch_count": self.pitch_count,
            "peak_speeds": self.peak_speeds,
            "average_speeds": self.average_speeds,
            "pitch_types": self.pitch_types,
            "sessions": self.sessions,
            "benchmarks": {
                pitch_type: {name: result.to_dict() for name, result in results.items()}
                for pitch_type, results in self.benchmarks.items()
            },
        }


def build_trackman_report(
    records: Iterable[Any],
    *,
    benchmarks: Mapping[str, Sequence[ThresholdTable]] | None = None,
) -> TrackmanReport:
    """
    Pitch-tracking report: peak and daily average release speed per pitch type.

    `benchmarks` maps a pitch type to threshold tables its peak speed is
    compared against.
    """
    samples = normalize(records, PITCH)
    per_type = aggregate(samples, _pitch_type, metrics=TRACKMAN_METRICS)
    pitch_types = {
        key: {
            "count": summary.count,
            **{f"avg_{metric}": summary.mean_of(metric) for metric in TRACKMAN_METRICS},
            **{f"max_{metric}": summary.max_of(metric) for metric in TRACKMAN_METRICS},
        }
        for key, summary in per_type.items()
    }
    peak_speeds = {key: summary.max_of("release_speed") for key, summary in per_type.items()}

    daily = aggregate_by_date(samples, "D", metrics=("release_speed",), group_by=_pitch_type)
    average_speeds = [
        {"date": row["bucket"], "pitch_type": row["group"], "avg_speed": row["release_speed_mean"]}
        for row in _frame_records(daily)
        if row["release_speed_mean"] is not None
    ]

    sessions = [
        {"session_id": key, "date": _session_date(members)}
        for key, members in _by_session(samples).items()
    ]

    comparisons: Dict[str, Dict[str, ComparisonResult]] = {}
    for pitch_type, tables in (benchmarks or {}).items():
        peak = peak_speeds.get(pitch_type)
        if peak is not None:
            comparisons[pitch_type] = compare_many(peak, tables)

    return TrackmanReport(
        pitch_count=len(samples),
        peak_speeds=peak_speeds,
        average_speeds=average_speeds,
        pitch_types=pitch_types,
        sessions=sessions,
        benchmarks=comparisons,
    )


@dataclass(frozen=True)
class CommandReport:
    pitch_count: int
    pitch_types: Dict[str, Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {"pitch_count": self.pitch_count, "pitch_types": self.pitch_types}


def build_command_report(records: Iterable[Any], *, config: AppConfig | None = None) -> CommandReport:
    """Intended-vs-actual location summary per pitch type."""
    cfg = config or get_config()
    samples = normalize(records, PITCH)
    zone = GridScheme.from_bounds(cfg.strike_zone, x_metric="actual_x", y_metric="actual_y")

    grouped: Dict[str, List[Sample]] = {}
    for sample in samples:
        grouped.setdefault(_pitch_type(sample), []).append(sample)

    summaries = aggregate(samples, _pitch_type, metrics=("miss_distance", "miss_percent"))
    pitch_types: Dict[str, Dict[str, Any]] = {}
    for pitch_type, members in grouped.items():
        deltas = [
            (sample.metrics["actual_x"] - sample.metrics["intended_x"],
             sample.metrics["actual_y"] - sample.metrics["intended_y"])
            for sample in members
            if all(name in sample.metrics for name in ("actual_x", "actual_y", "intended_x", "intended_y"))
        ]
        avg_dx = sum(dx for dx, _ in deltas) / len(deltas) if deltas else None
        avg_dy = sum(dy for _, dy in deltas) / len(deltas) if deltas else None
        direction = math.degrees(math.atan2(avg_dy, avg_dx)) if deltas else None
        summary = summaries[pitch_type]
        pitch_types[pitch_type] = {
            "count": summary.count,
            "avg_miss_distance": summary.mean_of("miss_distance"),
            "avg_miss_percent": summary.mean_of("miss_percent"),
            "avg_delta_x": avg_dx,
            "avg_delta_y": avg_dy,
            "avg_direction": direction,
            "strike_rate": percent_in(members, lambda sample: _located(zone, sample)),
        }
    return CommandReport(pitch_count=len(samples), pitch_types=pitch_types)


def _located(zone: GridScheme, sample: Sample) -> Optional[bool]:
    if sample.get("actual_x") is None or sample.get("actual_y") is None:
        return None
    return zone.classify(sample) is not None


@dataclass(frozen=True)
class MetricProgression:
    metric: str
    series: List[Dict[str, Any]]
    percent_change: List[Optional[float]]
    trend: List[float]
    comparisons: Dict[str, ComparisonResult] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "series": self.series,
            "percent_change": self.percent_change,
            "trend": self.trend,
            "comparisons": {name: result.to_dict() for name, result in self.comparisons.items()},
        }


@dataclass(frozen=True)
class ForcePlateProgression:
    test_type: Optional[str]
    trial_count: int
    metrics: Dict[str, MetricProgression]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_type": self.test_type,
            "trial_count": self.trial_count,
            "metrics": {name: progression.to_dict() for name, progression in self.metrics.items()},
        }


def build_force_plate_progression(
    records: Iterable[Any],
    metrics: Sequence[str],
    *,
    test_type: str | None = None,
    benchmarks: Mapping[str, Sequence[ThresholdTable]] | None = None,
) -> ForcePlateProgression:
    """
    Test-over-test progression for force-plate metrics.

    Trials are ordered by timestamp (undated trials are skipped). For each
    metric the result holds the ``{date, value}`` series, successive percent
    changes, an index trend, and optional comparisons of the latest value
    against benchmark tables keyed by metric.
    """
    samples = _sorted_by_time(normalize(records, FORCE_PLATE_TRIAL))
    if test_type is not None:
        samples = [sample for sample in samples if sample.labels.get("test_type") == test_type]

    progressions: Dict[str, MetricProgression] = {}
    for metric in metrics:
        carrying = [sample for sample in samples if metric in sample.metrics]
        values = [sample.metrics[metric] for sample in carrying]
        series = [
            {"date": sample.timestamp.date().isoformat(), "value": sample.metrics[metric]}
            for sample in carrying
        ]
        trend = index_trend(values)
        if values and not trend:
            logger.warning("Suppressing %s progression trend: fewer than 2 trials.", metric)
        comparisons: Dict[str, ComparisonResult] = {}
        tables = (benchmarks or {}).get(metric)
        if tables and values:
            comparisons = compare_many(values[-1], tables)
        progressions[metric] = MetricProgression(
            metric=metric,
            series=series,
            percent_change=percent_change(values),
            trend=trend,
            comparisons=comparisons,
        )
    return ForcePlateProgression(test_type=test_type, trial_count=len(samples), metrics=progressions)


@dataclass(frozen=True)
class SquaredUpReport:
    swing_count: int
    average: Optional[float]
    at_or_above_cutoff: Optional[float]
    cutoff: float
    by_date: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swing_count": self.swing_count,
            "average": self.average,
            "at_or_above_cutoff": self.at_or_above_cutoff,
            "cutoff": self.cutoff,
            "by_date": self.by_date,
        }


def build_squared_up_report(records: Iterable[Any], *, config: AppConfig | None = None) -> SquaredUpReport:
    """Average squared-up rate overall and per day, plus the share of swings at or above the cutoff."""
    cfg = config or get_config()
    samples = [sample for sample in normalize(records, SWING) if "squared_up_rate" in sample.metrics]
    overall = aggregate(samples, metrics=("squared_up_rate",))[ALL]
    daily = aggregate_by_date(samples, "D", metrics=("squared_up_rate",))
    by_date = [
        {"date": row["bucket"], "count": row["count"], "average": row["squared_up_rate_mean"]}
        for row in _frame_records(daily)
    ]
    return SquaredUpReport(
        swing_count=overall.count,
        average=overall.mean_of("squared_up_rate"),
        at_or_above_cutoff=percent_meeting(
            (sample.metrics["squared_up_rate"] for sample in samples), cfg.squared_up_cutoff
        ),
        cutoff=cfg.squared_up_cutoff,
        by_date=by_date,
    )


@dataclass(frozen=True)
class ArmCareReport:
    body_weight: float
    strength: Dict[str, Optional[float]]
    percent_body_weight: Dict[str, Optional[float]]
    bands: Dict[str, Optional[str]]
    shoulder_balance: Optional[float]
    shoulder_balance_band: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "body_weight": self.body_weight,
            "strength": self.strength,
            "percent_body_weight": self.percent_body_weight,
            "bands": self.bands,
            "shoulder_balance": self.shoulder_balance,
            "shoulder_balance_band": self.shoulder_balance_band,
        }


def _first_metric(exam: Mapping[str, Any], names: Sequence[str]) -> Optional[float]:
    for name in names:
        value = coerce_metric(exam.get(name))
        if value is not None:
            return value
    return None


def _strength_band(percent: Optional[float], levels: Sequence[Tuple[str, float]]) -> Optional[str]:
    """"normal" needs strictly more than its cutoff; the lower bands are inclusive."""
    if percent is None:
        return None
    normal = dict(levels).get("normal")
    if normal is not None and percent > normal:
        return "normal"
    lower = [(label, cutoff) for label, cutoff in levels if label != "normal"]
    return LevelScheme.from_levels(lower, "percent").classify_value(percent)


def _balance_band(ratio: Optional[float], cfg: AppConfig) -> Optional[str]:
    if ratio is None:
        return None
    normal_low, normal_high = cfg.shoulder_balance_normal
    watch_low, watch_high = cfg.shoulder_balance_watch
    if normal_low <= ratio <= normal_high:
        return "normal"
    if watch_low <= ratio <= watch_high:
        return "watch"
    return "warning"


def classify_arm_care(
    exam: Mapping[str, Any],
    body_weight: float,
    *,
    config: AppConfig | None = None,
) -> ArmCareReport:
    """Band IR/ER/scaption/total strength as a percentage of body weight, plus ER:IR balance."""
    cfg = config or get_config()
    weight = coerce_metric(body_weight)
    if weight is None or weight <= 0:
        raise ValueError(f"body_weight must be a positive number; received {body_weight!r}.")

    strength = {key: _first_metric(exam, names) for key, names in ARM_CARE_FIELDS.items()}
    percents = {
        key: (value / weight * 100.0 if value is not None else None) for key, value in strength.items()
    }
    bands = {key: _strength_band(percents[key], cfg.arm_care_bands[key]) for key in ARM_CARE_FIELDS}
    ir, er = strength["ir"], strength["er"]
    ratio = er / ir if ir and er is not None else None
    return ArmCareReport(
        body_weight=weight,
        strength=strength,
        percent_body_weight=percents,
        bands=bands,
        shoulder_balance=ratio,
        shoulder_balance_band=_balance_band(ratio, cfg),
    )


REPORT_KINDS = ("blast", "hittrax", "trackman", "command", "squared-up")


def build_report(
    kind: str,
    records: Iterable[Any],
    *,
    benchmarks: Mapping[str, Sequence[ThresholdTable]] | None = None,
):
    """
    Dispatch helper used by the CLI and HTTP layers.

    `benchmarks` (pitch type to threshold tables) only applies to the trackman
    report; passing it for another kind raises ValueError.
    """
    builders = {
        "blast": build_blast_report,
        "hittrax": build_hittrax_report,
        "trackman": build_trackman_report,
        "command": build_command_report,
        "squared-up": build_squared_up_report,
    }
    try:
        builder = builders[kind]
    except KeyError as exc:
        raise ValueError(f"Unknown report kind {kind!r}; expected one of: {', '.join(REPORT_KINDS)}.") from exc
    if kind == "trackman":
        return build_trackman_report(records, benchmarks=benchmarks)
    if benchmarks:
        raise ValueError(f"Benchmarks are only supported for the trackman report, not {kind!r}.")
    return builder(records)
