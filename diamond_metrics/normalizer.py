"""Convert loosely-shaped technology exports into uniform :class:`Sample` objects.

Each source type has a field map from export column names to canonical metric
names. Both the camelCase names the upload pipeline stores and the canonical
snake_case names are recognised so already-normalised payloads round-trip.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from .models import (
    FORCE_PLATE_TRIAL,
    HIT,
    PITCH,
    SWING,
    Sample,
    coerce_metric,
    parse_timestamp,
    require_source_type,
)

logger = logging.getLogger(__name__)

__all__ = [
    "SWING_FIELDS",
    "HIT_FIELDS",
    "PITCH_FIELDS",
    "FORCE_PLATE_FIELDS",
    "LABEL_FIELDS",
    "TIMESTAMP_FIELDS",
    "FIELD_MAPS",
    "normalize",
    "normalize_one",
]


def _with_canonical(fields: dict[str, str]) -> dict[str, str]:
    mapping = dict(fields)
    for canonical in set(fields.values()):
        mapping.setdefault(canonical, canonical)
    return mapping


SWING_FIELDS = _with_canonical(
    {
        "batSpeed": "bat_speed",
        "peakHandSpeed": "peak_hand_speed",
        "rotationalAcceleration": "rotational_acceleration",
        "power": "power",
        "earlyConnection": "early_connection",
        "connectionAtImpact": "connection_at_impact",
        "attackAngle": "attack_angle",
        "onPlaneEfficiency": "on_plane_efficiency",
        "verticalBatAngle": "vertical_bat_angle",
        "timeToContact": "time_to_contact",
        "squaredUpRate": "squared_up_rate",
    }
)

HIT_FIELDS = _with_canonical(
    {
        "velo": "exit_velocity",
        "exitVelocity": "exit_velocity",
        "LA": "launch_angle",
        "launchAngle": "launch_angle",
        "dist": "distance",
        "horizAngle": "horizontal_angle",
        "sprayChartX": "spray_x",
        "sprayChartZ": "spray_y",
        "POIX": "poi_x",
        "POIY": "poi_y",
        "POIZ": "poi_z",
        "plateLocSide": "plate_x",
        "plateLocHeight": "plate_y",
        "pitch": "pitch_speed",
        "pts": "points",
        "squaredUpRate": "squared_up_rate",
    }
)

PITCH_FIELDS = _with_canonical(
    {
        "pitchReleaseSpeed": "release_speed",
        "releaseSpeed": "release_speed",
        "spinRate": "spin_rate",
        "horizontalBreak": "horizontal_break",
        "inducedVertBreak": "induced_vertical_break",
        "verticalApproachAngle": "vertical_approach_angle",
        "plateLocSide": "plate_x",
        "plateLocHeight": "plate_y",
        "intendedX": "intended_x",
        "intendedY": "intended_y",
        "actualX": "actual_x",
        "actualY": "actual_y",
        "distanceIn": "miss_distance",
        "distancePer": "miss_percent",
    }
)

FORCE_PLATE_FIELDS = _with_canonical(
    {
        "jmpHeight": "jump_height",
        "jumpHeight": "jump_height",
        "peakPowerW": "peak_power",
        "peakPower": "peak_power",
        "peakPowerBM": "peak_power_bm",
        "RSImodified": "rsi_modified",
        "lowLimbStiff": "stiffness",
        "counterMovement": "countermovement_depth",
        "concentricPeakForce": "concentric_peak_force",
        "eccentricPeakForce": "eccentric_peak_force",
        "minimumEccentricForce": "minimum_eccentric_force",
        "peakVertForce": "peak_vertical_force",
        "peakVerticalForce": "peak_vertical_force",
        "netPeakVerticalForce": "net_peak_vertical_force",
        "takeoffPeakForceN": "takeoff_peak_force",
        "bodyWeight": "body_weight",
    }
)

FIELD_MAPS: dict[str, Mapping[str, str]] = {
    SWING: SWING_FIELDS,
    HIT: HIT_FIELDS,
    PITCH: PITCH_FIELDS,
    FORCE_PLATE_TRIAL: FORCE_PLATE_FIELDS,
}

LABEL_FIELDS = _with_canonical(
    {
        "sessionId": "session_id",
        "athleteId": "athlete",
        "athlete": "athlete",
        "pitchType": "pitch_type",
        "pType": "pitch_type",
        "swingType": "swing_type",
        "res": "result",
        "type": "hit_type",
        "batting": "batting",
        "level": "level",
        "testType": "test_type",
        "strikeZone": "strike_zone",
    }
)

TIMESTAMP_FIELDS = ("timestamp", "date", "createdAt", "created_at")


def _extract_timestamp(record: Mapping[str, Any]):
    for name in TIMESTAMP_FIELDS:
        if record.get(name) not in (None, ""):
            return parse_timestamp(record[name])
    return None


def _extract_labels(record: Mapping[str, Any]) -> dict[str, str]:
    labels: dict[str, str] = {}
    for source, canonical in LABEL_FIELDS.items():
        if canonical in labels:
            continue
        value = record.get(source)
        if value is None or isinstance(value, bool):
            continue
        text = str(value).strip()
        if text:
            labels[canonical] = text
    return labels


def _extract_metrics(
    record: Mapping[str, Any],
    fields: Mapping[str, str],
    zero_is_missing: frozenset[str],
) -> dict[str, float]:
    metrics: dict[str, float] = {}
    for source, canonical in fields.items():
        if canonical in metrics or source not in record:
            continue
        value = coerce_metric(record[source])
        if value is None:
            continue
        if value == 0 and canonical in zero_is_missing:
            continue
        metrics[canonical] = value
    return metrics


def normalize_one(
    record: Any,
    source_type: str,
    *,
    zero_is_missing: Iterable[str] = (),
) -> Optional[Sample]:
    """Normalise a single record; returns None when nothing usable remains."""
    fields = FIELD_MAPS[require_source_type(source_type)]
    if not isinstance(record, Mapping):
        return None
    metrics = _extract_metrics(record, fields, frozenset(zero_is_missing))
    if not metrics:
        return None
    return Sample(
        timestamp=_extract_timestamp(record),
        source_type=source_type,
        metrics=metrics,
        labels=_extract_labels(record),
    )


def normalize(
    records: Iterable[Any],
    source_type: str,
    *,
    zero_is_missing: Iterable[str] = (),
) -> list[Sample]:
    """
    Convert raw records into samples, keeping only finite recognised metrics.

    Malformed input is never an error: non-mapping items and records without a
    single usable metric are dropped. `zero_is_missing` names canonical metrics
    for which a zero reading means "not captured" (HitTrax misreads).
    """
    require_source_type(source_type)
    missing = frozenset(zero_is_missing)
    samples: list[Sample] = []
    dropped = 0
    for record in records:
        sample = normalize_one(record, source_type, zero_is_missing=missing)
        if sample is None:
            dropped += 1
            continue
        samples.append(sample)
    if dropped:
        logger.debug(
            "Dropped %s %s record(s) without usable metrics; kept %s.",
            dropped,
            source_type,
            len(samples),
        )
    return samples
