from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .env import get_env
from .errors import ConfigError

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    import tomli as tomllib  # type: ignore

Levels = tuple[tuple[str, float], ...]

DEFAULT_BAT_SPEED_LEVELS: Levels = (
    ("youth", 60.0),
    ("high school", 67.0),
    ("college", 75.0),
    ("pro", 75.0),
)

# Strength as a percentage of body weight (warning below watch, normal only above the normal cutoff).
DEFAULT_ARM_CARE_BANDS: dict[str, Levels] = {
    "ir": (("warning", 0.0), ("watch", 15.0), ("normal", 20.0)),
    "er": (("warning", 0.0), ("watch", 15.0), ("normal", 20.0)),
    "scaption": (("warning", 0.0), ("watch", 10.0), ("normal", 15.0)),
    "total": (("warning", 0.0), ("watch", 50.0), ("normal", 70.0)),
}


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("diamond_metrics")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


METRICS_LOGGER = _configure_logger()


@dataclass(frozen=True)
class SprayCutoffs:
    pull_cutoff: float = -15.0
    opposite_cutoff: float = 15.0


@dataclass(frozen=True)
class StrikeZoneBounds:
    """Plate-location bounds in feet (side, height) split into a rows x cols grid."""

    x_min: float = -0.83
    x_max: float = 0.83
    y_min: float = 1.513
    y_max: float = 3.67
    rows: int = 3
    cols: int = 3


@dataclass(frozen=True)
class AppConfig:
    spray: SprayCutoffs = SprayCutoffs()
    strike_zone: StrikeZoneBounds = StrikeZoneBounds()
    bat_speed_levels: Levels = DEFAULT_BAT_SPEED_LEVELS
    hard_hit_mph: float = 95.0
    launch_window: tuple[float, float] = (7.0, 30.0)
    positive_result_percentile: float = 25.0
    attack_window: tuple[float, float] = (5.0, 15.0)
    efficiency_window: tuple[float, float] = (75.0, 85.0)
    squared_up_cutoff: float = 80.0
    shoulder_balance_normal: tuple[float, float] = (0.85, 1.05)
    shoulder_balance_watch: tuple[float, float] = (0.70, 1.20)
    arm_care_bands: Mapping[str, Levels] = field(default_factory=lambda: dict(DEFAULT_ARM_CARE_BANDS))


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/diamond_metrics.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Could not parse configuration file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read configuration file {path}: {exc}") from exc


def _finite(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _coerce_window(raw: Any, default: tuple[float, float]) -> tuple[float, float]:
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        return default
    low, high = _finite(raw[0]), _finite(raw[1])
    if low is None or high is None or low > high:
        return default
    return low, high


def _coerce_float(raw: Any, default: float) -> float:
    value = _finite(raw)
    return default if value is None else value


def _coerce_levels(raw: Any, default: Levels) -> Levels:
    """Read a `{label = cutoff}` table, keeping file order; any bad entry discards the table."""
    if not isinstance(raw, Mapping) or not raw:
        return default
    levels: list[tuple[str, float]] = []
    for label, cutoff in raw.items():
        value = _finite(cutoff)
        name = str(label).strip()
        if value is None or not name:
            return default
        levels.append((name, value))
    return tuple(levels)


def _coerce_spray(raw: Mapping[str, Any] | None) -> SprayCutoffs:
    base = SprayCutoffs()
    if not raw:
        return base
    pull = _coerce_float(raw.get("pull_cutoff"), base.pull_cutoff)
    opposite = _coerce_float(raw.get("opposite_cutoff"), base.opposite_cutoff)
    if pull > opposite:
        return base
    return SprayCutoffs(pull_cutoff=pull, opposite_cutoff=opposite)


def _coerce_strike_zone(raw: Mapping[str, Any] | None) -> StrikeZoneBounds:
    base = StrikeZoneBounds()
    if not raw:
        return base
    try:
        rows = int(raw.get("rows", base.rows))
        cols = int(raw.get("cols", base.cols))
    except (TypeError, ValueError):
        return base
    x_min = _coerce_float(raw.get("x_min"), base.x_min)
    x_max = _coerce_float(raw.get("x_max"), base.x_max)
    y_min = _coerce_float(raw.get("y_min"), base.y_min)
    y_max = _coerce_float(raw.get("y_max"), base.y_max)
    if rows < 1 or cols < 1 or x_min >= x_max or y_min >= y_max:
        return base
    return StrikeZoneBounds(x_min=x_min, x_max=x_max, y_min=y_min, y_max=y_max, rows=rows, cols=cols)


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name)
    return value if isinstance(value, Mapping) else {}


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    base = AppConfig()
    hitting = _section(raw, "hitting")
    swing = _section(raw, "swing")
    arm_care_raw = _section(raw, "arm_care")
    arm_care = {
        key: _coerce_levels(arm_care_raw.get(key), default)
        for key, default in DEFAULT_ARM_CARE_BANDS.items()
    }
    return AppConfig(
        spray=_coerce_spray(_section(raw, "spray")),
        strike_zone=_coerce_strike_zone(_section(raw, "strike_zone")),
        bat_speed_levels=_coerce_levels(raw.get("bat_speed_levels"), base.bat_speed_levels),
        hard_hit_mph=_coerce_float(hitting.get("hard_hit_mph"), base.hard_hit_mph),
        launch_window=_coerce_window(hitting.get("launch_window"), base.launch_window),
        positive_result_percentile=_coerce_float(
            hitting.get("positive_result_percentile"), base.positive_result_percentile
        ),
        attack_window=_coerce_window(swing.get("attack_window"), base.attack_window),
        efficiency_window=_coerce_window(swing.get("efficiency_window"), base.efficiency_window),
        squared_up_cutoff=_coerce_float(swing.get("squared_up_cutoff"), base.squared_up_cutoff),
        shoulder_balance_normal=_coerce_window(
            arm_care_raw.get("balance_normal"), base.shoulder_balance_normal
        ),
        shoulder_balance_watch=_coerce_window(arm_care_raw.get("balance_watch"), base.shoulder_balance_watch),
        arm_care_bands=arm_care,
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return AppConfig()
    data = _load_toml(path)
    METRICS_LOGGER.debug("Loaded configuration from %s", path)
    return _build_config(data)


def reset_config_cache() -> None:
    """Forget the cached configuration so the next call re-reads the environment."""
    get_config.cache_clear()


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    zone = config.strike_zone
    return {
        "spray": {
            "pull_cutoff": config.spray.pull_cutoff,
            "opposite_cutoff": config.spray.opposite_cutoff,
        },
        "strike_zone": {
            "x": [zone.x_min, zone.x_max],
            "y": [zone.y_min, zone.y_max],
            "grid": [zone.rows, zone.cols],
        },
        "bat_speed_levels": dict(config.bat_speed_levels),
        "hard_hit_mph": config.hard_hit_mph,
        "launch_window": list(config.launch_window),
        "positive_result_percentile": config.positive_result_percentile,
        "attack_window": list(config.attack_window),
        "efficiency_window": list(config.efficiency_window),
        "squared_up_cutoff": config.squared_up_cutoff,
        "arm_care_bands": {key: dict(levels) for key, levels in config.arm_care_bands.items()},
        "shoulder_balance": {
            "normal": list(config.shoulder_balance_normal),
            "watch": list(config.shoulder_balance_watch),
        },
        "source": str(_config_path() or "defaults"),
    }
