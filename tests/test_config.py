from __future__ import annotations

import pytest

from diamond_metrics import config
from diamond_metrics.errors import ConfigError


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DIAMOND_METRICS_CONFIG", raising=False)
    config.reset_config_cache()
    yield
    config.reset_config_cache()


def test_defaults_without_config_file() -> None:
    cfg = config.get_config()
    assert cfg.spray.pull_cutoff == -15.0
    assert cfg.strike_zone.y_max == pytest.approx(3.67)
    assert dict(cfg.bat_speed_levels)["high school"] == 67.0
    assert cfg.hard_hit_mph == 95.0
    assert config.as_dict()["source"] == "defaults"


def test_toml_overrides_and_bad_fields_fall_back(monkeypatch, tmp_path) -> None:
    path = tmp_path / "metrics.toml"
    path.write_text(
        """
[spray]
pull_cutoff = -20
opposite_cutoff = "wide"

[bat_speed_levels]
"little league" = 50
youth = 60

[hitting]
hard_hit_mph = 100
launch_window = [30, 7]

[arm_care.ir]
warning = 0
watch = 12
normal = 18
""",
        encoding="utf-8",
    )
    monkeypatch.setenv("DIAMOND_METRICS_CONFIG", str(path))
    config.reset_config_cache()

    cfg = config.get_config()
    assert cfg.spray.pull_cutoff == -20.0
    assert cfg.spray.opposite_cutoff == 15.0
    assert cfg.bat_speed_levels == (("little league", 50.0), ("youth", 60.0))
    assert cfg.hard_hit_mph == 100.0
    assert cfg.launch_window == (7.0, 30.0)
    assert dict(cfg.arm_care_bands["ir"])["watch"] == 12.0
    assert dict(cfg.arm_care_bands["er"])["watch"] == 15.0
    assert config.as_dict()["source"] == str(path)


def test_default_config_location(tmp_path) -> None:
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "diamond_metrics.toml").write_text("[swing]\nsquared_up_cutoff = 75\n", encoding="utf-8")
    assert config.get_config().squared_up_cutoff == 75.0


def test_malformed_toml_raises_config_error(monkeypatch, tmp_path) -> None:
    path = tmp_path / "broken.toml"
    path.write_text("[spray\npull_cutoff = ", encoding="utf-8")
    monkeypatch.setenv("DIAMOND_METRICS_CONFIG", str(path))
    with pytest.raises(ConfigError):
        config.get_config()


def test_blank_env_value_counts_as_unset(monkeypatch) -> None:
    monkeypatch.setenv("DIAMOND_METRICS_CONFIG", "   ")
    assert config.get_config().squared_up_cutoff == 80.0
