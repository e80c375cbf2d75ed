import json

import pytest

from governed_rollout.config import RolloutConfig, config_from_payload, load_config


def test_defaults_match_shipped_config():
    config = load_config()
    assert config.roi_threshold == 10.0
    assert config.checkpoint_tolerance == 10.0
    assert config.required_improvement_cycles == 3
    assert config.dimension_limits["THROUGHPUT"].hard_cap == 1000
    assert config.dimension_limits["FREQUENCY"].current == 1
    assert config.to_json() == RolloutConfig().to_json()


def test_payload_is_coerced_and_clamped():
    config = config_from_payload(
        {
            "roiThreshold": "150",
            "checkpointTolerance": "bogus",
            "axisRoiThresholds": {"data": 4, "MEMORY": 9},
            "dimensionLimits": {"scope": {"current": 50, "hardCap": 20}},
            "infrastructureAxes": ["compute", "unknown"],
            "alertChannels": ["log", "file"],
            "alertLogPath": "/tmp/rollout-alerts.jsonl",
        }
    )
    assert config.roi_threshold == 100.0
    assert config.checkpoint_tolerance == 10.0
    assert config.axis_roi_thresholds == {"DATA": 4.0}
    assert config.dimension_limits["SCOPE"].current == 20
    assert config.infrastructure_axes == ("COMPUTE",)
    assert config.alert_channels == ("log", "file")
    assert str(config.alert_log_path) == "/tmp/rollout-alerts.jsonl"


def test_config_file_and_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "rollout.json"
    path.write_text(json.dumps({"roiThreshold": 25, "requiredImprovementCycles": 1}), encoding="utf-8")
    monkeypatch.setenv("ROLLOUT_CONFIG", str(path))
    monkeypatch.setenv("ROLLOUT_CHECKPOINT_TOLERANCE", "4")

    config = load_config()
    assert config.roi_threshold == 25.0
    assert config.required_improvement_cycles == 1
    assert config.checkpoint_tolerance == 4.0
    assert load_config() is config

    monkeypatch.setenv("ROLLOUT_ROI_THRESHOLD", "12")
    load_config.cache_clear()
    assert load_config().roi_threshold == 12.0


def test_tolerance_and_threshold_lookups():
    config = RolloutConfig(axis_roi_thresholds={"DATA": 3.0}, dimension_tolerances={"SCOPE": 1.5})
    assert config.roi_threshold_for("DATA") == 3.0
    assert config.roi_threshold_for("COMPUTE") == 10.0
    assert config.tolerance_for("SCOPE") == 1.5
    assert config.tolerance_for("THROUGHPUT") == 10.0


def test_invalid_config_raises():
    with pytest.raises(ValueError):
        RolloutConfig(roi_threshold=120)
    with pytest.raises(ValueError):
        RolloutConfig(infrastructure_axes=("MEMORY",))
    with pytest.raises(ValueError):
        RolloutConfig(max_scale_reports=0)


def test_invalid_values_are_reported_with_their_key(caplog):
    with caplog.at_level("WARNING", logger="governed_rollout.config"):
        config = config_from_payload(
            {
                "requiredImprovementCycles": "three",
                "dimensionLimits": {"THROUGHPUT": {"current": 200, "hardCap": "lots"}},
            }
        )
    assert config.required_improvement_cycles == 3
    assert config.dimension_limits["THROUGHPUT"].hard_cap == 1000
    assert config.dimension_limits["THROUGHPUT"].current == 200
    assert "requiredImprovementCycles='three'" in caplog.text
    assert "dimensionLimits.THROUGHPUT.hardCap='lots'" in caplog.text


def test_missing_explicit_config_path_falls_back_to_default(tmp_path, monkeypatch, caplog):
    monkeypatch.setenv("ROLLOUT_CONFIG", str(tmp_path / "absent.json"))
    with caplog.at_level("WARNING", logger="governed_rollout.config"):
        config = load_config()
    assert config.roi_threshold == 10.0
    assert "absent.json" in caplog.text


def test_non_object_config_file_is_rejected(tmp_path, monkeypatch):
    path = tmp_path / "rollout.json"
    path.write_text("[1, 2]", encoding="utf-8")
    monkeypatch.setenv("ROLLOUT_CONFIG_PATH", str(path))
    with pytest.raises(ValueError, match="JSON object"):
        load_config()
