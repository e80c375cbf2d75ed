import json

from governed_rollout import cli


def test_config_command_prints_effective_settings(capsys):
    assert cli.main(["config"]) == 0
    assert "roiThreshold" in capsys.readouterr().out


def test_simulated_ramp_succeeds():
    assert cli.main(["simulate-ramp", "--dimension", "SCOPE", "--target", "5"]) == 0


def test_simulated_regression_exits_non_zero(capsys):
    code = cli.main(
        ["simulate-ramp", "--target", "600", "--regress-at", "3", "--regress-domain", "stability", "--regress-by", "20"]
    )
    assert code == 1
    assert "Scale failed at step 3 of 5" in capsys.readouterr().out


def test_simulated_upgrade_keeps_profitable_change(capsys):
    assert cli.main(["simulate-upgrade", "--axis", "DATA", "--metric", "memory", "--uplift", "12"]) == 0
    assert "Next suggested axis" in capsys.readouterr().out


def test_simulated_upgrade_below_threshold_exits_non_zero():
    assert cli.main(["simulate-upgrade", "--uplift", "2"]) == 1


def test_replay_reads_ndjson_frames(tmp_path):
    baseline = {"reasoning": 70, "stability": 80}
    frames = [baseline, {"scores": {"reasoning": 71, "stability": 79}}, {"reasoning": 72, "stability": 81}]
    path = tmp_path / "metrics.ndjson"
    path.write_text("\n".join(json.dumps(frame) for frame in frames), encoding="utf-8")
    assert cli.main(["replay", str(path), "--dimension", "SCOPE", "--target", "3"]) == 0


def test_replay_detects_regression_in_recorded_frames(tmp_path):
    frames = [{"reasoning": 70, "stability": 80}, {"reasoning": 70, "stability": 60}]
    path = tmp_path / "metrics.json"
    path.write_text(json.dumps(frames), encoding="utf-8")
    assert cli.main(["replay", str(path), "--dimension", "SCOPE", "--target", "3"]) == 1
