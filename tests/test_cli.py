import json

import pytest

from badge_tracker_server import cli


def test_replay_prints_final_snapshot(tmp_path, capsys) -> None:
    config_path = tmp_path / "config.yaml"
    reports = tmp_path / "reports.jsonl"
    lines = [
        {"anchor_id": anchor_id, "anchor_x": x, "anchor_y": y, "timestamp": 1_000 + anchor_id,
         "badges": [{"ssid": "BADGE_T1", "rssi": -59}]}
        for anchor_id, x, y in ((1, 0.0, 0.0), (2, 5.0, 0.0), (3, 2.5, 4.0))
    ]
    reports.write_text("\n".join(json.dumps(line) for line in lines) + "\n\n", encoding="utf-8")

    cli.main(["--config", str(config_path), "replay", str(reports)])

    out = capsys.readouterr().out
    assert "T1" in out
    assert "2.500" in out
    assert "exact" in out


def test_config_error_exits_with_status_2(tmp_path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("anchors:\n  - {id: 1, x: 0, y: 0}\n", encoding="utf-8")
    reports = tmp_path / "reports.jsonl"
    reports.write_text("", encoding="utf-8")

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--config", str(config_path), "replay", str(reports)])

    assert exc_info.value.code == 2
