from __future__ import annotations

import json

from conftest import uplink
from indoor_locator_server import cli


def _write_config(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        "paths:\n"
        f"  beacon_db: {tmp_path / 'beacons.csv'}\n"
        f"  fix_db: {tmp_path / 'fixes.csv'}\n",
        encoding="utf-8",
    )
    (tmp_path / "beacons.csv").write_text(
        "mac,x,y\nAA:00:00:00:00:01,0,0\nAA:00:00:00:00:02,20,0\nAA:00:00:00:00:03,0,20\nAA:00:00:00:00:04,20,20\n",
        encoding="utf-8",
    )
    return str(config)


def test_estimate_then_history(tmp_path, capsys) -> None:
    config = _write_config(tmp_path)
    payload_file = tmp_path / "uplink.json"
    payload_file.write_text(
        json.dumps(
            uplink(
                {
                    "aa:00:00:00:00:01": "-87dBm",
                    "aa:00:00:00:00:02": "-93dBm",
                    "aa:00:00:00:00:03": "-91dBm",
                    "aa:00:00:00:00:04": "-94dBm",
                }
            )
        ),
        encoding="utf-8",
    )

    assert cli.main(["--config", config, "estimate", str(payload_file)]) == 0
    estimated = json.loads(capsys.readouterr().out)
    assert estimated["device_id"] == "tag-1"
    assert estimated["pos_data"]["method"] == "trilateration"

    assert cli.main(["--config", config, "history", "tag-1", "--limit", "5"]) == 0
    history = json.loads(capsys.readouterr().out)
    assert len(history) == 1
    assert history[0]["pos_data"] == estimated["pos_data"]


def test_estimate_unknown_beacon_fails(tmp_path, capsys) -> None:
    config = _write_config(tmp_path)
    payload_file = tmp_path / "uplink.json"
    payload_file.write_text(json.dumps(uplink({"BB:00": "-60dBm"})), encoding="utf-8")

    assert cli.main(["--config", config, "estimate", str(payload_file)]) == 1
    assert not (tmp_path / "fixes.csv").exists()


def test_beacons_add_list_remove(tmp_path, capsys) -> None:
    config = _write_config(tmp_path)

    assert cli.main(["--config", config, "beacons", "add", "cc:01", "5", "6"]) == 0
    assert cli.main(["--config", config, "beacons", "remove", "AA:00:00:00:00:04"]) == 0
    capsys.readouterr()
    assert cli.main(["--config", config, "beacons", "list"]) == 0

    listed = {b["mac"]: (b["x"], b["y"]) for b in json.loads(capsys.readouterr().out)}
    assert listed["CC:01"] == (5.0, 6.0)
    assert "AA:00:00:00:00:04" not in listed
    assert len(listed) == 4


def test_beacons_update(tmp_path, capsys) -> None:
    config = _write_config(tmp_path)

    assert cli.main(["--config", config, "beacons", "update", "aa:00:00:00:00:04", "18", "19"]) == 0
    assert cli.main(["--config", config, "beacons", "update", "CC:99", "1", "1"]) == 1
    capsys.readouterr()
    assert cli.main(["--config", config, "beacons", "list"]) == 0

    listed = {b["mac"]: (b["x"], b["y"]) for b in json.loads(capsys.readouterr().out)}
    assert listed["AA:00:00:00:00:04"] == (18.0, 19.0)
    assert "CC:99" not in listed
