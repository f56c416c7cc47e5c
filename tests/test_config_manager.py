import os

import pytest
import yaml

from badge_tracker_server.anchor_store import AnchorStore
from badge_tracker_server.config_manager import ConfigError, ConfigManager
from badge_tracker_server.coordinator import IngestionCoordinator


def _write_config(path, data: dict) -> str:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f)
    return str(path)


def test_missing_config_file_is_created_with_defaults(tmp_path) -> None:
    path = tmp_path / "nested" / "config.yaml"

    config = ConfigManager(str(path))

    assert os.path.exists(path)
    assert config.get_smoothing_alpha() == pytest.approx(0.6)
    assert config.get_staleness_config() == {
        "trilateration_window_ms": 5000,
        "eviction_window_ms": 10000,
    }
    assert config.get_path_loss_config()["tx_power"] == pytest.approx(-59.0)
    assert len(config.get_anchor_config()) == 3


def test_partial_config_is_merged_with_defaults(tmp_path) -> None:
    path = _write_config(tmp_path / "config.yaml", {"smoothing": {"alpha": 0.8}, "mqtt": {"port": 1999}})

    config = ConfigManager(path)

    assert config.get_smoothing_alpha() == pytest.approx(0.8)
    assert config.get_mqtt_config()["port"] == 1999
    assert config.get_mqtt_config()["ip"] == "localhost"
    assert config.get_tag_prefix() == "BADGE_"


def test_environment_overrides_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BADGE_EVICTION_WINDOW_MS", "30000")
    monkeypatch.setenv("BADGE_PUBLISHER_ROLES", "web, esp32")

    config = ConfigManager(str(tmp_path / "config.yaml"))

    assert config.get_staleness_config()["eviction_window_ms"] == 30000
    assert config.get_publisher_roles() == ["web", "esp32"]


@pytest.mark.parametrize(
    "override",
    [
        {"smoothing": {"alpha": 1.5}},
        {"path_loss": {"path_loss_exponent": 0}},
        {"staleness": {"eviction_window_ms": -1}},
        {"staleness": {"trilateration_window_ms": "soon"}},
    ],
)
def test_invalid_parameters_are_rejected_at_startup(tmp_path, override) -> None:
    config = ConfigManager(_write_config(tmp_path / "config.yaml", override))

    with pytest.raises(ConfigError):
        IngestionCoordinator.from_config(config)


def test_fewer_than_three_anchors_is_a_config_error(tmp_path) -> None:
    path = _write_config(
        tmp_path / "config.yaml",
        {"anchors": [{"id": 1, "x": 0, "y": 0}, {"id": 2, "x": 5, "y": 0}]},
    )

    with pytest.raises(ConfigError):
        IngestionCoordinator.from_config(ConfigManager(path))


def test_duplicate_anchor_ids_count_once(tmp_path) -> None:
    path = _write_config(
        tmp_path / "config.yaml",
        {
            "anchors": [
                {"id": 1, "x": 0, "y": 0},
                {"id": 2, "x": 5, "y": 0},
                {"id": 2, "x": 6, "y": 0},
            ]
        },
    )

    with pytest.raises(ConfigError):
        AnchorStore(ConfigManager(path)).load()


def test_non_numeric_anchor_is_a_config_error(tmp_path) -> None:
    path = _write_config(
        tmp_path / "config.yaml",
        {"anchors": [{"id": 1, "x": 0, "y": 0}, {"id": 2, "x": "east", "y": 0}, {"id": 3, "x": 1, "y": 1}]},
    )

    with pytest.raises(ConfigError):
        AnchorStore(ConfigManager(path)).load()


def test_anchor_csv_overrides_yaml_list(tmp_path) -> None:
    csv_path = tmp_path / "anchors.csv"
    csv_path.write_text("id,x,y\n10,0,0\n11,8,0\n12,4,6\n13,4,-6\n", encoding="utf-8")
    path = _write_config(tmp_path / "config.yaml", {"paths": {"anchor_db": str(csv_path)}})

    store = AnchorStore(ConfigManager(path)).load()

    assert len(store) == 4
    assert store.has(12)
    anchor = store.get(12)
    assert anchor is not None
    assert (anchor.x, anchor.y) == (4.0, 6.0)
    assert store.get(1) is None
    assert sorted(store.all()) == [10, 11, 12, 13]


def test_missing_anchor_csv_is_a_config_error(tmp_path) -> None:
    path = _write_config(tmp_path / "config.yaml", {"paths": {"anchor_db": str(tmp_path / "nope.csv")}})

    with pytest.raises(ConfigError):
        AnchorStore(ConfigManager(path)).load()
