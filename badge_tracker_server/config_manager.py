from __future__ import annotations

import copy
import logging
import os
import yaml

from typing import Callable, Any, Dict, List


logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except (TypeError, ValueError):
            return v
    return default


def _env_list(v: str) -> List[str]:
    return [item.strip() for item in v.split(",") if item.strip()]


DEFAULT_CONFIG_PATH = _env_or_default(
    "BADGE_TRACKER_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


class ConfigError(ValueError):
    """启动时发现的配置错误（不在请求期间抛出）"""


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BADGE_MQTT_IP", "localhost"),
                "port": _env_or_default("BADGE_MQTT_PORT", 1883, int),
                "uplink_topic": _env_or_default("BADGE_MQTT_UPLINK_TOPIC", "/device/badge/positions"),
                "downlink_topic": _env_or_default("BADGE_MQTT_DOWNLINK_TOPIC", "/device/anchor/+/rssi"),
            },
            "path_loss": {
                "tx_power": _env_or_default("BADGE_PATH_LOSS_TX_POWER", -59.0, float),
                "path_loss_exponent": _env_or_default("BADGE_PATH_LOSS_EXPONENT", 2.0, float),
            },
            "smoothing": {
                "alpha": _env_or_default("BADGE_SMOOTHING_ALPHA", 0.6, float),
            },
            "staleness": {
                # 参与三边定位的距离有效期（“仍可定位”）
                "trilateration_window_ms": _env_or_default("BADGE_TRILATERATION_WINDOW_MS", 5000, int),
                # 标签驱逐窗口（“对订阅者可见”）
                "eviction_window_ms": _env_or_default("BADGE_EVICTION_WINDOW_MS", 10000, int),
            },
            "anchors": [
                {"id": 1, "x": 0.0, "y": 0.0},
                {"id": 2, "x": 5.0, "y": 0.0},
                {"id": 3, "x": 2.5, "y": 4.0},
            ],
            "ingestion": {
                "tag_prefix": _env_or_default("BADGE_TAG_PREFIX", "BADGE_"),
            },
            "publisher": {
                "roles": _env_or_default("BADGE_PUBLISHER_ROLES", ["web", "mobile"], _env_list),
            },
            "paths": {
                # 可选：信标坐标 CSV（id,x,y），存在时覆盖 anchors 列表
                "anchor_db": _env_or_default("BADGE_PATH_ANCHOR_DB", ""),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except (OSError, yaml.YAMLError) as e:
            # 发生异常时回退到默认配置
            logger.warning("读取配置文件失败，使用默认配置: %s", e)
            self.config = copy.deepcopy(self.default_config)

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        if not isinstance(self.config, dict):
            raise ConfigError(f"配置文件格式错误: {self.config_file}")
        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                    sort_keys=False,
                )
        except OSError as e:
            logger.warning("保存配置文件失败: %s", e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_path_loss_config(self):
        return self.config["path_loss"]

    def get_smoothing_alpha(self) -> float:
        return float(self.config["smoothing"]["alpha"])

    def get_staleness_config(self) -> Dict[str, int]:
        s = self.config["staleness"]
        return {
            "trilateration_window_ms": int(s["trilateration_window_ms"]),
            "eviction_window_ms": int(s["eviction_window_ms"]),
        }

    def get_anchor_config(self) -> List[Dict[str, Any]]:
        return list(self.config.get("anchors") or [])

    def get_tag_prefix(self) -> str:
        return str(self.config["ingestion"].get("tag_prefix") or "")

    def get_publisher_roles(self) -> List[str]:
        return list(self.config["publisher"].get("roles") or [])

    def get_paths(self):
        return self.config.get("paths", {})

    def get_anchor_db_path(self) -> str:
        return self.get_paths().get("anchor_db") or ""

    # ---------- Validation ----------
    def validate(self) -> None:
        """校验数值参数，信标数量由 AnchorStore.load 校验"""
        try:
            alpha = self.get_smoothing_alpha()
            staleness = self.get_staleness_config()
            exponent = float(self.get_path_loss_config()["path_loss_exponent"])
            float(self.get_path_loss_config()["tx_power"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"配置参数无效: {e}") from e

        if not 0.0 <= alpha <= 1.0:
            raise ConfigError(f"smoothing.alpha 必须在 [0, 1] 之间: {alpha}")
        if exponent <= 0:
            raise ConfigError(f"path_loss.path_loss_exponent 必须为正数: {exponent}")
        for key, value in staleness.items():
            if value <= 0:
                raise ConfigError(f"staleness.{key} 必须为正数: {value}")
