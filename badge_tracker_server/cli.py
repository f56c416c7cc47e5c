from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading

import pandas as pd

from .config_manager import ConfigError, ConfigManager
from .coordinator import IngestionCoordinator
from .mqtt_processor import MQTTDataProcessor


logger = logging.getLogger(__name__)

# 无上报时的定时驱逐间隔（秒）
SWEEP_INTERVAL = 1.0


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def run_mqtt(args):
    config = ConfigManager(args.config)
    processor = MQTTDataProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    while t.is_alive():
        t.join(timeout=SWEEP_INTERVAL)
        processor.coordinator.sweep()


def run_replay(args):
    """按行回放 JSON 上报，输出最终快照"""
    config = ConfigManager(args.config)
    coordinator = IngestionCoordinator.from_config(config)
    with open(args.file, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            now = None
            try:
                now = json.loads(line).get("timestamp")
            except (ValueError, AttributeError):
                pass
            if coordinator.handle_message(line, now=now if isinstance(now, int) else None) is None:
                logger.warning("第 %d 行未处理", lineno)

    snapshot = coordinator.ledger.snapshot()
    if not snapshot:
        print("无已定位标签")
        return
    df = pd.DataFrame([p.to_dict() for p in snapshot]).set_index("tag_id")
    print(df.to_string(float_format=lambda v: f"{v:.3f}"))


def main(argv=None):
    parser = argparse.ArgumentParser(prog="badge-tracker-server", description="Badge Tracker Server CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BADGE_TRACKER_CONFIG")
    parser.add_argument("--debug", action="store_true", help="输出调试日志")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 服务端监听")
    p_run.set_defaults(func=run_mqtt)

    p_replay = sub.add_parser("replay", help="回放 JSON-lines 上报文件并打印标签位置")
    p_replay.add_argument("file", help="每行一条信标上报")
    p_replay.set_defaults(func=run_replay)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    try:
        # 无子命令/无参数时默认启动服务器
        if not hasattr(args, "func"):
            return run_mqtt(args)
        return args.func(args)
    except ConfigError as e:
        logger.error("配置错误: %s", e)
        sys.exit(2)


if __name__ == "__main__":
    main()
