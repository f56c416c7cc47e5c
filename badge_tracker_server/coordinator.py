from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from .anchor_store import AnchorStore
from .calculator import PositionCalculator
from .config_manager import ConfigManager
from .models import AnchorReport, BadgeReading, ReadingParseError, ReportParseError, TagPosition
from .publisher import ROLE_WEB, Publisher, Subscriber
from .tag_ledger import TagLedger


logger = logging.getLogger(__name__)

# 坐标比较容差（米）
COORDINATE_TOLERANCE = 1e-6


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class IngestSummary:
    anchor_id: Optional[int]
    accepted: int = 0
    discarded: int = 0
    changed: Tuple[TagPosition, ...] = ()
    evicted: Tuple[str, ...] = ()


class IngestionCoordinator:
    """
    信标上报的唯一入口。

    一次上报（记录距离 -> 重算 -> 驱逐 -> 推送）在同一把锁内完成，
    处理完毕后才接收下一条上报。
    """

    def __init__(
        self,
        anchor_store: AnchorStore,
        ledger: TagLedger,
        publisher: Publisher,
        calculator: Optional[PositionCalculator] = None,
        tag_prefix: str = "BADGE_",
        clock: Callable[[], int] = _now_ms,
    ):
        self.anchor_store = anchor_store
        self.ledger = ledger
        self.publisher = publisher
        self.calculator = calculator or PositionCalculator()
        self.tag_prefix = tag_prefix
        self.clock = clock
        self.lock = threading.Lock()

    @classmethod
    def from_config(
        cls, config_manager: ConfigManager, clock: Callable[[], int] = _now_ms
    ) -> "IngestionCoordinator":
        """按配置组装整条管线；配置错误在这里抛出 ConfigError"""
        config_manager.validate()
        anchor_store = AnchorStore(config_manager).load()
        staleness = config_manager.get_staleness_config()
        ledger = TagLedger(
            anchor_store.all(),
            smoothing_alpha=config_manager.get_smoothing_alpha(),
            trilateration_window_ms=staleness["trilateration_window_ms"],
            eviction_window_ms=staleness["eviction_window_ms"],
        )
        publisher = Publisher(ledger.snapshot, roles=config_manager.get_publisher_roles())
        return cls(
            anchor_store,
            ledger,
            publisher,
            calculator=PositionCalculator.from_config(config_manager.get_path_loss_config()),
            tag_prefix=config_manager.get_tag_prefix(),
            clock=clock,
        )

    # ---------- Core processing ----------
    def ingest(
        self,
        anchor_id: int,
        anchor_x: Optional[float],
        anchor_y: Optional[float],
        readings: Iterable[Any],
        now: Optional[int] = None,
    ) -> IngestSummary:
        now = self.clock() if now is None else now
        with self.lock:
            anchor = self.anchor_store.get(anchor_id)
            if anchor is None:
                logger.warning("未知信标 #%s，丢弃本次上报", anchor_id)
                evicted = self.ledger.evict_stale(now)
                self._publish([], evicted)
                return IngestSummary(anchor_id=anchor_id, evicted=tuple(evicted))
            self._check_coordinates(anchor_id, anchor.x, anchor.y, anchor_x, anchor_y)

            accepted = discarded = 0
            changed: List[str] = []
            for idx, raw in enumerate(readings or ()):
                try:
                    reading = BadgeReading.from_payload(raw, anchor_id, now, self.tag_prefix)
                except ReadingParseError as e:
                    logger.warning("信标 #%s 读数 #%d 无效: %s", anchor_id, idx, e)
                    discarded += 1
                    continue

                try:
                    distance = self.calculator.rssi_to_distance(reading.signal_strength)
                except OverflowError:
                    distance = -1.0
                if distance < 0:
                    logger.warning(
                        "信标 #%s 标签 %s 的 RSSI 无效: %s",
                        anchor_id,
                        reading.tag_id,
                        reading.signal_strength,
                    )
                    discarded += 1
                    continue

                self.ledger.record_distance(reading.tag_id, anchor_id, distance, reading.observed_at)
                if self.ledger.recompute(reading.tag_id, now) and reading.tag_id not in changed:
                    changed.append(reading.tag_id)
                accepted += 1

            evicted = self.ledger.evict_stale(now)
            positions = [p for p in (self.ledger.get(t) for t in changed) if p is not None]
            self._publish(positions, evicted)

        logger.debug(
            "信标 #%s 上报处理完成: 接收 %d, 丢弃 %d, 更新 %d, 移除 %d",
            anchor_id,
            accepted,
            discarded,
            len(positions),
            len(evicted),
        )
        return IngestSummary(
            anchor_id=anchor_id,
            accepted=accepted,
            discarded=discarded,
            changed=tuple(positions),
            evicted=tuple(evicted),
        )

    def ingest_report(self, data: Mapping[str, Any], now: Optional[int] = None) -> IngestSummary:
        try:
            report = AnchorReport.parse(data)
        except ReportParseError as e:
            logger.warning("上报解析失败: %s", e)
            return IngestSummary(anchor_id=None)
        logger.info(
            "RSSI 信标 #%s (%s, %s): %d 个标签",
            report.anchor_id,
            report.anchor_x,
            report.anchor_y,
            len(report),
        )
        return self.ingest(report.anchor_id, report.anchor_x, report.anchor_y, report.readings, now)

    def handle_message(self, payload: str | bytes, now: Optional[int] = None) -> Optional[IngestSummary]:
        """处理一条 JSON 消息；非 rssi_data 类型仅记录日志"""
        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("消息不是合法 JSON: %s", e)
            return None
        if not isinstance(data, dict):
            logger.warning("消息格式错误: %r", data)
            return None

        message_type = data.get("type", "rssi_data")
        if message_type != "rssi_data":
            logger.info("忽略消息类型: %s", message_type)
            return None
        return self.ingest_report(data, now)

    def register(self, subscriber: Subscriber, role: str = ROLE_WEB) -> bool:
        """注册订阅者；快照与后续推送在同一串行周期内，顺序不会颠倒"""
        with self.lock:
            return self.publisher.register(subscriber, role)

    def sweep(self, now: Optional[int] = None) -> List[str]:
        """在同一串行周期内执行驱逐（供定时调用）"""
        now = self.clock() if now is None else now
        with self.lock:
            evicted = self.ledger.evict_stale(now)
            self._publish([], evicted)
        return evicted

    # ---------- Utils ----------
    def _publish(self, positions: List[TagPosition], evicted: List[str]) -> None:
        if positions or evicted:
            self.publisher.broadcast(positions, removed=evicted)

    @staticmethod
    def _check_coordinates(anchor_id, x, y, reported_x, reported_y) -> None:
        if not isinstance(reported_x, (int, float)) or not isinstance(reported_y, (int, float)):
            return
        if abs(reported_x - x) > COORDINATE_TOLERANCE or abs(reported_y - y) > COORDINATE_TOLERANCE:
            logger.warning(
                "信标 #%s 上报坐标 (%s, %s) 与配置 (%s, %s) 不一致，使用配置坐标",
                anchor_id,
                reported_x,
                reported_y,
                x,
                y,
            )
