from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .calculator import estimate_position
from .filters import DEFAULT_ALPHA, smooth
from .models import Anchor, AnchorDistance, EstimateKind, Position, TagPosition


logger = logging.getLogger(__name__)

ORIGIN = Position(x=0.0, y=0.0)


@dataclass
class DistanceSample:
    distance: float
    observed_at: int


@dataclass
class TagState:
    tag_id: str
    last_update: int
    distance_by_anchor: Dict[int, DistanceSample] = field(default_factory=dict)
    raw_position: Optional[Position] = None
    smoothed_position: Position = ORIGIN
    raw_kind: Optional[EstimateKind] = None
    # 最近一次三边定位（含质心回退）的方式；None 表示尚未定位，平滑位置无效
    fix_kind: Optional[EstimateKind] = None

    @property
    def has_fix(self) -> bool:
        return self.fix_kind is not None

    def published(self) -> Tuple[Optional[Position], Optional[EstimateKind]]:
        """对外发布的坐标及其来源方式"""
        if self.fix_kind is not None:
            return self.smoothed_position, self.fix_kind
        return self.raw_position, self.raw_kind

    def to_tag_position(self) -> Optional[TagPosition]:
        position, kind = self.published()
        if position is None or kind is None:
            return None
        return TagPosition(
            tag_id=self.tag_id,
            x=position.x,
            y=position.y,
            kind=kind,
            last_update=self.last_update,
        )


class TagLedger:
    """
    标签状态表：每个标签最近一次的各信标距离、原始/平滑位置与更新时间。

    所有修改操作在同一把锁内完成，recompute 不会读到半更新的距离表。
    """

    def __init__(
        self,
        anchors: Mapping[int, Anchor],
        smoothing_alpha: float = DEFAULT_ALPHA,
        trilateration_window_ms: int = 5000,
        eviction_window_ms: int = 10000,
    ):
        self._anchors = dict(anchors)
        self.smoothing_alpha = smoothing_alpha
        self.trilateration_window_ms = trilateration_window_ms
        self.eviction_window_ms = eviction_window_ms
        self._tags: Dict[str, TagState] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tags)

    def __contains__(self, tag_id: object) -> bool:
        with self._lock:
            return tag_id in self._tags

    # ---- Mutations ----
    def record_distance(self, tag_id: str, anchor_id: int, distance: float, observed_at: int) -> None:
        """覆盖写入该信标的距离（同一信标只保留最后一次）"""
        with self._lock:
            state = self._tags.get(tag_id)
            if state is None:
                state = TagState(tag_id=tag_id, last_update=observed_at)
                self._tags[tag_id] = state
                logger.info("新标签: %s", tag_id)
            state.distance_by_anchor[anchor_id] = DistanceSample(distance, observed_at)
            state.last_update = max(state.last_update, observed_at)

    def recompute(self, tag_id: str, now: Optional[int] = None) -> bool:
        """
        重新计算标签位置，返回对外发布的位置（坐标或来源方式）是否发生变化。
        - >=3 个有效距离：三边定位 + 平滑，同时更新 raw 与 smoothed
        - 1~2 个有效距离：raw 取最近信标坐标，smoothed 不变
        未知标签不做任何处理。
        """
        with self._lock:
            state = self._tags.get(tag_id)
            if state is None:
                return False
            if now is None:
                now = state.last_update

            estimate = estimate_position(self._valid_distances(state, now))
            if estimate is None:
                return False

            before = state.published()
            state.raw_position = estimate.position
            state.raw_kind = estimate.kind
            if estimate.is_fix:
                if state.has_fix:
                    state.smoothed_position = smooth(
                        state.smoothed_position, estimate.position, self.smoothing_alpha
                    )
                else:
                    state.smoothed_position = estimate.position
                state.fix_kind = estimate.kind
            logger.debug(
                "标签 %s 定位: (%.3f, %.3f), 方式: %s, 信标数: %d",
                tag_id,
                estimate.position.x,
                estimate.position.y,
                estimate.kind.value,
                estimate.anchor_count,
            )
            return before != state.published()

    def evict_stale(self, now: int) -> List[str]:
        """移除 now - last_update >= 驱逐窗口 的标签，返回被移除的标签ID"""
        with self._lock:
            stale = [
                tag_id
                for tag_id, state in self._tags.items()
                if now - state.last_update >= self.eviction_window_ms
            ]
            for tag_id in stale:
                del self._tags[tag_id]
            if stale:
                logger.info("移除过期标签: %s", ", ".join(stale))
            return stale

    # ---- Reads ----
    def get(self, tag_id: str) -> Optional[TagPosition]:
        with self._lock:
            state = self._tags.get(tag_id)
            return state.to_tag_position() if state else None

    def distances(self, tag_id: str) -> Dict[int, Tuple[float, int]]:
        with self._lock:
            state = self._tags.get(tag_id)
            if state is None:
                return {}
            return {a: (s.distance, s.observed_at) for a, s in state.distance_by_anchor.items()}

    def snapshot(self) -> Tuple[TagPosition, ...]:
        """所有已定位标签的不可变快照（按标签ID排序）"""
        with self._lock:
            positions = (state.to_tag_position() for state in self._tags.values())
            return tuple(sorted((p for p in positions if p is not None), key=lambda p: p.tag_id))

    # ---- Utils ----
    def _valid_distances(self, state: TagState, now: int) -> List[AnchorDistance]:
        result: List[AnchorDistance] = []
        for anchor_id, sample in state.distance_by_anchor.items():
            anchor = self._anchors.get(anchor_id)
            if anchor is None:
                continue
            if now - sample.observed_at >= self.trilateration_window_ms:
                continue
            result.append(AnchorDistance(x=anchor.x, y=anchor.y, distance=sample.distance))
        return result
