from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, List, Mapping
from enum import Enum


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class Anchor:
    id: int
    x: float
    y: float


@dataclass(frozen=True)
class AnchorDistance:
    """三边定位输入：信标坐标 + 估算距离"""

    x: float
    y: float
    distance: float


class EstimateKind(Enum):
    EXACT = "exact"
    FALLBACK = "fallback"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class PositionEstimate:
    kind: EstimateKind
    position: Position
    anchor_count: int = 0

    @property
    def is_fix(self) -> bool:
        # 只有三边定位（含质心回退）的结果才进入平滑
        return self.kind is not EstimateKind.DEGRADED


@dataclass(frozen=True)
class TagPosition:
    """对外发布的标签位置（不可变快照）"""

    tag_id: str
    x: float
    y: float
    kind: EstimateKind
    last_update: int

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d


class ReadingParseError(ValueError):
    pass


class ReportParseError(ValueError):
    pass


def _strength(value: Any) -> int:
    # bool 是 int 的子类，这里单独排除
    if isinstance(value, bool) or value is None:
        raise ReadingParseError(f"信号强度无效: {value!r}")
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ReadingParseError(f"信号强度无效: {value!r}") from exc


def normalize_tag_id(token: Any, prefix: str = "BADGE_") -> Optional[str]:
    """标签标识规整：去空白、去前缀；空值或 "None" 返回 None"""
    if not isinstance(token, str):
        return None
    token = token.strip()
    if not token or token == "None":
        return None
    if prefix and token.startswith(prefix):
        token = token[len(prefix):].strip()
    return token or None


@dataclass(frozen=True)
class BadgeReading:
    tag_id: str
    anchor_id: int
    signal_strength: int
    observed_at: int

    @classmethod
    def from_payload(
        cls,
        raw: Any,
        anchor_id: int,
        observed_at: int,
        tag_prefix: str = "BADGE_",
    ) -> "BadgeReading":
        if not isinstance(raw, Mapping):
            raise ReadingParseError(f"读数不是对象: {raw!r}")
        token = raw.get("tag_id", raw.get("tagId", raw.get("ssid")))
        tag_id = normalize_tag_id(token, tag_prefix)
        if tag_id is None:
            raise ReadingParseError(f"缺少标签标识: {token!r}")
        strength = raw.get("signal_strength", raw.get("signalStrength", raw.get("rssi")))
        return cls(
            tag_id=tag_id,
            anchor_id=anchor_id,
            signal_strength=_strength(strength),
            observed_at=observed_at,
        )


@dataclass(frozen=True)
class AnchorReport:
    """
    信标上报
    格式：{"anchor_id": 1, "anchor_x": 0.0, "anchor_y": 0.0, "badges": [{"ssid", "mac", "rssi"}, ...]}
    """

    anchor_id: int
    anchor_x: Optional[float]
    anchor_y: Optional[float]
    readings: List[Any]

    def __len__(self) -> int:
        return len(self.readings)

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "AnchorReport":
        if not isinstance(data, Mapping):
            raise ReportParseError("上报内容不是对象")
        raw_id = data.get("anchor_id", data.get("anchorId"))
        if raw_id is None or isinstance(raw_id, bool):
            raise ReportParseError("缺少 anchor_id")
        try:
            anchor_id = int(raw_id)
        except (TypeError, ValueError) as exc:
            raise ReportParseError(f"anchor_id 无效: {raw_id!r}") from exc

        readings = data.get("badges", data.get("readings")) or []
        if not isinstance(readings, list):
            raise ReportParseError("badges 必须是列表")
        return cls(
            anchor_id=anchor_id,
            anchor_x=_optional_float(data.get("anchor_x", data.get("anchorX"))),
            anchor_y=_optional_float(data.get("anchor_y", data.get("anchorY"))),
            readings=readings,
        )


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
