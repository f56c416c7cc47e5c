from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from .models import AnchorDistance, EstimateKind, Position, PositionEstimate

# 行列式阈值，小于该值视为信标近似共线
SINGULAR_EPSILON = 1e-4
# 加权质心的最小距离，避免除零
MIN_WEIGHT_DISTANCE = 0.1


def estimate_distance(
    signal_strength: int,
    reference_strength: float = -59.0,
    path_loss_exponent: float = 2.0,
) -> float:
    """
    对数路径损耗模型：RSSI -> 距离（米）
    rssi == 0 视为无效读数，返回 -1.0
    """
    if signal_strength == 0:
        return -1.0
    exponent = (reference_strength - signal_strength) / (10.0 * path_loss_exponent)
    return math.pow(10, exponent)


def weighted_centroid(anchor_distances: Sequence[AnchorDistance]) -> Position:
    """反距离加权质心"""
    weights = np.array([1.0 / max(a.distance, MIN_WEIGHT_DISTANCE) for a in anchor_distances])
    xs = np.array([a.x for a in anchor_distances])
    ys = np.array([a.y for a in anchor_distances])
    return Position(
        x=float(np.average(xs, weights=weights)),
        y=float(np.average(ys, weights=weights)),
    )


def nearest_anchor(anchor_distances: Sequence[AnchorDistance]) -> Position:
    nearest = min(anchor_distances, key=lambda a: a.distance)
    return Position(x=nearest.x, y=nearest.y)


def trilaterate(anchor_distances: Sequence[AnchorDistance]) -> PositionEstimate:
    """
    线性三边定位（二维，闭式解）
    按距离升序排序后 a1 为最近信标；两两圆方程相减得到线性方程组：
        A*x + B*y = C
        D*x + E*y = F
    行列式接近 0（信标近似共线）时回退为反距离加权质心。
    """
    if len(anchor_distances) != 3:
        raise ValueError(f"三边定位需要 3 个信标，实际 {len(anchor_distances)} 个")

    a1, a2, a3 = sorted(anchor_distances, key=lambda a: a.distance)

    A = 2 * (a2.x - a1.x)
    B = 2 * (a2.y - a1.y)
    C = a1.distance**2 - a2.distance**2 - a1.x**2 + a2.x**2 - a1.y**2 + a2.y**2
    D = 2 * (a3.x - a2.x)
    E = 2 * (a3.y - a2.y)
    F = a2.distance**2 - a3.distance**2 - a2.x**2 + a3.x**2 - a2.y**2 + a3.y**2

    denom1 = E * A - B * D
    denom2 = B * D - A * E

    if abs(denom1) < SINGULAR_EPSILON or abs(denom2) < SINGULAR_EPSILON:
        return PositionEstimate(
            kind=EstimateKind.FALLBACK,
            position=weighted_centroid((a1, a2, a3)),
            anchor_count=3,
        )

    return PositionEstimate(
        kind=EstimateKind.EXACT,
        position=Position(x=(C * E - F * B) / denom1, y=(C * D - A * F) / denom2),
        anchor_count=3,
    )


def estimate_position(anchor_distances: Sequence[AnchorDistance]) -> Optional[PositionEstimate]:
    """根据有效信标数选择定位方式：
    - 0 个信标：None
    - 1~2 个信标：最近信标坐标（降级）
    - >=3 个信标：取最近的 3 个做三边定位
    """
    if not anchor_distances:
        return None
    if len(anchor_distances) < 3:
        return PositionEstimate(
            kind=EstimateKind.DEGRADED,
            position=nearest_anchor(anchor_distances),
            anchor_count=len(anchor_distances),
        )
    closest = sorted(anchor_distances, key=lambda a: a.distance)[:3]
    estimate = trilaterate(closest)
    return PositionEstimate(
        kind=estimate.kind,
        position=estimate.position,
        anchor_count=len(anchor_distances),
    )


class PositionCalculator:
    """基于RSSI的标签定位算法（参数来自配置）"""

    def __init__(self, tx_power: float = -59.0, path_loss_exponent: float = 2.0):
        # 1米处的RSSI值 (dBm)
        self.tx_power = tx_power
        # 路径损耗指数
        self.path_loss_exponent = path_loss_exponent

    @classmethod
    def from_config(cls, path_loss_config: dict) -> "PositionCalculator":
        return cls(
            tx_power=float(path_loss_config.get("tx_power", -59.0)),
            path_loss_exponent=float(path_loss_config.get("path_loss_exponent", 2.0)),
        )

    def rssi_to_distance(self, rssi: int) -> float:
        return estimate_distance(rssi, self.tx_power, self.path_loss_exponent)
