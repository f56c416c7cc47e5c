from __future__ import annotations

from .models import Position

DEFAULT_ALPHA = 0.6


def smooth(previous_smoothed: Position, new_raw: Position, alpha: float = DEFAULT_ALPHA) -> Position:
    """
    指数移动平均滤波：smoothed' = alpha * previous + (1 - alpha) * raw
    alpha 越大越平稳，越小响应越快。
    """
    return Position(
        x=alpha * previous_smoothed.x + (1 - alpha) * new_raw.x,
        y=alpha * previous_smoothed.y + (1 - alpha) * new_raw.y,
    )
