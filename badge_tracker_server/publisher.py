from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from .models import TagPosition


logger = logging.getLogger(__name__)

ROLE_WEB = "web"
ROLE_MOBILE = "mobile"
ROLE_ESP32 = "esp32"
ROLES = (ROLE_WEB, ROLE_MOBILE, ROLE_ESP32)


class SubscriberClosed(Exception):
    """订阅者连接已关闭"""


class Subscriber(Protocol):
    def send(self, message: str) -> None: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_positions(
    message_type: str,
    positions: Iterable[TagPosition],
    removed: Iterable[str] = (),
    timestamp: Optional[int] = None,
) -> str:
    return json.dumps(
        {
            "type": message_type,
            "positions": [
                {"tag_id": p.tag_id, "x": p.x, "y": p.y, "kind": p.kind.value} for p in positions
            ],
            "removed": list(removed),
            "timestamp": timestamp if timestamp is not None else _now_ms(),
        },
        ensure_ascii=False,
    )


class Publisher:
    """按角色向订阅者推送位置更新；发送失败的订阅者自动注销"""

    def __init__(
        self,
        snapshot_provider: Callable[[], Sequence[TagPosition]],
        roles: Iterable[str] = (ROLE_WEB, ROLE_MOBILE),
    ):
        self._snapshot_provider = snapshot_provider
        self.broadcast_roles = frozenset(roles)
        self._subscribers: Dict[Subscriber, str] = {}
        self._lock = threading.Lock()

    def register(self, subscriber: Subscriber, role: str = ROLE_WEB) -> bool:
        """注册订阅者；推送角色的订阅者立即收到完整快照"""
        if role not in ROLES:
            raise ValueError(f"未知订阅者角色: {role}")
        with self._lock:
            self._subscribers[subscriber] = role
        logger.info("订阅者已连接: %s (总数: %d)", role, self.subscriber_count())
        if role not in self.broadcast_roles:
            return True
        message = encode_positions("snapshot", self._snapshot_provider())
        return self._deliver(subscriber, message)

    def unregister(self, subscriber: Subscriber) -> None:
        with self._lock:
            role = self._subscribers.pop(subscriber, None)
        if role is not None:
            logger.info("订阅者已断开: %s (剩余: %d)", role, self.subscriber_count())

    def subscriber_count(self, role: Optional[str] = None) -> int:
        with self._lock:
            if role is None:
                return len(self._subscribers)
            return sum(1 for r in self._subscribers.values() if r == role)

    def broadcast(self, positions: Sequence[TagPosition], removed: Sequence[str] = ()) -> int:
        """推送位置更新，返回成功送达的订阅者数量"""
        with self._lock:
            targets: List[Subscriber] = [
                s for s, role in self._subscribers.items() if role in self.broadcast_roles
            ]
        if not targets:
            return 0
        message = encode_positions("position_update", positions, removed)
        return sum(1 for s in targets if self._deliver(s, message))

    def _deliver(self, subscriber: Subscriber, message: str) -> bool:
        if getattr(subscriber, "closed", False):
            self.unregister(subscriber)
            return False
        try:
            subscriber.send(message)
        except (SubscriberClosed, ConnectionError, OSError) as e:
            logger.info("订阅者不可达，已注销: %s", e)
            self.unregister(subscriber)
            return False
        return True
