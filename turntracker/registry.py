"""有序回调注册表 (返回取消订阅句柄)"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class Subscribers:
    """有序回调集合

    按注册顺序调用; 某个回调抛出异常时记录日志，其余回调照常执行。
    """

    def __init__(self, name: str = "subscribers") -> None:
        self._name = name
        self._callbacks: list[Callable[..., Any]] = []

    def add(self, callback: Callable[..., Any]) -> Unsubscribe:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def publish(self, *args: Any) -> None:
        # 复制一份: 回调执行中可能取消自身订阅
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception("%s 回调 %r 执行失败", self._name, callback)

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)

    def __contains__(self, callback: object) -> bool:
        return callback in self._callbacks
