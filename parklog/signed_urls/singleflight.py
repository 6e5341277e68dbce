from __future__ import annotations

"""
Single-flight 守卫（最小版本）。

为什么需要这个模块：
- 后台 sweep 和用户触发的 on-demand refresh 可能同时续签同一条 entry
- 同一个 identifier 同时只允许一个签名请求在路上，其余调用直接让路
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class InFlightGuard:
    """互斥锁保护的 in-flight 集合；check + add 是原子的。"""

    def __init__(self) -> None:
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, identifier: str) -> bool:
        """尝试占用 identifier；已被占用则返回 False。"""
        if not identifier:
            raise ValueError("identifier must be non-empty")
        with self._lock:
            if identifier in self._in_flight:
                return False
            self._in_flight.add(identifier)
            return True

    def release(self, identifier: str) -> None:
        with self._lock:
            self._in_flight.discard(identifier)

    @contextmanager
    def hold(self, identifier: str) -> Iterator[bool]:
        """
        `with guard.hold(id) as claimed:`，claimed 为 False 表示已有请求在处理。

        占用成功时，无论正常退出还是抛错都会释放。
        """
        claimed = self.claim(identifier)
        try:
            yield claimed
        finally:
            if claimed:
                self.release(identifier)

    def is_in_flight(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._in_flight

    def clear(self) -> None:
        with self._lock:
            self._in_flight.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)
