"""
URL Cache Store。

当前提供：
- `CacheRecord`：一条 signed URL 记录（url + 绝对过期时间 + 签发时间）
- `UrlCacheStore`：按 object key 存最新一条记录，所有访问都过同一把锁

说明：
- 纯内存，不做任何网络 I/O，`get` 永远不会阻塞在网络上
- 记录是 frozen dataclass，整条替换；读到的要么是旧记录要么是新记录
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheRecord:
    url: str
    expires_at: float
    issued_at: float


class UrlCacheStore:
    """按 object key 缓存 signed URL；时间源可注入，便于测试。"""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._records: dict[str, CacheRecord] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, object_key: str) -> str | None:
        with self._lock:
            record = self._records.get(object_key)
        return record.url if record is not None else None

    def get_record(self, object_key: str) -> CacheRecord | None:
        with self._lock:
            return self._records.get(object_key)

    def put(self, object_key: str, url: str, expires_at: float, issued_at: float | None = None) -> None:
        """无条件覆盖（last write wins）。"""
        record = CacheRecord(url=url, expires_at=expires_at, issued_at=self._clock() if issued_at is None else issued_at)
        with self._lock:
            self._records[object_key] = record
        logger.debug(f"Signed URL cached: key={object_key}, expires_at={expires_at}")

    def put_if_newer(self, object_key: str, url: str, expires_at: float, issued_at: float) -> bool:
        """
        只有当现有记录的签发时间不晚于 `issued_at` 时才写入。

        - 并发续签时，先发起、后返回的请求不会覆盖后发起的结果
        - 返回是否真正写入
        """
        record = CacheRecord(url=url, expires_at=expires_at, issued_at=issued_at)
        with self._lock:
            current = self._records.get(object_key)
            if current is not None and current.issued_at > issued_at:
                written = False
            else:
                self._records[object_key] = record
                written = True
        if written:
            logger.debug(f"Signed URL cached: key={object_key}, expires_at={expires_at}")
        else:
            logger.debug(f"Stale signed URL dropped: key={object_key}, issued_at={issued_at}")
        return written

    def expires_within(self, object_key: str, buffer_seconds: float) -> bool:
        """没有记录，或剩余有效期 <= buffer 时返回 True。"""
        with self._lock:
            record = self._records.get(object_key)
        if record is None:
            return True
        return record.expires_at - self._clock() <= buffer_seconds

    def discard(self, object_key: str) -> None:
        with self._lock:
            self._records.pop(object_key, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
