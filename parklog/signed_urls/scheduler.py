"""
Expiry Sweep Scheduler（后台周期续签）。

做法：
- 每隔 interval 秒起一次 sweep：只挑出“没有缓存记录或剩余有效期 <= buffer”的 entry
- 每次 sweep 单独起一个 task，慢的签名请求不会拖住下一次 tick（重叠部分由 single-flight 去重）
- `stop()` 取消循环以及所有还在跑的 sweep，避免会话结束后继续调用 gateway
"""

from __future__ import annotations

import logging

import anyio
from anyio.abc import TaskStatus

from parklog.journal.entry_set import EntrySet
from parklog.journal.models import JournalEntry
from parklog.signed_urls.refresher import RefreshOutcome
from parklog.signed_urls.refresher import RefreshResult
from parklog.signed_urls.refresher import SignedUrlRefresher

logger = logging.getLogger(__name__)


class ExpirySweepScheduler:
    def __init__(
        self,
        refresher: SignedUrlRefresher,
        entries: EntrySet,
        interval_seconds: float,
        buffer_seconds: float,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if buffer_seconds < 0:
            raise ValueError("buffer_seconds must be >= 0")
        self._refresher = refresher
        self._entries = entries
        self._interval_seconds = interval_seconds
        self._buffer_seconds = buffer_seconds
        self._cancel_scope: anyio.CancelScope | None = None

    @property
    def running(self) -> bool:
        return self._cancel_scope is not None

    def due_entries(self) -> list[JournalEntry]:
        """需要续签的 entry：带 object key 且缓存记录在 buffer 内过期（或没有记录）。"""
        cache = self._refresher.cache
        return [
            entry
            for entry in self._entries.keyed_entries()
            if entry.image_path and cache.expires_within(entry.image_path, self._buffer_seconds)
        ]

    async def sweep_once(self) -> list[RefreshResult]:
        """执行一次 sweep；没有带 object key 的 entry 时直接返回，不发任何签名请求。"""
        if not self._entries.has_object_keys():
            return []
        due = self.due_entries()
        if not due:
            return []
        results = await self._refresher.refresh_entries(due)
        refreshed = sum(1 for r in results if r.outcome is RefreshOutcome.REFRESHED)
        failed = sum(1 for r in results if r.outcome is RefreshOutcome.FAILED)
        deferred = sum(1 for r in results if r.outcome is RefreshOutcome.DEFERRED)
        logger.info(
            f"Signed URL sweep: due={len(due)}, refreshed={refreshed}, failed={failed}, deferred={deferred}"
        )
        return results

    async def run(self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        """
        周期循环，直到 `stop()` 或外层 task group 被取消。

        用法：`await task_group.start(scheduler.run)`
        """
        async with anyio.create_task_group() as tg:
            self._cancel_scope = tg.cancel_scope
            logger.info(f"Signed URL sweep started: interval={self._interval_seconds}s, buffer={self._buffer_seconds}s")
            task_status.started()
            try:
                while True:
                    await anyio.sleep(self._interval_seconds)
                    tg.start_soon(self.sweep_once)
            finally:
                if self._cancel_scope is tg.cancel_scope:
                    self._cancel_scope = None
                logger.info("Signed URL sweep stopped")

    def stop(self) -> None:
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()
            self._cancel_scope = None
