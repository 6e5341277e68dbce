"""
会话（Session）装配：把 signed URL 缓存的各个组件绑到一个用户会话上。

职责：
- `JournalSession`：一个用户的 entry set + cache + guard + refresher + sweep scheduler
  - `start` 首次加载并签发 URL，然后（有图片时）启动后台 sweep
  - `close` 停止 sweep、清空缓存与 in-flight 集合；会话之间不共享任何状态
- `SessionRegistry`：按 user_id 管理会话，持有一个长生命周期的 task group 给 sweep 循环用

注意：
- 缓存只在会话内有效，每次 `open` 都从数据源重新构建
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Protocol

import anyio
from anyio.abc import TaskGroup

from parklog.config import SignedUrlConfig
from parklog.journal.entry_set import EntrySet
from parklog.journal.models import JournalEntry
from parklog.signed_urls.cache import Clock
from parklog.signed_urls.cache import UrlCacheStore
from parklog.signed_urls.gateway import SigningGateway
from parklog.signed_urls.refresher import RefreshResult
from parklog.signed_urls.refresher import SignedUrlRefresher
from parklog.signed_urls.scheduler import ExpirySweepScheduler
from parklog.signed_urls.singleflight import InFlightGuard

logger = logging.getLogger(__name__)


class EntrySource(Protocol):
    """entry 数据源协议（生产上是 Supabase REST，测试里是内存桩）。"""

    async def list_entries(self, user_id: str) -> list[JournalEntry]: ...


class JournalSession:
    def __init__(
        self,
        user_id: str,
        gateway: SigningGateway,
        config: SignedUrlConfig,
        task_group: TaskGroup,
        clock: Clock = time.time,
    ) -> None:
        self.user_id = user_id
        self.entries = EntrySet()
        self.cache = UrlCacheStore(clock=clock)
        self.guard = InFlightGuard()
        self.refresher = SignedUrlRefresher(
            gateway=gateway,
            cache=self.cache,
            guard=self.guard,
            entries=self.entries,
            ttl_seconds=config.ttl_seconds,
        )
        self.scheduler = ExpirySweepScheduler(
            refresher=self.refresher,
            entries=self.entries,
            interval_seconds=config.refresh_interval_seconds,
            buffer_seconds=config.refresh_buffer_seconds,
        )
        self._task_group = task_group
        self._sweep_starting = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self, entries: Sequence[JournalEntry]) -> list[JournalEntry]:
        """首次加载：签发完所有 URL（成功或失败）之后才返回。"""
        self._ensure_open()
        signed = await self.refresher.attach(entries)
        if self._closed:
            self._drop_keys(signed)
            return signed
        self.entries.replace(signed)
        await self._ensure_sweeping()
        logger.info(f"Journal session started: user={self.user_id}, entries={len(signed)}")
        return signed

    async def add_entry(self, entry: JournalEntry) -> JournalEntry:
        """新建的 entry：单条签发后插到最前面，必要时启动 sweep。"""
        self._ensure_open()
        signed = (await self.refresher.attach([entry]))[0]
        if self._closed:
            self._drop_keys([signed])
            return signed
        self.entries.prepend(signed)
        await self._ensure_sweeping()
        return signed

    def remove_entry(self, entry_id: str) -> bool:
        """从会话里移除 entry；没有其它 entry 引用同一个 object key 时顺带丢掉缓存记录。"""
        removed = self.entries.remove(entry_id)
        if removed is None:
            return False
        if removed.image_path and not self.entries.object_key_in_use(removed.image_path):
            self.cache.discard(removed.image_path)
        if not self.entries.has_object_keys():
            # 最后一张图片被移除，定时器没有继续跑的必要
            self.scheduler.stop()
        return True

    async def refresh_entry(self, entry_id: str) -> RefreshResult:
        self._ensure_open()
        return await self.refresher.refresh_entry(entry_id)

    def snapshot(self) -> list[JournalEntry]:
        return self.entries.snapshot()

    def close(self) -> None:
        """停止 sweep 并释放缓存 / in-flight 集合（幂等）。"""
        if self._closed:
            return
        self._closed = True
        self.scheduler.stop()
        self.entries.replace([])
        self.cache.clear()
        self.guard.clear()
        logger.info(f"Journal session closed: user={self.user_id}")

    async def _ensure_sweeping(self) -> None:
        # 没有任何带图片的 entry 时不启动定时器
        if self._closed or self._sweep_starting or self.scheduler.running or not self.entries.has_object_keys():
            return
        self._sweep_starting = True
        try:
            await self._task_group.start(self.scheduler.run)
        finally:
            self._sweep_starting = False

    def _drop_keys(self, entries: Sequence[JournalEntry]) -> None:
        for entry in entries:
            if entry.image_path and not self.entries.object_key_in_use(entry.image_path):
                self.cache.discard(entry.image_path)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Journal session for {self.user_id} is closed")


@asynccontextmanager
async def open_session(
    user_id: str,
    gateway: SigningGateway,
    config: SignedUrlConfig,
    clock: Clock = time.time,
) -> AsyncIterator[JournalSession]:
    """独立使用一个会话：`async with open_session(...) as session:`，退出时自动 close。"""
    async with anyio.create_task_group() as tg:
        session = JournalSession(user_id=user_id, gateway=gateway, config=config, task_group=tg, clock=clock)
        try:
            yield session
        finally:
            session.close()


class SessionRegistry:
    """
    按 user_id 管理会话。

    - 必须在 `async with registry:` 内使用（提供 sweep 循环所在的 task group）
    - 同一用户重复 `open` 会先关闭旧会话，再从数据源重建
    """

    def __init__(
        self,
        gateway: SigningGateway,
        entry_source: EntrySource,
        config: SignedUrlConfig,
        clock: Clock = time.time,
    ) -> None:
        self._gateway = gateway
        self._entry_source = entry_source
        self._config = config
        self._clock = clock
        self._sessions: dict[str, JournalSession] = {}
        self._open_locks: dict[str, anyio.Lock] = {}
        self._stack: AsyncExitStack | None = None
        self._task_group: TaskGroup | None = None

    async def __aenter__(self) -> SessionRegistry:
        self._stack = AsyncExitStack()
        self._task_group = await self._stack.enter_async_context(anyio.create_task_group())
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close_all()
        stack = self._stack
        self._stack = None
        self._task_group = None
        if stack is not None:
            await stack.aclose()

    async def open(self, user_id: str) -> JournalSession:
        if self._task_group is None:
            raise RuntimeError("SessionRegistry must be entered before opening sessions")
        if not user_id:
            raise ValueError("user_id must be non-empty")
        lock = self._open_locks.setdefault(user_id, anyio.Lock())
        # 同一用户的 open 串行执行，避免两个会话同时挂着 sweep
        async with lock:
            self.close(user_id)
            entries = await self._entry_source.list_entries(user_id)
            session = JournalSession(
                user_id=user_id,
                gateway=self._gateway,
                config=self._config,
                task_group=self._task_group,
                clock=self._clock,
            )
            previous = self._sessions.get(user_id)
            if previous is not None:
                previous.close()
            self._sessions[user_id] = session
            await session.start(entries)
            return session

    def get(self, user_id: str) -> JournalSession | None:
        return self._sessions.get(user_id)

    def close(self, user_id: str) -> bool:
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for user_id in list(self._sessions):
            self.close(user_id)

    def __len__(self) -> int:
        return len(self._sessions)
