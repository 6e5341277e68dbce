"""
Signed URL 签发 / 续签（核心流程）。

关键思想：
- **签名失败不致命**：一张图片拿不到 URL 不应该影响整本游记的展示，所以这里只返回结果、不往外抛
- **失败不覆盖**：签名失败时缓存里的旧 URL 原样保留（哪怕已经快过期）
- **single-flight**：续签按 entry id 去重，sweep 与 on-demand 同时到达时只发一次签名请求

三个入口：
- `attach`：首次加载时批量签发（不经过 single-flight）
- `refresh_entries`：sweep 用的批量续签，结果收齐后一次性写回 entry set
- `refresh_entry`：展示前的按需续签
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass

import anyio

from parklog.journal.entry_set import EntrySet
from parklog.journal.models import JournalEntry
from parklog.signed_urls.cache import UrlCacheStore
from parklog.signed_urls.gateway import SigningError
from parklog.signed_urls.gateway import SigningGateway
from parklog.signed_urls.singleflight import InFlightGuard

logger = logging.getLogger(__name__)


class RefreshOutcome(str, enum.Enum):
    REFRESHED = "refreshed"
    FAILED = "failed"
    # 同一个 identifier 已有请求在处理，本次直接让路
    DEFERRED = "deferred"
    # 没有 object key，无事可做
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RefreshResult:
    entry_id: str
    outcome: RefreshOutcome
    url: str | None = None


class SignedUrlRefresher:
    """持有 gateway / cache / guard / entry set，提供签发与续签操作。"""

    def __init__(
        self,
        gateway: SigningGateway,
        cache: UrlCacheStore,
        guard: InFlightGuard,
        entries: EntrySet,
        ttl_seconds: int,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._gateway = gateway
        self._cache = cache
        self._guard = guard
        self._entries = entries
        self._ttl_seconds = ttl_seconds

    @property
    def cache(self) -> UrlCacheStore:
        return self._cache

    @property
    def guard(self) -> InFlightGuard:
        return self._guard

    @property
    def entries(self) -> EntrySet:
        return self._entries

    async def mint(self, object_key: str) -> str | None:
        """
        为一个 object key 签发 URL 并写入缓存。

        - 成功：expires_at = 签发时刻 + ttl，返回 URL
        - 失败：缓存不动，返回 None
        """
        issued_at = self._cache.now()
        try:
            url = await self._gateway.sign(object_key, self._ttl_seconds)
        except SigningError as exc:
            logger.warning(f"Signed URL mint failed: key={object_key}, reason={exc.reason}")
            return None
        except Exception:
            # gateway 实现抛出的其它异常同样只影响这一张图片
            logger.exception(f"Signed URL gateway error: key={object_key}")
            return None
        if not url:
            logger.warning(f"Signed URL mint returned empty URL: key={object_key}")
            return None
        self._cache.put_if_newer(
            object_key,
            url=url,
            expires_at=issued_at + self._ttl_seconds,
            issued_at=issued_at,
        )
        # 并发续签时以缓存里签发最晚的那条为准
        return self._cache.get(object_key) or url

    async def try_refresh(self, identifier: str, object_key: str | None) -> RefreshResult:
        """同一个 identifier 同时只允许一次续签；占用在任何退出路径上都会释放。"""
        if not object_key:
            return RefreshResult(entry_id=identifier, outcome=RefreshOutcome.SKIPPED)
        with self._guard.hold(identifier) as claimed:
            if not claimed:
                logger.debug(f"Signed URL refresh already in flight: entry={identifier}")
                return RefreshResult(entry_id=identifier, outcome=RefreshOutcome.DEFERRED)
            url = await self.mint(object_key)
        if url is None:
            return RefreshResult(entry_id=identifier, outcome=RefreshOutcome.FAILED)
        return RefreshResult(entry_id=identifier, outcome=RefreshOutcome.REFRESHED, url=url)

    async def refresh_entries(self, entries: Sequence[JournalEntry]) -> list[RefreshResult]:
        """
        并发续签一批 entry，全部完成后再一次性写回 entry set。

        避免读者看到“部分更新”的中间状态。
        """
        if not entries:
            return []
        results: list[RefreshResult | None] = [None] * len(entries)

        async def _refresh_one(index: int, entry: JournalEntry) -> None:
            results[index] = await self.try_refresh(entry.id, entry.image_path)

        async with anyio.create_task_group() as tg:
            for index, entry in enumerate(entries):
                tg.start_soon(_refresh_one, index, entry)

        # 续签期间 entry 被移除（或会话已关闭）：不把记录留在缓存里
        for index, entry in enumerate(entries):
            result = results[index]
            if result is None or result.outcome is not RefreshOutcome.REFRESHED or not entry.image_path:
                continue
            if not self._entries.object_key_in_use(entry.image_path):
                self._cache.discard(entry.image_path)
                results[index] = RefreshResult(entry_id=entry.id, outcome=RefreshOutcome.SKIPPED)

        collected = [r for r in results if r is not None]
        updates = {r.entry_id: r.url for r in collected if r.outcome is RefreshOutcome.REFRESHED and r.url}
        self._entries.apply_image_urls(updates)
        return collected

    async def refresh_entry(self, entry_id: str) -> RefreshResult:
        """按需续签：展示某条 entry 之前调用；重复调用最多只会有一次签名请求在路上。"""
        entry = self._entries.get(entry_id)
        if entry is None or not entry.has_image:
            return RefreshResult(entry_id=entry_id, outcome=RefreshOutcome.SKIPPED)
        results = await self.refresh_entries([entry])
        return results[0]

    async def attach(self, entries: Sequence[JournalEntry]) -> list[JournalEntry]:
        """
        首次加载：并发为每条带 object key 的 entry 签发一次 URL。

        - 返回顺序与输入一致
        - 签发失败的 entry 原样返回（没有可展示的 URL），不抛错
        """
        signed: list[JournalEntry] = list(entries)

        async def _attach_one(index: int, entry: JournalEntry) -> None:
            if not entry.image_path:
                return
            url = await self.mint(entry.image_path)
            if url is not None:
                signed[index] = entry.model_copy(update={"image_url": url})

        async with anyio.create_task_group() as tg:
            for index, entry in enumerate(entries):
                if entry.has_image:
                    tg.start_soon(_attach_one, index, entry)

        attached = sum(1 for before, after in zip(entries, signed, strict=True) if before is not after)
        logger.info(f"Signed URLs attached: {attached}/{sum(1 for e in entries if e.has_image)} entries with images")
        return signed
