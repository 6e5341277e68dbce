from __future__ import annotations

import anyio
import pytest

from parklog.config import SignedUrlConfig
from parklog.journal.entry_set import EntrySet
from parklog.journal.models import JournalEntry
from parklog.signed_urls.cache import UrlCacheStore
from parklog.signed_urls.gateway import SigningError
from parklog.signed_urls.refresher import SignedUrlRefresher
from parklog.signed_urls.singleflight import InFlightGuard

TTL = 86400
BUFFER = 600
INTERVAL = 900


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeGateway:
    """
    测试用 signing gateway。

    - calls: 每次 sign 的 (object_key, duration)
    - fail_keys: 这些 key 签名失败（SigningError）
    - crash_keys: 这些 key 抛出非 SigningError 的异常
    - gate: 设置后，sign 会在返回前等待该 Event
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []
        self.fail_keys: set[str] = set()
        self.crash_keys: set[str] = set()
        self.gate: anyio.Event | None = None
        self._counter = 0

    async def sign(self, object_key: str, duration_seconds: int) -> str:
        self.calls.append((object_key, duration_seconds))
        self._counter += 1
        version = self._counter
        if self.gate is not None:
            await self.gate.wait()
        if object_key in self.crash_keys:
            raise RuntimeError("storage SDK blew up")
        if object_key in self.fail_keys:
            raise SigningError(object_key, "Object not found")
        return f"https://cdn.test/{object_key}?v={version}"

    def keys(self) -> list[str]:
        return [key for key, _ in self.calls]


async def wait_for_calls(gateway: FakeGateway, count: int) -> None:
    with anyio.fail_after(1):
        while len(gateway.calls) < count:
            await anyio.sleep(0)


def make_entry(entry_id: str, image_path: str | None = None, image_url: str | None = None) -> JournalEntry:
    return JournalEntry(
        id=entry_id,
        park_id="yose",
        visit_date="2024-06-01",
        notes=None,
        image_url=image_url,
        image_path=image_path,
        created_at="2024-06-02T10:00:00Z",
    )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def signed_url_config() -> SignedUrlConfig:
    return SignedUrlConfig(ttl_seconds=TTL, refresh_buffer_seconds=BUFFER, refresh_interval_seconds=INTERVAL)


@pytest.fixture
def entry_set() -> EntrySet:
    return EntrySet()


@pytest.fixture
def refresher(gateway: FakeGateway, clock: FakeClock, entry_set: EntrySet) -> SignedUrlRefresher:
    return SignedUrlRefresher(
        gateway=gateway,
        cache=UrlCacheStore(clock=clock),
        guard=InFlightGuard(),
        entries=entry_set,
        ttl_seconds=TTL,
    )
