from __future__ import annotations

import anyio
import pytest
from conftest import FakeClock
from conftest import FakeGateway
from conftest import make_entry
from conftest import wait_for_calls

from parklog.config import SignedUrlConfig
from parklog.journal.models import JournalEntry
from parklog.session import JournalSession
from parklog.session import SessionRegistry
from parklog.session import open_session


class InMemoryEntrySource:
    def __init__(self, entries_by_user: dict[str, list[JournalEntry]]) -> None:
        self.entries_by_user = entries_by_user
        self.loads: list[str] = []

    async def list_entries(self, user_id: str) -> list[JournalEntry]:
        self.loads.append(user_id)
        return list(self.entries_by_user.get(user_id, []))


@pytest.mark.anyio
async def test_session_start_attaches_urls_and_starts_sweeping(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    async with open_session("u1", gateway=gateway, config=signed_url_config, clock=clock) as session:
        signed = await session.start([make_entry("E1", image_path="k1"), make_entry("E2")])
        assert signed[0].image_url == "https://cdn.test/k1?v=1"
        assert session.snapshot() == signed
        assert session.scheduler.running
    assert session.closed
    assert not session.scheduler.running
    assert len(session.cache) == 0
    assert len(session.guard) == 0


@pytest.mark.anyio
async def test_session_without_images_does_not_start_sweeping(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    async with open_session("u1", gateway=gateway, config=signed_url_config, clock=clock) as session:
        await session.start([make_entry("E1"), make_entry("E2")])
        assert not session.scheduler.running
        assert gateway.calls == []

        added = await session.add_entry(make_entry("E3", image_path="k3"))
        assert added.image_url is not None
        assert session.snapshot()[0].id == "E3"
        assert session.scheduler.running


@pytest.mark.anyio
async def test_remove_entry_drops_cache_record_when_unused(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    async with open_session("u1", gateway=gateway, config=signed_url_config, clock=clock) as session:
        await session.start(
            [
                make_entry("E1", image_path="shared"),
                make_entry("E2", image_path="shared"),
                make_entry("E3", image_path="k3"),
            ]
        )
        assert session.remove_entry("E1")
        assert session.cache.get("shared") is not None
        assert session.remove_entry("E2")
        assert session.cache.get("shared") is None
        assert not session.remove_entry("missing")


@pytest.mark.anyio
async def test_closed_session_rejects_refresh(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    async with open_session("u1", gateway=gateway, config=signed_url_config, clock=clock) as session:
        await session.start([make_entry("E1", image_path="k1")])
        session.close()
        with pytest.raises(RuntimeError):
            await session.refresh_entry("E1")


@pytest.mark.anyio
async def test_registry_open_get_close(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    source = InMemoryEntrySource({"u1": [make_entry("E1", image_path="k1")]})
    registry = SessionRegistry(gateway=gateway, entry_source=source, config=signed_url_config, clock=clock)

    async with registry:
        first = await registry.open("u1")
        assert registry.get("u1") is first
        assert first.snapshot()[0].image_url is not None

        # 重新登录：旧会话关闭，缓存从数据源重建
        second = await registry.open("u1")
        assert first.closed
        assert second is not first
        assert source.loads == ["u1", "u1"]

        assert registry.close("u1") is True
        assert registry.close("u1") is False
        assert second.closed

        third = await registry.open("u1")
    assert third.closed
    assert len(registry) == 0


@pytest.mark.anyio
async def test_registry_requires_context(gateway: FakeGateway, signed_url_config: SignedUrlConfig) -> None:
    registry = SessionRegistry(gateway=gateway, entry_source=InMemoryEntrySource({}), config=signed_url_config)
    with pytest.raises(RuntimeError):
        await registry.open("u1")


class GatedEntrySource(InMemoryEntrySource):
    """list_entries 在 gate 打开之前一直挂起，用来制造并发 open。"""

    def __init__(self, entries_by_user: dict[str, list[JournalEntry]]) -> None:
        super().__init__(entries_by_user)
        self.gate = anyio.Event()

    async def list_entries(self, user_id: str) -> list[JournalEntry]:
        self.loads.append(user_id)
        await self.gate.wait()
        return list(self.entries_by_user.get(user_id, []))


@pytest.mark.anyio
async def test_registry_open_survives_unexpected_gateway_exception(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    gateway.crash_keys.add("bad")
    source = InMemoryEntrySource({"u1": [make_entry("E1", image_path="good"), make_entry("E2", image_path="bad")]})
    registry = SessionRegistry(gateway=gateway, entry_source=source, config=signed_url_config, clock=clock)

    with anyio.fail_after(2):
        async with registry:
            session = await registry.open("u1")
            entries = session.snapshot()
            assert entries[0].image_url is not None
            assert entries[1].image_url is None
            assert session.scheduler.running


@pytest.mark.anyio
async def test_registry_concurrent_opens_leave_one_live_session(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    source = GatedEntrySource({"u1": [make_entry("E1", image_path="k1")]})
    registry = SessionRegistry(gateway=gateway, entry_source=source, config=signed_url_config, clock=clock)
    opened: list[JournalSession] = []

    async def _open() -> None:
        opened.append(await registry.open("u1"))

    with anyio.fail_after(2):
        async with registry:
            async with anyio.create_task_group() as tg:
                tg.start_soon(_open)
                tg.start_soon(_open)
                while not source.loads:
                    await anyio.sleep(0)
                source.gate.set()

            assert len(opened) == 2
            live = [s for s in opened if not s.closed]
            assert live == [registry.get("u1")]
            assert [s.scheduler.running for s in opened if s.closed] == [False]

            registry.close("u1")
            assert all(s.closed for s in opened)
            assert not any(s.scheduler.running for s in opened)


@pytest.mark.anyio
async def test_sweep_stops_when_last_image_entry_removed(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    async with open_session("u1", gateway=gateway, config=signed_url_config, clock=clock) as session:
        await session.start([make_entry("E1", image_path="k1"), make_entry("E2")])
        assert session.scheduler.running

        session.remove_entry("E1")
        assert not session.scheduler.running

        await session.add_entry(make_entry("E3", image_path="k3"))
        assert session.scheduler.running


@pytest.mark.anyio
async def test_close_during_initial_attach_leaves_cache_empty(
    gateway: FakeGateway, clock: FakeClock, signed_url_config: SignedUrlConfig
) -> None:
    gateway.gate = anyio.Event()
    async with open_session("u1", gateway=gateway, config=signed_url_config, clock=clock) as session:
        async with anyio.create_task_group() as tg:
            tg.start_soon(session.start, [make_entry("E1", image_path="k1")])
            await wait_for_calls(gateway, 1)
            session.close()
            gateway.gate.set()

        assert len(session.cache) == 0
        assert session.snapshot() == []
        assert not session.scheduler.running
