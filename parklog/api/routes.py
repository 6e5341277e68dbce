"""
Journal HTTP 接入层。

职责：
- 会话生命周期（登录后 open / 登出 close）
- 读取当前会话的 entry 快照（展示层只读这里，不直接接触签名服务）
- 新建 entry、按需续签单条 entry 的图片 URL
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi import HTTPException
from pydantic import BaseModel

from parklog.journal.client import SupabaseJournalClient
from parklog.journal.models import JournalEntry
from parklog.journal.models import JournalEntryCreate
from parklog.journal.service import create_entry
from parklog.session import JournalSession
from parklog.session import SessionRegistry
from parklog.storage.client import StorageUploadError
from parklog.storage.client import SupabaseStorageClient


class EntriesResponse(BaseModel):
    entries: list[JournalEntry]


class RefreshImageResponse(BaseModel):
    entry_id: str
    outcome: str
    image_url: str | None


def build_journal_router(
    registry: SessionRegistry,
    journal_client: SupabaseJournalClient,
    storage_client: SupabaseStorageClient,
) -> APIRouter:
    """创建 journal 路由。"""
    router = APIRouter(prefix="/users/{user_id}")

    def _require_session(user_id: str) -> JournalSession:
        session = registry.get(user_id)
        if session is None:
            raise HTTPException(status_code=404, detail="No active session")
        return session

    @router.post("/session")
    async def open_session(user_id: str) -> EntriesResponse:
        session = await registry.open(user_id)
        return EntriesResponse(entries=session.snapshot())

    @router.delete("/session")
    async def close_session(user_id: str) -> dict[str, str]:
        closed = registry.close(user_id)
        return {"status": "closed" if closed else "not_found"}

    @router.get("/entries")
    async def list_entries(user_id: str) -> EntriesResponse:
        return EntriesResponse(entries=_require_session(user_id).snapshot())

    @router.post("/entries", status_code=201)
    async def add_entry(user_id: str, request: JournalEntryCreate) -> JournalEntry:
        session = _require_session(user_id)
        try:
            return await create_entry(
                session=session,
                journal_client=journal_client,
                storage_client=storage_client,
                request=request,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except StorageUploadError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @router.delete("/entries/{entry_id}")
    async def remove_entry(user_id: str, entry_id: str) -> dict[str, str]:
        session = _require_session(user_id)
        if not session.remove_entry(entry_id):
            raise HTTPException(status_code=404, detail="Entry not found")
        return {"status": "removed"}

    @router.post("/entries/{entry_id}/refresh-image")
    async def refresh_image(user_id: str, entry_id: str) -> RefreshImageResponse:
        session = _require_session(user_id)
        if session.entries.get(entry_id) is None:
            raise HTTPException(status_code=404, detail="Entry not found")
        result = await session.refresh_entry(entry_id)
        entry = session.entries.get(entry_id)
        return RefreshImageResponse(
            entry_id=entry_id,
            outcome=result.outcome.value,
            image_url=entry.image_url if entry is not None else None,
        )

    return router
