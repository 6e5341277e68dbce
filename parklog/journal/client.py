"""
Supabase REST（PostgREST）客户端：读写 `journal_entries` 表。

约定：
- 这里只做 HTTP 调用 + 错误处理 + schema 校验
- 发生错误时**直接抛错**，不要吞异常（加载失败就让会话启动失败）
"""

from __future__ import annotations

import httpx

from parklog.journal.models import JOURNAL_ENTRY_COLUMNS
from parklog.journal.models import JournalEntry


class SupabaseJournalClient:
    """最小 journal_entries client（list + insert）。"""

    def __init__(self, base_url: str, service_key: str, http_client: httpx.AsyncClient, table: str = "journal_entries") -> None:
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._http_client = http_client
        self._table = table

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
        }

    async def list_entries(self, user_id: str) -> list[JournalEntry]:
        """拉取某个用户的全部游记，按 visit_date 倒序。"""
        if not user_id:
            raise ValueError("user_id must be non-empty")
        url = f"{self._base_url}/rest/v1/{self._table}"
        params = {
            "select": JOURNAL_ENTRY_COLUMNS,
            "user_id": f"eq.{user_id}",
            "order": "visit_date.desc",
        }
        response = await self._http_client.get(url, headers=self._headers(), params=params)
        if response.status_code >= 400:
            raise RuntimeError(f"Supabase REST error {response.status_code}: {response.text}")
        data = response.json()
        if not isinstance(data, list):
            raise RuntimeError(f"Unexpected Supabase response shape for journal entries: {data}")
        return [JournalEntry.model_validate(x) for x in data]

    async def insert_entry(self, user_id: str, payload: dict[str, object]) -> JournalEntry:
        """
        插入一条游记并返回数据库里的完整行。

        说明：image_url 始终写 null，可展示的 URL 只存在于会话缓存里。
        """
        url = f"{self._base_url}/rest/v1/{self._table}"
        headers = {**self._headers(), "Prefer": "return=representation"}
        body = {**payload, "user_id": user_id, "image_url": None}
        response = await self._http_client.post(
            url,
            headers=headers,
            params={"select": JOURNAL_ENTRY_COLUMNS},
            json=body,
        )
        if response.status_code >= 400:
            raise RuntimeError(f"Supabase REST error {response.status_code}: {response.text}")
        data = response.json()
        row = data[0] if isinstance(data, list) and data else data
        if not isinstance(row, dict):
            raise RuntimeError(f"Unexpected Supabase response shape for inserted entry: {data}")
        return JournalEntry.model_validate(row)
