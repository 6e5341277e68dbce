"""
Journal 领域模型（Pydantic）。

用途：
- 对齐 Supabase `journal_entries` 表的字段
- 作为 REST 响应 / API 请求体的 schema 校验
"""

from __future__ import annotations

from pydantic import BaseModel, Field

JOURNAL_ENTRY_COLUMNS = "id,park_id,visit_date,notes,image_url,image_path,created_at"


class JournalEntry(BaseModel):
    """
    一条游记。

    - image_path: 对象存储里的 object key（为空表示没有图片，不参与缓存）
    - image_url: 可展示的 signed URL，只由 signed URL 缓存写入
    """

    id: str
    park_id: str
    visit_date: str
    notes: str | None = None
    image_url: str | None = None
    image_path: str | None = None
    created_at: str

    @property
    def has_image(self) -> bool:
        return bool(self.image_path)


class JournalEntryCreate(BaseModel):
    """创建游记的请求体；图片以 base64 形式随请求上传（可选）。"""

    park_id: str = Field(min_length=1)
    visit_date: str = Field(min_length=1)
    notes: str | None = None
    image_base64: str | None = None
    image_filename: str | None = None
    image_content_type: str | None = None
