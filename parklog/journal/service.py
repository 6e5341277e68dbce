"""
创建游记（上传图片 -> 写库 -> 加入会话并签发 URL）。

失败策略：
- 图片上传失败直接抛错，不创建 entry（避免库里出现指向不存在对象的 image_path）
- 签发 URL 失败不影响创建：entry 照常返回，只是暂时没有可展示的 URL
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid

from parklog.journal.client import SupabaseJournalClient
from parklog.journal.models import JournalEntry
from parklog.journal.models import JournalEntryCreate
from parklog.session import JournalSession
from parklog.storage.client import SupabaseStorageClient

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_EXTENSION = "jpg"


def build_image_path(user_id: str, park_id: str, filename: str | None) -> str:
    """object key 约定：`{user_id}/{park_id}/{uuid}.{ext}`。"""
    if not user_id or not park_id:
        raise ValueError("user_id and park_id are required")
    extension = DEFAULT_IMAGE_EXTENSION
    if filename and "." in filename:
        candidate = filename.rsplit(".", 1)[1].strip().lower()
        if candidate:
            extension = candidate
    return f"{user_id}/{park_id}/{uuid.uuid4()}.{extension}"


def decode_image(image_base64: str) -> bytes:
    try:
        content = base64.b64decode(image_base64, validate=True)
    except binascii.Error as exc:
        raise ValueError("image_base64 is not valid base64") from exc
    if not content:
        raise ValueError("image_base64 decoded to empty content")
    return content


async def create_entry(
    session: JournalSession,
    journal_client: SupabaseJournalClient,
    storage_client: SupabaseStorageClient,
    request: JournalEntryCreate,
) -> JournalEntry:
    image_path: str | None = None
    if request.image_base64:
        content = decode_image(request.image_base64)
        image_path = build_image_path(
            user_id=session.user_id,
            park_id=request.park_id,
            filename=request.image_filename,
        )
        await storage_client.upload(
            image_path,
            content=content,
            content_type=request.image_content_type or "application/octet-stream",
        )
        logger.info(f"Journal image uploaded: user={session.user_id}, key={image_path}")

    entry = await journal_client.insert_entry(
        user_id=session.user_id,
        payload={
            "park_id": request.park_id,
            "visit_date": request.visit_date,
            "notes": request.notes,
            "image_path": image_path,
        },
    )
    return await session.add_entry(entry)
