"""
Supabase Storage 客户端（外部系统连接器）。

约定：
- 这里只做“HTTP 调用 + 错误处理 + schema 校验”，不做缓存/续签决策
- 签名失败统一转换成 `SigningError`（refresher 会就地恢复）
- 上传失败抛 `StorageUploadError`（由调用方决定是否放弃创建 entry）
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from parklog.signed_urls.gateway import SigningError
from parklog.storage.schemas import SignedUrlResponse
from parklog.storage.schemas import UploadResponse

logger = logging.getLogger(__name__)


class StorageUploadError(RuntimeError):
    """上传图片到对象存储失败。"""

    pass


class SupabaseStorageClient:
    """最小 Supabase Storage client：签发 signed URL + 上传对象。"""

    def __init__(self, base_url: str, service_key: str, bucket: str, http_client: httpx.AsyncClient) -> None:
        """
        - base_url: Supabase 项目地址（不包含末尾 /）
        - service_key: service role key（同时作为 apikey 与 Bearer token）
        - bucket: 图片所在 bucket（例如 `journal-images`）
        - http_client: 复用的 httpx.AsyncClient
        """
        if not bucket:
            raise ValueError("bucket must be non-empty")
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._bucket = bucket
        self._http_client = http_client

    @property
    def bucket(self) -> str:
        return self._bucket

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
        }

    def _object_url(self, action: str, object_key: str) -> str:
        path = quote(object_key.lstrip("/"), safe="/")
        return f"{self._base_url}/storage/v1/{action}/{self._bucket}/{path}"

    async def sign(self, object_key: str, duration_seconds: int) -> str:
        """
        为 object key 签发 signed URL。

        说明：
        - Storage API: POST /storage/v1/object/sign/:bucket/:path，body = {"expiresIn": 秒}
        - 返回的 signedURL 是相对路径，这里拼成可直接展示的绝对 URL
        """
        if not object_key:
            raise SigningError(object_key, "object key is empty")
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be > 0")
        url = self._object_url("object/sign", object_key)
        try:
            response = await self._http_client.post(url, headers=self._headers(), json={"expiresIn": duration_seconds})
        except httpx.HTTPError as exc:
            logger.error(f"Storage HTTP error: {exc}")
            raise SigningError(object_key, f"transport error: {exc}") from exc

        if response.status_code >= 400:
            raise SigningError(object_key, f"Storage API error {response.status_code}: {response.text}")

        try:
            parsed = SignedUrlResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise SigningError(object_key, f"unexpected response: {response.text}") from exc
        if not parsed.signed_url:
            raise SigningError(object_key, "response has no signedURL")

        signed_path = parsed.signed_url
        if signed_path.startswith("http://") or signed_path.startswith("https://"):
            return signed_path
        return f"{self._base_url}/storage/v1/{signed_path.lstrip('/')}"

    async def upload(self, object_key: str, content: bytes, content_type: str) -> str:
        """上传对象（不覆盖已存在的 key），返回 Storage 侧的 Key。"""
        if not content:
            raise ValueError("content must not be empty")
        url = self._object_url("object", object_key)
        headers = {**self._headers(), "Content-Type": content_type, "x-upsert": "false"}
        try:
            response = await self._http_client.post(url, headers=headers, content=content)
        except httpx.HTTPError as exc:
            logger.error(f"Storage HTTP error: {exc}")
            raise StorageUploadError(f"Upload failed for {object_key}: {exc}") from exc
        if response.status_code >= 400:
            raise StorageUploadError(f"Storage API error {response.status_code}: {response.text}")
        return UploadResponse.model_validate(response.json()).key
