"""
Supabase Storage API response schemas（Pydantic）。

说明：
- 字段只覆盖签名 / 上传两个接口用到的子集
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SignedUrlResponse(BaseModel):
    """POST /object/sign/{bucket}/{path} 的返回：相对路径形式的 signed URL。"""

    model_config = ConfigDict(populate_by_name=True)

    signed_url: str | None = Field(default=None, alias="signedURL")


class UploadResponse(BaseModel):
    """POST /object/{bucket}/{path} 的返回（Key = "{bucket}/{path}"）。"""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(alias="Key")
