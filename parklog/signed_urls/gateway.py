"""
Signing Gateway 抽象。

约定：
- `sign(object_key, duration_seconds)` 返回可直接展示的 signed URL
- 任何失败（对象不存在、服务端报错、网络错误、返回体缺字段）统一抛 `SigningError`
- refresher 只认 `SigningError`：其它异常说明是编程错误，应该直接暴露
"""

from __future__ import annotations

from typing import Protocol


class SigningError(RuntimeError):
    """签发 signed URL 失败（可恢复：调用方保留旧 URL 即可）。"""

    def __init__(self, object_key: str, reason: str) -> None:
        super().__init__(f"Failed to sign {object_key}: {reason}")
        self.object_key = object_key
        self.reason = reason


class SigningGateway(Protocol):
    """对象存储签名接口协议（用于依赖倒置，方便替换 Supabase/S3/测试桩）。"""

    async def sign(self, object_key: str, duration_seconds: int) -> str: ...
