"""
应用配置加载。

设计目标：
- **严格**：缺少必要环境变量就直接报错（避免“看起来跑了其实没配置好”）
- **类型安全**：使用 Pydantic 校验 URL/整数等，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, HttpUrl, PositiveInt, model_validator

DEFAULT_STORAGE_BUCKET = "journal-images"
DEFAULT_TTL_SECONDS = 60 * 60 * 24
DEFAULT_REFRESH_BUFFER_SECONDS = 10 * 60
DEFAULT_REFRESH_INTERVAL_SECONDS = 15 * 60


class SupabaseConfig(BaseModel):
    """Supabase 连接配置（Storage + REST 共用一个 service key）。"""

    url: HttpUrl
    service_key: str
    storage_bucket: str = DEFAULT_STORAGE_BUCKET


class SignedUrlConfig(BaseModel):
    """
    Signed URL 缓存的三个可调参数（单位：秒）。

    - ttl_seconds: 每次签发的有效期
    - refresh_buffer_seconds: 距离过期多久以内视为“需要续签”
    - refresh_interval_seconds: 后台 sweep 的周期
    """

    ttl_seconds: PositiveInt = DEFAULT_TTL_SECONDS
    refresh_buffer_seconds: PositiveInt = DEFAULT_REFRESH_BUFFER_SECONDS
    refresh_interval_seconds: PositiveInt = DEFAULT_REFRESH_INTERVAL_SECONDS

    @model_validator(mode="after")
    def _buffer_shorter_than_ttl(self) -> SignedUrlConfig:
        # buffer >= ttl 会导致每次 sweep 都续签全部 URL
        if self.refresh_buffer_seconds >= self.ttl_seconds:
            raise ValueError("refresh_buffer_seconds must be < ttl_seconds")
        return self


class AppConfig(BaseModel):
    supabase: SupabaseConfig
    signed_urls: SignedUrlConfig


def _parse_positive_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{key} must be > 0")
    return value


def load_signed_url_config(environ: Mapping[str, str]) -> SignedUrlConfig:
    """读取 signed URL 相关的可选配置；缺省值与线上行为一致（24h / 10min / 15min）。"""
    return SignedUrlConfig(
        ttl_seconds=_parse_positive_int(environ, "SIGNED_URL_TTL_SECONDS", DEFAULT_TTL_SECONDS),
        refresh_buffer_seconds=_parse_positive_int(
            environ, "SIGNED_URL_REFRESH_BUFFER_SECONDS", DEFAULT_REFRESH_BUFFER_SECONDS
        ),
        refresh_interval_seconds=_parse_positive_int(
            environ, "SIGNED_URL_REFRESH_INTERVAL_SECONDS", DEFAULT_REFRESH_INTERVAL_SECONDS
        ),
    )


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：必填项缺失/为空、数值非法则抛 `ValueError`
    """

    required_keys: tuple[str, ...] = (
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
    )

    missing: list[str] = [key for key in required_keys if key not in environ or not environ[key]]
    if missing:
        raise ValueError(f"Missing required env vars: {', '.join(missing)}")

    # 交给 Pydantic 做类型校验（例如 URL 合法性）
    supabase = SupabaseConfig(
        url=environ["SUPABASE_URL"],
        service_key=environ["SUPABASE_SERVICE_KEY"],
        storage_bucket=environ.get("SUPABASE_STORAGE_BUCKET") or DEFAULT_STORAGE_BUCKET,
    )
    return AppConfig(supabase=supabase, signed_urls=load_signed_url_config(environ))
