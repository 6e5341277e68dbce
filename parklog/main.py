"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量）
- 组装外部依赖（HTTP Client / Supabase Storage / Supabase REST）
- 装配路由（health + journal），并在 lifespan 里托管所有会话的后台 sweep

注意：
- 缓存/续签逻辑不写在这里（由 `signed_urls/` 与 `session.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接）
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from parklog.api.routes import build_journal_router
from parklog.config import load_config_from_env
from parklog.journal.client import SupabaseJournalClient
from parklog.session import SessionRegistry
from parklog.storage.client import SupabaseStorageClient


def build_app(environ: Mapping[str, str] | None = None, http_client: httpx.AsyncClient | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：缺失会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)

    # 2) 可复用的 HTTP client：供 Storage 与 REST 调用使用
    client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
    base_url = str(config.supabase.url).rstrip("/")

    storage_client = SupabaseStorageClient(
        base_url=base_url,
        service_key=config.supabase.service_key,
        bucket=config.supabase.storage_bucket,
        http_client=client,
    )
    journal_client = SupabaseJournalClient(
        base_url=base_url,
        service_key=config.supabase.service_key,
        http_client=client,
    )

    # 3) 会话注册表：storage client 就是 signing gateway
    registry = SessionRegistry(
        gateway=storage_client,
        entry_source=journal_client,
        config=config.signed_urls,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        async with registry:
            yield
        if http_client is None:
            await client.aclose()

    app = FastAPI(title="Park Journal", version="0.1.0", lifespan=lifespan)
    app.state.registry = registry

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    app.include_router(build_journal_router(registry=registry, journal_client=journal_client, storage_client=storage_client))
    return app


def create_app() -> FastAPI:
    """Uvicorn factory 入口：`uvicorn parklog.main:create_app --factory`。"""
    return build_app()
