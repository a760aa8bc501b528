"""
watchparty.main
~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from watchparty.api import rooms, ws
from watchparty.core.config import settings
from watchparty.core.logging import get_logger, setup_logging
from watchparty.core.rate_limit import limiter
from watchparty.schemas.api_response import ApiResponse
from watchparty.services.event_router import EventRouter
from watchparty.services.party_system import PartySystem

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子：启动时创建观影系统，关闭时销毁全部房间。"""
    # ── 启动 ──
    system = PartySystem(settings=settings)
    app.state.party_system = system
    app.state.event_router = EventRouter(system)
    await system.start()
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    # 通常已由 PartyServer.shutdown 执行过，这里兜底（例如 TestClient）
    await system.shutdown()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="观影房间同步后端 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(ws.router, tags=["WebSocket Party"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """健康检查：进程状态、活跃房间数与当前时间。"""
    system: PartySystem = request.app.state.party_system
    return JSONResponse(
        content={
            "status": "ok",
            "activeRooms": len(system.registry),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ── 服务器 ────────────────────────────────────────────────────────────

class PartyServer(uvicorn.Server):
    """在 uvicorn 关闭 WebSocket 连接之前，先销毁全部房间并把停机通知写出。

    uvicorn 先以 1012 关闭全部连接，之后才执行 lifespan 关闭钩子。
    """

    async def shutdown(self, sockets=None) -> None:
        system: PartySystem | None = getattr(app.state, "party_system", None)
        if system is not None:
            await system.shutdown()
        await super().shutdown(sockets=sockets)


def serve() -> None:
    """命令行入口：按当前环境启动服务。"""
    log_level = settings.effective_log_level.lower()
    if settings.reload:
        # 热重载由 uvicorn 的 supervisor 管理子进程，只能用导入字符串启动
        uvicorn.run(
            "watchparty.main:app",
            host=settings.HOST,
            port=settings.PORT,
            reload=True,
            log_level=log_level,
        )
    else:
        config = uvicorn.Config(app, host=settings.HOST, port=settings.PORT, log_level=log_level)
        PartyServer(config).run()


if __name__ == "__main__":
    serve()
