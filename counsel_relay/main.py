"""
counsel_relay.main
~~~~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from counsel_relay.api import rooms, ws
from counsel_relay.core.config import settings
from counsel_relay.core.logging import get_logger, setup_logging
from counsel_relay.core.policy import load_policy
from counsel_relay.core.rate_limit import limiter
from counsel_relay.llm.gemini_provider import GeminiProvider
from counsel_relay.schemas.api_response import ApiResponse
from counsel_relay.services.relay_server import RelayServer

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


async def sweep_idle_rooms(relay: RelayServer, ttl_seconds: float, interval_seconds: float) -> None:
    """周期性回收无人在线、闲置超时的咨询室及其会话。"""
    while True:
        await asyncio.sleep(interval_seconds)
        relay.evict_idle_rooms(ttl_seconds)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    policy = load_policy(settings.policy_path)
    relay = RelayServer(generator=GeminiProvider(), policy=policy, config=settings)
    app.state.relay_server = relay

    sweeper: asyncio.Task[None] | None = None
    if settings.ROOM_IDLE_TTL_SECONDS > 0:
        sweeper = asyncio.create_task(
            sweep_idle_rooms(
                relay,
                settings.ROOM_IDLE_TTL_SECONDS,
                settings.ROOM_SWEEP_INTERVAL_SECONDS,
            ),
        )
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s | model=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
        settings.GEMINI_MODEL,
    )
    yield
    # ── 关闭 ──
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    await relay.aclose()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="咨询室实时中继与 AI 回复草稿服务",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

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
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(rooms.router, prefix="/api", tags=["Rooms & Session"])
app.include_router(ws.router, tags=["WebSocket Relay"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """业务层主动抛出的 HTTP 错误，统一包装成 ``ApiResponse.fail()``。"""
    response = ApiResponse.fail(msg=str(exc.detail), code=exc.status_code, data=None)
    return JSONResponse(status_code=exc.status_code, content=response.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求参数校验失败，统一返回 400 + ``ApiResponse.fail()``。"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = f"参数错误: {field} {first.get('msg', '')}".strip()
    response = ApiResponse.fail(msg=msg, code=400, data=None)
    return JSONResponse(status_code=400, content=response.model_dump())


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


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    relay: RelayServer = request.app.state.relay_server
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "rooms": len(relay.registry),
            "pending_drafts": relay.pipeline.pending,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "counsel_relay.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
