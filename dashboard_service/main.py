"""
投资看板后端服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn dashboard_service.main:app --host 0.0.0.0 --port 8001
    python -m dashboard_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dashboard_service import __version__
from dashboard_service.config import settings
from dashboard_service.db import close_connections, init_mongodb
from dashboard_service.errors import DashboardError
from dashboard_service.models.response import ApiResponse
from dashboard_service.routers import (
    alerts,
    analysis,
    auth,
    cache,
    health,
    market,
    notifications,
    recommendations,
    trading,
    user,
    watchlist,
)
from dashboard_service.services.analysis_service import reset_analysis_service
from dashboard_service.services.llm_client import close_llm_client
from dashboard_service.services.market_service import close_market_service

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Investment Dashboard Service v{__version__} 启动中")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   LLM       : {settings.LLM_MODEL}")
    logger.info("=" * 60)

    # 数据库不可用时不阻断启动，降级为内存存储
    if await init_mongodb():
        logger.info("✅ MongoDB 连接就绪")
    else:
        logger.warning("⚠️ MongoDB 不可用，降级为内存存储（重启后数据丢失）")

    yield

    logger.info("🔄 看板服务正在关闭...")
    reset_analysis_service()
    await close_market_service()
    await close_llm_client()
    await close_connections()
    logger.info("✅ 看板服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Investment Dashboard Service",
    description=(
        "面向个人投资者的看板后端，提供以下功能：\n"
        "- 📊 股票 / 加密资产行情聚合（Yahoo / Alpha Vantage / Finnhub / CoinGecko）\n"
        "- 📰 新闻聚合与情绪\n"
        "- 🤖 LLM 投资分析（带置信度修正）\n"
        "- 🔐 用户认证（JWT）\n"
        "- ⭐ 自选列表、价格提醒、投资建议、模拟交易与通知\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 从行情 / 新闻提供商拉取原始数据\n"
        "Cache Layer        ← 进程内 TTL 缓存 + 接口限流计数\n"
        "Processing Layer   ← 数据清洗、格式化、标准化\n"
        "Analysis Layer     ← 技术统计与置信度计算\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 异常处理 ──────────────────────────────────────────────
@app.exception_handler(DashboardError)
async def dashboard_error_handler(request: Request, exc: DashboardError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.url.path}: {exc.message}", exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse.fail(exc.public_message, message="请求失败").model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse.fail(str(exc.detail), message="请求失败").model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=ApiResponse.fail("Invalid parameters", message="参数校验失败").model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ApiResponse.fail("内部服务错误", message="请求失败").model_dump(),
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(user.router)
app.include_router(market.router)
app.include_router(analysis.router)
app.include_router(watchlist.router)
app.include_router(alerts.router)
app.include_router(trading.router)
app.include_router(notifications.router)
app.include_router(recommendations.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Investment Dashboard Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "dashboard_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
