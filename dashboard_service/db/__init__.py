"""
数据库连接管理模块
统一管理 MongoDB（异步）连接，不可用时由文档存储层降级为内存模式
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from dashboard_service.config import settings

logger = logging.getLogger(__name__)

# ── 全局连接实例 ─────────────────────────────────────────
_mongo_client: Optional[AsyncIOMotorClient] = None
_mongo_db: Optional[AsyncIOMotorDatabase] = None

# 唯一索引：(集合, 字段列表)
_UNIQUE_INDEXES = [
    ("ai_analyses", [("symbol", 1), ("type", 1)]),
    ("users", [("email", 1)]),
    ("portfolios", [("user_id", 1)]),
    ("watchlists", [("user_id", 1), ("symbol", 1), ("type", 1)]),
]


async def init_mongodb() -> bool:
    """初始化 MongoDB 异步连接，返回是否成功"""
    global _mongo_client, _mongo_db
    if not settings.MONGODB_ENABLED:
        logger.info("MongoDB 未启用，跳过初始化")
        return False
    try:
        _mongo_client = AsyncIOMotorClient(
            settings.MONGO_URI,
            maxPoolSize=settings.MONGO_MAX_CONNECTIONS,
            minPoolSize=settings.MONGO_MIN_CONNECTIONS,
            serverSelectionTimeoutMS=settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
            connectTimeoutMS=settings.MONGO_CONNECT_TIMEOUT_MS,
            socketTimeoutMS=settings.MONGO_SOCKET_TIMEOUT_MS,
            tz_aware=True,
        )
        _mongo_db = _mongo_client[settings.MONGODB_DATABASE]
        await _mongo_client.admin.command("ping")
        await _ensure_indexes(_mongo_db)
        logger.info(f"✅ MongoDB 连接成功: {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
        return True
    except Exception as exc:
        logger.warning(f"⚠️ MongoDB 连接失败（服务将继续以降级模式运行）: {exc}")
        _mongo_client = None
        _mongo_db = None
        return False


async def _ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    for collection, keys in _UNIQUE_INDEXES:
        await db[collection].create_index(keys, unique=True)


async def close_connections():
    """关闭所有数据库连接"""
    global _mongo_client, _mongo_db
    if _mongo_client:
        _mongo_client.close()
        _mongo_client = None
        _mongo_db = None
        logger.info("MongoDB 连接已关闭")


def get_mongo_db() -> Optional[AsyncIOMotorDatabase]:
    """获取 MongoDB 数据库实例（可能为 None）"""
    return _mongo_db


async def check_health() -> dict:
    """检查数据库连接健康状态"""
    result = {"mongodb": {"status": "disabled"}}
    if _mongo_client:
        try:
            await _mongo_client.admin.command("ping")
            result["mongodb"] = {"status": "healthy", "host": settings.MONGODB_HOST}
        except Exception as exc:
            result["mongodb"] = {"status": "unhealthy", "error": str(exc)}
    elif settings.MONGODB_ENABLED:
        result["mongodb"] = {"status": "disconnected", "fallback": "memory"}
    return result
