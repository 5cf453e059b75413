"""
缓存管理路由
GET  /api/cache/stats     - 缓存与限流统计
POST /api/cache/clear     - 清理缓存（指定 key 时只删除该条目）
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from dashboard_service.layers.cache import get_market_cache
from dashboard_service.models.response import ApiResponse
from dashboard_service.routers.auth import get_current_user

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    key: Optional[str] = None


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(current_user: dict = Depends(get_current_user)):
    """获取缓存统计信息（条目数、数据源分布、各接口请求计数）"""
    return ApiResponse.ok(data=get_market_cache().stats())


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(
    body: Optional[ClearRequest] = None,
    current_user: dict = Depends(get_current_user),
):
    cache = get_market_cache()
    if body is not None and body.key:
        removed = cache.delete(body.key)
        return ApiResponse.ok(
            data={"removed": int(removed)}, message=f"缓存已清理: {body.key}"
        )
    removed = cache.clear()
    return ApiResponse.ok(data={"removed": removed}, message="缓存已全部清理")
