"""
自选列表路由
GET    /api/watchlist             - 自选列表（附实时报价）
POST   /api/watchlist             - 添加自选
DELETE /api/watchlist/{symbol}    - 移除自选
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from dashboard_service.models.response import ApiResponse
from dashboard_service.models.schemas import WatchlistAddRequest
from dashboard_service.routers.auth import get_current_user
from dashboard_service.services.watchlist_service import WatchlistService, get_watchlist_service

router = APIRouter(prefix="/api/watchlist", tags=["自选列表"])


@router.get("", response_model=ApiResponse)
async def list_watchlist(
    current_user: dict = Depends(get_current_user),
    svc: WatchlistService = Depends(get_watchlist_service),
):
    items = await svc.list_items(current_user["user_id"])
    return ApiResponse.ok(data=items)


@router.post("", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def add_to_watchlist(
    body: WatchlistAddRequest,
    current_user: dict = Depends(get_current_user),
    svc: WatchlistService = Depends(get_watchlist_service),
):
    item = await svc.add_item(current_user["user_id"], body.symbol, body.type, body.name)
    return ApiResponse.ok(data=item.to_api(), message="Added to watchlist")


@router.delete("/{symbol}", response_model=ApiResponse)
async def remove_from_watchlist(
    symbol: str,
    type: Optional[str] = Query(default=None, description="stock / crypto"),
    current_user: dict = Depends(get_current_user),
    svc: WatchlistService = Depends(get_watchlist_service),
):
    await svc.remove_item(current_user["user_id"], symbol, type)
    return ApiResponse.ok(message="Removed from watchlist")
