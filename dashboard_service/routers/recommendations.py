"""
投资建议路由
GET    /api/recommendations              - 建议列表（status / symbol / type 过滤，limit 条）
POST   /api/recommendations              - 新建建议（默认 7 天过期）
PATCH  /api/recommendations/{id}         - 修改状态（dismissed / executed）
DELETE /api/recommendations/{id}         - 删除建议
POST   /api/recommendations/{id}/view    - 标记已查看
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from dashboard_service.models.response import ApiResponse
from dashboard_service.models.schemas import (
    RecommendationCreateRequest,
    RecommendationUpdateRequest,
)
from dashboard_service.routers.auth import get_current_user
from dashboard_service.services.recommendation_service import (
    RecommendationService,
    get_recommendation_service,
)

router = APIRouter(prefix="/api/recommendations", tags=["投资建议"])


@router.get("", response_model=ApiResponse)
async def list_recommendations(
    limit: int = Query(10, ge=1, le=100),
    status_filter: str = Query("active", alias="status"),
    symbol: Optional[str] = Query(None),
    asset_type: Optional[str] = Query(None, alias="type"),
    current_user: dict = Depends(get_current_user),
    svc: RecommendationService = Depends(get_recommendation_service),
):
    items = await svc.list_recommendations(
        current_user["user_id"], status=status_filter, symbol=symbol,
        asset_type=asset_type, limit=limit,
    )
    return ApiResponse.ok(data=[r.to_api() for r in items])


@router.post("", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def create_recommendation(
    body: RecommendationCreateRequest,
    current_user: dict = Depends(get_current_user),
    svc: RecommendationService = Depends(get_recommendation_service),
):
    rec = await svc.create_recommendation(current_user["user_id"], body)
    return ApiResponse.ok(data=rec.to_api(), message="Recommendation created")


@router.patch("/{recommendation_id}", response_model=ApiResponse)
async def update_recommendation(
    recommendation_id: str,
    body: RecommendationUpdateRequest,
    current_user: dict = Depends(get_current_user),
    svc: RecommendationService = Depends(get_recommendation_service),
):
    rec = await svc.update_recommendation(
        current_user["user_id"], recommendation_id, body.status, body.executed_at
    )
    return ApiResponse.ok(data=rec.to_api())


@router.delete("/{recommendation_id}", response_model=ApiResponse)
async def delete_recommendation(
    recommendation_id: str,
    current_user: dict = Depends(get_current_user),
    svc: RecommendationService = Depends(get_recommendation_service),
):
    await svc.delete_recommendation(current_user["user_id"], recommendation_id)
    return ApiResponse.ok(message="Recommendation deleted")


@router.post("/{recommendation_id}/view", response_model=ApiResponse)
async def view_recommendation(
    recommendation_id: str,
    current_user: dict = Depends(get_current_user),
    svc: RecommendationService = Depends(get_recommendation_service),
):
    rec = await svc.mark_viewed(current_user["user_id"], recommendation_id)
    return ApiResponse.ok(data=rec.to_api())
