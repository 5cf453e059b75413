"""
价格提醒路由
GET    /api/alerts          - 提醒列表
POST   /api/alerts          - 创建提醒
PATCH  /api/alerts/{id}     - 启用 / 停用
DELETE /api/alerts/{id}     - 删除提醒
"""

from fastapi import APIRouter, Depends, status

from dashboard_service.models.response import ApiResponse
from dashboard_service.models.schemas import AlertCreateRequest, AlertUpdateRequest
from dashboard_service.routers.auth import get_current_user
from dashboard_service.services.alert_service import AlertService, get_alert_service

router = APIRouter(prefix="/api/alerts", tags=["价格提醒"])


@router.get("", response_model=ApiResponse)
async def list_alerts(
    current_user: dict = Depends(get_current_user),
    svc: AlertService = Depends(get_alert_service),
):
    alerts = await svc.list_alerts(current_user["user_id"])
    return ApiResponse.ok(data=[a.to_api() for a in alerts])


@router.post("", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def create_alert(
    body: AlertCreateRequest,
    current_user: dict = Depends(get_current_user),
    svc: AlertService = Depends(get_alert_service),
):
    alert = await svc.create_alert(
        current_user["user_id"], body.symbol, body.type, body.condition, body.target_price
    )
    return ApiResponse.ok(data=alert.to_api(), message="Alert created")


@router.patch("/{alert_id}", response_model=ApiResponse)
async def update_alert(
    alert_id: str,
    body: AlertUpdateRequest,
    current_user: dict = Depends(get_current_user),
    svc: AlertService = Depends(get_alert_service),
):
    alert = await svc.update_alert(current_user["user_id"], alert_id, body.is_active)
    return ApiResponse.ok(data=alert.to_api())


@router.delete("/{alert_id}", response_model=ApiResponse)
async def delete_alert(
    alert_id: str,
    current_user: dict = Depends(get_current_user),
    svc: AlertService = Depends(get_alert_service),
):
    await svc.delete_alert(current_user["user_id"], alert_id)
    return ApiResponse.ok(message="Alert deleted")
