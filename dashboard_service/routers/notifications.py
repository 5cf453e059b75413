"""
通知路由
GET   /api/notifications          - 通知列表（最新在前）
PATCH /api/notifications/{id}     - 标记已读 / 未读
"""

from typing import Optional

from fastapi import APIRouter, Depends

from dashboard_service.models.response import ApiResponse
from dashboard_service.models.schemas import NotificationUpdateRequest
from dashboard_service.routers.auth import get_current_user
from dashboard_service.services.notification_service import (
    NotificationService,
    get_notification_service,
)

router = APIRouter(prefix="/api/notifications", tags=["通知"])


@router.get("", response_model=ApiResponse)
async def list_notifications(
    current_user: dict = Depends(get_current_user),
    svc: NotificationService = Depends(get_notification_service),
):
    notifications = await svc.list_notifications(current_user["user_id"])
    return ApiResponse.ok(data=[n.to_api() for n in notifications])


@router.patch("/{notification_id}", response_model=ApiResponse)
async def update_notification(
    notification_id: str,
    body: Optional[NotificationUpdateRequest] = None,
    current_user: dict = Depends(get_current_user),
    svc: NotificationService = Depends(get_notification_service),
):
    read = body.read if body is not None else None
    notification = await svc.mark_read(current_user["user_id"], notification_id, read)
    return ApiResponse.ok(data=notification.to_api())
