"""
用户资料路由
GET   /api/user/profile   - 当前用户资料
PATCH /api/user/profile   - 修改姓名、邮箱与主题
"""

from fastapi import APIRouter, Depends

from dashboard_service.errors import NotFoundError
from dashboard_service.models.response import ApiResponse
from dashboard_service.models.schemas import ProfileUpdateRequest
from dashboard_service.routers.auth import get_current_user
from dashboard_service.services.auth_service import AuthService, get_auth_service

router = APIRouter(prefix="/api/user", tags=["用户资料"])


@router.get("/profile", response_model=ApiResponse)
async def get_profile(
    current_user: dict = Depends(get_current_user),
    svc: AuthService = Depends(get_auth_service),
):
    user = await svc.get_user(current_user["user_id"])
    if user is None:
        raise NotFoundError("User not found")
    return ApiResponse.ok(data=user.to_api())


@router.patch("/profile", response_model=ApiResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    current_user: dict = Depends(get_current_user),
    svc: AuthService = Depends(get_auth_service),
):
    user = await svc.update_profile(current_user["user_id"], body.name, body.email, body.theme)
    return ApiResponse.ok(data=user.to_api(), message="Profile updated")
