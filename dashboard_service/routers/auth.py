"""
用户认证路由
POST /api/auth/signup    - 注册（同时创建模拟账户）
POST /api/auth/login     - 登录获取 JWT
GET  /api/auth/me        - 获取当前用户信息
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header, status

from dashboard_service.models.response import ApiResponse
from dashboard_service.models.schemas import LoginRequest, SignupRequest
from dashboard_service.services.auth_service import AuthService, get_auth_service

router = APIRouter(prefix="/api/auth", tags=["认证"])


# ── 依赖注入：从 Bearer Token 解析当前用户 ─────────────────

async def get_current_user(
    authorization: Optional[str] = Header(default=None),
) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="未提供认证令牌")
    token = authorization[7:]
    token_data = get_auth_service().verify_token(token)
    if token_data is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="令牌无效或已过期")
    return {"user_id": token_data.sub}


# ── 路由处理器 ────────────────────────────────────────────

@router.post("/signup", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def signup(body: SignupRequest, svc: AuthService = Depends(get_auth_service)):
    """注册新用户"""
    user = await svc.signup(body.email, body.password, body.name)
    return ApiResponse.ok(data=user.to_api(), message="User created successfully")


@router.post("/login", response_model=ApiResponse)
async def login(body: LoginRequest, svc: AuthService = Depends(get_auth_service)):
    """用户登录，返回 JWT access_token"""
    user = await svc.authenticate(body.email, body.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="邮箱或密码错误")
    token = svc.create_access_token(user.id)
    return ApiResponse.ok(
        data={"access_token": token, "token_type": "bearer", "user": user.to_api()},
        message="登录成功",
    )


@router.get("/me", response_model=ApiResponse)
async def me(
    current_user: dict = Depends(get_current_user),
    svc: AuthService = Depends(get_auth_service),
):
    """获取当前用户信息"""
    user = await svc.get_user(current_user["user_id"])
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="用户不存在")
    return ApiResponse.ok(data=user.to_api())
