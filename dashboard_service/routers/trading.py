"""
模拟交易路由
GET  /api/portfolio     - 账户总览与持仓
GET  /api/trades        - 交易记录（最新在前）
POST /api/trades        - 下单
"""

from fastapi import APIRouter, Depends, status

from dashboard_service.models.response import ApiResponse
from dashboard_service.models.schemas import TradeRequest
from dashboard_service.routers.auth import get_current_user
from dashboard_service.services.trading_service import TradingService, get_trading_service

router = APIRouter(prefix="/api", tags=["模拟交易"])


@router.get("/portfolio", response_model=ApiResponse)
async def get_portfolio(
    current_user: dict = Depends(get_current_user),
    svc: TradingService = Depends(get_trading_service),
):
    return ApiResponse.ok(data=await svc.get_portfolio(current_user["user_id"]))


@router.get("/trades", response_model=ApiResponse)
async def list_trades(
    current_user: dict = Depends(get_current_user),
    svc: TradingService = Depends(get_trading_service),
):
    trades = await svc.list_trades(current_user["user_id"])
    return ApiResponse.ok(data={"trades": [t.to_api() for t in trades], "source": "simulated"})


@router.post("/trades", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def place_trade(
    body: TradeRequest,
    current_user: dict = Depends(get_current_user),
    svc: TradingService = Depends(get_trading_service),
):
    """提交模拟订单"""
    result = await svc.place_trade(current_user["user_id"], body)
    return ApiResponse.ok(data=result, message=result["message"])
