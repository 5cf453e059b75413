"""
AI 分析路由
GET /api/analysis/{symbol}?type=stock|crypto&refresh=false
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard_service.models.response import ApiResponse
from dashboard_service.services.analysis_service import AnalysisService, get_analysis_service

router = APIRouter(prefix="/api/analysis", tags=["AI 分析"])


@router.get("/{symbol}", response_model=ApiResponse)
async def get_analysis(
    symbol: str,
    type: Optional[str] = Query(default=None, description="stock / crypto"),
    refresh: bool = Query(default=False, description="忽略未过期的缓存结果"),
    svc: AnalysisService = Depends(get_analysis_service),
):
    """获取（必要时生成）资产的 AI 分析"""
    record = await svc.get_analysis(symbol, type, refresh=refresh)
    return ApiResponse.ok(data=record.to_api())
