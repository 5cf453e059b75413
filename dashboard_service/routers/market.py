"""
行情路由
GET /api/assets/{symbol}      - 资产综合数据（报价、新闻、情绪、置信度）
GET /api/chart/{symbol}       - 近 30 日 K 线
GET /api/search               - 资产搜索
GET /api/market-movers        - 涨跌幅榜
GET /api/news                 - 新闻聚合
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard_service.errors import AssetNotFoundError
from dashboard_service.models.response import ApiResponse
from dashboard_service.services.market_service import MarketDataService, get_market_service

router = APIRouter(prefix="/api", tags=["行情数据"])


@router.get("/assets/{symbol}", response_model=ApiResponse)
async def get_asset(
    symbol: str,
    type: str = Query(default="stock", description="stock / crypto"),
    svc: MarketDataService = Depends(get_market_service),
):
    """资产详情；所有数据源都取不到报价时返回 404"""
    data = await svc.get_comprehensive_asset_data(symbol, type)
    if data["quote"] is None:
        raise AssetNotFoundError(symbol.upper(), type)
    return ApiResponse.ok(data={
        "quote": data["quote"].to_api(),
        "news": [a.to_api() for a in data["news"]],
        "sentiment": [s.to_api() for s in data["sentiment"]],
        "confidence": data["confidence"],
    })


@router.get("/chart/{symbol}", response_model=ApiResponse)
async def get_chart(
    symbol: str,
    type: Optional[str] = Query(default=None, description="stock / crypto"),
    interval: str = Query(default="daily"),
    svc: MarketDataService = Depends(get_market_service),
):
    points = await svc.get_chart_data(symbol, type, interval)
    return ApiResponse.ok(data=[p.to_api() for p in points])


@router.get("/search", response_model=ApiResponse)
async def search(
    q: str = Query(default="", description="代码或名称关键词"),
    svc: MarketDataService = Depends(get_market_service),
):
    assets = await svc.search_assets(q)
    return ApiResponse.ok(data=[a.to_api() for a in assets])


@router.get("/market-movers", response_model=ApiResponse)
async def market_movers(
    type: Optional[str] = Query(default=None, description="stock / crypto"),
    svc: MarketDataService = Depends(get_market_service),
):
    movers = await svc.get_market_movers(type)
    return ApiResponse.ok(data=movers.to_api())


@router.get("/news", response_model=ApiResponse)
async def news(
    symbols: str = Query(default="", description="逗号分隔的代码列表，留空为综合新闻"),
    svc: MarketDataService = Depends(get_market_service),
):
    articles = await svc.get_news([s for s in symbols.split(",") if s.strip()])
    return ApiResponse.ok(data=[a.to_api() for a in articles])
