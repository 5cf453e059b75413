"""
AI 分析服务
查缓存 → 汇总行情数据 → 构造提示 → 调用 LLM → 解析 → 置信度融合 → 写库。
同一 (symbol, type) 的并发生成请求共享同一个进行中的任务。
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from dashboard_service.config import settings
from dashboard_service.db.repositories import AnalysisRepository
from dashboard_service.errors import AnalysisParseError, AssetNotFoundError
from dashboard_service.layers.analysis import (
    AnalysisLayer,
    blend_confidence,
    decode_analysis,
    get_analysis_layer,
    parse_llm_json,
)
from dashboard_service.layers.processing import get_processing_layer
from dashboard_service.layers.sentiment import SentimentLayer, get_sentiment_layer
from dashboard_service.models.schemas import AIAnalysisRecord, SentimentData
from dashboard_service.services.llm_client import LLMClient, get_llm_client
from dashboard_service.services.market_service import (
    MarketDataService,
    get_market_service,
    validate_asset_type,
)

logger = logging.getLogger(__name__)

# 数据新鲜度上限：最新新闻超过 24 小时按 24 小时计
MAX_DATA_FRESHNESS_SECONDS = 24 * 60 * 60

SYSTEM_PROMPT_TEMPLATE = """You are a senior financial analyst with expertise in {domain} analysis. You have access to comprehensive market data from multiple sources including real-time prices, technical indicators, news sentiment, and social media sentiment.

Your analysis should provide:
1. Overall recommendation (buy/sell/hold)
2. Confidence score (0-100) - Consider data quality, market conditions, and analysis certainty
3. Technical analysis score (0-100) - Based on price action, volume, trends, and indicators
4. {third_score}
5. Sentiment analysis score (0-100) - Based on news sentiment and social media sentiment
6. Risk assessment (low/medium/high)
7. Target price (conservative estimate)
8. Stop loss recommendation (risk management)
9. Detailed reasoning (2-3 paragraphs explaining your analysis)

Analysis Factors to Consider:
- Technical indicators and price trends
- Volume analysis and market momentum
- News sentiment and market reaction
- Social media sentiment (if available)
- Market volatility and risk factors
- {sector_factor}
- Overall market conditions

Important: Base your confidence score on the quality and quantity of available data. Higher data source count and fresher data should increase confidence.

Respond with a single JSON object using the keys recommendation, confidence, technicalScore, fundamentalScore, sentimentScore, riskLevel, targetPrice, stopLoss and reasoning. Respond with raw JSON only. Do not include code blocks, markdown, or any other formatting."""


def build_system_prompt(asset_type: str) -> str:
    if asset_type == "stock":
        return SYSTEM_PROMPT_TEMPLATE.format(
            domain="equity",
            third_score="Fundamental analysis score (0-100) - Based on company fundamentals and market position",
            sector_factor="Company fundamentals and sector performance",
        )
    return SYSTEM_PROMPT_TEMPLATE.format(
        domain="cryptocurrency",
        third_score="Market momentum score (0-100) - Based on adoption, development activity, and market dynamics",
        sector_factor="Network activity and adoption metrics",
    )


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class AnalysisService:
    """AI 分析编排"""

    def __init__(
        self,
        market: Optional[MarketDataService] = None,
        llm: Optional[LLMClient] = None,
        repository: Optional[AnalysisRepository] = None,
        sentiment: Optional[SentimentLayer] = None,
        analysis: Optional[AnalysisLayer] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._market = market or get_market_service()
        self._llm = llm or get_llm_client()
        self._repo = repository or AnalysisRepository()
        self._sentiment = sentiment or get_sentiment_layer()
        self._analysis = analysis or get_analysis_layer()
        self._clock = clock
        self._proc = get_processing_layer()
        self._in_flight: Dict[Tuple[str, str], asyncio.Task] = {}

    async def get_analysis(
        self, symbol: str, asset_type: str, refresh: bool = False
    ) -> AIAnalysisRecord:
        """
        获取资产的 AI 分析

        Args:
            symbol: 资产代码
            asset_type: stock / crypto
            refresh: 为 True 时忽略未过期的已有记录，重新生成

        Raises:
            InvalidRequestError: type 不合法（在任何外部调用之前）
            AssetNotFoundError: 拿不到报价
            LLMError / AnalysisParseError: LLM 调用或解析失败
        """
        asset_type = validate_asset_type(asset_type)
        sym = self._proc.canonical_symbol(symbol)

        if not refresh:
            existing = await self._repo.get(sym, asset_type)
            if existing is not None and existing.expires_at > self._clock():
                logger.debug(f"AI 分析缓存命中: {sym} ({asset_type})")
                return existing

        key = (sym, asset_type)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._generate(sym, asset_type))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._on_generation_done(k, t))
        else:
            logger.debug(f"复用进行中的 AI 分析任务: {sym} ({asset_type})")
        # shield：单个请求被取消时不影响其他等待者
        return await asyncio.shield(task)

    def _on_generation_done(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        self._in_flight.pop(key, None)
        # 等待者可能已全部取消，这里取走异常，避免事件循环报告未检索的异常
        if not task.cancelled():
            task.exception()

    async def _social_sentiment(self, sym: str, asset_type: str) -> Optional[SentimentData]:
        if asset_type != "stock":
            return None
        result = await self._sentiment.social_sentiment(sym)
        return result.data if result.is_ok else None

    async def _gather_inputs(self, sym: str, asset_type: str) -> Dict[str, Any]:
        comprehensive, chart, social = await asyncio.gather(
            self._market.get_comprehensive_asset_data(sym, asset_type),
            self._market.get_chart_data(sym, asset_type),
            self._social_sentiment(sym, asset_type),
        )
        return {"comprehensive": comprehensive, "chart": chart, "social": social}

    async def _generate(self, sym: str, asset_type: str) -> AIAnalysisRecord:
        logger.info(f"生成 AI 分析: {sym} ({asset_type})")
        inputs = await self._gather_inputs(sym, asset_type)
        comprehensive = inputs["comprehensive"]
        chart = inputs["chart"]
        social = inputs["social"]

        asset = comprehensive["quote"]
        # 拿不到报价视为资产不存在（404），不调用 LLM
        if asset is None:
            raise AssetNotFoundError(sym, asset_type)
        news = comprehensive["news"]
        sentiment = comprehensive["sentiment"]

        data_sources = sum([
            1,
            1 if news else 0,
            1 if chart else 0,
            1 if sentiment else 0,
            1 if social is not None else 0,
        ])

        closes = [p.close for p in chart]
        now = self._clock()
        newest_news = max((a.published_at for a in news), default=None)
        payload = {
            "symbol": sym,
            "type": asset_type,
            "currentPrice": asset.price,
            "change24h": asset.change_percent,
            "volume": asset.volume,
            "marketCap": asset.market_cap,
            "high24h": asset.high_24h,
            "low24h": asset.low_24h,
            "chartData": [p.to_api() for p in chart[-60:]],
            "volatility": self._analysis.volatility(closes),
            "trendDirection": self._analysis.trend(closes),
            "supportResistance": self._analysis.support_resistance(closes),
            "news": [a.to_api() for a in news[:15]],
            "socialSentiment": social.to_api() if social is not None else None,
            "aggregatedSentiment": [s.to_api() for s in sentiment],
            "newsCount": len(news),
            "avgNewsSentiment": sum(a.sentiment or 0 for a in news) / max(len(news), 1),
            "dataSourcesCount": data_sources,
            "dataFreshnessSeconds": (
                min((now - newest_news).total_seconds(), MAX_DATA_FRESHNESS_SECONDS)
                if newest_news is not None
                else MAX_DATA_FRESHNESS_SECONDS
            ),
            "overallDataConfidence": comprehensive["confidence"],
        }

        content = await self._llm.complete_json(
            build_system_prompt(asset_type),
            f"Analyze this {asset_type} with comprehensive market data: "
            f"{json.dumps(payload, indent=2, default=str)}",
        )
        try:
            raw = parse_llm_json(content)
        except AnalysisParseError:
            logger.error(f"AI 分析结果解析失败: {sym} ({asset_type})，原始内容: {content[:500]}")
            raise
        decoded = decode_analysis(raw, asset_type)

        factors = blend_confidence(
            base=decoded["confidence"],
            data_sources=data_sources,
            volume=asset.volume,
            news_count=len(news),
            has_sentiment=bool(sentiment),
            change_percent=asset.change_percent,
        )

        created_at = self._clock()
        record = AIAnalysisRecord(
            symbol=sym,
            type=asset_type,
            recommendation=decoded["recommendation"],
            confidence=factors["finalConfidence"],
            reasoning=decoded["reasoning"],
            technical_score=decoded["technical_score"],
            fundamental_score=decoded["fundamental_score"],
            sentiment_score=decoded["sentiment_score"],
            risk_level=decoded["risk_level"],
            target_price=decoded["target_price"],
            stop_loss=decoded["stop_loss"],
            data_source={
                **payload,
                "enhancedAnalysis": True,
                "dataSourcesUsed": data_sources,
                "confidenceFactors": factors,
            },
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=settings.ANALYSIS_TTL),
        )
        await self._repo.upsert(record)
        logger.info(
            f"AI 分析完成: {sym} ({asset_type}) -> {record.recommendation}，置信度 {record.confidence:.0f}"
        )
        return record


# ── 模块级别单例 ──────────────────────────────────────────
_analysis_service: Optional[AnalysisService] = None


def get_analysis_service() -> AnalysisService:
    global _analysis_service
    if _analysis_service is None:
        _analysis_service = AnalysisService()
    return _analysis_service


def reset_analysis_service() -> None:
    global _analysis_service
    _analysis_service = None
