"""
社交情绪数据（占位实现）
尚未接入真实的社交媒体 / Reddit 数据源，按热门程度生成区间内的随机值。
随机源可注入，测试中使用固定种子即可得到确定结果。
"""

import logging
import random
from typing import Optional

from dashboard_service.layers.acquisition import FetchResult
from dashboard_service.models.schemas import SentimentData

logger = logging.getLogger(__name__)

# 讨论度高的股票：情绪区间更窄、置信度更高
_POPULAR_STOCKS = {"AAPL", "GOOGL", "MSFT", "AMZN", "TSLA", "META", "NVDA"}


class SentimentLayer:

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    async def social_sentiment(self, symbol: str) -> FetchResult:
        sym = symbol.strip().upper()
        rng = self._rng
        if sym in _POPULAR_STOCKS:
            data = SentimentData(
                symbol=sym,
                sentiment=rng.uniform(0.3, 0.7),
                confidence=rng.uniform(0.7, 1.0),
                mentions=rng.randint(100, 1099),
                source="social_media",
            )
        else:
            data = SentimentData(
                symbol=sym,
                sentiment=rng.uniform(0.2, 0.8),
                confidence=rng.uniform(0.5, 1.0),
                mentions=rng.randint(10, 109),
                source="social_media",
            )
        return FetchResult.ok("social_media", data)

    async def reddit_sentiment(self, symbol: str) -> FetchResult:
        rng = self._rng
        data = SentimentData(
            symbol=symbol.strip().upper(),
            sentiment=rng.uniform(0.2, 0.8),
            confidence=rng.uniform(0.5, 0.9),
            mentions=rng.randint(5, 54),
            source="reddit",
        )
        return FetchResult.ok("reddit", data)


# ── 模块级别单例 ──────────────────────────────────────────
_sentiment: Optional[SentimentLayer] = None


def get_sentiment_layer() -> SentimentLayer:
    global _sentiment
    if _sentiment is None:
        _sentiment = SentimentLayer()
    return _sentiment
