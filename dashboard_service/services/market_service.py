"""
行情数据服务
整合数据获取、缓存、处理三层：缓存优先，按顺序在各数据源之间回退，
对外提供报价、搜索、涨跌榜、K 线、新闻以及供 AI 分析使用的综合数据。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dashboard_service.config import settings
from dashboard_service.errors import InvalidRequestError
from dashboard_service.layers.acquisition import (
    AcquisitionLayer,
    FetchResult,
    close_acquisition_layer,
    get_acquisition_layer,
)
from dashboard_service.layers.analysis import data_confidence
from dashboard_service.layers.cache import MarketDataCache, get_market_cache, make_key
from dashboard_service.layers.processing import get_processing_layer
from dashboard_service.layers.sentiment import SentimentLayer, get_sentiment_layer
from dashboard_service.models.schemas import (
    ASSET_TYPES,
    Asset,
    ChartPoint,
    MarketMover,
    MarketMovers,
    NewsArticle,
)

logger = logging.getLogger(__name__)

POPULAR_STOCKS: Dict[str, str] = {
    "AAPL": "Apple Inc.",
    "GOOGL": "Alphabet Inc.",
    "GOOG": "Alphabet Inc. Class A",
    "MSFT": "Microsoft Corporation",
    "AMZN": "Amazon.com Inc.",
    "TSLA": "Tesla Inc.",
    "META": "Meta Platforms Inc.",
    "NVDA": "NVIDIA Corporation",
    "NFLX": "Netflix Inc.",
    "AMD": "Advanced Micro Devices Inc.",
    "ADBE": "Adobe Inc.",
    "CRM": "Salesforce Inc.",
    "ORCL": "Oracle Corporation",
    "IBM": "International Business Machines",
    "INTC": "Intel Corporation",
    "PYPL": "PayPal Holdings Inc.",
    "SHOP": "Shopify Inc.",
    "UBER": "Uber Technologies Inc.",
    "SNAP": "Snap Inc.",
    "SQ": "Block Inc.",
    "ZM": "Zoom Video Communications",
    "ROKU": "Roku Inc.",
    "SPOT": "Spotify Technology S.A.",
    "GME": "GameStop Corp.",
    "AMC": "AMC Entertainment Holdings",
    "BB": "BlackBerry Limited",
    "NOK": "Nokia Corporation",
    "F": "Ford Motor Company",
    "GE": "General Electric Company",
    "JPM": "JPMorgan Chase & Co.",
    "BAC": "Bank of America Corporation",
    "WFC": "Wells Fargo & Company",
    "C": "Citigroup Inc.",
    "GS": "Goldman Sachs Group Inc.",
    "V": "Visa Inc.",
    "MA": "Mastercard Incorporated",
    "DIS": "Walt Disney Company",
    "KO": "Coca-Cola Company",
    "PEP": "PepsiCo Inc.",
    "MCD": "McDonald's Corporation",
    "NKE": "Nike Inc.",
    "WMT": "Walmart Inc.",
    "JNJ": "Johnson & Johnson",
    "PG": "Procter & Gamble",
    "UNH": "UnitedHealth Group",
    "HD": "Home Depot Inc.",
    "CVX": "Chevron Corporation",
    "LLY": "Eli Lilly and Company",
    "ABBV": "AbbVie Inc.",
    "AVGO": "Broadcom Inc.",
    "XOM": "Exxon Mobil Corporation",
    "TMO": "Thermo Fisher Scientific",
    "COST": "Costco Wholesale Corporation",
}

# Yahoo 涨跌榜不可用时用这些股票的报价排序
MOVER_FALLBACK_SYMBOLS = [
    "AAPL", "GOOGL", "MSFT", "AMZN", "TSLA", "META", "NVDA", "NFLX", "AMD", "ADBE",
    "CRM", "ORCL", "IBM", "INTC", "PYPL", "SHOP", "UBER", "SNAP", "SQ", "ZM",
]

_TOKENIZED_MARKERS = ("tokenized", "xstock", "twin asset", "dinari", "wrapped", "synthetic")


def validate_asset_type(asset_type: Optional[str]) -> str:
    if asset_type not in ASSET_TYPES:
        raise InvalidRequestError("Invalid or missing type parameter")
    return asset_type


def is_tokenized_asset(symbol: str, name: str) -> bool:
    """过滤代币化股票、包装资产等与股票同名的币种"""
    lowered = name.lower()
    if any(marker in lowered for marker in _TOKENIZED_MARKERS):
        return True
    return (
        ".D" in symbol
        or (symbol.startswith("I") and symbol[1:] in POPULAR_STOCKS)
        or (symbol.endswith("X") and symbol[:-1] in POPULAR_STOCKS)
        or symbol.endswith("USD")
    )


class MarketDataService:
    """行情数据业务服务"""

    def __init__(
        self,
        acquisition: Optional[AcquisitionLayer] = None,
        cache: Optional[MarketDataCache] = None,
        sentiment: Optional[SentimentLayer] = None,
    ):
        self._acq = acquisition or get_acquisition_layer()
        self._cache = cache or get_market_cache()
        self._sentiment = sentiment or get_sentiment_layer()
        self._proc = get_processing_layer()

    @property
    def cache(self) -> MarketDataCache:
        return self._cache

    async def _limited(
        self, api_name: str, fetch: Callable[[], Awaitable[FetchResult]]
    ) -> Optional[FetchResult]:
        """配额允许时记录并发起请求；配额用尽返回 None"""
        if not self._cache.can_make_request(api_name):
            logger.info(f"{api_name} 配额已用尽，跳过该数据源")
            return None
        self._cache.record_request(api_name)
        return await fetch()

    # ── 报价 ──────────────────────────────────────────────

    async def get_stock_quote(self, symbol: str) -> Optional[Asset]:
        """Yahoo → Alpha Vantage → Finnhub，第一个成功的结果即返回，不做字段合并"""
        sym = self._proc.canonical_symbol(symbol)
        key = make_key("stock_quote", sym)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        attempts: List[Callable[[], Awaitable[Optional[FetchResult]]]] = []
        if self._cache.can_scrape("yahoo_finance", 30):
            attempts.append(lambda: self._acq.yahoo_quote(sym))
        if self._acq.has_alpha_vantage:
            attempts.append(lambda: self._limited("ALPHA_VANTAGE", lambda: self._acq.alpha_vantage_quote(sym)))
        if self._acq.has_finnhub:
            attempts.append(lambda: self._limited("FINNHUB", lambda: self._acq.finnhub_quote(sym)))

        for attempt in attempts:
            result = await attempt()
            if result is not None and result.is_ok:
                self._cache.set(key, result.data, settings.QUOTE_CACHE_TTL, result.source)
                return result.data
        logger.info(f"所有数据源均未返回 {sym} 的股票报价")
        return None

    async def get_crypto_quote(self, symbol: str) -> Optional[Asset]:
        sym = self._proc.canonical_symbol(symbol)
        key = make_key("crypto_quote", sym)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        result = await self._limited("COINGECKO", lambda: self._acq.coingecko_quote(sym))
        if result is not None and result.is_ok:
            self._cache.set(key, result.data, settings.QUOTE_CACHE_TTL, result.source)
            return result.data
        return None

    async def get_quote(self, symbol: str, asset_type: str) -> Optional[Asset]:
        if validate_asset_type(asset_type) == "stock":
            return await self.get_stock_quote(symbol)
        return await self.get_crypto_quote(symbol)

    # ── 搜索 ──────────────────────────────────────────────

    async def search_assets(self, query: str) -> List[Asset]:
        """
        资产搜索：Yahoo → 内置热门股票表 → Finnhub（不足 6 条）→ CoinGecko（不足 8 条）

        按代码去重，最多返回 10 条；查询少于 2 个字符直接返回空列表。
        """
        q = (query or "").strip()
        if len(q) < 2:
            return []
        key = make_key("search", q.lower())
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        found: Dict[str, Asset] = {}

        def add(asset: Asset) -> None:
            if asset.symbol not in found:
                found[asset.symbol] = asset

        if self._cache.can_scrape("yahoo_finance_search", 20):
            result = await self._acq.yahoo_search(q)
            if result.is_ok:
                for asset in result.data:
                    add(asset)

        q_upper, q_lower = q.upper(), q.lower()
        if q_upper in POPULAR_STOCKS:
            add(Asset(symbol=q_upper, name=POPULAR_STOCKS[q_upper], type="stock", price=0))
        for sym, name in POPULAR_STOCKS.items():
            if q_upper in sym:
                add(Asset(symbol=sym, name=name, type="stock", price=0))
        for sym, name in POPULAR_STOCKS.items():
            if q_lower in name.lower():
                add(Asset(symbol=sym, name=name, type="stock", price=0))

        if self._acq.has_finnhub and len(found) < 6:
            result = await self._limited("FINNHUB", lambda: self._acq.finnhub_search(q))
            if result is not None and result.is_ok:
                for asset in result.data:
                    add(asset)

        if len(found) < 8:
            result = await self._limited("COINGECKO", lambda: self._acq.coingecko_search(q))
            if result is not None and result.is_ok:
                for asset in result.data:
                    if not is_tokenized_asset(asset.symbol, asset.name):
                        add(asset)

        assets = list(found.values())[:10]
        self._cache.set(key, assets, settings.SEARCH_CACHE_TTL, "search_combined")
        return assets

    # ── 涨跌榜 ────────────────────────────────────────────

    async def get_market_movers(self, asset_type: str, limit: int = 8) -> MarketMovers:
        asset_type = validate_asset_type(asset_type)
        key = make_key("market_movers", asset_type)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        movers = MarketMovers()
        source = "coingecko"
        if asset_type == "stock":
            source = "yahoo_finance"
            if self._cache.can_scrape("yahoo_market_movers", 10):
                result = await self._acq.yahoo_market_movers()
                if result.is_ok:
                    movers = result.data
            if movers.is_empty:
                source = "combined_stock"
                movers = await self._movers_from_quotes(limit)
        else:
            result = await self._limited("COINGECKO", lambda: self._acq.coingecko_market_movers(limit))
            if result is not None and result.is_ok:
                movers = result.data

        if not movers.is_empty:
            self._cache.set(key, movers, settings.MOVERS_CACHE_TTL, source)
        return movers

    async def _movers_from_quotes(self, limit: int) -> MarketMovers:
        quotes = await asyncio.gather(*(self.get_stock_quote(s) for s in MOVER_FALLBACK_SYMBOLS))
        valid = sorted((q for q in quotes if q is not None), key=lambda a: a.change_percent, reverse=True)
        if not valid:
            return MarketMovers()

        def to_mover(asset: Asset) -> MarketMover:
            return MarketMover(
                symbol=asset.symbol,
                name=asset.name,
                price=asset.price,
                change=asset.change,
                change_percent=asset.change_percent,
                volume=asset.volume,
            )

        return MarketMovers(
            gainers=[to_mover(a) for a in valid[:limit]],
            losers=[to_mover(a) for a in reversed(valid[-limit:])],
        )

    # ── K 线 ──────────────────────────────────────────────

    async def get_chart_data(
        self, symbol: str, asset_type: str, interval: str = "daily"
    ) -> List[ChartPoint]:
        """
        近 30 日日线，时间升序

        股票：Alpha Vantage 日线，失败时回退 yfinance；加密资产：CoinGecko OHLC。
        目前只提供日线，interval 仅参与缓存键。
        """
        asset_type = validate_asset_type(asset_type)
        sym = self._proc.canonical_symbol(symbol)
        key = make_key("chart", asset_type, sym, interval)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        result: Optional[FetchResult] = None
        if asset_type == "stock":
            if self._acq.has_alpha_vantage:
                result = await self._limited(
                    "ALPHA_VANTAGE", lambda: self._acq.alpha_vantage_daily_series(sym)
                )
            if result is None or not result.is_ok:
                result = await self._acq.yfinance_daily_series(sym)
        else:
            result = await self._limited("COINGECKO", lambda: self._acq.coingecko_ohlc(sym))

        if result is None or not result.is_ok:
            return []
        points = self._proc.to_chart_points(self._proc.normalize_ohlcv(result.data))
        if points:
            self._cache.set(key, points, settings.CHART_CACHE_TTL, result.source)
        return points

    # ── 新闻 ──────────────────────────────────────────────

    async def get_news(self, symbols: Optional[List[str]] = None) -> List[NewsArticle]:
        """
        NewsAPI（仅通用新闻）+ Alpha Vantage 新闻情绪 + Finnhub 公司新闻（最多 3 个代码 × 5 条），
        按 URL 去重，按发布时间倒序，最多 25 条
        """
        syms = [self._proc.canonical_symbol(s) for s in symbols or [] if s and s.strip()]
        key = make_key("news", ",".join(syms) or "general")
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        batches: List[List[NewsArticle]] = []

        if not syms and self._acq.has_news_api:
            result = await self._limited("NEWS_API", self._acq.newsapi_headlines)
            if result is not None and result.is_ok:
                batches.append(result.data)

        if self._acq.has_alpha_vantage:
            result = await self._limited(
                "ALPHA_VANTAGE", lambda: self._acq.alpha_vantage_news(syms or None)
            )
            if result is not None and result.is_ok:
                batches.append(result.data)

        if syms and self._acq.has_finnhub:
            for sym in syms[:3]:
                result = await self._limited(
                    "FINNHUB", lambda sym=sym: self._acq.finnhub_company_news(sym, limit=5)
                )
                if result is not None and result.is_ok:
                    batches.append(result.data)

        articles = self._proc.merge_news(*batches, limit=25)
        self._cache.set(key, articles, settings.NEWS_CACHE_TTL, "news_combined")
        return articles

    # ── 综合数据 ──────────────────────────────────────────

    async def aggregate_market_data(self, symbol: str, asset_type: str) -> Dict[str, Any]:
        """
        独立重新获取一次报价（股票走 Yahoo，加密资产走 CoinGecko），股票附加社交情绪；
        confidence 由可用数据源数量确定
        """
        asset_type = validate_asset_type(asset_type)
        sym = self._proc.canonical_symbol(symbol)
        prices: List[Asset] = []
        sentiment = []

        if asset_type == "stock":
            quote = await self._acq.yahoo_quote(sym)
            if quote.is_ok:
                prices.append(quote.data)
            for fetch in (self._sentiment.social_sentiment, self._sentiment.reddit_sentiment):
                result = await fetch(sym)
                if result.is_ok:
                    sentiment.append(result.data)
        else:
            quote = await self._limited("COINGECKO", lambda: self._acq.coingecko_quote(sym))
            if quote is not None and quote.is_ok:
                prices.append(quote.data)

        return {
            "prices": prices,
            "sentiment": sentiment,
            "confidence": data_confidence(len(prices) + len(sentiment)),
        }

    async def get_comprehensive_asset_data(self, symbol: str, asset_type: str) -> Dict[str, Any]:
        asset_type = validate_asset_type(asset_type)
        quote, news, aggregated = await asyncio.gather(
            self.get_quote(symbol, asset_type),
            self.get_news([symbol]),
            self.aggregate_market_data(symbol, asset_type),
        )
        return {
            "quote": quote,
            "news": news[:10],
            "sentiment": aggregated["sentiment"],
            "confidence": aggregated["confidence"],
        }


# ── 模块级别单例 ──────────────────────────────────────────
_market_service: Optional[MarketDataService] = None


def get_market_service() -> MarketDataService:
    global _market_service
    if _market_service is None:
        _market_service = MarketDataService()
    return _market_service


async def close_market_service() -> None:
    """释放共享 HTTP 客户端；下次访问时重新创建"""
    global _market_service
    _market_service = None
    await close_acquisition_layer()
