"""
Layer 1 – 数据获取层
从多个行情数据提供商（Yahoo Finance / Alpha Vantage / Finnhub / CoinGecko / NewsAPI / yfinance）
拉取原始数据，映射为统一的数据模型后向上层提供。

每个 fetcher 只调用一个上游接口，返回 FetchResult，不向外抛出异常：
网络错误、非 2xx 状态码、格式异常的响应记为 failed，格式正确但没有数据记为 empty。
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from dashboard_service.config import settings
from dashboard_service.layers.processing import get_processing_layer
from dashboard_service.models.schemas import Asset, MarketMover, MarketMovers, NewsArticle

logger = logging.getLogger(__name__)

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"
YAHOO_SEARCH_URL = "https://query1.finance.yahoo.com/v1/finance/search"
YAHOO_SCREENER_URL = "https://query1.finance.yahoo.com/v1/finance/screener/predefined/saved"
ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co/query"
FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
NEWS_API_BASE_URL = "https://newsapi.org/v2"

_USER_AGENT = "Mozilla/5.0 (compatible; InvestmentDashboard/1.0)"

# 常见币种代码 -> CoinGecko coin id，其余按小写代码处理
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "XRP": "ripple",
    "LTC": "litecoin",
}


def coingecko_id(symbol: str) -> str:
    sym = symbol.strip().upper()
    return COINGECKO_IDS.get(sym, sym.lower())


@dataclass
class FetchResult:
    """单次上游调用结果：ok / empty / failed"""

    status: str
    source: str
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, source: str, data: Any) -> "FetchResult":
        return cls(status="ok", source=source, data=data)

    @classmethod
    def empty(cls, source: str) -> "FetchResult":
        return cls(status="empty", source=source)

    @classmethod
    def failed(cls, source: str, error: str) -> "FetchResult":
        return cls(status="failed", source=source, error=error)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"


def _describe_error(exc: Exception) -> str:
    # 异常文本可能包含带 apikey 的 URL，只保留状态码或异常类型
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.HTTPError):
        return type(exc).__name__
    return f"{type(exc).__name__}: {exc}"


def _raw(quote: dict, name: str) -> float:
    """Yahoo formatted=true 响应中的数值字段形如 {"raw": 1.2, "fmt": "1.20"}"""
    return (quote.get(name) or {}).get("raw") or 0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class AcquisitionLayer:
    """数据获取层：封装多数据源，提供统一的数据拉取接口"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        alpha_vantage_key: Optional[str] = None,
        finnhub_key: Optional[str] = None,
        news_api_key: Optional[str] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            headers={"User-Agent": _USER_AGENT},
            follow_redirects=True,
        )
        self._av_key = settings.ALPHA_VANTAGE_API_KEY if alpha_vantage_key is None else alpha_vantage_key
        self._finnhub_key = settings.FINNHUB_API_KEY if finnhub_key is None else finnhub_key
        self._news_key = settings.NEWS_API_KEY if news_api_key is None else news_api_key
        self._proc = get_processing_layer()

    @property
    def has_alpha_vantage(self) -> bool:
        return bool(self._av_key)

    @property
    def has_finnhub(self) -> bool:
        return bool(self._finnhub_key)

    @property
    def has_news_api(self) -> bool:
        return bool(self._news_key)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _fetch(
        self,
        source: str,
        url: str,
        params: Optional[Dict[str, Any]],
        parse: Callable[[Any], Any],
    ) -> FetchResult:
        """GET 一个 JSON 接口并用 parse 映射；parse 返回 None 或空集合视为 empty"""
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            data = parse(response.json())
        except Exception as exc:
            error = _describe_error(exc)
            logger.warning(f"数据获取失败（来源：{source}）: {error}")
            return FetchResult.failed(source, error)
        if data is None or (isinstance(data, (list, dict)) and not data):
            return FetchResult.empty(source)
        if isinstance(data, MarketMovers) and data.is_empty:
            return FetchResult.empty(source)
        return FetchResult.ok(source, data)

    # ── Yahoo Finance（非官方接口） ────────────────────────

    async def yahoo_quote(self, symbol: str) -> FetchResult:
        sym = self._proc.canonical_symbol(symbol)

        def parse(payload):
            results = (payload.get("chart") or {}).get("result") or []
            meta = results[0].get("meta") if results else None
            if not meta:
                return None
            price = meta.get("regularMarketPrice") or meta.get("previousClose")
            if price is None:
                return None
            prev = meta.get("previousClose") or meta.get("chartPreviousClose") or 0
            change = price - prev if prev else 0.0
            return Asset(
                symbol=sym,
                name=meta.get("longName") or meta.get("shortName") or sym,
                type="stock",
                price=price,
                change=change,
                change_percent=change / prev * 100 if prev else 0.0,
                volume=meta.get("regularMarketVolume"),
                market_cap=meta.get("marketCap"),
                high_24h=meta.get("regularMarketDayHigh"),
                low_24h=meta.get("regularMarketDayLow"),
            )

        return await self._fetch("yahoo_finance", f"{YAHOO_CHART_URL}/{sym}", None, parse)

    async def yahoo_search(self, query: str) -> FetchResult:
        def parse(payload):
            assets = []
            for quote in payload.get("quotes") or []:
                if quote.get("typeDisp") not in ("Equity", "ETF") or not quote.get("symbol"):
                    continue
                sym = self._proc.canonical_symbol(quote["symbol"])
                assets.append(Asset(
                    symbol=sym,
                    name=quote.get("longname") or quote.get("shortname") or sym,
                    type="stock",
                    price=0,
                ))
            return assets[:8]

        params = {"q": query, "lang": "en-US", "region": "US", "quotesCount": 10, "newsCount": 0}
        return await self._fetch("yahoo_finance_search", YAHOO_SEARCH_URL, params, parse)

    async def yahoo_market_movers(self) -> FetchResult:
        def parse_screener(payload) -> List[MarketMover]:
            results = (payload.get("finance") or {}).get("result") or []
            quotes = results[0].get("quotes") or [] if results else []
            movers = []
            for quote in quotes[:10]:
                sym = self._proc.canonical_symbol(quote["symbol"])
                movers.append(MarketMover(
                    symbol=sym,
                    name=quote.get("longName") or quote.get("shortName") or sym,
                    price=_raw(quote, "regularMarketPrice"),
                    change=_raw(quote, "regularMarketChange"),
                    change_percent=_raw(quote, "regularMarketChangePercent"),
                    volume=_raw(quote, "regularMarketVolume"),
                ))
            return movers

        base = {"formatted": "true", "lang": "en-US", "region": "US", "corsDomain": "finance.yahoo.com"}
        gainers = await self._fetch(
            "yahoo_finance", YAHOO_SCREENER_URL, {**base, "scrIds": "day_gainers"}, parse_screener
        )
        if gainers.status == "failed":
            return gainers
        losers = await self._fetch(
            "yahoo_finance", YAHOO_SCREENER_URL, {**base, "scrIds": "day_losers"}, parse_screener
        )
        if losers.status == "failed":
            return losers
        movers = MarketMovers(gainers=gainers.data or [], losers=losers.data or [])
        if movers.is_empty:
            return FetchResult.empty("yahoo_finance")
        return FetchResult.ok("yahoo_finance", movers)

    # ── Alpha Vantage ─────────────────────────────────────

    @staticmethod
    def _alpha_vantage_error(payload: dict) -> Optional[str]:
        for field in ("Error Message", "Note", "Information"):
            if payload.get(field):
                return field
        return None

    async def alpha_vantage_quote(self, symbol: str) -> FetchResult:
        if not self.has_alpha_vantage:
            return FetchResult.failed("alpha_vantage", "ALPHA_VANTAGE_API_KEY 未配置")
        sym = self._proc.canonical_symbol(symbol)

        def parse(payload):
            error = self._alpha_vantage_error(payload)
            if error:
                raise ValueError(f"Alpha Vantage 返回 {error}")
            quote = payload.get("Global Quote") or {}
            if not quote.get("05. price"):
                return None
            return Asset(
                symbol=sym,
                name=sym,
                type="stock",
                price=float(quote["05. price"]),
                change=float(quote.get("09. change") or 0),
                change_percent=self._proc.parse_percent(quote.get("10. change percent")),
                volume=float(quote.get("06. volume") or 0),
                high_24h=float(quote["03. high"]) if quote.get("03. high") else None,
                low_24h=float(quote["04. low"]) if quote.get("04. low") else None,
            )

        params = {"function": "GLOBAL_QUOTE", "symbol": sym, "apikey": self._av_key}
        return await self._fetch("alpha_vantage", ALPHA_VANTAGE_BASE_URL, params, parse)

    async def alpha_vantage_daily_series(self, symbol: str, days: int = 30) -> FetchResult:
        """最近 days 个交易日的原始 OHLCV 记录（未排序）"""
        if not self.has_alpha_vantage:
            return FetchResult.failed("alpha_vantage", "ALPHA_VANTAGE_API_KEY 未配置")
        sym = self._proc.canonical_symbol(symbol)

        def parse(payload):
            error = self._alpha_vantage_error(payload)
            if error:
                raise ValueError(f"Alpha Vantage 返回 {error}")
            series = payload.get("Time Series (Daily)") or {}
            latest = sorted(series.items(), reverse=True)[:days]
            return [
                {
                    "timestamp": day,
                    "open": values.get("1. open"),
                    "high": values.get("2. high"),
                    "low": values.get("3. low"),
                    "close": values.get("4. close"),
                    "volume": values.get("5. volume"),
                }
                for day, values in latest
            ]

        params = {"function": "TIME_SERIES_DAILY", "symbol": sym, "apikey": self._av_key}
        return await self._fetch("alpha_vantage", ALPHA_VANTAGE_BASE_URL, params, parse)

    async def alpha_vantage_news(self, symbols: Optional[List[str]] = None) -> FetchResult:
        if not self.has_alpha_vantage:
            return FetchResult.failed("alpha_vantage", "ALPHA_VANTAGE_API_KEY 未配置")

        def parse(payload):
            error = self._alpha_vantage_error(payload)
            if error:
                raise ValueError(f"Alpha Vantage 返回 {error}")
            articles = []
            for item in payload.get("feed") or []:
                if not item.get("url") or not item.get("time_published"):
                    continue
                published = datetime.strptime(item["time_published"], "%Y%m%dT%H%M%S")
                score = item.get("overall_sentiment_score")
                authors = item.get("authors") or []
                articles.append(NewsArticle(
                    id=item["url"],
                    title=item.get("title") or "",
                    summary=item.get("summary"),
                    url=item["url"],
                    source=item.get("source") or "Unknown",
                    author=authors[0] if authors else None,
                    published_at=published.replace(tzinfo=timezone.utc),
                    symbols=[t["ticker"] for t in item.get("ticker_sentiment") or [] if t.get("ticker")],
                    sentiment=_clamp(float(score), -1, 1) if score is not None else None,
                ))
            return articles

        params = {"function": "NEWS_SENTIMENT", "apikey": self._av_key, "limit": 20}
        if symbols:
            params["tickers"] = ",".join(self._proc.canonical_symbol(s) for s in symbols)
        return await self._fetch("alpha_vantage", ALPHA_VANTAGE_BASE_URL, params, parse)

    # ── Finnhub ───────────────────────────────────────────

    async def finnhub_quote(self, symbol: str) -> FetchResult:
        if not self.has_finnhub:
            return FetchResult.failed("finnhub", "FINNHUB_API_KEY 未配置")
        sym = self._proc.canonical_symbol(symbol)

        def parse(payload):
            price = payload.get("c")
            if not price or price <= 0:
                return None
            prev = payload.get("pc") or 0
            change = price - prev if prev else 0.0
            return Asset(
                symbol=sym,
                name=sym,
                type="stock",
                price=price,
                change=change,
                change_percent=change / prev * 100 if prev else 0.0,
                high_24h=payload.get("h"),
                low_24h=payload.get("l"),
            )

        params = {"symbol": sym, "token": self._finnhub_key}
        return await self._fetch("finnhub", f"{FINNHUB_BASE_URL}/quote", params, parse)

    async def finnhub_search(self, query: str) -> FetchResult:
        if not self.has_finnhub:
            return FetchResult.failed("finnhub", "FINNHUB_API_KEY 未配置")

        def parse(payload):
            assets = []
            for match in (payload.get("result") or [])[:3]:
                if not match.get("symbol"):
                    continue
                sym = self._proc.canonical_symbol(match["symbol"])
                assets.append(Asset(
                    symbol=sym,
                    name=match.get("description") or match.get("displaySymbol") or sym,
                    type="stock",
                    price=0,
                ))
            return assets

        params = {"q": query, "token": self._finnhub_key}
        return await self._fetch("finnhub", f"{FINNHUB_BASE_URL}/search", params, parse)

    async def finnhub_company_news(
        self, symbol: str, days: int = 7, limit: int = 5
    ) -> FetchResult:
        if not self.has_finnhub:
            return FetchResult.failed("finnhub", "FINNHUB_API_KEY 未配置")
        sym = self._proc.canonical_symbol(symbol)

        def parse(payload):
            if not isinstance(payload, list):
                raise ValueError("Finnhub company-news 返回格式异常")
            articles = []
            for item in payload[:limit]:
                if not item.get("url"):
                    continue
                articles.append(NewsArticle(
                    id=item["url"],
                    title=item.get("headline") or "",
                    summary=item.get("summary"),
                    url=item["url"],
                    source=item.get("source") or "Unknown",
                    published_at=self._proc.epoch_to_datetime(item.get("datetime") or 0),
                    symbols=[sym],
                ))
            return articles

        today = date.today()
        params = {
            "symbol": sym,
            "from": (today - timedelta(days=days)).isoformat(),
            "to": today.isoformat(),
            "token": self._finnhub_key,
        }
        return await self._fetch("finnhub", f"{FINNHUB_BASE_URL}/company-news", params, parse)

    # ── CoinGecko ─────────────────────────────────────────

    async def coingecko_quote(self, symbol: str) -> FetchResult:
        sym = self._proc.canonical_symbol(symbol)
        coin_id = coingecko_id(sym)

        def parse(payload):
            coin = payload.get(coin_id)
            if not coin or coin.get("usd") is None:
                return None
            price = float(coin["usd"])
            pct = float(coin.get("usd_24h_change") or 0)
            # 由 24h 涨跌幅反推绝对涨跌额
            change = price - price / (1 + pct / 100) if pct > -100 else 0.0
            return Asset(
                symbol=sym,
                name=sym,
                type="crypto",
                price=price,
                change=change,
                change_percent=pct,
                volume=coin.get("usd_24h_vol"),
                market_cap=coin.get("usd_market_cap"),
            )

        params = {
            "ids": coin_id,
            "vs_currencies": "usd",
            "include_24hr_change": "true",
            "include_24hr_vol": "true",
            "include_market_cap": "true",
        }
        return await self._fetch("coingecko", f"{COINGECKO_BASE_URL}/simple/price", params, parse)

    async def coingecko_search(self, query: str) -> FetchResult:
        def parse(payload):
            return [
                Asset(
                    symbol=self._proc.canonical_symbol(coin["symbol"]),
                    name=coin.get("name") or coin["symbol"],
                    type="crypto",
                    price=0,
                )
                for coin in (payload.get("coins") or [])[:5]
                if coin.get("symbol")
            ]

        return await self._fetch("coingecko", f"{COINGECKO_BASE_URL}/search", {"query": query}, parse)

    async def coingecko_market_movers(self, limit: int = 8) -> FetchResult:
        def parse_markets(payload) -> List[MarketMover]:
            if not isinstance(payload, list):
                raise ValueError("CoinGecko markets 返回格式异常")
            return [
                MarketMover(
                    symbol=self._proc.canonical_symbol(coin["symbol"]),
                    name=coin.get("name") or coin["symbol"],
                    price=coin.get("current_price") or 0,
                    change=coin.get("price_change_24h") or 0,
                    change_percent=coin.get("price_change_percentage_24h") or 0,
                    volume=coin.get("total_volume"),
                )
                for coin in payload
                if coin.get("symbol")
            ]

        url = f"{COINGECKO_BASE_URL}/coins/markets"
        base = {"vs_currency": "usd", "per_page": 10, "page": 1, "sparkline": "false"}
        top, bottom = await asyncio.gather(
            self._fetch("coingecko", url, {**base, "order": "percent_change_24h_desc"}, parse_markets),
            self._fetch("coingecko", url, {**base, "order": "percent_change_24h_asc"}, parse_markets),
        )
        for result in (top, bottom):
            if result.status == "failed":
                return result
        movers = MarketMovers(
            gainers=[m for m in top.data or [] if m.change_percent > 0][:limit],
            losers=[m for m in bottom.data or [] if m.change_percent < 0][:limit],
        )
        if movers.is_empty:
            return FetchResult.empty("coingecko")
        return FetchResult.ok("coingecko", movers)

    async def coingecko_ohlc(self, symbol: str, days: int = 30) -> FetchResult:
        """原始 OHLC 记录；CoinGecko OHLC 不含成交量"""
        coin_id = coingecko_id(symbol)

        def parse(payload):
            if not isinstance(payload, list):
                raise ValueError("CoinGecko ohlc 返回格式异常")
            return [
                {
                    "timestamp": datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc),
                    "open": row[1],
                    "high": row[2],
                    "low": row[3],
                    "close": row[4],
                    "volume": 0.0,
                }
                for row in payload
                if len(row) >= 5
            ]

        params = {"vs_currency": "usd", "days": days}
        return await self._fetch("coingecko", f"{COINGECKO_BASE_URL}/coins/{coin_id}/ohlc", params, parse)

    # ── NewsAPI ───────────────────────────────────────────

    async def newsapi_headlines(self) -> FetchResult:
        if not self.has_news_api:
            return FetchResult.failed("news_api", "NEWS_API_KEY 未配置")

        def parse(payload):
            if payload.get("status") == "error":
                raise ValueError(f"NewsAPI 返回错误: {payload.get('code')}")
            articles = []
            for item in payload.get("articles") or []:
                if not item.get("url") or not item.get("publishedAt"):
                    continue
                articles.append(NewsArticle(
                    id=item["url"],
                    title=item.get("title") or "",
                    summary=item.get("description"),
                    url=item["url"],
                    source=(item.get("source") or {}).get("name") or "Unknown",
                    author=item.get("author"),
                    published_at=datetime.fromisoformat(item["publishedAt"].replace("Z", "+00:00")),
                ))
            return articles

        params = {
            "q": "stock market OR finance OR economy",
            "language": "en",
            "sortBy": "publishedAt",
            "pageSize": 20,
            "apiKey": self._news_key,
        }
        return await self._fetch("news_api", f"{NEWS_API_BASE_URL}/everything", params, parse)

    # ── yfinance（库调用兜底） ─────────────────────────────

    async def yfinance_daily_series(self, symbol: str, days: int = 30) -> FetchResult:
        """通过 yfinance 获取日线；同步库调用放到线程池执行"""
        sym = self._proc.canonical_symbol(symbol)

        def load() -> List[Dict[str, Any]]:
            import yfinance as yf
            df = yf.Ticker(sym).history(period="3mo", interval="1d")
            df = df.tail(days).reset_index()
            return [
                {
                    "timestamp": row["Date"],
                    "open": float(row["Open"]),
                    "high": float(row["High"]),
                    "low": float(row["Low"]),
                    "close": float(row["Close"]),
                    "volume": float(row["Volume"]),
                }
                for _, row in df.iterrows()
            ]

        try:
            records = await asyncio.get_running_loop().run_in_executor(None, load)
        except Exception as exc:
            logger.warning(f"数据获取失败（来源：yfinance）: {_describe_error(exc)}")
            return FetchResult.failed("yfinance", _describe_error(exc))
        if not records:
            return FetchResult.empty("yfinance")
        return FetchResult.ok("yfinance", records)


# ── 模块级别单例 ──────────────────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    global _acquisition
    if _acquisition is None:
        _acquisition = AcquisitionLayer()
    return _acquisition


async def close_acquisition_layer() -> None:
    global _acquisition
    if _acquisition is not None:
        await _acquisition.close()
        _acquisition = None
