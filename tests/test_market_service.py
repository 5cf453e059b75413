"""行情服务测试：缓存优先、数据源回退、配额跳过"""

import random
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from dashboard_service.errors import InvalidRequestError
from dashboard_service.layers.acquisition import AcquisitionLayer, FetchResult
from dashboard_service.layers.cache import API_RATE_LIMITS, MarketDataCache
from dashboard_service.layers.sentiment import SentimentLayer
from dashboard_service.models.schemas import Asset, MarketMover, MarketMovers, NewsArticle
from dashboard_service.services.market_service import (
    MOVER_FALLBACK_SYMBOLS,
    MarketDataService,
    is_tokenized_asset,
    validate_asset_type,
)


def _asset(symbol: str, price: float = 100.0, change_percent: float = 1.0, asset_type: str = "stock") -> Asset:
    return Asset(symbol=symbol, name=symbol, type=asset_type, price=price, change_percent=change_percent)


def _article(url: str, day: int) -> NewsArticle:
    return NewsArticle(id=url, title=url, url=url, published_at=datetime(2024, 1, day, tzinfo=timezone.utc))


def _failed(source: str = "x") -> FetchResult:
    return FetchResult.failed(source, "boom")


@pytest.fixture
def acq():
    """所有 fetcher 默认返回 failed，需要时在用例中覆盖"""
    layer = MagicMock(spec=AcquisitionLayer)
    layer.has_alpha_vantage = False
    layer.has_finnhub = False
    layer.has_news_api = False
    for name in (
        "yahoo_quote", "yahoo_search", "yahoo_market_movers",
        "alpha_vantage_quote", "alpha_vantage_daily_series", "alpha_vantage_news",
        "finnhub_quote", "finnhub_search", "finnhub_company_news",
        "coingecko_quote", "coingecko_search", "coingecko_market_movers", "coingecko_ohlc",
        "newsapi_headlines", "yfinance_daily_series",
    ):
        setattr(layer, name, AsyncMock(return_value=_failed(name)))
    return layer


@pytest.fixture
def service(acq, clock):
    return MarketDataService(
        acquisition=acq,
        cache=MarketDataCache(clock=clock),
        sentiment=SentimentLayer(rng=random.Random(0)),
    )


class TestHelpers:
    def test_validate_asset_type(self):
        assert validate_asset_type("stock") == "stock"
        for bad in (None, "", "bond"):
            with pytest.raises(InvalidRequestError):
                validate_asset_type(bad)

    def test_tokenized_asset(self):
        assert is_tokenized_asset("AAPLX", "Apple xStock")
        assert is_tokenized_asset("WBTC", "Wrapped Bitcoin")
        assert is_tokenized_asset("TSLAX", "Something")
        assert not is_tokenized_asset("BTC", "Bitcoin")


class TestQuotes:
    async def test_stock_quote_cached(self, service, acq):
        acq.yahoo_quote.return_value = FetchResult.ok("yahoo_finance", _asset("AAPL"))
        first = await service.get_stock_quote("aapl")
        second = await service.get_stock_quote("AAPL")
        assert first.symbol == second.symbol == "AAPL"
        assert acq.yahoo_quote.await_count == 1

    async def test_cache_expires_after_ttl(self, service, acq, clock):
        acq.yahoo_quote.return_value = FetchResult.ok("yahoo_finance", _asset("AAPL"))
        await service.get_stock_quote("AAPL")
        clock.advance(60)
        await service.get_stock_quote("AAPL")
        assert acq.yahoo_quote.await_count == 2

    async def test_fallback_to_alpha_vantage(self, service, acq):
        acq.has_alpha_vantage = True
        acq.alpha_vantage_quote.return_value = FetchResult.ok("alpha_vantage", _asset("MSFT", 300))
        quote = await service.get_stock_quote("MSFT")
        assert quote.price == 300
        assert service.cache.stats()["rate_limits"]["ALPHA_VANTAGE"]["today"] == 1

    async def test_first_success_wins(self, service, acq):
        acq.has_alpha_vantage = True
        acq.has_finnhub = True
        acq.alpha_vantage_quote.return_value = FetchResult.ok("alpha_vantage", _asset("MSFT", 300))
        acq.finnhub_quote.return_value = FetchResult.ok("finnhub", _asset("MSFT", 301))
        quote = await service.get_stock_quote("MSFT")
        assert quote.price == 300
        acq.finnhub_quote.assert_not_awaited()

    async def test_yahoo_throttled(self, service, acq):
        """两次 Yahoo 抓取间隔不足 2 秒时跳过 Yahoo"""
        acq.has_finnhub = True
        acq.yahoo_quote.return_value = FetchResult.ok("yahoo_finance", _asset("AAPL"))
        acq.finnhub_quote.return_value = FetchResult.ok("finnhub", _asset("MSFT"))
        await service.get_stock_quote("AAPL")
        await service.get_stock_quote("MSFT")
        assert acq.yahoo_quote.await_count == 1
        acq.finnhub_quote.assert_awaited_once()

    async def test_exhausted_quota_skips_source(self, service, acq):
        acq.has_alpha_vantage = True
        acq.has_finnhub = True
        acq.finnhub_quote.return_value = FetchResult.ok("finnhub", _asset("NVDA"))
        for _ in range(API_RATE_LIMITS["ALPHA_VANTAGE"]["per_minute"]):
            service.cache.record_request("ALPHA_VANTAGE")
        quote = await service.get_stock_quote("NVDA")
        assert quote.symbol == "NVDA"
        acq.alpha_vantage_quote.assert_not_awaited()

    async def test_all_sources_fail(self, service, acq):
        assert await service.get_stock_quote("ZZZZ") is None
        assert service.cache.stats()["entries"] == 0

    async def test_crypto_quote(self, service, acq):
        acq.coingecko_quote.return_value = FetchResult.ok("coingecko", _asset("BTC", 50000, asset_type="crypto"))
        quote = await service.get_quote("btc", "crypto")
        assert quote.type == "crypto"
        assert service.cache.stats()["rate_limits"]["COINGECKO"]["today"] == 1

    async def test_invalid_type(self, service):
        with pytest.raises(InvalidRequestError):
            await service.get_quote("AAPL", "bond")


class TestSearch:
    async def test_short_query(self, service, acq):
        assert await service.search_assets("a") == []
        acq.yahoo_search.assert_not_awaited()

    async def test_popular_table_and_dedupe(self, service, acq):
        acq.yahoo_search.return_value = FetchResult.ok(
            "yahoo_finance_search", [Asset(symbol="AAPL", name="Apple Inc.", type="stock", price=0)]
        )
        results = await service.search_assets("apple")
        symbols = [a.symbol for a in results]
        assert symbols.count("AAPL") == 1
        assert len(results) <= 10

    async def test_crypto_results_filter_tokenized(self, service, acq):
        acq.coingecko_search.return_value = FetchResult.ok("coingecko", [
            Asset(symbol="ZZCOIN", name="Zz Coin", type="crypto", price=0),
            Asset(symbol="ZZWRAP", name="Wrapped Zz", type="crypto", price=0),
        ])
        results = await service.search_assets("zz")
        symbols = [a.symbol for a in results]
        assert "ZZCOIN" in symbols
        assert "ZZWRAP" not in symbols

    async def test_results_cached(self, service, acq):
        await service.search_assets("tesla")
        await service.search_assets("Tesla")
        assert acq.coingecko_search.await_count == 1


class TestMarketMovers:
    async def test_yahoo_movers(self, service, acq):
        movers = MarketMovers(gainers=[MarketMover(symbol="UP", name="Up", price=1, change_percent=5)])
        acq.yahoo_market_movers.return_value = FetchResult.ok("yahoo_finance", movers)
        result = await service.get_market_movers("stock")
        assert result.gainers[0].symbol == "UP"

    async def test_stock_fallback_from_quotes(self, service, acq):
        pct = {sym: float(i) for i, sym in enumerate(MOVER_FALLBACK_SYMBOLS)}

        async def quote(symbol):
            return FetchResult.ok("finnhub", _asset(symbol, change_percent=pct[symbol]))

        acq.has_finnhub = True
        acq.finnhub_quote.side_effect = quote
        result = await service.get_market_movers("stock")
        assert len(result.gainers) == 8
        assert result.gainers[0].symbol == MOVER_FALLBACK_SYMBOLS[-1]
        assert result.losers[0].symbol == MOVER_FALLBACK_SYMBOLS[0]

    async def test_empty_movers_not_cached(self, service, acq):
        await service.get_market_movers("crypto")
        await service.get_market_movers("crypto")
        assert acq.coingecko_market_movers.await_count == 2


class TestChartAndNews:
    async def test_chart_falls_back_to_yfinance(self, service, acq):
        acq.has_alpha_vantage = True
        acq.yfinance_daily_series.return_value = FetchResult.ok("yfinance", [
            {"timestamp": "2024-01-02", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10},
            {"timestamp": "2024-01-01", "open": 1, "high": 2, "low": 0.5, "close": 1.0, "volume": 10},
        ])
        points = await service.get_chart_data("AAPL", "stock")
        assert [p.timestamp for p in points] == ["2024-01-01", "2024-01-02"]
        acq.alpha_vantage_daily_series.assert_awaited_once()

        await service.get_chart_data("AAPL", "stock")
        assert acq.yfinance_daily_series.await_count == 1

    async def test_chart_no_data(self, service, acq):
        assert await service.get_chart_data("BTC", "crypto") == []

    async def test_news_merged_and_deduped(self, service, acq):
        acq.has_alpha_vantage = True
        acq.has_finnhub = True
        acq.alpha_vantage_news.return_value = FetchResult.ok("alpha_vantage", [_article("https://a", 1)])
        acq.finnhub_company_news.return_value = FetchResult.ok(
            "finnhub", [_article("https://a", 2), _article("https://b", 3)]
        )
        articles = await service.get_news(["aapl", "msft", "nvda", "tsla"])
        assert [a.url for a in articles] == ["https://b", "https://a"]
        assert acq.finnhub_company_news.await_count == 3

    async def test_general_news_uses_newsapi(self, service, acq):
        acq.has_news_api = True
        acq.newsapi_headlines.return_value = FetchResult.ok("news_api", [_article("https://n", 4)])
        articles = await service.get_news()
        assert len(articles) == 1
        acq.finnhub_company_news.assert_not_awaited()


class TestAggregation:
    async def test_aggregate_stock_confidence(self, service, acq):
        acq.yahoo_quote.return_value = FetchResult.ok("yahoo_finance", _asset("AAPL"))
        data = await service.aggregate_market_data("AAPL", "stock")
        assert len(data["prices"]) == 1
        assert len(data["sentiment"]) == 2
        assert data["confidence"] == 70

    async def test_aggregate_crypto_without_data(self, service, acq):
        data = await service.aggregate_market_data("BTC", "crypto")
        assert data["prices"] == []
        assert data["confidence"] == 30

    async def test_comprehensive_data(self, service, acq):
        acq.has_finnhub = True
        acq.finnhub_quote.return_value = FetchResult.ok("finnhub", _asset("AAPL"))
        data = await service.get_comprehensive_asset_data("AAPL", "stock")
        assert data["quote"].symbol == "AAPL"
        assert data["news"] == []
        assert set(data) == {"quote", "news", "sentiment", "confidence"}
