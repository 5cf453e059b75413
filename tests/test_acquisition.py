"""数据获取层测试：使用 httpx.MockTransport 模拟各数据源响应"""

import httpx
import pytest

from dashboard_service.layers.acquisition import AcquisitionLayer, FetchResult, coingecko_id


def _layer(handler, **keys) -> AcquisitionLayer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    params = {"alpha_vantage_key": "", "finnhub_key": "", "news_api_key": ""}
    params.update(keys)
    return AcquisitionLayer(client=client, **params)


def _json(payload, status_code: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)
    return handler


class TestFetchResult:
    def test_statuses(self):
        assert FetchResult.ok("x", 1).is_ok
        assert FetchResult.empty("x").status == "empty"
        failed = FetchResult.failed("x", "boom")
        assert not failed.is_ok
        assert failed.error == "boom"

    def test_coingecko_id(self):
        assert coingecko_id("btc") == "bitcoin"
        assert coingecko_id("PEPE") == "pepe"


class TestYahoo:
    async def test_quote(self):
        payload = {"chart": {"result": [{"meta": {
            "regularMarketPrice": 110.0,
            "previousClose": 100.0,
            "longName": "Apple Inc.",
            "regularMarketVolume": 5_000_000,
        }}]}}
        result = await _layer(_json(payload)).yahoo_quote("aapl")
        assert result.is_ok
        asset = result.data
        assert asset.symbol == "AAPL"
        assert asset.name == "Apple Inc."
        assert asset.change == pytest.approx(10.0)
        assert asset.change_percent == pytest.approx(10.0)

    async def test_quote_without_result_is_empty(self):
        result = await _layer(_json({"chart": {"result": []}})).yahoo_quote("ZZZZ")
        assert result.status == "empty"

    async def test_http_error_is_failed(self):
        result = await _layer(_json({}, status_code=503)).yahoo_quote("AAPL")
        assert result.status == "failed"
        assert result.error == "HTTP 503"

    async def test_network_error_is_failed(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)
        result = await _layer(handler).yahoo_quote("AAPL")
        assert result.status == "failed"
        assert result.error == "ConnectError"

    async def test_search_filters_non_equities(self):
        payload = {"quotes": [
            {"symbol": "AAPL", "typeDisp": "Equity", "longname": "Apple Inc."},
            {"symbol": "AAPL240119C", "typeDisp": "Option"},
            {"symbol": "SPY", "typeDisp": "ETF", "shortname": "SPDR S&P 500"},
        ]}
        result = await _layer(_json(payload)).yahoo_search("a")
        assert [a.symbol for a in result.data] == ["AAPL", "SPY"]

    async def test_market_movers(self):
        def handler(request):
            scr = request.url.params["scrIds"]
            pct = 5.0 if scr == "day_gainers" else -5.0
            return httpx.Response(200, json={"finance": {"result": [{"quotes": [{
                "symbol": "UP" if pct > 0 else "DOWN",
                "regularMarketPrice": {"raw": 10.0},
                "regularMarketChangePercent": {"raw": pct},
            }]}]}})
        result = await _layer(handler).yahoo_market_movers()
        assert result.is_ok
        assert result.data.gainers[0].symbol == "UP"
        assert result.data.losers[0].change_percent == -5.0


class TestAlphaVantage:
    async def test_missing_key_is_failed(self):
        result = await _layer(_json({})).alpha_vantage_quote("AAPL")
        assert result.status == "failed"

    async def test_quote(self):
        payload = {"Global Quote": {
            "05. price": "150.00",
            "09. change": "1.50",
            "10. change percent": "1.0101%",
            "06. volume": "1000",
        }}
        result = await _layer(_json(payload), alpha_vantage_key="k").alpha_vantage_quote("aapl")
        assert result.is_ok
        assert result.data.price == 150.0
        assert result.data.change_percent == pytest.approx(1.0101)

    async def test_rate_limit_note_is_failed(self):
        payload = {"Note": "Thank you for using Alpha Vantage! Our standard API rate limit is ..."}
        result = await _layer(_json(payload), alpha_vantage_key="k").alpha_vantage_quote("AAPL")
        assert result.status == "failed"

    async def test_error_does_not_leak_api_key(self):
        result = await _layer(_json({}, status_code=500), alpha_vantage_key="secret-key").alpha_vantage_quote("AAPL")
        assert "secret-key" not in (result.error or "")

    async def test_daily_series_latest_days(self):
        series = {
            f"2024-01-{d:02d}": {"1. open": "1", "2. high": "2", "3. low": "0.5", "4. close": str(d), "5. volume": "10"}
            for d in range(1, 32)
        }
        result = await _layer(_json({"Time Series (Daily)": series}), alpha_vantage_key="k") \
            .alpha_vantage_daily_series("AAPL")
        assert len(result.data) == 30
        assert result.data[0]["timestamp"] == "2024-01-31"

    async def test_news_uses_tickers_and_clamps_sentiment(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"feed": [{
                "title": "Headline",
                "url": "https://news/1",
                "time_published": "20240105T120000",
                "overall_sentiment_score": 1.7,
                "ticker_sentiment": [{"ticker": "AAPL"}],
            }]})

        result = await _layer(handler, alpha_vantage_key="k").alpha_vantage_news(["aapl", "msft"])
        assert seen["tickers"] == "AAPL,MSFT"
        article = result.data[0]
        assert article.sentiment == 1.0
        assert article.symbols == ["AAPL"]


class TestFinnhub:
    async def test_quote(self):
        result = await _layer(_json({"c": 50.0, "pc": 40.0, "h": 51, "l": 39}), finnhub_key="k") \
            .finnhub_quote("msft")
        assert result.data.change_percent == pytest.approx(25.0)

    async def test_zero_price_is_empty(self):
        result = await _layer(_json({"c": 0, "pc": 0}), finnhub_key="k").finnhub_quote("ZZZZ")
        assert result.status == "empty"

    async def test_company_news(self):
        payload = [
            {"headline": f"h{i}", "url": f"https://f/{i}", "datetime": 1_700_000_000 + i}
            for i in range(8)
        ]
        result = await _layer(_json(payload), finnhub_key="k").finnhub_company_news("AAPL", limit=5)
        assert len(result.data) == 5
        assert result.data[0].symbols == ["AAPL"]


class TestCoinGecko:
    async def test_quote(self):
        payload = {"bitcoin": {"usd": 110.0, "usd_24h_change": 10.0, "usd_24h_vol": 1e9}}
        result = await _layer(_json(payload)).coingecko_quote("btc")
        assert result.data.type == "crypto"
        assert result.data.change == pytest.approx(10.0)

    async def test_unknown_coin_is_empty(self):
        result = await _layer(_json({})).coingecko_quote("NOPE")
        assert result.status == "empty"

    async def test_market_movers_split_by_sign(self):
        def handler(request):
            if request.url.params["order"].endswith("desc"):
                coins = [{"symbol": "up", "current_price": 1, "price_change_percentage_24h": 8},
                         {"symbol": "flat", "current_price": 1, "price_change_percentage_24h": 0}]
            else:
                coins = [{"symbol": "down", "current_price": 1, "price_change_percentage_24h": -4}]
            return httpx.Response(200, json=coins)

        result = await _layer(handler).coingecko_market_movers()
        assert [m.symbol for m in result.data.gainers] == ["UP"]
        assert [m.symbol for m in result.data.losers] == ["DOWN"]

    async def test_ohlc(self):
        payload = [[1_704_067_200_000, 1, 2, 0.5, 1.5], [1_704_153_600_000, 1.5, 2.5, 1, 2]]
        result = await _layer(_json(payload)).coingecko_ohlc("eth")
        assert len(result.data) == 2
        assert result.data[1]["close"] == 2


class TestNewsApi:
    async def test_headlines(self):
        payload = {"status": "ok", "articles": [{
            "title": "Markets rally",
            "url": "https://n/1",
            "publishedAt": "2024-01-05T10:00:00Z",
            "source": {"name": "Reuters"},
        }]}
        result = await _layer(_json(payload), news_api_key="k").newsapi_headlines()
        assert result.data[0].source == "Reuters"
        assert result.data[0].published_at.tzinfo is not None

    async def test_error_status_is_failed(self):
        result = await _layer(_json({"status": "error", "code": "rateLimited"}), news_api_key="k") \
            .newsapi_headlines()
        assert result.status == "failed"
