"""数据处理层测试"""

from datetime import datetime, timezone

import pytest

from dashboard_service.layers.processing import OHLCV_COLUMNS, ProcessingLayer
from dashboard_service.models.schemas import NewsArticle


def _article(url: str, day: int, title: str = "t") -> NewsArticle:
    return NewsArticle(
        id=url,
        title=title,
        url=url,
        published_at=datetime(2024, 1, day, tzinfo=timezone.utc),
    )


class TestScalars:
    def setup_method(self):
        self.proc = ProcessingLayer()

    def test_canonical_symbol(self):
        assert self.proc.canonical_symbol("  aapl ") == "AAPL"
        assert self.proc.canonical_symbol(None) == ""

    @pytest.mark.parametrize("raw, expected", [
        ("1.2345%", 1.2345),
        ("-0.5%", -0.5),
        (2.5, 2.5),
        ("", 0.0),
        (None, 0.0),
    ])
    def test_parse_percent(self, raw, expected):
        assert self.proc.parse_percent(raw) == pytest.approx(expected)

    def test_parse_percent_invalid(self):
        with pytest.raises(ValueError):
            self.proc.parse_percent("abc%")

    def test_epoch_to_datetime(self):
        dt = self.proc.epoch_to_datetime(0)
        assert dt == datetime(1970, 1, 1, tzinfo=timezone.utc)


class TestNormalizeOhlcv:
    def setup_method(self):
        self.proc = ProcessingLayer()

    def test_empty(self):
        df = self.proc.normalize_ohlcv([])
        assert df.empty
        assert list(df.columns) == OHLCV_COLUMNS

    def test_sorted_ascending_and_formatted(self):
        records = [
            {"timestamp": "2024-01-03", "open": "3", "high": "4", "low": "2", "close": "3.5", "volume": "100"},
            {"timestamp": "2024-01-01", "open": "1", "high": "2", "low": "0.5", "close": "1.5", "volume": "200"},
            {"timestamp": "2024-01-02", "open": "2", "high": "3", "low": "1", "close": "2.5", "volume": "300"},
        ]
        df = self.proc.normalize_ohlcv(records)
        assert list(df["timestamp"]) == ["2024-01-01", "2024-01-02", "2024-01-03"]
        assert df["close"].tolist() == [1.5, 2.5, 3.5]

    def test_datetime_timestamps(self):
        records = [
            {"timestamp": datetime(2024, 2, 1, 15, 30, tzinfo=timezone.utc), "close": 10},
        ]
        df = self.proc.normalize_ohlcv(records)
        assert df["timestamp"].iloc[0] == "2024-02-01"

    def test_missing_ohl_filled_from_close(self):
        df = self.proc.normalize_ohlcv([{"timestamp": "2024-01-01", "close": 5}])
        row = df.iloc[0]
        assert row["open"] == row["high"] == row["low"] == 5
        assert row["volume"] == 0

    def test_drops_rows_without_close_and_merges_same_day(self):
        records = [
            {"timestamp": "2024-01-01", "close": None},
            {"timestamp": "2024-01-02", "close": 1},
            {"timestamp": "2024-01-02", "close": 2},
        ]
        df = self.proc.normalize_ohlcv(records)
        assert len(df) == 1
        assert df["close"].iloc[0] == 2

    def test_all_rows_without_close(self):
        df = self.proc.normalize_ohlcv([{"timestamp": "2024-01-01", "close": None}])
        assert df.empty
        assert list(df.columns) == OHLCV_COLUMNS

    def test_intraday_candles_aggregated_per_day(self):
        # 4 小时K线，输入顺序打乱
        base = datetime(2024, 6, 1, tzinfo=timezone.utc)
        candles = [
            (0, 100, 105, 95, 101),
            (4, 101, 120, 99, 110),
            (8, 110, 112, 80, 90),
            (12, 90, 96, 88, 95),
            (16, 95, 99, 93, 94),
            (20, 94, 98, 93, 97),
        ]
        records = [
            {"timestamp": base.replace(hour=h), "open": o, "high": hi, "low": lo, "close": c, "volume": 10}
            for h, o, hi, lo, c in reversed(candles)
        ]
        records.append({"timestamp": datetime(2024, 6, 2, tzinfo=timezone.utc),
                        "open": 97, "high": 99, "low": 96, "close": 98, "volume": 5})

        df = self.proc.normalize_ohlcv(records)

        assert list(df["timestamp"]) == ["2024-06-01", "2024-06-02"]
        day = df.iloc[0]
        assert day["open"] == 100
        assert day["high"] == 120
        assert day["low"] == 80
        assert day["close"] == 97
        assert day["volume"] == 60
        assert df.iloc[1]["close"] == 98

    def test_to_chart_points(self):
        df = self.proc.normalize_ohlcv([
            {"timestamp": "2024-01-01", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10},
        ])
        points = self.proc.to_chart_points(df)
        assert len(points) == 1
        assert points[0].timestamp == "2024-01-01"
        assert points[0].to_api()["close"] == 1.5


class TestMergeNews:
    def setup_method(self):
        self.proc = ProcessingLayer()

    def test_dedupe_first_wins(self):
        merged = self.proc.merge_news(
            [_article("https://a", 1, title="first")],
            [_article("https://a", 2, title="second")],
        )
        assert len(merged) == 1
        assert merged[0].title == "first"

    def test_sorted_newest_first_and_limited(self):
        batch = [_article(f"https://n/{d}", d) for d in range(1, 29)]
        merged = self.proc.merge_news(batch, limit=25)
        assert len(merged) == 25
        assert merged[0].published_at.day == 28
        assert merged[-1].published_at.day == 4
