"""
Layer 3 – 数据处理层
代码规范化、百分比解析、OHLCV 标准化（pandas）、新闻合并去重排序。
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from dashboard_service.models.schemas import ChartPoint, NewsArticle

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


class ProcessingLayer:
    """数据处理层：清洗 + 格式化 + 标准化"""

    # ── 标量 ──────────────────────────────────────────────

    @staticmethod
    def canonical_symbol(symbol: str) -> str:
        return (symbol or "").strip().upper()

    @staticmethod
    def parse_percent(value: Any) -> float:
        """'1.2345%' -> 1.2345；空值返回 0.0，非法字符串抛出 ValueError"""
        if value is None or value == "":
            return 0.0
        if isinstance(value, (int, float)):
            return float(value)
        return float(str(value).strip().rstrip("%"))

    @staticmethod
    def epoch_to_datetime(seconds: float) -> datetime:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    # ── K 线 ──────────────────────────────────────────────

    def normalize_ohlcv(self, records: List[Dict[str, Any]]) -> pd.DataFrame:
        """
        将原始 OHLCV 记录列表标准化为 DataFrame

        标准列：timestamp(YYYY-MM-DD), open, high, low, close, volume；
        按日期升序；同一日期的多根K线合并为日线（首开、最高、最低、末收、量求和），
        收盘价缺失的行被丢弃。
        """
        if not records:
            return pd.DataFrame(columns=OHLCV_COLUMNS)

        df = pd.DataFrame(records)
        for col in OHLCV_COLUMNS:
            if col not in df.columns:
                df[col] = 0.0 if col == "volume" else None

        for col in ["open", "high", "low", "close", "volume"]:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df["volume"] = df["volume"].fillna(0.0)

        df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce", utc=True)
        df = df.dropna(subset=["timestamp", "close"])
        if df.empty:
            return pd.DataFrame(columns=OHLCV_COLUMNS)

        # 开高低缺失时用收盘价补齐
        for col in ["open", "high", "low"]:
            df[col] = df[col].fillna(df["close"])

        # 日内K线（如 CoinGecko 4 小时线）按自然日聚合
        df = df.sort_values("timestamp", kind="stable")
        df["timestamp"] = df["timestamp"].dt.strftime("%Y-%m-%d")
        df = df.groupby("timestamp", sort=True, as_index=False).agg(
            open=("open", "first"),
            high=("high", "max"),
            low=("low", "min"),
            close=("close", "last"),
            volume=("volume", "sum"),
        )
        return df[OHLCV_COLUMNS].reset_index(drop=True)

    def to_chart_points(self, df: pd.DataFrame) -> List[ChartPoint]:
        if df.empty:
            return []
        return [ChartPoint(**row) for row in df.to_dict(orient="records")]

    # ── 新闻 ──────────────────────────────────────────────

    def merge_news(
        self, *batches: Iterable[NewsArticle], limit: Optional[int] = 25
    ) -> List[NewsArticle]:
        """按 URL 去重（先到先得），按发布时间倒序，截取前 limit 条"""
        seen = set()
        merged: List[NewsArticle] = []
        for batch in batches:
            for article in batch:
                if article.url in seen:
                    continue
                seen.add(article.url)
                merged.append(article)
        merged.sort(key=lambda a: a.published_at, reverse=True)
        return merged[:limit] if limit is not None else merged


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
