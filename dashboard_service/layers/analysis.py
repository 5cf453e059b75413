"""
Layer 4 – 分析层
技术特征（波动率 / 趋势 / 支撑阻力）、数据置信度、置信度融合，
以及 LLM 输出的清洗与字段解码。本模块内均为纯函数，不做任何 I/O。
"""

import json
import logging
import math
import re
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from dashboard_service.errors import AnalysisParseError

logger = logging.getLogger(__name__)

DEFAULT_REASONING = (
    "Analysis completed based on comprehensive market data from multiple sources."
)


class AnalysisLayer:
    """在收盘价序列上计算技术特征"""

    @staticmethod
    def _series(closes: Sequence[float]) -> pd.Series:
        return pd.Series(list(closes), dtype="float64")

    def volatility(self, closes: Sequence[float]) -> float:
        """逐期收益率的总体标准差 × 100；少于 2 个点返回 0"""
        if len(closes) < 2:
            return 0.0
        returns = self._series(closes).pct_change()
        returns = returns.replace([math.inf, -math.inf], float("nan")).dropna()
        if returns.empty:
            return 0.0
        return float(returns.std(ddof=0) * 100)

    def trend(self, closes: Sequence[float]) -> str:
        """最近 10 期均值相对之前 10 期均值：>+2% bullish，<-2% bearish"""
        if len(closes) < 10:
            return "neutral"
        series = self._series(closes)
        recent = series.iloc[-10:]
        older = series.iloc[-20:-10]
        if older.empty:
            return "neutral"
        older_avg = older.mean()
        if older_avg == 0:
            return "neutral"
        change = (recent.mean() - older_avg) / older_avg
        if change > 0.02:
            return "bullish"
        if change < -0.02:
            return "bearish"
        return "neutral"

    def support_resistance(self, closes: Sequence[float]) -> Dict[str, float]:
        """排序后第 20 / 80 百分位的收盘价；少于 20 个点返回 0"""
        n = len(closes)
        if n < 20:
            return {"support": 0.0, "resistance": 0.0}
        ordered = sorted(float(c) for c in closes)
        return {
            "support": ordered[n * 20 // 100],
            "resistance": ordered[n * 80 // 100],
        }


# ── 置信度 ────────────────────────────────────────────────

def data_confidence(source_count: int) -> float:
    """聚合数据置信度：每个可用数据源 +20，基数 10，限制在 [30, 95]"""
    return float(min(95, max(30, source_count * 20 + 10)))


def blend_confidence(
    base: Optional[float],
    data_sources: int,
    volume: Optional[float],
    news_count: int,
    has_sentiment: bool,
    change_percent: float,
) -> Dict[str, float]:
    """
    融合模型自评置信度与数据可用性信号，返回各分项及 finalConfidence。

    final = base(默认 50) + min(25, 5·数据源数) + 成交量加分 + 新闻加分
            + 情绪加分 - 剧烈波动扣分，限制在 [20, 98]
    """
    base_confidence = 50.0 if base is None else float(base)
    factors = {
        "baseConfidence": base_confidence,
        "dataQualityBoost": float(min(25, data_sources * 5)),
        "volumeBoost": 5.0 if volume and volume > 1_000_000 else 0.0,
        "newsBoost": 5.0 if news_count > 5 else float(news_count),
        "sentimentBoost": 5.0 if has_sentiment else 0.0,
        "volatilityPenalty": -5.0 if abs(change_percent or 0) > 10 else 0.0,
    }
    total = sum(factors.values())
    factors["finalConfidence"] = min(98.0, max(20.0, total))
    return factors


# ── LLM 输出解析 ──────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def parse_llm_json(content: Optional[str]) -> Dict[str, Any]:
    """去掉 Markdown 代码块标记与尾随逗号后解析 JSON 对象"""
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", _FENCE_RE.sub("", content or "")).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise AnalysisParseError(f"LLM 返回内容不是合法 JSON: {exc}", raw_content=content or "") from exc
    if not isinstance(data, dict):
        raise AnalysisParseError("LLM 返回内容不是 JSON 对象", raw_content=content or "")
    return data


def _score(value: Any) -> Optional[float]:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    return min(100.0, max(0.0, score))


def _price(value: Any) -> Optional[float]:
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 and not math.isinf(price) else None


def _choice(*allowed: str):
    def coerce(value: Any) -> Optional[str]:
        text = str(value).strip().lower()
        return text if text in allowed else None
    return coerce


def _text(value: Any) -> Optional[str]:
    text = str(value).strip()
    return text or None


# 字段名 -> (候选键（camelCase 优先）, 转换函数, 默认值)
ANALYSIS_FIELDS = {
    "recommendation": (("recommendation",), _choice("buy", "sell", "hold"), "hold"),
    "confidence": (("confidence", "confidenceScore", "confidence_score"), _score, 50.0),
    "reasoning": (("reasoning",), _text, DEFAULT_REASONING),
    "technical_score": (("technicalScore", "technical_score"), _score, 50.0),
    "fundamental_score": (("fundamentalScore", "fundamental_score"), _score, 50.0),
    "sentiment_score": (("sentimentScore", "sentiment_score"), _score, 50.0),
    "risk_level": (("riskLevel", "risk_level"), _choice("low", "medium", "high"), "medium"),
    "target_price": (("targetPrice", "target_price"), _price, None),
    "stop_loss": (("stopLoss", "stop_loss"), _price, None),
}


def decode_analysis(raw: Dict[str, Any], asset_type: str) -> Dict[str, Any]:
    """
    按 ANALYSIS_FIELDS 宽松解码 LLM 输出。

    键存在且值非 None 才算提供；值无法转换时回退默认值。
    加密资产没有基本面评分，fundamental_score 恒为 None。
    """
    decoded: Dict[str, Any] = {}
    for field, (keys, coerce, default) in ANALYSIS_FIELDS.items():
        value = None
        for key in keys:
            if raw.get(key) is not None:
                value = coerce(raw[key])
                break
        decoded[field] = default if value is None else value
    if asset_type != "stock":
        decoded["fundamental_score"] = None
    return decoded


# ── 模块级别单例 ──────────────────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis
