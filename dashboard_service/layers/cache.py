"""
Layer 2 – 缓存层
进程内 TTL 缓存 + 各数据源 API 配额计数 + 非官方接口抓取节流。
状态只存在于进程生命周期内，时钟可注入以便测试。
"""

import hashlib
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# 各 API 配额：None 表示该维度不限制
API_RATE_LIMITS: Dict[str, Dict[str, Optional[int]]] = {
    "ALPHA_VANTAGE": {"per_minute": 5, "per_day": 25},
    "FINNHUB": {"per_minute": 60, "per_day": 1000},
    "NEWS_API": {"per_minute": None, "per_day": 1000},
    "COINGECKO": {"per_minute": 30, "per_day": None},
}

_MINUTE = 60.0
_DAY = 24 * 60 * 60.0


def make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + [str(p) for p in parts])
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    expires_in: float
    source: str = "unknown"

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp < self.expires_in


@dataclass
class RateLimitEntry:
    requests: List[float] = field(default_factory=list)
    daily_requests: int = 0
    last_reset: float = 0.0


class MarketDataCache:
    """行情数据缓存与限流状态"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._rate_limits: Dict[str, RateLimitEntry] = {}
        self._scrape_times: Dict[str, float] = {}

    # ── TTL 缓存 ──────────────────────────────────────────

    def set(self, key: str, data: Any, ttl: float, source: str = "unknown") -> None:
        self._entries[key] = CacheEntry(
            data=data, timestamp=self._clock(), expires_in=ttl, source=source
        )

    def get(self, key: str) -> Optional[Any]:
        """命中返回原对象；过期条目在读取时删除"""
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"缓存未命中: {key}")
            return None
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            logger.debug(f"缓存已过期: {key}")
            return None
        logger.debug(f"缓存命中（{entry.source}）: {key}")
        return entry.data

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> dict:
        """返回条目数、按来源分布以及各 API 配额使用情况"""
        sources = Counter(entry.source for entry in self._entries.values())
        rate_limits = {
            name: {
                "last_minute": self._recent_requests(entry),
                "today": entry.daily_requests,
            }
            for name, entry in self._rate_limits.items()
        }
        return {
            "entries": len(self._entries),
            "sources": dict(sources),
            "rate_limits": rate_limits,
        }

    # ── API 配额 ──────────────────────────────────────────

    def _rate_entry(self, api_name: str) -> RateLimitEntry:
        entry = self._rate_limits.get(api_name)
        if entry is None:
            entry = RateLimitEntry(last_reset=self._clock())
            self._rate_limits[api_name] = entry
        return entry

    def _recent_requests(self, entry: RateLimitEntry) -> int:
        cutoff = self._clock() - _MINUTE
        entry.requests = [t for t in entry.requests if t > cutoff]
        return len(entry.requests)

    def can_make_request(self, api_name: str) -> bool:
        """配额未用尽时返回 True；未配置配额的 API 不受限制"""
        limits = API_RATE_LIMITS.get(api_name)
        if not limits:
            return True

        entry = self._rate_entry(api_name)
        now = self._clock()
        if now - entry.last_reset > _DAY:
            entry.daily_requests = 0
            entry.last_reset = now

        per_day = limits.get("per_day")
        if per_day and entry.daily_requests >= per_day:
            logger.debug(f"{api_name} 今日配额已用尽")
            return False

        per_minute = limits.get("per_minute")
        if per_minute and self._recent_requests(entry) >= per_minute:
            logger.debug(f"{api_name} 每分钟配额已用尽")
            return False
        return True

    def record_request(self, api_name: str) -> None:
        entry = self._rate_entry(api_name)
        entry.requests.append(self._clock())
        entry.daily_requests += 1

    # ── 抓取节流 ──────────────────────────────────────────

    def can_scrape(self, source: str, limit_per_minute: int = 10) -> bool:
        """两次抓取之间至少间隔 60/limit 秒；返回 True 时记录本次抓取"""
        now = self._clock()
        last = self._scrape_times.get(source)
        min_interval = _MINUTE / limit_per_minute
        if last is None or now - last >= min_interval:
            self._scrape_times[source] = now
            return True
        return False


# ── 模块级别单例 ──────────────────────────────────────────
_cache: Optional[MarketDataCache] = None


def get_market_cache() -> MarketDataCache:
    global _cache
    if _cache is None:
        _cache = MarketDataCache()
    return _cache
