"""
领域数据模型
Python 侧使用 snake_case 属性，JSON 输出使用 camelCase 别名（changePercent、publishedAt ...）。
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AssetType = Literal["stock", "crypto"]
ASSET_TYPES = ("stock", "crypto")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> Dict[str, Any]:
        """序列化为接口输出格式（camelCase，datetime 转 ISO 字符串）"""
        return self.model_dump(by_alias=True, mode="json")


# ── 行情 ──────────────────────────────────────────────────

class Asset(CamelModel):
    symbol: str
    name: str
    type: AssetType
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: Optional[float] = None
    market_cap: Optional[float] = None
    high_24h: Optional[float] = Field(default=None, alias="high24h")
    low_24h: Optional[float] = Field(default=None, alias="low24h")


class NewsArticle(CamelModel):
    id: str
    title: str
    summary: Optional[str] = None
    url: str
    source: str = "Unknown"
    author: Optional[str] = None
    published_at: datetime
    symbols: List[str] = Field(default_factory=list)
    sentiment: Optional[float] = Field(default=None, ge=-1, le=1)


class MarketMover(CamelModel):
    symbol: str
    name: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: Optional[float] = None


class MarketMovers(CamelModel):
    gainers: List[MarketMover] = Field(default_factory=list)
    losers: List[MarketMover] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.gainers and not self.losers


class ChartPoint(CamelModel):
    timestamp: str                  # YYYY-MM-DD
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class SentimentData(CamelModel):
    symbol: str
    sentiment: float = Field(ge=0, le=1)
    confidence: float = Field(ge=0, le=1)
    mentions: int
    source: str


# ── AI 分析 ───────────────────────────────────────────────

class AIAnalysisRecord(CamelModel):
    symbol: str
    type: AssetType
    recommendation: Literal["buy", "sell", "hold"]
    confidence: float
    reasoning: str
    technical_score: Optional[float] = None
    fundamental_score: Optional[float] = None
    sentiment_score: Optional[float] = None
    risk_level: Literal["low", "medium", "high"] = "medium"
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    data_source: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime

    def to_api(self) -> Dict[str, Any]:
        data = super().to_api()
        data["lastUpdated"] = data["createdAt"]
        return data


# ── 用户与模拟交易 ────────────────────────────────────────

class User(CamelModel):
    id: str
    email: str
    name: str
    theme: str = "dark"
    created_at: datetime


class WatchlistItem(CamelModel):
    id: str
    user_id: str
    symbol: str
    type: AssetType
    name: str
    added_at: datetime


class Alert(CamelModel):
    id: str
    user_id: str
    symbol: str
    type: AssetType
    condition: Literal["above", "below"]
    target_price: float
    is_active: bool = True
    triggered: bool = False
    created_at: datetime


class Trade(CamelModel):
    id: str
    user_id: str
    symbol: str
    type: AssetType
    action: Literal["buy", "sell"]
    quantity: float
    price: float
    total_value: float
    fee: float
    status: Literal["pending", "completed", "cancelled", "rejected"]
    order_type: Literal["market", "limit", "stop", "stop_limit"] = "market"
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    time_in_force: Literal["day", "gtc", "ioc", "fok"] = "day"
    executed_at: datetime


class Portfolio(CamelModel):
    id: str
    user_id: str
    total_value: float
    cash_balance: float
    total_return: float = 0.0
    daily_return: float = 0.0
    created_at: datetime


class Position(CamelModel):
    symbol: str
    name: str
    type: AssetType
    quantity: float
    avg_price: float
    current_price: float
    total_value: float
    unrealized_pnl: float = Field(alias="unrealizedPnL")
    unrealized_pnl_percent: float = Field(alias="unrealizedPnLPercent")


class Recommendation(CamelModel):
    id: str
    user_id: str
    symbol: str
    type: AssetType
    recommendation: Literal["buy", "sell", "hold"]
    confidence: float = 50.0
    reasoning: str = ""
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    priority: Literal["low", "medium", "high"] = "medium"
    status: Literal["active", "dismissed", "executed"] = "active"
    created_at: datetime
    expires_at: datetime
    viewed_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None


class Notification(CamelModel):
    id: str
    user_id: str
    title: str
    message: str
    type: str
    read: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# ── 请求体 ────────────────────────────────────────────────

class SignupRequest(CamelModel):
    email: str
    password: str
    name: str


class LoginRequest(CamelModel):
    email: str
    password: str


class WatchlistAddRequest(CamelModel):
    symbol: str
    type: str
    name: Optional[str] = None


class AlertCreateRequest(CamelModel):
    symbol: str
    type: str
    condition: str
    target_price: float


class AlertUpdateRequest(CamelModel):
    is_active: Optional[bool] = None


class ProfileUpdateRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    theme: Optional[str] = None


class RecommendationCreateRequest(CamelModel):
    symbol: Optional[str] = None
    type: Optional[str] = None
    recommendation: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    priority: Optional[str] = None
    expires_at: Optional[datetime] = None


class RecommendationUpdateRequest(CamelModel):
    status: Optional[str] = None
    executed_at: Optional[datetime] = None


class NotificationUpdateRequest(CamelModel):
    read: Optional[bool] = None


class TradeRequest(CamelModel):
    symbol: str
    side: Optional[str] = None
    action: Optional[str] = None         # 旧版字段，等价于 side
    type: str = "stock"
    quantity: Optional[float] = None
    order_type: str = "market"
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    time_in_force: str = "day"
    dollar_amount: Optional[float] = None
    use_dollar_amount: bool = False
    current_price: Optional[float] = None
    price: Optional[float] = None
    confidence_score: Optional[float] = None
    ai_recommendation: Optional[str] = None
