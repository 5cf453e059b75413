"""
业务仓储
每个集合一个仓储类，负责文档与领域模型之间的转换。
"""

import logging
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel

from dashboard_service.db.store import DocumentStore, get_document_store
from dashboard_service.models.schemas import (
    AIAnalysisRecord,
    Alert,
    Notification,
    Portfolio,
    Recommendation,
    Trade,
    User,
    WatchlistItem,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class Repository(Generic[M]):
    collection: str
    model: Type[M]

    def __init__(self, store: Optional[DocumentStore] = None):
        self._store = store

    @property
    def store(self) -> DocumentStore:
        # 未显式注入时每次按当前连接状态选择后端
        return self._store or get_document_store()

    def _load(self, doc: Optional[dict]) -> Optional[M]:
        return self.model.model_validate(doc) if doc else None

    async def _find_one(self, **query) -> Optional[M]:
        return self._load(await self.store.find_one(self.collection, query))

    async def _find(self, sort=None, **query) -> List[M]:
        docs = await self.store.find(self.collection, query, sort=sort)
        return [self.model.model_validate(d) for d in docs]

    async def insert(self, item: M) -> M:
        await self.store.insert(self.collection, item.model_dump())
        return item


class AnalysisRepository(Repository[AIAnalysisRecord]):
    collection = "ai_analyses"
    model = AIAnalysisRecord

    async def get(self, symbol: str, asset_type: str) -> Optional[AIAnalysisRecord]:
        return await self._find_one(symbol=symbol, type=asset_type)

    async def upsert(self, record: AIAnalysisRecord) -> AIAnalysisRecord:
        await self.store.upsert(
            self.collection,
            {"symbol": record.symbol, "type": record.type},
            record.model_dump(),
        )
        return record


class UserRepository(Repository[User]):
    collection = "users"
    model = User

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return await self._find_one(id=user_id)

    async def get_credentials(self, email: str) -> Optional[dict]:
        """返回包含 password_hash 的原始文档"""
        return await self.store.find_one(self.collection, {"email": email})

    async def create(self, user: User, password_hash: str) -> User:
        doc = user.model_dump()
        doc["password_hash"] = password_hash
        await self.store.insert(self.collection, doc)
        return user

    async def update(self, user_id: str, **fields) -> Optional[User]:
        return self._load(await self.store.update(self.collection, {"id": user_id}, fields))


class PortfolioRepository(Repository[Portfolio]):
    collection = "portfolios"
    model = Portfolio

    async def get(self, user_id: str) -> Optional[Portfolio]:
        return await self._find_one(user_id=user_id)

    async def update(self, user_id: str, **fields) -> Optional[Portfolio]:
        return self._load(await self.store.update(self.collection, {"user_id": user_id}, fields))


class TradeRepository(Repository[Trade]):
    collection = "trades"
    model = Trade

    async def list_for_user(self, user_id: str) -> List[Trade]:
        """按成交时间倒序"""
        return await self._find(sort=("executed_at", -1), user_id=user_id)

    async def list_completed(
        self, user_id: str, symbol: Optional[str] = None, asset_type: Optional[str] = None
    ) -> List[Trade]:
        """已完成交易，按成交时间正序"""
        query = {"user_id": user_id, "status": "completed"}
        if symbol is not None:
            query["symbol"] = symbol
        if asset_type is not None:
            query["type"] = asset_type
        return await self._find(sort=("executed_at", 1), **query)


class WatchlistRepository(Repository[WatchlistItem]):
    collection = "watchlists"
    model = WatchlistItem

    async def list_for_user(self, user_id: str) -> List[WatchlistItem]:
        return await self._find(sort=("added_at", -1), user_id=user_id)

    async def get(self, user_id: str, symbol: str, asset_type: str) -> Optional[WatchlistItem]:
        return await self._find_one(user_id=user_id, symbol=symbol, type=asset_type)

    async def delete(self, user_id: str, symbol: str, asset_type: str) -> int:
        return await self.store.delete(
            self.collection, {"user_id": user_id, "symbol": symbol, "type": asset_type}
        )


class AlertRepository(Repository[Alert]):
    collection = "alerts"
    model = Alert

    async def get(self, user_id: str, alert_id: str) -> Optional[Alert]:
        return await self._find_one(id=alert_id, user_id=user_id)

    async def list_for_user(self, user_id: str) -> List[Alert]:
        return await self._find(sort=("created_at", -1), user_id=user_id)

    async def update(self, user_id: str, alert_id: str, **fields) -> Optional[Alert]:
        doc = await self.store.update(self.collection, {"id": alert_id, "user_id": user_id}, fields)
        return self._load(doc)

    async def delete(self, user_id: str, alert_id: str) -> int:
        return await self.store.delete(self.collection, {"id": alert_id, "user_id": user_id})


class NotificationRepository(Repository[Notification]):
    collection = "notifications"
    model = Notification

    async def get(self, user_id: str, notification_id: str) -> Optional[Notification]:
        return await self._find_one(id=notification_id, user_id=user_id)

    async def list_for_user(self, user_id: str) -> List[Notification]:
        return await self._find(sort=("created_at", -1), user_id=user_id)

    async def update(self, user_id: str, notification_id: str, **fields) -> Optional[Notification]:
        doc = await self.store.update(
            self.collection, {"id": notification_id, "user_id": user_id}, fields
        )
        return self._load(doc)


class RecommendationRepository(Repository[Recommendation]):
    collection = "recommendations"
    model = Recommendation

    async def get(self, user_id: str, recommendation_id: str) -> Optional[Recommendation]:
        return await self._find_one(id=recommendation_id, user_id=user_id)

    async def list_for_user(self, user_id: str, **filters) -> List[Recommendation]:
        """按创建时间倒序；优先级排序由服务层完成"""
        return await self._find(sort=("created_at", -1), user_id=user_id, **filters)

    async def update(self, user_id: str, recommendation_id: str, **fields) -> Optional[Recommendation]:
        doc = await self.store.update(
            self.collection, {"id": recommendation_id, "user_id": user_id}, fields
        )
        return self._load(doc)

    async def delete(self, user_id: str, recommendation_id: str) -> int:
        return await self.store.delete(
            self.collection, {"id": recommendation_id, "user_id": user_id}
        )
