"""
投资建议服务
建议由用户（或前端根据 AI 分析）创建，默认 7 天后过期；
列表按优先级、置信度、创建时间倒序排列。
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from dashboard_service.db.repositories import RecommendationRepository
from dashboard_service.errors import InvalidRequestError, NotFoundError
from dashboard_service.layers.processing import get_processing_layer
from dashboard_service.models.schemas import Recommendation, RecommendationCreateRequest
from dashboard_service.services.market_service import validate_asset_type

logger = logging.getLogger(__name__)

RECOMMENDATION_ACTIONS = ("buy", "sell", "hold")
PRIORITIES = ("low", "medium", "high")
STATUSES = ("active", "dismissed", "executed")
DEFAULT_EXPIRY = timedelta(days=7)
MAX_LIMIT = 100

_PRIORITY_RANK = {"high": 2, "medium": 1, "low": 0}


def _sort_key(rec: Recommendation):
    return (_PRIORITY_RANK[rec.priority], rec.confidence, rec.created_at)


class RecommendationService:

    def __init__(self, repository: Optional[RecommendationRepository] = None):
        self._repo = repository or RecommendationRepository()
        self._proc = get_processing_layer()

    async def list_recommendations(
        self,
        user_id: str,
        status: str = "active",
        symbol: Optional[str] = None,
        asset_type: Optional[str] = None,
        limit: int = 10,
    ) -> List[Recommendation]:
        if status not in STATUSES:
            raise InvalidRequestError("Invalid status")
        filters = {"status": status}
        if symbol:
            filters["symbol"] = self._proc.canonical_symbol(symbol)
        if asset_type:
            filters["type"] = validate_asset_type(asset_type)
        items = await self._repo.list_for_user(user_id, **filters)
        items.sort(key=_sort_key, reverse=True)
        return items[: max(1, min(limit, MAX_LIMIT))]

    async def create_recommendation(
        self, user_id: str, request: RecommendationCreateRequest
    ) -> Recommendation:
        sym = self._proc.canonical_symbol(request.symbol)
        if not sym or not request.type or not request.recommendation:
            raise InvalidRequestError("Missing required fields")
        asset_type = validate_asset_type(request.type)
        if request.recommendation not in RECOMMENDATION_ACTIONS:
            raise InvalidRequestError("Invalid recommendation")
        priority = request.priority or "medium"
        if priority not in PRIORITIES:
            raise InvalidRequestError("Invalid priority")

        now = datetime.now(tz=timezone.utc)
        rec = Recommendation(
            id=uuid.uuid4().hex,
            user_id=user_id,
            symbol=sym,
            type=asset_type,
            recommendation=request.recommendation,
            confidence=request.confidence or 50.0,
            reasoning=request.reasoning or "",
            target_price=request.target_price,
            stop_loss=request.stop_loss,
            priority=priority,
            created_at=now,
            expires_at=request.expires_at or now + DEFAULT_EXPIRY,
        )
        await self._repo.insert(rec)
        logger.info(f"新建投资建议 {rec.id}: {rec.recommendation} {sym}")
        return rec

    async def update_recommendation(
        self,
        user_id: str,
        recommendation_id: str,
        status: Optional[str] = None,
        executed_at: Optional[datetime] = None,
    ) -> Recommendation:
        """修改状态（dismissed / executed 等）与执行时间；未给出的字段保持不变"""
        if status is not None and status not in STATUSES:
            raise InvalidRequestError("Invalid status")
        fields = {}
        if status is not None:
            fields["status"] = status
        if executed_at is not None:
            fields["executed_at"] = executed_at

        if fields:
            rec = await self._repo.update(user_id, recommendation_id, **fields)
        else:
            rec = await self._repo.get(user_id, recommendation_id)
        if rec is None:
            raise NotFoundError("Recommendation not found")
        return rec

    async def mark_viewed(self, user_id: str, recommendation_id: str) -> Recommendation:
        """首次查看时记录 viewed_at，之后保持不变"""
        rec = await self._repo.get(user_id, recommendation_id)
        if rec is None:
            raise NotFoundError("Recommendation not found")
        if rec.viewed_at is None:
            rec = await self._repo.update(
                user_id, recommendation_id, viewed_at=datetime.now(tz=timezone.utc)
            )
        return rec

    async def delete_recommendation(self, user_id: str, recommendation_id: str) -> None:
        if await self._repo.delete(user_id, recommendation_id) == 0:
            raise NotFoundError("Recommendation not found")


# ── 模块级别单例 ──────────────────────────────────────────
_recommendation_service: Optional[RecommendationService] = None


def get_recommendation_service() -> RecommendationService:
    global _recommendation_service
    if _recommendation_service is None:
        _recommendation_service = RecommendationService()
    return _recommendation_service
