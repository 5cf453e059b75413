"""
自选列表服务
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from dashboard_service.db.repositories import WatchlistRepository
from dashboard_service.errors import ConflictError, InvalidRequestError, NotFoundError
from dashboard_service.layers.processing import get_processing_layer
from dashboard_service.models.schemas import WatchlistItem
from dashboard_service.services.market_service import (
    MarketDataService,
    get_market_service,
    validate_asset_type,
)

logger = logging.getLogger(__name__)


class WatchlistService:

    def __init__(
        self,
        market: Optional[MarketDataService] = None,
        repository: Optional[WatchlistRepository] = None,
    ):
        self._market = market or get_market_service()
        self._repo = repository or WatchlistRepository()
        self._proc = get_processing_layer()

    async def list_items(self, user_id: str) -> List[Dict[str, Any]]:
        """自选条目（最新添加在前），附带实时报价字段；取不到报价时填 0"""
        items = await self._repo.list_for_user(user_id)
        quotes = await asyncio.gather(
            *(self._market.get_quote(item.symbol, item.type) for item in items)
        )
        rows = []
        for item, quote in zip(items, quotes):
            row = item.to_api()
            row.update({
                "price": quote.price if quote else 0,
                "change": quote.change if quote else 0,
                "changePercent": quote.change_percent if quote else 0,
                "volume": (quote.volume or 0) if quote else 0,
                "marketCap": (quote.market_cap or 0) if quote else 0,
            })
            rows.append(row)
        return rows

    async def add_item(
        self, user_id: str, symbol: str, asset_type: str, name: Optional[str] = None
    ) -> WatchlistItem:
        sym = self._proc.canonical_symbol(symbol)
        if not sym:
            raise InvalidRequestError("Invalid parameters")
        asset_type = validate_asset_type(asset_type)
        if await self._repo.get(user_id, sym, asset_type) is not None:
            raise ConflictError("Asset already in watchlist")

        item = WatchlistItem(
            id=uuid.uuid4().hex,
            user_id=user_id,
            symbol=sym,
            type=asset_type,
            name=(name or "").strip() or sym,
            added_at=datetime.now(tz=timezone.utc),
        )
        try:
            await self._repo.insert(item)
        except DuplicateKeyError as exc:
            raise ConflictError("Asset already in watchlist") from exc
        return item

    async def remove_item(self, user_id: str, symbol: str, asset_type: str) -> None:
        sym = self._proc.canonical_symbol(symbol)
        asset_type = validate_asset_type(asset_type)
        if await self._repo.delete(user_id, sym, asset_type) == 0:
            raise NotFoundError("Watchlist item not found")


# ── 模块级别单例 ──────────────────────────────────────────
_watchlist_service: Optional[WatchlistService] = None


def get_watchlist_service() -> WatchlistService:
    global _watchlist_service
    if _watchlist_service is None:
        _watchlist_service = WatchlistService()
    return _watchlist_service
