"""
价格提醒服务
只负责提醒的增删改查；触发判断不在本服务范围内。
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from dashboard_service.db.repositories import AlertRepository
from dashboard_service.errors import InvalidRequestError, NotFoundError
from dashboard_service.layers.processing import get_processing_layer
from dashboard_service.models.schemas import Alert
from dashboard_service.services.market_service import validate_asset_type

logger = logging.getLogger(__name__)

ALERT_CONDITIONS = ("above", "below")


class AlertService:

    def __init__(self, repository: Optional[AlertRepository] = None):
        self._repo = repository or AlertRepository()
        self._proc = get_processing_layer()

    async def list_alerts(self, user_id: str) -> List[Alert]:
        return await self._repo.list_for_user(user_id)

    async def create_alert(
        self, user_id: str, symbol: str, asset_type: str, condition: str, target_price: float
    ) -> Alert:
        sym = self._proc.canonical_symbol(symbol)
        if not sym or not condition or not target_price:
            raise InvalidRequestError("Missing required fields")
        asset_type = validate_asset_type(asset_type)
        if condition not in ALERT_CONDITIONS:
            raise InvalidRequestError("Invalid type or condition")
        if target_price <= 0:
            raise InvalidRequestError("Target price must be greater than 0")

        alert = Alert(
            id=uuid.uuid4().hex,
            user_id=user_id,
            symbol=sym,
            type=asset_type,
            condition=condition,
            target_price=float(target_price),
            created_at=datetime.now(tz=timezone.utc),
        )
        await self._repo.insert(alert)
        return alert

    async def update_alert(
        self, user_id: str, alert_id: str, is_active: Optional[bool] = None
    ) -> Alert:
        """目前只允许修改 is_active；不属于当前用户的提醒视为不存在"""
        if is_active is None:
            alert = await self._repo.get(user_id, alert_id)
        else:
            alert = await self._repo.update(user_id, alert_id, is_active=is_active)
        if alert is None:
            raise NotFoundError("Alert not found")
        return alert

    async def delete_alert(self, user_id: str, alert_id: str) -> None:
        if await self._repo.delete(user_id, alert_id) == 0:
            raise NotFoundError("Alert not found")


# ── 模块级别单例 ──────────────────────────────────────────
_alert_service: Optional[AlertService] = None


def get_alert_service() -> AlertService:
    global _alert_service
    if _alert_service is None:
        _alert_service = AlertService()
    return _alert_service
