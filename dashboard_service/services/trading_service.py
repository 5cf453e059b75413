"""
模拟交易服务
- 账户：不存在时按 PAPER_STARTING_CASH 自动创建
- 持仓：按成交时间正序重放已完成交易，计算数量与平均成本
- 下单：校验 -> 定价 -> 资金/持仓检查 -> 判定订单状态 -> 记账 -> 通知
"""

import asyncio
import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from dashboard_service.config import settings
from dashboard_service.db.repositories import PortfolioRepository, TradeRepository
from dashboard_service.errors import (
    InsufficientFundsError,
    InsufficientPositionError,
    InvalidRequestError,
)
from dashboard_service.layers.processing import get_processing_layer
from dashboard_service.models.schemas import ASSET_TYPES, Portfolio, Position, Trade, TradeRequest
from dashboard_service.services.market_service import MarketDataService, get_market_service
from dashboard_service.services.notification_service import (
    NotificationService,
    get_notification_service,
)

logger = logging.getLogger(__name__)

TRADE_SIDES = ("buy", "sell")
ORDER_TYPES = ("market", "limit", "stop", "stop_limit")
TIME_IN_FORCE = ("day", "gtc", "ioc", "fok")
SOURCE = "simulated"


def trading_fee(total_value: float) -> float:
    """手续费：成交额的 PAPER_FEE_RATE，最低 PAPER_MIN_FEE"""
    return max(settings.PAPER_MIN_FEE, total_value * settings.PAPER_FEE_RATE)


def resolve_order_status(
    side: str, order_type: str, market_price: float,
    limit_price: Optional[float], stop_price: Optional[float],
) -> Tuple[str, float]:
    """返回 (订单状态, 执行价)

    限价单以限价成交；买入限价低于市价、卖出限价高于市价时挂单。
    止损单（含止损限价）一律挂单，执行价为止损价。
    """
    status, price = "completed", market_price
    if order_type == "limit":
        price = limit_price
        if (side == "buy" and limit_price < market_price) or (
            side == "sell" and limit_price > market_price
        ):
            status = "pending"
    elif order_type in ("stop", "stop_limit"):
        status, price = "pending", stop_price
    return status, price


def replay_positions(trades: List[Trade]) -> Dict[Tuple[str, str], Dict[str, float]]:
    """按成交顺序重放交易，得到 {(symbol, type): {quantity, total_cost, avg_price}}"""
    book: Dict[Tuple[str, str], Dict[str, float]] = {}
    for trade in trades:
        key = (trade.symbol, trade.type)
        pos = book.get(key, {"quantity": 0.0, "total_cost": 0.0, "avg_price": 0.0})
        if trade.action == "buy":
            pos["quantity"] += trade.quantity
            pos["total_cost"] += trade.total_value
        else:
            pos["quantity"] -= trade.quantity
            pos["total_cost"] -= trade.quantity * pos["avg_price"]
        if pos["quantity"] > 0:
            pos["avg_price"] = pos["total_cost"] / pos["quantity"]
            book[key] = pos
        else:
            book.pop(key, None)
    return book


class TradingService:

    def __init__(
        self,
        market: Optional[MarketDataService] = None,
        portfolios: Optional[PortfolioRepository] = None,
        trades: Optional[TradeRepository] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self._market = market or get_market_service()
        self._portfolios = portfolios or PortfolioRepository()
        self._trades = trades or TradeRepository()
        self._notifications = notifications or get_notification_service()
        self._proc = get_processing_layer()

    # ── 账户 ──────────────────────────────────────────────

    async def get_or_create_portfolio(self, user_id: str) -> Portfolio:
        portfolio = await self._portfolios.get(user_id)
        if portfolio is None:
            portfolio = Portfolio(
                id=uuid.uuid4().hex,
                user_id=user_id,
                total_value=settings.PAPER_STARTING_CASH,
                cash_balance=settings.PAPER_STARTING_CASH,
                created_at=datetime.now(tz=timezone.utc),
            )
            await self._portfolios.insert(portfolio)
            logger.info(f"创建模拟账户: {user_id}")
        return portfolio

    async def get_portfolio(self, user_id: str) -> Dict[str, Any]:
        """账户总览：持仓按实时报价估值，总值与收益率回写数据库"""
        portfolio = await self.get_or_create_portfolio(user_id)
        book = replay_positions(await self._trades.list_completed(user_id))

        keys = list(book.keys())
        quotes = await asyncio.gather(
            *(self._market.get_quote(symbol, asset_type) for symbol, asset_type in keys)
        )

        positions: List[Position] = []
        for (symbol, asset_type), quote in zip(keys, quotes):
            pos = book[(symbol, asset_type)]
            if quote is None:
                logger.warning(f"⚠️ 无法获取 {symbol} 报价，按成本价估值")
            current_price = quote.price if quote else pos["avg_price"]
            cost = pos["quantity"] * pos["avg_price"]
            value = pos["quantity"] * current_price
            pnl = value - cost
            positions.append(Position(
                symbol=symbol,
                name=quote.name if quote else symbol,
                type=asset_type,
                quantity=pos["quantity"],
                avg_price=pos["avg_price"],
                current_price=current_price,
                total_value=value,
                unrealized_pnl=pnl,
                unrealized_pnl_percent=(pnl / cost * 100) if cost else 0.0,
            ))

        total_value = portfolio.cash_balance + sum(p.total_value for p in positions)
        start = settings.PAPER_STARTING_CASH
        total_return = (total_value - start) / start * 100 if start else 0.0
        await self._portfolios.update(user_id, total_value=total_value, total_return=total_return)

        return {
            "totalValue": total_value,
            "cashBalance": portfolio.cash_balance,
            "totalReturn": total_return,
            "dailyReturn": portfolio.daily_return,
            "positions": [p.to_api() for p in positions],
            "source": SOURCE,
        }

    async def list_trades(self, user_id: str) -> List[Trade]:
        return await self._trades.list_for_user(user_id)

    # ── 下单 ──────────────────────────────────────────────

    @staticmethod
    def _validate(request: TradeRequest) -> str:
        side = request.side or request.action
        if not request.symbol or not side or not (request.quantity or request.dollar_amount):
            raise InvalidRequestError("Missing required fields")
        if request.type not in ASSET_TYPES or side not in TRADE_SIDES:
            raise InvalidRequestError("Invalid type or side")
        if request.order_type not in ORDER_TYPES:
            raise InvalidRequestError("Invalid order type")
        if request.time_in_force not in TIME_IN_FORCE:
            raise InvalidRequestError("Invalid time in force")
        if request.order_type in ("limit", "stop_limit") and not (
            request.limit_price and request.limit_price > 0
        ):
            raise InvalidRequestError(
                "Limit price is required and must be greater than 0 for limit orders"
            )
        if request.order_type in ("stop", "stop_limit") and not (
            request.stop_price and request.stop_price > 0
        ):
            raise InvalidRequestError(
                "Stop price is required and must be greater than 0 for stop orders"
            )
        return side

    async def _market_price(self, request: TradeRequest, symbol: str) -> float:
        price = request.current_price or request.price
        if not price:
            quote = await self._market.get_quote(symbol, request.type)
            price = quote.price if quote else None
        if not price or price <= 0:
            raise InvalidRequestError("Unable to get current price")
        return price

    async def _held_quantity(self, user_id: str, symbol: str, asset_type: str) -> float:
        trades = await self._trades.list_completed(user_id, symbol=symbol, asset_type=asset_type)
        return sum(t.quantity if t.action == "buy" else -t.quantity for t in trades)

    async def place_trade(self, user_id: str, request: TradeRequest) -> Dict[str, Any]:
        side = self._validate(request)
        symbol = self._proc.canonical_symbol(request.symbol)
        market_price = await self._market_price(request, symbol)

        if request.use_dollar_amount or not request.quantity:
            quantity = float(math.floor((request.dollar_amount or 0) / market_price))
        else:
            quantity = float(request.quantity)
        if quantity <= 0:
            raise InvalidRequestError("Invalid quantity calculated")

        status, execution_price = resolve_order_status(
            side, request.order_type, market_price, request.limit_price, request.stop_price
        )
        total_value = quantity * execution_price
        fee = trading_fee(total_value)

        portfolio = await self.get_or_create_portfolio(user_id)
        if side == "buy" and portfolio.cash_balance < total_value + fee:
            raise InsufficientFundsError(total_value + fee, portfolio.cash_balance)
        if side == "sell":
            held = await self._held_quantity(user_id, symbol, request.type)
            if held < quantity:
                raise InsufficientPositionError(symbol, held, quantity)

        trade = Trade(
            id=uuid.uuid4().hex,
            user_id=user_id,
            symbol=symbol,
            type=request.type,
            action=side,
            quantity=quantity,
            price=execution_price,
            total_value=total_value,
            fee=fee,
            status=status,
            order_type=request.order_type,
            limit_price=request.limit_price,
            stop_price=request.stop_price,
            time_in_force=request.time_in_force,
            executed_at=datetime.now(tz=timezone.utc),
        )
        await self._trades.insert(trade)

        completed = status == "completed"
        if completed:
            cash = (
                portfolio.cash_balance - (total_value + fee)
                if side == "buy"
                else portfolio.cash_balance + (total_value - fee)
            )
            await self._portfolios.update(user_id, cash_balance=cash)
        logger.info(f"模拟交易 {trade.id}: {side} {quantity} {symbol} @ {execution_price} [{status}]")

        order_label = request.order_type.upper()
        verb = "bought" if side == "buy" else "sold"
        await self._notifications.notify(
            user_id,
            title=f"Trade {'Executed' if completed else 'Placed'} (Simulated)",
            message=(
                f"Successfully {verb} {quantity:g} {symbol} at ${execution_price}"
                if completed
                else f"{order_label} order placed for {quantity:g} {symbol}"
            ),
            kind="trade",
            data={
                "tradeId": trade.id,
                "source": SOURCE,
                "orderType": request.order_type,
                "aiRecommendation": request.ai_recommendation,
                "confidenceScore": request.confidence_score,
            },
        )

        return {
            "trade": trade.to_api(),
            "source": SOURCE,
            "message": (
                "Trade executed successfully"
                if completed
                else f"{order_label} order placed successfully"
            ),
            "tradeDetails": {
                "symbol": symbol,
                "side": side,
                "quantity": quantity,
                "price": execution_price,
                "orderType": request.order_type,
                "estimatedValue": total_value,
            },
        }


# ── 模块级别单例 ──────────────────────────────────────────
_trading_service: Optional[TradingService] = None


def get_trading_service() -> TradingService:
    global _trading_service
    if _trading_service is None:
        _trading_service = TradingService()
    return _trading_service
