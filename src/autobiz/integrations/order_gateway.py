"""Order Gateway collaborator: venue-agnostic order submission."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any

from autobiz.broker.base import BrokerRegistry
from autobiz.broker.models import OrderRequest, extract_price, normalize_symbol, to_decimal
from autobiz.clock import now_iso, parse_timestamp, utcnow
from autobiz.constants import (
    DEFAULT_DAILY_LOSS_LIMIT_PCT,
    DEFAULT_MAX_POSITION_PCT,
    DUPLICATE_ORDER_WINDOW_SECONDS,
    ActivityStatus,
    OrderSide,
    OrderStatus,
    OrderType,
    ProjectStatus,
    Table,
    TradingMode,
)
from autobiz.db.base import Row, WorkItemStore, to_json_value
from autobiz.errors import (
    CollaboratorError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from autobiz.integrations.activity import ActivityLog
from autobiz.integrations.http import FunctionClient

logger = logging.getLogger(__name__)


@dataclass
class OrderGatewayRequest:
    """Order submission routed through the gateway."""

    project_id: str
    internal_user_id: str
    symbol: str
    side: OrderSide
    quantity: Decimal
    order_type: OrderType = OrderType.MARKET
    limit_price: Decimal | None = None
    strategy_id: str | None = None
    source: str = "unknown"

    def validate(self) -> None:
        if not self.project_id:
            raise ValidationError("projectId is required")
        if not self.symbol:
            raise ValidationError("symbol is required")
        if not self.quantity > 0:
            raise ValidationError("quantity must be > 0")
        if self.order_type == OrderType.LIMIT and not (self.limit_price and self.limit_price > 0):
            raise ValidationError("limitPrice must be > 0 for limit orders")

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "projectId": self.project_id,
            "internalUserId": self.internal_user_id,
            "symbol": normalize_symbol(self.symbol),
            "side": self.side.value,
            "orderType": self.order_type.value,
            "quantity": float(self.quantity),
            "source": self.source,
        }
        if self.limit_price is not None:
            payload["limitPrice"] = float(self.limit_price)
        if self.strategy_id:
            payload["strategyId"] = self.strategy_id
        return payload


class OrderGateway(ABC):
    """Submits orders on behalf of a trading project."""

    @abstractmethod
    async def submit(self, request: OrderGatewayRequest) -> dict[str, Any]:
        """Submit the order. Raises on rejection."""


class HTTPOrderGateway(OrderGateway):
    """Gateway reached as a hosted function."""

    def __init__(self, client: FunctionClient, function: str = "trading-order-gateway") -> None:
        self.client = client
        self.function = function

    async def submit(self, request: OrderGatewayRequest) -> dict[str, Any]:
        request.validate()
        logger.info(
            f"Submitting {request.side.value} {request.quantity} {request.symbol} "
            f"via gateway (source={request.source})"
        )
        return await self.client.invoke(self.function, request.to_payload())


class BrokerOrderGateway(OrderGateway):
    """
    In-process gateway placing orders on the project's broker adapter.

    Every order passes the pre-trade checks first: the project must exist,
    be active, have a risk row and no active kill switch; identical orders
    inside the duplicate window, orders larger than ``max_position_pct`` of
    equity, buys beyond buying power and orders after the daily loss limit
    are refused. Paper projects get an order record and no broker call.
    """

    agent_id = "trading-order-gateway"
    agent_name = "Trading Order Gateway"

    def __init__(self, store: WorkItemStore, brokers: BrokerRegistry, activity: ActivityLog) -> None:
        self.store = store
        self.brokers = brokers
        self.activity = activity

    async def _load(self, request: OrderGatewayRequest) -> tuple[Row, Row]:
        owner = {"id": request.project_id, "user_id": request.internal_user_id}
        project = await self.store.first(Table.TRADING_PROJECTS, owner)
        if project is None:
            raise NotFoundError("Trading project not found")
        risk = await self.store.first(
            Table.RISK_CONTROLS,
            {"project_id": request.project_id, "user_id": request.internal_user_id},
        )
        if risk is None:
            raise ConfigurationError("Risk controls not configured")
        if project.get("status") != ProjectStatus.ACTIVE.value:
            raise ConflictError(f"Project is not active (status: {project.get('status')})")
        if risk.get("kill_switch_active"):
            raise ConflictError("Kill switch is active; trading is blocked")
        return project, risk

    async def _check_duplicate(self, request: OrderGatewayRequest, symbol: str) -> None:
        recent = await self.store.select(
            Table.ORDERS,
            {
                "project_id": request.project_id,
                "user_id": request.internal_user_id,
                "symbol": symbol,
                "side": request.side,
                "order_type": request.order_type,
                "quantity": request.quantity,
                "status": [OrderStatus.PENDING_APPROVAL, OrderStatus.APPROVED, OrderStatus.EXECUTED],
            },
        )
        window_start = utcnow() - timedelta(seconds=DUPLICATE_ORDER_WINDOW_SECONDS)
        for order in recent:
            created = parse_timestamp(order.get("created_at"))
            if created is not None and created >= window_start:
                raise ConflictError("Duplicate order detected; please retry after a few seconds")

    async def _realized_pnl_today(self, user_id: str) -> Decimal:
        day_start = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        total = Decimal("0")
        for row in await self.store.select(Table.EXECUTIONS, {"user_id": user_id}):
            executed = parse_timestamp(row.get("executed_at"))
            if executed is not None and executed >= day_start:
                total += to_decimal(row.get("profit_loss"))
        return total

    async def submit(self, request: OrderGatewayRequest) -> dict[str, Any]:
        request.validate()
        symbol = normalize_symbol(request.symbol)
        user_id = request.internal_user_id

        project, risk = await self._load(request)
        await self._check_duplicate(request, symbol)

        adapter = self.brokers.get(project.get("exchange") or "")
        market_price = extract_price(await adapter.get_quote(user_id, symbol))
        if market_price <= 0:
            raise CollaboratorError("Unable to determine reference market price")
        reference_price = request.limit_price if request.order_type == OrderType.LIMIT else market_price
        notional = request.quantity * reference_price

        account = await adapter.get_account(user_id)
        equity = to_decimal(
            account.get("equity") or account.get("portfolio_value") or project.get("capital")
        )
        buying_power = to_decimal(account.get("buying_power") or account.get("cash"))
        max_position_pct = to_decimal(risk.get("max_position_pct"), fallback=DEFAULT_MAX_POSITION_PCT)
        max_position = equity * max_position_pct / 100
        if notional > max_position:
            raise ConflictError(
                f"Order exceeds max position size. Notional ${notional:.2f} > limit ${max_position:.2f}"
            )
        if request.side == OrderSide.BUY and buying_power > 0 and notional > buying_power:
            raise ConflictError(
                f"Insufficient buying power. Required ${notional:.2f}, available ${buying_power:.2f}"
            )

        realized_today = await self._realized_pnl_today(user_id)
        daily_loss_pct = to_decimal(risk.get("daily_loss_limit"), fallback=DEFAULT_DAILY_LOSS_LIMIT_PCT)
        daily_loss_limit = equity * daily_loss_pct / 100
        if realized_today <= -daily_loss_limit:
            raise ConflictError(
                f"Daily loss limit reached ({daily_loss_pct}% / ${daily_loss_limit:.2f}). Trading blocked"
            )

        risk_checks = {
            "maxPositionNotional": float(max_position),
            "orderNotional": float(notional),
            "realizedPnLToday": float(realized_today),
            "dailyLossLimitUsd": float(daily_loss_limit),
        }
        live = project.get("mode") == TradingMode.LIVE.value
        record = await self.store.insert(
            Table.ORDERS,
            {
                "project_id": request.project_id,
                "user_id": user_id,
                "symbol": symbol,
                "side": request.side,
                "order_type": request.order_type,
                "quantity": request.quantity,
                "price": request.limit_price if request.order_type == OrderType.LIMIT else None,
                "gateway_source": request.source,
                "status": OrderStatus.APPROVED if live else OrderStatus.EXECUTED,
                "approved_by_ceo": live,
                "approved_by_user": live,
                "created_at": now_iso(),
            },
        )

        if not live:
            await self.activity.record_trading(
                request.project_id,
                user_id,
                self.agent_id,
                self.agent_name,
                f"Paper {request.side.value} order executed for {symbol}",
                ActivityStatus.COMPLETED,
                {
                    "source": request.source,
                    "orderId": record["id"],
                    "mode": TradingMode.PAPER.value,
                    "quantity": float(request.quantity),
                    "referencePrice": float(reference_price),
                    "notional": float(notional),
                },
            )
            return {"success": True, "mode": TradingMode.PAPER.value, "order": record, "riskChecks": risk_checks}

        order = await adapter.create_order(
            user_id,
            OrderRequest(
                symbol=symbol,
                side=request.side,
                qty=request.quantity,
                type=request.order_type,
                limit_price=request.limit_price,
            ),
        )
        price = order.fill_price_or(reference_price)
        executed_at = now_iso()
        await self.store.update(
            Table.ORDERS,
            {
                "broker_order_id": order.id,
                "status": OrderStatus.EXECUTED,
                "execution_price": price,
                "executed_at": executed_at,
            },
            {"id": record["id"]},
        )
        await self.store.insert(
            Table.EXECUTIONS,
            {
                "strategy_id": request.strategy_id,
                "user_id": user_id,
                "project_id": request.project_id,
                "action": request.side,
                "symbol": order.symbol,
                "quantity": request.quantity,
                "price": price,
                "profit_loss": 0,
                "executed_at": executed_at,
            },
        )
        await self.activity.record_trading(
            request.project_id,
            user_id,
            self.agent_id,
            self.agent_name,
            f"{request.side.value.upper()} order executed for {symbol}",
            ActivityStatus.COMPLETED,
            {
                "source": request.source,
                "orderId": record["id"],
                "brokerOrderId": order.id,
                "quantity": float(request.quantity),
                "executionPrice": float(price),
                "notional": float(notional),
            },
        )
        logger.info(f"Gateway order {order.status}: {request.side.value} {request.quantity} {symbol} @ {price}")

        return {
            "success": True,
            "mode": TradingMode.LIVE.value,
            "orderId": record["id"],
            "order": {
                "id": order.id,
                "symbol": order.symbol,
                "side": order.side.value,
                "qty": to_json_value(order.qty),
                "status": order.status,
                "filled_avg_price": to_json_value(order.filled_avg_price),
            },
            "riskChecks": risk_checks,
        }
