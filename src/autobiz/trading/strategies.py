"""Strategy service: CRUD plus the DCA, momentum and grid execution contracts."""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any

from autobiz.broker.base import BrokerRegistry
from autobiz.broker.models import OrderRequest, extract_price, normalize_symbol, to_decimal
from autobiz.clock import now_iso
from autobiz.config_loader import TradingConfig
from autobiz.constants import OrderSide, OrderType, Signal, StrategyType, Table
from autobiz.db.base import Row, WorkItemStore, to_json_value
from autobiz.errors import CollaboratorError, NotFoundError, ValidationError
from autobiz.integrations.activity import Notifier
from autobiz.integrations.order_gateway import OrderGateway, OrderGatewayRequest
from autobiz.trading.models import Strategy

logger = logging.getLogger(__name__)

QUANTITY_STEP = Decimal("0.00000001")
DEFAULT_MOMENTUM_LOOKBACK = 20
DEFAULT_MOMENTUM_THRESHOLD = Decimal("5")


def _close(bar: dict[str, Any]) -> Decimal:
    return to_decimal(bar.get("c") if bar.get("c") is not None else bar.get("close"))


class StrategyService:
    """
    Manages trading strategies and runs their execution contracts.

    DCA and grid orders are recorded as executions; nothing here retries a
    failed order.
    """

    def __init__(
        self,
        store: WorkItemStore,
        brokers: BrokerRegistry,
        gateway: OrderGateway,
        notifier: Notifier,
        config: TradingConfig | None = None,
    ) -> None:
        self.store = store
        self.brokers = brokers
        self.gateway = gateway
        self.notifier = notifier
        self.config = config or TradingConfig()

    async def _get(self, strategy_id: str, user_id: str | None = None) -> Strategy:
        filters: dict[str, Any] = {"id": strategy_id}
        if user_id:
            filters["user_id"] = user_id
        row = await self.store.first(Table.STRATEGIES, filters)
        if row is None:
            raise NotFoundError("Strategy not found")
        return Strategy.from_row(row)

    def _assert_live_supported(self, exchange: str, project_id: str | None) -> None:
        if exchange not in [e.lower() for e in self.config.live_exchanges]:
            raise ValidationError(f"Live trading is not supported on {exchange}")
        if not project_id:
            raise ValidationError("projectId required for live strategy execution")

    async def _increment_trades(self, strategy_id: str | None) -> None:
        if not strategy_id:
            return
        row = await self.store.get(Table.STRATEGIES, strategy_id)
        if row is None:
            return
        await self.store.update(
            Table.STRATEGIES,
            {"total_trades": int(row.get("total_trades") or 0) + 1, "updated_at": now_iso()},
            {"id": strategy_id},
        )

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create_strategy(
        self,
        user_id: str,
        name: str,
        exchange: str,
        strategy_type: str,
        parameters: dict[str, Any] | None = None,
        paper_mode: bool = True,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        if not name:
            raise ValidationError("Strategy name is required")
        try:
            kind = StrategyType(str(strategy_type).lower())
        except ValueError as e:
            raise ValidationError(f"Unknown strategy type: {strategy_type}") from e

        row = await self.store.insert(
            Table.STRATEGIES,
            {
                "user_id": user_id,
                "project_id": project_id,
                "name": name,
                "exchange": (exchange or "").lower(),
                "strategy_type": kind,
                "parameters": parameters or {},
                "paper_mode": paper_mode is not False,
                "is_active": False,
                "total_trades": 0,
                "last_executed_at": None,
            },
        )
        await self.notifier.notify(
            user_id,
            "trading",
            "Strategy Created",
            f'New {kind.value} strategy "{name}" created for {exchange}',
            {"strategyId": row["id"]},
        )
        return {"strategy": row, "message": "Strategy created successfully"}

    async def get_strategies(self, user_id: str, project_id: str | None = None) -> dict[str, Any]:
        filters: dict[str, Any] = {"user_id": user_id}
        if project_id:
            filters["project_id"] = project_id
        rows = await self.store.select(Table.STRATEGIES, filters, order_by="created_at", desc=True)
        return {"strategies": rows}

    async def toggle_strategy(
        self, strategy_id: str, is_active: bool, user_id: str | None = None
    ) -> dict[str, Any]:
        await self._get(strategy_id, user_id)
        updated = await self.store.update(
            Table.STRATEGIES,
            {"is_active": bool(is_active), "updated_at": now_iso()},
            {"id": strategy_id},
        )
        return {
            "strategy": updated[0] if updated else None,
            "message": f"Strategy {'activated' if is_active else 'paused'}",
        }

    async def execute_strategy(self, strategy_id: str, user_id: str | None = None) -> dict[str, Any]:
        """Manual trigger: run one strategy according to its type."""
        strategy = await self._get(strategy_id, user_id)
        if not strategy.is_active:
            return {"message": "Strategy is not active", "executed": False}

        if strategy.strategy_type == StrategyType.DCA.value:
            return await self.run_dca(
                strategy.id,
                strategy.project_id,
                strategy.param("symbol"),
                strategy.param("amount"),
                strategy.paper_mode,
                user_id=strategy.user_id,
                exchange=strategy.exchange,
            )
        if strategy.strategy_type == StrategyType.GRID.value:
            return await self.run_grid(
                strategy.id,
                strategy.project_id,
                strategy.param("symbol"),
                strategy.param("upper_price", strategy.param("upperPrice")),
                strategy.param("lower_price", strategy.param("lowerPrice")),
                strategy.param("grid_levels", strategy.param("gridLevels")),
                strategy.param("total_amount", strategy.param("totalAmount")),
                strategy.paper_mode,
                user_id=strategy.user_id,
                exchange=strategy.exchange,
            )
        if strategy.strategy_type == StrategyType.MOMENTUM.value:
            return await self.run_momentum(
                strategy.param("symbol"),
                strategy.param("lookback_period", strategy.param("lookbackPeriod", DEFAULT_MOMENTUM_LOOKBACK)),
                strategy.param("threshold", DEFAULT_MOMENTUM_THRESHOLD),
                user_id=strategy.user_id,
                exchange=strategy.exchange,
                strategy_id=strategy.id,
            )
        return {"message": "Strategy type not implemented", "executed": False}

    # -------------------------------------------------------------------------
    # Execution contracts
    # -------------------------------------------------------------------------

    async def run_dca(
        self,
        strategy_id: str | None,
        project_id: str | None,
        symbol: str | None,
        amount: Any,
        paper_mode: bool,
        *,
        user_id: str | None = None,
        exchange: str | None = None,
    ) -> dict[str, Any]:
        """
        Buy a fixed fiat ``amount`` of ``symbol`` at the current quote.

        Paper mode records a zero-pnl execution. Live mode places a market buy
        and records the broker's fill price (or the quote when none is
        reported).
        """
        numeric_amount = to_decimal(amount)
        if numeric_amount <= 0:
            raise ValidationError("Invalid DCA amount")
        if not symbol:
            raise ValidationError("symbol is required")

        if strategy_id and (user_id is None or exchange is None):
            strategy = await self._get(strategy_id)
            user_id = user_id or strategy.user_id
            exchange = exchange or strategy.exchange
        if not user_id or not exchange:
            raise ValidationError("userId and exchange are required")

        exchange = exchange.lower()
        adapter = self.brokers.get(exchange)
        price = extract_price(await adapter.get_quote(user_id, normalize_symbol(symbol)))
        if price <= 0:
            raise CollaboratorError(f"No price available for {symbol}")
        quantity = (numeric_amount / price).quantize(QUANTITY_STEP, rounding=ROUND_DOWN)

        if paper_mode:
            execution = await self.store.insert(
                Table.EXECUTIONS,
                {
                    "strategy_id": strategy_id,
                    "user_id": user_id,
                    "project_id": project_id,
                    "action": OrderSide.BUY,
                    "symbol": symbol,
                    "quantity": quantity,
                    "price": price,
                    "profit_loss": 0,
                    "executed_at": now_iso(),
                },
            )
            await self._increment_trades(strategy_id)
            logger.info(f"DCA paper buy: {quantity} {symbol} at {price}")
            return {
                "execution": execution,
                "message": f"DCA buy executed (paper): {quantity:.6f} {symbol} at ${price}",
                "paperMode": True,
            }

        self._assert_live_supported(exchange, project_id)
        order = await adapter.create_order(
            user_id, OrderRequest(symbol=symbol, side=OrderSide.BUY, qty=quantity)
        )
        fill_price = order.fill_price_or(price)
        execution = await self.store.insert(
            Table.EXECUTIONS,
            {
                "strategy_id": strategy_id,
                "user_id": user_id,
                "project_id": project_id,
                "action": OrderSide.BUY,
                "symbol": symbol,
                "quantity": order.qty,
                "price": fill_price,
                "profit_loss": 0,
                "executed_at": now_iso(),
                "order_id": order.id,
            },
        )
        await self._increment_trades(strategy_id)
        await self.notifier.notify(
            user_id,
            "trading",
            "DCA Trade Executed",
            f"Bought {order.qty:.6f} {symbol} at ${fill_price}",
            {"strategyId": strategy_id, "orderId": order.id},
        )
        logger.info(f"DCA live buy: {order.qty} {symbol} at {fill_price} (order {order.id})")
        return {
            "execution": execution,
            "order": {"id": order.id, "status": order.status},
            "message": f"DCA buy executed: {order.qty:.6f} {symbol}",
            "paperMode": False,
        }

    async def run_momentum(
        self,
        symbol: str | None,
        lookback_period: Any = DEFAULT_MOMENTUM_LOOKBACK,
        threshold: Any = DEFAULT_MOMENTUM_THRESHOLD,
        *,
        user_id: str,
        exchange: str,
        strategy_id: str | None = None,
    ) -> dict[str, Any]:
        """Signal from the percent change between the first and last close of the lookback."""
        if not symbol:
            raise ValidationError("symbol is required")
        adapter = self.brokers.get(exchange)
        bars = await adapter.get_bars(
            user_id,
            normalize_symbol(symbol),
            timeframe="1Day",
            limit=int(to_decimal(lookback_period, DEFAULT_MOMENTUM_LOOKBACK)),
        )
        if len(bars) < 2:
            return {
                "symbol": symbol,
                "signal": Signal.HOLD.value,
                "message": "Insufficient data for momentum analysis",
            }

        first, latest = _close(bars[0]), _close(bars[-1])
        if first <= 0:
            return {"symbol": symbol, "signal": Signal.HOLD.value, "message": "Invalid price history"}

        momentum = (latest - first) / first * 100
        limit = to_decimal(threshold, DEFAULT_MOMENTUM_THRESHOLD)
        signal = Signal.HOLD
        if momentum > limit:
            signal = Signal.BUY
        elif momentum < -limit:
            signal = Signal.SELL

        logger.debug(f"Momentum {symbol} ({strategy_id}): {momentum:.2f}% -> {signal.value}")
        return {
            "symbol": symbol,
            "momentum": f"{momentum:.2f}%",
            "signal": signal.value,
            "latestPrice": float(latest),
            "message": f"Momentum: {momentum:.2f}%, Signal: {signal.value.upper()}",
        }

    async def run_grid(
        self,
        strategy_id: str | None,
        project_id: str | None,
        symbol: str | None,
        upper_price: Any,
        lower_price: Any,
        grid_levels: Any,
        total_amount: Any,
        paper_mode: bool,
        *,
        user_id: str,
        exchange: str,
    ) -> dict[str, Any]:
        """
        Lay out ``grid_levels`` limit orders between the bounds.

        Levels below the current price are buys, the rest sells. Paper mode
        returns the plan; live mode submits each order through the gateway.
        """
        upper = to_decimal(upper_price)
        lower = to_decimal(lower_price)
        levels = int(to_decimal(grid_levels))
        total = to_decimal(total_amount)
        if upper <= lower:
            raise ValidationError("Invalid grid price range")
        if levels < 1:
            raise ValidationError("Invalid grid levels")
        if total <= 0:
            raise ValidationError("Invalid grid total amount")
        if not symbol:
            raise ValidationError("symbol is required")

        spacing = (upper - lower) / levels
        per_level = total / levels

        adapter = self.brokers.get(exchange)
        price = extract_price(await adapter.get_quote(user_id, normalize_symbol(symbol)))

        orders = []
        for i in range(levels):
            level_price = lower + spacing * i
            side = OrderSide.BUY if level_price < price else OrderSide.SELL
            orders.append(
                {
                    "side": side,
                    "price": level_price,
                    "amount": (per_level / level_price).quantize(QUANTITY_STEP, rounding=ROUND_DOWN)
                    if level_price > 0
                    else Decimal("0"),
                }
            )

        if paper_mode:
            return {
                "gridOrders": to_json_value(orders),
                "currentPrice": float(price),
                "message": f"Grid strategy setup (paper): {len(orders)} orders across ${lower}-${upper}",
                "paperMode": True,
            }

        self._assert_live_supported(exchange.lower(), project_id)
        executions = []
        for order in orders:
            executions.append(
                await self.gateway.submit(
                    OrderGatewayRequest(
                        project_id=project_id,
                        internal_user_id=user_id,
                        symbol=symbol,
                        side=order["side"],
                        quantity=order["amount"],
                        order_type=OrderType.LIMIT,
                        limit_price=order["price"],
                        strategy_id=strategy_id,
                        source="strategy-service:grid",
                    )
                )
            )
        return {
            "ordersPlaced": len(orders),
            "executions": executions,
            "message": f"Grid strategy active: {len(orders)} orders placed",
            "paperMode": False,
        }

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def get_trade_history(
        self, user_id: str, strategy_id: str | None = None, limit: int = 50
    ) -> dict[str, Any]:
        filters: dict[str, Any] = {"user_id": user_id}
        if strategy_id:
            filters["strategy_id"] = strategy_id
        rows = await self.store.select(
            Table.EXECUTIONS, filters, order_by="executed_at", desc=True, limit=limit
        )
        return {"trades": rows}

    async def get_performance(self, user_id: str) -> dict[str, Any]:
        strategies: list[Row] = await self.store.select(Table.STRATEGIES, {"user_id": user_id})
        executions: list[Row] = await self.store.select(Table.EXECUTIONS, {"user_id": user_id})

        total_trades = len(executions)
        pnls = [to_decimal(e.get("profit_loss")) for e in executions]
        total_pnl = sum(pnls, Decimal("0"))
        winning = sum(1 for pnl in pnls if pnl > 0)
        win_rate = Decimal(winning) / total_trades * 100 if total_trades else Decimal("0")

        return {
            "totalStrategies": len(strategies),
            "activeStrategies": sum(1 for s in strategies if s.get("is_active") is True),
            "totalTrades": total_trades,
            "totalPnL": float(total_pnl),
            "winRate": f"{win_rate:.2f}%",
            "averagePnL": f"{(total_pnl / total_trades if total_trades else Decimal('0')):.2f}",
        }
