"""Simulation broker adapter."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any

from autobiz.broker.base import BrokerAdapter
from autobiz.broker.models import OrderRequest, OrderResult, generate_id, normalize_symbol
from autobiz.constants import OrderSide, OrderType
from autobiz.errors import CollaboratorError

logger = logging.getLogger(__name__)


class SimBrokerAdapter(BrokerAdapter):
    """
    Simulation broker for dry runs and tests.

    Prices are set by the driver (``set_price``). Market orders fill instantly
    at the last price; limit orders fill when marketable, otherwise rest as
    ``accepted``. Every call is counted per tool in ``calls``.
    """

    def __init__(
        self,
        exchange: str = "sim",
        initial_cash: Decimal = Decimal("100000.00"),
        slippage: Decimal = Decimal("0"),
    ):
        self.exchange = exchange
        self._cash = initial_cash
        self._last_equity = initial_cash
        self._equity_override: Decimal | None = None
        self.slippage = slippage
        self._prices: dict[str, Decimal] = {}
        self._bars: dict[str, list[dict[str, Any]]] = {}
        self._positions: dict[str, dict[str, Decimal]] = defaultdict(
            lambda: {"qty": Decimal("0"), "avg_price": Decimal("0")}
        )
        self.orders: list[OrderResult] = []
        self.calls: dict[str, int] = defaultdict(int)
        self.fail_tools: set[str] = set()

    # -------------------------------------------------------------------------
    # Driver controls
    # -------------------------------------------------------------------------

    def set_price(self, symbol: str, price: Decimal | float | str) -> None:
        self._prices[normalize_symbol(symbol)] = Decimal(str(price))

    def set_bars(self, symbol: str, closes: list[Decimal | float | str]) -> None:
        self._bars[normalize_symbol(symbol)] = [{"c": float(c)} for c in closes]

    def set_equity(self, equity: Decimal | float | str, last_equity: Decimal | float | str | None = None) -> None:
        """Pin reported equity (drawdown scenarios)."""
        self._equity_override = Decimal(str(equity))
        if last_equity is not None:
            self._last_equity = Decimal(str(last_equity))

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def _enter(self, tool: str) -> None:
        self.calls[tool] += 1
        if tool in self.fail_tools:
            raise CollaboratorError(f"sim {tool} failed")

    # -------------------------------------------------------------------------
    # BrokerAdapter
    # -------------------------------------------------------------------------

    def _market_value(self) -> Decimal:
        value = Decimal("0")
        for symbol, pos in self._positions.items():
            price = self._prices.get(symbol, pos["avg_price"])
            value += pos["qty"] * price
        return value

    def _unrealized(self) -> Decimal:
        pnl = Decimal("0")
        for symbol, pos in self._positions.items():
            price = self._prices.get(symbol, pos["avg_price"])
            pnl += (price - pos["avg_price"]) * pos["qty"]
        return pnl

    async def get_account(self, user_id: str) -> dict[str, Any]:
        self._enter("get_account")
        equity = self._equity_override
        if equity is None:
            equity = self._cash + self._market_value()
        return {
            "equity": float(equity),
            "cash": float(self._cash),
            "last_equity": float(self._last_equity),
            "unrealized_pl": float(self._unrealized()),
        }

    async def get_positions(self, user_id: str) -> list[dict[str, Any]]:
        self._enter("get_positions")
        return [
            {"symbol": symbol, "qty": float(pos["qty"]), "avg_entry_price": float(pos["avg_price"])}
            for symbol, pos in self._positions.items()
            if pos["qty"] != 0
        ]

    async def get_quote(self, user_id: str, symbol: str) -> dict[str, Any]:
        self._enter("get_quote")
        price = self._prices.get(normalize_symbol(symbol))
        if price is None:
            raise CollaboratorError(f"No market data for {symbol}")
        return {"symbol": normalize_symbol(symbol), "price": float(price)}

    async def get_bars(
        self, user_id: str, symbol: str, timeframe: str = "1Day", limit: int = 20
    ) -> list[dict[str, Any]]:
        self._enter("get_bars")
        bars = self._bars.get(normalize_symbol(symbol), [])
        return bars[-limit:] if limit else list(bars)

    async def create_order(self, user_id: str, request: OrderRequest) -> OrderResult:
        self._enter("create_order")
        symbol = normalize_symbol(request.symbol)
        last = self._prices.get(symbol)

        fill_price: Decimal | None = None
        if request.type == OrderType.MARKET:
            if last is None:
                raise CollaboratorError(f"Cannot fill market order without price for {symbol}")
            # Slippage in the unfavourable direction
            fill_price = last + self.slippage if request.side == OrderSide.BUY else last - self.slippage
        elif request.limit_price is not None and last is not None:
            if request.side == OrderSide.BUY and last <= request.limit_price:
                fill_price = request.limit_price
            elif request.side == OrderSide.SELL and last >= request.limit_price:
                fill_price = request.limit_price

        result = OrderResult(
            id=generate_id(),
            symbol=symbol,
            side=request.side,
            qty=request.qty,
            status="filled" if fill_price is not None else "accepted",
            filled_avg_price=fill_price,
        )
        if fill_price is not None:
            self._apply_fill(symbol, request.side, request.qty, fill_price)
        self.orders.append(result)
        logger.info(f"Sim order {result.status}: {symbol} {request.side.value} {request.qty} @ {fill_price}")
        return result

    def _apply_fill(self, symbol: str, side: OrderSide, qty: Decimal, price: Decimal) -> None:
        pos = self._positions[symbol]
        signed = qty if side == OrderSide.BUY else -qty
        new_qty = pos["qty"] + signed

        if pos["qty"] == 0 or (pos["qty"] > 0) == (signed > 0):
            # Opening/increasing: weighted average entry
            total = pos["qty"] * pos["avg_price"] + signed * price
            pos["avg_price"] = total / new_qty if new_qty != 0 else Decimal("0")
        elif new_qty == 0:
            pos["avg_price"] = Decimal("0")
        elif (pos["qty"] > 0) != (new_qty > 0):
            # Flipped through flat: remainder opened at fill price
            pos["avg_price"] = price

        self._cash -= signed * price
        pos["qty"] = new_qty
