"""Broker adapter reached through a hosted per-exchange function."""

from __future__ import annotations

import logging
from typing import Any

from autobiz.broker.base import BrokerAdapter
from autobiz.broker.models import OrderRequest, OrderResult, normalize_symbol
from autobiz.integrations.http import FunctionClient

logger = logging.getLogger(__name__)


class HTTPBrokerAdapter(BrokerAdapter):
    """
    Invokes ``mcp-<exchange>`` with ``{tool, arguments, userId}``.

    The function wraps its result in ``{"success": ..., "data": ...}``; the
    ``data`` member is unwrapped when present.
    """

    def __init__(self, exchange: str, client: FunctionClient) -> None:
        self.exchange = exchange.lower()
        self.client = client
        self.function = f"mcp-{self.exchange}"

    async def _tool(self, user_id: str, tool: str, arguments: dict[str, Any] | None = None) -> Any:
        body = await self.client.invoke(
            self.function, {"tool": tool, "arguments": arguments or {}, "userId": user_id}
        )
        return body.get("data", body)

    async def get_account(self, user_id: str) -> dict[str, Any]:
        data = await self._tool(user_id, "get_account")
        return data if isinstance(data, dict) else {}

    async def get_positions(self, user_id: str) -> list[dict[str, Any]]:
        data = await self._tool(user_id, "get_positions")
        if isinstance(data, dict):
            data = data.get("positions", [])
        return list(data or [])

    async def get_quote(self, user_id: str, symbol: str) -> dict[str, Any]:
        data = await self._tool(user_id, "get_market_data", {"symbol": normalize_symbol(symbol)})
        return data if isinstance(data, dict) else {"price": data}

    async def create_order(self, user_id: str, request: OrderRequest) -> OrderResult:
        data = await self._tool(user_id, "create_order", request.to_arguments())
        result = OrderResult.from_payload(data if isinstance(data, dict) else {}, request)
        logger.info(
            f"Order placed on {self.exchange}: {result.id} {result.symbol} "
            f"{request.side.value} {request.qty} {request.type.value}"
        )
        return result

    async def get_bars(
        self, user_id: str, symbol: str, timeframe: str = "1Day", limit: int = 20
    ) -> list[dict[str, Any]]:
        data = await self._tool(
            user_id,
            "get_bars",
            {"symbol": normalize_symbol(symbol), "timeframe": timeframe, "limit": limit},
        )
        if isinstance(data, dict):
            data = data.get("bars") or data.get("bar") or []
        return list(data or [])
