"""Base broker adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from autobiz.broker.models import OrderRequest, OrderResult
from autobiz.errors import ConfigurationError


class BrokerAdapter(ABC):
    """Abstract broker adapter (one per exchange). Payloads are venue-shaped dicts."""

    exchange: str = ""

    @abstractmethod
    async def get_account(self, user_id: str) -> dict[str, Any]:
        """Get account state (equity, cash, last_equity, ...)."""
        pass

    @abstractmethod
    async def get_positions(self, user_id: str) -> list[dict[str, Any]]:
        """Get open positions."""
        pass

    @abstractmethod
    async def get_quote(self, user_id: str, symbol: str) -> dict[str, Any]:
        """Get latest market data for a symbol."""
        pass

    @abstractmethod
    async def create_order(self, user_id: str, request: OrderRequest) -> OrderResult:
        """Submit an order."""
        pass

    @abstractmethod
    async def get_bars(
        self, user_id: str, symbol: str, timeframe: str = "1Day", limit: int = 20
    ) -> list[dict[str, Any]]:
        """Get historical bars, oldest first."""
        pass


class BrokerRegistry:
    """Resolves the adapter for a project's exchange."""

    def __init__(self, adapters: dict[str, BrokerAdapter] | None = None) -> None:
        self._adapters: dict[str, BrokerAdapter] = {
            exchange.lower(): adapter for exchange, adapter in (adapters or {}).items()
        }

    def register(self, exchange: str, adapter: BrokerAdapter) -> None:
        self._adapters[exchange.lower()] = adapter

    def supports(self, exchange: str | None) -> bool:
        return bool(exchange) and exchange.lower() in self._adapters

    def get(self, exchange: str) -> BrokerAdapter:
        adapter = self._adapters.get((exchange or "").lower())
        if adapter is None:
            raise ConfigurationError(f"No broker adapter registered for exchange: {exchange}")
        return adapter
