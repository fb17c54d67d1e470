"""Broker models and defensive payload normalisation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from autobiz.constants import OrderSide, OrderType


def generate_id() -> str:
    """Generate unique ID."""
    return str(uuid4())


def to_decimal(value: Any, fallback: Decimal | int | str = Decimal("0")) -> Decimal:
    """Parse a numeric value, returning ``fallback`` for missing or non-finite input."""
    if value is None or value == "" or isinstance(value, bool):
        return Decimal(str(fallback))
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(str(fallback))
    if not parsed.is_finite():
        return Decimal(str(fallback))
    return parsed


def normalize_symbol(symbol: str) -> str:
    return str(symbol or "").strip().upper().replace("/", "-")


def _first_present(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, "", 0, "0"):
            return value
    return None


# Field names seen across venues, most specific first.
_PRICE_PATHS: tuple[tuple[str, ...], ...] = (
    ("price",),
    ("last_price",),
    ("last",),
    ("c",),
    ("ap",),
    ("ask_price",),
    ("bid_price",),
    ("quote", "ap"),
    ("quote", "bp"),
)


def extract_price(payload: Any) -> Decimal:
    """
    Resolve the current price from a quote payload.

    Returns ``Decimal(0)`` when no positive price is present; callers treat a
    non-positive price as "no quote".
    """
    if not isinstance(payload, dict):
        return to_decimal(payload)
    for path in _PRICE_PATHS:
        node: Any = payload
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        price = to_decimal(node)
        if price > 0:
            return price
    return Decimal("0")


@dataclass
class AccountSnapshot:
    """Normalised broker account state."""

    equity: Decimal
    cash: Decimal
    last_equity: Decimal
    unrealized_pl: Decimal

    @property
    def day_pl(self) -> Decimal:
        return self.equity - self.last_equity

    @classmethod
    def from_payload(cls, account: dict[str, Any] | None) -> AccountSnapshot:
        account = account or {}
        equity = to_decimal(_first_present(account, "equity", "portfolio_value"))
        return cls(
            equity=equity,
            cash=to_decimal(_first_present(account, "cash", "buying_power")),
            last_equity=to_decimal(account.get("last_equity"), fallback=equity),
            unrealized_pl=to_decimal(account.get("unrealized_pl")),
        )


@dataclass
class OrderRequest:
    """Request to place an order."""

    symbol: str
    side: OrderSide
    qty: Decimal
    type: OrderType = OrderType.MARKET
    limit_price: Decimal | None = None
    client_order_id: str | None = None

    def to_arguments(self) -> dict[str, Any]:
        args: dict[str, Any] = {
            "symbol": normalize_symbol(self.symbol),
            "side": self.side.value,
            "type": self.type.value,
            "qty": float(self.qty),
            "time_in_force": "day",
        }
        if self.limit_price is not None:
            args["limit_price"] = float(self.limit_price)
        if self.client_order_id:
            args["client_order_id"] = self.client_order_id
        return args


@dataclass
class OrderResult:
    """Broker acknowledgement of an order."""

    id: str
    symbol: str
    side: OrderSide
    qty: Decimal
    status: str
    filled_avg_price: Decimal | None = None
    raw: dict[str, Any] | None = None

    def fill_price_or(self, requested: Decimal) -> Decimal:
        """Broker's reported fill price, or ``requested`` when none was reported."""
        if self.filled_avg_price is not None and self.filled_avg_price > 0:
            return self.filled_avg_price
        return requested

    @classmethod
    def from_payload(cls, payload: dict[str, Any], request: OrderRequest) -> OrderResult:
        fill = to_decimal(_first_present(payload, "filled_avg_price", "avg_fill_price", "price"))
        return cls(
            id=str(payload.get("id") or payload.get("order_id") or generate_id()),
            symbol=normalize_symbol(payload.get("symbol") or request.symbol),
            side=request.side,
            qty=to_decimal(payload.get("qty"), fallback=request.qty),
            status=str(payload.get("status") or "accepted"),
            filled_avg_price=fill if fill > 0 else None,
            raw=payload,
        )
