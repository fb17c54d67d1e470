"""Tests for SimBrokerAdapter and broker payload normalisation."""

from decimal import Decimal

import pytest

from autobiz.broker.base import BrokerRegistry
from autobiz.broker.models import AccountSnapshot, OrderRequest, OrderResult, extract_price, to_decimal
from autobiz.broker.sim import SimBrokerAdapter
from autobiz.constants import OrderSide, OrderType
from autobiz.errors import CollaboratorError, ConfigurationError


@pytest.fixture
def broker():
    return SimBrokerAdapter("alpaca", initial_cash=Decimal("10000"))


@pytest.mark.asyncio
async def test_market_order_without_price_fails(broker):
    req = OrderRequest("BTC/USD", OrderSide.BUY, Decimal("1"))
    with pytest.raises(CollaboratorError):
        await broker.create_order("u", req)


@pytest.mark.asyncio
async def test_market_order_instant_fill(broker):
    broker.set_price("BTC/USD", "2000")

    order = await broker.create_order("u", OrderRequest("btc/usd", OrderSide.BUY, Decimal("2")))

    assert order.status == "filled"
    assert order.symbol == "BTC-USD"
    assert order.filled_avg_price == Decimal("2000")

    positions = await broker.get_positions("u")
    assert positions == [{"symbol": "BTC-USD", "qty": 2.0, "avg_entry_price": 2000.0}]
    account = await broker.get_account("u")
    assert account["cash"] == 6000.0
    assert account["equity"] == 10000.0


@pytest.mark.asyncio
async def test_resting_limit_order(broker):
    broker.set_price("ETH-USD", "3000")

    order = await broker.create_order(
        "u",
        OrderRequest("ETH-USD", OrderSide.BUY, Decimal("1"), OrderType.LIMIT, limit_price=Decimal("2900")),
    )

    assert order.status == "accepted"
    assert order.filled_avg_price is None
    assert await broker.get_positions("u") == []


@pytest.mark.asyncio
async def test_weighted_average_and_unrealized(broker):
    broker.set_price("SOL-USD", "100")
    await broker.create_order("u", OrderRequest("SOL-USD", OrderSide.BUY, Decimal("10")))
    broker.set_price("SOL-USD", "200")
    await broker.create_order("u", OrderRequest("SOL-USD", OrderSide.BUY, Decimal("10")))

    positions = await broker.get_positions("u")
    assert positions[0]["avg_entry_price"] == 150.0
    account = await broker.get_account("u")
    assert account["unrealized_pl"] == 1000.0


@pytest.mark.asyncio
async def test_fail_tools_and_call_counts(broker):
    broker.fail_tools.add("get_quote")

    with pytest.raises(CollaboratorError):
        await broker.get_quote("u", "BTC-USD")
    await broker.get_account("u")

    assert broker.calls["get_quote"] == 1
    assert broker.total_calls == 2


@pytest.mark.asyncio
async def test_equity_override(broker):
    broker.set_equity(750, last_equity=1000)
    snapshot = AccountSnapshot.from_payload(await broker.get_account("u"))

    assert snapshot.equity == Decimal("750")
    assert snapshot.day_pl == Decimal("-250")


@pytest.mark.asyncio
async def test_bars_respect_limit(broker):
    broker.set_bars("BTC-USD", [1, 2, 3, 4])

    bars = await broker.get_bars("u", "BTC/USD", limit=2)

    assert bars == [{"c": 3.0}, {"c": 4.0}]


class TestPayloadNormalisation:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"price": 101.5}, Decimal("101.5")),
            ({"last": "99"}, Decimal("99")),
            ({"quote": {"ap": 0, "bp": 42}}, Decimal("42")),
            ({"price": 0, "ask_price": 7}, Decimal("7")),
            ({}, Decimal("0")),
            ("12.5", Decimal("12.5")),
        ],
    )
    def test_extract_price(self, payload, expected):
        assert extract_price(payload) == expected

    def test_to_decimal_fallbacks(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("nan", fallback=5) == Decimal("5")
        assert to_decimal(True) == Decimal("0")
        assert to_decimal("abc") == Decimal("0")

    def test_account_snapshot_falls_back_to_portfolio_value(self):
        snapshot = AccountSnapshot.from_payload({"portfolio_value": "1200", "buying_power": "300"})

        assert snapshot.equity == Decimal("1200")
        assert snapshot.cash == Decimal("300")
        assert snapshot.last_equity == Decimal("1200")

    def test_order_result_fill_price(self):
        request = OrderRequest("BTC/USD", OrderSide.BUY, Decimal("0.5"))
        result = OrderResult.from_payload({"id": "o-1", "status": "new"}, request)

        assert result.symbol == "BTC-USD"
        assert result.qty == Decimal("0.5")
        assert result.fill_price_or(Decimal("100")) == Decimal("100")


class TestBrokerRegistry:
    def test_lookup_is_case_insensitive(self, broker):
        registry = BrokerRegistry({"Alpaca": broker})

        assert registry.get("ALPACA") is broker
        assert registry.supports("alpaca")
        assert not registry.supports(None)

    def test_unknown_exchange(self):
        with pytest.raises(ConfigurationError):
            BrokerRegistry().get("kraken")
