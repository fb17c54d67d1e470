"""Price alert evaluation for the autonomous loop."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from autobiz.broker.base import BrokerAdapter, BrokerRegistry
from autobiz.broker.models import extract_price, to_decimal
from autobiz.clock import now_iso
from autobiz.config_loader import TradingConfig
from autobiz.constants import (
    FIRE_AT_MOST_ONCE_REGARDLESS_OF_OUTCOME,
    ActivityStatus,
    AlertCondition,
    OrderSide,
    OrderType,
    Table,
)
from autobiz.db.base import WorkItemStore
from autobiz.errors import ConfigurationError
from autobiz.integrations.activity import ActivityLog
from autobiz.integrations.order_gateway import OrderGateway, OrderGatewayRequest
from autobiz.trading.models import Alert, TradingProject

logger = logging.getLogger(__name__)

ALERT_AGENT_ID = "alert-executor"
ALERT_AGENT_NAME = "Alert Executor"
ALERT_ORDER_SOURCE = "alert-auto-executor"


def evaluate_condition(condition: str, price: Decimal, trigger_price: Decimal) -> bool:
    """Plain comparison, no hysteresis. Unknown conditions never trigger."""
    if condition == AlertCondition.ABOVE.value:
        return price > trigger_price
    if condition == AlertCondition.BELOW.value:
        return price < trigger_price
    if condition == AlertCondition.CROSSOVER.value:
        return price >= trigger_price
    if condition == AlertCondition.CROSSUNDER.value:
        return price <= trigger_price
    return False


def parse_auto_action(action: str | None) -> tuple[OrderSide, Decimal] | None:
    """
    Parse ``BUY:qty`` / ``SELL:qty``.

    A missing or unparsable quantity defaults to 1. Any other verb is not an
    order action.
    """
    if not action:
        return None
    verb, _, value = action.partition(":")
    verb = verb.strip().upper()
    if verb not in ("BUY", "SELL"):
        return None
    qty = to_decimal(value.strip(), fallback=Decimal("1"))
    return (OrderSide.BUY if verb == "BUY" else OrderSide.SELL), qty


class AlertProcessor:
    """
    Checks a project owner's active alerts against live prices.

    A triggered alert is claimed with a conditional update (``is_active``
    true -> false) before any order is sent, so it fires at most once even
    across overlapping ticks. Order failures are logged and, under the
    at-most-once policy, do not re-arm the alert. Only alerts whose order
    went through count as triggered.
    """

    def __init__(
        self,
        store: WorkItemStore,
        brokers: BrokerRegistry,
        gateway: OrderGateway,
        activity: ActivityLog,
        config: TradingConfig | None = None,
    ) -> None:
        self.store = store
        self.brokers = brokers
        self.gateway = gateway
        self.activity = activity
        self.config = config or TradingConfig()

    def _quote_adapter(self, project: TradingProject) -> BrokerAdapter:
        if self.brokers.supports(project.exchange):
            return self.brokers.get(project.exchange)
        for exchange in self.config.broker_exchanges:
            if self.brokers.supports(exchange):
                return self.brokers.get(exchange)
        raise ConfigurationError(f"No market data adapter for exchange {project.exchange}")

    async def process(self, project: TradingProject) -> dict[str, Any]:
        rows = await self.store.select(Table.ALERTS, {"user_id": project.user_id, "is_active": True})
        if not rows:
            return {"alertsChecked": 0, "alertsTriggered": 0}

        adapter = self._quote_adapter(project)
        triggered = 0
        for row in rows:
            alert = Alert.from_row(row)
            try:
                if await self._check(project, alert, adapter):
                    triggered += 1
            except Exception as e:
                logger.error(f"Alert check error for {alert.symbol} ({alert.id}): {e}")

        return {"alertsChecked": len(rows), "alertsTriggered": triggered}

    async def _check(self, project: TradingProject, alert: Alert, adapter: BrokerAdapter) -> bool:
        price = extract_price(await adapter.get_quote(project.user_id, alert.symbol))
        if price <= 0:
            return False
        if not evaluate_condition(alert.condition, price, alert.trigger_price):
            return False

        claimed = await self.store.update_if(
            Table.ALERTS,
            {"id": alert.id},
            {"is_active": True},
            {"is_active": False, "last_triggered_at": now_iso()},
        )
        if not claimed:
            logger.debug(f"Alert {alert.id} already claimed")
            return False

        logger.info(f"Alert {alert.id} triggered: {alert.symbol} {price} {alert.condition} {alert.trigger_price}")
        action = parse_auto_action(alert.auto_action)
        if action is None:
            return False

        side, qty = action
        details = {
            "alertId": alert.id,
            "currentPrice": float(price),
            "triggerPrice": float(alert.trigger_price),
            "actionType": side.value.upper(),
            "qty": float(qty),
        }
        try:
            await self.gateway.submit(
                OrderGatewayRequest(
                    project_id=project.id,
                    internal_user_id=project.user_id,
                    symbol=alert.symbol,
                    side=side,
                    quantity=qty,
                    order_type=OrderType.MARKET,
                    source=ALERT_ORDER_SOURCE,
                )
            )
        except Exception as e:
            logger.error(f"Alert {alert.id} order failed: {e}")
            await self.activity.record_trading(
                project.id,
                project.user_id,
                ALERT_AGENT_ID,
                ALERT_AGENT_NAME,
                f"Alert order failed: {side.value.upper()} {qty} {alert.symbol}: {e}",
                ActivityStatus.FAILED,
                {**details, "error": str(e)},
            )
            if not FIRE_AT_MOST_ONCE_REGARDLESS_OF_OUTCOME:
                await self.store.update(Table.ALERTS, {"is_active": True}, {"id": alert.id})
            return False

        await self.activity.record_trading(
            project.id,
            project.user_id,
            ALERT_AGENT_ID,
            ALERT_AGENT_NAME,
            f"Alert triggered: {side.value.upper()} {qty} {alert.symbol} at ${price:.2f} "
            f"(trigger: ${alert.trigger_price:.2f})",
            ActivityStatus.COMPLETED,
            details,
        )
        return True
