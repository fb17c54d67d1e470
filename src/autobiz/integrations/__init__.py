"""External collaborators: executor, order gateway, activity log and notifications."""

from autobiz.integrations.activity import ActivityLog, Notifier
from autobiz.integrations.executor import AgentWorkExecutor, WorkRequest
from autobiz.integrations.order_gateway import OrderGateway, OrderGatewayRequest

__all__ = [
    "ActivityLog",
    "AgentWorkExecutor",
    "Notifier",
    "OrderGateway",
    "OrderGatewayRequest",
    "WorkRequest",
]
