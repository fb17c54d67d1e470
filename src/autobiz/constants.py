"""Core constants for autobiz."""

from decimal import Decimal
from enum import Enum


class StoreBackend(str, Enum):
    """Work item store backend selection."""

    SUPABASE = "supabase"
    MEMORY = "memory"


class BrokerMode(str, Enum):
    """Broker adapter selection."""

    HTTP = "http"
    SIM = "sim"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class Table(str, Enum):
    """Tables of the shared relational store."""

    PROJECTS = "business_projects"
    PHASES = "business_phases"
    DELIVERABLES = "phase_deliverables"
    ACTIVITY_LOGS = "agent_activity_logs"
    NOTIFICATIONS = "notifications"
    TRADING_PROJECTS = "trading_projects"
    STRATEGIES = "trading_strategies"
    EXECUTIONS = "trading_executions"
    ORDERS = "trading_orders"
    RISK_CONTROLS = "trading_risk_controls"
    PORTFOLIO_SNAPSHOTS = "trading_portfolio_snapshots"
    ALERTS = "trading_alerts"
    TRADING_ACTIVITY_LOGS = "trading_activity_logs"


class ProjectStatus(str, Enum):
    """Project lifecycle status."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class PhaseStatus(str, Enum):
    """Phase lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class DeliverableStatus(str, Enum):
    """Stored deliverable status string."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"


class ActivityStatus(str, Enum):
    """Status of an activity log entry."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class TradingMode(str, Enum):
    """Paper or live execution."""

    PAPER = "paper"
    LIVE = "live"


class StrategyType(str, Enum):
    """Supported trading strategy types."""

    DCA = "dca"
    GRID = "grid"
    MOMENTUM = "momentum"


class AlertCondition(str, Enum):
    """Price alert trigger condition."""

    ABOVE = "above"
    BELOW = "below"
    CROSSOVER = "crossover"
    CROSSUNDER = "crossunder"


class OrderSide(str, Enum):
    """Order side (buy/sell)."""

    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type."""

    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    """Gateway order record status."""

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    EXECUTED = "executed"


class Signal(str, Enum):
    """Strategy signal."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


# ============================================
# Default Values
# ============================================

TOTAL_PHASES = 6

DEFAULT_DCA_INTERVAL_HOURS = 24
DEFAULT_MAX_DRAWDOWN_PCT = Decimal("20")
DEFAULT_MAX_POSITION_PCT = Decimal("10")
DEFAULT_DAILY_LOSS_LIMIT_PCT = Decimal("5")
DUPLICATE_ORDER_WINDOW_SECONDS = 10
DEFAULT_LOOP_INTERVAL_SECONDS = 30
DEFAULT_PROJECT_CONCURRENCY = 4
DEFAULT_DISPATCH_CONCURRENCY = 4

CEO_APPROVAL_THRESHOLD = 7

# Alerts and interval-gated strategies stamp their gating state whether or
# not the downstream order succeeded; a failed order is not retried next tick.
FIRE_AT_MOST_ONCE_REGARDLESS_OF_OUTCOME = True

KILL_SWITCH_LOG_PREFIX = "KILL SWITCH AUTO-ACTIVATED"

# ============================================
# Application Constants
# ============================================

APP_NAME = "autobiz"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_FORMAT_JSON = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
