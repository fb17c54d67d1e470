"""Typed views over trading rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from autobiz.broker.models import to_decimal
from autobiz.clock import parse_timestamp
from autobiz.constants import DEFAULT_MAX_DRAWDOWN_PCT, TradingMode
from autobiz.db.base import Row


@dataclass
class TradingProject:
    """A trading project the autonomous loop may act on."""

    id: str
    user_id: str
    name: str
    exchange: str
    mode: str = TradingMode.PAPER.value
    status: str = "active"
    capital: Decimal = Decimal("0")
    total_pnl: Decimal = Decimal("0")
    autonomous_mode: bool = False

    @property
    def is_live(self) -> bool:
        return self.mode == TradingMode.LIVE.value

    @classmethod
    def from_row(cls, row: Row) -> TradingProject:
        return cls(
            id=row["id"],
            user_id=row.get("user_id") or "",
            name=row.get("name") or "",
            exchange=(row.get("exchange") or "").lower(),
            mode=row.get("mode") or TradingMode.PAPER.value,
            status=row.get("status") or "active",
            capital=to_decimal(row.get("capital")),
            total_pnl=to_decimal(row.get("total_pnl")),
            autonomous_mode=row.get("autonomous_mode") is True,
        )


@dataclass
class Strategy:
    """A configured trading strategy."""

    id: str
    user_id: str
    name: str
    strategy_type: str
    exchange: str = ""
    project_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    is_active: bool = False
    paper_mode: bool = True
    last_executed_at: datetime | None = None
    last_executed_raw: Any = None
    total_trades: int = 0

    def param(self, name: str, default: Any = None) -> Any:
        value = self.parameters.get(name)
        return default if value is None or value == "" else value

    @classmethod
    def from_row(cls, row: Row) -> Strategy:
        return cls(
            id=row["id"],
            user_id=row.get("user_id") or "",
            name=row.get("name") or "",
            strategy_type=row.get("strategy_type") or "",
            exchange=(row.get("exchange") or "").lower(),
            project_id=row.get("project_id"),
            parameters=dict(row.get("parameters") or {}),
            is_active=row.get("is_active") is True,
            paper_mode=row.get("paper_mode") is not False,
            last_executed_at=parse_timestamp(row.get("last_executed_at")),
            last_executed_raw=row.get("last_executed_at"),
            total_trades=int(row.get("total_trades") or 0),
        )


@dataclass
class RiskControls:
    """Per-project risk row: kill switch and drawdown guard."""

    id: str
    project_id: str
    kill_switch_active: bool = False
    kill_switch_reason: str | None = None
    max_drawdown_pct: Decimal = DEFAULT_MAX_DRAWDOWN_PCT
    peak_equity: Decimal | None = None

    @classmethod
    def from_row(cls, row: Row, default_max_drawdown_pct: Decimal = DEFAULT_MAX_DRAWDOWN_PCT) -> RiskControls:
        peak = row.get("peak_equity")
        return cls(
            id=row["id"],
            project_id=row.get("project_id") or "",
            kill_switch_active=row.get("kill_switch_active") is True,
            kill_switch_reason=row.get("kill_switch_reason"),
            max_drawdown_pct=to_decimal(row.get("max_drawdown_pct"), fallback=default_max_drawdown_pct),
            peak_equity=to_decimal(peak) if peak is not None else None,
        )


@dataclass
class Alert:
    """A one-shot price trigger."""

    id: str
    user_id: str
    symbol: str
    condition: str
    trigger_price: Decimal
    auto_action: str | None = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: Row) -> Alert:
        return cls(
            id=row["id"],
            user_id=row.get("user_id") or "",
            symbol=row.get("symbol") or "",
            condition=(row.get("condition") or "").lower(),
            trigger_price=to_decimal(row.get("trigger_price")),
            auto_action=row.get("auto_action") or None,
            is_active=row.get("is_active") is True,
        )


@dataclass
class PortfolioSnapshot:
    """Latest-known broker state for a project (one row per project)."""

    project_id: str
    user_id: str
    equity: Decimal
    cash: Decimal
    positions: list[dict[str, Any]]
    daily_pl: Decimal
    unrealized_pl: Decimal
    snapshot_at: str

    @property
    def total_pnl(self) -> Decimal:
        return self.unrealized_pl + self.daily_pl

    def to_row(self) -> Row:
        return {
            "project_id": self.project_id,
            "user_id": self.user_id,
            "equity": self.equity,
            "cash": self.cash,
            "positions": self.positions,
            "daily_pl": self.daily_pl,
            "unrealized_pl": self.unrealized_pl,
            "snapshot_at": self.snapshot_at,
        }

    def summary(self) -> dict[str, Any]:
        return {
            "equity": float(self.equity),
            "cash": float(self.cash),
            "positions": len(self.positions),
            "dayPL": float(self.daily_pl),
            "unrealizedPL": float(self.unrealized_pl),
        }
