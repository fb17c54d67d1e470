"""Per-project kill switch and drawdown guard."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from autobiz.clock import now_iso
from autobiz.config_loader import TradingConfig
from autobiz.constants import KILL_SWITCH_LOG_PREFIX, ActivityStatus, Table
from autobiz.db.base import Row, WorkItemStore
from autobiz.errors import NotFoundError
from autobiz.integrations.activity import ActivityLog, Notifier
from autobiz.trading.models import RiskControls

logger = logging.getLogger(__name__)

RISK_AGENT_ID = "risk-manager"
RISK_AGENT_NAME = "Risk Manager"


@dataclass
class DrawdownCheck:
    """Result of comparing current equity against the peak watermark."""

    equity: Decimal
    peak_equity: Decimal
    drawdown_pct: Decimal
    max_drawdown_pct: Decimal
    tripped: bool = False

    @property
    def breached(self) -> bool:
        return self.drawdown_pct >= self.max_drawdown_pct

    @property
    def raises_peak(self) -> bool:
        return self.equity > self.peak_equity

    def details(self) -> dict[str, Any]:
        return {
            "equity": float(self.equity),
            "peakEquity": float(self.peak_equity),
            "currentDrawdown": float(self.drawdown_pct),
            "maxDrawdownPct": float(self.max_drawdown_pct),
        }


def evaluate_drawdown(controls: RiskControls, equity: Decimal) -> DrawdownCheck:
    """
    Drawdown of ``equity`` from the stored peak, in percent.

    An unset peak counts as the current equity (zero drawdown).
    """
    peak = controls.peak_equity if controls.peak_equity and controls.peak_equity > 0 else equity
    drawdown = (peak - equity) / peak * 100 if peak > 0 else Decimal("0")
    return DrawdownCheck(
        equity=equity,
        peak_equity=peak,
        drawdown_pct=drawdown,
        max_drawdown_pct=controls.max_drawdown_pct,
    )


class RiskGuard:
    """
    Authoritative halt switch for automated trading.

    Tripping is a conditional update (``kill_switch_active`` false -> true),
    so concurrent trips produce exactly one audit entry and notification.
    Only a human clears the switch.
    """

    def __init__(
        self,
        store: WorkItemStore,
        activity: ActivityLog,
        notifier: Notifier,
        config: TradingConfig | None = None,
    ) -> None:
        self.store = store
        self.activity = activity
        self.notifier = notifier
        self.config = config or TradingConfig()

    async def load(self, project_id: str, user_id: str | None = None) -> RiskControls | None:
        """Risk row for a project, or None when the project has none."""
        filters: dict[str, Any] = {"project_id": project_id}
        if user_id:
            filters["user_id"] = user_id
        row = await self.store.first(Table.RISK_CONTROLS, filters)
        if row is None:
            return None
        return RiskControls.from_row(row, self.config.default_max_drawdown_pct)

    async def get_controls(self, project_id: str) -> Row:
        row = await self.store.first(Table.RISK_CONTROLS, {"project_id": project_id})
        if row is None:
            raise NotFoundError(f"Risk controls not configured for project {project_id}")
        return row

    async def check_drawdown(
        self,
        project_id: str,
        user_id: str,
        controls: RiskControls,
        equity: Decimal,
    ) -> DrawdownCheck:
        """Raise the peak watermark if needed and trip the kill switch on breach."""
        check = evaluate_drawdown(controls, equity)

        if controls.peak_equity is None or check.raises_peak:
            # Only from the peak we read; a concurrent raise wins
            await self.store.update_if(
                Table.RISK_CONTROLS,
                {"id": controls.id},
                {"peak_equity": controls.peak_equity},
                {"peak_equity": equity, "updated_at": now_iso()},
            )

        if check.breached:
            reason = (
                f"Drawdown {check.drawdown_pct:.1f}% exceeds max {check.max_drawdown_pct}%"
            )
            check.tripped = await self.trip_kill_switch(
                project_id,
                reason,
                user_id=user_id,
                details=check.details(),
            )
        return check

    async def trip_kill_switch(
        self,
        project_id: str,
        reason: str,
        *,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
        automatic: bool = True,
    ) -> bool:
        """
        Set the kill switch. Returns True only for the caller that flipped it.

        A project without a risk row gets one created in the tripped state.
        """
        now = now_iso()
        values = {
            "kill_switch_active": True,
            "kill_switch_reason": reason,
            "kill_switch_activated_at": now,
            "updated_at": now,
        }
        won = await self.store.update_if(
            Table.RISK_CONTROLS,
            {"project_id": project_id},
            {"kill_switch_active": False},
            values,
        )
        if not won:
            existing = await self.store.first(Table.RISK_CONTROLS, {"project_id": project_id})
            if existing is None:
                await self.store.insert(
                    Table.RISK_CONTROLS,
                    {"project_id": project_id, "user_id": user_id, **values},
                )
            elif existing.get("kill_switch_active") is None:
                # Never-initialised column
                won = await self.store.update_if(
                    Table.RISK_CONTROLS,
                    {"project_id": project_id},
                    {"kill_switch_active": None},
                    values,
                )
                if not won:
                    return False
            else:
                logger.info(f"Kill switch for {project_id} already active")
                return False

        prefix = KILL_SWITCH_LOG_PREFIX if automatic else "KILL SWITCH ACTIVATED"
        logger.critical(f"{prefix} for project {project_id}: {reason}")
        if user_id:
            await self.activity.record_trading(
                project_id,
                user_id,
                RISK_AGENT_ID,
                RISK_AGENT_NAME,
                f"{prefix}: {reason}",
                ActivityStatus.COMPLETED,
                details or {"reason": reason},
            )
        await self.notifier.notify(
            user_id,
            "kill_switch",
            "Kill Switch Activated",
            f"Automated trading halted: {reason}",
            {"projectId": project_id, "automatic": automatic},
        )
        return True

    async def clear_kill_switch(self, project_id: str, user_id: str | None = None) -> Row:
        """
        Manually clear the kill switch.

        The peak watermark is reset so the guard restarts from the equity
        seen on the next sync.
        """
        row = await self.get_controls(project_id)
        if not row.get("kill_switch_active"):
            return row

        updated = await self.store.update(
            Table.RISK_CONTROLS,
            {
                "kill_switch_active": False,
                "kill_switch_reason": None,
                "peak_equity": None,
                "updated_at": now_iso(),
            },
            {"id": row["id"]},
        )
        logger.warning(
            f"KILL SWITCH RESET for project {project_id}. Previous reason: {row.get('kill_switch_reason')}"
        )
        owner = user_id or row.get("user_id")
        if owner:
            await self.activity.record_trading(
                project_id,
                owner,
                RISK_AGENT_ID,
                RISK_AGENT_NAME,
                "Kill switch cleared manually",
                ActivityStatus.COMPLETED,
                {"previousReason": row.get("kill_switch_reason")},
            )
        return updated[0] if updated else row
