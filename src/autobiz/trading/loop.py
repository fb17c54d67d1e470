"""Autonomous trading loop: one tick advances every autonomous project."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any

from autobiz.broker.base import BrokerRegistry
from autobiz.broker.models import AccountSnapshot, to_decimal
from autobiz.clock import utcnow
from autobiz.concurrency import gather_bounded
from autobiz.config_loader import TradingConfig
from autobiz.constants import (
    FIRE_AT_MOST_ONCE_REGARDLESS_OF_OUTCOME,
    ActivityStatus,
    ProjectStatus,
    Signal,
    StrategyType,
    Table,
)
from autobiz.db.base import WorkItemStore
from autobiz.integrations.activity import ActivityLog
from autobiz.trading.alerts import AlertProcessor
from autobiz.trading.models import PortfolioSnapshot, Strategy, TradingProject
from autobiz.trading.risk_guard import RiskGuard
from autobiz.trading.strategies import StrategyService

logger = logging.getLogger(__name__)

SYNC_AGENT_ID = "portfolio-sync"
SYNC_AGENT_NAME = "Portfolio Sync Agent"
STRATEGY_AGENT_ID = "strategy-executor"
STRATEGY_AGENT_NAME = "Strategy Executor"


class AutonomousTradingLoop:
    """
    Stateless batch over autonomous trading projects.

    Per project, strictly in order: kill-switch gate, portfolio sync with
    drawdown guard, alerts, strategies. Failures are captured in the
    project's result and never abort the batch. Projects run with bounded
    concurrency; a per-project lock keeps ticks from overlapping on one
    project within this process.
    """

    def __init__(
        self,
        store: WorkItemStore,
        brokers: BrokerRegistry,
        risk: RiskGuard,
        alerts: AlertProcessor,
        strategies: StrategyService,
        activity: ActivityLog,
        config: TradingConfig | None = None,
    ) -> None:
        self.store = store
        self.brokers = brokers
        self.risk = risk
        self.alerts = alerts
        self.strategies = strategies
        self.activity = activity
        self.config = config or TradingConfig()
        self._locks: dict[str, asyncio.Lock] = {}
        self._running = False

    async def tick(self, now: datetime | None = None) -> dict[str, Any]:
        """Process every active autonomous project once."""
        started = time.monotonic()
        now = now or utcnow()

        rows = await self.store.select(
            Table.TRADING_PROJECTS,
            {"status": ProjectStatus.ACTIVE, "autonomous_mode": True},
        )
        if not rows:
            return {
                "success": True,
                "message": "No autonomous projects found",
                "processed": 0,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "results": [],
                "timestamp": now.isoformat(),
            }

        projects = [TradingProject.from_row(row) for row in rows]
        logger.info(f"Processing {len(projects)} autonomous projects")

        outcomes = await gather_bounded(
            projects,
            lambda project: self._process_exclusive(project, now),
            self.config.project_concurrency,
        )

        results = []
        for outcome in outcomes:
            if outcome.ok:
                results.append(outcome.value)
            else:
                project = outcome.item
                results.append(
                    {
                        "projectId": project.id,
                        "projectName": project.name,
                        "exchange": project.exchange,
                        "error": str(outcome.error),
                    }
                )

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Tick completed in {duration_ms}ms. Processed {len(results)} projects.")
        return {
            "success": True,
            "processed": len(results),
            "duration_ms": duration_ms,
            "results": results,
            "timestamp": now.isoformat(),
        }

    async def _process_exclusive(self, project: TradingProject, now: datetime) -> dict[str, Any]:
        lock = self._locks.setdefault(project.id, asyncio.Lock())
        if lock.locked():
            logger.warning(f"Tick already in progress for project {project.id}")
            return {
                "projectId": project.id,
                "projectName": project.name,
                "exchange": project.exchange,
                "skipped": "Tick already in progress",
            }
        async with lock:
            return await self.process_project(project, now)

    async def process_project(self, project: TradingProject, now: datetime) -> dict[str, Any]:
        result: dict[str, Any] = {
            "projectId": project.id,
            "projectName": project.name,
            "exchange": project.exchange,
        }
        try:
            # 1. Kill switch gate
            controls = await self.risk.load(project.id, project.user_id)
            if controls is not None and controls.kill_switch_active:
                result["skipped"] = "Kill switch active"
                return result

            # 2. Portfolio sync + drawdown guard
            if project.exchange in [e.lower() for e in self.config.broker_exchanges]:
                snapshot = None
                try:
                    snapshot = await self._sync_portfolio(project, now)
                except Exception as e:
                    logger.error(f"Portfolio sync error for {project.id}: {e}")
                    result["portfolioSyncError"] = str(e)

                if snapshot is not None:
                    if controls is not None and snapshot.equity > 0:
                        check = await self.risk.check_drawdown(
                            project.id, project.user_id, controls, snapshot.equity
                        )
                        if check.breached:
                            result["killSwitchActivated"] = True
                            return result
                    result["portfolioSync"] = snapshot.summary()
                    await self.activity.record_trading(
                        project.id,
                        project.user_id,
                        SYNC_AGENT_ID,
                        SYNC_AGENT_NAME,
                        f"Portfolio synced: ${snapshot.equity:.2f} equity, "
                        f"{len(snapshot.positions)} positions, P&L: ${snapshot.total_pnl:.2f}",
                        ActivityStatus.COMPLETED,
                        snapshot.summary(),
                    )

            # 3. Alerts
            result["alertsChecked"] = 0
            result["alertsTriggered"] = 0
            try:
                result.update(await self.alerts.process(project))
            except Exception as e:
                logger.error(f"Alerts error for {project.id}: {e}")
                result["alertsError"] = str(e)

            # 4. Strategies
            result["strategiesChecked"] = 0
            result["strategiesExecuted"] = 0
            try:
                result.update(await self._run_strategies(project, now))
            except Exception as e:
                logger.error(f"Strategies error for {project.id}: {e}")
                result["strategiesError"] = str(e)

        except Exception as e:
            logger.error(f"Error processing project {project.id}: {e}")
            result["error"] = str(e)

        return result

    async def _sync_portfolio(self, project: TradingProject, now: datetime) -> PortfolioSnapshot:
        adapter = self.brokers.get(project.exchange)
        account, positions = await asyncio.gather(
            adapter.get_account(project.user_id),
            adapter.get_positions(project.user_id),
        )
        state = AccountSnapshot.from_payload(account)
        snapshot = PortfolioSnapshot(
            project_id=project.id,
            user_id=project.user_id,
            equity=state.equity,
            cash=state.cash,
            positions=list(positions or []),
            daily_pl=state.day_pl,
            unrealized_pl=state.unrealized_pl,
            snapshot_at=now.isoformat(),
        )

        await self.store.upsert(Table.PORTFOLIO_SNAPSHOTS, snapshot.to_row(), on_conflict="project_id")
        await self.store.update(
            Table.TRADING_PROJECTS,
            {
                "capital": snapshot.equity,
                "total_pnl": snapshot.total_pnl,
                "last_sync_at": now.isoformat(),
            },
            {"id": project.id},
        )
        return snapshot

    async def _run_strategies(self, project: TradingProject, now: datetime) -> dict[str, Any]:
        rows = await self.store.select(
            Table.STRATEGIES,
            {"user_id": project.user_id, "project_id": project.id, "is_active": True},
        )
        executed = 0
        for row in rows:
            try:
                strategy = Strategy.from_row(row)
                if await self._run_strategy(project, strategy, now):
                    executed += 1
            except Exception as e:
                logger.error(f"Strategy {row.get('id')} error: {e}")
                await self.activity.record_trading(
                    project.id,
                    project.user_id,
                    STRATEGY_AGENT_ID,
                    STRATEGY_AGENT_NAME,
                    f'Strategy "{row.get("name")}" execution error: {e}',
                    ActivityStatus.FAILED,
                    {"strategyId": row.get("id"), "error": str(e)},
                )
        return {"strategiesChecked": len(rows), "strategiesExecuted": executed}

    async def _run_strategy(self, project: TradingProject, strategy: Strategy, now: datetime) -> bool:
        """Run one strategy if due. Returns True when it counts as executed."""
        stamp = now.isoformat()

        if strategy.strategy_type == StrategyType.DCA.value:
            interval = to_decimal(
                strategy.param("interval_hours"), self.config.default_dca_interval_hours
            )
            last = strategy.last_executed_at
            if last is not None and now - last < timedelta(hours=float(interval)):
                return False

            # Claim the interval before trading so overlapping ticks cannot double-fire
            claimed = await self.store.update_if(
                Table.STRATEGIES,
                {"id": strategy.id},
                {"last_executed_at": strategy.last_executed_raw},
                {"last_executed_at": stamp, "updated_at": stamp},
            )
            if not claimed:
                logger.info(f"DCA strategy {strategy.id} already claimed for this interval")
                return False

            try:
                await self.strategies.run_dca(
                    strategy.id,
                    project.id,
                    strategy.param("symbol"),
                    strategy.param("amount"),
                    paper_mode=not project.is_live,
                    user_id=project.user_id,
                    exchange=project.exchange,
                )
            except Exception:
                if not FIRE_AT_MOST_ONCE_REGARDLESS_OF_OUTCOME:
                    await self.store.update(
                        Table.STRATEGIES,
                        {"last_executed_at": strategy.last_executed_raw},
                        {"id": strategy.id},
                    )
                raise
            return True

        if strategy.strategy_type == StrategyType.MOMENTUM.value:
            outcome = await self.strategies.run_momentum(
                strategy.param("symbol"),
                strategy.param("lookback_period", 20),
                strategy.param("threshold", 5),
                user_id=project.user_id,
                exchange=project.exchange,
                strategy_id=strategy.id,
            )
            await self.store.update(
                Table.STRATEGIES,
                {"last_executed_at": stamp, "updated_at": stamp},
                {"id": strategy.id},
            )
            return outcome.get("signal", Signal.HOLD.value) != Signal.HOLD.value

        # Grid strategies are placed manually, not driven by the loop
        return False

    async def run(self, interval: float | None = None, iterations: int | None = None) -> None:
        """Tick on a fixed cadence until ``stop`` is called or ``iterations`` run out."""
        interval = self.config.loop_interval_seconds if interval is None else interval
        self._running = True
        count = 0
        logger.info(f"Autonomous loop started (interval {interval}s)")
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Tick failed: {e}")
            count += 1
            if iterations is not None and count >= iterations:
                break
            await asyncio.sleep(interval)
        self._running = False
        logger.info("Autonomous loop stopped")

    def stop(self) -> None:
        self._running = False
