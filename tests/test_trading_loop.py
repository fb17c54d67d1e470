"""Tests for the autonomous trading loop."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from freezegun import freeze_time

from autobiz.constants import Table
from autobiz.db.memory import InMemoryStore
from autobiz.errors import CollaboratorError

from conftest import TRADING_PROJECT_ID, USER_ID, build_app, trading_seed

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def dca_strategy(last_executed_at: datetime | None, **params) -> dict:
    return {
        "id": "strat-dca",
        "user_id": USER_ID,
        "project_id": TRADING_PROJECT_ID,
        "name": "Weekly BTC",
        "exchange": "alpaca",
        "strategy_type": "dca",
        "parameters": {"symbol": "BTC/USD", "amount": 100, "interval_hours": 24, **params},
        "is_active": True,
        "paper_mode": True,
        "total_trades": 0,
        "last_executed_at": last_executed_at.isoformat() if last_executed_at else None,
    }


def kill_switch_entries(store: InMemoryStore) -> list[dict]:
    return [
        log
        for log in store.rows(Table.TRADING_ACTIVITY_LOGS)
        if log["action"].startswith("KILL SWITCH AUTO-ACTIVATED")
    ]


class TestTick:
    @pytest.mark.asyncio
    async def test_no_projects(self, store, sim):
        app = build_app(store, sim)

        report = await app.loop.tick(now=NOW)

        assert report["success"] is True
        assert report["processed"] == 0
        assert report["message"] == "No autonomous projects found"

    @pytest.mark.asyncio
    async def test_non_autonomous_projects_are_ignored(self, sim):
        seed = trading_seed()
        seed[Table.TRADING_PROJECTS][0]["autonomous_mode"] = False
        app = build_app(InMemoryStore(seed), sim)

        report = await app.loop.tick(now=NOW)

        assert report["processed"] == 0
        assert sim.total_calls == 0

    @pytest.mark.asyncio
    async def test_sync_records_snapshot(self, sim):
        store = InMemoryStore(trading_seed(risk={"kill_switch_active": False, "max_drawdown_pct": 20}))
        app = build_app(store, sim)

        report = await app.loop.tick(now=NOW)

        result = report["results"][0]
        assert result["portfolioSync"]["equity"] == 100000.0
        assert result["alertsChecked"] == 0
        assert result["strategiesChecked"] == 0

        snapshots = store.rows(Table.PORTFOLIO_SNAPSHOTS)
        assert len(snapshots) == 1
        assert snapshots[0]["snapshot_at"] == NOW.isoformat()
        project = await store.get(Table.TRADING_PROJECTS, TRADING_PROJECT_ID)
        assert project["last_sync_at"] == NOW.isoformat()
        actions = [log["action"] for log in store.rows(Table.TRADING_ACTIVITY_LOGS)]
        assert actions[0].startswith("Portfolio synced: $100000.00 equity")

    @pytest.mark.asyncio
    async def test_snapshot_is_one_row_per_project(self, sim):
        store = InMemoryStore(trading_seed())
        app = build_app(store, sim)

        await app.loop.tick(now=NOW)
        await app.loop.tick(now=NOW + timedelta(minutes=1))

        assert len(store.rows(Table.PORTFOLIO_SNAPSHOTS)) == 1


class TestKillSwitchGate:
    @pytest.mark.asyncio
    async def test_active_kill_switch_skips_all_broker_calls(self, sim):
        seed = trading_seed(risk={"kill_switch_active": True, "kill_switch_reason": "manual"})
        seed[Table.ALERTS] = [
            {"id": "a-1", "user_id": USER_ID, "symbol": "AAPL", "condition": "above", "trigger_price": 1, "is_active": True}
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["skipped"] == "Kill switch active"
        assert sim.total_calls == 0
        assert store.rows(Table.PORTFOLIO_SNAPSHOTS) == []


class TestDrawdownGuard:
    @pytest.mark.asyncio
    async def test_breach_trips_once_and_halts(self, sim):
        store = InMemoryStore(
            trading_seed(risk={"kill_switch_active": False, "max_drawdown_pct": 20, "peak_equity": 1000})
        )
        app = build_app(store, sim)
        sim.set_equity(750)

        report = await app.loop.tick(now=NOW)

        result = report["results"][0]
        assert result["killSwitchActivated"] is True
        assert "alertsChecked" not in result
        assert len(kill_switch_entries(store)) == 1
        assert (await app.risk.get_controls(TRADING_PROJECT_ID))["kill_switch_active"] is True

        sim.set_equity(760)
        calls_before = sim.total_calls
        report = await app.loop.tick(now=NOW + timedelta(seconds=30))

        assert report["results"][0]["skipped"] == "Kill switch active"
        assert len(kill_switch_entries(store)) == 1
        assert sim.total_calls == calls_before

    @pytest.mark.asyncio
    async def test_new_high_raises_peak(self, sim):
        store = InMemoryStore(
            trading_seed(risk={"kill_switch_active": False, "max_drawdown_pct": 20, "peak_equity": 1000})
        )
        app = build_app(store, sim)
        sim.set_equity(1100)

        await app.loop.tick(now=NOW)

        assert (await app.risk.get_controls(TRADING_PROJECT_ID))["peak_equity"] == 1100.0


class TestIsolation:
    @pytest.mark.asyncio
    async def test_sync_failure_does_not_stop_alerts_or_strategies(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [dca_strategy(None)]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.fail_tools.add("get_account")
        sim.set_price("BTC-USD", 40000)

        report = await app.loop.tick(now=NOW)

        result = report["results"][0]
        assert "sim get_account failed" in result["portfolioSyncError"]
        assert result["strategiesExecuted"] == 1

    @pytest.mark.asyncio
    async def test_one_project_failure_does_not_abort_batch(self, sim):
        seed = trading_seed()
        seed[Table.TRADING_PROJECTS].append(
            {
                "id": "tp-2",
                "user_id": "user-2",
                "name": "Other",
                "exchange": "alpaca",
                "mode": "paper",
                "status": "active",
                "autonomous_mode": True,
            }
        )
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        app.risk.load = AsyncMock(side_effect=[RuntimeError("db down"), None])

        report = await app.loop.tick(now=NOW)

        assert report["processed"] == 2
        errors = [r for r in report["results"] if "error" in r]
        assert len(errors) == 1
        assert errors[0]["error"] == "db down"

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, sim):
        store = InMemoryStore(trading_seed())
        app = build_app(store, sim)
        lock = asyncio.Lock()
        app.loop._locks[TRADING_PROJECT_ID] = lock

        async with lock:
            report = await app.loop.tick(now=NOW)

        assert report["results"][0]["skipped"] == "Tick already in progress"
        assert sim.total_calls == 0


class TestAlerts:
    @pytest.mark.asyncio
    async def test_alert_fires_once_even_when_order_fails(self, sim):
        seed = trading_seed()
        seed[Table.ALERTS] = [
            {
                "id": "a-1",
                "user_id": USER_ID,
                "symbol": "AAPL",
                "condition": "above",
                "trigger_price": 100,
                "auto_action": "BUY:2",
                "is_active": True,
            }
        ]
        store = InMemoryStore(seed)
        gateway = AsyncMock()
        gateway.submit.side_effect = CollaboratorError("gateway rejected order")
        app = build_app(store, sim, gateway=gateway)
        sim.set_price("AAPL", 150)

        first = await app.loop.tick(now=NOW)
        second = await app.loop.tick(now=NOW + timedelta(seconds=30))

        assert first["results"][0]["alertsTriggered"] == 0
        assert second["results"][0]["alertsChecked"] == 0
        assert gateway.submit.await_count == 1
        request = gateway.submit.await_args.args[0]
        assert request.quantity == 2
        assert request.source == "alert-auto-executor"

        alert = await store.get(Table.ALERTS, "a-1")
        assert alert["is_active"] is False
        failures = [log for log in store.rows(Table.TRADING_ACTIVITY_LOGS) if log["status"] == "failed"]
        assert len(failures) == 1
        assert "gateway rejected order" in failures[0]["action"]

    @pytest.mark.asyncio
    async def test_alert_executes_through_sim_gateway(self, sim):
        seed = trading_seed(mode="live", risk={"kill_switch_active": False})
        seed[Table.ALERTS] = [
            {
                "id": "a-1",
                "user_id": USER_ID,
                "symbol": "AAPL",
                "condition": "below",
                "trigger_price": 100,
                "auto_action": "BUY",
                "is_active": True,
            }
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_price("AAPL", 95)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["alertsTriggered"] == 1
        assert len(sim.orders) == 1
        assert sim.orders[0].qty == 1
        executions = store.rows(Table.EXECUTIONS)
        assert executions[0]["symbol"] == "AAPL"
        assert executions[0]["price"] == 95.0

    @pytest.mark.asyncio
    async def test_untriggered_alert_stays_armed(self, sim):
        seed = trading_seed()
        seed[Table.ALERTS] = [
            {"id": "a-1", "user_id": USER_ID, "symbol": "AAPL", "condition": "above", "trigger_price": 200, "is_active": True}
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_price("AAPL", 150)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["alertsChecked"] == 1
        assert report["results"][0]["alertsTriggered"] == 0
        assert (await store.get(Table.ALERTS, "a-1"))["is_active"] is True


    @pytest.mark.asyncio
    async def test_notify_only_alert_is_not_counted(self, sim):
        seed = trading_seed()
        seed[Table.ALERTS] = [
            {"id": "a-1", "user_id": USER_ID, "symbol": "AAPL", "condition": "above", "trigger_price": 100, "is_active": True}
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_price("AAPL", 150)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["alertsTriggered"] == 0
        assert sim.calls["create_order"] == 0
        assert (await store.get(Table.ALERTS, "a-1"))["is_active"] is False

    @pytest.mark.asyncio
    async def test_quote_failure_does_not_stop_other_alerts(self, sim):
        seed = trading_seed()
        seed[Table.ALERTS] = [
            {
                "id": "a-no-data",
                "user_id": USER_ID,
                "symbol": "AAPL",
                "condition": "above",
                "trigger_price": 100,
                "auto_action": "BUY",
                "is_active": True,
            },
            {
                "id": "a-msft",
                "user_id": USER_ID,
                "symbol": "MSFT",
                "condition": "above",
                "trigger_price": 100,
                "auto_action": "SELL:3",
                "is_active": True,
            },
        ]
        store = InMemoryStore(seed)
        gateway = AsyncMock()
        gateway.submit.return_value = {"success": True}
        app = build_app(store, sim, gateway=gateway)
        sim.set_price("MSFT", 150)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["alertsChecked"] == 2
        assert report["results"][0]["alertsTriggered"] == 1
        request = gateway.submit.await_args.args[0]
        assert request.symbol == "MSFT"
        assert request.quantity == 3
        assert (await store.get(Table.ALERTS, "a-no-data"))["is_active"] is True
        assert (await store.get(Table.ALERTS, "a-msft"))["is_active"] is False


class TestStrategies:
    @pytest.mark.asyncio
    async def test_dca_not_due_before_interval(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [dca_strategy(NOW - timedelta(hours=23))]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_price("BTC-USD", 40000)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["strategiesChecked"] == 1
        assert report["results"][0]["strategiesExecuted"] == 0
        assert store.rows(Table.EXECUTIONS) == []

    @pytest.mark.asyncio
    async def test_dca_due_after_interval(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [dca_strategy(NOW - timedelta(hours=25))]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_price("BTC-USD", 40000)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["strategiesExecuted"] == 1
        strategy = await store.get(Table.STRATEGIES, "strat-dca")
        assert strategy["last_executed_at"] == NOW.isoformat()
        assert strategy["total_trades"] == 1
        executions = store.rows(Table.EXECUTIONS)
        assert len(executions) == 1
        assert executions[0]["quantity"] == 0.0025

    @pytest.mark.asyncio
    async def test_dca_uses_wall_clock(self, sim):
        with freeze_time("2026-03-02 15:00:00", real_asyncio=True):
            seed = trading_seed()
            seed[Table.STRATEGIES] = [dca_strategy(NOW - timedelta(hours=25))]
            store = InMemoryStore(seed)
            app = build_app(store, sim)
            sim.set_price("BTC-USD", 40000)

            report = await app.loop.tick()

        assert report["timestamp"] == NOW.isoformat()
        strategy = await store.get(Table.STRATEGIES, "strat-dca")
        assert strategy["last_executed_at"] == report["timestamp"]

    @pytest.mark.asyncio
    async def test_dca_interval_is_claimed_even_when_order_fails(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [dca_strategy(None)]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        # No BTC price: the DCA run raises after the interval was claimed

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["strategiesExecuted"] == 0
        strategy = await store.get(Table.STRATEGIES, "strat-dca")
        assert strategy["last_executed_at"] == NOW.isoformat()
        failures = [log for log in store.rows(Table.TRADING_ACTIVITY_LOGS) if log["status"] == "failed"]
        assert len(failures) == 1
        assert failures[0]["agent_id"] == "strategy-executor"

        sim.set_price("BTC-USD", 40000)
        report = await app.loop.tick(now=NOW + timedelta(hours=1))
        assert report["results"][0]["strategiesExecuted"] == 0

    @pytest.mark.asyncio
    async def test_momentum_signal_counts_as_executed(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [
            {
                "id": "strat-mom",
                "user_id": USER_ID,
                "project_id": TRADING_PROJECT_ID,
                "name": "Trend",
                "exchange": "alpaca",
                "strategy_type": "momentum",
                "parameters": {"symbol": "SPY", "lookback_period": 5, "threshold": 5},
                "is_active": True,
            }
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_bars("SPY", [100, 102, 104, 108, 110])

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["strategiesExecuted"] == 1
        assert (await store.get(Table.STRATEGIES, "strat-mom"))["last_executed_at"] == NOW.isoformat()

    @pytest.mark.asyncio
    async def test_malformed_strategy_does_not_block_siblings(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [
            {**dca_strategy(None), "id": "strat-bad", "name": "Broken", "last_executed_at": "03/01/2026 15:00"},
            dca_strategy(None),
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_price("BTC-USD", 40000)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["strategiesChecked"] == 2
        assert report["results"][0]["strategiesExecuted"] == 1
        assert (await store.get(Table.STRATEGIES, "strat-dca"))["last_executed_at"] == NOW.isoformat()
        failures = [log for log in store.rows(Table.TRADING_ACTIVITY_LOGS) if log["status"] == "failed"]
        assert len(failures) == 1
        assert failures[0]["details"]["strategyId"] == "strat-bad"
        assert failures[0]["action"].startswith('Strategy "Broken" execution error')

    @pytest.mark.asyncio
    async def test_failing_strategy_does_not_block_siblings(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [
            {**dca_strategy(None, symbol="SOL/USD"), "id": "strat-sol"},
            dca_strategy(None),
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        # No SOL price: the first strategy raises
        sim.set_price("BTC-USD", 40000)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["strategiesExecuted"] == 1
        executions = store.rows(Table.EXECUTIONS)
        assert [e["symbol"] for e in executions] == ["BTC/USD"]

    @pytest.mark.asyncio
    async def test_postgres_timestamp_with_trimmed_fraction(self, sim):
        seed = trading_seed()
        seed[Table.STRATEGIES] = [
            {**dca_strategy(None), "last_executed_at": "2026-03-01T15:00:00.12345+00:00"},
        ]
        store = InMemoryStore(seed)
        app = build_app(store, sim)
        sim.set_price("BTC-USD", 40000)

        report = await app.loop.tick(now=NOW)

        assert report["results"][0]["strategiesExecuted"] == 1
