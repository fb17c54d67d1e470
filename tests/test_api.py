"""Tests for the HTTP function endpoints."""

from __future__ import annotations

import httpx
import pytest

from autobiz.api import create_app
from autobiz.constants import Table
from autobiz.db.memory import InMemoryStore

from conftest import PROJECT_ID, TRADING_PROJECT_ID, USER_ID, build_app, business_seed, deliverable_row, trading_seed


def client_for(container) -> httpx.AsyncClient:
    app = create_app(container, close_on_shutdown=False)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health(store, sim):
    async with client_for(build_app(store, sim)) as client:
        response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["store"] == "memory"
    assert body["reviewer"] is False


class TestPhaseAutoWorker:
    @pytest.mark.asyncio
    async def test_start_phase_work(self, sim):
        store = InMemoryStore(business_seed())
        container = build_app(store, sim)

        async with client_for(container) as client:
            response = await client.post(
                "/functions/phase-auto-worker",
                json={"action": "start_phase_work", "projectId": PROJECT_ID, "phaseNumber": 1},
            )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["successfullyStarted"] == 4
        # The dry-run executor moves dispatched work straight to review
        assert {row["status"] for row in store.rows(Table.DELIVERABLES)} == {"review"}
        assert len(container.executor.requests) == 4

    @pytest.mark.asyncio
    async def test_check_completion(self, sim):
        seed = business_seed(active_phase=1)
        seed[Table.DELIVERABLES] = [deliverable_row("d-1", ceo=True, user=True)]
        async with client_for(build_app(InMemoryStore(seed), sim)) as client:
            response = await client.post(
                "/functions/phase-auto-worker",
                json={"action": "check_phase_completion", "phaseId": "phase-1"},
            )

        assert response.json() == {
            "success": True,
            "data": {
                "complete": True,
                "progress": {
                    "total": 1,
                    "approved": 1,
                    "pendingApproval": 0,
                    "inProgress": 0,
                    "revisionRequested": 0,
                    "percentComplete": 100,
                },
                "approvedDeliverables": 1,
                "totalDeliverables": 1,
                "deliverables": [
                    {
                        "id": "d-1",
                        "name": "Market Analysis",
                        "status": "review",
                        "state": "approved",
                        "ceoApproved": True,
                        "userApproved": True,
                    }
                ],
            },
        }

    @pytest.mark.asyncio
    async def test_advance_by_current_phase_id(self, sim):
        seed = business_seed(active_phase=1)
        seed[Table.DELIVERABLES] = [deliverable_row("d-1", ceo=True, user=True)]
        async with client_for(build_app(InMemoryStore(seed), sim)) as client:
            response = await client.post(
                "/functions/phase-auto-worker",
                json={"action": "advance_to_next_phase", "projectId": PROJECT_ID, "currentPhaseId": "phase-1"},
            )

        assert response.json()["data"]["newPhase"] == 2

    @pytest.mark.asyncio
    async def test_unknown_action(self, store, sim):
        async with client_for(build_app(store, sim)) as client:
            response = await client.post("/functions/phase-auto-worker", json={"action": "explode"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Unknown action: explode"}

    @pytest.mark.asyncio
    async def test_not_found(self, sim):
        async with client_for(build_app(InMemoryStore(business_seed()), sim)) as client:
            response = await client.post(
                "/functions/phase-auto-worker",
                json={"action": "monitor_progress", "projectId": "missing"},
            )

        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_conflict(self, sim):
        async with client_for(build_app(InMemoryStore(business_seed(active_phase=1)), sim)) as client:
            response = await client.post(
                "/functions/phase-auto-worker",
                json={"action": "activate_phase", "projectId": PROJECT_ID, "phaseNumber": 3},
            )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_json(self, store, sim):
        async with client_for(build_app(store, sim)) as client:
            response = await client.post(
                "/functions/phase-auto-worker",
                content=b"{not json",
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 400


class TestApproveDeliverable:
    @pytest.mark.asyncio
    async def test_dual_approval(self, sim):
        seed = business_seed(active_phase=1)
        seed[Table.DELIVERABLES] = [
            deliverable_row("d-1"),
            deliverable_row("d-2", deliverable_type="competitor_analysis"),
        ]
        store = InMemoryStore(seed)
        async with client_for(build_app(store, sim)) as client:
            first = await client.post(
                "/functions/approve-deliverable",
                json={"action": "ceo_approve", "deliverableId": "d-1", "approved": True},
            )
            second = await client.post(
                "/functions/approve-deliverable",
                json={"action": "user_approve", "deliverableId": "d-1", "userId": USER_ID},
            )

        assert first.json()["data"]["state"] == "in_review"
        assert second.json()["data"]["state"] == "approved"
        assert (await store.get(Table.DELIVERABLES, "d-1"))["status"] == "approved"

    @pytest.mark.asyncio
    async def test_reject_requires_feedback(self, sim):
        seed = business_seed(active_phase=1)
        seed[Table.DELIVERABLES] = [deliverable_row("d-1")]
        async with client_for(build_app(InMemoryStore(seed), sim)) as client:
            response = await client.post(
                "/functions/approve-deliverable",
                json={"action": "user_reject", "deliverableId": "d-1"},
            )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_deliverable_id(self, store, sim):
        async with client_for(build_app(store, sim)) as client:
            response = await client.post("/functions/approve-deliverable", json={"action": "ceo_approve"})

        assert response.status_code == 400
        assert response.json()["error"] == "deliverableId is required"


class TestTradingEndpoints:
    @pytest.mark.asyncio
    async def test_autonomous_loop_tick(self, sim):
        store = InMemoryStore(trading_seed())
        async with client_for(build_app(store, sim)) as client:
            response = await client.post("/functions/trading-autonomous-loop")

        data = response.json()["data"]
        assert data["success"] is True
        assert data["processed"] == 1
        assert data["results"][0]["projectId"] == TRADING_PROJECT_ID

    @pytest.mark.asyncio
    async def test_ai_agent_create_and_list(self, store, sim):
        async with client_for(build_app(store, sim)) as client:
            created = await client.post(
                "/functions/trading-ai-agent",
                json={
                    "action": "create_strategy",
                    "userId": USER_ID,
                    "params": {
                        "name": "Weekly BTC",
                        "exchange": "alpaca",
                        "strategyType": "dca",
                        "parameters": {"symbol": "BTC/USD", "amount": 50},
                    },
                },
            )
            listed = await client.post(
                "/functions/trading-ai-agent",
                json={"action": "get_strategies", "userId": USER_ID},
            )

        assert created.status_code == 200
        assert created.json()["data"]["message"] == "Strategy created successfully"
        assert [s["name"] for s in listed.json()["data"]["strategies"]] == ["Weekly BTC"]

    @pytest.mark.asyncio
    async def test_ai_agent_paper_dca(self, store, sim):
        sim.set_price("BTC-USD", 25000)
        async with client_for(build_app(store, sim)) as client:
            response = await client.post(
                "/functions/trading-ai-agent",
                json={
                    "action": "run_dca",
                    "userId": USER_ID,
                    "params": {"symbol": "BTC/USD", "amount": 100, "exchange": "alpaca", "paperMode": True},
                },
            )

        data = response.json()["data"]
        assert data["paperMode"] is True
        assert data["execution"]["quantity"] == 0.004

    @pytest.mark.asyncio
    async def test_broker_failure_maps_to_bad_gateway(self, store, sim):
        async with client_for(build_app(store, sim)) as client:
            response = await client.post(
                "/functions/trading-ai-agent",
                json={
                    "action": "run_dca",
                    "userId": USER_ID,
                    "params": {"symbol": "NOPE", "amount": 100, "exchange": "alpaca"},
                },
            )

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_risk_controls_round_trip(self, sim):
        store = InMemoryStore(trading_seed(risk={"kill_switch_active": False, "max_drawdown_pct": 20}))
        async with client_for(build_app(store, sim)) as client:
            activated = await client.post(
                "/functions/trading-risk-controls",
                json={
                    "action": "activate_kill_switch",
                    "projectId": TRADING_PROJECT_ID,
                    "userId": USER_ID,
                    "reason": "Operator halt",
                },
            )
            again = await client.post(
                "/functions/trading-risk-controls",
                json={"action": "activate_kill_switch", "projectId": TRADING_PROJECT_ID, "userId": USER_ID},
            )
            cleared = await client.post(
                "/functions/trading-risk-controls",
                json={"action": "clear_kill_switch", "projectId": TRADING_PROJECT_ID},
            )

        assert activated.json()["data"]["activated"] is True
        assert activated.json()["data"]["controls"]["kill_switch_reason"] == "Operator halt"
        assert again.json()["data"]["activated"] is False
        assert cleared.json()["data"]["kill_switch_active"] is False
