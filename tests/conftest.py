"""Shared fixtures: in-memory store, simulated broker and seed rows."""

from __future__ import annotations

from typing import Any

import pytest

from autobiz.app import AutobizApp
from autobiz.broker.base import BrokerRegistry
from autobiz.broker.sim import SimBrokerAdapter
from autobiz.config_loader import AppConfig
from autobiz.constants import Table
from autobiz.db.memory import InMemoryStore
from autobiz.phases.catalog import PHASE_NAMES

PROJECT_ID = "proj-1"
USER_ID = "user-1"
TRADING_PROJECT_ID = "tp-1"


def business_seed(active_phase: int | None = None) -> dict[str, list[dict[str, Any]]]:
    """A business project with its six phases, optionally one of them active."""
    phases = [
        {
            "id": f"phase-{n}",
            "project_id": PROJECT_ID,
            "phase_number": n,
            "phase_name": PHASE_NAMES[n],
            "status": "active" if n == active_phase else "pending",
        }
        for n in range(1, 7)
    ]
    return {
        Table.PROJECTS: [
            {
                "id": PROJECT_ID,
                "user_id": USER_ID,
                "name": "Acme Candles",
                "industry": "Home goods",
                "target_market": "Gift shoppers",
                "status": "active",
                "current_phase": active_phase or 1,
            }
        ],
        Table.PHASES: phases,
    }


def deliverable_row(
    deliverable_id: str,
    phase_id: str = "phase-1",
    *,
    status: str = "review",
    ceo: bool = False,
    user: bool = False,
    deliverable_type: str = "market_analysis",
    **extra: Any,
) -> dict[str, Any]:
    row = {
        "id": deliverable_id,
        "phase_id": phase_id,
        "user_id": USER_ID,
        "deliverable_type": deliverable_type,
        "name": deliverable_type.replace("_", " ").title(),
        "description": "",
        "status": status,
        "ceo_approved": ceo,
        "user_approved": user,
        "feedback_history": [],
    }
    row.update(extra)
    return row


def trading_seed(
    *,
    mode: str = "paper",
    exchange: str = "alpaca",
    risk: dict[str, Any] | None = None,
) -> dict[str, list[dict[str, Any]]]:
    seed: dict[str, list[dict[str, Any]]] = {
        Table.TRADING_PROJECTS: [
            {
                "id": TRADING_PROJECT_ID,
                "user_id": USER_ID,
                "name": "Autopilot",
                "exchange": exchange,
                "mode": mode,
                "status": "active",
                "autonomous_mode": True,
                "capital": 100000,
            }
        ]
    }
    if risk is not None:
        seed[Table.RISK_CONTROLS] = [
            {"id": "risk-1", "project_id": TRADING_PROJECT_ID, "user_id": USER_ID, **risk}
        ]
    return seed


def build_app(store: InMemoryStore, sim: SimBrokerAdapter, **overrides: Any) -> AutobizApp:
    return AutobizApp(
        AppConfig(),
        store=store,
        brokers=BrokerRegistry({"alpaca": sim}),
        **overrides,
    )


@pytest.fixture
def sim() -> SimBrokerAdapter:
    return SimBrokerAdapter(exchange="alpaca")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
