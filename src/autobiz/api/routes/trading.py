"""Trading endpoints: autonomous tick, strategy agent and risk controls."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from autobiz.api.dependencies import get_container
from autobiz.api.responses import ok, read_params, unknown_action
from autobiz.app import AutobizApp

router = APIRouter(prefix="/functions", tags=["trading"])


@router.post("/trading-autonomous-loop")
async def trading_autonomous_loop(container: AutobizApp = Depends(get_container)) -> dict[str, Any]:
    """Run one scheduler tick over every autonomous project."""
    return ok(await container.loop.tick())


@router.post("/trading-ai-agent")
async def trading_ai_agent(
    request: Request,
    container: AutobizApp = Depends(get_container),
) -> dict[str, Any]:
    params = await read_params(request)
    service = container.strategies
    action = params.action
    user_id = params.require("userId", "user_id")

    if action == "create_strategy":
        result = await service.create_strategy(
            user_id,
            params.require("name"),
            params.get("exchange", default=""),
            params.require("strategyType", "strategy_type"),
            params.get("parameters"),
            params.get_bool("paperMode", "paper_mode", default=True),
            params.get("projectId", "project_id"),
        )
    elif action == "get_strategies":
        result = await service.get_strategies(user_id, params.get("projectId", "project_id"))
    elif action == "toggle_strategy":
        result = await service.toggle_strategy(
            params.require("strategyId", "strategy_id"),
            params.get_bool("isActive", "is_active"),
            user_id,
        )
    elif action == "execute_strategy":
        result = await service.execute_strategy(params.require("strategyId", "strategy_id"), user_id)
    elif action == "run_dca":
        result = await service.run_dca(
            params.get("strategyId", "strategy_id"),
            params.get("projectId", "project_id"),
            params.require("symbol"),
            params.require("amount"),
            params.get_bool("paperMode", "paper_mode", default=True),
            user_id=user_id,
            exchange=params.require("exchange"),
        )
    elif action == "run_grid":
        result = await service.run_grid(
            params.get("strategyId", "strategy_id"),
            params.get("projectId", "project_id"),
            params.require("symbol"),
            params.require("upperPrice", "upper_price"),
            params.require("lowerPrice", "lower_price"),
            params.require("gridLevels", "grid_levels"),
            params.require("totalAmount", "total_amount"),
            params.get_bool("paperMode", "paper_mode", default=True),
            user_id=user_id,
            exchange=params.require("exchange"),
        )
    elif action == "run_momentum":
        result = await service.run_momentum(
            params.require("symbol"),
            params.get("lookbackPeriod", "lookback_period", default=20),
            params.get("threshold", default=5),
            user_id=user_id,
            exchange=params.require("exchange"),
            strategy_id=params.get("strategyId", "strategy_id"),
        )
    elif action == "get_trade_history":
        result = await service.get_trade_history(
            user_id,
            params.get("strategyId", "strategy_id"),
            params.get_int("limit", default=50),
        )
    elif action == "get_performance":
        result = await service.get_performance(user_id)
    else:
        raise unknown_action(action)

    return ok(result)


@router.post("/trading-risk-controls")
async def trading_risk_controls(
    request: Request,
    container: AutobizApp = Depends(get_container),
) -> dict[str, Any]:
    params = await read_params(request)
    risk = container.risk
    action = params.action
    project_id = params.require("projectId", "project_id")

    if action == "get_controls":
        result = await risk.get_controls(project_id)
    elif action == "activate_kill_switch":
        reason = params.get("reason", default="Manual activation")
        activated = await risk.trip_kill_switch(
            project_id,
            reason,
            user_id=params.get("userId", "user_id"),
            automatic=False,
        )
        result = {"activated": activated, "controls": await risk.get_controls(project_id)}
    elif action == "clear_kill_switch":
        result = await risk.clear_kill_switch(project_id, params.get("userId", "user_id"))
    else:
        raise unknown_action(action)

    return ok(result)
