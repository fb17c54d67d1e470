"""Phase progression and deliverable review endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from autobiz.api.dependencies import get_container
from autobiz.api.responses import ActionParams, ok, read_params, unknown_action
from autobiz.app import AutobizApp
from autobiz.constants import Table
from autobiz.errors import NotFoundError

router = APIRouter(prefix="/functions", tags=["phases"])


@router.post("/phase-auto-worker")
async def phase_auto_worker(
    request: Request,
    container: AutobizApp = Depends(get_container),
) -> dict[str, Any]:
    """Phase worker actions."""
    params = await read_params(request)
    worker = container.worker
    action = params.action

    if action == "activate_phase":
        result = await worker.activate_phase(
            params.get("projectId", "project_id"),
            params.get_int("phaseNumber", "phase_number"),
            phase_id=params.get("phaseId", "phase_id"),
            user_id=params.get("userId", "user_id"),
        )
    elif action == "start_phase_work":
        result = await worker.start_phase(
            params.get("projectId", "project_id"),
            params.get_int("phaseNumber", "phase_number"),
            phase_id=params.get("phaseId", "phase_id"),
            user_id=params.get("userId", "user_id"),
        )
    elif action == "check_phase_completion":
        result = await worker.check_phase_completion(params.require("phaseId", "phase_id"))
    elif action == "advance_to_next_phase":
        result = await worker.advance_to_next_phase(
            params.require("projectId", "project_id"),
            params.get_int("currentPhaseNumber", "current_phase_number", "phaseNumber")
            or await _phase_number(container, params),
            params.get("userId", "user_id"),
            force=params.get_bool("force"),
        )
    elif action == "monitor_progress":
        result = await worker.monitor_progress(
            params.require("projectId", "project_id"),
            activity_limit=params.get_int("activityLimit", "activity_limit", default=10),
        )
    else:
        raise unknown_action(action)

    return ok(result)


async def _phase_number(container: AutobizApp, params: ActionParams) -> int:
    """Resolve the phase number from ``currentPhaseId``."""
    phase_id = params.require("currentPhaseId", "current_phase_id")
    phase = await container.store.get(Table.PHASES, phase_id)
    if phase is None:
        raise NotFoundError("Current phase not found")
    return int(phase["phase_number"])


@router.post("/approve-deliverable")
async def approve_deliverable(
    request: Request,
    container: AutobizApp = Depends(get_container),
) -> dict[str, Any]:
    """Review gate actions."""
    params = await read_params(request)
    gate = container.review
    action = params.action
    deliverable_id = params.require("deliverableId", "deliverable_id")

    if action == "ceo_review":
        result = await gate.ceo_review(deliverable_id)
    elif action == "ceo_approve":
        result = await gate.ceo_approve(
            deliverable_id,
            params.get_bool("approved", default=True),
            params.get("feedback"),
        )
    elif action == "user_approve":
        result = await gate.user_approve(
            deliverable_id,
            params.get("feedback"),
            approver_id=params.get("userId", "user_id"),
        )
    elif action == "user_reject":
        result = await gate.reject(deliverable_id, "User", params.require("feedback"))
    elif action == "regenerate":
        result = await gate.regenerate(deliverable_id, user_id=params.get("userId", "user_id"))
    elif action == "mark_review":
        result = await gate.mark_review(deliverable_id, params.get("content", "generatedContent"))
    else:
        raise unknown_action(action)

    return ok(result)
