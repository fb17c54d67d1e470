"""Health check."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from autobiz.api.dependencies import get_container
from autobiz.app import AutobizApp
from autobiz.clock import now_iso

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(container: AutobizApp = Depends(get_container)) -> dict[str, Any]:
    config = container.config
    return {
        "status": "ok",
        "store": config.environment.store_backend.value,
        "broker": config.collaborators.broker_mode.value,
        "dryRun": config.is_dry_run,
        "reviewer": container.reviewer.is_available,
        "timestamp": now_iso(),
    }
