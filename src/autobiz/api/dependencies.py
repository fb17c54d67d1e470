"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from autobiz.app import AutobizApp
from autobiz.errors import ConfigurationError


def get_container(request: Request) -> AutobizApp:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise ConfigurationError("Application container not initialized")
    return container
