"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from autobiz.api.responses import autobiz_error_handler, unhandled_error_handler
from autobiz.api.routes import phases, system, trading
from autobiz.app import AutobizApp
from autobiz.errors import AutobizError


def create_app(container: AutobizApp, *, close_on_shutdown: bool = True) -> FastAPI:
    """Create the API bound to an already wired ``AutobizApp``.

    Parameters
    ----------
    container:
        Service container every route resolves its collaborators from.
    close_on_shutdown:
        Release the container's HTTP clients and store when the server stops.
        Tests that share one container across apps pass ``False``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            if close_on_shutdown:
                await container.aclose()

    app = FastAPI(title="autobiz", version="0.1.0", lifespan=lifespan)
    app.state.container = container

    app.add_exception_handler(AutobizError, autobiz_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(system.router)
    app.include_router(phases.router)
    app.include_router(trading.router)
    return app
