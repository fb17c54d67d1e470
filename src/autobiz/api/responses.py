"""JSON envelope and request parameter helpers for the function endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from autobiz.db.base import to_json_value
from autobiz.errors import AutobizError, ValidationError

logger = logging.getLogger(__name__)


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": to_json_value(data)}


def error_response(message: str, status: int) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message})


async def autobiz_error_handler(request: Request, exc: AutobizError) -> JSONResponse:
    if exc.status >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.url.path} rejected ({exc.status}): {exc}")
    return error_response(str(exc), exc.status)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.url.path} crashed: {exc}")
    return error_response(str(exc) or exc.__class__.__name__, 500)


class ActionParams:
    """
    Flat view over a function request body.

    Accepts both ``{"action": ..., "foo": ...}`` and
    ``{"action": ..., "params": {"foo": ...}}``; keys are looked up in
    camelCase first, then snake_case.
    """

    def __init__(self, body: dict[str, Any] | None) -> None:
        body = dict(body or {})
        nested = body.pop("params", None)
        self.values: dict[str, Any] = dict(body)
        if isinstance(nested, dict):
            self.values.update(nested)

    @property
    def action(self) -> str | None:
        return self.values.get("action")

    def get(self, *names: str, default: Any = None) -> Any:
        for name in names:
            value = self.values.get(name)
            if value is not None:
                return value
        return default

    def require(self, *names: str) -> Any:
        value = self.get(*names)
        if value is None or value == "":
            raise ValidationError(f"{names[0]} is required")
        return value

    def get_bool(self, *names: str, default: bool = False) -> bool:
        value = self.get(*names)
        if value is None:
            return default
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def get_int(self, *names: str, default: int | None = None) -> int | None:
        value = self.get(*names)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{names[0]} must be an integer") from e


async def read_params(request: Request) -> ActionParams:
    """Parse the JSON body; an empty body is an empty parameter set."""
    raw = await request.body()
    if not raw:
        return ActionParams({})
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return ActionParams(body)


def unknown_action(action: str | None) -> ValidationError:
    return ValidationError(f"Unknown action: {action}")
