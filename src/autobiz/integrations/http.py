"""Shared JSON-over-HTTP plumbing for hosted function collaborators."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from autobiz.config_loader import CollaboratorsConfig
from autobiz.errors import CollaboratorError

logger = logging.getLogger(__name__)


class FunctionClient:
    """
    POSTs JSON to hosted functions under ``functions_url``.

    Authenticates with the service key. A non-2xx status, a non-JSON body or
    ``{"success": false}`` raises ``CollaboratorError``. No retries.
    """

    def __init__(
        self,
        config: CollaboratorsConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.service_key:
            headers["Authorization"] = f"Bearer {self.config.service_key}"
        return headers

    async def invoke(self, function: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self.config.function_url(function)
        try:
            response = await self._client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise CollaboratorError(f"{function} request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise CollaboratorError(
                f"{function} returned non-JSON response ({response.status_code})"
            ) from e

        if response.is_error or (isinstance(body, dict) and body.get("success") is False):
            error = body.get("error") if isinstance(body, dict) else None
            raise CollaboratorError(error or f"{function} failed ({response.status_code})")

        logger.debug(f"{function} -> {response.status_code}")
        return body if isinstance(body, dict) else {"data": body}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
