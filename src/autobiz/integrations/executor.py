"""Agent Work Executor collaborator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from autobiz.clock import now_iso
from autobiz.constants import DeliverableStatus, Table
from autobiz.db.base import WorkItemStore
from autobiz.integrations.http import FunctionClient

logger = logging.getLogger(__name__)


@dataclass
class WorkRequest:
    """One unit of agent work for a deliverable."""

    user_id: str | None
    project_id: str
    deliverable_id: str
    agent_id: str
    task_type: str
    phase_number: int
    input_data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "projectId": self.project_id,
            "deliverableId": self.deliverable_id,
            "agentId": self.agent_id,
            "taskType": self.task_type,
            "phaseNumber": self.phase_number,
            "inputData": self.input_data,
        }


class AgentWorkExecutor(ABC):
    """
    Generates a deliverable's content.

    The executor owns writing ``generated_content`` and moving the
    deliverable to ``review``; callers only trigger it.
    """

    @abstractmethod
    async def execute(self, request: WorkRequest) -> dict[str, Any]:
        """Trigger the work. Returns the executor response (``success`` key)."""


class HTTPAgentWorkExecutor(AgentWorkExecutor):
    """Executor reached as a hosted function."""

    def __init__(self, client: FunctionClient, function: str = "agent-work-executor") -> None:
        self.client = client
        self.function = function

    async def execute(self, request: WorkRequest) -> dict[str, Any]:
        logger.info(
            f"Dispatching {request.task_type} to {request.agent_id} "
            f"(deliverable {request.deliverable_id})"
        )
        return await self.client.invoke(self.function, request.to_payload())


class SimAgentWorkExecutor(AgentWorkExecutor):
    """
    Dry-run executor.

    Writes placeholder content straight to the deliverable and moves it to
    ``review``, standing in for the hosted executor.
    """

    def __init__(self, store: WorkItemStore) -> None:
        self.store = store
        self.requests: list[WorkRequest] = []

    async def execute(self, request: WorkRequest) -> dict[str, Any]:
        self.requests.append(request)
        content = {
            "title": request.input_data.get("deliverableName", request.task_type),
            "summary": f"Draft {request.task_type} prepared by {request.agent_id}",
            "generatedBy": request.agent_id,
            "generatedAt": now_iso(),
        }
        await self.store.update(
            Table.DELIVERABLES,
            {
                "generated_content": content,
                "status": DeliverableStatus.REVIEW,
                "updated_at": now_iso(),
            },
            {"id": request.deliverable_id},
        )
        return {"success": True, "deliverableId": request.deliverable_id}
