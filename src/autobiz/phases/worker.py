"""Phase progression worker: drives a project's fixed phase checklist."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any

from autobiz.clock import now_iso
from autobiz.concurrency import gather_bounded
from autobiz.config_loader import PhasesConfig
from autobiz.constants import (
    ActivityStatus,
    DeliverableStatus,
    PhaseStatus,
    ProjectStatus,
    Table,
)
from autobiz.db.base import Row, WorkItemStore
from autobiz.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from autobiz.integrations.activity import ActivityLog, Notifier
from autobiz.integrations.executor import AgentWorkExecutor, WorkRequest
from autobiz.phases.catalog import agent_for, templates_for
from autobiz.phases.models import Deliverable, Phase, ReviewState

logger = logging.getLogger(__name__)

COO_AGENT_ID = "coo-agent"
COO_AGENT_NAME = "COO Agent"


def build_input_data(project: Row | None, deliverable: Row, **extra: Any) -> dict[str, Any]:
    """Context handed to the Agent Work Executor for one deliverable."""
    project = project or {}
    data = {
        "projectName": project.get("name"),
        "industry": project.get("industry"),
        "targetMarket": project.get("target_market"),
        "description": project.get("description"),
        "deliverableName": deliverable.get("name"),
        "deliverableDescription": deliverable.get("description"),
    }
    data.update(extra)
    return data


class PhaseProgressionWorker:
    """
    Moves a project through its phases.

    Activation materialises the phase's deliverable checklist, dispatch hands
    each open deliverable to the phase's agent through the executor, and
    advancement closes a fully approved phase and opens the next one.

    Executor failures are isolated per deliverable and reported in the result;
    only the initial project/phase lookups raise.
    """

    def __init__(
        self,
        store: WorkItemStore,
        executor: AgentWorkExecutor,
        activity: ActivityLog,
        notifier: Notifier,
        config: PhasesConfig | None = None,
    ) -> None:
        self.store = store
        self.executor = executor
        self.activity = activity
        self.notifier = notifier
        self.config = config or PhasesConfig()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def _get_project(self, project_id: str) -> Row:
        project = await self.store.get(Table.PROJECTS, project_id)
        if project is None:
            raise NotFoundError(f"Project not found: {project_id}")
        return project

    async def _find_phase(
        self,
        project_id: str | None,
        phase_number: int | None = None,
        phase_id: str | None = None,
    ) -> Row:
        if phase_id:
            phase = await self.store.get(Table.PHASES, phase_id)
        elif project_id and phase_number is not None:
            phase = await self.store.first(
                Table.PHASES, {"project_id": project_id, "phase_number": int(phase_number)}
            )
        else:
            raise ValidationError("phaseId or projectId and phaseNumber are required")

        if phase is None:
            raise NotFoundError("Phase not found")
        return phase

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def ensure_deliverables(self, phase: Row, user_id: str | None) -> list[Row]:
        """
        Insert the phase's checklist rows that do not exist yet.

        Idempotent by deliverable type. A failed insert is logged and skipped.
        Returns the rows created by this call.
        """
        existing = await self.store.select(Table.DELIVERABLES, {"phase_id": phase["id"]})
        existing_types = {row.get("deliverable_type") for row in existing}

        created: list[Row] = []
        for template in templates_for(int(phase.get("phase_number") or 0)):
            if template.type in existing_types:
                continue
            try:
                row = await self.store.insert(
                    Table.DELIVERABLES,
                    {
                        "user_id": user_id,
                        "phase_id": phase["id"],
                        "deliverable_type": template.type,
                        "name": template.name,
                        "description": template.description,
                        "status": DeliverableStatus.PENDING,
                        "ceo_approved": False,
                        "user_approved": False,
                        "feedback_history": [],
                    },
                )
                created.append(row)
            except Exception as e:
                logger.error(f"Failed to create deliverable {template.type} for phase {phase['id']}: {e}")
        return created

    async def activate_phase(
        self,
        project_id: str | None,
        phase_number: int | None = None,
        *,
        phase_id: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Activate a phase and materialise its deliverable checklist."""
        phase = await self._find_phase(project_id, phase_number, phase_id)
        project_id = phase.get("project_id") or project_id
        project = await self._get_project(project_id)
        user_id = user_id or project.get("user_id")

        active = await self.store.select(
            Table.PHASES, {"project_id": project_id, "status": PhaseStatus.ACTIVE}
        )
        others = [row for row in active if row["id"] != phase["id"]]
        if others:
            raise ConflictError(
                f"Phase {others[0].get('phase_number')} is already active for project {project_id}"
            )

        now = now_iso()
        updated = await self.store.update(
            Table.PHASES,
            {"status": PhaseStatus.ACTIVE, "started_at": now, "updated_at": now},
            {"id": phase["id"]},
        )
        phase = updated[0] if updated else phase

        deliverables = await self.ensure_deliverables(phase, user_id)

        await self.store.update(
            Table.PROJECTS,
            {"current_phase": phase["phase_number"], "updated_at": now},
            {"id": project_id},
        )

        await self.activity.record(
            COO_AGENT_ID,
            COO_AGENT_NAME,
            f"Activated Phase {phase['phase_number']}: {phase.get('phase_name')}",
            metadata={"phaseId": phase["id"], "deliverableCount": len(deliverables)},
            project_id=project_id,
        )
        await self.notifier.notify(
            user_id,
            "phase_started",
            f"Phase {phase['phase_number']} Started",
            f"{phase.get('phase_name')} has begun. {len(deliverables)} deliverables to complete.",
            {"phaseId": phase["id"], "phaseNumber": phase["phase_number"], "projectId": project_id},
        )

        logger.info(
            f"Activated phase {phase['phase_number']} of project {project_id} "
            f"({len(deliverables)} deliverables created)"
        )
        agent = agent_for(int(phase["phase_number"]))
        return {
            "phase": phase,
            "deliverables": deliverables,
            "agent": asdict(agent) if agent else None,
        }

    async def start_phase(
        self,
        project_id: str | None,
        phase_number: int | None = None,
        *,
        phase_id: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Dispatch every open deliverable of a phase to the phase's agent.

        Re-entrant: the phase is activated only if it is not active yet, and
        only ``pending``/``in_progress`` deliverables are dispatched. Partial
        failure is the normal case; each deliverable gets its own entry in
        ``workStarted``.
        """
        phase = await self._find_phase(project_id, phase_number, phase_id)
        project_id = phase.get("project_id") or project_id
        project = await self._get_project(project_id)
        user_id = user_id or project.get("user_id")

        if phase.get("status") != PhaseStatus.ACTIVE.value:
            activation = await self.activate_phase(project_id, phase_id=phase["id"], user_id=user_id)
            phase = activation["phase"]

        phase_no = int(phase["phase_number"])
        agent = agent_for(phase_no)
        if agent is None:
            raise ConfigurationError(f"No agent assigned for phase {phase_no}")

        deliverables = await self.store.select(
            Table.DELIVERABLES,
            {
                "phase_id": phase["id"],
                "status": [DeliverableStatus.PENDING, DeliverableStatus.IN_PROGRESS],
            },
            order_by="created_at",
        )

        async def dispatch(deliverable: Row) -> bool:
            await self.store.update(
                Table.DELIVERABLES,
                {
                    "status": DeliverableStatus.IN_PROGRESS,
                    "assigned_agent": agent.id,
                    "updated_at": now_iso(),
                },
                {"id": deliverable["id"]},
            )
            response = await self.executor.execute(
                WorkRequest(
                    user_id=user_id,
                    project_id=project_id,
                    deliverable_id=deliverable["id"],
                    agent_id=agent.id,
                    task_type=deliverable.get("deliverable_type", ""),
                    phase_number=phase_no,
                    input_data=build_input_data(project, deliverable),
                )
            )
            return response.get("success") is not False

        outcomes = await gather_bounded(deliverables, dispatch, self.config.dispatch_concurrency)

        work_started: list[dict[str, Any]] = []
        for outcome in outcomes:
            deliverable = outcome.item
            entry: dict[str, Any] = {
                "deliverableId": deliverable["id"],
                "deliverableName": deliverable.get("name"),
                "assignedAgent": agent.id,
                "success": bool(outcome.ok and outcome.value),
            }
            if not outcome.ok:
                entry["error"] = str(outcome.error)
                logger.error(f"Failed to start work on {deliverable.get('name')}: {outcome.error}")
                await self.activity.record(
                    agent.id,
                    agent.name,
                    f"Failed to start {deliverable.get('name')}",
                    status=ActivityStatus.FAILED,
                    metadata={"deliverableId": deliverable["id"], "error": str(outcome.error)},
                    project_id=project_id,
                )
            work_started.append(entry)

        started = sum(1 for entry in work_started if entry["success"])
        if work_started:
            await self.activity.record(
                agent.id,
                agent.name,
                f"Started work on {started}/{len(work_started)} deliverables in {phase.get('phase_name')}",
                status=ActivityStatus.STARTED,
                metadata={"phaseId": phase["id"]},
                project_id=project_id,
            )
        logger.info(f"Phase {phase_no} dispatch: {started}/{len(work_started)} started")

        return {
            "phaseId": phase["id"],
            "phaseName": phase.get("phase_name"),
            "workStarted": work_started,
            "totalDeliverables": len(work_started),
            "successfullyStarted": started,
        }

    async def check_phase_completion(self, phase_id: str) -> dict[str, Any]:
        """Count deliverables by review state. A phase with no deliverables is not complete."""
        rows = await self.store.select(Table.DELIVERABLES, {"phase_id": phase_id}, order_by="created_at")
        deliverables = [Deliverable.from_row(row) for row in rows]
        total = len(deliverables)

        states = [d.state for d in deliverables]
        approved = states.count(ReviewState.APPROVED)
        progress = {
            "total": total,
            "approved": approved,
            "pendingApproval": states.count(ReviewState.IN_REVIEW),
            "inProgress": states.count(ReviewState.IN_PROGRESS),
            "revisionRequested": states.count(ReviewState.REVISION_REQUESTED),
            "percentComplete": round(approved / total * 100) if total else 0,
        }
        result: dict[str, Any] = {
            "complete": total > 0 and approved == total,
            "progress": progress,
            "approvedDeliverables": approved,
            "totalDeliverables": total,
            "deliverables": [d.summary() for d in deliverables],
        }
        if total == 0:
            result["reason"] = "No deliverables found"
        elif approved < total:
            result["reason"] = f"{total - approved} of {total} deliverables not fully approved"
        return result

    async def advance_to_next_phase(
        self,
        project_id: str,
        current_phase_number: int,
        user_id: str | None = None,
        *,
        force: bool = False,
    ) -> dict[str, Any]:
        """
        Complete the current phase and activate the next one.

        Refuses when the current phase is not complete unless ``force``. The
        next phase's deliverable checklist is created as part of activation.
        When there is no next phase the project is marked completed.
        """
        project = await self._get_project(project_id)
        user_id = user_id or project.get("user_id")
        current = await self._find_phase(project_id, current_phase_number)

        completion = await self.check_phase_completion(current["id"])
        if not completion["complete"] and not force:
            return {
                "advanced": False,
                "reason": "Current phase is not complete",
                "progress": completion["progress"],
            }

        now = now_iso()
        await self.store.update(
            Table.PHASES,
            {"status": PhaseStatus.COMPLETED, "completed_at": now, "updated_at": now},
            {"id": current["id"]},
        )
        await self.activity.record(
            COO_AGENT_ID,
            COO_AGENT_NAME,
            f"Completed Phase {current['phase_number']}: {current.get('phase_name')}",
            metadata={"phaseId": current["id"], "forced": force and not completion["complete"]},
            project_id=project_id,
        )

        next_number = int(current["phase_number"]) + 1
        next_phase = None
        if next_number <= self.config.total_phases:
            next_phase = await self.store.first(
                Table.PHASES, {"project_id": project_id, "phase_number": next_number}
            )

        if next_phase is None:
            await self.store.update(
                Table.PROJECTS,
                {"status": ProjectStatus.COMPLETED, "updated_at": now},
                {"id": project_id},
            )
            await self.notifier.notify(
                user_id,
                "project_complete",
                "Project Complete!",
                f"All {current['phase_number']} phases have been completed. Your autonomous business is ready!",
                {"projectId": project_id},
            )
            logger.info(f"Project {project_id} completed after phase {current['phase_number']}")
            return {
                "advanced": False,
                "reason": "All phases complete",
                "projectComplete": True,
                "previousPhase": current["phase_number"],
            }

        activation = await self.activate_phase(project_id, phase_id=next_phase["id"], user_id=user_id)
        return {
            "advanced": True,
            "previousPhase": current["phase_number"],
            "newPhase": next_number,
            "newPhaseName": next_phase.get("phase_name"),
            "deliverablesCreated": len(activation["deliverables"]),
        }

    async def monitor_progress(self, project_id: str, activity_limit: int = 10) -> dict[str, Any]:
        """Read-only progress report across all phases of a project."""
        project = await self._get_project(project_id)
        phases = [
            Phase.from_row(row)
            for row in await self.store.select(
                Table.PHASES, {"project_id": project_id}, order_by="phase_number"
            )
        ]

        completions = await asyncio.gather(*(self.check_phase_completion(p.id) for p in phases))
        phase_progress = [
            {
                "phaseNumber": phase.phase_number,
                "phaseName": phase.phase_name,
                "status": phase.status,
                **completion["progress"],
            }
            for phase, completion in zip(phases, completions)
        ]

        current = next((p for p in phases if p.is_active), None)
        return {
            "projectId": project_id,
            "projectStatus": project.get("status"),
            "currentPhase": current.phase_number if current else project.get("current_phase"),
            "phases": phase_progress,
            "overallProgress": {
                "completedPhases": sum(1 for p in phases if p.status == PhaseStatus.COMPLETED.value),
                "totalPhases": self.config.total_phases,
            },
            "recentActivity": await self.activity.tail(project_id, activity_limit),
        }
