"""Dual-approval review gate for deliverables."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from autobiz.clock import now_iso
from autobiz.config_loader import PhasesConfig
from autobiz.constants import ActivityStatus, DeliverableStatus, PhaseStatus, Table
from autobiz.db.base import Row, WorkItemStore
from autobiz.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from autobiz.integrations.activity import ActivityLog
from autobiz.integrations.executor import AgentWorkExecutor, WorkRequest
from autobiz.phases.catalog import agent_for
from autobiz.phases.models import Deliverable, ReviewState, derive_review_state
from autobiz.phases.worker import PhaseProgressionWorker, build_input_data

if TYPE_CHECKING:
    from autobiz.ai.ceo_reviewer import CEOReviewer

logger = logging.getLogger(__name__)

CEO_SOURCE = "CEO Agent"
USER_SOURCE = "User"


def _with_feedback(row: Row, source: str, feedback: str, approved: bool) -> list[dict[str, Any]]:
    history = list(row.get("feedback_history") or [])
    history.append(
        {
            "source": source,
            "feedback": feedback,
            "timestamp": now_iso(),
            "approved": approved,
        }
    )
    return history


class ReviewGate:
    """
    Two-party sign-off on deliverables.

    CEO and user approval are independent flags written last-writer-wins in
    either order. A deliverable counts as approved only when both are set
    (see ``derive_review_state``). When an approval completes a phase the
    gate asks the worker to advance, if configured to.
    """

    def __init__(
        self,
        store: WorkItemStore,
        worker: PhaseProgressionWorker,
        executor: AgentWorkExecutor,
        activity: ActivityLog,
        reviewer: CEOReviewer | None = None,
        config: PhasesConfig | None = None,
    ) -> None:
        self.store = store
        self.worker = worker
        self.executor = executor
        self.activity = activity
        self.reviewer = reviewer
        self.config = config or PhasesConfig()

    async def _get(self, deliverable_id: str) -> Row:
        row = await self.store.get(Table.DELIVERABLES, deliverable_id)
        if row is None:
            raise NotFoundError(f"Deliverable not found: {deliverable_id}")
        return row

    async def _phase_project(self, row: Row) -> tuple[Row | None, str | None]:
        phase = await self.store.get(Table.PHASES, row.get("phase_id"))
        return phase, (phase or {}).get("project_id")

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def mark_review(self, deliverable_id: str, content: Any) -> dict[str, Any]:
        """Executor completion: ``in_progress -> review`` with the generated content."""
        row = await self._get(deliverable_id)
        if row.get("status") != DeliverableStatus.IN_PROGRESS.value:
            raise ConflictError(
                f"Deliverable {deliverable_id} is {row.get('status')}, expected in_progress"
            )
        updated = await self.store.update(
            Table.DELIVERABLES,
            {
                "status": DeliverableStatus.REVIEW,
                "generated_content": content,
                "updated_at": now_iso(),
            },
            {"id": deliverable_id},
        )
        deliverable = Deliverable.from_row(updated[0] if updated else row)
        return {"deliverableId": deliverable_id, "state": deliverable.state.value}

    async def ceo_approve(
        self,
        deliverable_id: str,
        approved: bool = True,
        feedback: str | None = None,
    ) -> dict[str, Any]:
        row = await self._get(deliverable_id)
        values: dict[str, Any] = {"ceo_approved": bool(approved), "reviewed_by": CEO_SOURCE}
        if feedback:
            values["feedback_history"] = _with_feedback(row, CEO_SOURCE, feedback, bool(approved))
        return await self._apply_approval(row, values, "ceo-agent", CEO_SOURCE)

    async def user_approve(
        self,
        deliverable_id: str,
        feedback: str | None = None,
        approver_id: str | None = None,
    ) -> dict[str, Any]:
        row = await self._get(deliverable_id)
        values: dict[str, Any] = {
            "user_approved": True,
            "approved_by": approver_id or row.get("user_id"),
            "approved_at": now_iso(),
        }
        if feedback:
            values["feedback_history"] = _with_feedback(row, USER_SOURCE, feedback, True)
        return await self._apply_approval(row, values, "user", USER_SOURCE)

    async def ceo_review(self, deliverable_id: str) -> dict[str, Any]:
        """Let the AI reviewer decide the CEO flag."""
        if self.reviewer is None or not self.reviewer.is_available:
            raise ConfigurationError("CEO reviewer is not configured")

        row = await self._get(deliverable_id)
        verdict = await self.reviewer.review(Deliverable.from_row(row))
        result = await self.ceo_approve(deliverable_id, verdict.approved, verdict.feedback)
        result["feedback"] = verdict.feedback
        result["qualityScore"] = verdict.quality_score
        return result

    async def _apply_approval(
        self,
        row: Row,
        values: dict[str, Any],
        agent_id: str,
        agent_name: str,
    ) -> dict[str, Any]:
        ceo = values.get("ceo_approved", row.get("ceo_approved") is True)
        user = values.get("user_approved", row.get("user_approved") is True)
        state = derive_review_state(row.get("status"), ceo, user)
        if state == ReviewState.APPROVED:
            values["status"] = DeliverableStatus.APPROVED
        elif row.get("status") == DeliverableStatus.APPROVED.value:
            # A withdrawn approval sends it back to review
            values["status"] = DeliverableStatus.REVIEW
        values["updated_at"] = now_iso()

        await self.store.update(Table.DELIVERABLES, values, {"id": row["id"]})

        phase, project_id = await self._phase_project(row)
        verb = "Approved" if values.get("ceo_approved", values.get("user_approved")) else "Needs revision"
        await self.activity.record(
            agent_id,
            agent_name,
            f"{verb} {row.get('deliverable_type')} deliverable",
            metadata={"deliverableId": row["id"], "state": state.value},
            project_id=project_id,
        )

        result: dict[str, Any] = {
            "deliverableId": row["id"],
            "ceoApproved": ceo,
            "userApproved": user,
            "state": state.value,
            "phaseComplete": False,
        }
        if state != ReviewState.APPROVED or phase is None:
            return result

        completion = await self.worker.check_phase_completion(phase["id"])
        result["phaseComplete"] = completion["complete"]
        if (
            completion["complete"]
            and self.config.auto_advance_on_approval
            and phase.get("status") == PhaseStatus.ACTIVE.value
        ):
            logger.info(f"Phase {phase.get('phase_number')} fully approved, advancing")
            result["advance"] = await self.worker.advance_to_next_phase(
                project_id, int(phase["phase_number"]), user_id=row.get("user_id")
            )
        return result

    async def reject(self, deliverable_id: str, source: str, feedback: str) -> dict[str, Any]:
        """Request a revision. Feedback is required and kept for regeneration."""
        if not feedback:
            raise ValidationError("feedback is required to request a revision")
        row = await self._get(deliverable_id)
        await self.store.update(
            Table.DELIVERABLES,
            {
                "status": DeliverableStatus.REVISION_REQUESTED,
                "feedback_history": _with_feedback(row, source, feedback, False),
                "updated_at": now_iso(),
            },
            {"id": deliverable_id},
        )
        state = derive_review_state(
            DeliverableStatus.REVISION_REQUESTED,
            row.get("ceo_approved") is True,
            row.get("user_approved") is True,
        )
        return {
            "deliverableId": deliverable_id,
            "state": state.value,
            "requiresRegeneration": True,
        }

    async def regenerate(self, deliverable_id: str, user_id: str | None = None) -> dict[str, Any]:
        """
        Re-run the executor on a deliverable with a revision request.

        Clears both approval flags and passes the latest rejection feedback
        as ``previousFeedback``.
        """
        row = await self._get(deliverable_id)
        if row.get("status") != DeliverableStatus.REVISION_REQUESTED.value:
            raise ConflictError(
                f"Deliverable {deliverable_id} is {row.get('status')}, expected revision_requested"
            )

        phase, project_id = await self._phase_project(row)
        if phase is None:
            raise NotFoundError("Phase not found")
        project = await self.store.get(Table.PROJECTS, project_id)
        phase_no = int(phase.get("phase_number") or 0)
        agent = agent_for(phase_no)
        agent_id = agent.id if agent else row.get("assigned_agent")
        if not agent_id:
            raise ConfigurationError(f"No agent assigned for phase {phase_no}")

        await self.store.update(
            Table.DELIVERABLES,
            {
                "status": DeliverableStatus.IN_PROGRESS,
                "ceo_approved": False,
                "user_approved": False,
                "approved_at": None,
                "assigned_agent": agent_id,
                "updated_at": now_iso(),
            },
            {"id": deliverable_id},
        )

        previous = Deliverable.from_row(row).latest_feedback
        request = WorkRequest(
            user_id=user_id or row.get("user_id"),
            project_id=project_id,
            deliverable_id=deliverable_id,
            agent_id=agent_id,
            task_type=row.get("deliverable_type", ""),
            phase_number=phase_no,
            input_data=build_input_data(project, row, previousFeedback=previous),
        )
        try:
            response = await self.executor.execute(request)
        except Exception as e:
            logger.error(f"Regeneration of {deliverable_id} failed: {e}")
            await self.activity.record(
                agent_id,
                agent.name if agent else agent_id,
                f"Failed to regenerate {row.get('name')}",
                status=ActivityStatus.FAILED,
                metadata={"deliverableId": deliverable_id, "error": str(e)},
                project_id=project_id,
            )
            raise

        return {
            "deliverableId": deliverable_id,
            "state": ReviewState.IN_PROGRESS.value,
            "assignedAgent": agent_id,
            "success": response.get("success") is not False,
        }
