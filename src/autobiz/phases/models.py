"""Typed views over phase and deliverable rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from autobiz.clock import parse_timestamp
from autobiz.constants import DeliverableStatus, PhaseStatus
from autobiz.db.base import Row


class ReviewState(str, Enum):
    """Review state of a deliverable, derived from its status and both flags."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"


def derive_review_state(
    status: str | DeliverableStatus | None,
    ceo_approved: bool | None,
    user_approved: bool | None,
) -> ReviewState:
    """
    Compute the review state of a deliverable.

    APPROVED iff both approval flags are true, whatever the stored status says.
    Otherwise the stored status decides; a partially approved deliverable with
    no revision request counts as in review.
    """
    if ceo_approved is True and user_approved is True:
        return ReviewState.APPROVED

    value = status.value if isinstance(status, DeliverableStatus) else (status or "")
    if value == DeliverableStatus.REVISION_REQUESTED.value:
        return ReviewState.REVISION_REQUESTED
    if value == DeliverableStatus.IN_PROGRESS.value:
        return ReviewState.IN_PROGRESS
    if value in (DeliverableStatus.REVIEW.value, DeliverableStatus.APPROVED.value):
        return ReviewState.IN_REVIEW
    if ceo_approved or user_approved:
        return ReviewState.IN_REVIEW
    return ReviewState.PENDING


@dataclass
class Phase:
    """A stage in a project's fixed ordered workflow."""

    id: str
    project_id: str
    phase_number: int
    phase_name: str
    status: str = PhaseStatus.PENDING.value
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == PhaseStatus.ACTIVE.value

    @classmethod
    def from_row(cls, row: Row) -> Phase:
        return cls(
            id=row["id"],
            project_id=row.get("project_id", ""),
            phase_number=int(row.get("phase_number") or 0),
            phase_name=row.get("phase_name") or "",
            status=row.get("status") or PhaseStatus.PENDING.value,
            started_at=parse_timestamp(row.get("started_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
        )


@dataclass
class Deliverable:
    """A unit of work in a phase requiring CEO and user sign-off."""

    id: str
    phase_id: str
    name: str
    deliverable_type: str
    description: str = ""
    status: str = DeliverableStatus.PENDING.value
    user_id: str | None = None
    assigned_agent: str | None = None
    ceo_approved: bool = False
    user_approved: bool = False
    generated_content: Any = None
    feedback_history: list[dict[str, Any]] = field(default_factory=list)

    @property
    def state(self) -> ReviewState:
        return derive_review_state(self.status, self.ceo_approved, self.user_approved)

    @property
    def is_approved(self) -> bool:
        return self.state == ReviewState.APPROVED

    @property
    def latest_feedback(self) -> str | None:
        """Most recent rejection feedback, if any."""
        for entry in reversed(self.feedback_history):
            if entry.get("approved") is False and entry.get("feedback"):
                return entry["feedback"]
        return None

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "state": self.state.value,
            "ceoApproved": self.ceo_approved,
            "userApproved": self.user_approved,
        }

    @classmethod
    def from_row(cls, row: Row) -> Deliverable:
        return cls(
            id=row["id"],
            phase_id=row.get("phase_id", ""),
            name=row.get("name") or "",
            deliverable_type=row.get("deliverable_type") or "",
            description=row.get("description") or "",
            status=row.get("status") or DeliverableStatus.PENDING.value,
            user_id=row.get("user_id"),
            assigned_agent=row.get("assigned_agent"),
            ceo_approved=row.get("ceo_approved") is True,
            user_approved=row.get("user_approved") is True,
            generated_content=row.get("generated_content"),
            feedback_history=list(row.get("feedback_history") or []),
        )
