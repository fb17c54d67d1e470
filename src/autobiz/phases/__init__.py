"""Phase progression and deliverable review."""

from autobiz.phases.models import Deliverable, Phase, ReviewState, derive_review_state
from autobiz.phases.review import ReviewGate
from autobiz.phases.worker import PhaseProgressionWorker

__all__ = [
    "Deliverable",
    "Phase",
    "PhaseProgressionWorker",
    "ReviewGate",
    "ReviewState",
    "derive_review_state",
]
