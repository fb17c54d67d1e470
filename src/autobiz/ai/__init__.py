"""AI reviewer for generated deliverables."""

from autobiz.ai.ceo_reviewer import CEOReviewer, CEOVerdict, parse_verdict

__all__ = ["CEOReviewer", "CEOVerdict", "parse_verdict"]
