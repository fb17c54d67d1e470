"""AI CEO reviewer for generated deliverables, using OpenAI."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

from autobiz.ai.prompts import CEO_REVIEW_SYSTEM_PROMPT, build_ceo_review_prompt
from autobiz.errors import CollaboratorError

if TYPE_CHECKING:
    from autobiz.config_loader import OpenAIConfig
    from autobiz.phases.models import Deliverable

logger = logging.getLogger(__name__)

PARSE_FAILURE_FEEDBACK = "Unable to parse review. Please try again."

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class CEOVerdict:
    """Outcome of one CEO review."""

    approved: bool
    feedback: str
    quality_score: int | None = None
    strengths: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    raw_response: str = ""
    latency_ms: int = 0


def parse_verdict(raw_response: str, threshold: int = 7) -> CEOVerdict:
    """
    Parse the model's reply.

    Approved iff the reply says ``approved: true`` and ``quality_score`` meets
    the threshold. Anything unparsable is a rejection.
    """
    match = _JSON_OBJECT.search(raw_response or "")
    if match:
        try:
            data = json.loads(match.group(0))
            score = int(data.get("quality_score", 0))
            return CEOVerdict(
                approved=data.get("approved") is True and score >= threshold,
                feedback=str(data.get("feedback") or "Review completed"),
                quality_score=score,
                strengths=list(data.get("strengths") or []),
                improvements=list(data.get("improvements") or []),
                raw_response=raw_response,
            )
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse CEO review: {e}")
    return CEOVerdict(approved=False, feedback=PARSE_FAILURE_FEEDBACK, raw_response=raw_response)


class CEOReviewer:
    """
    Chat-completion backed reviewer standing in for the CEO agent.

    Unavailable (``is_available`` False) when disabled in config or when no
    API key is set.
    """

    def __init__(self, config: OpenAIConfig, client: AsyncOpenAI | None = None) -> None:
        self.config = config
        self._client: AsyncOpenAI | None = client

        if self._client is not None:
            return
        if not config.enabled:
            logger.info("CEO reviewer disabled in config")
            return
        if not config.api_key or config.api_key.startswith("${"):
            logger.warning("OpenAI API key not configured. Set OPENAI_API_KEY in .env")
            return

        self._client = AsyncOpenAI(api_key=config.api_key)
        logger.info(f"CEO reviewer initialized with model: {config.model}")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def review(self, deliverable: Deliverable) -> CEOVerdict:
        """Ask the model for a verdict. Transport failures raise ``CollaboratorError``."""
        if self._client is None:
            raise CollaboratorError("CEO reviewer is not available")

        start_time = time.time()
        prompt = build_ceo_review_prompt(
            deliverable.deliverable_type,
            deliverable.name,
            deliverable.description,
            deliverable.generated_content,
            self.config.approval_threshold,
        )
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.config.model,
                    messages=[
                        {"role": "system", "content": CEO_REVIEW_SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0.3,
                    max_tokens=500,
                ),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise CollaboratorError("CEO review timed out") from e
        except Exception as e:
            raise CollaboratorError(f"Failed to get CEO review: {e}") from e

        raw_response = response.choices[0].message.content or ""
        verdict = parse_verdict(raw_response, self.config.approval_threshold)
        verdict.latency_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"CEO review of {deliverable.id} in {verdict.latency_ms}ms: "
            f"score={verdict.quality_score} approved={verdict.approved}"
        )
        return verdict
