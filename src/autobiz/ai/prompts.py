"""Prompt templates for the CEO deliverable review."""

from __future__ import annotations

import json
from typing import Any

CEO_REVIEW_SYSTEM_PROMPT = (
    "You are a discerning CEO with high standards. Be constructive but thorough in your reviews."
)


def build_ceo_review_prompt(
    deliverable_type: str,
    name: str,
    description: str | None,
    content: Any,
    threshold: int = 7,
) -> str:
    """Build the user prompt asking for a JSON verdict on one deliverable."""
    rendered = json.dumps(content, indent=2, default=str) if content is not None else "null"
    return f"""You are the CEO Agent reviewing a {deliverable_type} deliverable for a business project.

Deliverable Name: {name}
Description: {description or 'No description provided'}
Generated Content: {rendered}

As CEO, evaluate this deliverable on:
1. Quality and professionalism (is it market-ready?)
2. Brand consistency and messaging
3. Strategic alignment with business goals
4. Technical execution

Respond ONLY with valid JSON (no markdown):
{{
    "quality_score": <1-10>,
    "approved": <true/false>,
    "feedback": "<constructive feedback>",
    "strengths": ["<strength>"],
    "improvements": ["<improvement>"]
}}

Only approve if quality_score is {threshold} or higher."""
