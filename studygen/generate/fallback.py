# Deterministic, non-AI output used when the model cannot deliver.
# Everything here is labeled as fallback so callers can tell it apart.

from __future__ import annotations

import logging
from typing import List, Optional

from .types import Question

logger = logging.getLogger(__name__)

FALLBACK_OPTIONS = [
    "This requires review of the source material",
    "Please refer to the uploaded content",
    "See the provided documentation",
    "Consult the source files for details",
]
FALLBACK_EXPLANATION = (
    "This question was generated as a fallback when the AI service was unavailable. "
    "Please review the source material for accurate information."
)
FALLBACK_NOTICE = "[Fallback content: the AI service was unavailable. The text below is taken from your input.]"
OVERVIEW_WORDS = 300


def fallback_questions(count: int, prompt: str) -> List[Question]:
    logger.info("Generating %d fallback questions", count)
    topic = (prompt or "the provided content").strip()
    return [
        Question(
            text=f'Question {i}: Based on the content provided for "{topic}", what is an important concept to understand?',
            options=list(FALLBACK_OPTIONS),
            correct_answer_index=0,
            explanation=FALLBACK_EXPLANATION,
            fallback=True,
        )
        for i in range(1, count + 1)
    ]


def _overview(source: str, limit: int = OVERVIEW_WORDS) -> str:
    words = source.split()
    text = " ".join(words[:limit])
    if len(words) > limit:
        text += "\n\n[Content truncated for display]"
    return text


def fallback_content(prompt: str, source: Optional[str] = None) -> str:
    logger.info("Generating fallback content")
    body = _overview(source) if source and source.strip() else f"Requested topic: {prompt}"
    return f"{FALLBACK_NOTICE}\n\n{body}"


def fallback_course(prompt: str, source: str) -> str:
    """Markdown course built from the raw source text."""
    logger.info("Generating fallback course")
    title = (prompt or "Uploaded Content").strip()
    return (
        f"# Course: {title}\n\n"
        "This course was generated as a fallback when the AI service was unavailable. "
        "It contains the raw content from your uploaded files.\n\n"
        "## Content Overview\n\n"
        f"{_overview(source)}\n"
    )
