from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from takehome.core.error_handling import UpstreamFailureError
from takehome.db.models.assessment import Assessment
from takehome.db.models.submission import Submission
from takehome.services.interview_merge import TranscriptTurn
from takehome.services.llm_client import TextGenerator

logger = logging.getLogger("llm")

MIN_QUESTIONS = 1
MAX_QUESTIONS = 4

QUESTIONS_SYSTEM_PROMPT = """You are a senior engineer preparing a short technical interview about a \
candidate's take-home project submission.

Write exactly {count} question(s). Each question must:
- refer to a concrete decision, component or trade-off the candidate is likely to have made
- be answerable out loud in two or three minutes
- avoid trivia and yes/no phrasing

For each question you may list anchors: files (and optionally line ranges) in the \
repository the question is about. Leave anchors empty when unsure.{custom}"""

QUESTIONS_USER_PROMPT = """Assessment description:
{description}

Submitted repository: {github_link}
Candidate notes: {notes}

Return {count} interview question(s)."""

SUMMARY_SYSTEM_PROMPT = """You summarize technical interview transcripts. Describe what was discussed: \
the questions asked and how the candidate answered, including technical details and code \
references. Stay neutral and factual; do not evaluate the candidate. 200-400 words."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class QuestionAnchor(BaseModel):
    path: str
    startLine: Optional[int] = None
    endLine: Optional[int] = None


class GeneratedQuestion(BaseModel):
    prompt: str = Field(..., min_length=1)
    anchors: list[QuestionAnchor] = Field(default_factory=list)


class GeneratedQuestionSet(BaseModel):
    questions: list[GeneratedQuestion]


QUESTIONS_SCHEMA = GeneratedQuestionSet.model_json_schema()


def clamp_question_count(count: Optional[int]) -> int:
    return max(MIN_QUESTIONS, min(MAX_QUESTIONS, int(count or 2)))


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text


def parse_questions(raw: str, count: int) -> list[dict]:
    """Validate model output and keep at most ``count`` usable questions."""
    try:
        parsed = GeneratedQuestionSet.model_validate_json(_strip_code_fence(raw))
    except ValidationError as exc:
        logger.warning("Malformed question payload from AI provider", extra={"errors": exc.error_count()})
        raise UpstreamFailureError("llm", "AI provider returned malformed interview questions")

    questions = [q for q in parsed.questions if q.prompt.strip()][:count]
    if not questions:
        raise UpstreamFailureError("llm", "AI provider returned no interview questions")
    return [
        {"prompt": q.prompt.strip(), "anchors": [a.model_dump(exclude_none=True) for a in q.anchors]}
        for q in questions
    ]


async def draft_questions(
    generator: TextGenerator,
    assessment: Assessment,
    submission: Submission,
) -> list[dict]:
    count = clamp_question_count(submission.question_count)
    custom = (assessment.interviewer_custom_instructions or "").strip()
    system_message = QUESTIONS_SYSTEM_PROMPT.format(
        count=count,
        custom=f"\n\nAdditional instructions from the hiring team:\n{custom}" if custom else "",
    )
    prompt = QUESTIONS_USER_PROMPT.format(
        description=(assessment.description or "").strip(),
        github_link=submission.github_link or "not provided",
        notes=(submission.notes or "").strip() or "none",
        count=count,
    )
    raw = await generator.generate(prompt, schema=QUESTIONS_SCHEMA, system_message=system_message)
    return parse_questions(raw, count)


def format_transcript(turns: Sequence[TranscriptTurn]) -> str:
    return "\n\n".join(
        f"{'Interviewer' if turn.role == 'interviewer' else 'Candidate'}: {turn.text}" for turn in turns
    )


async def summarize_transcript(generator: TextGenerator, turns: Sequence[TranscriptTurn]) -> Optional[str]:
    if not turns:
        return None
    prompt = f"Summarize this technical interview transcript.\n\nTranscript:\n{format_transcript(turns)}"
    summary = await generator.generate(prompt, system_message=SUMMARY_SYSTEM_PROMPT)
    return summary.strip() or None
