"""Interview session orchestration.

Two writers feed one Interview row:

* the live text loop (``start_session`` / ``answer``), one question at a time
* the voice provider's post-call webhook (``ingest_provider_callback``)

Both go through ``merge_and_commit`` so the merge rules in
``interview_merge`` are the only place that decides what may change. The
transcript in ``interview_turns`` is authoritative; the ephemeral session
record only maps a session id to its interview and can be rebuilt from the
turns at any time.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.auth import Account
from takehome.core.config import settings
from takehome.core.error_handling import (
    ForbiddenError,
    InvalidPayloadError,
    InvalidTransitionError,
    NotFoundError,
    NotReadyError,
    UpstreamFailureError,
    ValidationError,
)
from takehome.core.metrics import collector
from takehome.db.models.assessment import Assessment
from takehome.db.models.interview import Interview, InterviewStatus, InterviewTurn, TurnRole
from takehome.db.models.submission import Submission, SubmissionStatus
from takehome.services import tokens, webhook_verifier
from takehome.services.ephemeral_store import EphemeralStore, store as default_store
from takehome.services.interview_merge import (
    InterviewState,
    InterviewUpdate,
    PROVIDER_SOURCE,
    SESSION_SOURCE,
    MergeResult,
    TranscriptTurn,
    is_terminal,
    merge_interview,
)
from takehome.services.llm_client import TextGenerator
from takehome.services.question_generation import draft_questions, summarize_transcript
from takehome.services.submission_lifecycle import owned_assessment
from takehome.services.time_authority import elapsed_minutes, utcnow

logger = logging.getLogger("interviews")

CLOSING_MESSAGE = "Thanks, this completes the interview."

SESSION_KEY = "interview_session:{}"
SUBMISSION_SESSION_KEY = "interview_session:submission:{}"


@dataclass
class SessionView:
    session_id: str
    question_index: int
    total_questions: int
    interviewer_text: str
    done: bool = False


# --- transcript persistence ------------------------------------------------

async def fetch_turns(session: AsyncSession, interview_id: int) -> list[InterviewTurn]:
    """Fetch all turns for an interview ordered by sequence."""
    result = await session.execute(
        select(InterviewTurn)
        .where(InterviewTurn.interview_id == interview_id)
        .order_by(InterviewTurn.sequence_number)
    )
    return list(result.scalars().all())


async def _count_turns(session: AsyncSession, interview_id: int) -> int:
    result = await session.execute(
        select(func.count(InterviewTurn.id)).where(InterviewTurn.interview_id == interview_id)
    )
    return int(result.scalar_one())


async def _turns_by_source(session: AsyncSession, interview_id: int) -> dict[str, int]:
    result = await session.execute(
        select(InterviewTurn.source, func.count(InterviewTurn.id))
        .where(InterviewTurn.interview_id == interview_id)
        .group_by(InterviewTurn.source)
    )
    return {source: int(count) for source, count in result.all()}


async def _get_next_sequence(session: AsyncSession, interview_id: int) -> int:
    result = await session.execute(
        select(func.max(InterviewTurn.sequence_number)).where(InterviewTurn.interview_id == interview_id)
    )
    return (result.scalar_one() or 0) + 1


def _as_transcript(turns: list[InterviewTurn]) -> list[TranscriptTurn]:
    return [
        TranscriptTurn(
            role=t.role,
            text=t.text,
            question_index=t.question_index,
            start_offset_ms=t.start_offset_ms,
            end_offset_ms=t.end_offset_ms,
        )
        for t in turns
    ]


def _state_of(interview: Interview, turns_by_source: dict[str, int]) -> InterviewState:
    return InterviewState(
        status=interview.status,
        conversation_id=interview.conversation_id,
        provider=interview.provider,
        summary=interview.summary,
        analysis=interview.analysis,
        error_message=interview.error_message,
        turns_by_source=turns_by_source,
    )


def _apply(interview: Interview, result: MergeResult, now: dt.datetime) -> None:
    state = result.state
    if result.status_changed:
        interview.status = state.status
        if state.status == InterviewStatus.IN_PROGRESS.value and interview.started_at is None:
            interview.started_at = now
        elif state.status == InterviewStatus.COMPLETED.value:
            interview.completed_at = now
        elif state.status == InterviewStatus.FAILED.value:
            interview.error_at = now
    interview.conversation_id = state.conversation_id
    interview.provider = state.provider
    interview.summary = state.summary
    interview.analysis = state.analysis
    interview.error_message = state.error_message
    interview.last_activity_at = now


async def merge_and_commit(
    session: AsyncSession,
    interview: Interview,
    update: InterviewUpdate,
    now: Optional[dt.datetime] = None,
) -> MergeResult:
    """Merge ``update`` into ``interview`` and persist it with any new turns.

    Retries once when a concurrent writer took the same sequence numbers.
    """
    now = now or utcnow()
    for attempt in range(2):
        counts = await _turns_by_source(session, interview.id)
        result = merge_interview(_state_of(interview, counts), update)
        _apply(interview, result, now)

        next_seq = await _get_next_sequence(session, interview.id)
        for offset, turn in enumerate(result.appended_turns):
            session.add(
                InterviewTurn(
                    interview_id=interview.id,
                    sequence_number=next_seq + offset,
                    role=turn.role,
                    text=turn.text,
                    question_index=turn.question_index,
                    start_offset_ms=turn.start_offset_ms,
                    end_offset_ms=turn.end_offset_ms,
                    source=update.source,
                )
            )
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if attempt:
                raise
            await session.refresh(interview)
            continue
        break

    if result.conversation_conflict:
        collector.increment_counter("interview_conversation_conflict")
        logger.warning(
            "Conversation id conflict; keeping the first one",
            extra={
                "interview_id": interview.id,
                "stored_conversation_id": interview.conversation_id,
                "incoming_conversation_id": update.conversation_id,
            },
        )
    if result.status_changed:
        collector.increment_counter(f"interview_{interview.status}_{update.source}")
        logger.info(
            "Interview status changed",
            extra={"interview_id": interview.id, "status": interview.status, "source": update.source},
        )
    return result


# --- lookups ---------------------------------------------------------------

async def get_interview(session: AsyncSession, submission_id: int) -> Optional[Interview]:
    return (
        await session.execute(select(Interview).where(Interview.submission_id == submission_id))
    ).scalar_one_or_none()


async def _get_submission(session: AsyncSession, submission_id: int) -> Submission:
    submission = await session.get(Submission, submission_id)
    if submission is None:
        raise NotFoundError("Submission", submission_id)
    return submission


async def _get_or_create_interview(session: AsyncSession, submission: Submission) -> Interview:
    interview = await get_interview(session, submission.id)
    if interview is not None:
        return interview
    interview = Interview(submission_id=submission.id, status=InterviewStatus.NOT_STARTED.value)
    session.add(interview)
    try:
        await session.commit()
    except IntegrityError:
        # Another request created it first
        await session.rollback()
        interview = await get_interview(session, submission.id)
        if interview is None:
            raise
    return interview


async def _conversation_taken(session: AsyncSession, conversation_id: Optional[str], interview: Interview) -> bool:
    """True if another interview already owns ``conversation_id``."""
    if not conversation_id:
        return False
    owner = (
        await session.execute(select(Interview.id).where(Interview.conversation_id == conversation_id))
    ).scalar_one_or_none()
    return owner is not None and owner != interview.id


async def candidate_submission(session: AsyncSession, submission_id: int, token: Optional[str]) -> Submission:
    """Resolve a candidate token and check it belongs to ``submission_id``."""
    submission = await tokens.resolve(session, token)
    if submission.id != submission_id:
        raise NotFoundError("Submission")
    return submission


def _require_submitted(submission: Submission, event: str) -> None:
    if submission.status != SubmissionStatus.SUBMITTED.value:
        raise InvalidTransitionError(
            reason=f"{event}_not_allowed_from_{submission.status.replace('-', '_')}",
            message="The interview is only available after the project has been submitted",
            status=submission.status,
            event=event,
        )


async def expire_if_stale(
    session: AsyncSession,
    interview: Interview,
    now: Optional[dt.datetime] = None,
) -> bool:
    """Fail an in-progress interview that has seen no activity for too long."""
    now = now or utcnow()
    if interview.status != InterviewStatus.IN_PROGRESS.value:
        return False
    last = interview.last_activity_at or interview.started_at or interview.updated_at
    limit = settings.interview_stale_after_minutes
    if last is None or elapsed_minutes(last, now) < limit:
        return False
    await merge_and_commit(
        session,
        interview,
        InterviewUpdate(
            status=InterviewStatus.FAILED.value,
            error_message=f"Interview abandoned after {limit} minutes without activity",
        ),
        now=now,
    )
    return True


# --- question generation -----------------------------------------------------

async def generate_questions(
    session: AsyncSession,
    submission: Submission,
    generator: TextGenerator,
) -> Interview:
    """Draft interview questions for a submitted project.

    The Interview row is created only once questions exist, so a provider
    failure leaves nothing behind and the call can simply be retried.
    """
    _require_submitted(submission, "generate_questions")
    assessment = await session.get(Assessment, submission.assessment_id)
    if assessment is None:
        raise NotFoundError("Assessment", submission.assessment_id)
    if not assessment.is_smart_interviewer_enabled:
        raise ForbiddenError("smart_interviewer_disabled", "Smart interviewer is not enabled for this assessment")
    if not (assessment.description or "").strip():
        raise InvalidTransitionError(
            reason="assessment_description_required",
            message="Assessment description is required to generate interview questions",
            status=submission.status,
            event="generate_questions",
        )

    interview = await get_interview(session, submission.id)
    if interview is not None and interview.status != InterviewStatus.NOT_STARTED.value:
        raise InvalidTransitionError(
            reason=f"generate_questions_not_allowed_from_{interview.status}",
            message="Interview has already started",
            status=interview.status,
            event="generate_questions",
        )

    try:
        questions = await draft_questions(generator, assessment, submission)
    except UpstreamFailureError:
        collector.increment_counter("interview_questions_failed")
        logger.warning("Question generation failed", extra={"submission_id": submission.id})
        raise

    if interview is None:
        interview = Interview(
            submission_id=submission.id,
            status=InterviewStatus.NOT_STARTED.value,
            questions=questions,
        )
        session.add(interview)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            interview = await get_interview(session, submission.id)
            if interview is None:
                raise
            interview.questions = questions
            await session.commit()
    else:
        interview.questions = questions
        await session.commit()

    collector.increment_counter("interview_questions_generated")
    logger.info(
        "Interview questions generated",
        extra={"submission_id": submission.id, "interview_id": interview.id, "count": len(questions)},
    )
    return interview


async def question_status(session: AsyncSession, submission: Submission) -> dict[str, Any]:
    interview = await get_interview(session, submission.id)
    if interview is not None:
        await expire_if_stale(session, interview)
    return {
        "ready": bool(interview and interview.questions),
        "totalQuestions": interview.total_questions if interview else 0,
        "interviewStatus": interview.status if interview else None,
        "pollIntervalSeconds": settings.question_poll_interval_seconds,
        "maxPollAttempts": settings.question_poll_max_attempts,
    }


# --- synchronous Q&A loop ----------------------------------------------------

def _interviewer_turn(interview: Interview, index: int) -> TranscriptTurn:
    return TranscriptTurn(
        role=TurnRole.INTERVIEWER.value,
        text=interview.questions[index]["prompt"],
        question_index=index,
    )


async def _session_turns(session: AsyncSession, interview_id: int) -> list[InterviewTurn]:
    return [t for t in await fetch_turns(session, interview_id) if t.source == SESSION_SOURCE]


def _answered_count(turns: list[InterviewTurn]) -> int:
    return sum(1 for t in turns if t.role == TurnRole.CANDIDATE.value)


async def _save_session(store: EphemeralStore, record: dict[str, Any]) -> None:
    ttl = settings.interview_session_ttl_seconds
    await store.put(SESSION_KEY.format(record["sessionId"]), record, ttl_seconds=ttl)
    await store.put(
        SUBMISSION_SESSION_KEY.format(record["submissionId"]),
        {"sessionId": record["sessionId"]},
        ttl_seconds=ttl,
    )


def _already_completed(interview: Interview, event: str) -> InvalidTransitionError:
    return InvalidTransitionError(
        reason=f"{event}_not_allowed_from_{interview.status}",
        message="Interview already completed" if interview.status == "completed" else "Interview has ended",
        status=interview.status,
        event=event,
    )


async def start_session(
    session: AsyncSession,
    submission_id: int,
    token: Optional[str],
    now: Optional[dt.datetime] = None,
    store: EphemeralStore = default_store,
) -> SessionView:
    """Open (or resume) the text interview for a submission."""
    now = now or utcnow()
    submission = await candidate_submission(session, submission_id, token)
    _require_submitted(submission, "start_interview")

    interview = await get_interview(session, submission.id)
    if interview is None or not interview.questions:
        raise NotReadyError(
            details={
                "submissionId": submission.id,
                "pollIntervalSeconds": settings.question_poll_interval_seconds,
            }
        )
    await expire_if_stale(session, interview, now)
    if is_terminal(interview.status):
        raise _already_completed(interview, "start_interview")

    turns = await _session_turns(session, interview.id)
    total = interview.total_questions
    index = _answered_count(turns)
    if index >= total:
        # Every question answered but completion never recorded
        await merge_and_commit(session, interview, InterviewUpdate(status=InterviewStatus.COMPLETED.value), now)
        raise _already_completed(interview, "start_interview")

    transcript = _as_transcript(turns)
    asked = any(t.role == TurnRole.INTERVIEWER.value and t.question_index == index for t in turns)
    if not asked:
        transcript.append(_interviewer_turn(interview, index))
    await merge_and_commit(
        session,
        interview,
        InterviewUpdate(status=InterviewStatus.IN_PROGRESS.value, provider="text", turns=transcript),
        now,
    )

    pointer = await store.get(SUBMISSION_SESSION_KEY.format(submission.id))
    session_id = (pointer or {}).get("sessionId") or store.new_id()
    await _save_session(
        store,
        {
            "sessionId": session_id,
            "submissionId": submission.id,
            "interviewId": interview.id,
            "questionIndex": index,
            "totalQuestions": total,
            "done": False,
        },
    )
    logger.info(
        "Interview session started",
        extra={"submission_id": submission.id, "interview_id": interview.id, "question_index": index, "resumed": asked},
    )
    return SessionView(
        session_id=session_id,
        question_index=index,
        total_questions=total,
        interviewer_text=interview.questions[index]["prompt"],
    )


async def answer(
    session: AsyncSession,
    session_id: str,
    text: Optional[str],
    now: Optional[dt.datetime] = None,
    store: EphemeralStore = default_store,
) -> SessionView:
    """Record the candidate's answer and move to the next question."""
    now = now or utcnow()
    text = (text or "").strip()
    if not text:
        raise ValidationError("Answer text is required", user_message="Please type an answer before sending.")

    record = await store.get(SESSION_KEY.format(session_id))
    if record is None:
        raise NotFoundError("Interview session", session_id)
    if record.get("done"):
        raise InvalidTransitionError(
            reason="answer_not_allowed_after_done",
            message="Interview already completed",
            status=InterviewStatus.COMPLETED.value,
            event="answer",
        )

    interview = await session.get(Interview, record["interviewId"])
    if interview is None:
        raise NotFoundError("Interview", record["interviewId"])
    await expire_if_stale(session, interview, now)
    if is_terminal(interview.status):
        await _save_session(store, {**record, "done": True})
        raise _already_completed(interview, "answer")

    turns = await _session_turns(session, interview.id)
    total = interview.total_questions
    index = _answered_count(turns)
    transcript = _as_transcript(turns)
    transcript.append(TranscriptTurn(role=TurnRole.CANDIDATE.value, text=text, question_index=index))

    next_index = index + 1
    done = next_index >= total
    if done:
        update = InterviewUpdate(status=InterviewStatus.COMPLETED.value, turns=transcript)
        interviewer_text = CLOSING_MESSAGE
    else:
        transcript.append(_interviewer_turn(interview, next_index))
        update = InterviewUpdate(turns=transcript)
        interviewer_text = interview.questions[next_index]["prompt"]

    await merge_and_commit(session, interview, update, now)
    await _save_session(store, {**record, "questionIndex": next_index, "done": done})
    return SessionView(
        session_id=session_id,
        question_index=next_index,
        total_questions=total,
        interviewer_text=interviewer_text,
        done=done,
    )


# --- provider (voice) path ---------------------------------------------------

async def record_conversation(
    session: AsyncSession,
    submission_id: int,
    token: Optional[str],
    conversation_id: str,
    now: Optional[dt.datetime] = None,
) -> dict[str, Any]:
    """Link a voice call to the submission's interview when the call starts."""
    now = now or utcnow()
    submission = await candidate_submission(session, submission_id, token)
    conversation_id = (conversation_id or "").strip()
    if not conversation_id:
        raise ValidationError("conversationId is required")
    _require_submitted(submission, "record_conversation")

    interview = await _get_or_create_interview(session, submission)
    await expire_if_stale(session, interview, now)
    if is_terminal(interview.status):
        raise _already_completed(interview, "record_conversation")

    taken = await _conversation_taken(session, conversation_id, interview)
    result = await merge_and_commit(
        session,
        interview,
        InterviewUpdate(
            status=InterviewStatus.IN_PROGRESS.value,
            conversation_id=None if taken else conversation_id,
            provider="elevenlabs",
        ),
        now,
    )
    return {
        "interviewId": interview.id,
        "conversationId": interview.conversation_id,
        "status": interview.status,
        "conflict": taken or result.conversation_conflict,
    }


def _parse_submission_id(raw: Optional[str]) -> int:
    try:
        return int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise NotFoundError("Submission", raw)


async def ingest_provider_callback(
    session: AsyncSession,
    callback: webhook_verifier.ProviderCallback,
    generator: Optional[TextGenerator] = None,
    now: Optional[dt.datetime] = None,
) -> dict[str, Any]:
    """Apply a verified provider webhook. Redelivery yields the same end state."""
    now = now or utcnow()
    if callback.event_type not in (
        webhook_verifier.POST_CALL_TRANSCRIPTION,
        webhook_verifier.CALL_INITIATION_FAILURE,
    ):
        collector.increment_counter("webhook_ignored")
        return {"status": "ignored"}

    if callback.event_type == webhook_verifier.POST_CALL_TRANSCRIPTION and not callback.conversation_id:
        raise InvalidPayloadError("Missing conversation_id")

    submission = await _get_submission(session, _parse_submission_id(callback.submission_id))
    interview = await _get_or_create_interview(session, submission)

    conversation_id = callback.conversation_id
    if await _conversation_taken(session, conversation_id, interview):
        logger.warning(
            "Conversation id belongs to another interview",
            extra={"interview_id": interview.id, "conversation_id": conversation_id},
        )
        conversation_id = None

    if callback.event_type == webhook_verifier.POST_CALL_TRANSCRIPTION:
        update = InterviewUpdate(
            status=InterviewStatus.COMPLETED.value,
            conversation_id=conversation_id,
            provider="elevenlabs",
            turns=callback.turns,
            summary=callback.summary,
            analysis=callback.analysis,
            source=PROVIDER_SOURCE,
        )
    else:
        update = InterviewUpdate(
            status=InterviewStatus.FAILED.value,
            conversation_id=conversation_id,
            provider="elevenlabs",
            error_message=callback.failure_reason,
            source=PROVIDER_SOURCE,
        )
    result = await merge_and_commit(session, interview, update, now)

    turns_count = await _count_turns(session, interview.id)
    if (
        callback.event_type == webhook_verifier.POST_CALL_TRANSCRIPTION
        and not interview.summary
        and turns_count
        and generator is not None
        and settings.generate_missing_summaries
    ):
        await _fill_summary(session, interview, generator, now)

    logger.info(
        "Provider callback applied",
        extra={
            "submission_id": submission.id,
            "interview_id": interview.id,
            "event_type": callback.event_type,
            "appended_turns": len(result.appended_turns),
            "status": interview.status,
        },
    )
    return {
        "status": "success",
        "submissionId": str(submission.id),
        "conversationId": interview.conversation_id or callback.conversation_id,
        "turnsCount": turns_count,
        "hasSummary": bool(interview.summary),
    }


async def _fill_summary(
    session: AsyncSession,
    interview: Interview,
    generator: TextGenerator,
    now: dt.datetime,
) -> None:
    turns = _as_transcript(await fetch_turns(session, interview.id))
    try:
        summary = await summarize_transcript(generator, turns)
    except UpstreamFailureError as exc:
        # The transcript is already stored; the summary can be produced later
        logger.warning("Summary generation failed", extra={"interview_id": interview.id, "error": exc.message})
        if not interview.error_message:
            interview.error_message = f"Summary generation failed: {exc.message}"
            interview.error_at = now
            await session.commit()
        return
    if summary:
        await merge_and_commit(session, interview, InterviewUpdate(summary=summary, source=PROVIDER_SOURCE), now)


# --- employer view -----------------------------------------------------------

async def interview_detail(
    session: AsyncSession,
    account: Account,
    submission_id: int,
) -> tuple[Submission, Interview, list[InterviewTurn]]:
    submission = await _get_submission(session, submission_id)
    await owned_assessment(session, account, submission.assessment_id)
    interview = await get_interview(session, submission.id)
    if interview is None:
        raise NotFoundError("Interview", submission_id)
    await expire_if_stale(session, interview)
    return submission, interview, await fetch_turns(session, interview.id)
