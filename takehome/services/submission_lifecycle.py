"""Submission state machine.

    pending -> in-progress -> submitted | expired | opted-out
    pending -> opted-out

Every mutation goes through ``_transition`` so that illegal moves are
rejected with a stable reason code and leave the row untouched. Expiry is
never scheduled: ``observe`` persists it when a read notices the deadline
has passed.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.auth import Account
from takehome.core.config import settings
from takehome.core.error_handling import InvalidTransitionError, NotFoundError
from takehome.core.logging_config import token_prefix
from takehome.core.metrics import collector
from takehome.db.models.assessment import Assessment
from takehome.db.models.submission import Submission, SubmissionStatus
from takehome.services.billing import SubmissionAllowance
from takehome.services.time_authority import is_overdue, remaining_minutes, time_spent_minutes, utcnow
from takehome.services.tokens import mint_token

logger = logging.getLogger("submissions")

S = SubmissionStatus

TRANSITIONS: dict[tuple[SubmissionStatus, str], SubmissionStatus] = {
    (S.PENDING, "start"): S.IN_PROGRESS,
    (S.PENDING, "opt_out"): S.OPTED_OUT,
    (S.IN_PROGRESS, "opt_out"): S.OPTED_OUT,
    (S.IN_PROGRESS, "submit"): S.SUBMITTED,
    (S.IN_PROGRESS, "expire"): S.EXPIRED,
}


def reason_code(event: str, status: SubmissionStatus) -> str:
    return f"{event}_not_allowed_from_{status.value.replace('-', '_')}"


def next_status(current: SubmissionStatus, event: str) -> SubmissionStatus:
    target = None if current.is_terminal else TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(
            reason=reason_code(event, current),
            message=f"Cannot {event.replace('_', '-')} a submission that is {current.value}",
            status=current.value,
            event=event,
        )
    return target


def _transition(submission: Submission, event: str) -> SubmissionStatus:
    current = submission.status_enum
    target = next_status(current, event)
    submission.status = target.value
    collector.increment_counter(f"submission_{event}")
    logger.info(
        "Submission transition",
        extra={
            "submission_id": submission.id,
            "event": event,
            "from_status": current.value,
            "to_status": target.value,
        },
    )
    return target


def share_link(token: str) -> str:
    return f"{settings.web_external_base_url}/CandidateAssessment?token={token}"


async def observe(session: AsyncSession, submission: Submission, now: Optional[dt.datetime] = None) -> Submission:
    """Persist expiry if the clock ran out while the candidate was working."""
    now = now or utcnow()
    if submission.status == S.IN_PROGRESS.value and is_overdue(submission, now):
        _transition(submission, "expire")
        await session.commit()
    return submission


async def start(
    session: AsyncSession,
    submission: Submission,
    now: Optional[dt.datetime] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Submission:
    """Start the clock. Repeated calls on an in-progress submission are no-ops."""
    now = now or utcnow()
    if submission.status == S.IN_PROGRESS.value:
        return submission

    _transition(submission, "start")
    submission.started_at = now
    submission.ip_address = ip_address
    submission.user_agent = (user_agent or "")[:512] or None
    await session.commit()
    return submission


async def submit(
    session: AsyncSession,
    submission: Submission,
    github_link: Optional[str],
    notes: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> Submission:
    """Accept the candidate's work. A submit past the deadline is kept and flagged late."""
    now = now or utcnow()
    current = submission.status_enum
    next_status(current, "submit")

    link = (github_link or "").strip()
    if not link:
        raise InvalidTransitionError(
            reason="github_link_required",
            message="A GitHub link is required to submit",
            status=current.value,
            event="submit",
        )

    late = is_overdue(submission, now)
    _transition(submission, "submit")
    submission.github_link = link
    submission.notes = notes
    submission.submitted_at = now
    submission.time_spent_minutes = time_spent_minutes(submission.started_at, now)
    submission.submitted_late = late
    if late:
        collector.increment_counter("submission_submit_late")
        logger.warning(
            "Submission received after deadline",
            extra={"submission_id": submission.id, "time_spent_minutes": submission.time_spent_minutes},
        )
    await session.commit()
    return submission


async def opt_out(
    session: AsyncSession,
    submission: Submission,
    reason: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> Submission:
    now = now or utcnow()
    _transition(submission, "opt_out")
    submission.opt_out_reason = (reason or "").strip() or None
    submission.opted_out_at = now
    # started_at is left as-is; it tells before-start and after-start opt-outs apart
    await session.commit()
    return submission


async def owned_assessment(session: AsyncSession, account: Account, assessment_id: int) -> Assessment:
    assessment = await session.get(Assessment, assessment_id)
    if assessment is None or assessment.account_id != account.id:
        raise NotFoundError("Assessment", assessment_id)
    return assessment


async def create_submission(
    session: AsyncSession,
    account: Account,
    assessment_id: int,
    candidate_name: str,
    allowance: SubmissionAllowance,
    candidate_email: Optional[str] = None,
) -> Submission:
    """Invite a candidate: snapshot the assessment and mint their access token."""
    assessment = await owned_assessment(session, account, assessment_id)
    await allowance.check(session, account)

    submission = Submission(
        token=mint_token(),
        assessment_id=assessment.id,
        candidate_name=candidate_name.strip(),
        candidate_email=(candidate_email or "").strip() or None,
        status=S.PENDING.value,
        time_limit_minutes=assessment.time_limit_minutes,
        question_count=assessment.num_interview_questions,
    )
    session.add(submission)
    await session.commit()
    collector.increment_counter("submission_created")
    logger.info(
        "Submission created",
        extra={
            "submission_id": submission.id,
            "assessment_id": assessment.id,
            "account_id": account.id,
            "token_prefix": token_prefix(submission.token),
        },
    )
    return submission


async def list_for_assessment(
    session: AsyncSession,
    account: Account,
    assessment_id: int,
    now: Optional[dt.datetime] = None,
) -> List[Submission]:
    now = now or utcnow()
    await owned_assessment(session, account, assessment_id)
    result = await session.execute(
        select(Submission)
        .where(Submission.assessment_id == assessment_id)
        .order_by(Submission.created_at.desc(), Submission.id.desc())
    )
    submissions = list(result.scalars().all())
    for submission in submissions:
        await observe(session, submission, now)
    return submissions


def time_remaining(submission: Submission, now: Optional[dt.datetime] = None) -> Optional[float]:
    """Remaining minutes rounded for API payloads."""
    remaining = remaining_minutes(submission, now or utcnow())
    return None if remaining is None else round(remaining, 2)
