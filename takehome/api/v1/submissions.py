from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.api.v1.schemas import (
    AssessmentSnapshot,
    CandidateSubmissionRead,
    GenerateQuestionsResponse,
    OptOutRequest,
    QuestionStatus,
    ShareLinkRequest,
    ShareLinkResponse,
    StartResponse,
    SubmissionRead,
    SubmitRequest,
)
from takehome.auth import Account, current_account
from takehome.core.config import settings
from takehome.core.logging_config import client_ip_from_headers
from takehome.db.models.assessment import Assessment
from takehome.db.models.submission import Submission
from takehome.db.session import get_session
from takehome.services import interview_orchestrator, submission_lifecycle as lifecycle, tokens
from takehome.services.billing import SubmissionAllowance, get_submission_allowance
from takehome.services.llm_client import TextGenerator, get_text_generator
from takehome.services.time_authority import utcnow

# Candidate routes authenticate with the token in the path
router = APIRouter(prefix="/submissions", tags=["submissions"])
employer_router = APIRouter(tags=["employer"])


def client_ip(request: Request) -> str | None:
    return client_ip_from_headers(request.headers, request.client.host if request.client else None)


def submission_payload(submission: Submission, now=None) -> SubmissionRead:
    payload = SubmissionRead.model_validate(submission)
    payload.time_remaining = lifecycle.time_remaining(submission, now)
    return payload


@router.get("/token/{token}", response_model=CandidateSubmissionRead)
async def get_submission_by_token(token: str, session: AsyncSession = Depends(get_session)):
    submission = await tokens.resolve(session, token)
    now = utcnow()
    await lifecycle.observe(session, submission, now)
    assessment = await session.get(Assessment, submission.assessment_id)
    return CandidateSubmissionRead(
        **submission_payload(submission, now).model_dump(),
        assessment=AssessmentSnapshot.model_validate(assessment),
        poll_interval_seconds=settings.status_poll_interval_seconds,
    )


@router.post("/token/{token}/start", response_model=StartResponse)
async def start_submission(token: str, request: Request, session: AsyncSession = Depends(get_session)):
    submission = await tokens.resolve(session, token)
    now = utcnow()
    await lifecycle.start(
        session,
        submission,
        now=now,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return StartResponse(
        status=submission.status,
        started_at=submission.started_at,
        time_remaining=lifecycle.time_remaining(submission, now),
    )


@router.post("/token/{token}/submit", response_model=SubmissionRead)
async def submit_submission(token: str, body: SubmitRequest, session: AsyncSession = Depends(get_session)):
    submission = await tokens.resolve(session, token)
    now = utcnow()
    await lifecycle.submit(session, submission, github_link=body.github_link, notes=body.notes, now=now)
    return submission_payload(submission, now)


@router.post("/token/{token}/opt-out", response_model=SubmissionRead)
async def opt_out_submission(
    token: str,
    body: OptOutRequest | None = None,
    session: AsyncSession = Depends(get_session),
):
    submission = await tokens.resolve(session, token)
    await lifecycle.opt_out(session, submission, reason=body.reason if body else None)
    return submission_payload(submission)


@router.post("/token/{token}/interview-questions", response_model=GenerateQuestionsResponse)
async def generate_interview_questions(
    token: str,
    session: AsyncSession = Depends(get_session),
    generator: TextGenerator = Depends(get_text_generator),
):
    submission = await tokens.resolve(session, token)
    interview = await interview_orchestrator.generate_questions(session, submission, generator)
    return GenerateQuestionsResponse(
        interview_id=interview.id,
        status=interview.status,
        questions=interview.questions or [],
    )


@router.get("/token/{token}/interview-questions/status", response_model=QuestionStatus)
async def interview_questions_status(token: str, session: AsyncSession = Depends(get_session)):
    submission = await tokens.resolve(session, token)
    return QuestionStatus(**await interview_orchestrator.question_status(session, submission))


@employer_router.post("/submissions/share-link", response_model=ShareLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_share_link(
    body: ShareLinkRequest,
    account: Account = Depends(current_account),
    allowance: SubmissionAllowance = Depends(get_submission_allowance),
    session: AsyncSession = Depends(get_session),
):
    submission = await lifecycle.create_submission(
        session,
        account,
        assessment_id=body.assessment_id,
        candidate_name=body.candidate_name,
        candidate_email=body.candidate_email,
        allowance=allowance,
    )
    return ShareLinkResponse(
        token=submission.token,
        share_link=lifecycle.share_link(submission.token),
        submission_id=submission.id,
        candidate_name=submission.candidate_name,
    )


@employer_router.get("/assessments/{assessment_id}/submissions", response_model=List[SubmissionRead])
async def list_assessment_submissions(
    assessment_id: int,
    account: Account = Depends(current_account),
    session: AsyncSession = Depends(get_session),
):
    now = utcnow()
    submissions = await lifecycle.list_for_assessment(session, account, assessment_id, now)
    return [submission_payload(s, now) for s in submissions]
