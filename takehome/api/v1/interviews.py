from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.api.v1.schemas import (
    AnswerRequest,
    AnswerResponse,
    ConversationRequest,
    ConversationResponse,
    InterviewRead,
    InterviewTurnRead,
    StartInterviewRequest,
    StartInterviewResponse,
)
from takehome.auth import Account, current_account
from takehome.db.session import get_session
from takehome.services import interview_orchestrator as orchestrator

router = APIRouter(prefix="/interviews", tags=["interviews"])
employer_router = APIRouter(tags=["employer"])


@router.post("/start", response_model=StartInterviewResponse)
async def start_interview(body: StartInterviewRequest, session: AsyncSession = Depends(get_session)):
    view = await orchestrator.start_session(session, body.submission_id, token=body.token)
    return StartInterviewResponse(
        session_id=view.session_id,
        question_index=view.question_index,
        total_questions=view.total_questions,
        interviewer_text=view.interviewer_text,
    )


@router.post("/{session_id}/answer", response_model=AnswerResponse)
async def answer_question(session_id: str, body: AnswerRequest, session: AsyncSession = Depends(get_session)):
    view = await orchestrator.answer(session, session_id, body.text)
    return AnswerResponse(
        question_index=view.question_index,
        total_questions=view.total_questions,
        interviewer_text=view.interviewer_text,
        done=view.done,
    )


@router.post("/{submission_id}/conversation", response_model=ConversationResponse)
async def record_conversation(
    submission_id: int,
    body: ConversationRequest,
    session: AsyncSession = Depends(get_session),
):
    return ConversationResponse(
        **await orchestrator.record_conversation(session, submission_id, body.token, body.conversation_id)
    )


@employer_router.get("/submissions/{submission_id}/interview", response_model=InterviewRead)
async def get_submission_interview(
    submission_id: int,
    account: Account = Depends(current_account),
    session: AsyncSession = Depends(get_session),
):
    _, interview, turns = await orchestrator.interview_detail(session, account, submission_id)
    payload = InterviewRead.model_validate(
        {
            "id": interview.id,
            "submission_id": interview.submission_id,
            "status": interview.status,
            "provider": interview.provider,
            "conversation_id": interview.conversation_id,
            "questions": interview.questions or [],
            "summary": interview.summary,
            "analysis": interview.analysis,
            "error_message": interview.error_message,
            "started_at": interview.started_at,
            "completed_at": interview.completed_at,
        }
    )
    payload.turns = [InterviewTurnRead.model_validate(t) for t in turns]
    return payload
