import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- candidate ---------------------------------------------------------------

class AssessmentSnapshot(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    time_limit_minutes: Optional[int] = None
    num_interview_questions: int
    is_smart_interviewer_enabled: bool


class SubmissionRead(CamelModel):
    id: int
    status: str
    candidate_name: str
    candidate_email: Optional[str] = None
    time_limit_minutes: Optional[int] = None
    question_count: int
    started_at: Optional[dt.datetime] = None
    submitted_at: Optional[dt.datetime] = None
    time_spent_minutes: Optional[int] = None
    submitted_late: bool = False
    github_link: Optional[str] = None
    notes: Optional[str] = None
    opt_out_reason: Optional[str] = None
    opted_out_at: Optional[dt.datetime] = None
    opted_out_after_start: bool = False
    time_remaining: Optional[float] = Field(None, description="Minutes left, computed by the server")
    created_at: dt.datetime


class CandidateSubmissionRead(SubmissionRead):
    assessment: AssessmentSnapshot
    poll_interval_seconds: int


class StartResponse(CamelModel):
    status: str
    started_at: dt.datetime
    time_remaining: Optional[float] = None


class SubmitRequest(CamelModel):
    github_link: str = Field(..., description="Repository URL")
    notes: Optional[str] = None


class OptOutRequest(CamelModel):
    reason: Optional[str] = None


class QuestionStatus(CamelModel):
    ready: bool
    total_questions: int
    interview_status: Optional[str] = None
    poll_interval_seconds: int
    max_poll_attempts: int


class QuestionAnchorRead(BaseModel):
    path: str
    startLine: Optional[int] = None
    endLine: Optional[int] = None


class InterviewQuestionRead(CamelModel):
    prompt: str
    anchors: list[QuestionAnchorRead] = Field(default_factory=list)


class GenerateQuestionsResponse(CamelModel):
    interview_id: int
    status: str
    questions: list[InterviewQuestionRead]


# --- interview -----------------------------------------------------------------

class StartInterviewRequest(CamelModel):
    submission_id: int
    # Checked by the token gate; a missing token is answered like an unknown one
    token: Optional[str] = None


class StartInterviewResponse(CamelModel):
    session_id: str
    question_index: int
    total_questions: int
    interviewer_text: str


class AnswerRequest(CamelModel):
    text: str = ""


class AnswerResponse(CamelModel):
    question_index: int
    total_questions: int
    interviewer_text: str
    done: bool


class ConversationRequest(CamelModel):
    conversation_id: str
    token: Optional[str] = None


class ConversationResponse(CamelModel):
    interview_id: int
    conversation_id: Optional[str] = None
    status: str
    conflict: bool = False


# --- employer ------------------------------------------------------------------

class ShareLinkRequest(CamelModel):
    assessment_id: int
    candidate_name: str = Field(..., min_length=1, max_length=255)
    candidate_email: Optional[str] = Field(None, max_length=255)


class ShareLinkResponse(CamelModel):
    token: str
    share_link: str
    submission_id: int
    candidate_name: str


class InterviewTurnRead(CamelModel):
    sequence_number: int
    role: str
    text: str
    question_index: Optional[int] = None
    start_offset_ms: Optional[int] = None
    end_offset_ms: Optional[int] = None
    source: str


class InterviewRead(CamelModel):
    id: int
    submission_id: int
    status: str
    provider: Optional[str] = None
    conversation_id: Optional[str] = None
    questions: list[InterviewQuestionRead] = Field(default_factory=list)
    summary: Optional[str] = None
    analysis: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    turns: list[InterviewTurnRead] = Field(default_factory=list)
