import datetime as dt

import pytest

from conftest import FakeGenerator, questions_json, upstream_failure
from takehome.core.error_handling import (
    ForbiddenError,
    InvalidPayloadError,
    InvalidTransitionError,
    NotFoundError,
    NotReadyError,
    UpstreamFailureError,
    ValidationError,
)
from takehome.services import interview_orchestrator as orchestrator, webhook_verifier
from takehome.services.ephemeral_store import EphemeralStore

T0 = dt.datetime(2025, 3, 1, 9, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def mem_store() -> EphemeralStore:
    return EphemeralStore()


@pytest.fixture
async def submitted(make_submission):
    return await make_submission(
        status="submitted",
        started_at=T0 - dt.timedelta(minutes=50),
        submitted_at=T0,
        github_link="https://github.com/ada/limiter",
    )


def _callback(submission_id, conversation_id="conv_1", turns=2, summary="Discussed the limiter."):
    transcript = [
        {"role": "agent" if i % 2 == 0 else "user", "message": f"line {i}", "time_in_call_secs": i}
        for i in range(turns)
    ]
    data = {
        "conversation_id": conversation_id,
        "metadata": {"dynamic_variables": {"submissionId": str(submission_id)}},
        "transcript": transcript,
    }
    if summary:
        data["analysis"] = {"transcript_summary": summary}
    return webhook_verifier.parse_provider_callback({"type": "post_call_transcription", "data": data})


class TestQuestionGeneration:
    async def test_generates_and_stores_questions(self, session, submitted):
        gen = FakeGenerator(questions_json(2))
        interview = await orchestrator.generate_questions(session, submitted, gen)
        assert interview.status == "not_started"
        assert interview.total_questions == 2
        assert interview.questions[0]["anchors"] == [{"path": "src/app.py", "startLine": 1}]
        assert "https://github.com/ada/limiter" in gen.calls[0]["prompt"]
        assert gen.calls[0]["schema"] is not None

    async def test_count_is_clamped(self, session, make_submission):
        sub = await make_submission(status="submitted", github_link="https://github.com/x/y", question_count=9)
        interview = await orchestrator.generate_questions(session, sub, FakeGenerator(questions_json(6)))
        assert interview.total_questions == 4

    async def test_failure_leaves_no_interview(self, session, submitted):
        with pytest.raises(UpstreamFailureError):
            await orchestrator.generate_questions(session, submitted, FakeGenerator(upstream_failure()))
        assert await orchestrator.get_interview(session, submitted.id) is None

    async def test_malformed_output_is_an_upstream_failure(self, session, submitted):
        with pytest.raises(UpstreamFailureError):
            await orchestrator.generate_questions(session, submitted, FakeGenerator("Sure! Here are some questions"))
        assert await orchestrator.get_interview(session, submitted.id) is None

    async def test_requires_submitted_project(self, session, make_submission):
        sub = await make_submission(status="in-progress", started_at=T0)
        with pytest.raises(InvalidTransitionError) as exc:
            await orchestrator.generate_questions(session, sub, FakeGenerator())
        assert exc.value.reason == "generate_questions_not_allowed_from_in_progress"

    async def test_smart_interviewer_disabled(self, session, make_assessment, make_submission):
        assessment = await make_assessment(is_smart_interviewer_enabled=False)
        sub = await make_submission(assessment, status="submitted", github_link="https://github.com/x/y")
        with pytest.raises(ForbiddenError):
            await orchestrator.generate_questions(session, sub, FakeGenerator())

    async def test_description_required(self, session, make_assessment, make_submission):
        assessment = await make_assessment(description="  ")
        sub = await make_submission(assessment, status="submitted", github_link="https://github.com/x/y")
        with pytest.raises(InvalidTransitionError) as exc:
            await orchestrator.generate_questions(session, sub, FakeGenerator())
        assert exc.value.reason == "assessment_description_required"

    async def test_status_reports_readiness(self, session, submitted):
        status = await orchestrator.question_status(session, submitted)
        assert status["ready"] is False
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))
        status = await orchestrator.question_status(session, submitted)
        assert status["ready"] is True
        assert status["totalQuestions"] == 2


class TestTextSession:
    async def test_full_question_and_answer_loop(self, session, submitted, mem_store):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))

        view = await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=mem_store)
        assert (view.question_index, view.total_questions, view.done) == (0, 2, False)
        assert view.interviewer_text.startswith("Question 1")

        view = await orchestrator.answer(session, view.session_id, "Token bucket per client.", now=T0, store=mem_store)
        assert (view.question_index, view.done) == (1, False)
        assert view.interviewer_text.startswith("Question 2")

        view = await orchestrator.answer(session, view.session_id, "Redis with Lua scripts.", now=T0, store=mem_store)
        assert view.done is True
        assert view.interviewer_text == orchestrator.CLOSING_MESSAGE

        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "completed"
        assert interview.provider == "text"
        turns = await orchestrator.fetch_turns(session, interview.id)
        assert [(t.sequence_number, t.role, t.question_index) for t in turns] == [
            (1, "interviewer", 0),
            (2, "candidate", 0),
            (3, "interviewer", 1),
            (4, "candidate", 1),
        ]

        with pytest.raises(InvalidTransitionError) as exc:
            await orchestrator.answer(session, view.session_id, "one more thing", now=T0, store=mem_store)
        assert exc.value.reason == "answer_not_allowed_after_done"

    async def test_start_before_questions_is_not_ready(self, session, submitted, mem_store):
        with pytest.raises(NotReadyError) as exc:
            await orchestrator.start_session(session, submitted.id, submitted.token, store=mem_store)
        assert exc.value.retryable is True

    async def test_restart_resumes_current_question(self, session, submitted, mem_store):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(3)))
        first = await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=mem_store)
        await orchestrator.answer(session, first.session_id, "answer one", now=T0, store=mem_store)

        resumed = await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=mem_store)
        assert resumed.session_id == first.session_id
        assert resumed.question_index == 1
        interview = await orchestrator.get_interview(session, submitted.id)
        assert len(await orchestrator.fetch_turns(session, interview.id)) == 3

    async def test_session_rebuilt_when_store_is_lost(self, session, submitted, mem_store):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))
        first = await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=mem_store)
        await orchestrator.answer(session, first.session_id, "answer one", now=T0, store=mem_store)

        view = await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=EphemeralStore())
        assert view.session_id != first.session_id
        assert view.question_index == 1

    async def test_token_must_match_submission(self, session, submitted, mem_store):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))
        with pytest.raises(NotFoundError):
            await orchestrator.start_session(session, submitted.id, "f" * 64, store=mem_store)

    @pytest.mark.parametrize("token", [None, ""])
    async def test_token_is_required(self, session, submitted, mem_store, token):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))
        with pytest.raises(NotFoundError):
            await orchestrator.start_session(session, submitted.id, token, store=mem_store)
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "not_started"

    async def test_token_of_another_submission(self, session, submitted, make_submission, mem_store):
        other = await make_submission(status="submitted", github_link="https://github.com/bob/limiter")
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))
        with pytest.raises(NotFoundError):
            await orchestrator.start_session(session, submitted.id, other.token, store=mem_store)

    async def test_empty_answer(self, session, mem_store):
        with pytest.raises(ValidationError):
            await orchestrator.answer(session, "whatever", "   ", store=mem_store)

    async def test_unknown_session(self, session, mem_store):
        with pytest.raises(NotFoundError):
            await orchestrator.answer(session, "missing", "hello", store=mem_store)

    async def test_abandoned_interview_fails(self, session, submitted, mem_store):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))
        view = await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=mem_store)

        with pytest.raises(InvalidTransitionError) as exc:
            await orchestrator.answer(
                session, view.session_id, "late answer", now=T0 + dt.timedelta(minutes=121), store=mem_store
            )
        assert exc.value.reason == "answer_not_allowed_from_failed"
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "failed"
        assert "abandoned" in interview.error_message


class TestProviderCallback:
    async def test_completes_interview_with_transcript(self, session, submitted):
        result = await orchestrator.ingest_provider_callback(session, _callback(submitted.id, turns=4), now=T0)
        assert result == {
            "status": "success",
            "submissionId": str(submitted.id),
            "conversationId": "conv_1",
            "turnsCount": 4,
            "hasSummary": True,
        }
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "completed"
        assert interview.provider == "elevenlabs"
        turns = await orchestrator.fetch_turns(session, interview.id)
        assert all(t.source == "provider" for t in turns)

    async def test_redelivery_is_idempotent(self, session, submitted):
        first = await orchestrator.ingest_provider_callback(session, _callback(submitted.id, turns=4), now=T0)
        second = await orchestrator.ingest_provider_callback(session, _callback(submitted.id, turns=4), now=T0)
        assert first == second

    async def test_after_text_interview_keeps_existing_transcript(self, session, submitted, mem_store):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(1)))
        view = await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=mem_store)
        await orchestrator.answer(session, view.session_id, "done", now=T0, store=mem_store)

        result = await orchestrator.ingest_provider_callback(session, _callback(submitted.id, turns=6), now=T0)
        assert result["turnsCount"] == 2
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.provider == "text"
        assert interview.summary == "Discussed the limiter."

    async def test_voice_transcript_during_text_session_is_kept_whole(self, session, submitted, mem_store):
        await orchestrator.generate_questions(session, submitted, FakeGenerator(questions_json(2)))
        await orchestrator.start_session(session, submitted.id, submitted.token, now=T0, store=mem_store)

        result = await orchestrator.ingest_provider_callback(session, _callback(submitted.id, turns=4), now=T0)
        assert result["turnsCount"] == 5

        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "completed"
        turns = await orchestrator.fetch_turns(session, interview.id)
        assert [(t.source, t.text) for t in turns[1:]] == [
            ("provider", "line 0"),
            ("provider", "line 1"),
            ("provider", "line 2"),
            ("provider", "line 3"),
        ]
        assert turns[0].source == "session"

        again = await orchestrator.ingest_provider_callback(session, _callback(submitted.id, turns=4), now=T0)
        assert again["turnsCount"] == 5

    async def test_missing_summary_is_generated(self, session, submitted):
        gen = FakeGenerator("The candidate explained their design.")
        result = await orchestrator.ingest_provider_callback(
            session, _callback(submitted.id, summary=None), generator=gen, now=T0
        )
        assert result["hasSummary"] is True
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.summary == "The candidate explained their design."
        assert "line 0" in gen.calls[0]["prompt"]

    async def test_summary_failure_keeps_transcript(self, session, submitted):
        result = await orchestrator.ingest_provider_callback(
            session, _callback(submitted.id, summary=None), generator=FakeGenerator(upstream_failure()), now=T0
        )
        assert result["hasSummary"] is False
        assert result["turnsCount"] == 2
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "completed"
        assert interview.error_message.startswith("Summary generation failed")

    async def test_call_initiation_failure(self, session, submitted):
        callback = webhook_verifier.parse_provider_callback(
            {
                "type": "call_initiation_failure",
                "data": {
                    "conversation_id": "conv_9",
                    "failure_reason": "no-answer",
                    "metadata": {"dynamic_variables": {"submissionId": str(submitted.id)}},
                },
            }
        )
        await orchestrator.ingest_provider_callback(session, callback, now=T0)
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "failed"
        assert interview.error_message == "no-answer"

    async def test_ignored_event(self, session):
        callback = webhook_verifier.parse_provider_callback({"type": "post_call_audio", "data": {}})
        assert await orchestrator.ingest_provider_callback(session, callback) == {"status": "ignored"}

    async def test_missing_conversation_id(self, session, submitted):
        with pytest.raises(InvalidPayloadError):
            await orchestrator.ingest_provider_callback(session, _callback(submitted.id, conversation_id=None))

    async def test_unknown_submission(self, session):
        with pytest.raises(NotFoundError):
            await orchestrator.ingest_provider_callback(session, _callback(999))

    async def test_conversation_recorded_then_webhook(self, session, submitted):
        recorded = await orchestrator.record_conversation(session, submitted.id, submitted.token, "conv_1", now=T0)
        assert recorded["status"] == "in_progress"
        assert recorded["conflict"] is False

        again = await orchestrator.record_conversation(session, submitted.id, submitted.token, "conv_other", now=T0)
        assert again["conversationId"] == "conv_1"
        assert again["conflict"] is True

        result = await orchestrator.ingest_provider_callback(session, _callback(submitted.id), now=T0)
        assert result["turnsCount"] == 2
        interview = await orchestrator.get_interview(session, submitted.id)
        assert interview.status == "completed"
        assert interview.conversation_id == "conv_1"

    async def test_conversation_requires_candidate_token(self, session, submitted):
        with pytest.raises(NotFoundError):
            await orchestrator.record_conversation(session, submitted.id, None, "attacker", now=T0)
        with pytest.raises(NotFoundError):
            await orchestrator.record_conversation(session, submitted.id, "0" * 64, "attacker", now=T0)
        assert await orchestrator.get_interview(session, submitted.id) is None

        result = await orchestrator.ingest_provider_callback(session, _callback(submitted.id, turns=4), now=T0)
        assert result["conversationId"] == "conv_1"
        assert result["turnsCount"] == 4
