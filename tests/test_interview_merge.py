import pytest

from takehome.services.interview_merge import (
    COMPLETED,
    FAILED,
    IN_PROGRESS,
    NOT_STARTED,
    PROVIDER_SOURCE,
    InterviewState,
    InterviewUpdate,
    TranscriptTurn,
    merge_interview,
)


def _turns(n: int) -> list[TranscriptTurn]:
    return [TranscriptTurn(role="interviewer" if i % 2 == 0 else "candidate", text=f"t{i}") for i in range(n)]


class TestStatus:
    def test_moves_forward(self):
        result = merge_interview(InterviewState(), InterviewUpdate(status=IN_PROGRESS))
        assert result.state.status == IN_PROGRESS
        assert result.status_changed

    def test_never_moves_backward(self):
        result = merge_interview(InterviewState(status=IN_PROGRESS), InterviewUpdate(status=NOT_STARTED))
        assert result.state.status == IN_PROGRESS
        assert not result.status_changed

    @pytest.mark.parametrize("terminal", [COMPLETED, FAILED])
    @pytest.mark.parametrize("incoming", [NOT_STARTED, IN_PROGRESS, COMPLETED, FAILED])
    def test_terminal_is_final(self, terminal, incoming):
        result = merge_interview(InterviewState(status=terminal), InterviewUpdate(status=incoming))
        assert result.state.status == terminal
        assert not result.status_changed

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            merge_interview(InterviewState(), InterviewUpdate(status="paused"))

    def test_failure_records_message_once(self):
        result = merge_interview(InterviewState(status=IN_PROGRESS), InterviewUpdate(status=FAILED))
        assert result.state.error_message == "Interview failed"
        result = merge_interview(
            InterviewState(status=IN_PROGRESS, error_message="earlier"),
            InterviewUpdate(status=FAILED, error_message="busy"),
        )
        assert result.state.error_message == "earlier"


class TestConversationId:
    def test_first_writer_wins(self):
        result = merge_interview(InterviewState(conversation_id="a"), InterviewUpdate(conversation_id="b"))
        assert result.state.conversation_id == "a"
        assert result.conversation_conflict

    def test_same_id_is_not_a_conflict(self):
        result = merge_interview(InterviewState(conversation_id="a"), InterviewUpdate(conversation_id="a"))
        assert not result.conversation_conflict

    def test_conflicting_update_appends_no_turns(self):
        result = merge_interview(
            InterviewState(status=IN_PROGRESS, conversation_id="a"),
            InterviewUpdate(conversation_id="b", turns=_turns(2)),
        )
        assert result.appended_turns == ()


class TestTurns:
    def test_appends_only_the_tail(self):
        result = merge_interview(InterviewState(status=IN_PROGRESS, turns_by_source={"session": 2}), InterviewUpdate(turns=_turns(5)))
        assert [t.text for t in result.appended_turns] == ["t2", "t3", "t4"]
        assert result.state.turn_count == 5

    def test_redelivery_is_a_noop(self):
        state = merge_interview(InterviewState(), InterviewUpdate(status=COMPLETED, turns=_turns(4))).state
        again = merge_interview(state, InterviewUpdate(status=COMPLETED, turns=_turns(4)))
        assert again.appended_turns == ()
        assert not again.changed
        assert again.state == state

    def test_shorter_transcript_changes_nothing(self):
        result = merge_interview(InterviewState(status=IN_PROGRESS, turns_by_source={"session": 4}), InterviewUpdate(turns=_turns(2)))
        assert result.appended_turns == ()

    def test_finished_transcript_is_locked(self):
        result = merge_interview(InterviewState(status=COMPLETED, turns_by_source={"session": 2}), InterviewUpdate(turns=_turns(6)))
        assert result.appended_turns == ()

    def test_provider_transcript_is_not_trimmed_by_session_turns(self):
        current = InterviewState(status=IN_PROGRESS, turns_by_source={"session": 1})
        result = merge_interview(
            current, InterviewUpdate(status=COMPLETED, turns=_turns(4), source=PROVIDER_SOURCE)
        )
        assert [t.text for t in result.appended_turns] == ["t0", "t1", "t2", "t3"]
        assert result.state.turns_by_source == {"session": 1, "provider": 4}
        assert result.state.turn_count == 5

    def test_provider_redelivery_counts_only_provider_turns(self):
        current = InterviewState(status=IN_PROGRESS, turns_by_source={"session": 3, "provider": 2})
        result = merge_interview(current, InterviewUpdate(turns=_turns(4), source=PROVIDER_SOURCE))
        assert [t.text for t in result.appended_turns] == ["t2", "t3"]

    def test_transcript_can_land_after_failure_with_no_turns(self):
        result = merge_interview(InterviewState(status=FAILED), InterviewUpdate(status=COMPLETED, turns=_turns(2)))
        assert len(result.appended_turns) == 2
        assert result.state.status == FAILED


def test_fill_if_missing_fields():
    current = InterviewState(status=COMPLETED, summary="kept", provider="text")
    result = merge_interview(
        current, InterviewUpdate(summary="new", provider="elevenlabs", analysis={"score": 1})
    )
    assert result.state.summary == "kept"
    assert result.state.provider == "text"
    assert result.state.analysis == {"score": 1}
