import json

import pytest

from takehome.core.error_handling import ReplayDetectedError, SignatureInvalidError
from takehome.services import webhook_verifier as wv

SECRET = "whsec_unit"
NOW = 1_750_000_000


def _body(payload=None) -> bytes:
    return json.dumps(payload or {"type": wv.POST_CALL_TRANSCRIPTION, "data": {"conversation_id": "c1"}}).encode()


class TestVerify:
    def test_valid_signature_returns_payload(self):
        body = _body()
        header = wv.sign(body, SECRET, timestamp=NOW)
        assert wv.verify(body, header, SECRET, now=NOW + 5)["data"]["conversation_id"] == "c1"

    def test_tampered_body(self):
        body = _body()
        header = wv.sign(body, SECRET, timestamp=NOW)
        with pytest.raises(SignatureInvalidError):
            wv.verify(body.replace(b"c1", b"c2"), header, SECRET, now=NOW)

    def test_reserialized_body_does_not_verify(self):
        body = b'{"type": "post_call_transcription",   "data": {}}'
        header = wv.sign(body, SECRET, timestamp=NOW)
        with pytest.raises(SignatureInvalidError):
            wv.verify(json.dumps(json.loads(body)).encode(), header, SECRET, now=NOW)

    def test_wrong_secret(self):
        body = _body()
        with pytest.raises(SignatureInvalidError):
            wv.verify(body, wv.sign(body, "other", timestamp=NOW), SECRET, now=NOW)

    @pytest.mark.parametrize("header", [None, "", "v0=abc", "t=123", "t=abc,v0=deadbeef"])
    def test_malformed_header(self, header):
        with pytest.raises(SignatureInvalidError):
            wv.verify(_body(), header, SECRET, now=NOW)

    def test_stale_timestamp_is_a_replay(self):
        body = _body()
        header = wv.sign(body, SECRET, timestamp=NOW - 1801)
        with pytest.raises(ReplayDetectedError):
            wv.verify(body, header, SECRET, now=NOW)

    def test_future_timestamp_outside_tolerance(self):
        body = _body()
        header = wv.sign(body, SECRET, timestamp=NOW + 600)
        with pytest.raises(ReplayDetectedError):
            wv.verify(body, header, SECRET, now=NOW, tolerance_seconds=300)

    def test_timestamp_at_tolerance_edge(self):
        body = _body()
        header = wv.sign(body, SECRET, timestamp=NOW - 1800)
        assert wv.verify(body, header, SECRET, now=NOW)

    def test_stale_check_runs_before_digest(self):
        body = _body()
        header = f"t={NOW - 5000},v0={'0' * 64}"
        with pytest.raises(ReplayDetectedError):
            wv.verify(body, header, SECRET, now=NOW)

    def test_signed_non_json_body(self):
        body = b"not json"
        with pytest.raises(SignatureInvalidError):
            wv.verify(body, wv.sign(body, SECRET, timestamp=NOW), SECRET, now=NOW)


class TestParse:
    def test_post_call_transcription(self):
        callback = wv.parse_provider_callback(
            {
                "type": "post_call_transcription",
                "data": {
                    "conversation_id": "conv_1",
                    "conversation_initiation_client_data": {"dynamic_variables": {"submissionId": 42}},
                    "transcript": [
                        {"role": "agent", "message": "Why Redis?", "time_in_call_secs": 1.5},
                        {"role": "user", "message": "  Low latency.  ", "start_ms": 4000, "end_ms": 6000},
                        {"role": "user", "message": ""},
                    ],
                    "analysis": {"transcript_summary": " Talked about caching. "},
                },
            }
        )
        assert callback.event_type == wv.POST_CALL_TRANSCRIPTION
        assert callback.conversation_id == "conv_1"
        assert callback.submission_id == "42"
        assert [t.role for t in callback.turns] == ["interviewer", "candidate"]
        assert callback.turns[0].start_offset_ms == 1500
        assert callback.turns[1].text == "Low latency."
        assert callback.turns[1].end_offset_ms == 6000
        assert callback.summary == "Talked about caching."
        assert callback.analysis == {"transcript_summary": " Talked about caching. "}

    def test_submission_id_lookup_order(self):
        data = {
            "metadata": {"dynamic_variables": {"submissionId": "1"}},
            "conversation_initiation_client_data": {"dynamic_variables": {"submissionId": "2"}, "submissionId": "3"},
            "dynamic_variables": {"submissionId": "4"},
        }
        assert wv._extract_submission_id(data) == "1"
        del data["metadata"]
        assert wv._extract_submission_id(data) == "2"
        del data["conversation_initiation_client_data"]["dynamic_variables"]
        assert wv._extract_submission_id(data) == "3"
        del data["conversation_initiation_client_data"]
        assert wv._extract_submission_id(data) == "4"
        assert wv._extract_submission_id({}) is None

    def test_client_data_as_json_string(self):
        data = {"conversation_initiation_client_data": json.dumps({"dynamic_variables": {"submissionId": "7"}})}
        assert wv._extract_submission_id(data) == "7"

    def test_summary_fallbacks(self):
        assert wv.extract_summary({"summary": "top level"}) == "top level"
        assert wv.extract_summary({"analysis": {"summary": "nested"}}) == "nested"
        assert wv.extract_summary({"analysis": {"transcript_summary": "  "}}) is None

    def test_call_initiation_failure(self):
        callback = wv.parse_provider_callback(
            {"type": "call_initiation_failure", "data": {"conversation_id": "c9", "failure_reason": "busy"}}
        )
        assert callback.event_type == wv.CALL_INITIATION_FAILURE
        assert callback.failure_reason == "busy"
        assert callback.turns == ()

    def test_unknown_event_still_parses(self):
        callback = wv.parse_provider_callback({"type": "audio", "data": "opaque"})
        assert callback.event_type == "audio"
        assert callback.conversation_id is None
