"""ElevenLabs post-call webhook authentication and payload extraction.

Signature header: ``t=<unix seconds>,v0=<hex HMAC-SHA256>`` where the HMAC is
computed over ``"<t>.<raw body>"``. Verification always runs on the bytes as
received; a re-serialized JSON document would not reproduce the digest.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from takehome.core.error_handling import ReplayDetectedError, SignatureInvalidError
from takehome.services.interview_merge import TranscriptTurn

SIGNATURE_HEADER = "ElevenLabs-Signature"

POST_CALL_TRANSCRIPTION = "post_call_transcription"
CALL_INITIATION_FAILURE = "call_initiation_failure"

_INTERVIEWER_ROLES = {"agent", "assistant", "system", "interviewer", "ai"}


def _digest(raw_body: bytes, secret: str, timestamp: str) -> str:
    message = timestamp.encode() + b"." + raw_body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def sign(raw_body: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a signature header for ``raw_body``."""
    ts = str(int(time.time()) if timestamp is None else int(timestamp))
    return f"t={ts},v0={_digest(raw_body, secret, ts)}"


def _parse_header(signature_header: Optional[str]) -> tuple[str, str]:
    if not signature_header:
        raise SignatureInvalidError("Missing signature header")
    timestamp = signature = None
    for part in signature_header.split(","):
        part = part.strip()
        if part.startswith("t="):
            timestamp = part[2:]
        elif part.startswith("v0="):
            signature = part[3:]
    if not timestamp or not signature:
        raise SignatureInvalidError("Malformed signature header")
    if not timestamp.isdigit():
        raise SignatureInvalidError("Malformed signature timestamp")
    return timestamp, signature


def verify(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: str,
    now: Optional[float] = None,
    tolerance_seconds: int = 1800,
) -> dict[str, Any]:
    """Authenticate a webhook delivery and return its decoded JSON body.

    Raises SignatureInvalidError or ReplayDetectedError. ``now`` is unix seconds.
    """
    timestamp, signature = _parse_header(signature_header)

    now = time.time() if now is None else now
    skew = abs(now - int(timestamp))
    if skew > tolerance_seconds:
        raise ReplayDetectedError(details={"skew_seconds": int(skew), "tolerance_seconds": tolerance_seconds})

    expected = _digest(raw_body, secret, timestamp)
    if not hmac.compare_digest(expected.encode(), signature.lower().encode()):
        raise SignatureInvalidError("Signature mismatch")

    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise SignatureInvalidError("Signed body is not valid JSON")
    if not isinstance(payload, dict):
        raise SignatureInvalidError("Signed body is not a JSON object")
    return payload


@dataclass(frozen=True)
class ProviderCallback:
    event_type: str
    conversation_id: Optional[str] = None
    submission_id: Optional[str] = None
    turns: tuple[TranscriptTurn, ...] = field(default_factory=tuple)
    summary: Optional[str] = None
    analysis: Optional[dict[str, Any]] = None
    failure_reason: Optional[str] = None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        # conversation_initiation_client_data sometimes arrives JSON-encoded
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _extract_submission_id(data: dict[str, Any]) -> Optional[str]:
    client_data = _as_dict(data.get("conversation_initiation_client_data"))
    candidates = (
        _as_dict(_as_dict(data.get("metadata")).get("dynamic_variables")).get("submissionId"),
        _as_dict(client_data.get("dynamic_variables")).get("submissionId"),
        client_data.get("submissionId"),
        _as_dict(data.get("dynamic_variables")).get("submissionId"),
    )
    for value in candidates:
        if value not in (None, ""):
            return str(value)
    return None


def _first(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _raw_turns(data: dict[str, Any]) -> list[Any]:
    for key in ("transcript", "transcript_turns", "turns"):
        value = data.get(key)
        if isinstance(value, list):
            return value
    nested = data.get("transcript")
    if isinstance(nested, dict) and isinstance(nested.get("turns"), list):
        return nested["turns"]
    return []


def map_transcript_turns(data: dict[str, Any]) -> tuple[TranscriptTurn, ...]:
    turns = []
    for raw in _raw_turns(data):
        if not isinstance(raw, dict):
            continue
        text = str(_first(raw, "text", "message", "content", "transcript") or "").strip()
        if not text:
            continue
        label = str(_first(raw, "role", "speaker", "from") or "").lower()
        role = "interviewer" if label in _INTERVIEWER_ROLES else "candidate"

        start_ms = _as_int(_first(raw, "start_ms", "startMs", "start_time_ms"))
        end_ms = _as_int(_first(raw, "end_ms", "endMs", "end_time_ms"))
        secs = raw.get("time_in_call_secs")
        if start_ms is None and isinstance(secs, (int, float)):
            start_ms = int(secs * 1000)
        turns.append(TranscriptTurn(role=role, text=text, start_offset_ms=start_ms, end_offset_ms=end_ms))
    return tuple(turns)


def extract_summary(data: dict[str, Any]) -> Optional[str]:
    analysis = _as_dict(data.get("analysis"))
    summary = analysis.get("transcript_summary") or data.get("summary") or analysis.get("summary")
    if isinstance(summary, str) and summary.strip():
        return summary.strip()
    return None


def parse_provider_callback(payload: dict[str, Any]) -> ProviderCallback:
    event_type = str(payload.get("type") or "")
    data = _as_dict(payload.get("data"))
    conversation_id = data.get("conversation_id")

    failure_reason = None
    if event_type == CALL_INITIATION_FAILURE:
        failure_reason = str(
            _first(data, "failure_reason", "error", "reason")
            or _first(_as_dict(data.get("metadata")), "body", "failure_reason")
            or "Call initiation failed"
        )

    analysis = data.get("analysis")
    return ProviderCallback(
        event_type=event_type,
        conversation_id=str(conversation_id) if conversation_id else None,
        submission_id=_extract_submission_id(data),
        turns=map_transcript_turns(data),
        summary=extract_summary(data),
        analysis=analysis if isinstance(analysis, dict) else None,
        failure_reason=failure_reason,
    )
