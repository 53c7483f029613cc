"""Reconciliation of interview updates.

The live Q&A loop and the provider's post-call webhook both write to the same
interview. Neither holds a lock; instead every write goes through
``merge_interview``, which decides field by field what the incoming update is
allowed to change:

* status only moves forward; ``completed`` and ``failed`` are final
* ``conversation_id`` is first-writer-wins
* transcript turns are append-only and deduplicated by length, counted
  against the turns the same writer stored earlier
* ``summary``, ``analysis`` and ``provider`` are filled only when missing
* ``error_message`` is set when the interview fails and never cleared

This module does no I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence

NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"

STATUS_RANK = {NOT_STARTED: 0, IN_PROGRESS: 1, COMPLETED: 2, FAILED: 2}
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})

DEFAULT_FAILURE_MESSAGE = "Interview failed"

SESSION_SOURCE = "session"
PROVIDER_SOURCE = "provider"


@dataclass(frozen=True)
class TranscriptTurn:
    role: str  # "interviewer" | "candidate"
    text: str
    question_index: Optional[int] = None
    start_offset_ms: Optional[int] = None
    end_offset_ms: Optional[int] = None


@dataclass(frozen=True)
class InterviewState:
    status: str = NOT_STARTED
    conversation_id: Optional[str] = None
    provider: Optional[str] = None
    summary: Optional[str] = None
    analysis: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    # Stored turns per writer ("session" or "provider")
    turns_by_source: Mapping[str, int] = field(default_factory=dict)

    @property
    def turn_count(self) -> int:
        return sum(self.turns_by_source.values())


@dataclass(frozen=True)
class InterviewUpdate:
    status: Optional[str] = None
    conversation_id: Optional[str] = None
    provider: Optional[str] = None
    summary: Optional[str] = None
    analysis: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    # Full transcript as known by the sender, oldest first
    turns: Optional[Sequence[TranscriptTurn]] = None
    source: str = SESSION_SOURCE


@dataclass(frozen=True)
class MergeResult:
    state: InterviewState
    appended_turns: tuple[TranscriptTurn, ...] = field(default_factory=tuple)
    status_changed: bool = False
    conversation_conflict: bool = False

    @property
    def changed(self) -> bool:
        return self.status_changed or bool(self.appended_turns)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def advances(current: str, incoming: str) -> bool:
    """True if moving from ``current`` to ``incoming`` is a forward step."""
    if is_terminal(current):
        return False
    return STATUS_RANK[incoming] > STATUS_RANK[current]


def merge_interview(current: InterviewState, incoming: InterviewUpdate) -> MergeResult:
    if incoming.status is not None and incoming.status not in STATUS_RANK:
        raise ValueError(f"Unknown interview status: {incoming.status}")

    status = current.status
    status_changed = False
    if incoming.status is not None and advances(current.status, incoming.status):
        status = incoming.status
        status_changed = True

    conversation_id = current.conversation_id
    conflict = False
    if incoming.conversation_id:
        if conversation_id is None:
            conversation_id = incoming.conversation_id
        elif conversation_id != incoming.conversation_id:
            conflict = True

    appended: tuple[TranscriptTurn, ...] = ()
    turns_by_source = dict(current.turns_by_source)
    if incoming.turns is not None and not conflict:
        # A finished interview keeps the transcript of whichever path finished it
        locked = is_terminal(current.status) and current.turn_count > 0
        # The sender's transcript only ever contains its own turns
        known = turns_by_source.get(incoming.source, 0)
        if not locked and len(incoming.turns) > known:
            appended = tuple(incoming.turns[known:])
            turns_by_source[incoming.source] = known + len(appended)

    error_message = current.error_message
    if status_changed and status == FAILED and not error_message:
        error_message = incoming.error_message or DEFAULT_FAILURE_MESSAGE

    state = replace(
        current,
        status=status,
        conversation_id=conversation_id,
        provider=current.provider or incoming.provider,
        summary=current.summary or (incoming.summary or None),
        analysis=current.analysis or (incoming.analysis or None),
        error_message=error_message,
        turns_by_source=turns_by_source,
    )
    return MergeResult(
        state=state,
        appended_turns=appended,
        status_changed=status_changed,
        conversation_conflict=conflict,
    )
