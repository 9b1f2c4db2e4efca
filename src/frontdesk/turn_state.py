"""State for a single conversational turn within a call.

Every mutating helper changes the ``TurnState`` in place and returns the same
object.  The state is owned by one call's pipeline; callers pass valid input
(``text`` is never None) and get ``None``/``False`` back for absent data
rather than errors.
"""

import time
from collections import deque
from dataclasses import dataclass, field

DEFAULT_SILENCE_THRESHOLD_MS = 1000


def _now() -> float:
    """Monotonic seconds. Extracted for test mocking."""
    return time.monotonic()


@dataclass
class TurnState:
    # Transcript accumulator
    transcript_buffer: str = ""
    interim_transcript: str = ""

    # Response coordination
    response_in_progress: bool = False
    response_pending: bool = False

    # Playback
    audio_queue: deque = field(default_factory=deque)
    current_playback_id: str | None = None

    # Timing
    silence_start_time: float | None = None
    last_transcript_time: float = field(default_factory=_now)


def create_turn_state() -> TurnState:
    return TurnState(last_transcript_time=_now())


def update_transcript(state: TurnState, text: str, is_final: bool) -> TurnState:
    """Absorb a transcript event.

    Final segments are appended to the buffer (space-joined) and clear the
    interim text; interim segments replace the interim text wholesale.  Any
    transcript event cancels pending silence.
    """
    if is_final:
        if state.transcript_buffer:
            state.transcript_buffer = f"{state.transcript_buffer} {text}"
        else:
            state.transcript_buffer = text
        state.interim_transcript = ""
    else:
        state.interim_transcript = text

    state.last_transcript_time = _now()
    state.silence_start_time = None
    return state


def get_complete_transcript(state: TurnState) -> str:
    """Final buffer plus the pending interim text, if any."""
    if state.interim_transcript:
        if state.transcript_buffer:
            return f"{state.transcript_buffer} {state.interim_transcript}"
        return state.interim_transcript
    return state.transcript_buffer


def clear_transcript(state: TurnState) -> TurnState:
    state.transcript_buffer = ""
    state.interim_transcript = ""
    return state


def start_silence(state: TurnState) -> TurnState:
    # First call wins so repeated polling doesn't keep resetting the timer.
    if state.silence_start_time is None:
        state.silence_start_time = _now()
    return state


def is_silence_long_enough(
    state: TurnState, threshold_ms: float = DEFAULT_SILENCE_THRESHOLD_MS
) -> bool:
    if state.silence_start_time is None:
        return False
    return (_now() - state.silence_start_time) * 1000 >= threshold_ms


def queue_audio(state: TurnState, audio: bytes) -> TurnState:
    state.audio_queue.append(audio)
    return state


def get_next_audio(state: TurnState) -> bytes | None:
    if not state.audio_queue:
        return None
    return state.audio_queue.popleft()


def clear_audio_queue(state: TurnState) -> TurnState:
    """Drop all queued audio. This is the barge-in primitive and is safe at any time."""
    state.audio_queue.clear()
    state.current_playback_id = None
    return state


def has_audio_queued(state: TurnState) -> bool:
    return len(state.audio_queue) > 0
