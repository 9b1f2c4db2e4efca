import logging
import time
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    IDLE = "idle"              # call not started
    GREETING = "greeting"      # initial greeting playing, VAD off
    LISTENING = "listening"    # waiting for caller speech
    PROCESSING = "processing"  # STT -> LLM in flight
    SPEAKING = "speaking"      # TTS playing

    @property
    def vad_enabled(self) -> bool:
        return VAD_CONFIG[self][0]

    @property
    def vad_threshold(self) -> float:
        return VAD_CONFIG[self][1]


# (enabled, threshold) per state
VAD_CONFIG = {
    PipelineState.IDLE: (False, 0.0),
    PipelineState.GREETING: (False, 0.0),
    PipelineState.LISTENING: (True, 0.5),
    PipelineState.PROCESSING: (True, 0.7),
    PipelineState.SPEAKING: (True, 0.8),
}

TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.GREETING},
    PipelineState.GREETING: {PipelineState.LISTENING},
    PipelineState.LISTENING: {PipelineState.PROCESSING, PipelineState.SPEAKING},
    PipelineState.PROCESSING: {PipelineState.SPEAKING, PipelineState.LISTENING},
    PipelineState.SPEAKING: {PipelineState.LISTENING, PipelineState.PROCESSING},
}


@dataclass
class StateTransition:
    from_state: PipelineState
    to_state: PipelineState
    timestamp: float
    reason: str = ""


@dataclass
class AudioPipelineStateMachine:
    """Tracks where a call's audio pipeline is and rejects invalid moves."""

    call_id: str
    state: PipelineState = PipelineState.IDLE
    history: list[StateTransition] = field(default_factory=list)

    def valid_transitions(self) -> set[PipelineState]:
        return TRANSITIONS.get(self.state, set())

    def transition(self, new_state: PipelineState, reason: str = "") -> bool:
        if new_state not in self.valid_transitions():
            logger.error(
                f"[{self.call_id}] Invalid pipeline transition: "
                f"{self.state.value} -> {new_state.value}"
            )
            return False

        self.history.append(
            StateTransition(
                from_state=self.state,
                to_state=new_state,
                timestamp=time.monotonic(),
                reason=reason,
            )
        )
        suffix = f" ({reason})" if reason else ""
        logger.info(f"[{self.call_id}] {self.state.value} -> {new_state.value}{suffix}")
        self.state = new_state
        return True

    def is_in(self, state: PipelineState) -> bool:
        return self.state == state

    def should_process_vad(self) -> bool:
        return self.state.vad_enabled

    def can_barge_in(self) -> bool:
        # GREETING and PROCESSING block barge-in entirely
        return self.state == PipelineState.SPEAKING

    def time_in_current_state(self) -> float:
        """Seconds since the last transition (0 before the first one)."""
        if not self.history:
            return 0.0
        return time.monotonic() - self.history[-1].timestamp
