import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable

from pipecat.frames.frames import (
    BotStartedSpeakingFrame,
    BotStoppedSpeakingFrame,
    CancelFrame,
    EndFrame,
    Frame,
    InputAudioRawFrame,
    InterimTranscriptionFrame,
    LLMFullResponseEndFrame,
    LLMTextFrame,
    OutputAudioRawFrame,
    TranscriptionFrame,
    TTSSpeakFrame,
    TTSStartedFrame,
    TTSStoppedFrame,
    UserStartedSpeakingFrame,
    UserStoppedSpeakingFrame,
)
from pipecat.processors.frame_processor import FrameDirection, FrameProcessor

from frontdesk.endpointing import (
    BARGE_IN_TRANSCRIPT_WAIT_MS,
    MAX_ACCUMULATION_MS,
    MIN_TRANSCRIPT_LENGTH,
    Completeness,
    check_utterance_completeness,
    completeness_wait_ms,
    endpointing_timeout_ms,
    is_acknowledgement,
)
from frontdesk.intent import RouteDecision, route_utterance
from frontdesk.pipeline_state import AudioPipelineStateMachine, PipelineState
from frontdesk.sentence_buffer import SentenceBuffer
from frontdesk.session import Role
from frontdesk.session_manager import SessionRegistry
from frontdesk.transcript import summarize_session
from frontdesk.turn_state import (
    TurnState,
    clear_audio_queue,
    clear_transcript,
    create_turn_state,
    get_complete_transcript,
    get_next_audio,
    has_audio_queued,
    is_silence_long_enough,
    queue_audio,
    start_silence,
    update_transcript,
)

logger = logging.getLogger(__name__)

UtteranceCallback = Callable[[str, str, RouteDecision], Awaitable[None]]


class TurnProcessor(FrameProcessor):
    """Drives turn-taking for one call from STT and VAD frames.

    Sits between STT and the LLM context aggregator:
      transport.input() -> STT -> [TurnProcessor] -> context_aggregator.user() -> LLM
        -> TTS -> [PlaybackProcessor] -> transport.output()

    Final transcriptions are absorbed into the TurnState instead of being
    passed on.  Once the caller has been silent for the endpointing timeout
    and the utterance looks complete:
    1. The utterance is appended to the session history
    2. route_utterance() decides tools vs chat-only and labels the intent
    3. One combined TranscriptionFrame is pushed downstream
    4. on_utterance(call_id, text, decision) is awaited, if given

    Caller speech during playback is a barge-in candidate.  The interrupt is
    requested after BARGE_IN_TRANSCRIPT_WAIT_MS unless the transcript turns out
    to be an acknowledgement ("yeah", "uh-huh").
    """

    POLL_INTERVAL_S = 0.05

    def __init__(
        self,
        call_id: str,
        registry: SessionRegistry,
        turn_state: TurnState | None = None,
        pipeline_state: AudioPipelineStateMachine | None = None,
        on_utterance: UtteranceCallback | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.call_id = call_id
        self.registry = registry
        self.turn_state = turn_state or create_turn_state()
        self.pipeline_state = pipeline_state or AudioPipelineStateMachine(call_id)
        self.on_utterance = on_utterance
        self._silence_task: asyncio.Task | None = None
        self._barge_in_task: asyncio.Task | None = None
        self._pending_barge_in = False
        self._accumulation_start: float | None = None
        self._last_frame: TranscriptionFrame | None = None

    async def process_frame(self, frame: Frame, direction: FrameDirection):
        await super().process_frame(frame, direction)

        if isinstance(frame, TranscriptionFrame):
            if frame.text.strip():
                await self._handle_final_transcript(frame)
            return

        if isinstance(frame, InterimTranscriptionFrame):
            if frame.text.strip():
                update_transcript(self.turn_state, frame.text.strip(), is_final=False)
        elif isinstance(frame, UserStartedSpeakingFrame):
            self._on_user_started_speaking()
        elif isinstance(frame, UserStoppedSpeakingFrame):
            self._on_user_stopped_speaking()
        elif isinstance(frame, BotStartedSpeakingFrame):
            self._on_bot_started_speaking()
        elif isinstance(frame, BotStoppedSpeakingFrame):
            self._on_bot_stopped_speaking()
        elif isinstance(frame, (EndFrame, CancelFrame)):
            self._end_call()

        await self.push_frame(frame, direction)

    # ── Pipeline state ──

    def _move_to(self, target: PipelineState, reason: str):
        """Transition if the move is valid from here; other moves are ignored."""
        if self.pipeline_state.is_in(target):
            return
        if target in self.pipeline_state.valid_transitions():
            self.pipeline_state.transition(target, reason)

    # ── Caller speech ──

    def _on_user_started_speaking(self):
        self.registry.set_speaking(self.call_id, True)
        self._cancel_silence_watch()
        # The next pause starts a fresh silence timer.
        self.turn_state.silence_start_time = None

        if self.pipeline_state.is_in(PipelineState.IDLE):
            self._move_to(PipelineState.GREETING, "call connected")
            self._move_to(PipelineState.LISTENING, "caller spoke first")

        if self.pipeline_state.can_barge_in() and not self._pending_barge_in:
            self._pending_barge_in = True
            self._barge_in_task = asyncio.create_task(self._barge_in_after_wait())

    def _on_user_stopped_speaking(self):
        self.registry.set_speaking(self.call_id, False)
        start_silence(self.turn_state)
        self._schedule_silence_watch()

    async def _handle_final_transcript(self, frame: TranscriptionFrame):
        text = frame.text.strip()
        update_transcript(self.turn_state, text, is_final=True)
        self._last_frame = frame
        logger.debug(f"[{self.call_id}] Final transcript: {text!r}")

        if self._pending_barge_in:
            if is_acknowledgement(text):
                logger.info(f"[{self.call_id}] Acknowledgement {text!r} during playback, not interrupting")
                self._cancel_pending_barge_in()
                clear_transcript(self.turn_state)
                return
            self._cancel_task(self._barge_in_task)
            self._barge_in_task = None
            self._execute_barge_in()

        if self._accumulation_start is None:
            self._accumulation_start = time.monotonic()

        # A final segment that lands after VAD stop restarts the silence clock.
        session = self.registry.get_session(self.call_id)
        if session is None or not session.is_speaking:
            start_silence(self.turn_state)
            self._schedule_silence_watch()

    # ── Barge-in ──

    async def _barge_in_after_wait(self):
        await asyncio.sleep(BARGE_IN_TRANSCRIPT_WAIT_MS / 1000)
        self._barge_in_task = None
        self._execute_barge_in()

    def _execute_barge_in(self):
        if not self._pending_barge_in:
            return
        self._pending_barge_in = False
        if self.registry.request_interrupt(self.call_id):
            logger.info(f"[{self.call_id}] Barge-in: caller interrupted playback")
            self._move_to(PipelineState.LISTENING, "barge-in")

    def _cancel_pending_barge_in(self):
        self._pending_barge_in = False
        self._cancel_task(self._barge_in_task)
        self._barge_in_task = None

    # ── Agent speech ──

    def _on_bot_started_speaking(self):
        self.registry.set_playing(self.call_id, True)
        self.turn_state.response_pending = False
        self.turn_state.response_in_progress = True
        if self.pipeline_state.is_in(PipelineState.IDLE):
            self._move_to(PipelineState.GREETING, "greeting started")
        else:
            self._move_to(PipelineState.SPEAKING, "response started")

    def _on_bot_stopped_speaking(self):
        self.registry.set_playing(self.call_id, False)
        self.turn_state.response_in_progress = False
        self._cancel_pending_barge_in()
        self._move_to(PipelineState.LISTENING, "playback finished")

    # ── End of turn ──

    def _schedule_silence_watch(self):
        self._cancel_silence_watch()
        self._silence_task = asyncio.create_task(self._watch_silence())

    def _cancel_silence_watch(self):
        self._cancel_task(self._silence_task)
        self._silence_task = None

    @staticmethod
    def _cancel_task(task: asyncio.Task | None):
        if task and not task.done():
            task.cancel()

    def _extra_wait_ms(self, transcript: str, last_assistant: str | None) -> int:
        """Additional silence to require before the utterance counts as finished."""
        if len(transcript) < MIN_TRANSCRIPT_LENGTH:
            return 0
        if self._accumulation_start is not None:
            accumulated_ms = (time.monotonic() - self._accumulation_start) * 1000
            if accumulated_ms >= MAX_ACCUMULATION_MS:
                logger.info(f"[{self.call_id}] Max accumulation time reached, forcing process")
                return 0
        completeness = check_utterance_completeness(transcript)
        if completeness is Completeness.COMPLETE:
            return 0
        logger.debug(f"[{self.call_id}] {transcript[:40]!r} looks {completeness.value}, waiting longer")
        return completeness_wait_ms(completeness, transcript, last_assistant)

    async def _watch_silence(self):
        """Poll the silence timer until the caller has finished, then finalize."""
        transcript = get_complete_transcript(self.turn_state).strip()
        last_assistant = self.registry.get_last_assistant_message(self.call_id)
        wait_ms = endpointing_timeout_ms(transcript, last_assistant)

        while True:
            if self.turn_state.silence_start_time is None:
                return  # caller resumed speaking
            if is_silence_long_enough(self.turn_state, wait_ms):
                transcript = get_complete_transcript(self.turn_state).strip()
                extra = self._extra_wait_ms(transcript, last_assistant)
                if extra == 0:
                    break
                wait_ms += extra
            await asyncio.sleep(self.POLL_INTERVAL_S)

        # Past this point the turn is committed; new speech must not cancel it.
        self._silence_task = None
        await self._finalize_turn()

    async def _finalize_turn(self) -> RouteDecision | None:
        text = get_complete_transcript(self.turn_state).strip()
        clear_transcript(self.turn_state)
        self.turn_state.silence_start_time = None
        self._accumulation_start = None

        if len(text) < MIN_TRANSCRIPT_LENGTH:
            if text:
                logger.info(f"[{self.call_id}] Transcript too short, ignoring: {text!r}")
            return None

        decision = route_utterance(text)
        self.registry.add_message(self.call_id, Role.USER, text)
        self.registry.update_session(
            self.call_id,
            current_intent=decision.intent,
            tools_enabled=decision.needs_tools,
        )
        self.turn_state.response_pending = True
        self._move_to(PipelineState.PROCESSING, "utterance complete")

        combined = TranscriptionFrame(
            text=text,
            user_id=self._last_frame.user_id if self._last_frame else "",
            timestamp=self._last_frame.timestamp if self._last_frame else "",
        )
        await self.push_frame(combined, FrameDirection.DOWNSTREAM)

        if self.on_utterance is not None:
            await self.on_utterance(self.call_id, text, decision)
        return decision

    def _end_call(self):
        self._cancel_silence_watch()
        self._cancel_pending_barge_in()
        session = self.registry.end_session(self.call_id)
        if session is not None:
            logger.info(f"Call summary: {summarize_session(session, time.time())}")


class PlaybackProcessor(FrameProcessor):
    """Routes synthesized audio through the turn's FIFO audio queue.

    Insert between TTS and transport.output().  When the session has an
    interrupt requested, the queue is cleared, the interrupt acknowledged,
    and the rest of that response's audio is dropped until the next
    TTSStartedFrame.
    """

    def __init__(self, call_id: str, registry: SessionRegistry, turn_state: TurnState, **kwargs):
        super().__init__(**kwargs)
        self.call_id = call_id
        self.registry = registry
        self.turn_state = turn_state
        self._dropping = False

    def _interrupt_requested(self) -> bool:
        session = self.registry.get_session(self.call_id)
        return session is not None and session.interrupt_requested

    async def process_frame(self, frame: Frame, direction: FrameDirection):
        await super().process_frame(frame, direction)

        if isinstance(frame, TTSStartedFrame):
            self.turn_state.current_playback_id = uuid.uuid4().hex
            self.turn_state.response_pending = False
            self.turn_state.response_in_progress = True
            self._dropping = False
        elif isinstance(frame, TTSStoppedFrame):
            self.turn_state.response_in_progress = False
        elif isinstance(frame, OutputAudioRawFrame) and not isinstance(frame, InputAudioRawFrame):
            await self._play(frame, direction)
            return

        await self.push_frame(frame, direction)

    async def _play(self, frame: OutputAudioRawFrame, direction: FrameDirection):
        if self._interrupt_requested():
            dropped = len(self.turn_state.audio_queue)
            clear_audio_queue(self.turn_state)
            self.registry.clear_interrupt(self.call_id)
            self._dropping = True
            logger.info(f"[{self.call_id}] Interrupted playback, dropped {dropped} queued chunks")

        if self._dropping:
            return

        queue_audio(self.turn_state, frame.audio)
        while has_audio_queued(self.turn_state):
            chunk = get_next_audio(self.turn_state)
            await self.push_frame(
                OutputAudioRawFrame(
                    audio=chunk,
                    sample_rate=frame.sample_rate,
                    num_channels=frame.num_channels,
                ),
                direction,
            )


class SentenceProcessor(FrameProcessor):
    """Regroups streamed LLM tokens into whole sentences for TTS.

    Insert between the LLM and TTS.  LLMTextFrames are absorbed into a
    SentenceBuffer and each complete sentence goes downstream as one
    TTSSpeakFrame; the remainder is flushed on LLMFullResponseEndFrame.
    While the caller is barging in, buffered text is thrown away.
    """

    def __init__(
        self,
        call_id: str,
        registry: SessionRegistry,
        sentence_buffer: SentenceBuffer | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.call_id = call_id
        self.registry = registry
        self.sentence_buffer = sentence_buffer or SentenceBuffer()

    def _interrupt_requested(self) -> bool:
        session = self.registry.get_session(self.call_id)
        return session is not None and session.interrupt_requested

    async def process_frame(self, frame: Frame, direction: FrameDirection):
        await super().process_frame(frame, direction)

        if isinstance(frame, LLMTextFrame):
            if self._interrupt_requested():
                if self.sentence_buffer.has_content():
                    logger.info(f"[{self.call_id}] Barge-in: discarding buffered response text")
                self.sentence_buffer.clear()
                return
            for sentence in self.sentence_buffer.add(frame.text):
                await self.push_frame(TTSSpeakFrame(text=sentence))
            return

        if isinstance(frame, LLMFullResponseEndFrame):
            remainder = self.sentence_buffer.flush()
            if remainder and not self._interrupt_requested():
                await self.push_frame(TTSSpeakFrame(text=remainder))
        elif isinstance(frame, (EndFrame, CancelFrame)):
            self.sentence_buffer.clear()

        await self.push_frame(frame, direction)
