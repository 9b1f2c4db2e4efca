"""Registry of active call sessions.

A ``SessionRegistry`` is created by whoever owns the process (the server, a
test) and passed to the components that need it.  Missing sessions are a soft
condition: operations log a warning and return ``None``/``False``/empty.

Locking: the registry lock guards the mapping only; each session's own lock
guards its fields.  Code that needs both takes the session lock first.
"""

import asyncio
import logging
import threading
import time
from dataclasses import fields
from typing import Callable

from frontdesk.session import CallSession, ConversationMessage, Role

logger = logging.getLogger(__name__)

MAX_HISTORY = 20
DEFAULT_MAX_AGE_MINUTES = 30
DEFAULT_CLEANUP_INTERVAL_S = 60.0

_SESSION_FIELDS = {f.name for f in fields(CallSession)}
# History only changes through add_message, which enforces the cap.
_PROTECTED_FIELDS = {"call_id", "lock", "conversation_history"}


class SessionRegistry:
    def __init__(
        self,
        history_limit: int = MAX_HISTORY,
        clock: Callable[[], float] = time.time,
    ):
        if history_limit < 2:
            raise ValueError("history_limit must be at least 2")
        self.history_limit = history_limit
        self._clock = clock
        self._sessions: dict[str, CallSession] = {}
        self._lock = threading.Lock()

    def _lookup(self, call_id: str) -> CallSession | None:
        with self._lock:
            return self._sessions.get(call_id)

    # ── Lifecycle ──

    def create_session(
        self, call_id: str, tenant_id: str, caller_phone: str | None = None
    ) -> CallSession:
        """Register a new call. A session already stored under ``call_id`` is replaced."""
        now = self._clock()
        session = CallSession(
            call_id=call_id,
            tenant_id=tenant_id,
            caller_phone=caller_phone,
            start_time=now,
            last_activity_time=now,
        )
        with self._lock:
            replaced = self._sessions.get(call_id)
            self._sessions[call_id] = session

        if replaced is not None:
            logger.warning(f"Session {call_id} already existed, discarding the previous one")
        logger.info(f"Created session for call {call_id}")
        return session

    def get_session(self, call_id: str) -> CallSession | None:
        return self._lookup(call_id)

    def update_session(self, call_id: str, /, **updates) -> CallSession | None:
        session = self._lookup(call_id)
        if session is None:
            logger.warning(f"Session not found: {call_id}")
            return None

        with session.lock:
            for name, value in updates.items():
                if name not in _SESSION_FIELDS or name in _PROTECTED_FIELDS:
                    logger.warning(f"Ignoring update of {name!r} on session {call_id}")
                    continue
                setattr(session, name, value)
            session.last_activity_time = self._clock()
        return session

    def end_session(self, call_id: str) -> CallSession | None:
        with self._lock:
            session = self._sessions.pop(call_id, None)
        if session is None:
            return None

        with session.lock:
            duration = self._clock() - session.start_time
            message_count = len(session.conversation_history)
        logger.info(
            f"Ended session for call {call_id} "
            f"(duration={duration:.1f}s, messages={message_count})"
        )
        return session

    # ── Conversation history ──

    def add_message(
        self,
        call_id: str,
        role: Role | str,
        content: str,
        *,
        tool_call_id: str | None = None,
        tool_name: str | None = None,
        tool_result: str | None = None,
        tool_calls: list[dict] | None = None,
    ) -> ConversationMessage | None:
        """Append a message and enforce the history cap.

        When the history grows past ``history_limit`` it is cut to the most
        recent ``history_limit - 1`` entries, leading tool results orphaned
        from their assistant call are dropped, and a leading system message
        is restored at index 0.
        """
        session = self._lookup(call_id)
        if session is None:
            logger.warning(f"Cannot add message, session not found: {call_id}")
            return None

        with session.lock:
            now = self._clock()
            message = ConversationMessage(
                role=Role(role),
                content=content,
                timestamp=now,
                tool_call_id=tool_call_id,
                tool_name=tool_name,
                tool_result=tool_result,
                tool_calls=tool_calls,
            )
            session.conversation_history.append(message)
            session.last_activity_time = now

            if len(session.conversation_history) > self.history_limit:
                session.conversation_history = self._trim_history(
                    call_id, session.conversation_history
                )
        return message

    def _trim_history(
        self, call_id: str, history: list[ConversationMessage]
    ) -> list[ConversationMessage]:
        system_msg = history[0] if history[0].role is Role.SYSTEM else None
        trimmed = history[-(self.history_limit - 1):]

        while trimmed and trimmed[0].role is Role.TOOL:
            logger.info(f"Removing orphaned tool message {trimmed[0].tool_name} from call {call_id}")
            trimmed = trimmed[1:]

        if system_msg is not None and (not trimmed or trimmed[0] is not system_msg):
            trimmed.insert(0, system_msg)
        return trimmed

    def get_conversation_history(self, call_id: str) -> list[ConversationMessage]:
        session = self._lookup(call_id)
        if session is None:
            return []
        with session.lock:
            return list(session.conversation_history)

    def get_last_assistant_message(self, call_id: str) -> str | None:
        for message in reversed(self.get_conversation_history(call_id)):
            if message.role is Role.ASSISTANT and message.content:
                return message.content
        return None

    # ── Audio flags ──

    def _lookup_for(self, call_id: str, action: str) -> CallSession | None:
        session = self._lookup(call_id)
        if session is None:
            logger.warning(f"Cannot {action}, session not found: {call_id}")
        return session

    def set_playing(self, call_id: str, is_playing: bool) -> None:
        session = self._lookup_for(call_id, "set playing")
        if session is None:
            return
        with session.lock:
            session.is_playing = is_playing
            session.last_activity_time = self._clock()

    def set_speaking(self, call_id: str, is_speaking: bool) -> None:
        session = self._lookup_for(call_id, "set speaking")
        if session is None:
            return
        with session.lock:
            session.is_speaking = is_speaking
            session.last_activity_time = self._clock()

    def request_interrupt(self, call_id: str) -> bool:
        """Flag a barge-in. Ignored unless the agent is currently playing audio."""
        session = self._lookup_for(call_id, "request interrupt")
        if session is None:
            return False
        with session.lock:
            if not session.is_playing:
                return False
            session.interrupt_requested = True
        logger.info(f"Interrupt requested for {call_id}")
        return True

    def clear_interrupt(self, call_id: str) -> None:
        session = self._lookup_for(call_id, "clear interrupt")
        if session is None:
            return
        with session.lock:
            session.interrupt_requested = False

    # ── Monitoring ──

    def get_all_sessions(self) -> list[CallSession]:
        with self._lock:
            return list(self._sessions.values())

    def get_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def cleanup_stale_sessions(self, max_age_minutes: float = DEFAULT_MAX_AGE_MINUTES) -> int:
        """Remove sessions idle for longer than ``max_age_minutes``.

        Each session's ``last_activity_time`` is read once at scan time and
        checked again before removal, so a session touched mid-sweep is kept.
        """
        max_age_s = max_age_minutes * 60
        now = self._clock()
        with self._lock:
            snapshot = list(self._sessions.items())

        cleaned = 0
        for call_id, session in snapshot:
            with session.lock:
                last_activity = session.last_activity_time
                if now - last_activity <= max_age_s:
                    continue
                with self._lock:
                    if self._sessions.get(call_id) is not session:
                        continue
                    del self._sessions[call_id]
            logger.info(f"Cleaning up stale session: {call_id}")
            cleaned += 1

        if cleaned:
            logger.info(f"Cleaned up {cleaned} stale sessions")
        return cleaned


async def run_cleanup_loop(
    registry: SessionRegistry,
    interval_s: float = DEFAULT_CLEANUP_INTERVAL_S,
    max_age_minutes: float = DEFAULT_MAX_AGE_MINUTES,
) -> None:
    """Sweep stale sessions every ``interval_s`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_s)
        try:
            registry.cleanup_stale_sessions(max_age_minutes)
        except Exception as e:
            logger.error(f"Stale session sweep failed: {e}")
