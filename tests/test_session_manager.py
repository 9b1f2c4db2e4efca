import asyncio
import logging
import threading
from unittest.mock import MagicMock

import pytest
from frontdesk.session import ConversationMessage, Role
from frontdesk.session_manager import SessionRegistry, run_cleanup_loop


class TestLifecycle:
    def test_create_session(self, registry, clock):
        session = registry.create_session("call-1", "tenant-a", "+15125551234")
        assert session.call_id == "call-1"
        assert session.tenant_id == "tenant-a"
        assert session.caller_phone == "+15125551234"
        assert session.conversation_history == []
        assert session.start_time == clock.now
        assert session.last_activity_time == clock.now
        assert registry.get_session("call-1") is session

    def test_caller_phone_optional(self, registry):
        assert registry.create_session("call-1", "tenant-a").caller_phone is None

    def test_duplicate_call_id_replaces_session(self, registry):
        first = registry.create_session("call-1", "tenant-a")
        registry.add_message("call-1", Role.USER, "hello")
        second = registry.create_session("call-1", "tenant-a")
        assert registry.get_session("call-1") is second
        assert second is not first
        assert registry.get_conversation_history("call-1") == []
        assert registry.get_session_count() == 1

    def test_get_missing_session(self, registry):
        assert registry.get_session("nope") is None

    def test_end_session(self, registry):
        registry.create_session("call-1", "tenant-a")
        ended = registry.end_session("call-1")
        assert ended.call_id == "call-1"
        assert registry.get_session("call-1") is None
        assert registry.get_session_count() == 0

    def test_end_missing_session(self, registry):
        assert registry.end_session("nope") is None

    def test_history_limit_must_hold_system_and_one_message(self):
        with pytest.raises(ValueError):
            SessionRegistry(history_limit=1)


class TestUpdateSession:
    def test_merges_fields_and_refreshes_activity(self, registry, clock):
        registry.create_session("call-1", "tenant-a")
        clock.advance(5)
        session = registry.update_session("call-1", caller_name="Dana", current_intent="booking")
        assert session.caller_name == "Dana"
        assert session.current_intent == "booking"
        assert session.last_activity_time == clock.now

    def test_protected_and_unknown_fields_ignored(self, registry):
        registry.create_session("call-1", "tenant-a")
        session = registry.update_session("call-1", call_id="other", bogus=1, tools_enabled=True)
        assert session.call_id == "call-1"
        assert not hasattr(session, "bogus")
        assert session.tools_enabled is True
        assert registry.get_session("other") is None

    def test_history_cannot_be_replaced(self, registry, clock):
        registry.create_session("call-1", "tenant-a")
        registry.add_message("call-1", Role.USER, "Hi")
        flood = [
            ConversationMessage(role=Role.USER, content=f"msg {i}", timestamp=clock.now)
            for i in range(25)
        ]

        registry.update_session("call-1", conversation_history=flood, caller_name="Dana")

        history = registry.get_conversation_history("call-1")
        assert [m.content for m in history] == ["Hi"]
        assert len(history) <= registry.history_limit
        assert registry.get_session("call-1").caller_name == "Dana"

    def test_missing_session(self, registry):
        assert registry.update_session("nope", caller_name="Dana") is None


class TestHistory:
    def test_add_message(self, registry, clock):
        registry.create_session("call-1", "tenant-a")
        clock.advance(3)
        message = registry.add_message("call-1", Role.USER, "I'd like to book")
        assert message.role is Role.USER
        assert message.content == "I'd like to book"
        assert message.timestamp == clock.now
        assert registry.get_session("call-1").last_activity_time == clock.now

    def test_role_as_string(self, registry):
        registry.create_session("call-1", "tenant-a")
        assert registry.add_message("call-1", "assistant", "Sure").role is Role.ASSISTANT

    def test_invalid_role_raises(self, registry):
        registry.create_session("call-1", "tenant-a")
        with pytest.raises(ValueError):
            registry.add_message("call-1", "narrator", "...")

    def test_add_message_missing_session(self, registry):
        assert registry.add_message("nope", Role.USER, "hi") is None

    def test_tool_metadata_kept(self, registry):
        registry.create_session("call-1", "tenant-a")
        registry.add_message(
            "call-1", Role.ASSISTANT, "",
            tool_calls=[{"id": "tc-1", "name": "check_availability"}],
        )
        registry.add_message(
            "call-1", Role.TOOL, '{"slots": 2}',
            tool_call_id="tc-1", tool_name="check_availability", tool_result='{"slots": 2}',
        )
        history = registry.get_conversation_history("call-1")
        assert history[0].tool_calls[0]["id"] == "tc-1"
        assert history[1].tool_name == "check_availability"

    def test_history_is_a_copy(self, registry):
        registry.create_session("call-1", "tenant-a")
        registry.add_message("call-1", Role.USER, "hi")
        registry.get_conversation_history("call-1").clear()
        assert len(registry.get_conversation_history("call-1")) == 1

    def test_history_missing_session(self, registry):
        assert registry.get_conversation_history("nope") == []

    def test_cap_keeps_system_message_first(self, registry):
        registry.create_session("call-1", "tenant-a")
        registry.add_message("call-1", Role.SYSTEM, "You are a receptionist.")
        for i in range(24):
            role = Role.USER if i % 2 == 0 else Role.ASSISTANT
            registry.add_message("call-1", role, f"message {i}")

        history = registry.get_conversation_history("call-1")
        assert len(history) <= 20
        assert history[0].role is Role.SYSTEM
        assert history[0].content == "You are a receptionist."
        assert history[-1].content == "message 23"

    def test_cap_without_system_message(self, registry):
        registry.create_session("call-1", "tenant-a")
        for i in range(25):
            registry.add_message("call-1", Role.USER, f"message {i}")
        history = registry.get_conversation_history("call-1")
        assert len(history) == 19
        assert history[0].content == "message 6"

    def test_trim_drops_orphaned_tool_results(self):
        registry = SessionRegistry(history_limit=4)
        registry.create_session("call-1", "tenant-a")
        registry.add_message("call-1", Role.SYSTEM, "prompt")
        registry.add_message("call-1", Role.ASSISTANT, "", tool_calls=[{"id": "tc-1"}])
        registry.add_message("call-1", Role.TOOL, "result", tool_call_id="tc-1", tool_name="lookup")
        registry.add_message("call-1", Role.ASSISTANT, "Found it.")
        registry.add_message("call-1", Role.USER, "Great")

        history = registry.get_conversation_history("call-1")
        assert [m.role for m in history] == [Role.SYSTEM, Role.ASSISTANT, Role.USER]

    def test_last_assistant_message(self, registry):
        registry.create_session("call-1", "tenant-a")
        registry.add_message("call-1", Role.ASSISTANT, "What's your name?")
        registry.add_message("call-1", Role.USER, "Dana")
        assert registry.get_last_assistant_message("call-1") == "What's your name?"

    def test_last_assistant_message_none(self, registry):
        registry.create_session("call-1", "tenant-a")
        assert registry.get_last_assistant_message("call-1") is None
        assert registry.get_last_assistant_message("nope") is None


class TestAudioFlags:
    def test_set_playing_and_speaking(self, registry):
        registry.create_session("call-1", "tenant-a")
        registry.set_playing("call-1", True)
        registry.set_speaking("call-1", True)
        session = registry.get_session("call-1")
        assert session.is_playing is True
        assert session.is_speaking is True

    def test_flags_on_missing_session_are_noops(self, registry):
        registry.set_playing("nope", True)
        registry.set_speaking("nope", True)
        registry.clear_interrupt("nope")
        assert registry.request_interrupt("nope") is False

    def test_flags_on_missing_session_warn(self, registry, caplog):
        with caplog.at_level(logging.WARNING, logger="frontdesk.session_manager"):
            registry.set_playing("nope", True)
            registry.set_speaking("nope", False)
            registry.request_interrupt("nope")
            registry.clear_interrupt("nope")

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 4
        assert all("session not found: nope" in w for w in warnings)

    def test_interrupt_ignored_when_not_playing(self, registry):
        registry.create_session("call-1", "tenant-a")
        assert registry.request_interrupt("call-1") is False
        assert registry.get_session("call-1").interrupt_requested is False

    def test_interrupt_while_playing(self, registry):
        registry.create_session("call-1", "tenant-a")
        registry.set_playing("call-1", True)
        assert registry.request_interrupt("call-1") is True
        assert registry.get_session("call-1").interrupt_requested is True

        registry.clear_interrupt("call-1")
        assert registry.get_session("call-1").interrupt_requested is False


class TestMonitoring:
    def test_all_sessions_and_count(self, registry):
        registry.create_session("call-1", "tenant-a")
        registry.create_session("call-2", "tenant-b")
        assert registry.get_session_count() == 2
        assert {s.call_id for s in registry.get_all_sessions()} == {"call-1", "call-2"}

    def test_all_sessions_is_a_snapshot(self, registry):
        registry.create_session("call-1", "tenant-a")
        snapshot = registry.get_all_sessions()
        registry.end_session("call-1")
        assert len(snapshot) == 1


class TestCleanup:
    def test_removes_stale_keeps_recent(self, registry, clock):
        registry.create_session("stale", "tenant-a")
        clock.advance(2 * 60)
        registry.create_session("fresh", "tenant-a")
        clock.advance(29 * 60)

        # stale: 31 minutes idle, fresh: 29 minutes idle
        assert registry.cleanup_stale_sessions(30) == 1
        assert registry.get_session("stale") is None
        assert registry.get_session("fresh") is not None

    def test_activity_keeps_session_alive(self, registry, clock):
        registry.create_session("call-1", "tenant-a")
        clock.advance(25 * 60)
        registry.add_message("call-1", Role.USER, "still here")
        clock.advance(25 * 60)
        assert registry.cleanup_stale_sessions(30) == 0

    def test_default_max_age(self, registry, clock):
        registry.create_session("call-1", "tenant-a")
        clock.advance(31 * 60)
        assert registry.cleanup_stale_sessions() == 1

    def test_nothing_to_clean(self, registry):
        assert registry.cleanup_stale_sessions(30) == 0

    def test_end_to_end_abandoned_call(self, registry, clock):
        registry.create_session("call-1", "tenant-a", "+15125551234")
        registry.add_message("call-1", Role.SYSTEM, "You are a receptionist.")
        for turn in range(3):
            registry.add_message("call-1", Role.USER, f"question {turn}")
            registry.add_message("call-1", Role.ASSISTANT, f"answer {turn}")
        assert len(registry.get_conversation_history("call-1")) == 7

        clock.advance(35 * 60)
        assert registry.cleanup_stale_sessions(max_age_minutes=30) == 1
        assert registry.get_session("call-1") is None
        assert registry.get_session_count() == 0

    def test_concurrent_adds_are_not_lost(self):
        registry = SessionRegistry(history_limit=1000)
        registry.create_session("call-1", "tenant-a")

        def add_many(prefix):
            for i in range(100):
                registry.add_message("call-1", Role.USER, f"{prefix}-{i}")

        threads = [threading.Thread(target=add_many, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(registry.get_conversation_history("call-1")) == 400


class TestCleanupLoop:
    @pytest.mark.asyncio
    async def test_sweeps_periodically(self):
        registry = MagicMock()
        task = asyncio.create_task(run_cleanup_loop(registry, interval_s=0.01, max_age_minutes=5))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert registry.cleanup_stale_sessions.call_count >= 2
        registry.cleanup_stale_sessions.assert_called_with(5)

    @pytest.mark.asyncio
    async def test_sweep_error_does_not_stop_loop(self):
        registry = MagicMock()
        registry.cleanup_stale_sessions.side_effect = RuntimeError("boom")
        task = asyncio.create_task(run_cleanup_loop(registry, interval_s=0.01))
        await asyncio.sleep(0.05)
        assert not task.done()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert registry.cleanup_stale_sessions.call_count >= 2
