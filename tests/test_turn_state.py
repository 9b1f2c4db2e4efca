from unittest.mock import patch

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


def test_create_turn_state_defaults():
    with patch("frontdesk.turn_state._now", return_value=42.0):
        state = create_turn_state()
    assert state.transcript_buffer == ""
    assert state.interim_transcript == ""
    assert state.response_in_progress is False
    assert state.response_pending is False
    assert len(state.audio_queue) == 0
    assert state.current_playback_id is None
    assert state.silence_start_time is None
    assert state.last_transcript_time == 42.0


def test_turn_states_do_not_share_queues():
    a, b = create_turn_state(), create_turn_state()
    queue_audio(a, b"x")
    assert not has_audio_queued(b)


class TestTranscript:
    def test_interim_replaces(self, turn_state):
        update_transcript(turn_state, "I want", is_final=False)
        update_transcript(turn_state, "I want to book", is_final=False)
        assert turn_state.interim_transcript == "I want to book"
        assert turn_state.transcript_buffer == ""

    def test_finals_append_space_joined(self, turn_state):
        update_transcript(turn_state, "I want to book", is_final=True)
        update_transcript(turn_state, "a table for two", is_final=True)
        assert turn_state.transcript_buffer == "I want to book a table for two"

    def test_final_clears_interim(self, turn_state):
        update_transcript(turn_state, "I want to", is_final=False)
        update_transcript(turn_state, "I want to book", is_final=True)
        assert turn_state.interim_transcript == ""

    def test_returns_same_state(self, turn_state):
        assert update_transcript(turn_state, "hi", is_final=True) is turn_state

    def test_updates_last_transcript_time(self, turn_state):
        with patch("frontdesk.turn_state._now", return_value=99.0):
            update_transcript(turn_state, "hi", is_final=False)
        assert turn_state.last_transcript_time == 99.0

    def test_any_transcript_cancels_silence(self, turn_state):
        start_silence(turn_state)
        update_transcript(turn_state, "um", is_final=False)
        assert turn_state.silence_start_time is None

    def test_complete_transcript_joins_buffer_and_interim(self, turn_state):
        update_transcript(turn_state, "I want to book", is_final=True)
        update_transcript(turn_state, "for Friday", is_final=False)
        assert get_complete_transcript(turn_state) == "I want to book for Friday"

    def test_complete_transcript_interim_only(self, turn_state):
        update_transcript(turn_state, "for Friday", is_final=False)
        assert get_complete_transcript(turn_state) == "for Friday"

    def test_complete_transcript_buffer_only(self, turn_state):
        update_transcript(turn_state, "for Friday", is_final=True)
        assert get_complete_transcript(turn_state) == "for Friday"

    def test_complete_transcript_empty(self, turn_state):
        assert get_complete_transcript(turn_state) == ""

    def test_clear_then_complete_is_empty(self, turn_state):
        update_transcript(turn_state, "book a table", is_final=True)
        update_transcript(turn_state, "for two", is_final=False)
        clear_transcript(turn_state)
        assert get_complete_transcript(turn_state) == ""


class TestSilence:
    def test_start_silence_is_idempotent(self, turn_state):
        with patch("frontdesk.turn_state._now", return_value=10.0):
            start_silence(turn_state)
        with patch("frontdesk.turn_state._now", return_value=15.0):
            start_silence(turn_state)
        assert turn_state.silence_start_time == 10.0

    def test_not_long_enough_without_silence(self, turn_state):
        assert is_silence_long_enough(turn_state, 0) is False

    def test_threshold(self, turn_state):
        with patch("frontdesk.turn_state._now", return_value=100.0):
            start_silence(turn_state)
            assert is_silence_long_enough(turn_state, 1000) is False
        with patch("frontdesk.turn_state._now", return_value=100.999):
            assert is_silence_long_enough(turn_state, 1000) is False
        with patch("frontdesk.turn_state._now", return_value=101.0):
            assert is_silence_long_enough(turn_state, 1000) is True

    def test_default_threshold_is_one_second(self, turn_state):
        with patch("frontdesk.turn_state._now", return_value=0.0):
            start_silence(turn_state)
        with patch("frontdesk.turn_state._now", return_value=1.5):
            assert is_silence_long_enough(turn_state) is True

    def test_restart_after_transcript(self, turn_state):
        with patch("frontdesk.turn_state._now", return_value=10.0):
            start_silence(turn_state)
            update_transcript(turn_state, "and", is_final=True)
        with patch("frontdesk.turn_state._now", return_value=12.0):
            start_silence(turn_state)
        assert turn_state.silence_start_time == 12.0


class TestAudioQueue:
    def test_fifo(self, turn_state):
        queue_audio(turn_state, b"a")
        queue_audio(turn_state, b"b")
        assert get_next_audio(turn_state) == b"a"
        assert get_next_audio(turn_state) == b"b"
        assert get_next_audio(turn_state) is None

    def test_has_audio_queued(self, turn_state):
        assert has_audio_queued(turn_state) is False
        queue_audio(turn_state, b"a")
        assert has_audio_queued(turn_state) is True

    def test_clear_audio_queue(self, turn_state):
        turn_state.current_playback_id = "pb-1"
        queue_audio(turn_state, b"a")
        queue_audio(turn_state, b"b")
        clear_audio_queue(turn_state)
        assert has_audio_queued(turn_state) is False
        assert turn_state.current_playback_id is None
        assert get_next_audio(turn_state) is None

    def test_clear_empty_queue_is_safe(self):
        state = TurnState()
        assert clear_audio_queue(state) is state
