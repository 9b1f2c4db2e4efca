import pytest
from frontdesk.session_manager import SessionRegistry
from frontdesk.turn_state import create_turn_state


class FakeClock:
    """Settable stand-in for time.time()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return SessionRegistry(clock=clock)


@pytest.fixture
def turn_state():
    return create_turn_state()
