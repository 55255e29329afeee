"""Shared fixtures: a manually advanced clock and a wired detector."""
import pytest

from stagecue.classifier import TriggerDetector
from stagecue.config import AssistantConfig
from stagecue.pacing import PacingStateManager
from stagecue.types import TranscriptSegment
from stagecue.util import iso_at

FUZZY = {
    "darwin": "darjin",
    "dow crush": "daokresh",
    "belton": "veltin",
    "crushing": "kreshling",
    "calamine": "kalamynth",
}


class FakeClock:
    """Deterministic epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def iso(self) -> str:
        return iso_at(self.now)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fuzzy_table():
    return dict(FUZZY)


@pytest.fixture
def config():
    return AssistantConfig(gm_identifier="gm")


@pytest.fixture
def pacing(clock):
    return PacingStateManager(clock=clock)


@pytest.fixture
def detector(pacing, config, clock):
    return TriggerDetector(pacing, config, fuzzy_table=dict(FUZZY), clock=clock)


@pytest.fixture
def batches(detector):
    received = []
    detector.subscribe(received.append)
    return received


@pytest.fixture
def say(clock):
    """Build a segment stamped with the current fake time."""
    def _say(text, user="gm", **kwargs):
        return TranscriptSegment(text=text, timestamp=clock.iso(), user_id=user, **kwargs)
    return _say
