"""
GM silence and hesitation timers.

Silence is driven by GM speech only; a hesitation gap is broken by anyone
speaking. The watches hold no clock of their own;
the detector passes ``now`` in from its injected clock.
"""
from __future__ import annotations

from typing import Iterable, Optional, Tuple

from .matchers import compile_terms, find_terms


class SilenceWatch:
    """
    Tracks time since the GM last spoke.

    Two independent thresholds apply: ``alert_seconds`` raises one P4 per
    silence episode, ``sleep_seconds`` puts the session to sleep.
    """

    def __init__(self, alert_seconds: float = 90.0, sleep_seconds: float = 900.0):
        self.alert_seconds = alert_seconds
        self.sleep_seconds = sleep_seconds
        self.last_gm_speech: Optional[float] = None
        self.alert_fired = False

    def heard_gm(self, now: float) -> None:
        self.last_gm_speech = now
        self.alert_fired = False

    def silence_for(self, now: float) -> Optional[float]:
        """Seconds of GM silence, or None if the GM has not spoken yet."""
        if self.last_gm_speech is None:
            return None
        return max(0.0, now - self.last_gm_speech)

    def should_sleep(self, now: float) -> bool:
        silence = self.silence_for(now)
        return silence is not None and silence >= self.sleep_seconds

    def should_alert(self, now: float) -> bool:
        if self.alert_fired:
            return False
        silence = self.silence_for(now)
        return silence is not None and silence >= self.alert_seconds

    def mark_alerted(self) -> None:
        self.alert_fired = True


class HesitationWatch:
    """
    Pending hesitation marker for gap-fill prompts.

    A GM segment containing a hesitation keyword arms the marker; any later
    GM segment without one disarms it, and so does speech from anyone else. If the marker survives ``gap_seconds``
    it is due exactly once.

    Example:
        >>> watch = HesitationWatch(["uh"], gap_seconds=5)
        >>> watch.on_gm_speech("his name is uh the captain", now=100.0)
        >>> watch.due(now=106.0)
        ('his name is uh the captain', 6.0)
        >>> watch.due(now=110.0) is None
        True
    """

    def __init__(self, keywords: Iterable[str], gap_seconds: float = 5.0):
        self.gap_seconds = gap_seconds
        self._keywords = compile_terms(keywords)
        self.pending: Optional[Tuple[str, float]] = None
        self.fired = False

    def matches(self, text: str) -> bool:
        return bool(find_terms(text, self._keywords))

    def on_gm_speech(self, text: str, now: float) -> None:
        self.fired = False
        if self.matches(text):
            self.pending = (text, now)
        else:
            self.pending = None

    def on_other_speech(self) -> None:
        self.pending = None

    def due(self, now: float) -> Optional[Tuple[str, float]]:
        """Return (text, gap seconds) once the marker has aged past the gap."""
        if self.pending is None or self.fired:
            return None
        text, marked_at = self.pending
        gap = now - marked_at
        if gap < self.gap_seconds:
            return None
        self.fired = True
        self.pending = None
        return text, gap

    def clear(self) -> None:
        self.pending = None
