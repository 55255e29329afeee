"""
Sliding-window trackers.

Every tracker prunes entries older than its window on each update, so the
buffers stay bounded by the speech rate over one window.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Pattern, Tuple

from .matchers import term_pattern

logger = logging.getLogger(__name__)

FLOWING_WINDOW_SECONDS = 60.0
FLOWING_MIN_SEGMENTS = 4
FLOWING_MIN_SPEAKERS = 2


class FlowTracker:
    """
    Detects flowing multi-speaker roleplay.

    Flowing means the window holds at least ``min_segments`` segments from
    at least ``min_speakers`` distinct speakers. Low-priority alerts are
    skipped while this holds.
    """

    def __init__(
        self,
        window_seconds: float = FLOWING_WINDOW_SECONDS,
        min_segments: int = FLOWING_MIN_SEGMENTS,
        min_speakers: int = FLOWING_MIN_SPEAKERS,
    ):
        self.window_seconds = window_seconds
        self.min_segments = min_segments
        self.min_speakers = min_speakers
        self._entries: Deque[Tuple[str, float]] = deque()

    def record(self, speaker_id: Optional[str], now: float) -> None:
        if speaker_id:
            self._entries.append((speaker_id, now))
        self.prune(now)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._entries and self._entries[0][1] <= cutoff:
            self._entries.popleft()

    def is_flowing(self, now: float) -> bool:
        self.prune(now)
        if len(self._entries) < self.min_segments:
            return False
        speakers = {speaker for speaker, _ in self._entries}
        return len(speakers) >= self.min_speakers

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class AutoActivator:
    """
    Counts distinct campaign terms heard during PREGAME.

    Both the garbled forms and the canonical terms themselves are matched on
    word boundaries. Terms shorter than ``min_term_length`` are ignored so
    that short common words cannot activate the session.

    Example:
        >>> activator = AutoActivator({"dow crush": "daokresh"}, 300, 3, 4)
        >>> activator.observe("we met dow crush", now=0.0)
        False
        >>> activator.distinct_terms()
        ['daokresh']
    """

    def __init__(
        self,
        fuzzy_table: Dict[str, str],
        window_seconds: float = 300.0,
        threshold: int = 3,
        min_term_length: int = 4,
    ):
        self.window_seconds = window_seconds
        self.threshold = threshold
        self._matchers: List[Tuple[str, Pattern]] = []
        self._window: Deque[Tuple[str, float]] = deque()

        forms: Dict[str, str] = {}
        for garbled, canonical in fuzzy_table.items():
            forms.setdefault(garbled, canonical)
            forms.setdefault(canonical, canonical)
        for form, canonical in forms.items():
            if len(form) >= min_term_length:
                self._matchers.append((canonical, term_pattern(form)))

        if fuzzy_table and not self._matchers:
            logger.warning("Auto-activation table has no terms long enough to match")

    @property
    def enabled(self) -> bool:
        return bool(self._matchers)

    def scan(self, text: str) -> List[str]:
        """Distinct canonical terms mentioned in text."""
        found: List[str] = []
        for canonical, pattern in self._matchers:
            if canonical not in found and pattern.search(text):
                found.append(canonical)
        return found

    def observe(self, text: str, now: float) -> bool:
        """
        Record the terms in one segment.

        Returns:
            True when the distinct-term threshold is reached; the window is
            cleared at that point
        """
        for canonical in self.scan(text):
            self._window.append((canonical, now))
        self.prune(now)

        if len(self.distinct_terms()) >= self.threshold:
            logger.info(f"Auto-activation threshold reached: {self.distinct_terms()}")
            self._window.clear()
            return True
        return False

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._window and self._window[0][1] <= cutoff:
            self._window.popleft()

    def distinct_terms(self) -> List[str]:
        seen: List[str] = []
        for canonical, _ in self._window:
            if canonical not in seen:
                seen.append(canonical)
        return seen

    def clear(self) -> None:
        self._window.clear()
