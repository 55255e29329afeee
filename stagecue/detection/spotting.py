"""
NPC and scene spotting against externally built lookup tables.

The spotters never build or delete entries. Their only write is flipping an
entry's ``served`` flag to True, once, when it is first spotted.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from ..types import NpcCacheEntry, SceneIndexEntry
from .matchers import compile_terms, find_terms

logger = logging.getLogger(__name__)

SCENE_WINDOW_SECONDS = 180.0
SCENE_MIN_DISTINCT_KEYWORDS = 2


class NpcSpotter:
    """
    Finds first mentions of NPCs.

    Each entry is matched on its aliases (its key when it has none) plus
    every garbled form whose canonical term is one of those names.
    """

    def __init__(self, fuzzy_table: Optional[Dict[str, str]] = None):
        self._fuzzy_table = dict(fuzzy_table or {})
        self._entries: Dict[str, NpcCacheEntry] = {}
        self._matchers: Dict[str, Dict[str, Pattern]] = {}

    @property
    def entries(self) -> Dict[str, NpcCacheEntry]:
        return self._entries

    def install(self, entries: Iterable[NpcCacheEntry]) -> None:
        """Replace the cache. Entries keep whatever served state they carry."""
        self._entries = {}
        self._matchers = {}
        for entry in entries:
            names = [a.lower() for a in entry.aliases if a.strip()] or [entry.key.lower()]
            garbled = [g for g, canonical in self._fuzzy_table.items() if canonical in names]
            self._entries[entry.key] = entry
            self._matchers[entry.key] = compile_terms(names + garbled)
        logger.info(f"NPC spotter loaded {len(self._entries)} entries")

    def spot(self, text: str, timestamp: str) -> List[NpcCacheEntry]:
        """Mark and return unserved NPCs mentioned in text."""
        spotted: List[NpcCacheEntry] = []
        for key, entry in self._entries.items():
            if entry.served:
                continue
            if find_terms(text, self._matchers[key]):
                entry.mark_served(timestamp)
                spotted.append(entry)
        return spotted

    def find(self, name: str) -> Optional[NpcCacheEntry]:
        """Look up an entry by key or alias, case-insensitively."""
        wanted = name.strip().lower()
        for entry in self._entries.values():
            if entry.key.lower() == wanted or wanted in (a.lower() for a in entry.aliases):
                return entry
        return None


class SceneSpotter:
    """
    Accumulates scene keywords across segments.

    A scene is spotted when at least ``min_distinct`` of its keywords have
    been heard within ``window_seconds``. A single keyword never suffices.
    """

    def __init__(
        self,
        window_seconds: float = SCENE_WINDOW_SECONDS,
        min_distinct: int = SCENE_MIN_DISTINCT_KEYWORDS,
    ):
        self.window_seconds = window_seconds
        self.min_distinct = min_distinct
        self._entries: Dict[str, SceneIndexEntry] = {}
        self._matchers: Dict[str, Dict[str, Pattern]] = {}
        # scene id -> keyword -> last heard
        self._heard: Dict[str, Dict[str, float]] = {}

    @property
    def entries(self) -> Dict[str, SceneIndexEntry]:
        return self._entries

    def install(self, entries: Iterable[SceneIndexEntry]) -> None:
        self._entries = {}
        self._matchers = {}
        self._heard = {}
        for entry in entries:
            self._entries[entry.id] = entry
            self._matchers[entry.id] = compile_terms(entry.keywords)
        logger.info(f"Scene spotter loaded {len(self._entries)} scenes")

    def observe(
        self, text: str, now: float, timestamp: str
    ) -> List[Tuple[SceneIndexEntry, List[str]]]:
        """
        Record keywords heard in one segment.

        Returns:
            (scene, matched keywords) for each scene spotted by this segment
        """
        spotted: List[Tuple[SceneIndexEntry, List[str]]] = []
        cutoff = now - self.window_seconds

        for scene_id, entry in self._entries.items():
            if entry.served:
                continue
            heard = self._heard.setdefault(scene_id, {})
            for keyword in find_terms(text, self._matchers[scene_id]):
                heard[keyword] = now
            for keyword in [k for k, t in heard.items() if t <= cutoff]:
                del heard[keyword]

            if len(heard) >= self.min_distinct:
                matched = sorted(heard)
                entry.mark_served(timestamp)
                heard.clear()
                spotted.append((entry, matched))

        return spotted
