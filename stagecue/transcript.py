"""
Incremental transcript ingestion.

Speech-to-text services publish rows that start interim and are later
finalized in place. TranscriptFeed keeps a bounded cache of recent rows and
decides which of them are handed to the detectors, so that each row is
classified at most once:

- with ``final_only`` (the default) a row is fed when it first arrives
  final, or when an interim row is finalized
- without it a row is fed when first seen, and later finalizing updates
  only refresh the cached text

A session change resets the cache and seeds it with the rows already
present, without feeding them.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .types import TranscriptSegment
from .util import TimeLike, parse_iso, to_epoch

logger = logging.getLogger(__name__)

TRANSCRIPT_CACHE_SIZE = 500


@dataclass
class TranscriptRow:
    """One row as published by the transcription service."""
    id: str
    text: str
    timestamp: str
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    speaker_label: Optional[str] = None
    is_final: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptRow":
        return cls(
            id=str(data["id"]),
            text=data.get("transcript", data.get("text", "")) or "",
            timestamp=data.get("segment_start", data.get("timestamp", "")) or "",
            user_id=data.get("user_id"),
            display_name=data.get("display_name"),
            speaker_label=data.get("speaker_label"),
            is_final=bool(data.get("is_final", True)),
        )

    def to_segment(self) -> TranscriptSegment:
        return TranscriptSegment(
            text=self.text,
            timestamp=self.timestamp,
            user_id=self.user_id,
            display_name=self.display_name,
            speaker_label=self.speaker_label,
        )


class TranscriptFeed:
    """
    Ring buffer of recent transcript rows.

    Example:
        >>> feed = TranscriptFeed()
        >>> feed.ingest([{"id": "1", "transcript": "uh", "is_final": False}])
        []
        >>> [s.text for s in feed.ingest([{"id": "1", "transcript": "um, next scene", "is_final": True}])]
        ['um, next scene']
    """

    def __init__(self, maxlen: int = TRANSCRIPT_CACHE_SIZE, final_only: bool = True):
        self.maxlen = maxlen
        self.final_only = final_only
        self._rows: "OrderedDict[str, TranscriptRow]" = OrderedDict()
        self._fed: set = set()
        self._session_id: Optional[str] = None
        self.cursor = 0
        self.latest_ts: Optional[str] = None

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def ingest(
        self,
        rows: Iterable[Any],
        session_id: Optional[str] = None,
    ) -> List[TranscriptSegment]:
        """
        Merge rows into the cache.

        Args:
            rows: TranscriptRow objects or raw row dicts
            session_id: Transcription session the rows belong to

        Returns:
            Segments that should now be run through the detectors
        """
        parsed = [r if isinstance(r, TranscriptRow) else TranscriptRow.from_dict(r) for r in rows]

        if session_id is not None and session_id != self._session_id:
            previous = self._session_id
            self._reset(session_id)
            for row in parsed:
                self._store(row)
                self._fed.add(row.id)
            logger.info(
                f"Transcript session {previous} -> {session_id}: seeded {len(parsed)} rows"
            )
            return []

        segments: List[TranscriptSegment] = []
        for row in parsed:
            self._store(row)
            if row.id in self._fed:
                continue
            if row.is_final or not self.final_only:
                self._fed.add(row.id)
                segments.append(row.to_segment())
        return segments

    def append_segments(self, segments: Iterable[TranscriptSegment]) -> None:
        """Cache already-final segments that arrive without row ids."""
        for seg in segments:
            row = TranscriptRow(
                id=f"seg-{self.cursor}",
                text=seg.text,
                timestamp=seg.timestamp,
                user_id=seg.user_id,
                display_name=seg.display_name,
                speaker_label=seg.speaker_label,
            )
            self._store(row)
            self._fed.add(row.id)

    def _store(self, row: TranscriptRow) -> None:
        if row.id in self._rows:
            self._rows[row.id] = row
        else:
            self._rows[row.id] = row
            self.cursor += 1
            while len(self._rows) > self.maxlen:
                evicted, _ = self._rows.popitem(last=False)
                self._fed.discard(evicted)
        if row.timestamp:
            self.latest_ts = row.timestamp

    def _reset(self, session_id: Optional[str]) -> None:
        self._session_id = session_id
        self._rows.clear()
        self._fed.clear()
        self.cursor = 0
        self.latest_ts = None

    def segments(self, final_only: bool = False) -> List[TranscriptSegment]:
        return [
            row.to_segment()
            for row in self._rows.values()
            if row.is_final or not final_only
        ]

    def window(self, minutes: float, now: TimeLike) -> List[TranscriptSegment]:
        """Final segments from the last ``minutes`` minutes."""
        cutoff = to_epoch(now) - minutes * 60.0
        result = []
        for row in self._rows.values():
            ts = parse_iso(row.timestamp)
            if row.is_final and ts is not None and ts >= cutoff:
                result.append(row.to_segment())
        return result

    def __len__(self) -> int:
        return len(self._rows)
