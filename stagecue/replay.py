"""
Offline replay of recorded session inputs.

A recording is a JSON-lines file, one input per line, each with a time
``t`` (epoch seconds or ISO-8601) and a ``kind``:

    {"t": 0, "kind": "transcript", "segments": [{"text": "...", "user_id": "gm"}]}
    {"t": 5, "kind": "rows", "rows": [...], "session_id": "abc"}
    {"t": 9, "kind": "game_event", "event_type": "sceneChange", "data": {...}}
    {"t": 12, "kind": "chat", "content": "/scene Docks 20"}
    {"t": 15, "kind": "npc_cache", "entries": [...]}
    {"t": 15, "kind": "scene_index", "entries": [...]}
    {"t": 600, "kind": "tick"}

Times between inputs are stepped through at the runtime tick resolution so
batch windows, cooldowns and silence checks fire as they would live.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .config import AssistantConfig
from .runtime import AssistantRuntime
from .types import NpcCacheEntry, SceneIndexEntry, TranscriptSegment, TriggerBatch
from .util import iso_at, parse_iso

logger = logging.getLogger(__name__)


class SimClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class ReplayRecord:
    t: float
    kind: str
    payload: Dict[str, Any]


def _record_time(raw: Any) -> Optional[float]:
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        return parse_iso(raw)
    return None


def read_records(path: str) -> Iterator[ReplayRecord]:
    """Yield records from a JSONL file, skipping blank and malformed lines."""
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"{path}:{lineno}: invalid JSON ({e})")
                continue
            t = _record_time(data.pop("t", None))
            kind = data.pop("kind", None)
            if t is None or not kind:
                logger.warning(f"{path}:{lineno}: missing 't' or 'kind'")
                continue
            yield ReplayRecord(t=t, kind=kind, payload=data)


class SessionReplayer:
    """
    Drives an AssistantRuntime from recorded inputs on a simulated clock.

    Example:
        >>> replayer = SessionReplayer(AssistantConfig(gm_identifier="gm"))
        >>> batches = replayer.run(read_records("session.jsonl"))
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        fuzzy_table: Optional[Dict[str, str]] = None,
    ):
        self.config = config or AssistantConfig()
        self.clock = SimClock()
        self.runtime = AssistantRuntime(self.config, fuzzy_table=fuzzy_table, clock=self.clock)
        self.batches: List[TriggerBatch] = []
        self.runtime.subscribe(self.batches.append)

    def run(self, records, drain_seconds: float = 0.0) -> List[TriggerBatch]:
        """
        Replay records in order.

        Args:
            records: Iterable of ReplayRecord, sorted by time
            drain_seconds: Keep ticking this long after the last record

        Returns:
            Every batch emitted during the replay
        """
        started = False
        for record in records:
            if not started:
                self.clock.now = record.t
                self.runtime.start(ticker=False)
                started = True
            self._advance_to(record.t)
            self._apply(record)

        if started and drain_seconds > 0:
            self._advance_to(self.clock.now + drain_seconds)
        return self.batches

    def _advance_to(self, target: float) -> None:
        step = max(self.config.tick_seconds, 0.001)
        while self.clock.now + step <= target:
            self.clock.advance(step)
            self.runtime.tick()
        if self.clock.now < target:
            self.clock.now = target
            self.runtime.tick()

    def _apply(self, record: ReplayRecord) -> None:
        payload = record.payload
        kind = record.kind

        if kind == "transcript":
            segments = []
            for raw in payload.get("segments", []):
                raw = dict(raw)
                raw.setdefault("timestamp", iso_at(record.t))
                segments.append(TranscriptSegment.from_dict(raw))
            self.runtime.on_transcript(segments)
        elif kind == "rows":
            self.runtime.on_transcript_rows(
                payload.get("rows", []), session_id=payload.get("session_id")
            )
        elif kind == "game_event":
            self.runtime.on_game_event(payload.get("event_type", ""), payload.get("data"))
        elif kind == "chat":
            self.runtime.on_chat_message(
                payload.get("content", ""),
                timestamp=iso_at(record.t),
                is_gm=payload.get("is_gm", True),
            )
        elif kind == "npc_cache":
            self.runtime.install_npc_cache(
                NpcCacheEntry.from_dict(e) for e in payload.get("entries", [])
            )
        elif kind == "scene_index":
            self.runtime.install_scene_index(
                SceneIndexEntry.from_dict(e) for e in payload.get("entries", [])
            )
        elif kind == "tick":
            pass
        else:
            logger.warning(f"Unknown replay record kind: {kind}")
