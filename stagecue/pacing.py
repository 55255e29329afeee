"""
Session lifecycle state machine.

PacingStateManager is the single source of truth for the assistant state
(PREGAME/ACTIVE/SLEEP), act and scene timers, spotlight/engagement
bookkeeping, planted seeds, open threads, freshness stamps and cache-build
status. It performs no I/O and runs no timers: callers drive
``update_elapsed`` explicitly, and the classifier decides which transitions
are legal before calling ``transition_to``.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional, Set

from .types import (
    ActivationSource,
    AssistantState,
    CacheBuildStatus,
    ClimaxProximity,
    EngagementLevel,
    SeparationStatus,
)
from .util import TimeLike, iso_at, parse_iso, round_half_up, to_epoch

logger = logging.getLogger(__name__)


@dataclass
class Timing:
    """Timing block for the current act or scene."""
    started_at: Optional[str] = None
    planned_max_minutes: int = 0
    elapsed_minutes: int = 0


@dataclass
class PlantedSeed:
    name: str
    planted_in_scene: str
    revealed: bool = False


@dataclass
class PacingState:
    """
    Full lifecycle record for one session.

    Attributes:
        session_start: ISO time the session was started
        current_act: Act number (1-based)
        current_scene: Scene name (empty before the first /scene)
        current_thread: Active narrative thread
        act_timing: Timer block for the current act
        scene_timing: Timer block for the current scene
        next_planned_beat: Next beat the GM intends to hit
        spotlight_debt: Player -> debt (higher = owed more spotlight)
        players_without_recent_spotlight: Derived from spotlight_debt (debt > 0)
        engagement_signals: Player -> engagement level
        separation_status: Party split status
        climax_proximity: How close the story is to its climax
        planted_seeds: Foreshadowing seeds and whether they were revealed
        open_threads: Unresolved threads
        assistant_state: Lifecycle phase
        activation_source: Mechanism behind the last PREGAME -> ACTIVE
        session_end_time: Planned end of session (ISO)
        npc_cache_status: Build status of the NPC cache
        scene_index_status: Build status of the scene index
    """
    session_start: Optional[str] = None
    current_act: int = 1
    current_scene: str = ""
    current_thread: str = ""
    act_timing: Timing = field(default_factory=Timing)
    scene_timing: Timing = field(default_factory=Timing)
    next_planned_beat: str = ""
    spotlight_debt: Dict[str, int] = field(default_factory=dict)
    players_without_recent_spotlight: List[str] = field(default_factory=list)
    engagement_signals: Dict[str, EngagementLevel] = field(default_factory=dict)
    separation_status: SeparationStatus = SeparationStatus.NORMAL
    climax_proximity: ClimaxProximity = ClimaxProximity.NORMAL
    planted_seeds: List[PlantedSeed] = field(default_factory=list)
    open_threads: List[str] = field(default_factory=list)
    assistant_state: AssistantState = AssistantState.PREGAME
    activation_source: Optional[ActivationSource] = None
    session_end_time: Optional[str] = None
    npc_cache_status: CacheBuildStatus = CacheBuildStatus.IDLE
    scene_index_status: CacheBuildStatus = CacheBuildStatus.IDLE

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        data = asdict(self)
        data["engagement_signals"] = {k: v.value for k, v in self.engagement_signals.items()}
        data["separation_status"] = self.separation_status.value
        data["climax_proximity"] = self.climax_proximity.value
        data["assistant_state"] = self.assistant_state.value
        data["activation_source"] = (
            self.activation_source.value if self.activation_source else None
        )
        data["npc_cache_status"] = self.npc_cache_status.value
        data["scene_index_status"] = self.scene_index_status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PacingState":
        """Deserialize from a dictionary produced by to_dict()."""
        source = data.get("activation_source")
        return cls(
            session_start=data.get("session_start"),
            current_act=int(data.get("current_act", 1)),
            current_scene=data.get("current_scene", ""),
            current_thread=data.get("current_thread", ""),
            act_timing=Timing(**data.get("act_timing", {})),
            scene_timing=Timing(**data.get("scene_timing", {})),
            next_planned_beat=data.get("next_planned_beat", ""),
            spotlight_debt=dict(data.get("spotlight_debt", {})),
            players_without_recent_spotlight=list(
                data.get("players_without_recent_spotlight", [])
            ),
            engagement_signals={
                k: EngagementLevel(v) for k, v in data.get("engagement_signals", {}).items()
            },
            separation_status=SeparationStatus(data.get("separation_status", "NORMAL")),
            climax_proximity=ClimaxProximity(data.get("climax_proximity", "NORMAL")),
            planted_seeds=[PlantedSeed(**s) for s in data.get("planted_seeds", [])],
            open_threads=list(data.get("open_threads", [])),
            assistant_state=AssistantState(data.get("assistant_state", "PREGAME")),
            activation_source=ActivationSource(source) if source else None,
            session_end_time=data.get("session_end_time"),
            npc_cache_status=CacheBuildStatus(data.get("npc_cache_status", "idle")),
            scene_index_status=CacheBuildStatus(data.get("scene_index_status", "idle")),
        )


@dataclass
class FreshnessMetadata:
    """Timestamps the context assembler uses to detect stale inputs."""
    transcript_cursor: int = 0
    transcript_latest_ts: Optional[str] = None
    game_state_ts: Optional[str] = None
    wiki_last_fetch_ts: Optional[str] = None
    state_assembled_at: Optional[str] = None
    npc_cache_built_at: Optional[str] = None
    scene_index_built_at: Optional[str] = None
    stale_threshold_seconds: float = 30.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FreshnessMetadata":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


class PacingStateManager:
    """
    Holds and mutates the session lifecycle record.

    Every operation is total: unknown player or thread names are inserted,
    and nothing raises.

    Example:
        >>> pacing = PacingStateManager()
        >>> pacing.start_session()
        >>> pacing.advance_scene("Station Assault", planned_minutes=20)
        >>> pacing.update_elapsed()
        >>> pacing.is_scene_overrun(threshold_minutes=10)
        False
    """

    def __init__(
        self,
        stale_threshold_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self._state = PacingState()
        self._freshness = FreshnessMetadata(stale_threshold_seconds=stale_threshold_seconds)
        # Scene names whose overrun alert already fired during the current visit
        self._overrun_fired: Set[str] = set()

    @property
    def state(self) -> PacingState:
        return self._state

    @property
    def freshness(self) -> FreshnessMetadata:
        return self._freshness

    def _now_iso(self) -> str:
        return iso_at(self._clock())

    # Lifecycle

    @property
    def assistant_state(self) -> AssistantState:
        return self._state.assistant_state

    def transition_to(self, new_state: AssistantState) -> None:
        """Set the assistant state. Callers are responsible for legality."""
        self._state.assistant_state = new_state

    def set_activation_source(self, source: Optional[ActivationSource]) -> None:
        self._state.activation_source = source

    def set_session_end_time(self, session_end_time: Optional[str]) -> None:
        self._state.session_end_time = session_end_time

    def set_npc_cache_status(self, status: CacheBuildStatus) -> None:
        self._state.npc_cache_status = status

    def set_scene_index_status(self, status: CacheBuildStatus) -> None:
        self._state.scene_index_status = status

    def start_session(self) -> None:
        self._state.session_start = self._now_iso()
        self._state.assistant_state = AssistantState.PREGAME
        self._state.activation_source = None
        self._state.npc_cache_status = CacheBuildStatus.IDLE
        self._state.scene_index_status = CacheBuildStatus.IDLE

    # Timers

    def update_elapsed(self, now: Optional[TimeLike] = None) -> None:
        """Recompute elapsed minutes for the act and scene timers."""
        now_ts = to_epoch(now) if now is not None else self._clock()
        for timing in (self._state.act_timing, self._state.scene_timing):
            started = parse_iso(timing.started_at)
            if started is not None:
                timing.elapsed_minutes = round_half_up((now_ts - started) / 60.0)

    def is_scene_overrun(self, threshold_minutes: float) -> bool:
        """True if the current scene ran past its plan by more than the threshold."""
        timing = self._state.scene_timing
        if timing.planned_max_minutes <= 0:
            return False
        return timing.elapsed_minutes > timing.planned_max_minutes + threshold_minutes

    def has_overrun_fired(self) -> bool:
        return self._state.current_scene in self._overrun_fired

    def mark_overrun_fired(self) -> None:
        self._overrun_fired.add(self._state.current_scene)

    # Scene / act advancement

    def advance_scene(self, scene_name: str, planned_minutes: int = 0) -> None:
        self._state.current_scene = scene_name
        self._state.scene_timing = Timing(
            started_at=self._now_iso(),
            planned_max_minutes=planned_minutes,
            elapsed_minutes=0,
        )
        # Revisiting a scene re-arms its overrun alert
        self._overrun_fired.discard(scene_name)

    def advance_act(self, act_number: int, planned_minutes: int = 0) -> None:
        self._state.current_act = act_number
        self._state.act_timing = Timing(
            started_at=self._now_iso(),
            planned_max_minutes=planned_minutes,
            elapsed_minutes=0,
        )
        self._overrun_fired.clear()

    def set_thread(self, thread: str) -> None:
        self._state.current_thread = thread

    def set_next_beat(self, beat: str) -> None:
        self._state.next_planned_beat = beat

    # Spotlight / engagement

    def set_spotlight(self, player: str, debt: int) -> None:
        self._state.spotlight_debt[player] = debt
        self._state.players_without_recent_spotlight = [
            name for name, d in self._state.spotlight_debt.items() if d > 0
        ]

    def set_engagement(self, player: str, level: EngagementLevel) -> None:
        self._state.engagement_signals[player] = level

    def set_separation(self, status: SeparationStatus) -> None:
        self._state.separation_status = status

    def set_climax_proximity(self, proximity: ClimaxProximity) -> None:
        self._state.climax_proximity = proximity

    # Seeds / threads

    def add_seed(self, name: str, scene: str) -> None:
        self._state.planted_seeds.append(PlantedSeed(name=name, planted_in_scene=scene))

    def reveal_seed(self, name: str) -> None:
        for seed in self._state.planted_seeds:
            if seed.name == name:
                seed.revealed = True
                return

    def add_thread(self, thread: str) -> None:
        if thread not in self._state.open_threads:
            self._state.open_threads.append(thread)

    def close_thread(self, thread: str) -> None:
        self._state.open_threads = [t for t in self._state.open_threads if t != thread]

    # Freshness

    def update_transcript_freshness(self, cursor: int, latest_ts: str) -> None:
        self._freshness.transcript_cursor = cursor
        self._freshness.transcript_latest_ts = latest_ts

    def update_game_state_freshness(self, ts: str) -> None:
        self._freshness.game_state_ts = ts

    def update_wiki_freshness(self, ts: str) -> None:
        self._freshness.wiki_last_fetch_ts = ts

    def mark_npc_cache_built(self, ts: Optional[str] = None) -> None:
        self._freshness.npc_cache_built_at = ts or self._now_iso()

    def mark_scene_index_built(self, ts: Optional[str] = None) -> None:
        self._freshness.scene_index_built_at = ts or self._now_iso()

    def mark_assembled(self) -> None:
        self._freshness.state_assembled_at = self._now_iso()

    def is_stale(self, ts: Optional[str], now: Optional[TimeLike] = None) -> bool:
        """True if the timestamp is missing or older than the stale threshold."""
        stamped = parse_iso(ts)
        if stamped is None:
            return True
        now_ts = to_epoch(now) if now is not None else self._clock()
        return now_ts - stamped > self._freshness.stale_threshold_seconds

    def stale_sources(self, now: Optional[TimeLike] = None) -> List[str]:
        stale = []
        if self.is_stale(self._freshness.transcript_latest_ts, now):
            stale.append("transcript")
        if self.is_stale(self._freshness.game_state_ts, now):
            stale.append("game_state")
        return stale

    # Snapshots

    def snapshot(self) -> Dict[str, Any]:
        """Deep-copied, JSON-safe export of state and freshness."""
        return {
            "state": self._state.to_dict(),
            "freshness": self._freshness.to_dict(),
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        data = copy.deepcopy(snapshot)
        self._state = PacingState.from_dict(data.get("state", {}))
        self._freshness = FreshnessMetadata.from_dict(data.get("freshness", {}))

    def save(self, path: str) -> None:
        """Persist a snapshot to JSON (temp file + rename)."""
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.snapshot(), f, indent=2)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.debug(f"Pacing state saved to {path}")

    def load(self, path: str) -> bool:
        """Restore from a snapshot file. Returns False if missing or corrupt."""
        if not os.path.exists(path):
            return False
        try:
            with open(path, "r", encoding="utf-8") as f:
                self.restore(json.load(f))
        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load pacing state from {path}: {e}")
            return False
        return True

    def reset(self) -> None:
        self._state = PacingState()
        self._freshness = FreshnessMetadata(
            stale_threshold_seconds=self._freshness.stale_threshold_seconds
        )
        self._overrun_fired.clear()
