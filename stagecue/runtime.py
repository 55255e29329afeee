"""
Runtime owner for the trigger engine.

AssistantRuntime wires the state machine, detector, transcript feed and GM
command processor together and serializes every entry point through one
re-entrant lock: external calls (transcript, game events, chat, cache
installs) and the background ticker all run one at a time, so served flags,
sliding windows and one-shot guards are never updated concurrently.

The ticker evaluates deadlines and hesitation every ``tick_seconds`` and
runs the silence, overrun and pacing-gate checks every
``check_interval_seconds``.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from .classifier import TriggerDetector
from .config import AssistantConfig, parse_session_end_time
from .detection.fuzzy import load_fuzzy_table
from .gm_commands import GmCommandProcessor, parse_gm_command
from .logging_config import get_logger
from .pacing import PacingStateManager
from .transcript import TranscriptFeed
from .types import (
    ActivationSource,
    AssistantState,
    CacheBuildStatus,
    GmCommand,
    NpcCacheEntry,
    SceneIndexEntry,
    TranscriptSegment,
    TriggerBatch,
)
from .util import TimeLike, iso_at, to_epoch

logger = get_logger(__name__)

CacheBuilder = Callable[["AssistantRuntime"], None]


class AssistantRuntime:
    """
    Single-owner runtime around TriggerDetector.

    A cache builder, if given, is called on activation (and on
    ``/npc refresh``) with the runtime itself. It may build synchronously
    or hand off to its own worker, but must finish by calling
    ``install_npc_cache``/``install_scene_index`` or ``mark_cache_failed``.

    Example:
        >>> runtime = AssistantRuntime(AssistantConfig(gm_identifier="gm"))
        >>> runtime.subscribe(lambda batch: print(batch.to_dict()))
        >>> runtime.start()
        >>> runtime.on_transcript([TranscriptSegment("next scene", ts, user_id="gm")])
        >>> runtime.stop()
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        fuzzy_table: Optional[Dict[str, str]] = None,
        cache_builder: Optional[CacheBuilder] = None,
        clock: Callable[[], float] = time.time,
        state_path: Optional[str] = None,
        max_batch_history: int = 50,
    ):
        self.config = config or AssistantConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self.state_path = state_path
        self.cache_builder = cache_builder

        if fuzzy_table is None:
            fuzzy_table = load_fuzzy_table(self.config.fuzzy_match_path or None)

        self.pacing = PacingStateManager(
            stale_threshold_seconds=self.config.stale_threshold_seconds,
            clock=clock,
        )
        self.detector = TriggerDetector(
            self.pacing, self.config, fuzzy_table=fuzzy_table, clock=clock
        )
        self.transcript = TranscriptFeed(final_only=self.config.final_segments_only)
        self.commands = GmCommandProcessor(
            self.pacing, self.detector, on_npc_refresh=self.request_cache_build
        )

        self._batches: Deque[TriggerBatch] = deque(maxlen=max_batch_history)
        self.detector.subscribe(self._batches.append)
        self.detector.on_activated(self._handle_activation)

        self._session_activated = False
        self._last_check: Optional[float] = None
        self._running = False
        self._ticker_thread: Optional[threading.Thread] = None

    # Lifecycle

    def start_session(self) -> None:
        """Begin a fresh session in PREGAME, or resume a saved one."""
        with self._lock:
            if self.state_path and self.pacing.load(self.state_path):
                logger.info(
                    f"Resumed session from {self.state_path} "
                    f"({self.pacing.assistant_state.value})"
                )
            else:
                self.pacing.start_session()
            self._session_activated = self.pacing.assistant_state != AssistantState.PREGAME

    def start(self, ticker: bool = True) -> None:
        """Start the session and, optionally, the background ticker."""
        self.start_session()
        if not ticker or self._running:
            return
        self._running = True
        self._ticker_thread = threading.Thread(
            target=self._ticker_loop,
            daemon=True,
            name="stagecue-ticker",
        )
        self._ticker_thread.start()
        logger.info(
            f"Runtime started (batch={self.config.batch_window_seconds:g}s, "
            f"cooldown={self.config.min_interval_seconds:g}s, "
            f"silence={self.config.active_silence_seconds:g}s)"
        )

    def stop(self) -> None:
        """Stop the ticker and persist state if a state path is set."""
        self._running = False
        if self._ticker_thread:
            self._ticker_thread.join(timeout=5.0)
            self._ticker_thread = None
        if self.state_path:
            self.save_state()
        logger.info("Runtime stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def _ticker_loop(self) -> None:
        while self._running:
            time.sleep(self.config.tick_seconds)
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Ticker error: {e}", exc_info=True)

    def tick(self, now: Optional[TimeLike] = None) -> None:
        """One ticker step: deadlines every call, periodic checks on their cadence."""
        with self._lock:
            now_ts = self._now(now)
            self.detector.tick(now_ts)
            if (
                self._last_check is None
                or now_ts - self._last_check >= self.config.check_interval_seconds
            ):
                self._last_check = now_ts
                self.detector.run_periodic_checks(now_ts)

    # Observers

    def subscribe(self, listener: Callable[[TriggerBatch], None]) -> None:
        with self._lock:
            self.detector.subscribe(listener)

    def on_activated(self, listener: Callable[[ActivationSource], None]) -> None:
        with self._lock:
            self.detector.on_activated(listener)

    # Inputs

    def on_transcript(
        self,
        segments: Iterable[TranscriptSegment],
        now: Optional[TimeLike] = None,
    ) -> None:
        """Feed finalized segments that carry no row ids."""
        segments = list(segments)
        with self._lock:
            now_ts = self._now(now)
            self.transcript.append_segments(segments)
            self._touch_transcript()
            self.detector.on_transcript_update(segments, now_ts)

    def on_transcript_rows(
        self,
        rows: Iterable[Any],
        session_id: Optional[str] = None,
        now: Optional[TimeLike] = None,
    ) -> int:
        """
        Merge raw transcription rows and classify the eligible ones.

        Returns:
            Number of segments handed to the detectors
        """
        with self._lock:
            now_ts = self._now(now)
            segments = self.transcript.ingest(rows, session_id=session_id)
            self._touch_transcript()
            if segments:
                self.detector.on_transcript_update(segments, now_ts)
            return len(segments)

    def on_game_event(
        self,
        event_type: str,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[TimeLike] = None,
    ) -> None:
        with self._lock:
            now_ts = self._now(now)
            self.pacing.update_game_state_freshness(iso_at(now_ts))
            self.detector.on_game_event(event_type, data, now_ts)

    def on_chat_message(
        self,
        text: str,
        timestamp: Optional[str] = None,
        is_gm: bool = True,
    ) -> Optional[GmCommand]:
        """
        Handle a game chat message. Only GM messages may carry commands.

        Returns:
            The parsed command, or None if the message was not a command
        """
        if not is_gm:
            return None
        with self._lock:
            cmd = parse_gm_command(text, timestamp or iso_at(self._clock()))
            if cmd is None:
                return None
            self.commands.apply(cmd)
            return cmd

    # Cache builds

    @property
    def build_in_progress(self) -> bool:
        state = self.pacing.state
        return CacheBuildStatus.BUILDING in (state.npc_cache_status, state.scene_index_status)

    def request_cache_build(self) -> bool:
        """
        Ask the cache builder for fresh NPC/scene tables.

        Returns:
            False if no builder is configured or a build is already running
        """
        with self._lock:
            if self.cache_builder is None:
                logger.debug("No cache builder configured")
                return False
            if self.build_in_progress:
                logger.warning("Cache build already in progress, skipping")
                return False

            self.pacing.set_npc_cache_status(CacheBuildStatus.BUILDING)
            self.pacing.set_scene_index_status(CacheBuildStatus.BUILDING)
            logger.info("Requesting NPC cache and scene index build")
            try:
                self.cache_builder(self)
            except Exception as e:
                logger.error(f"Cache builder failed: {e}", exc_info=True)
                self.mark_cache_failed()
            return True

    def install_npc_cache(self, entries: Iterable[NpcCacheEntry]) -> None:
        """Install a built NPC cache and backfill recent mentions."""
        with self._lock:
            entries = list(entries)
            self.detector.set_npc_cache(entries)
            self.pacing.set_npc_cache_status(CacheBuildStatus.READY)
            self.pacing.mark_npc_cache_built()
            now_ts = self._clock()
            recent = self.transcript.window(self.config.transcript_window_minutes, now_ts)
            self.detector.backfill_npc_mentions(recent, now_ts)

    def install_scene_index(self, entries: Iterable[SceneIndexEntry]) -> None:
        with self._lock:
            self.detector.set_scene_index(list(entries))
            self.pacing.set_scene_index_status(CacheBuildStatus.READY)
            self.pacing.mark_scene_index_built()

    def mark_cache_failed(self, table: str = "all", error: str = "") -> None:
        """Record a failed build for "npc", "scene" or "all" tables."""
        with self._lock:
            if table in ("npc", "all"):
                self.pacing.set_npc_cache_status(CacheBuildStatus.ERROR)
            if table in ("scene", "all"):
                self.pacing.set_scene_index_status(CacheBuildStatus.ERROR)
            logger.warning(f"Cache build failed ({table}){': ' + error if error else ''}")

    def _handle_activation(self, source: ActivationSource) -> None:
        state = self.pacing.state
        if not self._session_activated:
            self._session_activated = True
            logger.info(f"Session activated by {source.value}")
            if self.config.session_end_time and not state.session_end_time:
                end_time = parse_session_end_time(self.config.session_end_time)
                if end_time:
                    self.pacing.set_session_end_time(end_time)
            self.request_cache_build()
            return

        # Waking from sleep: rebuild only what is missing or broken
        stale = (CacheBuildStatus.IDLE, CacheBuildStatus.ERROR)
        if state.npc_cache_status in stale or state.scene_index_status in stale:
            self.request_cache_build()

    # Persistence / introspection

    def save_state(self, path: Optional[str] = None) -> None:
        path = path or self.state_path
        if not path:
            raise ValueError("No state path configured")
        with self._lock:
            self.pacing.save(path)

    def load_state(self, path: Optional[str] = None) -> bool:
        path = path or self.state_path
        if not path:
            return False
        with self._lock:
            loaded = self.pacing.load(path)
            if loaded:
                self._session_activated = (
                    self.pacing.assistant_state != AssistantState.PREGAME
                )
            return loaded

    def recent_batches(self, limit: int = 10) -> List[TriggerBatch]:
        with self._lock:
            batches = list(self._batches)
        return batches[-limit:] if limit > 0 else []

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            snap = self.pacing.snapshot()
            snap["stale_sources"] = self.pacing.stale_sources()
            return snap

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = self.detector.stats()
            stats["running"] = self._running
            stats["build_in_progress"] = self.build_in_progress
            stats["transcript_rows"] = len(self.transcript)
            stats["batches_retained"] = len(self._batches)
            return stats

    # Internals

    def _now(self, now: Optional[TimeLike]) -> float:
        return to_epoch(now) if now is not None else self._clock()

    def _touch_transcript(self) -> None:
        if self.transcript.latest_ts:
            self.pacing.update_transcript_freshness(
                self.transcript.cursor, self.transcript.latest_ts
            )
