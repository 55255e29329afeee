"""
Real-time trigger classification and arbitration.

TriggerDetector turns transcript segments, game events and the passage of
time into prioritized, de-noised batches of TriggerEvents:

- P1: GM questions and hesitation gap-fill, flushed immediately
- P2: scene/act transitions, NPC first appearances, pacing gates
- P3: scene overrun
- P4: GM silence

It also drives the session lifecycle (PREGAME -> ACTIVE -> SLEEP -> ACTIVE)
on the PacingStateManager it is given. The detector runs no threads and
reads no global state: time comes from an injected clock, timers are
deadlines checked by ``tick``, and callers must serialize access (see
``runtime.AssistantRuntime``).
"""
from __future__ import annotations

import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import AssistantConfig
from .core.queues import ArbitrationQueue, DropEvent, MAX_PENDING_EVENTS
from .detection.gates import PacingGates
from .detection.matchers import DEFAULT_RULES, KeywordRule
from .detection.silence import HesitationWatch, SilenceWatch
from .detection.spotting import NpcSpotter, SceneSpotter
from .detection.windows import AutoActivator, FlowTracker
from .logging_config import get_logger
from .pacing import PacingStateManager
from .types import (
    ActivationSource,
    AssistantState,
    NpcCacheEntry,
    SceneIndexEntry,
    TranscriptSegment,
    TriggerBatch,
    TriggerEvent,
    TriggerPriority,
    TriggerType,
    is_legal_transition,
)
from .util import TimeLike, iso_at, parse_iso, to_epoch

logger = get_logger(__name__)

BatchListener = Callable[[TriggerBatch], None]
ActivationListener = Callable[[ActivationSource], None]


class TriggerDetector:
    """
    Event classifier with a bounded, priority-aware arbitration queue.

    Example:
        >>> pacing = PacingStateManager()
        >>> detector = TriggerDetector(pacing, AssistantConfig())
        >>> detector.subscribe(lambda batch: print(batch.priorities))
        >>> detector.on_transcript_update([
        ...     TranscriptSegment("what's the rule for grappling?", "2024-01-01T20:00:00+00:00")
        ... ])
        [<TriggerPriority.P1: 1>]
    """

    def __init__(
        self,
        pacing: PacingStateManager,
        config: Optional[AssistantConfig] = None,
        fuzzy_table: Optional[Dict[str, str]] = None,
        rules: Optional[Sequence[KeywordRule]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the detector.

        Args:
            pacing: Lifecycle state machine read and driven by the detector
            config: Tunables (defaults if None)
            fuzzy_table: Garbled-form -> canonical term table; empty disables
                transcript auto-activation
            rules: Ordered keyword rules (defaults to question/scene/act)
            clock: Epoch-seconds clock used when callers pass no ``now``
        """
        self.pacing = pacing
        self.config = config or AssistantConfig()
        self._clock = clock
        self._rules: List[KeywordRule] = list(rules) if rules is not None else list(DEFAULT_RULES)

        cfg = self.config
        self._queue = ArbitrationQueue(maxsize=MAX_PENDING_EVENTS, on_drop=self._on_drop)
        self._batch_deadline: Optional[float] = None
        self._deferred_deadline: Optional[float] = None
        self._last_flush: Optional[float] = None

        self._flow = FlowTracker()
        self._silence = SilenceWatch(
            alert_seconds=cfg.active_silence_seconds,
            sleep_seconds=cfg.sleep_silence_minutes * 60.0,
        )
        self._hesitation = HesitationWatch(
            cfg.hesitation_keywords, gap_seconds=cfg.hesitation_silence_seconds
        )
        self._activator = AutoActivator(
            fuzzy_table or {},
            window_seconds=cfg.auto_activate_window_minutes * 60.0,
            threshold=cfg.auto_activate_threshold,
            min_term_length=cfg.auto_activate_min_term_length,
        )
        self._npcs = NpcSpotter(fuzzy_table)
        self._scenes = SceneSpotter()
        self._gates = PacingGates(
            convergence_minutes=cfg.convergence_gate_minutes,
            denouement_minutes=cfg.denouement_gate_minutes,
            escalation_delay_minutes=cfg.escalation_delay_minutes,
            final_act=cfg.final_act,
        )

        self._batch_listeners: List[BatchListener] = []
        self._activation_listeners: List[ActivationListener] = []
        self._transitions: Deque[Tuple[str, str, str]] = deque(maxlen=100)

        self._events_queued = 0
        self._events_suppressed = 0
        self._batches_flushed = 0
        self._activations = 0

        if cfg.auto_activate_enabled and not self._activator.enabled:
            logger.warning(
                "Auto-activation enabled but fuzzy match table is empty; "
                "transcript-based activation disabled"
            )

    # Observers

    def subscribe(self, listener: BatchListener) -> None:
        """Register a consumer for flushed batches."""
        self._batch_listeners.append(listener)

    def unsubscribe(self, listener: BatchListener) -> None:
        if listener in self._batch_listeners:
            self._batch_listeners.remove(listener)

    def on_activated(self, listener: ActivationListener) -> None:
        """Register a consumer for activation signals."""
        self._activation_listeners.append(listener)

    # Inputs

    def on_transcript_update(
        self,
        segments: Iterable[TranscriptSegment],
        now: Optional[TimeLike] = None,
    ) -> None:
        """Run every detector over a batch of finalized segments, in order."""
        now_ts = self._now(now)
        for seg in segments:
            self._process_segment(seg, now_ts)
        self._flow.prune(now_ts)

    def on_game_event(
        self,
        event_type: str,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[TimeLike] = None,
    ) -> None:
        """
        Feed a game-engine event. Only ``sceneChange`` is trigger-worthy;
        it also activates a session that is still in PREGAME.
        """
        if event_type != "sceneChange":
            logger.debug(f"Ignoring game event {event_type}")
            return

        now_ts = self._now(now)
        if self.pacing.assistant_state == AssistantState.PREGAME:
            self.activate(ActivationSource.GAME_ENGINE)

        if self.pacing.assistant_state == AssistantState.ACTIVE:
            self._add_event(
                TriggerEvent(
                    type=TriggerType.SCENE_TRANSITION,
                    priority=TriggerPriority.P2,
                    source=ActivationSource.GAME_ENGINE.value,
                    data=dict(data or {}),
                    timestamp=iso_at(now_ts),
                ),
                now_ts,
            )

    def activate(self, source: ActivationSource) -> bool:
        """
        Move to ACTIVE and raise the activation signal.

        PREGAME -> ACTIVE records ``source`` as the activation source.
        SLEEP -> ACTIVE (an explicit wake) signals without touching it.

        Returns:
            True if a transition happened
        """
        old = self.pacing.assistant_state
        if old == AssistantState.ACTIVE:
            return False
        if not self._transition(AssistantState.ACTIVE, f"activated by {source.value}"):
            return False

        if old == AssistantState.PREGAME:
            self.pacing.set_activation_source(source)
            self._activator.clear()
        self._activations += 1

        for listener in list(self._activation_listeners):
            try:
                listener(source)
            except Exception as e:
                logger.error(f"Activation listener failed: {e}", exc_info=True)
        return True

    def sleep(self, reason: str = "command") -> bool:
        """Force ACTIVE -> SLEEP. Ignored in any other state."""
        if self.pacing.assistant_state != AssistantState.ACTIVE:
            return False
        self._hesitation.clear()
        if not self._transition(AssistantState.SLEEP, reason):
            return False
        self._drop_inactive()
        return True

    # Lookup tables

    def set_npc_cache(self, entries: Iterable[NpcCacheEntry]) -> None:
        self._npcs.install(entries)

    def set_scene_index(self, entries: Iterable[SceneIndexEntry]) -> None:
        self._scenes.install(entries)

    @property
    def npc_entries(self) -> Dict[str, NpcCacheEntry]:
        return self._npcs.entries

    @property
    def scene_entries(self) -> Dict[str, SceneIndexEntry]:
        return self._scenes.entries

    def find_npc(self, name: str) -> Optional[NpcCacheEntry]:
        return self._npcs.find(name)

    def backfill_npc_mentions(
        self,
        segments: Iterable[TranscriptSegment],
        now: Optional[TimeLike] = None,
    ) -> int:
        """
        Rescan recent speech for NPCs mentioned while the cache was building.

        Returns:
            Number of NPCs spotted
        """
        if self.pacing.assistant_state != AssistantState.ACTIVE:
            return 0
        now_ts = self._now(now)
        count = 0
        for seg in segments:
            count += self._spot_npcs(seg, now_ts)
        if count:
            logger.info(f"NPC backfill spotted {count} NPC(s)")
        return count

    def reset_pacing_gates(self) -> None:
        self._gates.reset()

    # Timers

    def tick(self, now: Optional[TimeLike] = None) -> None:
        """Evaluate hesitation and any batch/deferred-flush deadline that has passed."""
        now_ts = self._now(now)
        self.check_hesitation(now_ts)

        if self._batch_deadline is not None and now_ts >= self._batch_deadline:
            self._batch_deadline = None
            self.flush(now_ts)

        if self._deferred_deadline is not None and now_ts >= self._deferred_deadline:
            self._deferred_deadline = None
            self.flush(now_ts)

    def run_periodic_checks(self, now: Optional[TimeLike] = None) -> None:
        """Recompute timers, then run silence, overrun and pacing-gate checks."""
        now_ts = self._now(now)
        self.pacing.update_elapsed(now_ts)
        self.check_silence(now_ts)
        self.check_pacing_overrun(self.config.scene_overrun_threshold_minutes, now_ts)
        self.check_pacing_gates(now_ts)

    def check_silence(self, now: Optional[TimeLike] = None) -> None:
        if self.pacing.assistant_state != AssistantState.ACTIVE:
            return
        now_ts = self._now(now)
        silence = self._silence.silence_for(now_ts)
        if silence is None:
            return

        if self._silence.should_sleep(now_ts):
            self.sleep(f"{self.config.sleep_silence_minutes:g}m GM silence")
            return

        if not self._silence.should_alert(now_ts):
            return
        if self._flow.is_flowing(now_ts):
            logger.debug("P4 silence suppressed (flowing dialogue)")
            return

        self._silence.mark_alerted()
        self._add_event(
            TriggerEvent(
                type=TriggerType.SILENCE_DETECTION,
                priority=TriggerPriority.P4,
                source="silence",
                data={"silenceSeconds": round(silence)},
                timestamp=iso_at(now_ts),
            ),
            now_ts,
        )

    def check_hesitation(self, now: Optional[TimeLike] = None) -> None:
        if self.pacing.assistant_state != AssistantState.ACTIVE:
            self._hesitation.clear()
            return
        now_ts = self._now(now)
        due = self._hesitation.due(now_ts)
        if due is None:
            return
        text, gap = due
        self._add_event(
            TriggerEvent(
                type=TriggerType.GM_HESITATION,
                priority=TriggerPriority.P1,
                source="hesitation",
                data={"transcript": text, "silenceSeconds": round(gap)},
                timestamp=iso_at(now_ts),
            ),
            now_ts,
        )

    def check_pacing_overrun(
        self, threshold_minutes: float, now: Optional[TimeLike] = None
    ) -> None:
        """Raise one P3 per scene visit once the scene runs past plan + threshold."""
        if self.pacing.assistant_state != AssistantState.ACTIVE:
            return
        if self.pacing.has_overrun_fired():
            return
        if not self.pacing.is_scene_overrun(threshold_minutes):
            return

        now_ts = self._now(now)
        if self._flow.is_flowing(now_ts):
            logger.debug("P3 overrun suppressed (flowing dialogue)")
            return

        self.pacing.mark_overrun_fired()
        state = self.pacing.state
        self._add_event(
            TriggerEvent(
                type=TriggerType.PACING_ALERT,
                priority=TriggerPriority.P3,
                source="pacing",
                data={
                    "scene": state.current_scene,
                    "elapsed": state.scene_timing.elapsed_minutes,
                    "planned": state.scene_timing.planned_max_minutes,
                },
                timestamp=iso_at(now_ts),
            ),
            now_ts,
        )

    def check_pacing_gates(self, now: Optional[TimeLike] = None) -> None:
        if self.pacing.assistant_state != AssistantState.ACTIVE:
            return
        now_ts = self._now(now)
        state = self.pacing.state
        hits = self._gates.check(
            now_ts,
            parse_iso(state.session_end_time),
            state.current_act,
            state.open_threads,
        )
        for hit in hits:
            self._add_event(
                TriggerEvent(
                    type=hit.trigger_type,
                    priority=TriggerPriority.P2,
                    source="pacing-gate",
                    data=hit.data,
                    timestamp=iso_at(now_ts),
                ),
                now_ts,
            )

    # Arbitration

    def flush(self, now: Optional[TimeLike] = None) -> Optional[TriggerBatch]:
        """
        Emit all pending events as one batch.

        Blocked by the cooldown unless a P1 or P2 is pending; a blocked flush
        schedules a single deferred flush for when the cooldown ends.
        Outside ACTIVE only P1 events are emitted; anything else still
        pending from before the state change is discarded as suppressed.

        Returns:
            The emitted batch, or None if nothing was emitted
        """
        if self.pacing.assistant_state != AssistantState.ACTIVE:
            self._drop_inactive()
        if self._queue.is_empty():
            return None

        now_ts = self._now(now)
        min_interval = self.config.min_interval_seconds
        exempt = self._queue.has_urgent()

        if (
            not exempt
            and self._last_flush is not None
            and now_ts - self._last_flush < min_interval
        ):
            if self._deferred_deadline is None:
                self._deferred_deadline = self._last_flush + min_interval
                logger.debug(
                    f"Deferring flush by {self._deferred_deadline - now_ts:.1f}s (cooldown)"
                )
            return None

        self._batch_deadline = None
        self._deferred_deadline = None

        batch = TriggerBatch(events=self._queue.drain_sorted(), flushed_at=iso_at(now_ts))
        self._last_flush = now_ts
        self._batches_flushed += 1

        priorities = ", ".join(f"P{int(p)}" for p in batch.priorities)
        logger.info(f"Flushing {len(batch.events)} events [{priorities}]")

        for listener in list(self._batch_listeners):
            try:
                listener(batch)
            except Exception as e:
                logger.error(f"Batch listener failed: {e}", exc_info=True)
        return batch

    @property
    def pending(self) -> List[TriggerEvent]:
        return self._queue.peek()

    @property
    def batch_deadline(self) -> Optional[float]:
        return self._batch_deadline

    @property
    def deferred_deadline(self) -> Optional[float]:
        return self._deferred_deadline

    @property
    def transitions(self) -> List[Tuple[str, str, str]]:
        """Recent (old, new, reason) lifecycle transitions."""
        return list(self._transitions)

    def is_flowing(self, now: Optional[TimeLike] = None) -> bool:
        return self._flow.is_flowing(self._now(now))

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self.pacing.assistant_state.value,
            "pending": len(self._queue),
            "events_queued": self._events_queued,
            "events_suppressed": self._events_suppressed,
            "batches_flushed": self._batches_flushed,
            "activations": self._activations,
            "last_flush": iso_at(self._last_flush) if self._last_flush is not None else None,
            "auto_activate_terms": self._activator.distinct_terms(),
            "queue": self._queue.stats(),
            "npcs_served": sum(1 for e in self._npcs.entries.values() if e.served),
            "scenes_served": sum(1 for e in self._scenes.entries.values() if e.served),
        }

    # Internals

    def _now(self, now: Optional[TimeLike]) -> float:
        return to_epoch(now) if now is not None else self._clock()

    def _is_gm(self, seg: TranscriptSegment) -> bool:
        gm = self.config.gm_identifier.strip()
        if not gm:
            return True
        return seg.is_from(gm)

    def _transition(self, new_state: AssistantState, reason: str) -> bool:
        old = self.pacing.assistant_state
        if not is_legal_transition(old, new_state):
            logger.warning(f"Refusing illegal transition {old.value} -> {new_state.value}")
            return False
        self.pacing.transition_to(new_state)
        self._transitions.append((old.value, new_state.value, reason))
        logger.transition(old.value, new_state.value, reason)
        return True

    def _process_segment(self, seg: TranscriptSegment, now: float) -> None:
        is_gm = self._is_gm(seg)
        if is_gm:
            self._silence.heard_gm(now)
            self._hesitation.on_gm_speech(seg.text, now)
        else:
            self._hesitation.on_other_speech()

        self._flow.record(seg.speaker_id, now)

        # Only GM speech wakes; anyone else would be put back to sleep on the next check
        if self.pacing.assistant_state == AssistantState.SLEEP and is_gm:
            self._transition(AssistantState.ACTIVE, "GM speech")

        if (
            self.pacing.assistant_state == AssistantState.PREGAME
            and self.config.auto_activate_enabled
            and self._activator.enabled
            and self._activator.observe(seg.text, now)
        ):
            self.activate(ActivationSource.TRANSCRIPT)

        state = self.pacing.assistant_state
        timestamp = seg.timestamp if parse_iso(seg.timestamp) is not None else iso_at(now)

        for rule in self._rules:
            if rule.active_only and state != AssistantState.ACTIVE:
                continue
            if rule.matches(seg.text):
                self._add_event(
                    TriggerEvent(
                        type=rule.trigger_type,
                        priority=rule.priority,
                        source=rule.source or seg.user_id or "unknown",
                        data={"transcript": seg.text},
                        timestamp=timestamp,
                    ),
                    now,
                )

        if state == AssistantState.ACTIVE:
            self._spot_npcs(seg, now)
            self._spot_scenes(seg, now)

    def _spot_npcs(self, seg: TranscriptSegment, now: float) -> int:
        timestamp = seg.timestamp if parse_iso(seg.timestamp) is not None else iso_at(now)
        spotted = self._npcs.spot(seg.text, timestamp)
        for entry in spotted:
            self._add_event(
                TriggerEvent(
                    type=TriggerType.NPC_FIRST_APPEARANCE,
                    priority=TriggerPriority.P2,
                    source="npc-cache",
                    data={
                        "npc_name": entry.display_name,
                        "npc_pronunciation": entry.pronunciation,
                        "npc_brief": entry.brief,
                        "npc_card": entry.full_card,
                    },
                    timestamp=timestamp,
                ),
                now,
            )
        return len(spotted)

    def _spot_scenes(self, seg: TranscriptSegment, now: float) -> None:
        timestamp = seg.timestamp if parse_iso(seg.timestamp) is not None else iso_at(now)
        for entry, matched in self._scenes.observe(seg.text, now, timestamp):
            self._add_event(
                TriggerEvent(
                    type=TriggerType.SCENE_DETECTED,
                    priority=TriggerPriority.P2,
                    source="scene-index",
                    data={
                        "scene_id": entry.id,
                        "scene_title": entry.title,
                        "scene_card": entry.card,
                        "matched_keywords": matched,
                    },
                    timestamp=timestamp,
                ),
                now,
            )

    def _add_event(self, event: TriggerEvent, now: float) -> bool:
        state = self.pacing.assistant_state
        if state != AssistantState.ACTIVE and event.priority != TriggerPriority.P1:
            self._events_suppressed += 1
            logger.debug(f"Suppressing {event.type.value} in {state.value}")
            return False

        if not self._queue.put(event):
            return False

        self._events_queued += 1
        logger.trigger(
            event.type.value,
            int(event.priority),
            f"{event.type.value} from {event.source}",
            source=event.source,
        )

        if event.priority == TriggerPriority.P1:
            self.flush(now)
        elif self._batch_deadline is None:
            self._batch_deadline = now + self.config.batch_window_seconds
        return True

    def _drop_inactive(self) -> None:
        dropped = self._queue.discard(lambda e: e.priority != TriggerPriority.P1)
        if not dropped:
            return
        self._events_suppressed += len(dropped)
        logger.debug(
            f"Discarded {len(dropped)} pending non-P1 event(s) in "
            f"{self.pacing.assistant_state.value}"
        )
        if self._queue.is_empty():
            self._batch_deadline = None
            self._deferred_deadline = None

    def _on_drop(self, drop: DropEvent) -> None:
        logger.warning(
            f"Arbitration queue full: {drop.reason} {drop.trigger_type} P{drop.priority}"
        )
