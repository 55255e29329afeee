"""
Bounded, priority-aware holding area for pending triggers.

Prevents runaway memory growth during trigger storms by:
- Capping the number of pending events
- Evicting the least urgent entry only for a strictly more urgent newcomer
- Recording every drop for stats and logging
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..types import TriggerEvent, TriggerPriority
from ..util import parse_iso

logger = logging.getLogger(__name__)

MAX_PENDING_EVENTS = 100


@dataclass
class DropEvent:
    """Record of an event that did not make it into a batch."""
    stage: str
    timestamp: str
    reason: str          # "rejected" (newcomer dropped) or "evicted" (queued entry dropped)
    queue_size: int
    trigger_type: str
    priority: int

    def to_dict(self):
        return {
            "stage": self.stage,
            "timestamp": self.timestamp,
            "reason": self.reason,
            "queue_size": self.queue_size,
            "trigger_type": self.trigger_type,
            "priority": self.priority,
        }


class ArbitrationQueue:
    """
    Pending-trigger queue with priority eviction.

    When full, an incoming event replaces the single lowest-priority entry
    (the earliest one among equals) only if it is strictly more urgent;
    otherwise the incoming event is dropped. Not thread-safe on its own: the
    owning detector is always driven from one serialized context.

    Example:
        >>> q = ArbitrationQueue(maxsize=2)
        >>> q.put(p4_event)    # True
        >>> q.put(p3_event)    # True
        >>> q.put(p4_event)    # False (not more urgent than the queued P4)
        >>> q.put(p1_event)    # True (queued P4 evicted)
    """

    def __init__(
        self,
        maxsize: int = MAX_PENDING_EVENTS,
        stage: str = "arbitration",
        on_drop: Optional[Callable[[DropEvent], None]] = None,
        max_drop_log: int = 100,
    ):
        """
        Initialize the queue.

        Args:
            maxsize: Maximum pending events
            stage: Name for logging/metrics
            on_drop: Callback when an event is dropped
            max_drop_log: Number of recent drop records to keep
        """
        self.maxsize = maxsize
        self.stage = stage
        self.on_drop = on_drop
        self._max_drop_log = max_drop_log

        self._events: List[TriggerEvent] = []

        # Metrics
        self._put_count = 0
        self._drain_count = 0
        self._drop_count = 0
        self._drops: List[DropEvent] = []

    def put(self, event: TriggerEvent) -> bool:
        """
        Add an event.

        Returns:
            True if queued, False if dropped
        """
        self._put_count += 1

        if len(self._events) >= self.maxsize:
            lowest_idx = 0
            for i in range(1, len(self._events)):
                if self._events[i].priority > self._events[lowest_idx].priority:
                    lowest_idx = i

            if event.priority < self._events[lowest_idx].priority:
                evicted = self._events.pop(lowest_idx)
                self._record_drop(evicted, "evicted")
            else:
                self._record_drop(event, "rejected")
                return False

        self._events.append(event)
        return True

    def has_urgent(self) -> bool:
        """True if any pending event is P1 or P2 (cooldown-exempt)."""
        return any(
            e.priority in (TriggerPriority.P1, TriggerPriority.P2) for e in self._events
        )

    def drain_sorted(self) -> List[TriggerEvent]:
        """Remove and return all pending events, most urgent then earliest first."""
        events = sorted(self._events, key=_arbitration_key)
        self._events = []
        self._drain_count += 1
        return events

    def discard(self, predicate: Callable[[TriggerEvent], bool]) -> List[TriggerEvent]:
        """Remove pending events matching predicate, return them in queue order."""
        removed = [e for e in self._events if predicate(e)]
        if removed:
            self._events = [e for e in self._events if not predicate(e)]
        return removed

    def peek(self) -> List[TriggerEvent]:
        return list(self._events)

    def _record_drop(self, event: TriggerEvent, reason: str) -> None:
        self._drop_count += 1

        drop = DropEvent(
            stage=self.stage,
            timestamp=datetime.now(timezone.utc).isoformat(),
            reason=reason,
            queue_size=len(self._events),
            trigger_type=event.type.value,
            priority=int(event.priority),
        )
        self._drops.append(drop)
        if len(self._drops) > self._max_drop_log:
            self._drops = self._drops[-self._max_drop_log:]

        logger.debug(
            f"Queue {self.stage}: {reason} {event.type.value} P{int(event.priority)} "
            f"(size={len(self._events)})"
        )

        if self.on_drop:
            try:
                self.on_drop(drop)
            except Exception as e:
                logger.warning(f"Drop callback error: {e}")

    def clear(self) -> int:
        """Clear queue, return number of events removed."""
        count = len(self._events)
        self._events = []
        return count

    def size(self) -> int:
        return len(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def is_empty(self) -> bool:
        return not self._events

    def is_full(self) -> bool:
        return len(self._events) >= self.maxsize

    def stats(self) -> dict:
        return {
            "stage": self.stage,
            "current_size": len(self._events),
            "maxsize": self.maxsize,
            "put_count": self._put_count,
            "drain_count": self._drain_count,
            "drop_count": self._drop_count,
            "drop_rate": self._drop_count / max(1, self._put_count),
        }

    def get_drops(self) -> List[DropEvent]:
        return list(self._drops)


def _arbitration_key(event: TriggerEvent):
    # Offsets vary ("Z" vs "+00:00"), so order on the instant when it parses
    ts = parse_iso(event.timestamp)
    return (event.priority, ts is None, ts or 0.0, event.timestamp)
