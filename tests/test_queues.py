"""
Tests for the arbitration queue.

A trigger storm must never grow the queue past its cap, and the most urgent
events must survive.
"""
from stagecue.core.queues import ArbitrationQueue
from stagecue.types import TriggerEvent, TriggerPriority, TriggerType


def make_event(priority, ts="2024-01-01T20:00:00+00:00", kind=TriggerType.PACING_ALERT):
    return TriggerEvent(kind, TriggerPriority(priority), "test", {}, ts)


class TestArbitrationQueue:
    """Test capacity and eviction."""

    def test_respects_maxsize(self):
        q = ArbitrationQueue(maxsize=3)
        for _ in range(10):
            q.put(make_event(4))
        assert q.size() == 3
        assert q.is_full()

    def test_equal_priority_newcomer_rejected(self):
        q = ArbitrationQueue(maxsize=2)
        assert q.put(make_event(4))
        assert q.put(make_event(3))
        assert q.put(make_event(4)) is False
        assert [int(e.priority) for e in q.peek()] == [4, 3]

    def test_more_urgent_newcomer_evicts_lowest(self):
        q = ArbitrationQueue(maxsize=2)
        q.put(make_event(4))
        q.put(make_event(3))
        assert q.put(make_event(1))
        assert sorted(int(e.priority) for e in q.peek()) == [1, 3]

    def test_evicts_earliest_among_equal_lowest(self):
        q = ArbitrationQueue(maxsize=2)
        first = make_event(4, ts="2024-01-01T20:00:00+00:00")
        second = make_event(4, ts="2024-01-01T20:00:05+00:00")
        q.put(first)
        q.put(second)
        q.put(make_event(2))
        assert first not in q.peek()
        assert second in q.peek()

    def test_drops_are_recorded(self):
        drops = []
        q = ArbitrationQueue(maxsize=1, on_drop=drops.append)
        q.put(make_event(3))
        q.put(make_event(4))
        q.put(make_event(1))

        assert [d.reason for d in drops] == ["rejected", "evicted"]
        assert [d.priority for d in drops] == [4, 3]
        stats = q.stats()
        assert stats["drop_count"] == 2
        assert stats["put_count"] == 3
        assert len(q.get_drops()) == 2

    def test_drop_callback_errors_ignored(self):
        def broken(drop):
            raise RuntimeError("boom")

        q = ArbitrationQueue(maxsize=1, on_drop=broken)
        q.put(make_event(3))
        assert q.put(make_event(4)) is False


class TestDrain:

    def test_drain_sorts_by_priority_then_time(self):
        q = ArbitrationQueue()
        late_p2 = make_event(2, ts="2024-01-01T20:00:09+00:00")
        early_p2 = make_event(2, ts="2024-01-01T20:00:01+00:00")
        p4 = make_event(4, ts="2024-01-01T20:00:00+00:00")
        p1 = make_event(1, ts="2024-01-01T20:00:10+00:00")
        for e in (late_p2, p4, p1, early_p2):
            q.put(e)

        assert q.drain_sorted() == [p1, early_p2, late_p2, p4]
        assert q.is_empty()

    def test_drain_orders_by_instant_across_offsets(self):
        q = ArbitrationQueue()
        later = make_event(2, ts="2024-01-01T20:00:00.100000+00:00")
        earlier = make_event(2, ts="2024-01-01T20:00:00Z")
        unparsable = make_event(2, ts="soon")
        for e in (unparsable, later, earlier):
            q.put(e)

        assert q.drain_sorted() == [earlier, later, unparsable]

    def test_discard_returns_removed(self):
        q = ArbitrationQueue()
        p1, p3 = make_event(1), make_event(3)
        q.put(p3)
        q.put(p1)
        assert q.discard(lambda e: e.priority != TriggerPriority.P1) == [p3]
        assert q.peek() == [p1]

    def test_has_urgent(self):
        q = ArbitrationQueue()
        q.put(make_event(3))
        q.put(make_event(4))
        assert not q.has_urgent()
        q.put(make_event(2))
        assert q.has_urgent()

    def test_clear(self):
        q = ArbitrationQueue()
        q.put(make_event(3))
        q.put(make_event(4))
        assert q.clear() == 2
        assert len(q) == 0
