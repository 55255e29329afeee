"""Tests for shared data contracts and serialization."""
from stagecue.types import (
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


def sample_event(priority=TriggerPriority.P2) -> TriggerEvent:
    return TriggerEvent(
        type=TriggerType.NPC_FIRST_APPEARANCE,
        priority=priority,
        source="npc-cache",
        data={"npc_name": "Mara Vell"},
        timestamp="2024-01-01T20:00:00+00:00",
    )


def test_event_dict_roundtrip():
    """Events should survive to_dict/from_dict with enums restored."""
    original = sample_event()
    data = original.to_dict()
    assert data["type"] == "npc_first_appearance"
    assert data["priority"] == 2

    restored = TriggerEvent.from_dict(data)
    assert restored == original
    assert restored.priority is TriggerPriority.P2


def test_batch_priorities():
    batch = TriggerBatch(
        events=[sample_event(TriggerPriority.P1), sample_event(TriggerPriority.P4)],
        flushed_at="2024-01-01T20:00:01+00:00",
    )
    assert batch.priorities == [TriggerPriority.P1, TriggerPriority.P4]
    assert len(batch.to_dict()["events"]) == 2


def test_legal_transitions():
    """Only the three lifecycle edges are legal."""
    assert is_legal_transition(AssistantState.PREGAME, AssistantState.ACTIVE)
    assert is_legal_transition(AssistantState.ACTIVE, AssistantState.SLEEP)
    assert is_legal_transition(AssistantState.SLEEP, AssistantState.ACTIVE)
    assert not is_legal_transition(AssistantState.PREGAME, AssistantState.SLEEP)
    assert not is_legal_transition(AssistantState.SLEEP, AssistantState.PREGAME)
    assert not is_legal_transition(AssistantState.ACTIVE, AssistantState.PREGAME)


def test_segment_speaker_identity():
    """Diarization labels take precedence over the shared user id."""
    seg = TranscriptSegment("hi", "2024-01-01T20:00:00+00:00", user_id="room-mic",
                            display_name="Table", speaker_label="Speaker 2")
    assert seg.speaker_id == "Speaker 2"
    assert seg.is_from("speaker 2")
    assert seg.is_from("ROOM-MIC")
    assert not seg.is_from("gm")
    assert TranscriptSegment("hi", "t", user_id="gm").speaker_id == "gm"


def test_npc_entry_served_flags():
    entry = NpcCacheEntry.from_dict({"key": "mara", "display_name": "Mara", "extra": 1})
    assert not entry.served
    entry.mark_served("2024-01-01T20:00:00+00:00")
    assert entry.served
    assert entry.last_served_at == "2024-01-01T20:00:00+00:00"
    entry.reset_served()
    assert not entry.served


def test_scene_entry_from_dict():
    entry = SceneIndexEntry.from_dict({"id": "s1", "title": "Docks", "keywords": ["pier"]})
    assert entry.keywords == ["pier"]
    assert entry.to_dict()["served"] is False
