"""
Shared enumerations and data contracts.

Everything that crosses a module boundary lives here: lifecycle states,
trigger priorities and types, the trigger event/batch envelopes, transcript
segments, GM commands and the externally built NPC/scene lookup entries.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class AssistantState(str, Enum):
    """Session lifecycle phase."""
    PREGAME = "PREGAME"  # Social chat before play, P1 only
    ACTIVE = "ACTIVE"    # Active play, full trigger detection
    SLEEP = "SLEEP"      # Long GM silence, P1 only


# Legal lifecycle edges. Nothing else is ever requested by the classifier.
LEGAL_TRANSITIONS = frozenset({
    (AssistantState.PREGAME, AssistantState.ACTIVE),
    (AssistantState.ACTIVE, AssistantState.SLEEP),
    (AssistantState.SLEEP, AssistantState.ACTIVE),
})


def is_legal_transition(old: AssistantState, new: AssistantState) -> bool:
    return (old, new) in LEGAL_TRANSITIONS


class TriggerPriority(IntEnum):
    """Trigger urgency. Lower number wins."""
    P1 = 1  # GM asks for help; immediate flush, no cooldown
    P2 = 2  # Scene/act/NPC/pacing-gate transitions
    P3 = 3  # Scene overrun
    P4 = 4  # GM silence


class TriggerType(str, Enum):
    GM_QUESTION = "gm_question"
    GM_HESITATION = "gm_hesitation"
    SCENE_TRANSITION = "scene_transition"
    ACT_TRANSITION = "act_transition"
    SCENE_DETECTED = "scene_transition_detected"
    NPC_FIRST_APPEARANCE = "npc_first_appearance"
    PACING_GATE_CONVERGENCE = "pacing_gate_convergence"
    PACING_GATE_DENOUEMENT = "pacing_gate_denouement"
    PACING_ALERT = "pacing_alert"
    SILENCE_DETECTION = "silence_detection"


class ActivationSource(str, Enum):
    """What caused the last PREGAME -> ACTIVE transition."""
    GAME_ENGINE = "game_engine"
    COMMAND = "command"
    TRANSCRIPT = "transcript"


class CacheBuildStatus(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"


class EngagementLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class SeparationStatus(str, Enum):
    NORMAL = "NORMAL"
    SPLIT = "SPLIT"
    CRITICAL = "CRITICAL"


class ClimaxProximity(str, Enum):
    NORMAL = "NORMAL"
    APPROACHING = "APPROACHING"
    ESCALATING = "ESCALATING"
    CLIMAX = "CLIMAX"


@dataclass(frozen=True)
class TriggerEvent:
    """
    Immutable classified trigger.

    Attributes:
        type: What was detected
        priority: Urgency tier
        source: Origin tag (speaker id, "transcript", "game_engine", "pacing", ...)
        data: Type-specific payload
        timestamp: ISO-8601 creation time
    """
    type: TriggerType
    priority: TriggerPriority
    source: str
    data: Dict[str, Any]
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "priority": int(self.priority),
            "source": self.source,
            "data": dict(self.data),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerEvent":
        return cls(
            type=TriggerType(data["type"]),
            priority=TriggerPriority(data["priority"]),
            source=data.get("source", "unknown"),
            data=dict(data.get("data", {})),
            timestamp=data["timestamp"],
        )


@dataclass
class TriggerBatch:
    """Ordered events handed to the reasoning subsystem in one flush."""
    events: List[TriggerEvent]
    flushed_at: str

    @property
    def priorities(self) -> List[TriggerPriority]:
        return [e.priority for e in self.events]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "flushed_at": self.flushed_at,
        }


@dataclass
class TranscriptSegment:
    """A finalized piece of speech."""
    text: str
    timestamp: str
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    speaker_label: Optional[str] = None

    @property
    def speaker_id(self) -> Optional[str]:
        # Diarized transcripts share one user id, so the label wins
        return self.speaker_label or self.user_id

    def is_from(self, identifier: str) -> bool:
        """Case-insensitive match against user id, display name or speaker label."""
        ident = identifier.lower()
        return any(
            value is not None and value.lower() == ident
            for value in (self.user_id, self.display_name, self.speaker_label)
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptSegment":
        return cls(
            text=data.get("text", ""),
            timestamp=data.get("timestamp", ""),
            user_id=data.get("user_id"),
            display_name=data.get("display_name"),
            speaker_label=data.get("speaker_label"),
        )


@dataclass
class NpcCacheEntry:
    """
    Pre-built NPC brief, owned by an external builder.

    The classifier only ever flips ``served`` to True (and stamps
    ``last_served_at``); ``reset_served`` is reserved for the explicit
    ``/npc serve`` override.
    """
    key: str
    display_name: str
    pronunciation: str = ""
    brief: str = ""
    full_card: str = ""
    aliases: List[str] = field(default_factory=list)
    served: bool = False
    last_served_at: Optional[str] = None

    def mark_served(self, timestamp: str) -> None:
        self.served = True
        self.last_served_at = timestamp

    def reset_served(self) -> None:
        self.served = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NpcCacheEntry":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class SceneIndexEntry:
    """Keyword-indexed scene card, owned by an external builder."""
    id: str
    title: str
    card: str = ""
    keywords: List[str] = field(default_factory=list)
    npcs: List[str] = field(default_factory=list)
    served: bool = False
    served_at: Optional[str] = None

    def mark_served(self, timestamp: str) -> None:
        self.served = True
        self.served_at = timestamp

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneIndexEntry":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


class GmCommandType(str, Enum):
    ACT = "act"
    SCENE = "scene"
    SPOTLIGHT = "spotlight"
    ENGAGEMENT = "engagement"
    SEPARATION = "separation"
    CLIMAX = "climax"
    SEED = "seed"
    SLEEP = "sleep"
    WAKE = "wake"
    ENDTIME = "endtime"
    NPC = "npc"


@dataclass
class GmCommand:
    type: GmCommandType
    args: List[str]
    raw: str
    timestamp: str
