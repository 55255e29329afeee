"""
StageCue: real-time trigger classification for a tabletop GM assistant.

Listens to live transcript, game-engine events and the clock, and decides
when the advisory subsystem should be invoked and how urgently.
"""
__version__ = "0.3.0"

from .classifier import TriggerDetector
from .config import AssistantConfig, load_config
from .pacing import PacingState, PacingStateManager
from .runtime import AssistantRuntime
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
)

__all__ = [
    "ActivationSource",
    "AssistantConfig",
    "AssistantRuntime",
    "AssistantState",
    "NpcCacheEntry",
    "PacingState",
    "PacingStateManager",
    "SceneIndexEntry",
    "TranscriptSegment",
    "TriggerBatch",
    "TriggerDetector",
    "TriggerEvent",
    "TriggerPriority",
    "TriggerType",
    "load_config",
]
