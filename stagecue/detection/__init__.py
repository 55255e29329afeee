"""Independent detectors composed by the trigger classifier."""
from .fuzzy import DEFAULT_FUZZY_PATH, load_fuzzy_table
from .gates import GateHit, PacingGates
from .matchers import (
    ACT_TRANSITION_PATTERNS,
    DEFAULT_RULES,
    QUESTION_PATTERNS,
    SCENE_TRANSITION_PATTERNS,
    KeywordRule,
    compile_terms,
    find_terms,
    term_pattern,
)
from .silence import HesitationWatch, SilenceWatch
from .spotting import NpcSpotter, SceneSpotter
from .windows import AutoActivator, FlowTracker

__all__ = [
    "ACT_TRANSITION_PATTERNS",
    "AutoActivator",
    "DEFAULT_FUZZY_PATH",
    "DEFAULT_RULES",
    "FlowTracker",
    "GateHit",
    "HesitationWatch",
    "KeywordRule",
    "NpcSpotter",
    "PacingGates",
    "QUESTION_PATTERNS",
    "SCENE_TRANSITION_PATTERNS",
    "SceneSpotter",
    "SilenceWatch",
    "compile_terms",
    "find_terms",
    "load_fuzzy_table",
    "term_pattern",
]
