"""
Regex matching rules for transcript classification.

Keyword rules are an ordered list of strategies: each KeywordRule owns the
patterns for one trigger type, so new trigger types can be added without
touching the arbitration code.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence

from ..types import TriggerPriority, TriggerType


QUESTION_PATTERNS = [
    re.compile(r"what\s+should", re.IGNORECASE),
    re.compile(r"how\s+does", re.IGNORECASE),
    re.compile(r"remind\s+me", re.IGNORECASE),
    re.compile(r"what(?:'s| is)\s+the\s+rule", re.IGNORECASE),
    re.compile(r"what(?:'s| is)\s+the\s+name\s+of", re.IGNORECASE),
    re.compile(r"can\s+(?:i|they|we|he|she)\s+(?:do|use|invoke)", re.IGNORECASE),
    re.compile(r"how\s+(?:do|does|should)\s+(?:i|we)", re.IGNORECASE),
    re.compile(r"who\s+is", re.IGNORECASE),
    re.compile(r"where\s+is", re.IGNORECASE),
    re.compile(r"tell\s+me\s+about", re.IGNORECASE),
]

SCENE_TRANSITION_PATTERNS = [
    re.compile(r"\bnext\s+scene\b", re.IGNORECASE),
    re.compile(r"\bmeanwhile\b", re.IGNORECASE),
    re.compile(r"\bcut\s+to\b", re.IGNORECASE),
    re.compile(r"\bscene\s+(?:change|transition|shift)\b", re.IGNORECASE),
    re.compile(r"\bback\s+at\b", re.IGNORECASE),
    re.compile(r"\belsewhere\b", re.IGNORECASE),
]

ACT_TRANSITION_PATTERNS = [
    re.compile(r"\bnext\s+act\b", re.IGNORECASE),
    re.compile(r"\bact\s+(?:two|three|2|3|ii|iii)\b", re.IGNORECASE),
    re.compile(r"\bintermission\b", re.IGNORECASE),
]


@dataclass(frozen=True)
class KeywordRule:
    """
    One transcript classification strategy.

    Attributes:
        trigger_type: Event type emitted on a match
        priority: Priority of the emitted event
        patterns: Any match fires the rule
        active_only: Only evaluated while ACTIVE
        source: Event source tag; None means the speaker's user id
    """
    trigger_type: TriggerType
    priority: TriggerPriority
    patterns: Sequence[Pattern]
    active_only: bool = True
    source: Optional[str] = "transcript"

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


DEFAULT_RULES: List[KeywordRule] = [
    KeywordRule(
        TriggerType.GM_QUESTION,
        TriggerPriority.P1,
        QUESTION_PATTERNS,
        active_only=False,
        source=None,
    ),
    KeywordRule(TriggerType.SCENE_TRANSITION, TriggerPriority.P2, SCENE_TRANSITION_PATTERNS),
    KeywordRule(TriggerType.ACT_TRANSITION, TriggerPriority.P2, ACT_TRANSITION_PATTERNS),
]


def term_pattern(term: str) -> Pattern:
    """Whole-word, case-insensitive pattern for a literal term."""
    return re.compile(r"\b" + re.escape(term.strip()) + r"\b", re.IGNORECASE)


def compile_terms(terms: Iterable[str]) -> Dict[str, Pattern]:
    """Map each non-empty term (lowercased) to its whole-word pattern."""
    compiled: Dict[str, Pattern] = {}
    for term in terms:
        key = term.strip().lower()
        if key and key not in compiled:
            compiled[key] = term_pattern(key)
    return compiled


def find_terms(text: str, compiled: Dict[str, Pattern]) -> List[str]:
    """Return the terms that occur in text as whole words."""
    return [term for term, pattern in compiled.items() if pattern.search(text)]
