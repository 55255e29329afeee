"""
Configuration for the trigger engine.

Settings come from three layers, later ones winning:
built-in defaults, a YAML/JSON file, and environment variables.
The resulting AssistantConfig is passed explicitly to every component.
"""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)


DEFAULT_HESITATION_KEYWORDS = [
    "uh",
    "uhh",
    "um",
    "umm",
    "er",
    "hmm",
    "let me think",
    "let me see",
    "hold on",
    "what's his name",
    "what's her name",
    "what was it",
]


@dataclass
class AssistantConfig:
    """
    Tunables for the classifier, arbitration queue and runtime.

    Attributes:
        batch_window_seconds: Width of the non-P1 batching window
        min_interval_seconds: Global cooldown between flushes (P1/P2 exempt)
        scene_overrun_threshold_minutes: Minutes past plan before a P3 alert
        active_silence_seconds: GM silence before a P4 alert
        sleep_silence_minutes: GM silence before ACTIVE -> SLEEP
        transcript_window_minutes: Transcript span handed to the reasoning side
        auto_activate_enabled: Allow transcript-driven PREGAME -> ACTIVE
        auto_activate_window_minutes: Rolling window for campaign terms
        auto_activate_threshold: Distinct campaign terms needed to activate
        auto_activate_min_term_length: Shorter garbled forms are ignored
        hesitation_silence_seconds: Gap after a hesitation before gap-fill
        hesitation_keywords: Phrases that mark GM hesitation
        convergence_gate_minutes: Remaining minutes that open the convergence gate
        denouement_gate_minutes: Remaining minutes that open the denouement gate
        escalation_delay_minutes: Minutes after convergence before escalating
        final_act: Act number that counts as "final" for escalation
        gm_identifier: User id, display name or speaker label of the GM
        session_end_time: Planned session end (ISO-8601 or HH:MM)
        fuzzy_match_path: Garbled-speech dictionary (YAML/JSON)
        final_segments_only: Run detectors on final transcript rows only
        stale_threshold_seconds: Age before freshness stamps count as stale
        tick_seconds: Runtime ticker resolution (deadlines, hesitation)
        check_interval_seconds: Cadence of silence/overrun/gate checks
        log_level: Root log level
        log_dir: Directory for rotating log files (empty = console only)
    """
    batch_window_seconds: float = 30.0
    min_interval_seconds: float = 180.0
    scene_overrun_threshold_minutes: float = 10.0
    active_silence_seconds: float = 90.0
    sleep_silence_minutes: float = 15.0
    transcript_window_minutes: float = 10.0

    auto_activate_enabled: bool = True
    auto_activate_window_minutes: float = 5.0
    auto_activate_threshold: int = 3
    auto_activate_min_term_length: int = 4

    hesitation_silence_seconds: float = 5.0
    hesitation_keywords: List[str] = field(
        default_factory=lambda: list(DEFAULT_HESITATION_KEYWORDS)
    )

    convergence_gate_minutes: float = 45.0
    denouement_gate_minutes: float = 15.0
    escalation_delay_minutes: float = 15.0
    final_act: int = 3

    gm_identifier: str = ""
    session_end_time: str = ""
    fuzzy_match_path: str = ""
    final_segments_only: bool = True
    stale_threshold_seconds: float = 30.0

    tick_seconds: float = 1.0
    check_interval_seconds: float = 10.0

    log_level: str = "INFO"
    log_dir: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssistantConfig":
        """Create from a dictionary, ignoring unknown keys and bad values."""
        config = cls()
        for f in fields(cls):
            if f.name in data:
                _assign(config, f.name, data[f.name])
        return config

    def save(self, path: str) -> None:
        """Save config as YAML or JSON depending on the extension."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.endswith((".yaml", ".yml")):
                yaml.safe_dump(self.to_dict(), f, sort_keys=False)
            else:
                json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> Optional["AssistantConfig"]:
        """Load config from a JSON or YAML file. Returns None on failure."""
        data = _read_mapping(path)
        if data is None:
            return None
        return cls.from_dict(data)


# Environment variable -> config field
ENV_FIELDS: Dict[str, str] = {
    "EVENT_BATCH_WINDOW_SECONDS": "batch_window_seconds",
    "MIN_ADVICE_INTERVAL_SECONDS": "min_interval_seconds",
    "SCENE_OVERRUN_THRESHOLD_MINUTES": "scene_overrun_threshold_minutes",
    "ACTIVE_SILENCE_SECONDS": "active_silence_seconds",
    "SLEEP_SILENCE_MINUTES": "sleep_silence_minutes",
    "TRANSCRIPT_WINDOW_MINUTES": "transcript_window_minutes",
    "AUTO_ACTIVE_ENABLED": "auto_activate_enabled",
    "AUTO_ACTIVE_WINDOW_MINUTES": "auto_activate_window_minutes",
    "AUTO_ACTIVE_THRESHOLD": "auto_activate_threshold",
    "AUTO_ACTIVE_MIN_TERM_LENGTH": "auto_activate_min_term_length",
    "HESITATION_SILENCE_SECONDS": "hesitation_silence_seconds",
    "HESITATION_KEYWORDS": "hesitation_keywords",
    "CONVERGENCE_GATE_MINUTES": "convergence_gate_minutes",
    "DENOUEMENT_GATE_MINUTES": "denouement_gate_minutes",
    "CONVERGENCE_ESCALATION_MINUTES": "escalation_delay_minutes",
    "FINAL_ACT": "final_act",
    "GM_IDENTIFIER": "gm_identifier",
    "SESSION_END_TIME": "session_end_time",
    "STT_FUZZY_MATCH_PATH": "fuzzy_match_path",
    "FINAL_SEGMENTS_ONLY": "final_segments_only",
    "STALE_THRESHOLD_SECONDS": "stale_threshold_seconds",
    "TICK_SECONDS": "tick_seconds",
    "CHECK_INTERVAL_SECONDS": "check_interval_seconds",
    "LOG_LEVEL": "log_level",
    "LOG_DIR": "log_dir",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _coerce(default: Any, value: Any) -> Any:
    """Coerce a raw value to the type of the field default. Raises ValueError."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(default, int):
        return int(str(value).strip())
    if isinstance(default, float):
        return float(str(value).strip())
    if isinstance(default, list):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(v) for v in value]
    return "" if value is None else str(value)


def _assign(config: AssistantConfig, name: str, value: Any) -> None:
    default = getattr(AssistantConfig(), name)
    try:
        setattr(config, name, _coerce(default, value))
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for {name}: {value!r}; keeping {getattr(config, name)!r}")


def _read_mapping(path: str) -> Optional[Dict[str, Any]]:
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        if path.endswith((".yaml", ".yml")):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Config file {path} is not a mapping")
        return None
    return data


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AssistantConfig:
    """
    Build the effective configuration.

    Args:
        path: Optional YAML/JSON file layered over the defaults
        environ: Environment mapping (defaults to os.environ)

    Returns:
        AssistantConfig with file and environment overrides applied
    """
    config = AssistantConfig()
    if path:
        loaded = AssistantConfig.load(path)
        if loaded is not None:
            config = loaded
        else:
            logger.warning(f"Config file {path} not usable; using defaults")

    env = os.environ if environ is None else environ
    for var, name in ENV_FIELDS.items():
        if var in env:
            _assign(config, name, env[var])
    return config


_CLOCK_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_session_end_time(raw: str, now: Optional[datetime] = None) -> Optional[str]:
    """
    Parse a session end time into ISO-8601.

    Accepts full ISO-8601 timestamps or "HH:MM" / "H:MM", the latter meaning
    the next occurrence of that local wall-clock time.

    Returns:
        ISO string, or None if the value cannot be parsed
    """
    raw = (raw or "").strip()
    if not raw:
        return None

    if "-" in raw:
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            dt = None
        if dt is not None:
            if dt.tzinfo is None:
                dt = dt.astimezone()
            return dt.astimezone(timezone.utc).isoformat()

    match = _CLOCK_TIME.match(raw)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours < 24 and minutes < 60:
            current = now or datetime.now().astimezone()
            if current.tzinfo is None:
                current = current.astimezone()
            target = current.replace(hour=hours, minute=minutes, second=0, microsecond=0)
            if target <= current:
                target += timedelta(days=1)
            return target.astimezone(timezone.utc).isoformat()

    logger.warning(f"Could not parse session end time {raw!r}")
    return None
