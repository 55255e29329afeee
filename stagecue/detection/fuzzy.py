"""
Garbled speech-to-text dictionary.

Speech recognition mangles invented proper nouns ("dow crush" for
"Daokresh"). The table maps each known garbled form to its canonical
campaign term and feeds both auto-activation and NPC alias matching.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "data",
    "fuzzy_match.yaml",
)


def load_fuzzy_table(path: Optional[str] = None) -> Dict[str, str]:
    """
    Load a {garbled: canonical} table from JSON or YAML.

    Keys starting with "_" are treated as comments. Keys and values are
    lowercased. Any failure yields an empty table, which disables
    transcript-based auto-activation.

    Args:
        path: Table file; defaults to the packaged table

    Returns:
        Mapping of garbled form to canonical term
    """
    path = path or DEFAULT_FUZZY_PATH
    if not os.path.exists(path):
        logger.warning(f"Fuzzy match table not found: {path}")
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        if path.endswith((".yaml", ".yml")):
            raw = yaml.safe_load(content)
        else:
            raw = json.loads(content)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load fuzzy match table {path}: {e}")
        return {}

    if not isinstance(raw, dict):
        logger.warning(f"Fuzzy match table {path} is not a mapping")
        return {}

    table: Dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or key.startswith("_"):
            continue
        if not isinstance(value, str) or not value.strip() or not key.strip():
            continue
        table[key.strip().lower()] = value.strip().lower()

    logger.info(f"Loaded {len(table)} fuzzy match entries from {path}")
    return table
