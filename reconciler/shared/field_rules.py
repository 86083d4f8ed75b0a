# -*- coding: utf-8 -*-
"""
Field rule tables for the differ, matcher and synthesizer.

Rules are loaded once from ``tracked_fields.yaml`` next to this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml


DATA_PREFIX = "data."


@dataclass(frozen=True)
class FieldRules:
    tracked: tuple[str, ...]
    numeric: frozenset[str]
    date: frozenset[str]
    boolean: frozenset[str]
    pairing: tuple[str, ...]
    winner_only: frozenset[str]

    def is_overridable(self, field_name: str) -> bool:
        """Override keys are tracked fields or ``data.<key>`` entries."""
        if field_name.startswith(DATA_PREFIX):
            return len(field_name) > len(DATA_PREFIX)
        return field_name in self.tracked


@lru_cache(maxsize=1)
def _load_rules_from_yaml() -> dict:
    """Load the rule file shipped with the package."""
    config_path = Path(__file__).resolve().parent / "tracked_fields.yaml"
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@lru_cache(maxsize=1)
def get_field_rules() -> FieldRules:
    data = _load_rules_from_yaml()
    tracked = tuple(data.get("tracked") or ())
    unknown = set(data.get("numeric") or ()) - set(tracked)
    if unknown:
        raise ValueError(f"Numeric fields not tracked: {', '.join(sorted(unknown))}")
    return FieldRules(
        tracked=tracked,
        numeric=frozenset(data.get("numeric") or ()),
        date=frozenset(data.get("date") or ()),
        boolean=frozenset(data.get("boolean") or ()),
        pairing=tuple(data.get("pairing") or ()),
        winner_only=frozenset(data.get("winner_only") or ()),
    )
