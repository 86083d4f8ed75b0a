# -*- coding: utf-8 -*-
"""
Pattern grouping of "different" comparisons for bulk review.

Comparisons are partitioned by transaction type (the alphabetically first
when the two runs disagree, so pair order does not matter), then by a
fingerprint of which additional-data keys only one side extracted, then split
by whether any numeric field genuinely disagrees. Everything here is a pure
function of the comparison list; nothing is persisted.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from reconciler.errors import ReconcileErrorCode, ValidationError
from reconciler.pipeline.differ import exclusive_data_keys
from reconciler.types import Comparison, ComparisonStatus, Side, SENTINEL_KINDS

UNKNOWN_TYPE = "unknown"

# Bulk decisions offered on a type group and on any pattern group of 2+ items
BULK_ACTIONS = ("a", "b", "tie", "exclude", "discussion")


@dataclass(frozen=True)
class Fingerprint:
    only_a_keys: Tuple[str, ...] = ()
    only_b_keys: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        left = ", ".join(self.only_a_keys) or "-"
        right = ", ".join(self.only_b_keys) or "-"
        return f"A only: {left} | B only: {right}"


@dataclass
class PatternGroup:
    fingerprint: Fingerprint
    has_numeric_difference: bool
    comparisons: List[Comparison] = field(default_factory=list)

    @property
    def is_standalone(self) -> bool:
        """A single item is shown on its own, without group-level actions."""
        return len(self.comparisons) == 1

    @property
    def bulk_actions(self) -> Tuple[str, ...]:
        return () if self.is_standalone else BULK_ACTIONS

    def to_dict(self) -> dict:
        return {
            "onlyAKeys": list(self.fingerprint.only_a_keys),
            "onlyBKeys": list(self.fingerprint.only_b_keys),
            "label": self.fingerprint.label,
            "hasNumericDifference": self.has_numeric_difference,
            "standalone": self.is_standalone,
            "bulkActions": list(self.bulk_actions),
            "emailIds": [c.email_id for c in self.comparisons],
        }


@dataclass
class TypeGroup:
    type: str
    comparisons: List[Comparison] = field(default_factory=list)
    pattern_groups: List[PatternGroup] = field(default_factory=list)

    @property
    def bulk_actions(self) -> Tuple[str, ...]:
        return BULK_ACTIONS

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "count": len(self.comparisons),
            "bulkActions": list(self.bulk_actions),
            "patternGroups": [g.to_dict() for g in self.pattern_groups],
        }


def fingerprint(comparison: Comparison) -> Fingerprint:
    only_a, only_b = exclusive_data_keys(comparison.a, comparison.b)
    return Fingerprint(only_a_keys=only_a, only_b_keys=only_b)


def _group_sort_key(group: PatternGroup):
    # Numeric disagreements first, then larger groups, then a stable tiebreak
    return (
        0 if group.has_numeric_difference else 1,
        -len(group.comparisons),
        group.fingerprint.only_a_keys,
        group.fingerprint.only_b_keys,
    )


def group_patterns(comparisons: List[Comparison]) -> List[PatternGroup]:
    """Split comparisons of one type into ordered pattern groups."""
    buckets: Dict[Tuple[Fingerprint, bool], List[Comparison]] = defaultdict(list)
    for comparison in comparisons:
        key = (fingerprint(comparison), comparison.has_real_numeric_difference)
        buckets[key].append(comparison)

    groups = [
        PatternGroup(fingerprint=fp, has_numeric_difference=numeric, comparisons=items)
        for (fp, numeric), items in buckets.items()
    ]
    groups.sort(key=_group_sort_key)
    return groups


def group_by_type(comparisons: List[Comparison]) -> List[TypeGroup]:
    """Group the "different" comparisons by type, then by pattern."""
    by_type: Dict[str, List[Comparison]] = defaultdict(list)
    for comparison in comparisons:
        if comparison.status is not ComparisonStatus.DIFFERENT:
            continue
        by_type[comparison.type or UNKNOWN_TYPE].append(comparison)

    groups = [
        TypeGroup(type=tx_type, comparisons=items, pattern_groups=group_patterns(items))
        for tx_type, items in by_type.items()
    ]
    groups.sort(key=lambda g: (-len(g.comparisons), g.type))
    return groups


def build_bulk_updates(comparisons: List[Comparison], action: str) -> List[dict]:
    """
    Turn a bulk action into the update list accepted by ``bulk_set_decision``.

    "a" / "b" pick that side's transaction (emails without one are skipped);
    sentinel actions apply to every comparison.
    """
    if action in SENTINEL_KINDS:
        return [{"email_id": c.email_id, "winner": action} for c in comparisons]
    if action not in (Side.A.value, Side.B.value):
        raise ValidationError.from_code(ReconcileErrorCode.INVALID_WINNER, value=action)

    side = Side(action)
    updates = []
    for comparison in comparisons:
        tx = comparison.transaction(side)
        if tx is not None:
            updates.append({"email_id": comparison.email_id, "winner": tx.id})
    return updates
