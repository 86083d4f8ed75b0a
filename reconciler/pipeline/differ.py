# -*- coding: utf-8 -*-
"""
Field-level diff between two transactions extracted from the same email.

Tracked scalar fields are normalized by kind (numeric, date, boolean, text)
before comparison; additional data is flattened and compared key by key.
Confidence is displayed to reviewers but never diffed.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from reconciler.pipeline.normalize import (
    data_value,
    flatten_data,
    is_absent,
    normalize_field,
)
from reconciler.shared.field_rules import DATA_PREFIX, FieldRules, get_field_rules
from reconciler.types import Comparison, ComparisonStatus, Transaction, TransactionPair

logger = logging.getLogger(__name__)


@dataclass
class DiffResult:
    """Differences between one A/B transaction pair"""
    differences: List[str] = field(default_factory=list)
    data_key_differences: List[str] = field(default_factory=list)
    real_numeric_differences: List[str] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return not self.differences


def is_real_numeric_difference(
    field_name: str,
    a: Transaction,
    b: Transaction,
    rules: Optional[FieldRules] = None,
) -> bool:
    """
    A numeric disagreement where both sides hold a value.

    One side merely missing the field is an extraction omission, not a
    disagreement, and does not count.
    """
    rules = rules or get_field_rules()
    if field_name not in rules.numeric:
        return False
    return not is_absent(getattr(a, field_name, None)) and not is_absent(getattr(b, field_name, None))


def diff_data(a: Transaction, b: Transaction) -> List[str]:
    """Keys of the flattened additional data whose values differ (either side)."""
    flat_a = flatten_data(a.data)
    flat_b = flatten_data(b.data)
    keys = sorted(set(flat_a) | set(flat_b))
    return [key for key in keys if data_value(flat_a.get(key)) != data_value(flat_b.get(key))]


def exclusive_data_keys(a: Optional[Transaction], b: Optional[Transaction]) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """Additional-data keys present only on side A, and only on side B (sorted)."""
    keys_a = {k for k, v in flatten_data(a.data if a else None).items() if data_value(v)}
    keys_b = {k for k, v in flatten_data(b.data if b else None).items() if data_value(v)}
    return tuple(sorted(keys_a - keys_b)), tuple(sorted(keys_b - keys_a))


def diff_transactions(
    a: Transaction,
    b: Transaction,
    rules: Optional[FieldRules] = None,
) -> DiffResult:
    """Compare tracked fields and additional data of two transactions."""
    rules = rules or get_field_rules()
    result = DiffResult()

    for field_name in rules.tracked:
        value_a = normalize_field(field_name, getattr(a, field_name, None), rules)
        value_b = normalize_field(field_name, getattr(b, field_name, None), rules)
        if value_a == value_b:
            continue
        result.differences.append(field_name)
        if is_real_numeric_difference(field_name, a, b, rules):
            result.real_numeric_differences.append(field_name)

    # Data key differences also mark the pair as different
    for key in diff_data(a, b):
        result.data_key_differences.append(key)
        result.differences.append(f"{DATA_PREFIX}{key}")

    return result


def compare_transactions(
    email_id: str,
    a: Optional[Transaction],
    b: Optional[Transaction],
    rules: Optional[FieldRules] = None,
) -> Comparison:
    """Build the Comparison for an email with at most one transaction per run."""
    if a is None and b is None:
        raise ValueError(f"Email {email_id} has no transaction in either run")
    if b is None:
        return Comparison(email_id=email_id, a=a, b=None, status=ComparisonStatus.ONLY_A)
    if a is None:
        return Comparison(email_id=email_id, a=None, b=b, status=ComparisonStatus.ONLY_B)

    diff = diff_transactions(a, b, rules)
    status = ComparisonStatus.MATCH if diff.is_match else ComparisonStatus.DIFFERENT
    if diff.real_numeric_differences:
        logger.debug(f"Email {email_id}: numeric disagreement on {diff.real_numeric_differences}")
    return Comparison(
        email_id=email_id,
        a=a,
        b=b,
        status=status,
        differences=diff.differences,
        data_key_differences=diff.data_key_differences,
        real_numeric_differences=diff.real_numeric_differences,
    )


def pair_transactions(a: Transaction, b: Transaction, rules: Optional[FieldRules] = None) -> TransactionPair:
    """Diff a heuristic pair from a multi-transaction email."""
    diff = diff_transactions(a, b, rules)
    return TransactionPair(
        a=a,
        b=b,
        differences=diff.differences,
        data_key_differences=diff.data_key_differences,
        real_numeric_differences=diff.real_numeric_differences,
    )
