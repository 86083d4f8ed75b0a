# -*- coding: utf-8 -*-
"""
Per-email correspondence between two runs.

Transactions are hash-joined on source email id. Emails with one transaction
per side become a Comparison; emails where either side produced more than one
transaction become a MultiTransactionEmail with a greedy heuristic pairing.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from reconciler.pipeline.differ import compare_transactions, pair_transactions
from reconciler.pipeline.normalize import calendar_day, normalize_text
from reconciler.shared.field_rules import FieldRules, get_field_rules
from reconciler.types import (
    Comparison,
    ComparisonStatus,
    MultiTransactionEmail,
    Transaction,
    TransactionPair,
)

logger = logging.getLogger(__name__)

# Review order: disagreements first, agreements last
STATUS_ORDER = {
    ComparisonStatus.DIFFERENT: 0,
    ComparisonStatus.ONLY_A: 1,
    ComparisonStatus.ONLY_B: 2,
    ComparisonStatus.MATCH: 3,
}


@dataclass
class MatchOutcome:
    comparisons: List[Comparison] = field(default_factory=list)
    multi_transaction_emails: List[MultiTransactionEmail] = field(default_factory=list)


def group_by_email(transactions: Iterable[Transaction]) -> Dict[str, List[Transaction]]:
    """
    Group transactions by source email, each group ordered by transaction id.

    Ordering by id pins the greedy pairing below to a reproducible result
    regardless of the order the store returned rows in.
    """
    grouped: Dict[str, List[Transaction]] = defaultdict(list)
    for tx in transactions:
        if not tx.source_email_id:
            logger.debug(f"Skipping transaction {tx.id} without source email")
            continue
        grouped[tx.source_email_id].append(tx)
    for txs in grouped.values():
        txs.sort(key=lambda t: t.id)
    return dict(grouped)


def _pairing_key(tx: Transaction, rules: FieldRules) -> Tuple:
    values = []
    for name in rules.pairing:
        value = getattr(tx, name, None)
        values.append(calendar_day(value) if name in rules.date else normalize_text(value))
    return tuple(values)


def is_equivalent(a: Transaction, b: Transaction, rules: Optional[FieldRules] = None) -> bool:
    """Same type, same amount string, same symbol, same calendar day."""
    rules = rules or get_field_rules()
    return _pairing_key(a, rules) == _pairing_key(b, rules)


def greedy_pairs(
    a_transactions: List[Transaction],
    b_transactions: List[Transaction],
    rules: Optional[FieldRules] = None,
) -> Tuple[List[TransactionPair], List[Transaction], List[Transaction]]:
    """
    Pair A transactions with the first unused equivalent B transaction.

    Not a global optimum: A is walked in order and each takes the earliest
    matching B. Leftovers on either side stay unmatched for manual selection.
    """
    rules = rules or get_field_rules()
    used_b: set[int] = set()
    pairs: List[TransactionPair] = []
    unmatched_a: List[Transaction] = []

    b_keys = [_pairing_key(b, rules) for b in b_transactions]
    for a in a_transactions:
        key = _pairing_key(a, rules)
        match_index = next(
            (i for i, b_key in enumerate(b_keys) if i not in used_b and b_key == key),
            None,
        )
        if match_index is None:
            unmatched_a.append(a)
            continue
        used_b.add(match_index)
        pairs.append(pair_transactions(a, b_transactions[match_index], rules))

    unmatched_b = [b for i, b in enumerate(b_transactions) if i not in used_b]
    return pairs, unmatched_a, unmatched_b


def match_email(
    email_id: str,
    a_transactions: List[Transaction],
    b_transactions: List[Transaction],
    rules: Optional[FieldRules] = None,
) -> Union[Comparison, MultiTransactionEmail, None]:
    """Classify one email. Returns None when neither run has a transaction."""
    if not a_transactions and not b_transactions:
        return None

    if len(a_transactions) <= 1 and len(b_transactions) <= 1:
        a = a_transactions[0] if a_transactions else None
        b = b_transactions[0] if b_transactions else None
        return compare_transactions(email_id, a, b, rules)

    if a_transactions and b_transactions:
        pairs, unmatched_a, unmatched_b = greedy_pairs(a_transactions, b_transactions, rules)
    else:
        # No counterpart to diff against
        pairs, unmatched_a, unmatched_b = [], list(a_transactions), list(b_transactions)

    return MultiTransactionEmail(
        email_id=email_id,
        a_transactions=list(a_transactions),
        b_transactions=list(b_transactions),
        pairs=pairs,
        unmatched_a=unmatched_a,
        unmatched_b=unmatched_b,
    )


def match_runs(
    transactions_a: Iterable[Transaction],
    transactions_b: Iterable[Transaction],
    rules: Optional[FieldRules] = None,
) -> MatchOutcome:
    """Classify every email that appears in either run."""
    rules = rules or get_field_rules()
    by_email_a = group_by_email(transactions_a)
    by_email_b = group_by_email(transactions_b)

    outcome = MatchOutcome()
    for email_id in sorted(set(by_email_a) | set(by_email_b)):
        matched = match_email(email_id, by_email_a.get(email_id, []), by_email_b.get(email_id, []), rules)
        if matched is None:
            continue
        if isinstance(matched, MultiTransactionEmail):
            outcome.multi_transaction_emails.append(matched)
        else:
            outcome.comparisons.append(matched)

    outcome.comparisons.sort(key=lambda c: STATUS_ORDER[c.status])
    logger.info(
        f"Matched {len(outcome.comparisons)} single-transaction emails and "
        f"{len(outcome.multi_transaction_emails)} multi-transaction emails"
    )
    return outcome
