# -*- coding: utf-8 -*-
"""
One-shot auto-assignment of one-sided emails.

When a run pair is first loaded, every only_a / only_b email without a
decision gets its sole transaction as winner. The per-pair state machine
below makes "first load" explicit: NOT_STARTED -> IN_FLIGHT -> DONE.
"""

import logging
import threading
from enum import Enum
from typing import Dict, Iterable, Tuple

from reconciler.errors import ReconcileError
from reconciler.services.decision_store import DecisionStore, pair_key
from reconciler.types import Comparison, ComparisonStatus, Winner

logger = logging.getLogger(__name__)


class AutoAssignState(Enum):
    NOT_STARTED = "not_started"
    IN_FLIGHT = "in_flight"
    DONE = "done"


class AutoAssignTracker:
    """Per-session record of which run pairs were already auto-assigned."""

    def __init__(self):
        self._states: Dict[str, AutoAssignState] = {}
        self._lock = threading.Lock()

    def state(self, run_a_id: str, run_b_id: str) -> AutoAssignState:
        return self._states.get(pair_key(run_a_id, run_b_id), AutoAssignState.NOT_STARTED)

    def begin(self, run_a_id: str, run_b_id: str) -> bool:
        """Move NOT_STARTED -> IN_FLIGHT. False if this pair was already started."""
        key = pair_key(run_a_id, run_b_id)
        with self._lock:
            if self._states.get(key, AutoAssignState.NOT_STARTED) is not AutoAssignState.NOT_STARTED:
                return False
            self._states[key] = AutoAssignState.IN_FLIGHT
            return True

    def finish(self, run_a_id: str, run_b_id: str) -> None:
        with self._lock:
            self._states[pair_key(run_a_id, run_b_id)] = AutoAssignState.DONE


def one_sided_assignments(comparisons: Iterable[Comparison], decided: Iterable[str]) -> Iterable[Tuple[str, Winner]]:
    """(email_id, winner) for each undecided one-sided comparison."""
    decided = set(decided)
    for comparison in comparisons:
        if comparison.email_id in decided:
            continue
        if comparison.status is ComparisonStatus.ONLY_A and comparison.a is not None:
            yield comparison.email_id, Winner.from_run(comparison.a.run_id, comparison.a.id)
        elif comparison.status is ComparisonStatus.ONLY_B and comparison.b is not None:
            yield comparison.email_id, Winner.from_run(comparison.b.run_id, comparison.b.id)


def auto_assign(
    tracker: AutoAssignTracker,
    store: DecisionStore,
    run_a_id: str,
    run_b_id: str,
    comparisons: Iterable[Comparison],
) -> int:
    """
    Run the one-shot assignment for a pair if it has not run yet.

    Failures are logged and swallowed: this is a convenience, not a user
    action, and must never block loading the comparison. Concurrent sessions
    may both run it; they write the same winners, so the result converges.
    """
    if not tracker.begin(run_a_id, run_b_id):
        return 0

    if not store.kv.enabled:
        logger.debug(f"Decision store disabled, skipping auto-assign for {run_a_id} vs {run_b_id}")
        tracker.finish(run_a_id, run_b_id)
        return 0

    assigned = 0
    try:
        decided = store.all_decisions().keys()
        for email_id, winner in one_sided_assignments(comparisons, decided):
            try:
                store.set_decision(email_id, winner)
                assigned += 1
            except ReconcileError as e:
                logger.warning(f"Auto-assign failed for email {email_id}: {e}")
    except Exception as e:
        logger.error(f"Auto-assign aborted for {run_a_id} vs {run_b_id}: {e}")
    finally:
        tracker.finish(run_a_id, run_b_id)

    if assigned:
        logger.info(f"Auto-assigned {assigned} one-sided emails for {run_a_id} vs {run_b_id}")
    return assigned
