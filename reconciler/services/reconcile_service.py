# -*- coding: utf-8 -*-
"""
Reconcile Service Module

Engine boundary used by the HTTP API and the CLI. Loads both runs from the
run store, derives comparisons, attaches persisted decisions and overrides,
and validates every mutation before it reaches the decision store.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from reconciler.config import SYNTHESIS_FILL_GAPS
from reconciler.errors import (
    NotFoundError,
    PartialBatchFailure,
    ReconcileError,
    ReconcileErrorCode,
    ValidationError,
)
from reconciler.pipeline.grouper import TypeGroup, group_by_type
from reconciler.pipeline.matcher import MatchOutcome, group_by_email, match_runs
from reconciler.pipeline.summary import summarize
from reconciler.pipeline.synthesizer import synthesize_run
from reconciler.services.auto_assign import AutoAssignTracker, auto_assign
from reconciler.services.decision_store import DecisionStore
from reconciler.services.kv_store import KVStore
from reconciler.services.run_store import RunStore, build_run_store
from reconciler.shared.field_rules import DATA_PREFIX, FieldRules, get_field_rules
from reconciler.types import (
    SENTINEL_KINDS,
    ComparisonResult,
    Decision,
    Run,
    SynthesisResult,
    Transaction,
    Winner,
    to_snake,
)

logger = logging.getLogger(__name__)

EmailIndex = Tuple[Dict[str, List[Transaction]], Dict[str, List[Transaction]]]


def _update_field(update: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in update:
            return update[name]
    return None


class ReconcileService:
    def __init__(
        self,
        run_store: Optional[RunStore] = None,
        kv: Optional[KVStore] = None,
        tracker: Optional[AutoAssignTracker] = None,
        rules: Optional[FieldRules] = None,
        fill_gaps: bool = SYNTHESIS_FILL_GAPS,
    ):
        self.run_store = run_store or build_run_store()
        self.kv = kv or KVStore()
        self.tracker = tracker or AutoAssignTracker()
        self.rules = rules or get_field_rules()
        self.fill_gaps = fill_gaps

    # Loading

    @staticmethod
    def _validate_pair(run_a: Optional[str], run_b: Optional[str]) -> None:
        if not run_a or not run_b:
            raise ValidationError.from_code(ReconcileErrorCode.MISSING_RUN_ID)
        if run_a == run_b:
            raise ValidationError.from_code(ReconcileErrorCode.IDENTICAL_RUNS)

    def _load_runs(self, run_a: str, run_b: str) -> Tuple[Run, Run, List[Transaction], List[Transaction]]:
        self._validate_pair(run_a, run_b)
        first = self.run_store.get_run(run_a)
        second = self.run_store.get_run(run_b)
        return first, second, self.run_store.list_transactions(run_a), self.run_store.list_transactions(run_b)

    def _decision_store(self, run_a: str, run_b: str) -> DecisionStore:
        return DecisionStore(run_a, run_b, kv=self.kv)

    def _email_index(self, run_a: str, run_b: str) -> EmailIndex:
        _, _, txs_a, txs_b = self._load_runs(run_a, run_b)
        return group_by_email(txs_a), group_by_email(txs_b)

    @staticmethod
    def _require_email(index: EmailIndex, email_id: str) -> None:
        by_email_a, by_email_b = index
        if not email_id or (email_id not in by_email_a and email_id not in by_email_b):
            raise NotFoundError.from_code(ReconcileErrorCode.EMAIL_NOT_FOUND, email_id=email_id)

    def _resolve_winner(self, index: EmailIndex, email_id: str, value: Union[str, Winner, None]) -> Optional[Winner]:
        """Map a wire value (transaction id, sentinel, empty) to a Winner."""
        self._require_email(index, email_id)
        by_email_a, by_email_b = index

        if isinstance(value, Winner):
            if value.is_sentinel:
                return value
            value = value.transaction_id
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            raise ValidationError.from_code(ReconcileErrorCode.INVALID_WINNER, value=value)
        if value in SENTINEL_KINDS:
            return Winner(kind=SENTINEL_KINDS[value])

        for tx in by_email_a.get(email_id, []) + by_email_b.get(email_id, []):
            if tx.id == value:
                return Winner.from_run(tx.run_id, value)
        raise NotFoundError.from_code(
            ReconcileErrorCode.TRANSACTION_NOT_FOUND, transaction_id=value, email_id=email_id
        )

    @staticmethod
    def _attach(outcome: MatchOutcome, store: DecisionStore) -> None:
        decisions = store.all_decisions()
        overrides = store.all_overrides()
        for comparison in outcome.comparisons:
            decision = decisions.get(comparison.email_id)
            comparison.winner = decision.winner if decision else None
            comparison.field_overrides = overrides.get(comparison.email_id) or {}
        for email in outcome.multi_transaction_emails:
            decision = decisions.get(email.email_id)
            email.selection = decision.selection if decision else ()
            email.field_overrides = overrides.get(email.email_id) or {}

    # Reads

    def get_comparison(self, run_a: str, run_b: str) -> ComparisonResult:
        """
        Compare two runs email by email.

        The first load of a pair auto-assigns one-sided emails; the returned
        comparisons already reflect those assignments.
        """
        first, second, txs_a, txs_b = self._load_runs(run_a, run_b)
        outcome = match_runs(txs_a, txs_b, self.rules)
        store = self._decision_store(run_a, run_b)

        auto_assign(self.tracker, store, run_a, run_b, outcome.comparisons)
        self._attach(outcome, store)

        return ComparisonResult(
            run_a=first,
            run_b=second,
            summary=summarize(outcome.comparisons),
            comparisons=outcome.comparisons,
            multi_transaction_emails=outcome.multi_transaction_emails,
        )

    def get_groups(self, run_a: str, run_b: str) -> List[TypeGroup]:
        return group_by_type(self.get_comparison(run_a, run_b).comparisons)

    # Mutations

    def set_decision(
        self,
        run_a: str,
        run_b: str,
        email_id: str,
        winner: Union[str, Winner, None],
        toggle: bool = False,
    ) -> Optional[Decision]:
        index = self._email_index(run_a, run_b)
        resolved = self._resolve_winner(index, email_id, winner)
        return self._decision_store(run_a, run_b).set_decision(email_id, resolved, toggle=toggle)

    def bulk_set_decision(self, run_a: str, run_b: str, updates: List[Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Apply many decisions as independent upserts.

        There is no atomicity: items that succeed stay applied. When any item
        fails a PartialBatchFailure carries the applied count and failures.
        """
        if not updates:
            raise ValidationError.from_code(ReconcileErrorCode.EMPTY_UPDATES)

        index = self._email_index(run_a, run_b)
        store = self._decision_store(run_a, run_b)
        applied = 0
        failures = []

        for update in updates:
            email_id = _update_field(update, "email_id", "emailId")
            try:
                winner = self._resolve_winner(
                    index, email_id, _update_field(update, "winner", "winnerTransactionId")
                )
                store.set_decision(email_id, winner, toggle=bool(update.get("toggle", False)))
                applied += 1
            except ReconcileError as e:
                logger.warning(f"Bulk decision failed for email {email_id}: {e}")
                failures.append({"email_id": email_id, "code": e.code.value, "error": e.message})

        if failures:
            raise PartialBatchFailure.from_code(
                ReconcileErrorCode.PARTIAL_BATCH,
                applied_count=applied,
                requested=len(updates),
                failures=failures,
            )

        logger.info(f"Bulk updated {applied} emails for {run_a} vs {run_b}")
        return {"applied": applied, "message": f"Updated {applied} emails"}

    def _normalize_overrides(self, overrides: Mapping[str, Any]) -> Dict[str, Any]:
        normalized = {}
        for key, value in overrides.items():
            name = key if key.startswith(DATA_PREFIX) else to_snake(key)
            if not self.rules.is_overridable(name):
                raise ValidationError.from_code(ReconcileErrorCode.INVALID_OVERRIDE_FIELD, field=key)
            normalized[name] = value
        return normalized

    def set_field_override(
        self,
        run_a: str,
        run_b: str,
        email_id: str,
        overrides: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Merge field overrides for an email; a None value clears that field."""
        normalized = self._normalize_overrides(overrides or {})
        self._require_email(self._email_index(run_a, run_b), email_id)
        return self._decision_store(run_a, run_b).set_field_override(email_id, normalized)

    def synthesize(
        self,
        run_a: str,
        run_b: str,
        primary_run: Optional[str],
        name: Optional[str] = None,
    ) -> SynthesisResult:
        """Build a new run from the pair's decisions and persist it."""
        self._validate_pair(run_a, run_b)
        if primary_run not in (run_a, run_b):
            raise ValidationError.from_code(ReconcileErrorCode.INVALID_PRIMARY_RUN)

        first, second, txs_a, txs_b = self._load_runs(run_a, run_b)
        store = self._decision_store(run_a, run_b)

        result = synthesize_run(
            first,
            second,
            txs_a,
            txs_b,
            primary_run,
            store.all_decisions(),
            store.all_overrides(),
            version=self.run_store.next_version(first.set_id),
            name=name,
            fill_gaps=self.fill_gaps,
            rules=self.rules,
        )
        result.run = self.run_store.save_run(result.run, result.transactions)
        return result
