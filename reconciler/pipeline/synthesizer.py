# -*- coding: utf-8 -*-
"""
Deterministic synthesis of a merged run from two runs plus reviewer decisions.

Per email:
- exclude            -> nothing is emitted
- a transaction id   -> that transaction is the template
- tie / discussion / no decision / match
                     -> the primary run's transaction, else the other side's
- multi-transaction  -> one output per selected transaction id

The template is optionally gap-filled from its counterpart, then field
overrides are applied on top. Source transactions are never modified; the
caller decides whether to persist the result.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from reconciler.errors import ReconcileErrorCode, ValidationError
from reconciler.pipeline.matcher import match_runs
from reconciler.pipeline.normalize import flatten_data, is_absent
from reconciler.shared.field_rules import DATA_PREFIX, FieldRules, get_field_rules
from reconciler.types import (
    Comparison,
    ComparisonStatus,
    Decision,
    MultiTransactionEmail,
    Provenance,
    Run,
    Side,
    SynthesisResult,
    SynthesisStats,
    Transaction,
    Winner,
    WinnerKind,
)

logger = logging.getLogger(__name__)

SYNTHESIS_TYPE = "comparison_winners"


def default_run_name(version: int, run_a: Run, run_b: Run) -> str:
    return f"Synthesized v{version} ({run_a.version} vs {run_b.version} winners)"


def _merge_data(winner_data: Any, counterpart_data: Any, fill_gaps: bool) -> Dict[str, Any]:
    merged = flatten_data(winner_data)
    if not fill_gaps:
        return merged
    for key, value in flatten_data(counterpart_data).items():
        if is_absent(merged.get(key)) and not is_absent(value):
            merged[key] = value
    return merged


def _apply_overrides(
    values: Dict[str, Any],
    data: Dict[str, Any],
    overrides: Mapping[str, Any],
    rules: FieldRules,
) -> None:
    for key in sorted(overrides):
        value = overrides[key]
        # An empty override writes an absent value
        if is_absent(value):
            value = None
        if key.startswith(DATA_PREFIX):
            data[key[len(DATA_PREFIX):]] = value
        elif key in rules.tracked:
            values[key] = value
        else:
            logger.warning(f"Ignoring override on untracked field {key}")


def build_transaction(
    template: Transaction,
    counterpart: Optional[Transaction],
    overrides: Mapping[str, Any],
    *,
    new_id: str,
    run_id: str,
    fill_gaps: bool,
    rules: FieldRules,
    source_run_id: Optional[str] = None,
    decision: Optional[str] = None,
) -> Transaction:
    """Copy the template into the new run, gap-filled and overridden."""
    values = {name: getattr(template, name) for name in rules.tracked}
    if fill_gaps and counterpart is not None:
        for name in rules.tracked:
            if name in rules.winner_only:
                continue
            fallback = getattr(counterpart, name)
            if is_absent(values[name]) and not is_absent(fallback):
                values[name] = fallback

    data = _merge_data(template.data, counterpart.data if counterpart else None, fill_gaps)
    _apply_overrides(values, data, overrides, rules)

    return Transaction(
        id=new_id,
        run_id=run_id,
        source_email_id=template.source_email_id,
        confidence=template.confidence,
        data=data,
        source_transaction_id=template.id,
        source_run_id=source_run_id or template.run_id,
        synthesis_decision=decision,
        **values,
    )


class _Synthesis:
    """Accumulates output transactions, provenance and stats for one run."""

    def __init__(
        self,
        run_id: str,
        side_runs: Dict[Side, Run],
        fill_gaps: bool,
        rules: FieldRules,
        id_factory: Callable[[], str],
    ):
        self.run_id = run_id
        self.side_runs = side_runs
        self.fill_gaps = fill_gaps
        self.rules = rules
        self.id_factory = id_factory
        self.transactions: List[Transaction] = []
        self.provenance: List[Provenance] = []
        self.stats = SynthesisStats()

    def emit(
        self,
        email_id: str,
        side: Side,
        template: Transaction,
        counterpart: Optional[Transaction],
        overrides: Mapping[str, Any],
        reason: str,
    ) -> None:
        tx = build_transaction(
            template,
            counterpart,
            overrides,
            new_id=self.id_factory(),
            run_id=self.run_id,
            fill_gaps=self.fill_gaps,
            rules=self.rules,
            source_run_id=self.side_runs[side].id,
            decision=reason,
        )
        self.transactions.append(tx)
        self.provenance.append(
            Provenance(
                transaction_id=tx.id,
                email_id=email_id,
                source_transaction_id=template.id,
                source_run_id=self.side_runs[side].id,
                decision=reason,
            )
        )
        self._count(reason, side)

    def side_of(self, winner: Winner) -> Optional[Side]:
        for side, run in self.side_runs.items():
            if run.id == winner.run_id:
                return side
        return None

    def _count(self, reason: str, side: Side) -> None:
        if reason.startswith("winner_") or reason.startswith("selected_"):
            if side is Side.A:
                self.stats.from_a += 1
            else:
                self.stats.from_b += 1
        elif reason == "tie":
            self.stats.ties += 1
        elif reason == "discussion":
            self.stats.discussions += 1
        elif reason == "match":
            self.stats.matched += 1
        else:
            self.stats.no_winner += 1


def _fallback_reason(kind: Optional[WinnerKind]) -> str:
    if kind is WinnerKind.TIE:
        return "tie"
    if kind is WinnerKind.DISCUSSION:
        return "discussion"
    return "no_winner"


def _synthesize_single(
    job: _Synthesis,
    comparison: Comparison,
    decision: Optional[Decision],
    overrides: Mapping[str, Any],
    primary_side: Side,
) -> None:
    winner = decision.winner if decision else None

    if winner is not None and winner.kind is WinnerKind.EXCLUDE:
        job.stats.excluded += 1
        return

    if winner is not None and winner.kind is WinnerKind.FROM_RUN:
        side = job.side_of(winner)
        chosen = comparison.transaction(side) if side else None
        if chosen is not None and chosen.id == winner.transaction_id:
            job.emit(
                comparison.email_id,
                side,
                chosen,
                comparison.transaction(side.other()),
                overrides,
                f"winner_{side.value}",
            )
            return
        logger.warning(
            f"Stale winner {winner.transaction_id} for email {comparison.email_id}, using primary run"
        )
        winner = None

    if winner is None and comparison.status is ComparisonStatus.MATCH:
        reason = "match"
    else:
        reason = _fallback_reason(winner.kind if winner else None)

    side = primary_side if comparison.transaction(primary_side) is not None else primary_side.other()
    template = comparison.transaction(side)
    if template is None:
        return
    job.emit(comparison.email_id, side, template, comparison.transaction(side.other()), overrides, reason)


def _counterparts(email: MultiTransactionEmail) -> Dict[str, Transaction]:
    partners: Dict[str, Transaction] = {}
    for pair in email.pairs:
        partners[pair.a.id] = pair.b
        partners[pair.b.id] = pair.a
    return partners


def _synthesize_multi(
    job: _Synthesis,
    email: MultiTransactionEmail,
    decision: Optional[Decision],
    overrides: Mapping[str, Any],
    primary_side: Side,
) -> None:
    selection = decision.selection if decision else ()
    partners = _counterparts(email)
    selected = [w for w in selection if not w.is_sentinel]

    emitted = 0
    for winner in selected:
        side = job.side_of(winner)
        tx = next((t for t in email.transactions(side) if t.id == winner.transaction_id), None) if side else None
        if tx is None:
            logger.warning(f"Stale selection {winner.transaction_id} for email {email.email_id}")
            continue
        job.emit(email.email_id, side, tx, partners.get(tx.id), overrides, f"selected_{side.value}")
        emitted += 1
    if emitted:
        return
    if selected:
        logger.warning(f"No selected transaction left for email {email.email_id}, using primary run")
        selection = tuple(w for w in selection if w.is_sentinel)

    kinds = {w.kind for w in selection}
    if WinnerKind.EXCLUDE in kinds:
        job.stats.excluded += 1
        return

    side = primary_side if email.transactions(primary_side) else primary_side.other()
    dominant = next((k for k in (WinnerKind.DISCUSSION, WinnerKind.TIE) if k in kinds), None)
    reason = _fallback_reason(dominant)
    for tx in email.transactions(side):
        job.emit(email.email_id, side, tx, partners.get(tx.id), overrides, reason)


def synthesize_run(
    run_a: Run,
    run_b: Run,
    transactions_a: Iterable[Transaction],
    transactions_b: Iterable[Transaction],
    primary_run_id: str,
    decisions: Mapping[str, Decision],
    overrides: Mapping[str, Mapping[str, Any]],
    *,
    version: int,
    name: Optional[str] = None,
    fill_gaps: bool = True,
    rules: Optional[FieldRules] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> SynthesisResult:
    """
    Build (but do not persist) a synthesized run.

    Identical inputs always yield identical transaction field values; only
    generated ids and the start timestamp differ between calls.
    """
    if primary_run_id not in (run_a.id, run_b.id):
        raise ValidationError.from_code(ReconcileErrorCode.INVALID_PRIMARY_RUN)

    rules = rules or get_field_rules()
    id_factory = id_factory or (lambda: str(uuid.uuid4()))
    primary_side = Side.A if primary_run_id == run_a.id else Side.B
    primary_run = run_a if primary_side is Side.A else run_b

    run_id = id_factory()
    job = _Synthesis(run_id, {Side.A: run_a, Side.B: run_b}, fill_gaps, rules, id_factory)

    outcome = match_runs(transactions_a, transactions_b, rules)
    emails: List[Tuple[str, Any]] = [(c.email_id, c) for c in outcome.comparisons]
    emails.extend((m.email_id, m) for m in outcome.multi_transaction_emails)
    emails.sort(key=lambda item: item[0])

    for email_id, item in emails:
        decision = decisions.get(email_id)
        email_overrides = overrides.get(email_id) or {}
        if isinstance(item, MultiTransactionEmail):
            _synthesize_multi(job, item, decision, email_overrides, primary_side)
        else:
            _synthesize_single(job, item, decision, email_overrides, primary_side)

    run = Run(
        id=run_id,
        version=version,
        model_id=primary_run.model_id,
        status="completed",
        transactions_created=len(job.transactions),
        started_at=datetime.now(timezone.utc).isoformat(),
        name=name or default_run_name(version, run_a, run_b),
        set_id=run_a.set_id,
        is_synthesized=True,
        synthesis_type=SYNTHESIS_TYPE,
        source_run_ids=[run_a.id, run_b.id],
        config={
            "source_run_a": run_a.id,
            "source_run_b": run_b.id,
            "primary_run_id": primary_run_id,
            "synthesis_stats": asdict(job.stats),
        },
    )
    logger.info(
        f"Synthesized run v{version} from {run_a.id} and {run_b.id}: "
        f"{len(job.transactions)} transactions, {job.stats.excluded} excluded"
    )
    return SynthesisResult(run=run, transactions=job.transactions, provenance=job.provenance, stats=job.stats)
