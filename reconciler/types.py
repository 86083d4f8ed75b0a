# -*- coding: utf-8 -*-
"""
Core record types for run reconciliation.

Runs and transactions come from the run store and are never mutated.
Comparisons, pairs and summaries are derived on every fetch; only decisions
and field overrides are persisted (see ``reconciler.services.decision_store``).
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(name: str) -> str:
    """Convert ``quantityExecuted`` style keys to ``quantity_executed``."""
    if "_" in name or name.islower():
        return name
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class ComparisonStatus(Enum):
    """Per-email reconciliation status"""

    MATCH = "match"
    DIFFERENT = "different"
    ONLY_A = "only_a"
    ONLY_B = "only_b"


class Side(Enum):
    """Which run of the compared pair a transaction came from"""

    A = "a"
    B = "b"

    def other(self) -> "Side":
        return Side.B if self is Side.A else Side.A


class WinnerKind(Enum):
    FROM_RUN = "from_run"
    TIE = "tie"
    EXCLUDE = "exclude"
    DISCUSSION = "discussion"


SENTINEL_KINDS = {
    WinnerKind.TIE.value: WinnerKind.TIE,
    WinnerKind.EXCLUDE.value: WinnerKind.EXCLUDE,
    WinnerKind.DISCUSSION.value: WinnerKind.DISCUSSION,
}


@dataclass(frozen=True)
class Winner:
    """Reviewer verdict for an email: a transaction from one run, or a sentinel.

    "No decision" is represented by the absence of a Winner, never by a
    sentinel value. A transaction winner names its source run by id, so it
    reads the same whichever order the pair is compared in.
    """

    kind: WinnerKind
    run_id: Optional[str] = None
    transaction_id: Optional[str] = None

    @classmethod
    def from_run(cls, run_id: str, transaction_id: str) -> "Winner":
        return cls(kind=WinnerKind.FROM_RUN, run_id=run_id, transaction_id=transaction_id)

    @classmethod
    def tie(cls) -> "Winner":
        return cls(kind=WinnerKind.TIE)

    @classmethod
    def exclude(cls) -> "Winner":
        return cls(kind=WinnerKind.EXCLUDE)

    @classmethod
    def discussion(cls) -> "Winner":
        return cls(kind=WinnerKind.DISCUSSION)

    @property
    def is_sentinel(self) -> bool:
        return self.kind is not WinnerKind.FROM_RUN

    def to_value(self) -> str:
        """Wire form: the transaction id, or the sentinel name."""
        if self.kind is WinnerKind.FROM_RUN:
            return self.transaction_id or ""
        return self.kind.value

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"kind": self.kind.value}
        if self.kind is WinnerKind.FROM_RUN:
            payload["run_id"] = self.run_id
            payload["transaction_id"] = self.transaction_id
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "Winner":
        kind = WinnerKind(payload["kind"])
        if kind is WinnerKind.FROM_RUN:
            return cls.from_run(payload.get("run_id"), str(payload["transaction_id"]))
        return cls(kind=kind)


@dataclass
class Run:
    """One extraction attempt over an email set"""

    id: str
    version: int
    model_id: Optional[str] = None
    status: str = "completed"
    transactions_created: int = 0
    started_at: Optional[str] = None
    name: Optional[str] = None
    set_id: Optional[str] = None
    is_synthesized: bool = False
    synthesis_type: Optional[str] = None
    source_run_ids: List[str] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: dict) -> "Run":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in payload.items():
            name = to_snake(key)
            if name in known:
                values[name] = value
        values["version"] = int(values.get("version") or 0)
        values["transactions_created"] = int(values.get("transactions_created") or 0)
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Transaction:
    """One extracted transaction. Numeric fields hold decimal strings."""

    id: str
    run_id: str
    source_email_id: Optional[str]
    type: Optional[str] = None
    date: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    symbol: Optional[str] = None
    category: Optional[str] = None
    account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    quantity: Optional[str] = None
    quantity_executed: Optional[str] = None
    quantity_remaining: Optional[str] = None
    price: Optional[str] = None
    execution_price: Optional[str] = None
    price_type: Optional[str] = None
    limit_price: Optional[str] = None
    fees: Optional[str] = None
    contract_size: Optional[str] = None
    order_id: Optional[str] = None
    order_type: Optional[str] = None
    order_quantity: Optional[str] = None
    order_price: Optional[str] = None
    order_status: Optional[str] = None
    time_in_force: Optional[str] = None
    reference_number: Optional[str] = None
    partially_executed: Optional[bool] = None
    execution_time: Optional[str] = None
    confidence: Optional[float] = None
    data: Any = field(default_factory=dict)
    # Set only on synthesized transactions
    source_transaction_id: Optional[str] = None
    source_run_id: Optional[str] = None
    synthesis_decision: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: dict) -> "Transaction":
        """Build from a store record; accepts camelCase or snake_case keys."""
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in payload.items():
            name = to_snake(key)
            if name == "extraction_run_id":
                name = "run_id"
            if name in known:
                values[name] = value
        if values.get("data") is None:
            values["data"] = {}
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TransactionPair:
    """Two transactions considered the same real-world transaction, diffed."""

    a: Transaction
    b: Transaction
    differences: List[str] = field(default_factory=list)
    data_key_differences: List[str] = field(default_factory=list)
    real_numeric_differences: List[str] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return not self.differences

    def to_dict(self) -> dict:
        return {
            "a": self.a.to_dict(),
            "b": self.b.to_dict(),
            "differences": list(self.differences),
            "dataKeyDifferences": list(self.data_key_differences),
            "realNumericDifferences": list(self.real_numeric_differences),
        }


@dataclass
class Comparison:
    """Reconciliation record for one email with at most one transaction per run."""

    email_id: str
    a: Optional[Transaction]
    b: Optional[Transaction]
    status: ComparisonStatus
    differences: List[str] = field(default_factory=list)
    data_key_differences: List[str] = field(default_factory=list)
    real_numeric_differences: List[str] = field(default_factory=list)
    winner: Optional[Winner] = None
    field_overrides: Dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> Optional[str]:
        """The shared type; when the runs disagree, the alphabetically first one."""
        types = sorted({t.type for t in (self.a, self.b) if t is not None and t.type})
        return types[0] if types else None

    @property
    def has_real_numeric_difference(self) -> bool:
        return bool(self.real_numeric_differences)

    def transaction(self, side: Side) -> Optional[Transaction]:
        return self.a if side is Side.A else self.b

    def to_dict(self) -> dict:
        return {
            "emailId": self.email_id,
            "runATransaction": self.a.to_dict() if self.a else None,
            "runBTransaction": self.b.to_dict() if self.b else None,
            "status": self.status.value,
            "differences": list(self.differences),
            "dataKeyDifferences": list(self.data_key_differences),
            "realNumericDifferences": list(self.real_numeric_differences),
            "winnerTransactionId": self.winner.to_value() if self.winner else None,
            "fieldOverrides": dict(self.field_overrides) or None,
        }


@dataclass
class MultiTransactionEmail:
    """An email where at least one run produced more than one transaction."""

    email_id: str
    a_transactions: List[Transaction] = field(default_factory=list)
    b_transactions: List[Transaction] = field(default_factory=list)
    pairs: List[TransactionPair] = field(default_factory=list)
    unmatched_a: List[Transaction] = field(default_factory=list)
    unmatched_b: List[Transaction] = field(default_factory=list)
    selection: Tuple[Winner, ...] = ()
    field_overrides: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> ComparisonStatus:
        if not self.b_transactions:
            return ComparisonStatus.ONLY_A
        if not self.a_transactions:
            return ComparisonStatus.ONLY_B
        if self.unmatched_a or self.unmatched_b:
            return ComparisonStatus.DIFFERENT
        if any(not pair.is_match for pair in self.pairs):
            return ComparisonStatus.DIFFERENT
        return ComparisonStatus.MATCH

    @property
    def selected_transaction_ids(self) -> List[str]:
        return [w.transaction_id for w in self.selection if not w.is_sentinel]

    @property
    def dominant_sentinel(self) -> Optional[WinnerKind]:
        """Sentinel shown on a summary badge; exclude outranks discussion and tie."""
        kinds = {w.kind for w in self.selection}
        for kind in (WinnerKind.EXCLUDE, WinnerKind.DISCUSSION, WinnerKind.TIE):
            if kind in kinds:
                return kind
        return None

    def transactions(self, side: Side) -> List[Transaction]:
        return self.a_transactions if side is Side.A else self.b_transactions

    def to_dict(self) -> dict:
        return {
            "emailId": self.email_id,
            "status": self.status.value,
            "runATransactions": [t.to_dict() for t in self.a_transactions],
            "runBTransactions": [t.to_dict() for t in self.b_transactions],
            "pairs": [p.to_dict() for p in self.pairs],
            "unmatchedA": [t.id for t in self.unmatched_a],
            "unmatchedB": [t.id for t in self.unmatched_b],
            "selectedWinners": [w.to_value() for w in self.selection],
            "badge": self.dominant_sentinel.value if self.dominant_sentinel else None,
            "fieldOverrides": dict(self.field_overrides) or None,
        }


@dataclass
class Decision:
    """Persisted reviewer selection for one email within a run pair."""

    email_id: str
    selection: Tuple[Winner, ...] = ()

    @property
    def winner(self) -> Optional[Winner]:
        """Single-pair view: the first (and normally only) selected member."""
        return self.selection[0] if self.selection else None

    def to_dict(self) -> dict:
        return {"email_id": self.email_id, "selection": [w.to_dict() for w in self.selection]}

    @classmethod
    def from_dict(cls, payload: dict) -> "Decision":
        return cls(
            email_id=payload["email_id"],
            selection=tuple(Winner.from_dict(item) for item in payload.get("selection") or []),
        )


@dataclass(frozen=True)
class Summary:
    total: int = 0
    matches: int = 0
    different: int = 0
    only_a: int = 0
    only_b: int = 0
    winners_designated: int = 0
    excluded: int = 0
    agreement_rate: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "matches": self.matches,
            "different": self.different,
            "onlyA": self.only_a,
            "onlyB": self.only_b,
            "winnersDesignated": self.winners_designated,
            "excluded": self.excluded,
            "agreementRate": self.agreement_rate,
        }


@dataclass
class ComparisonResult:
    """Everything the review screen needs for one run pair."""

    run_a: Run
    run_b: Run
    summary: Summary
    comparisons: List[Comparison] = field(default_factory=list)
    multi_transaction_emails: List[MultiTransactionEmail] = field(default_factory=list)

    def comparison(self, email_id: str) -> Optional[Comparison]:
        return next((c for c in self.comparisons if c.email_id == email_id), None)

    def to_dict(self) -> dict:
        return {
            "runA": self.run_a.to_dict(),
            "runB": self.run_b.to_dict(),
            "summary": self.summary.to_dict(),
            "comparisons": [c.to_dict() for c in self.comparisons],
            "multiTransactionEmails": [m.to_dict() for m in self.multi_transaction_emails],
        }


@dataclass(frozen=True)
class Provenance:
    """Audit trail for one synthesized transaction."""

    transaction_id: str
    email_id: str
    source_transaction_id: str
    source_run_id: str
    decision: str


@dataclass
class SynthesisStats:
    from_a: int = 0
    from_b: int = 0
    ties: int = 0
    discussions: int = 0
    no_winner: int = 0
    matched: int = 0
    excluded: int = 0


@dataclass
class SynthesisResult:
    run: Run
    transactions: List[Transaction] = field(default_factory=list)
    provenance: List[Provenance] = field(default_factory=list)
    stats: SynthesisStats = field(default_factory=SynthesisStats)

    def to_dict(self) -> dict:
        return {
            "run": self.run.to_dict(),
            "stats": asdict(self.stats),
            "provenance": [asdict(p) for p in self.provenance],
        }
