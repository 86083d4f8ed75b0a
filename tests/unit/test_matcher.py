# -*- coding: utf-8 -*-

from reconciler.pipeline.matcher import (
    greedy_pairs,
    group_by_email,
    is_equivalent,
    match_email,
    match_runs,
)
from reconciler.types import Comparison, ComparisonStatus, MultiTransactionEmail
from tests.test_utils import make_tx


def test_group_by_email_orders_by_id_and_skips_orphans() -> None:
    txs = [
        make_tx("t3", "A", "e1"),
        make_tx("t1", "A", "e1"),
        make_tx("t2", "A", None),
    ]
    grouped = group_by_email(txs)
    assert list(grouped) == ["e1"]
    assert [t.id for t in grouped["e1"]] == ["t1", "t3"]


def test_equivalence_uses_type_amount_symbol_and_day() -> None:
    a = make_tx("a1", "A", "e1", symbol="AAPL", date="2024-03-01T10:00:00Z", description="x")
    b = make_tx("b1", "B", "e1", symbol="AAPL", date="2024-03-01", description="y")
    assert is_equivalent(a, b)
    assert not is_equivalent(a, make_tx("b2", "B", "e1", symbol="MSFT"))


def test_greedy_pairs_takes_first_unused_equivalent() -> None:
    a_txs = [
        make_tx("a1", "A", "e1", symbol="AAPL"),
        make_tx("a2", "A", "e1", symbol="AAPL"),
        make_tx("a3", "A", "e1", symbol="TSLA"),
    ]
    b_txs = [
        make_tx("b1", "B", "e1", symbol="AAPL"),
        make_tx("b2", "B", "e1", symbol="MSFT"),
    ]
    pairs, unmatched_a, unmatched_b = greedy_pairs(a_txs, b_txs)
    assert [(p.a.id, p.b.id) for p in pairs] == [("a1", "b1")]
    assert [t.id for t in unmatched_a] == ["a2", "a3"]
    assert [t.id for t in unmatched_b] == ["b2"]


def test_match_email_single_transaction_each_side() -> None:
    result = match_email("e1", [make_tx("a1", "A", "e1")], [make_tx("b1", "B", "e1")])
    assert isinstance(result, Comparison)
    assert result.status is ComparisonStatus.MATCH


def test_match_email_multi_transaction() -> None:
    result = match_email(
        "e1",
        [make_tx("a1", "A", "e1"), make_tx("a2", "A", "e1", amount="5.00")],
        [make_tx("b1", "B", "e1")],
    )
    assert isinstance(result, MultiTransactionEmail)
    assert len(result.pairs) == 1
    assert [t.id for t in result.unmatched_a] == ["a2"]
    assert result.status is ComparisonStatus.DIFFERENT


def test_match_email_multi_on_one_side_only() -> None:
    result = match_email("e1", [make_tx("a1", "A", "e1"), make_tx("a2", "A", "e1")], [])
    assert isinstance(result, MultiTransactionEmail)
    assert result.pairs == []
    assert result.status is ComparisonStatus.ONLY_A


def test_match_email_neither_side() -> None:
    assert match_email("e1", [], []) is None


class TestMatchRuns:
    def test_classifies_every_email(self) -> None:
        run_a = [
            make_tx("a1", "A", "e1"),
            make_tx("a2", "A", "e2", amount="10.00"),
            make_tx("a3", "A", "e3"),
        ]
        run_b = [
            make_tx("b1", "B", "e1"),
            make_tx("b2", "B", "e2", amount="12.50"),
            make_tx("b4", "B", "e4"),
        ]
        outcome = match_runs(run_a, run_b)
        statuses = {c.email_id: c.status for c in outcome.comparisons}
        assert statuses == {
            "e1": ComparisonStatus.MATCH,
            "e2": ComparisonStatus.DIFFERENT,
            "e3": ComparisonStatus.ONLY_A,
            "e4": ComparisonStatus.ONLY_B,
        }
        assert outcome.multi_transaction_emails == []

    def test_review_order_puts_disagreements_first(self) -> None:
        run_a = [make_tx("a1", "A", "e1"), make_tx("a2", "A", "e2", amount="1"), make_tx("a3", "A", "e3")]
        run_b = [make_tx("b1", "B", "e1"), make_tx("b2", "B", "e2", amount="2")]
        outcome = match_runs(run_a, run_b)
        assert [c.email_id for c in outcome.comparisons] == ["e2", "e3", "e1"]

    def test_input_order_does_not_change_result(self) -> None:
        run_a = [make_tx("a2", "A", "e1"), make_tx("a1", "A", "e1")]
        run_b = [make_tx("b2", "B", "e1"), make_tx("b1", "B", "e1")]
        forward = match_runs(run_a, run_b)
        backward = match_runs(list(reversed(run_a)), list(reversed(run_b)))
        pairs_forward = [(p.a.id, p.b.id) for p in forward.multi_transaction_emails[0].pairs]
        pairs_backward = [(p.a.id, p.b.id) for p in backward.multi_transaction_emails[0].pairs]
        assert pairs_forward == pairs_backward == [("a1", "b1"), ("a2", "b2")]
