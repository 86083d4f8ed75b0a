# -*- coding: utf-8 -*-

import pytest

from reconciler.errors import ValidationError
from reconciler.pipeline.differ import compare_transactions
from reconciler.pipeline.grouper import (
    BULK_ACTIONS,
    build_bulk_updates,
    fingerprint,
    group_by_type,
    group_patterns,
)
from tests.test_utils import make_tx


def _different(email_id: str, tx_type: str = "buy", a_data=None, b_data=None, **b_fields):
    a = make_tx(f"a-{email_id}", "A", email_id, type=tx_type, data=a_data or {})
    b_fields.setdefault("description", "changed")
    b = make_tx(f"b-{email_id}", "B", email_id, type=tx_type, data=b_data or {}, **b_fields)
    return compare_transactions(email_id, a, b)


def test_fingerprint_lists_exclusive_keys() -> None:
    comparison = _different("e1", a_data={"broker": "IBKR"}, b_data={"venue": "NYSE"})
    fp = fingerprint(comparison)
    assert fp.only_a_keys == ("broker",)
    assert fp.only_b_keys == ("venue",)
    assert fp.label == "A only: broker | B only: venue"


def test_group_patterns_numeric_first_then_size() -> None:
    comparisons = [
        _different("e1"),
        _different("e2"),
        _different("e3", a_data={"broker": "IBKR"}),
        _different("e4", amount="999.00"),
    ]
    groups = group_patterns(comparisons)
    assert [g.has_numeric_difference for g in groups] == [True, False, False]
    assert [[c.email_id for c in g.comparisons] for g in groups] == [["e4"], ["e1", "e2"], ["e3"]]


def test_single_item_group_is_standalone() -> None:
    groups = group_patterns([_different("e1"), _different("e2", a_data={"x": "1"})])
    assert all(g.is_standalone for g in groups)
    assert all(g.bulk_actions == () for g in groups)


def test_group_of_two_offers_bulk_actions() -> None:
    groups = group_patterns([_different("e1"), _different("e2")])
    assert groups[0].bulk_actions == BULK_ACTIONS
    assert groups[0].to_dict()["emailIds"] == ["e1", "e2"]


def test_group_by_type_only_includes_different() -> None:
    a = make_tx("a-m", "A", "m1", type="dividend")
    b = make_tx("b-m", "B", "m1", type="dividend")
    comparisons = [
        _different("e1", "buy"),
        _different("e2", "dividend"),
        _different("e3", "dividend"),
        compare_transactions("m1", a, b),
        compare_transactions("o1", make_tx("a-o", "A", "o1"), None),
    ]
    groups = group_by_type(comparisons)
    assert [(g.type, len(g.comparisons)) for g in groups] == [("dividend", 2), ("buy", 1)]


def test_group_by_type_unknown_bucket() -> None:
    comparison = _different("e1", tx_type=None)
    assert group_by_type([comparison])[0].type == "unknown"


def test_disagreeing_types_group_the_same_in_either_order() -> None:
    a = make_tx("a-e1", "A", "e1", type="sell")
    b = make_tx("b-e1", "B", "e1", type="buy")
    forward = group_by_type([compare_transactions("e1", a, b)])
    reverse = group_by_type([compare_transactions("e1", b, a)])
    assert [g.type for g in forward] == [g.type for g in reverse] == ["buy"]


class TestBuildBulkUpdates:
    def test_sentinel_action(self) -> None:
        comparisons = [_different("e1"), _different("e2")]
        assert build_bulk_updates(comparisons, "exclude") == [
            {"email_id": "e1", "winner": "exclude"},
            {"email_id": "e2", "winner": "exclude"},
        ]

    def test_side_action_picks_that_sides_transaction(self) -> None:
        comparisons = [_different("e1"), compare_transactions("e2", make_tx("a2", "A", "e2"), None)]
        assert build_bulk_updates(comparisons, "b") == [{"email_id": "e1", "winner": "b-e1"}]

    def test_unknown_action_rejected(self) -> None:
        with pytest.raises(ValidationError):
            build_bulk_updates([_different("e1")], "c")
