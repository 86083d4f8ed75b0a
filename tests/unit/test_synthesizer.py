# -*- coding: utf-8 -*-

import itertools

import pytest

from reconciler.errors import ValidationError
from reconciler.pipeline.synthesizer import build_transaction, default_run_name, synthesize_run
from reconciler.shared.field_rules import get_field_rules
from reconciler.types import Decision, Winner
from tests.test_utils import make_run, make_tx


RUN_A = make_run("A", version=1)
RUN_B = make_run("B", version=2)


def _ids():
    counter = itertools.count(1)
    return lambda: f"new-{next(counter)}"


def _synthesize(txs_a, txs_b, decisions=None, overrides=None, primary="A", **kwargs):
    return synthesize_run(
        RUN_A,
        RUN_B,
        txs_a,
        txs_b,
        primary,
        decisions or {},
        overrides or {},
        version=3,
        id_factory=_ids(),
        **kwargs,
    )


def _decide(email_id, *winners):
    return {email_id: Decision(email_id=email_id, selection=tuple(winners))}


class TestSingleTransactionEmails:
    def test_winner_transaction_is_the_template(self) -> None:
        a = make_tx("a1", "A", "e1", type="dividend", amount="10.00")
        b = make_tx("b1", "B", "e1", type="dividend", amount="12.50")
        result = _synthesize([a], [b], _decide("e1", Winner.from_run("B", "b1")))
        assert [t.amount for t in result.transactions] == ["12.50"]
        assert result.transactions[0].source_transaction_id == "b1"
        assert result.stats.from_b == 1

    def test_winner_found_when_pair_is_reversed(self) -> None:
        a = make_tx("a1", "A", "e1", amount="10.00")
        b = make_tx("b1", "B", "e1", amount="12.50")
        decisions = _decide("e1", Winner.from_run("B", "b1"))
        result = synthesize_run(RUN_B, RUN_A, [b], [a], "A", decisions, {}, version=3, id_factory=_ids())
        assert [t.amount for t in result.transactions] == ["12.50"]
        assert result.stats.from_a == 1

    def test_transactions_carry_provenance(self) -> None:
        a = make_tx("a1", "A", "e1", amount="1")
        b = make_tx("b1", "B", "e1", amount="2")
        result = _synthesize([a], [b], _decide("e1", Winner.from_run("B", "b1")))
        [tx] = result.transactions
        assert (tx.source_transaction_id, tx.source_run_id, tx.synthesis_decision) == ("b1", "B", "winner_b")

    def test_exclude_emits_nothing(self) -> None:
        a = make_tx("a1", "A", "e1")
        b = make_tx("b1", "B", "e1", amount="1")
        result = _synthesize([a], [b], _decide("e1", Winner.exclude()))
        assert result.transactions == []
        assert result.stats.excluded == 1

    @pytest.mark.parametrize("winner,stat", [(Winner.tie(), "ties"), (Winner.discussion(), "discussions")])
    def test_sentinels_use_primary_side(self, winner, stat) -> None:
        a = make_tx("a1", "A", "e1", amount="1")
        b = make_tx("b1", "B", "e1", amount="2")
        result = _synthesize([a], [b], _decide("e1", winner), primary="B")
        assert [t.source_transaction_id for t in result.transactions] == ["b1"]
        assert getattr(result.stats, stat) == 1

    def test_no_decision_falls_back_to_other_side(self) -> None:
        result = _synthesize([], [make_tx("b1", "B", "e1")])
        assert [t.source_transaction_id for t in result.transactions] == ["b1"]
        assert result.stats.no_winner == 1

    def test_match_uses_primary(self) -> None:
        result = _synthesize([make_tx("a1", "A", "e1")], [make_tx("b1", "B", "e1")])
        assert [t.source_transaction_id for t in result.transactions] == ["a1"]
        assert result.stats.matched == 1

    def test_stale_winner_falls_back_to_primary(self) -> None:
        a = make_tx("a1", "A", "e1", amount="1")
        b = make_tx("b1", "B", "e1", amount="2")
        result = _synthesize([a], [b], _decide("e1", Winner.from_run("B", "gone")))
        assert [t.source_transaction_id for t in result.transactions] == ["a1"]


class TestOverrides:
    def test_override_replaces_value(self) -> None:
        a = make_tx("a1", "A", "e1", symbol="AAPL")
        result = _synthesize([a], [], overrides={"e1": {"symbol": "MSFT", "data.broker": "IBKR"}})
        tx = result.transactions[0]
        assert tx.symbol == "MSFT"
        assert tx.data["broker"] == "IBKR"

    def test_empty_override_writes_absent_value(self) -> None:
        a = make_tx("a1", "A", "e1", symbol="AAPL")
        result = _synthesize([a], [], overrides={"e1": {"symbol": ""}})
        assert result.transactions[0].symbol is None

    def test_untracked_override_ignored(self) -> None:
        a = make_tx("a1", "A", "e1")
        result = _synthesize([a], [], overrides={"e1": {"confidence": 0.1}})
        assert result.transactions[0].confidence is None


class TestGapFilling:
    def test_empty_winner_fields_taken_from_counterpart(self) -> None:
        a = make_tx("a1", "A", "e1", fees="1.50", data={"broker": "IBKR"})
        b = make_tx("b1", "B", "e1", fees=None, type=None, amount="12.50", data={"venue": "NYSE"})
        result = _synthesize([a], [b], _decide("e1", Winner.from_run("B", "b1")))
        tx = result.transactions[0]
        assert tx.amount == "12.50"
        assert tx.fees == "1.50"
        assert tx.type is None
        assert tx.data == {"venue": "NYSE", "broker": "IBKR"}

    def test_gap_filling_can_be_disabled(self) -> None:
        a = make_tx("a1", "A", "e1", fees="1.50")
        b = make_tx("b1", "B", "e1", fees=None, amount="2")
        result = _synthesize([a], [b], _decide("e1", Winner.from_run("B", "b1")), fill_gaps=False)
        assert result.transactions[0].fees is None


class TestMultiTransactionEmails:
    def _email(self):
        txs_a = [make_tx("a1", "A", "e1", symbol="AAPL"), make_tx("a2", "A", "e1", symbol="TSLA")]
        txs_b = [make_tx("b1", "B", "e1", symbol="AAPL"), make_tx("b2", "B", "e1", symbol="MSFT")]
        return txs_a, txs_b

    def test_one_output_per_selected_transaction(self) -> None:
        txs_a, txs_b = self._email()
        decisions = _decide(
            "e1",
            Winner.from_run("A", "a1"),
            Winner.from_run("B", "b2"),
            Winner.tie(),
        )
        result = _synthesize(txs_a, txs_b, decisions)
        assert [t.source_transaction_id for t in result.transactions] == ["a1", "b2"]

    def test_exclude_only_emits_nothing(self) -> None:
        txs_a, txs_b = self._email()
        result = _synthesize(txs_a, txs_b, _decide("e1", Winner.exclude()))
        assert result.transactions == []

    def test_no_selection_emits_primary_side(self) -> None:
        txs_a, txs_b = self._email()
        result = _synthesize(txs_a, txs_b, primary="B")
        assert [t.source_transaction_id for t in result.transactions] == ["b1", "b2"]

    def test_stale_selection_falls_back_to_primary(self) -> None:
        txs_a, txs_b = self._email()
        result = _synthesize(txs_a, txs_b, _decide("e1", Winner.from_run("A", "gone")), primary="B")
        assert [t.source_transaction_id for t in result.transactions] == ["b1", "b2"]
        assert result.stats.no_winner == 2

    def test_tie_selection_counts_ties(self) -> None:
        txs_a, txs_b = self._email()
        result = _synthesize(txs_a, txs_b, _decide("e1", Winner.tie()))
        assert [t.source_transaction_id for t in result.transactions] == ["a1", "a2"]
        assert result.stats.ties == 2


class TestOutputRun:
    def test_run_metadata(self) -> None:
        result = _synthesize([make_tx("a1", "A", "e1")], [], primary="B")
        run = result.run
        assert run.version == 3
        assert run.name == "Synthesized v3 (1 vs 2 winners)"
        assert run.model_id == "model-B"
        assert run.is_synthesized is True
        assert run.source_run_ids == ["A", "B"]
        assert run.config["primary_run_id"] == "B"
        assert run.transactions_created == 1
        assert all(t.run_id == run.id for t in result.transactions)
        assert result.provenance[0].source_run_id == "A"

    def test_custom_name(self) -> None:
        result = _synthesize([], [], name="Merged March")
        assert result.run.name == "Merged March"
        assert default_run_name(7, RUN_A, RUN_B) == "Synthesized v7 (1 vs 2 winners)"

    def test_primary_must_be_in_pair(self) -> None:
        with pytest.raises(ValidationError):
            _synthesize([], [], primary="C")

    def test_deterministic_field_values(self) -> None:
        txs_a = [make_tx("a1", "A", "e1", amount="1"), make_tx("a2", "A", "e2")]
        txs_b = [make_tx("b1", "B", "e1", amount="2"), make_tx("b3", "B", "e3")]
        decisions = _decide("e1", Winner.from_run("B", "b1"))
        first = synthesize_run(RUN_A, RUN_B, txs_a, txs_b, "A", decisions, {}, version=3)
        second = synthesize_run(RUN_A, RUN_B, txs_a, txs_b, "A", decisions, {}, version=3)

        def strip(result):
            return [{k: v for k, v in t.to_dict().items() if k not in ("id", "run_id")} for t in result.transactions]

        assert strip(first) == strip(second)
        assert first.run.id != second.run.id


def test_build_transaction_leaves_sources_untouched() -> None:
    template = make_tx("a1", "A", "e1", data={"broker": "IBKR"})
    tx = build_transaction(
        template,
        None,
        {"data.broker": "Schwab"},
        new_id="n1",
        run_id="R",
        fill_gaps=True,
        rules=get_field_rules(),
    )
    assert tx.data == {"broker": "Schwab"}
    assert template.data == {"broker": "IBKR"}
