# -*- coding: utf-8 -*-

import json

import pytest

from reconciler import cli
from reconciler.services.kv_store import KVStore
from reconciler.services.reconcile_service import ReconcileService
from tests.test_utils import FakeRedis, make_sample_store


@pytest.fixture
def service(mocker):
    service = ReconcileService(run_store=make_sample_store(), kv=KVStore(client=FakeRedis()))
    mocker.patch("reconciler.cli._build_service", return_value=service)
    return service


def _run(capsys, *argv):
    code = cli.main(list(argv))
    return code, json.loads(capsys.readouterr().out)


def test_compare_summary_only(service, capsys) -> None:
    code, payload = _run(capsys, "compare", "--run-a", "A", "--run-b", "B", "--summary-only")
    assert code == 0
    assert payload["status"] == "ok"
    assert payload["result"]["summary"]["total"] == 6


def test_groups(service, capsys) -> None:
    code, payload = _run(capsys, "groups", "--run-a", "A", "--run-b", "B")
    assert code == 0
    assert [g["type"] for g in payload["result"]] == ["fee", "dividend"]


def test_decide_and_clear(service, capsys) -> None:
    code, payload = _run(capsys, "decide", "--run-a", "A", "--run-b", "B", "--email-id", "e1", "--winner", "b-e1")
    assert code == 0
    assert payload["result"]["selection"] == ["b-e1"]

    code, payload = _run(capsys, "decide", "--run-a", "A", "--run-b", "B", "--email-id", "e1")
    assert payload["result"]["selection"] == []


def test_decide_unknown_email_reports_error(service, capsys) -> None:
    code, payload = _run(capsys, "decide", "--run-a", "A", "--run-b", "B", "--email-id", "nope", "--winner", "tie")
    assert code == 1
    assert payload["status"] == "error"
    assert payload["error"]["reason"] == "email_not_found"


def test_bulk_by_type(service, capsys) -> None:
    code, payload = _run(capsys, "bulk", "--run-a", "A", "--run-b", "B", "--action", "exclude", "--type", "fee")
    assert code == 0
    assert payload["result"]["updated"] == 3
    assert service.get_comparison("A", "B").summary.excluded == 3


def test_override(service, capsys) -> None:
    code, payload = _run(
        capsys,
        "override", "--run-a", "A", "--run-b", "B", "--email-id", "e6",
        "--set", "symbol=MSFT", "--set", "data.broker=IBKR",
    )
    assert code == 0
    assert payload["result"]["fieldOverrides"] == {"symbol": "MSFT", "data.broker": "IBKR"}

    code, payload = _run(capsys, "override", "--run-a", "A", "--run-b", "B", "--email-id", "e6", "--clear", "symbol")
    assert payload["result"]["fieldOverrides"] == {"data.broker": "IBKR"}


def test_override_rejects_malformed_pair(service, capsys) -> None:
    code, payload = _run(capsys, "override", "--run-a", "A", "--run-b", "B", "--email-id", "e6", "--set", "symbol")
    assert code == 1
    assert payload["error"]["reason"] == "bad_override"


def test_synthesize(service, capsys) -> None:
    code, payload = _run(capsys, "synthesize", "--run-a", "A", "--run-b", "B", "--primary", "B", "--name", "Merged")
    assert code == 0
    assert payload["result"]["run"]["name"] == "Merged"
    assert payload["result"]["run"]["config"]["primary_run_id"] == "B"


def test_snapshot_option_builds_json_store(tmp_path, capsys, mocker) -> None:
    mocker.patch("reconciler.services.kv_store.get_kv_client", return_value=None)
    path = tmp_path / "runs.json"
    path.write_text(json.dumps(make_sample_store().to_dict()), encoding="utf-8")
    code, payload = _run(capsys, "--snapshot", str(path), "compare", "--run-a", "A", "--run-b", "B", "--summary-only")
    assert code == 0
    assert payload["result"]["runA"] == "A"