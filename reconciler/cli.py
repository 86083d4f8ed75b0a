# -*- coding: utf-8 -*-
"""Run comparison CLI.

Local entry for reviewing two extraction runs without the HTTP API. Reads runs
from a JSON snapshot (or the REST run store when RUN_STORE_URL is set) and
prints one JSON object per call:

    python -m reconciler.cli compare --run-a r1 --run-b r2
    python -m reconciler.cli decide --run-a r1 --run-b r2 --email-id e1 --winner tie
    python -m reconciler.cli synthesize --run-a r1 --run-b r2 --primary r1
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from reconciler.config import LOG_LEVEL
from reconciler.errors import PartialBatchFailure, ReconcileError
from reconciler.pipeline.grouper import build_bulk_updates, group_by_type
from reconciler.services.reconcile_service import ReconcileService
from reconciler.services.run_store import JsonRunStore, build_run_store


def _print_json(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False))
    sys.stdout.write("\n")


def _error(error: ReconcileError) -> int:
    _print_json({"status": "error", "error": {"message": error.message, "reason": error.code.value, "details": error.details}})
    return 1


def _build_service(args: argparse.Namespace) -> ReconcileService:
    store = JsonRunStore(args.snapshot) if args.snapshot else build_run_store()
    return ReconcileService(run_store=store)


def _parse_overrides(pairs: list[str], clears: list[str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for item in pairs:
        if "=" not in item:
            raise argparse.ArgumentTypeError(f"expected FIELD=VALUE, got {item!r}")
        key, value = item.split("=", 1)
        overrides[key.strip()] = value
    for key in clears:
        overrides[key.strip()] = None
    return overrides


def cmd_compare(args: argparse.Namespace) -> int:
    result = _build_service(args).get_comparison(args.run_a, args.run_b)
    payload = result.to_dict()
    if args.summary_only:
        payload = {"runA": payload["runA"]["id"], "runB": payload["runB"]["id"], "summary": payload["summary"]}
    _print_json({"status": "ok", "result": payload})
    return 0


def cmd_groups(args: argparse.Namespace) -> int:
    groups = _build_service(args).get_groups(args.run_a, args.run_b)
    _print_json({"status": "ok", "result": [g.to_dict() for g in groups]})
    return 0


def cmd_decide(args: argparse.Namespace) -> int:
    decision = _build_service(args).set_decision(
        args.run_a, args.run_b, args.email_id, args.winner, toggle=bool(args.toggle)
    )
    selection = [w.to_value() for w in decision.selection] if decision else []
    _print_json({"status": "ok", "result": {"emailId": args.email_id, "selection": selection}})
    return 0


def cmd_bulk(args: argparse.Namespace) -> int:
    """Apply one action to every email of a type group (or of the whole "different" list)."""
    service = _build_service(args)
    groups = group_by_type(service.get_comparison(args.run_a, args.run_b).comparisons)
    comparisons = [c for g in groups if args.type is None or g.type == args.type for c in g.comparisons]
    updates = build_bulk_updates(comparisons, args.action)
    if not updates:
        _print_json({"status": "ok", "result": {"updated": 0, "message": "No emails matched"}})
        return 0

    try:
        result = service.bulk_set_decision(args.run_a, args.run_b, updates)
    except PartialBatchFailure as e:
        _print_json({"status": "partial", "result": {"updated": e.applied_count, "failures": e.details.get("failures")}})
        return 1
    _print_json({"status": "ok", "result": {"updated": result["applied"], "message": result["message"]}})
    return 0


def cmd_override(args: argparse.Namespace) -> int:
    try:
        overrides = _parse_overrides(args.set or [], args.clear or [])
    except argparse.ArgumentTypeError as e:
        _print_json({"status": "error", "error": {"message": str(e), "reason": "bad_override"}})
        return 1

    merged = _build_service(args).set_field_override(args.run_a, args.run_b, args.email_id, overrides)
    _print_json({"status": "ok", "result": {"emailId": args.email_id, "fieldOverrides": merged}})
    return 0


def cmd_synthesize(args: argparse.Namespace) -> int:
    result = _build_service(args).synthesize(args.run_a, args.run_b, args.primary, name=args.name)
    _print_json({"status": "ok", "result": result.to_dict()})
    return 0


def _add_pair_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--run-a", required=True)
    parser.add_argument("--run-b", required=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reconciler", description="Compare and merge two extraction runs")
    parser.add_argument("--snapshot", help="JSON snapshot of runs and transactions (default: SNAPSHOT_PATH / run store)")
    sub = parser.add_subparsers(dest="command", required=True)

    compare = sub.add_parser("compare", help="Compare two runs email by email")
    _add_pair_args(compare)
    compare.add_argument("--summary-only", action="store_true", help="Print only the summary")
    compare.set_defaults(func=cmd_compare)

    groups = sub.add_parser("groups", help="Group differing emails by type and pattern")
    _add_pair_args(groups)
    groups.set_defaults(func=cmd_groups)

    decide = sub.add_parser("decide", help="Set, clear or toggle the winner for an email")
    _add_pair_args(decide)
    decide.add_argument("--email-id", required=True)
    decide.add_argument("--winner", help="Transaction id, tie, exclude or discussion (omit to clear)")
    decide.add_argument("--toggle", action="store_true", help="Flip membership in a multi-transaction selection")
    decide.set_defaults(func=cmd_decide)

    bulk = sub.add_parser("bulk", help="Apply one decision to a group of differing emails")
    _add_pair_args(bulk)
    bulk.add_argument("--action", required=True, choices=["a", "b", "tie", "exclude", "discussion"])
    bulk.add_argument("--type", help="Restrict to one transaction type")
    bulk.set_defaults(func=cmd_bulk)

    override = sub.add_parser("override", help="Set or clear field overrides for an email")
    _add_pair_args(override)
    override.add_argument("--email-id", required=True)
    override.add_argument("--set", action="append", metavar="FIELD=VALUE")
    override.add_argument("--clear", action="append", metavar="FIELD")
    override.set_defaults(func=cmd_override)

    synthesize = sub.add_parser("synthesize", help="Create a merged run from the decisions")
    _add_pair_args(synthesize)
    synthesize.add_argument("--primary", required=True, help="Run whose transaction is used when no winner is set")
    synthesize.add_argument("--name")
    synthesize.set_defaults(func=cmd_synthesize)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args))
    except ReconcileError as e:
        return _error(e)


if __name__ == "__main__":
    raise SystemExit(main())
