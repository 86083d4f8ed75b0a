# -*- coding: utf-8 -*-
"""
Vercel Serverless Function - Run Comparison API

This module handles:
1. Loading the comparison of two extraction runs (with summary)
2. Recording reviewer decisions, single and bulk
3. Recording per-field overrides
4. Synthesizing a merged run from the decisions
"""

import sys
from pathlib import Path

# Add project root to sys.path for local development
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import logging
from flask import Flask, jsonify, request

from reconciler.config import LOG_LEVEL
from reconciler.errors import (
    NotFoundError,
    PartialBatchFailure,
    ReconcileError,
    StoreUnavailableError,
    ValidationError,
)
from reconciler.services.reconcile_service import ReconcileService

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Lazy initialization (Vercel serverless requirement)
_service = None


def get_service() -> ReconcileService:
    """Get or initialize the reconcile service (lazy initialization)"""
    global _service
    if _service is None:
        logger.info("Initializing ReconcileService")
        _service = ReconcileService()
    return _service


def _status_for(error: ReconcileError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, PartialBatchFailure):
        return 207
    if isinstance(error, StoreUnavailableError):
        return 503
    return 500


@app.errorhandler(ReconcileError)
def handle_reconcile_error(error: ReconcileError):
    status = _status_for(error)
    if status >= 500:
        logger.error(f"{error.code.value}: {error.message}")
    else:
        logger.warning(f"{error.code.value}: {error.message}")
    return jsonify(error.to_dict()), status


def _body() -> dict:
    return request.get_json(silent=True) or {}


@app.route("/api/health", methods=['GET'])
def health():
    """Health check endpoint"""
    return jsonify({"status": "ok", "kvEnabled": get_service().kv.enabled}), 200


@app.route("/api/compare", methods=['GET'])
def get_comparison():
    result = get_service().get_comparison(request.args.get("runA"), request.args.get("runB"))
    return jsonify(result.to_dict())


@app.route("/api/compare", methods=['POST'])
def set_decision():
    """
    Set, clear or toggle the winner for one email

    Body: {runA, runB, emailId, winnerTransactionId, toggle?}
    winnerTransactionId is a transaction id, "tie", "exclude", "discussion",
    or null to clear.
    """
    body = _body()
    email_id = body.get("emailId")
    decision = get_service().set_decision(
        body.get("runA"),
        body.get("runB"),
        email_id,
        body.get("winnerTransactionId"),
        toggle=bool(body.get("toggle", False)),
    )
    return jsonify({
        "success": True,
        "emailId": email_id,
        "selection": [w.to_value() for w in decision.selection] if decision else [],
    })


@app.route("/api/compare", methods=['PUT'])
def bulk_set_decision():
    """Body: {runA, runB, updates: [{emailId, winnerTransactionId}]}"""
    body = _body()
    result = get_service().bulk_set_decision(body.get("runA"), body.get("runB"), body.get("updates") or [])
    return jsonify({"success": True, "updated": result["applied"], "message": result["message"]})


@app.route("/api/compare", methods=['PATCH'])
def set_field_override():
    """Body: {runA, runB, emailId, fieldOverrides: {field: value|null}}"""
    body = _body()
    email_id = body.get("emailId")
    overrides = get_service().set_field_override(
        body.get("runA"),
        body.get("runB"),
        email_id,
        body.get("fieldOverrides") or {},
    )
    return jsonify({"success": True, "emailId": email_id, "fieldOverrides": overrides})


@app.route("/api/compare/groups", methods=['GET'])
def get_groups():
    groups = get_service().get_groups(request.args.get("runA"), request.args.get("runB"))
    return jsonify({"groups": [g.to_dict() for g in groups]})


@app.route("/api/runs/synthesize", methods=['POST'])
def synthesize():
    """Body: {runA, runB, primaryRun, name?}"""
    body = _body()
    result = get_service().synthesize(
        body.get("runA"),
        body.get("runB"),
        body.get("primaryRun"),
        name=body.get("name"),
    )
    return jsonify(result.to_dict()), 201


# Local development entry point
if __name__ == "__main__":
    app.run(debug=True, port=5000)
