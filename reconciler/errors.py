# -*- coding: utf-8 -*-
"""
Reconciliation Error Types

Error codes, message templates and the exception hierarchy surfaced by the
engine boundary. Every mutation failure reaches the caller as one of these.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Optional


class ReconcileErrorCode(Enum):
    """Engine error codes"""

    MISSING_RUN_ID = "missing_run_id"               # runA / runB not supplied
    IDENTICAL_RUNS = "identical_runs"               # runA == runB
    INVALID_PRIMARY_RUN = "invalid_primary_run"     # primary not in pair
    INVALID_WINNER = "invalid_winner"               # winner value unusable
    INVALID_OVERRIDE_FIELD = "invalid_override"     # override on untracked field
    EMPTY_UPDATES = "empty_updates"                 # bulk call without items
    RUN_NOT_FOUND = "run_not_found"
    EMAIL_NOT_FOUND = "email_not_found"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    PARTIAL_BATCH = "partial_batch"                 # bulk call partly applied
    STORE_UNAVAILABLE = "store_unavailable"         # Redis / run store down


ERROR_MESSAGES = {
    ReconcileErrorCode.MISSING_RUN_ID: "Both runA and runB are required",
    ReconcileErrorCode.IDENTICAL_RUNS: "runA and runB must be different runs",
    ReconcileErrorCode.INVALID_PRIMARY_RUN: "primaryRun must be either runA or runB",
    ReconcileErrorCode.INVALID_WINNER: "Invalid winner value: {value}",
    ReconcileErrorCode.INVALID_OVERRIDE_FIELD: "Field cannot be overridden: {field}",
    ReconcileErrorCode.EMPTY_UPDATES: "updates array is required",
    ReconcileErrorCode.RUN_NOT_FOUND: "Run not found: {run_id}",
    ReconcileErrorCode.EMAIL_NOT_FOUND: "Email not found in either run: {email_id}",
    ReconcileErrorCode.TRANSACTION_NOT_FOUND: "Transaction {transaction_id} does not belong to email {email_id}",
    ReconcileErrorCode.PARTIAL_BATCH: "Updated {applied_count} of {requested} emails",
    ReconcileErrorCode.STORE_UNAVAILABLE: "Storage unavailable: {reason}",
}


@dataclass
class ReconcileError(Exception):
    """Base engine error"""

    code: ReconcileErrorCode
    message: str
    details: Optional[dict] = None

    def __str__(self) -> str:
        return self.message

    @classmethod
    def from_code(cls, code: ReconcileErrorCode, **kwargs) -> "ReconcileError":
        """Build an error from its code and template arguments."""
        template = ERROR_MESSAGES.get(code, "Reconciliation error")
        message = template.format(**kwargs) if kwargs else template
        return cls(code=code, message=message, details=kwargs if kwargs else None)

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code.value}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ReconcileError):
    """Bad input: identical or missing run ids, unusable winner or override."""


class NotFoundError(ReconcileError):
    """Unknown run, email or transaction referenced by a call."""


class PartialBatchFailure(ReconcileError):
    """A bulk update applied only part of its items."""

    @property
    def applied_count(self) -> int:
        return int((self.details or {}).get("applied_count", 0))


class StoreUnavailableError(ReconcileError):
    """Decision store or run store cannot serve the request."""
