# -*- coding: utf-8 -*-
"""
Run Store Module

Read access to extraction runs and their transactions, plus the single write
the engine needs: persisting a synthesized run. Two backends:

- JsonRunStore: a JSON snapshot ({"runs": [...], "transactions": [...]})
- HttpRunStore: a REST run store reached with requests
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Protocol

import requests

from reconciler.config import RUN_STORE_TIMEOUT, RUN_STORE_TOKEN, RUN_STORE_URL, SNAPSHOT_PATH
from reconciler.errors import NotFoundError, ReconcileErrorCode, StoreUnavailableError
from reconciler.types import Run, Transaction

logger = logging.getLogger(__name__)


class RunStore(Protocol):
    def list_runs(self) -> List[Run]: ...

    def get_run(self, run_id: str) -> Run: ...

    def list_transactions(self, run_id: str) -> List[Transaction]: ...

    def next_version(self, set_id: Optional[str]) -> int: ...

    def save_run(self, run: Run, transactions: List[Transaction]) -> Run: ...


def _next_version(runs: Iterable[Run], set_id: Optional[str]) -> int:
    versions = [run.version for run in runs if run.set_id == set_id]
    return max(versions, default=0) + 1


class JsonRunStore:
    """In-memory store backed by an optional JSON snapshot file."""

    def __init__(self, path: Optional[str] = None, payload: Optional[Dict[str, Any]] = None):
        self.path = path
        if payload is None and path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        payload = payload or {}
        self._runs: Dict[str, Run] = {}
        for item in payload.get("runs") or []:
            run = Run.from_dict(item)
            self._runs[run.id] = run
        self._transactions: List[Transaction] = [Transaction.from_dict(t) for t in payload.get("transactions") or []]
        logger.debug(f"Loaded {len(self._runs)} runs and {len(self._transactions)} transactions")

    def list_runs(self) -> List[Run]:
        return sorted(self._runs.values(), key=lambda run: (run.set_id or "", run.version, run.id))

    def get_run(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError.from_code(ReconcileErrorCode.RUN_NOT_FOUND, run_id=run_id)
        return run

    def list_transactions(self, run_id: str) -> List[Transaction]:
        return [t for t in self._transactions if t.run_id == run_id]

    def next_version(self, set_id: Optional[str]) -> int:
        return _next_version(self._runs.values(), set_id)

    def save_run(self, run: Run, transactions: List[Transaction]) -> Run:
        self._runs[run.id] = run
        self._transactions.extend(transactions)
        if self.path:
            self._write()
        logger.info(f"Saved run {run.id} (v{run.version}) with {len(transactions)} transactions")
        return run

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runs": [run.to_dict() for run in self._runs.values()],
            "transactions": [t.to_dict() for t in self._transactions],
        }

    def _write(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)


class HttpRunStore:
    """REST client for an external run store."""

    def __init__(self, base_url: str = RUN_STORE_URL, token: str = RUN_STORE_TOKEN, timeout: int = RUN_STORE_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, missing_ok: bool = False, **kwargs) -> Any:
        """Send a request; a 404 reads as None only when ``missing_ok``."""
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(method, url, headers=self.headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Run store request failed: {method} {url}: {e}")
            raise StoreUnavailableError.from_code(ReconcileErrorCode.STORE_UNAVAILABLE, reason=str(e)) from e

        if response.status_code == 404 and missing_ok:
            return None
        if response.status_code >= 400:
            logger.error(f"Run store returned {response.status_code} for {method} {url}: {response.text}")
            raise StoreUnavailableError.from_code(
                ReconcileErrorCode.STORE_UNAVAILABLE,
                reason=f"run store returned {response.status_code}",
            )
        if not response.content:
            return None
        return response.json()

    def list_runs(self) -> List[Run]:
        payload = self._request("GET", "/runs", missing_ok=True) or {}
        items = payload.get("runs", []) if isinstance(payload, dict) else payload
        return [Run.from_dict(item) for item in items]

    def get_run(self, run_id: str) -> Run:
        payload = self._request("GET", f"/runs/{run_id}", missing_ok=True)
        if not payload:
            raise NotFoundError.from_code(ReconcileErrorCode.RUN_NOT_FOUND, run_id=run_id)
        return Run.from_dict(payload.get("run", payload))

    def list_transactions(self, run_id: str) -> List[Transaction]:
        payload = self._request("GET", "/transactions", missing_ok=True, params={"runId": run_id}) or {}
        items = payload.get("transactions", []) if isinstance(payload, dict) else payload
        return [Transaction.from_dict(item) for item in items]

    def next_version(self, set_id: Optional[str]) -> int:
        return _next_version(self.list_runs(), set_id)

    def save_run(self, run: Run, transactions: List[Transaction]) -> Run:
        body = {"run": run.to_dict(), "transactions": [t.to_dict() for t in transactions]}
        payload = self._request("POST", "/runs", json=body)
        logger.info(f"Posted run {run.id} (v{run.version}) with {len(transactions)} transactions")
        if isinstance(payload, dict) and payload.get("run"):
            return Run.from_dict(payload["run"])
        return run


def build_run_store() -> RunStore:
    """HTTP store when RUN_STORE_URL is configured, else the local snapshot."""
    if RUN_STORE_URL:
        return HttpRunStore()
    return JsonRunStore(SNAPSHOT_PATH)
