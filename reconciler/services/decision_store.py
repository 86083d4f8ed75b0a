# -*- coding: utf-8 -*-
"""
Decision Store Module

Per run pair, per email reviewer decisions and field overrides, kept in two
Redis hashes keyed by the pair. The pair key is order-independent, so
comparing (A, B) and (B, A) shows the same decisions.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from reconciler.config import DECISION_TTL
from reconciler.errors import ReconcileErrorCode, StoreUnavailableError
from reconciler.services.kv_store import KVStore
from reconciler.types import Decision, Winner

logger = logging.getLogger(__name__)

DECISIONS_KEY = "decisions:{pair}"
OVERRIDES_KEY = "overrides:{pair}"


def pair_key(run_a_id: str, run_b_id: str) -> str:
    return ":".join(sorted((run_a_id, run_b_id)))


class DecisionStore:
    def __init__(self, run_a_id: str, run_b_id: str, kv: Optional[KVStore] = None, ttl: int = DECISION_TTL):
        self.pair = pair_key(run_a_id, run_b_id)
        self.kv = kv or KVStore()
        self.ttl = ttl

    @property
    def _decisions_key(self) -> str:
        return DECISIONS_KEY.format(pair=self.pair)

    @property
    def _overrides_key(self) -> str:
        return OVERRIDES_KEY.format(pair=self.pair)

    def _write(self, key: str, email_id: str, value: Optional[Any]) -> None:
        ok = self.kv.hdel(key, email_id) if value is None else self.kv.hset(key, email_id, value, ttl=self.ttl)
        if not ok:
            raise StoreUnavailableError.from_code(
                ReconcileErrorCode.STORE_UNAVAILABLE,
                reason=f"could not write {key} for email {email_id}",
            )

    def _read_for_update(self, key: str, email_id: str) -> Optional[Any]:
        """Current value of a field; a failed read raises rather than reading as empty."""
        try:
            return self.kv.hget(key, email_id, strict=True)
        except Exception as e:
            raise StoreUnavailableError.from_code(
                ReconcileErrorCode.STORE_UNAVAILABLE,
                reason=f"could not read {key} for email {email_id}",
            ) from e

    # Decisions

    def get_decision(self, email_id: str) -> Optional[Decision]:
        payload = self.kv.hget(self._decisions_key, email_id)
        return Decision.from_dict(payload) if payload else None

    def all_decisions(self) -> Dict[str, Decision]:
        return {
            email_id: Decision.from_dict(payload)
            for email_id, payload in self.kv.hgetall(self._decisions_key).items()
        }

    def set_decision(self, email_id: str, winner: Optional[Winner], toggle: bool = False) -> Optional[Decision]:
        """
        Replace, clear or toggle the selection for an email.

        Without toggle, the winner replaces any prior selection and ``None``
        clears it, so repeating a call changes nothing. With toggle, the
        winner's membership in the selection set is flipped.
        """
        if winner is None:
            self._write(self._decisions_key, email_id, None)
            logger.info(f"Cleared decision for email {email_id} ({self.pair})")
            return None

        if toggle:
            payload = self._read_for_update(self._decisions_key, email_id)
            selection = list(Decision.from_dict(payload).selection) if payload else []
            existing = next((w for w in selection if w.to_value() == winner.to_value()), None)
            if existing is not None:
                selection.remove(existing)
            else:
                selection.append(winner)
        else:
            selection = [winner]

        if not selection:
            self._write(self._decisions_key, email_id, None)
            return None

        decision = Decision(email_id=email_id, selection=tuple(selection))
        self._write(self._decisions_key, email_id, decision.to_dict())
        logger.info(f"Set decision for email {email_id} ({self.pair}): {[w.to_value() for w in selection]}")
        return decision

    # Field overrides

    def get_overrides(self, email_id: str) -> Dict[str, Any]:
        return dict(self.kv.hget(self._overrides_key, email_id) or {})

    def all_overrides(self) -> Dict[str, Dict[str, Any]]:
        return {email_id: dict(values or {}) for email_id, values in self.kv.hgetall(self._overrides_key).items()}

    def set_field_override(self, email_id: str, overrides: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge overrides into the email's map; a ``None`` value clears that field."""
        merged = dict(self._read_for_update(self._overrides_key, email_id) or {})
        for field_name, value in overrides.items():
            if value is None:
                merged.pop(field_name, None)
            else:
                merged[field_name] = value

        self._write(self._overrides_key, email_id, merged or None)
        logger.info(f"Field overrides for email {email_id} ({self.pair}): {sorted(merged)}")
        return merged
