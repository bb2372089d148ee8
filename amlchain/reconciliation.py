"""
AMLChain Reconciliation Service

Records an externally observed on-chain outcome onto exactly one
declaration. This service performs no chain verification: it records what
the ledger observer (or a trusted operator) reports and makes that
recording idempotent and race-free through the store's compare-and-set.

Losing a finalize race is a normal outcome. AlreadyFinalized from the store
becomes ``FinalizeResult(applied=False)`` carrying the stored record, so a
polling loop can retry freely and stop once the record is terminal.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional

from .errors import AlreadyFinalized, Expired, LedgerUnavailable
from .models import Declaration, DeclarationKey, DeclarationStatus, utc_now
from .store import DeclarationStore
from .validation import validate_tx_hash

logger = logging.getLogger("amlchain.reconciliation")


class TxOutcome(str, Enum):
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILURE = "failure"


class LedgerObserver(ABC):
    """
    External collaborator reporting a transaction's confirmation outcome.

    Polling cadence, confirmation depth and timeouts belong to the
    implementation. Transient failures raise LedgerUnavailable.
    """

    @abstractmethod
    def get_outcome(self, tx_hash: str) -> TxOutcome:
        pass


@dataclass
class FinalizeResult:
    declaration: Declaration
    applied: bool

    @property
    def settled(self) -> bool:
        return self.declaration.is_terminal

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "declaration": self.declaration.to_dict(now),
        }


class ReconciliationService:

    def __init__(self, store: DeclarationStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    def attach_pending_tx(self, key: DeclarationKey, tx_hash: str) -> FinalizeResult:
        """
        Associate a broadcast transaction with a pending declaration.

        Status is unchanged. On a terminal declaration the call is a no-op
        that returns the stored record.
        """
        tx_hash = validate_tx_hash(tx_hash)
        try:
            return FinalizeResult(self.store.attach_tx(key, tx_hash), applied=True)
        except AlreadyFinalized as e:
            return FinalizeResult(e.declaration, applied=False)

    def finalize(
        self,
        key: DeclarationKey,
        tx_hash: Optional[str],
        success: bool,
        enforce_deadline: bool = False,
    ) -> FinalizeResult:
        """
        Move a pending declaration to ``executed`` or ``failed``.

        Args:
            key: declaration id or nonce
            tx_hash: transaction carrying the outcome; keeps any attached
                hash when None
            success: outcome reported by the observer or operator
            enforce_deadline: reject a still-pending record whose deadline
                has passed (operator path)

        Raises:
            NotFound: no declaration for the key
            Expired: enforce_deadline is set and the record expired pending
        """
        if tx_hash is not None:
            tx_hash = validate_tx_hash(tx_hash)
        now = self._clock()
        if enforce_deadline:
            current = self.store.get(key)
            if current.is_terminal:
                return FinalizeResult(current, applied=False)
            if current.is_expired(now):
                raise Expired(current)

        to_status = DeclarationStatus.EXECUTED if success else DeclarationStatus.FAILED
        try:
            return FinalizeResult(self.store.transition(key, to_status, tx_hash, now), applied=True)
        except AlreadyFinalized as e:
            return FinalizeResult(e.declaration, applied=False)

    def reconcile(self, key: DeclarationKey, observer: LedgerObserver) -> FinalizeResult:
        """
        One observation round for a single declaration.

        Returns without mutation while the declaration has no tx hash or the
        observer does not yet know the outcome.
        """
        current = self.store.get(key)
        if current.is_terminal or not current.tx_hash:
            return FinalizeResult(current, applied=False)
        outcome = observer.get_outcome(current.tx_hash)
        if outcome is TxOutcome.UNKNOWN:
            return FinalizeResult(current, applied=False)
        return self.finalize(key, current.tx_hash, outcome is TxOutcome.SUCCESS)

    def reconcile_unsettled(self, observer: LedgerObserver, limit: int = 100) -> Iterator[FinalizeResult]:
        """
        Run one observation round over pending declarations with a tx hash.

        Yields each result as soon as it is recorded so the caller can trail
        an applied finalize before the next lookup. A record the observer
        cannot answer for stays pending and is retried on the next round.
        """
        for declaration in self.store.list_unsettled(limit):
            key = DeclarationKey.by_id(declaration.id)
            try:
                result = self.reconcile(key, observer)
            except LedgerUnavailable as e:
                logger.warning("ledger lookup failed for %s, retrying next round: %s", declaration.id, e.message)
                continue
            yield result
