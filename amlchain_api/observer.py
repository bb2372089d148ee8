"""
JSON-RPC ledger observer.

Reports a transaction's outcome from ``eth_getTransactionReceipt``:
no receipt yet or too few confirmations is UNKNOWN, receipt status 0x1 is
SUCCESS and 0x0 is FAILURE. Transport and RPC errors raise
LedgerUnavailable so the caller can retry on its own cadence.
"""

import itertools
import logging
from typing import Any, List, Optional

import requests

from amlchain.errors import LedgerUnavailable
from amlchain.reconciliation import LedgerObserver, TxOutcome

logger = logging.getLogger(__name__)


class JsonRpcLedgerObserver(LedgerObserver):

    def __init__(self, url: str, min_confirmations: int = 1, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.min_confirmations = max(1, int(min_confirmations))
        self.timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = self._session.post(self.url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise LedgerUnavailable(cause=e) from e
        if body.get("error"):
            raise LedgerUnavailable(f"RPC error from {method}: {body['error']}")
        return body.get("result")

    def block_number(self) -> int:
        return int(self._rpc("eth_blockNumber", []), 16)

    def get_outcome(self, tx_hash: str) -> TxOutcome:
        receipt = self._rpc("eth_getTransactionReceipt", [tx_hash])
        if not receipt or receipt.get("blockNumber") is None:
            return TxOutcome.UNKNOWN

        if self.min_confirmations > 1:
            confirmations = self.block_number() - int(receipt["blockNumber"], 16) + 1
            if confirmations < self.min_confirmations:
                logger.debug("tx %s has %d/%d confirmations", tx_hash, confirmations, self.min_confirmations)
                return TxOutcome.UNKNOWN

        status = receipt.get("status")
        if status is None:
            # pre-Byzantium receipts carry no status
            return TxOutcome.UNKNOWN
        return TxOutcome.SUCCESS if int(status, 16) == 1 else TxOutcome.FAILURE


def get_observer(settings) -> Optional[LedgerObserver]:
    if not settings.ledger_rpc_url:
        return None
    return JsonRpcLedgerObserver(
        settings.ledger_rpc_url,
        min_confirmations=settings.ledger_min_confirmations,
        timeout=settings.ledger_rpc_timeout,
    )
