"""
Logging configuration for the AMLChain declaration service.

Structured JSON logs with a per-request id, plus an AuditLogger that emits
one named event per declaration lifecycle step. Audit fields travel on the
record as ``record.audit`` and are flattened into the JSON line.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from .util import format_timestamp

_request_id: ContextVar[Optional[str]] = ContextVar("amlchain_request_id", default=None)

_SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": format_timestamp(datetime.fromtimestamp(record.created, timezone.utc)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = _request_id.get()
        if request_id:
            entry["request_id"] = request_id
        audit = getattr(record, "audit", None)
        if audit:
            entry.update(audit)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Logger for declaration lifecycle and security events.

    Signatures and operator tokens never reach this logger; callers pass
    ids, nonces and hashes only.
    """

    def __init__(self, name: str = "amlchain.audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event: str, message: str, **fields: Any) -> None:
        self._logger.log(level, message, extra={"audit": {"event": event, **fields}})

    def signing_params_issued(self, owner: str, nonce: str, deadline: int, encoding: str) -> None:
        self._emit(
            logging.INFO, "SIGNING_PARAMS_ISSUED", f"signing parameters issued for {owner}",
            owner=owner, nonce=nonce, deadline=deadline, encoding=encoding,
        )

    def declaration_created(self, declaration_id: str, owner: str, nonce: str, amount: str) -> None:
        self._emit(
            logging.INFO, "DECLARATION_CREATED", f"declaration {declaration_id} created",
            declaration_id=declaration_id, owner=owner, nonce=nonce, amount=amount,
        )

    def declaration_rejected(self, code: str, reason: str, owner: Optional[str] = None, nonce: Optional[str] = None) -> None:
        """Duplicate nonces are warnings; malformed input is info."""
        level = logging.WARNING if code == "DUPLICATE_NONCE" else logging.INFO
        self._emit(
            level, "DECLARATION_REJECTED", f"declaration rejected: {reason}",
            code=code, owner=owner, nonce=nonce,
        )

    def transaction_attached(self, declaration_id: str, tx_hash: str, applied: bool) -> None:
        self._emit(
            logging.INFO, "TRANSACTION_ATTACHED", f"transaction {tx_hash} attached to {declaration_id}",
            declaration_id=declaration_id, tx_hash=tx_hash, applied=applied,
        )

    def declaration_finalized(self, declaration_id: str, status: str, tx_hash: Optional[str], source: str) -> None:
        level = logging.INFO if status == "executed" else logging.WARNING
        self._emit(
            level, "DECLARATION_FINALIZED", f"declaration {declaration_id} {status}",
            declaration_id=declaration_id, status=status, tx_hash=tx_hash, source=source,
        )

    def finalize_noop(self, declaration_id: str, status: str, source: str) -> None:
        """A finalize attempt found the record already terminal."""
        self._emit(
            logging.INFO, "FINALIZE_NOOP", f"declaration {declaration_id} already {status}",
            declaration_id=declaration_id, status=status, source=source,
        )

    def security_event(self, event: str, severity: str = "medium", **details: Any) -> None:
        self._emit(
            _SEVERITY_LEVELS.get(severity, logging.WARNING), "SECURITY_EVENT", f"security event: {event}",
            security_event=event, severity=severity, **details,
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._emit(
            logging.WARNING, "RATE_LIMIT_EXCEEDED", f"rate limit exceeded for {client_id} on {endpoint}",
            client_id=client_id, endpoint=endpoint,
        )


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Route every logger to stdout, as JSON lines or plain text."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one when None."""
    request_id = request_id or uuid.uuid4().hex
    _request_id.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return _request_id.get()


audit_log = AuditLogger()
