"""
Declaration lifecycle event trail.

Every accepted state change (created, transaction attached, finalized) is
appended to a SHA-256 hash chain in SQLite. With
``EVENT_LOG_BACKEND=s3_object_lock`` each entry is also written as an
immutable object to an S3 bucket with Object Lock.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from amlchain.models import Declaration
from amlchain.reconciliation import FinalizeResult

from .db import SqliteDeclarationStore
from .logging_config import audit_log
from .util import canonicalize, format_timestamp, sha256_hex

logger = logging.getLogger(__name__)

EVENT_CREATED = "DECLARATION_CREATED"
EVENT_TX_ATTACHED = "TRANSACTION_ATTACHED"
EVENT_FINALIZED = "DECLARATION_FINALIZED"


class MirrorWriteError(Exception):
    """An event could not be copied to the mirror; the SQLite chain entry stands."""


class EventMirror:
    def write_entry(self, declaration_id: str, event_type: str, occurred_at: str, entry_hash: str, event_json: str) -> None:
        raise NotImplementedError


class S3ObjectLockLog(EventMirror):
    """Writes each event JSON as a separate immutable object to an S3 bucket with Object Lock.
    Requires bucket with Object Lock enabled.
    Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
    """
    def __init__(self, bucket: str, prefix: str, retention_days: int, legal_hold: str = "OFF", client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client

    def _s3(self):
        if self._client is None:
            import boto3
            self._client = boto3.client("s3")
        return self._client

    def write_entry(self, declaration_id: str, event_type: str, occurred_at: str, entry_hash: str, event_json: str) -> None:
        try:
            from botocore.exceptions import BotoCoreError, ClientError
        except ImportError as e:
            raise MirrorWriteError("boto3 required for S3 Object Lock logging. Install amlchain[s3]") from e

        key = f"{self.prefix}{occurred_at}-{event_type}-{declaration_id}-{entry_hash[:16]}.json"
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        try:
            self._s3().put_object(
                Bucket=self.bucket,
                Key=key,
                Body=event_json.encode("utf-8"),
                ContentType="application/json",
                ObjectLockMode="COMPLIANCE",
                ObjectLockRetainUntilDate=retain_until,
                ObjectLockLegalHoldStatus=self.legal_hold
            )
        except (BotoCoreError, ClientError) as e:
            raise MirrorWriteError(f"put_object failed for s3://{self.bucket}/{key}") from e


class DeclarationEventLog:
    """Hash-chained event trail backed by the declaration store."""

    def __init__(self, store: SqliteDeclarationStore, mirror: Optional[EventMirror] = None):
        self.store = store
        self.mirror = mirror

    def record(self, event_type: str, declaration: Declaration, at: datetime, **details: Any) -> Dict[str, Any]:
        """
        Append one event and return its chain entry.

        The signature is not part of the event body; the record is
        identified by id, nonce and payload commitment.

        The state change behind the event is already committed when this
        runs, so a mirror failure is logged with the entry hash for backfill
        from ``/audit/events`` instead of failing the request.
        """
        body = {
            "event_type": event_type,
            "declaration_id": declaration.id,
            "nonce": declaration.nonce,
            "owner": declaration.owner,
            "status": declaration.status.value,
            "tx_hash": declaration.tx_hash,
            "payload_commitment": declaration.payload_commitment,
            "occurred_at": format_timestamp(at),
        }
        body.update(details)
        payload_hash = sha256_hex(canonicalize(body))
        event_json = json.dumps(body, sort_keys=True)
        entry = self.store.append_event(declaration.id, event_type, at, payload_hash, event_json)
        if self.mirror is not None:
            try:
                self.mirror.write_entry(declaration.id, event_type, body["occurred_at"], entry["entry_hash"], event_json)
            except MirrorWriteError as e:
                logger.error("event mirror write failed (seq=%s entry_hash=%s): %s", entry["seq"], entry["entry_hash"], e)
                audit_log.security_event(
                    "event_mirror_write_failed",
                    severity="high",
                    declaration_id=declaration.id,
                    entry_hash=entry["entry_hash"],
                )
        return entry


def get_event_log(settings, store: SqliteDeclarationStore) -> DeclarationEventLog:
    mirror = None
    if settings.event_log_backend == "s3_object_lock":
        if not settings.s3_bucket:
            raise RuntimeError("S3_BUCKET is required for the s3_object_lock event log backend")
        mirror = S3ObjectLockLog(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            retention_days=settings.s3_retention_days,
            legal_hold=settings.s3_legal_hold,
        )
    return DeclarationEventLog(store, mirror)


def record_finalize(events: DeclarationEventLog, result: FinalizeResult, source: str, at: datetime) -> None:
    """Trail and audit a finalize attempt; only an applied transition adds a chain entry."""
    declaration = result.declaration
    if result.applied:
        events.record(EVENT_FINALIZED, declaration, at, source=source)
        audit_log.declaration_finalized(declaration.id, declaration.status.value, declaration.tx_hash, source)
    elif declaration.is_terminal:
        audit_log.finalize_noop(declaration.id, declaration.status.value, source)
