import json
import os
import tempfile
import unittest
from unittest import mock

from botocore.exceptions import ClientError

from amlchain.models import Declaration, DeclarationKey, DeclarationStatus
from amlchain.reconciliation import FinalizeResult
from amlchain_api.config import load_settings
from amlchain_api.db import SqliteDeclarationStore
from amlchain_api.event_log import (
    EVENT_CREATED,
    DeclarationEventLog,
    S3ObjectLockLog,
    get_event_log,
    record_finalize,
)
from amlchain_api.util import canonicalize, sha256_hex

from fakes import NOW, OWNER, SIGNATURE, TX_HASH, VAULT


class TestDeclarationEventLog(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = SqliteDeclarationStore(os.path.join(self._tmp.name, "amlchain.db"))
        self.store.init_schema()
        declaration_id = self.store.create(Declaration(
            owner=OWNER,
            destination=VAULT,
            amount="1",
            nonce="nonce-a",
            deadline=int(NOW.timestamp()) + 60,
            payload_commitment="0x" + "00" * 32,
            signature=SIGNATURE,
            created_at=NOW,
        ))
        self.declaration = self.store.find_by_id(declaration_id)

    def tearDown(self):
        self.store.close()
        self._tmp.cleanup()

    def test_payload_hash_covers_event_body(self):
        log = DeclarationEventLog(self.store)
        log.record(EVENT_CREATED, self.declaration, NOW, amount="1")
        entry = self.store.list_events(self.declaration.id)[0]
        body = json.loads(entry["event_json"])
        self.assertEqual(entry["payload_hash"], sha256_hex(canonicalize(body)))
        self.assertEqual(body["nonce"], "nonce-a")
        self.assertEqual(body["amount"], "1")
        self.assertNotIn("signature", body)

    def test_s3_mirror(self):
        client = mock.Mock()
        mirror = S3ObjectLockLog("audit-bucket", "events", retention_days=30, client=client)
        log = DeclarationEventLog(self.store, mirror)
        entry = log.record(EVENT_CREATED, self.declaration, NOW)

        kwargs = client.put_object.call_args.kwargs
        self.assertEqual(kwargs["Bucket"], "audit-bucket")
        self.assertTrue(kwargs["Key"].startswith("events/"))
        self.assertIn(entry["entry_hash"][:16], kwargs["Key"])
        self.assertEqual(kwargs["ObjectLockMode"], "COMPLIANCE")
        self.assertEqual(kwargs["ObjectLockLegalHoldStatus"], "OFF")

    def test_s3_mirror_failure_keeps_chain_entry(self):
        client = mock.Mock()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "ServiceUnavailable", "Message": "try again"}}, "PutObject"
        )
        log = DeclarationEventLog(self.store, S3ObjectLockLog("audit-bucket", "events", retention_days=30, client=client))
        with self.assertLogs("amlchain_api.event_log", level="ERROR") as logs:
            entry = log.record(EVENT_CREATED, self.declaration, NOW)

        self.assertIn(entry["entry_hash"], logs.output[0])
        events = self.store.list_events(self.declaration.id)
        self.assertEqual([e["entry_hash"] for e in events], [entry["entry_hash"]])

    def test_record_finalize_only_trails_applied(self):
        log = DeclarationEventLog(self.store)
        updated = self.store.transition(DeclarationKey.by_id(self.declaration.id), DeclarationStatus.EXECUTED, TX_HASH)
        record_finalize(log, FinalizeResult(updated, applied=True), "operator", NOW)
        record_finalize(log, FinalizeResult(updated, applied=False), "operator", NOW)
        events = self.store.list_events(self.declaration.id)
        self.assertEqual([e["event_type"] for e in events], ["DECLARATION_FINALIZED"])

    def test_backend_selection(self):
        self.assertIsNone(get_event_log(load_settings(event_log_backend="sqlite_hash_chain"), self.store).mirror)
        with self.assertRaises(RuntimeError):
            get_event_log(load_settings(event_log_backend="s3_object_lock", s3_bucket=""), self.store)
        log = get_event_log(load_settings(event_log_backend="s3_object_lock", s3_bucket="b"), self.store)
        self.assertIsInstance(log.mirror, S3ObjectLockLog)


if __name__ == "__main__":
    unittest.main()
