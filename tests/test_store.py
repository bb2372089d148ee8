import os
import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from amlchain.errors import AlreadyFinalized, DuplicateNonce, NotFound
from amlchain.models import Declaration, DeclarationKey, DeclarationStatus
from amlchain.store import InMemoryDeclarationStore
from amlchain_api.db import SqliteDeclarationStore
from amlchain_api.util import chain_entry_hash

from fakes import NOW, OTHER_OWNER, OTHER_TX_HASH, OWNER, SIGNATURE, TX_HASH, VAULT


def make_declaration(nonce, owner=OWNER, minutes=0, **kwargs):
    return Declaration(
        owner=owner,
        destination=VAULT,
        amount="100500000",
        nonce=nonce,
        deadline=int(NOW.timestamp()) + 3600,
        payload_commitment="0x" + "00" * 32,
        signature=SIGNATURE,
        created_at=NOW + timedelta(minutes=minutes),
        **kwargs
    )


class StoreContract:
    """Behavior every DeclarationStore must share."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def tearDown(self):
        self.store.close()

    def test_create_and_find(self):
        declaration_id = self.store.create(make_declaration("nonce-a"))
        by_id = self.store.find_by_id(declaration_id)
        by_nonce = self.store.find_by_nonce("nonce-a")
        self.assertEqual(by_id.id, declaration_id)
        self.assertEqual(by_nonce.id, declaration_id)
        self.assertEqual(by_id.status, DeclarationStatus.PENDING)
        self.assertIsNone(by_id.executed_at)
        self.assertIsNone(by_id.tx_hash)
        self.assertEqual(by_id.amount, "100500000")
        self.assertEqual(by_id.signature, SIGNATURE)

    def test_missing_records(self):
        self.assertIsNone(self.store.find_by_id("f" * 32))
        self.assertIsNone(self.store.find_by_nonce("nope"))
        with self.assertRaises(NotFound):
            self.store.get(DeclarationKey.by_nonce("nope"))
        with self.assertRaises(NotFound):
            self.store.transition(DeclarationKey.by_nonce("nope"), DeclarationStatus.EXECUTED)
        with self.assertRaises(NotFound):
            self.store.attach_tx(DeclarationKey.by_nonce("nope"), TX_HASH)

    def test_duplicate_nonce_rejected(self):
        first = self.store.create(make_declaration("nonce-a"))
        with self.assertRaises(DuplicateNonce):
            self.store.create(make_declaration("nonce-a", owner=OTHER_OWNER))
        stored = self.store.find_by_nonce("nonce-a")
        self.assertEqual(stored.id, first)
        self.assertEqual(stored.owner, OWNER)

    def test_concurrent_create_single_winner(self):
        def attempt(i):
            try:
                self.store.create(make_declaration("shared-nonce", minutes=i))
                return "created"
            except DuplicateNonce:
                return "duplicate"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(16)))
        self.assertEqual(outcomes.count("created"), 1)
        self.assertEqual(outcomes.count("duplicate"), 15)

    def test_transition_to_executed(self):
        self.store.create(make_declaration("nonce-a"))
        key = DeclarationKey.by_nonce("nonce-a")
        at = NOW + timedelta(hours=1)
        updated = self.store.transition(key, DeclarationStatus.EXECUTED, TX_HASH, at)
        self.assertEqual(updated.status, DeclarationStatus.EXECUTED)
        self.assertEqual(updated.tx_hash, TX_HASH)
        self.assertEqual(updated.executed_at, at)

    def test_transition_to_failed_has_no_executed_at(self):
        self.store.create(make_declaration("nonce-a"))
        updated = self.store.transition(DeclarationKey.by_nonce("nonce-a"), DeclarationStatus.FAILED, TX_HASH)
        self.assertEqual(updated.status, DeclarationStatus.FAILED)
        self.assertIsNone(updated.executed_at)

    def test_terminal_is_final(self):
        self.store.create(make_declaration("nonce-a"))
        key = DeclarationKey.by_nonce("nonce-a")
        self.store.transition(key, DeclarationStatus.EXECUTED, TX_HASH)
        with self.assertRaises(AlreadyFinalized) as ctx:
            self.store.transition(key, DeclarationStatus.FAILED, OTHER_TX_HASH)
        self.assertEqual(ctx.exception.declaration.status, DeclarationStatus.EXECUTED)
        self.assertEqual(ctx.exception.declaration.tx_hash, TX_HASH)
        stored = self.store.get(key)
        self.assertEqual(stored.status, DeclarationStatus.EXECUTED)
        self.assertEqual(stored.tx_hash, TX_HASH)

    def test_transition_requires_terminal_target(self):
        self.store.create(make_declaration("nonce-a"))
        with self.assertRaises(ValueError):
            self.store.transition(DeclarationKey.by_nonce("nonce-a"), DeclarationStatus.PENDING)

    def test_concurrent_transition_single_winner(self):
        self.store.create(make_declaration("nonce-a"))
        key = DeclarationKey.by_nonce("nonce-a")

        def attempt(i):
            status = DeclarationStatus.EXECUTED if i % 2 else DeclarationStatus.FAILED
            try:
                self.store.transition(key, status, TX_HASH)
                return "applied"
            except AlreadyFinalized:
                return "lost"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(16)))
        self.assertEqual(outcomes.count("applied"), 1)
        self.assertTrue(self.store.get(key).is_terminal)

    def test_attach_tx_keeps_pending(self):
        self.store.create(make_declaration("nonce-a"))
        key = DeclarationKey.by_nonce("nonce-a")
        updated = self.store.attach_tx(key, TX_HASH)
        self.assertEqual(updated.status, DeclarationStatus.PENDING)
        self.assertEqual(updated.tx_hash, TX_HASH)
        # a later transition without a hash keeps the attached one
        final = self.store.transition(key, DeclarationStatus.EXECUTED)
        self.assertEqual(final.tx_hash, TX_HASH)

    def test_attach_tx_on_terminal(self):
        self.store.create(make_declaration("nonce-a"))
        key = DeclarationKey.by_nonce("nonce-a")
        self.store.transition(key, DeclarationStatus.FAILED, TX_HASH)
        with self.assertRaises(AlreadyFinalized):
            self.store.attach_tx(key, OTHER_TX_HASH)
        self.assertEqual(self.store.get(key).tx_hash, TX_HASH)

    def test_list_by_owner(self):
        self.store.create(make_declaration("n1", minutes=1))
        self.store.create(make_declaration("n2", minutes=2))
        self.store.create(make_declaration("n3", minutes=3))
        self.store.create(make_declaration("other", owner=OTHER_OWNER))
        self.store.transition(DeclarationKey.by_nonce("n2"), DeclarationStatus.EXECUTED, TX_HASH)

        records = self.store.list_by_owner(OWNER.upper().replace("0X", "0x"))
        self.assertEqual([d.nonce for d in records], ["n3", "n2", "n1"])
        executed = self.store.list_by_owner(OWNER, DeclarationStatus.EXECUTED)
        self.assertEqual([d.nonce for d in executed], ["n2"])
        self.assertEqual(self.store.list_by_owner("0x" + "77" * 20), [])

    def test_list_unsettled(self):
        self.store.create(make_declaration("n1", minutes=1))
        self.store.create(make_declaration("n2", minutes=2))
        self.store.create(make_declaration("n3", minutes=3))
        self.store.attach_tx(DeclarationKey.by_nonce("n2"), TX_HASH)
        self.store.attach_tx(DeclarationKey.by_nonce("n3"), OTHER_TX_HASH)
        self.store.transition(DeclarationKey.by_nonce("n3"), DeclarationStatus.EXECUTED)
        self.assertEqual([d.nonce for d in self.store.list_unsettled()], ["n2"])


class TestInMemoryStore(StoreContract, unittest.TestCase):

    def make_store(self):
        return InMemoryDeclarationStore()

    def test_rejects_non_pending_create(self):
        with self.assertRaises(ValueError):
            self.store.create(make_declaration("n", status=DeclarationStatus.EXECUTED))


class TestSqliteStore(StoreContract, unittest.TestCase):

    def make_store(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmp.name, "amlchain.db")
        store = SqliteDeclarationStore(self.db_path)
        store.init_schema()
        return store

    def tearDown(self):
        super().tearDown()
        self._tmp.cleanup()

    def test_persists_across_handles(self):
        declaration_id = self.store.create(make_declaration("nonce-a"))
        self.store.close()
        reopened = SqliteDeclarationStore(self.db_path)
        try:
            reopened.init_schema()
            self.assertEqual(reopened.find_by_nonce("nonce-a").id, declaration_id)
            with self.assertRaises(DuplicateNonce):
                reopened.create(make_declaration("nonce-a"))
        finally:
            reopened.close()

    def test_timestamps_round_trip(self):
        self.store.create(make_declaration("nonce-a"))
        stored = self.store.find_by_nonce("nonce-a")
        self.assertEqual(stored.created_at, NOW)
        self.assertIsNotNone(stored.created_at.tzinfo)

    def test_event_chain(self):
        first = self.store.append_event("a" * 32, "DECLARATION_CREATED", NOW, "p1", "{}")
        second = self.store.append_event("a" * 32, "DECLARATION_FINALIZED", NOW, "p2", "{}")
        self.store.append_event("b" * 32, "DECLARATION_CREATED", NOW, "p3", "{}")

        self.assertIsNone(first["prev_entry_hash"])
        self.assertEqual(first["entry_hash"], chain_entry_hash(None, "p1"))
        self.assertEqual(second["prev_entry_hash"], first["entry_hash"])
        self.assertEqual(second["entry_hash"], chain_entry_hash(first["entry_hash"], "p2"))

        self.assertEqual(len(self.store.list_events("a" * 32)), 2)
        self.assertEqual(len(self.store.list_events()), 3)
        head = self.store.event_chain_head()
        self.assertEqual(head["entries"], 3)
        self.assertEqual(head["head_entry_hash"], self.store.list_events()[-1]["entry_hash"])

    def test_concurrent_appends_stay_linked(self):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(
                lambda i: self.store.append_event("a" * 32, "E", NOW, f"p{i}", "{}"),
                range(24),
            ))
        events = self.store.list_events()
        prev = None
        for event in events:
            self.assertEqual(event["prev_entry_hash"], prev)
            self.assertEqual(event["entry_hash"], chain_entry_hash(prev, event["payload_hash"]))
            prev = event["entry_hash"]

    def test_stats(self):
        self.store.create(make_declaration("n1"))
        self.store.create(make_declaration("n2"))
        self.store.transition(DeclarationKey.by_nonce("n2"), DeclarationStatus.FAILED, TX_HASH)
        stats = self.store.get_stats()
        self.assertEqual(stats["pending_count"], 1)
        self.assertEqual(stats["failed_count"], 1)
        self.assertEqual(stats["executed_count"], 0)
        self.assertEqual(stats["events_count"], 0)


if __name__ == "__main__":
    unittest.main()
