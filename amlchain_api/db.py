"""
Database module for the AMLChain declaration service.

SQLite-backed DeclarationStore. The store is an explicitly constructed
handle: ``create_app`` builds one per process, ``init_schema`` runs at
startup and ``close`` at shutdown. Each thread gets its own connection.

Atomicity comes from SQLite itself:
- the UNIQUE constraint on ``nonce`` rejects a colliding create
- ``UPDATE ... WHERE status='pending'`` is the compare-and-set transition
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from amlchain.errors import AlreadyFinalized, DuplicateNonce, NotFound, StoreUnavailable
from amlchain.models import Declaration, DeclarationKey, DeclarationStatus, utc_now
from amlchain.store import DeclarationStore, generate_id

from .util import chain_entry_hash, format_timestamp, parse_timestamp

_COLUMNS = (
    "id, owner, destination, amount, nonce, deadline, payload_commitment, "
    "declaration_text_hash, signature, status, created_at, executed_at, tx_hash"
)


def _row_to_declaration(row: sqlite3.Row) -> Declaration:
    return Declaration(
        id=row["id"],
        owner=row["owner"],
        destination=row["destination"],
        amount=row["amount"],
        nonce=row["nonce"],
        deadline=int(row["deadline"]),
        payload_commitment=row["payload_commitment"],
        declaration_text_hash=row["declaration_text_hash"],
        signature=row["signature"],
        status=DeclarationStatus(row["status"]),
        created_at=parse_timestamp(row["created_at"]),
        executed_at=parse_timestamp(row["executed_at"]),
        tx_hash=row["tx_hash"],
    )


class SqliteDeclarationStore(DeclarationStore):

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()

    # ============================================================
    # Connection handling
    # ============================================================

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get this thread's connection, opening it on first use.
        Connections run in autocommit mode; transactions are explicit.
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path), timeout=30, isolation_level=None, check_same_thread=False
                )
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.execute("PRAGMA foreign_keys=ON;")
            except (sqlite3.Error, OSError) as e:
                raise StoreUnavailable(cause=e) from e
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _transaction(self):
        """
        Write transaction. BEGIN IMMEDIATE takes the write lock up front so
        writers queue on the busy timeout instead of failing on upgrade.
        SQLite operational errors surface as StoreUnavailable.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(cause=e) from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            conn.execute("ROLLBACK")
            raise StoreUnavailable(cause=e) from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(cause=e) from e

    def init_schema(self) -> None:
        """
        Initialize database schema with proper indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS declarations (
                id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                destination TEXT NOT NULL,
                amount TEXT NOT NULL,
                nonce TEXT NOT NULL UNIQUE,
                deadline INTEGER NOT NULL,
                payload_commitment TEXT NOT NULL,
                declaration_text_hash TEXT,
                signature TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'executed', 'failed')),
                created_at TEXT NOT NULL,
                executed_at TEXT,
                tx_hash TEXT,
                CHECK ((status = 'executed') = (executed_at IS NOT NULL))
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_declarations_owner_created
            ON declarations(owner, created_at DESC);""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_declarations_status
            ON declarations(status);""")

            # Lifecycle event trail, SHA-256 hash chained
            conn.execute("""
            CREATE TABLE IF NOT EXISTS declaration_events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                declaration_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                occurred_at TEXT NOT NULL,
                payload_hash TEXT NOT NULL,
                prev_entry_hash TEXT,
                entry_hash TEXT NOT NULL,
                event_json TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_declaration_events_declaration
            ON declaration_events(declaration_id);""")

    # ============================================================
    # DeclarationStore
    # ============================================================

    def create(self, declaration: Declaration) -> str:
        if declaration.status is not DeclarationStatus.PENDING:
            raise ValueError("declarations are created pending")
        declaration_id = declaration.id or generate_id()
        try:
            with self._transaction() as conn:
                conn.execute(
                    f"INSERT INTO declarations({_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        declaration_id,
                        declaration.owner.lower(),
                        declaration.destination.lower(),
                        declaration.amount,
                        declaration.nonce,
                        declaration.deadline,
                        declaration.payload_commitment,
                        declaration.declaration_text_hash,
                        declaration.signature,
                        declaration.status.value,
                        format_timestamp(declaration.created_at),
                        None,
                        declaration.tx_hash,
                    ),
                )
        except sqlite3.IntegrityError as e:
            if "declarations.nonce" in str(e):
                raise DuplicateNonce(declaration.nonce) from e
            raise
        return declaration_id

    def find_by_id(self, declaration_id: str) -> Optional[Declaration]:
        rows = self._query(f"SELECT {_COLUMNS} FROM declarations WHERE id=?", (declaration_id,))
        return _row_to_declaration(rows[0]) if rows else None

    def find_by_nonce(self, nonce: str) -> Optional[Declaration]:
        rows = self._query(f"SELECT {_COLUMNS} FROM declarations WHERE nonce=?", (nonce,))
        return _row_to_declaration(rows[0]) if rows else None

    def list_by_owner(self, owner: str, status: Optional[DeclarationStatus] = None) -> List[Declaration]:
        sql = f"SELECT {_COLUMNS} FROM declarations WHERE owner=?"
        params: tuple = (owner.lower(),)
        if status is not None:
            sql += " AND status=?"
            params += (status.value,)
        sql += " ORDER BY created_at DESC, rowid DESC"
        return [_row_to_declaration(r) for r in self._query(sql, params)]

    def list_unsettled(self, limit: int = 100) -> List[Declaration]:
        rows = self._query(
            f"SELECT {_COLUMNS} FROM declarations "
            "WHERE status='pending' AND tx_hash IS NOT NULL "
            "ORDER BY created_at ASC LIMIT ?",
            (int(limit),),
        )
        return [_row_to_declaration(r) for r in rows]

    def _fetch(self, conn: sqlite3.Connection, key: DeclarationKey) -> Optional[Declaration]:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM declarations WHERE {key.field}=?", (key.value,)
        ).fetchone()
        return _row_to_declaration(row) if row else None

    def attach_tx(self, key: DeclarationKey, tx_hash: str) -> Declaration:
        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE declarations SET tx_hash=? WHERE {key.field}=? AND status='pending'",
                (tx_hash, key.value),
            )
            current = self._fetch(conn, key)
        if current is None:
            raise NotFound(key)
        if cur.rowcount != 1:
            raise AlreadyFinalized(current)
        return current

    def transition(
        self,
        key: DeclarationKey,
        to_status: DeclarationStatus,
        tx_hash: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Declaration:
        """
        Compare-and-set from pending. Uses atomic UPDATE with WHERE clause,
        so concurrent finalizers cannot both succeed.
        """
        if not to_status.terminal:
            raise ValueError("transition target must be terminal")
        at = at or utc_now()
        executed_at = format_timestamp(at) if to_status is DeclarationStatus.EXECUTED else None
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE declarations SET status=?, tx_hash=COALESCE(?, tx_hash), executed_at=? "
                f"WHERE {key.field}=? AND status='pending'",
                (to_status.value, tx_hash, executed_at, key.value),
            )
            current = self._fetch(conn, key)
        if current is None:
            raise NotFound(key)
        if cur.rowcount != 1:
            raise AlreadyFinalized(current)
        return current

    # ============================================================
    # Event trail
    # ============================================================

    def append_event(
        self,
        declaration_id: str,
        event_type: str,
        occurred_at: datetime,
        payload_hash: str,
        event_json: str,
    ) -> Dict[str, Any]:
        """
        Append an event linked to the current chain head.
        The write lock is held from the head read to the insert, so two
        appends never share a head.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM declaration_events ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            prev = row["entry_hash"] if row else None
            entry_hash = chain_entry_hash(prev, payload_hash)
            cur = conn.execute(
                "INSERT INTO declaration_events(declaration_id, event_type, occurred_at, "
                "payload_hash, prev_entry_hash, entry_hash, event_json) VALUES(?,?,?,?,?,?,?)",
                (declaration_id, event_type, format_timestamp(occurred_at), payload_hash, prev, entry_hash, event_json),
            )
            seq = cur.lastrowid
        return {"seq": seq, "prev_entry_hash": prev, "entry_hash": entry_hash}

    def list_events(self, declaration_id: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = (
            "SELECT seq, declaration_id, event_type, occurred_at, payload_hash, "
            "prev_entry_hash, entry_hash, event_json FROM declaration_events"
        )
        params: tuple = ()
        if declaration_id is not None:
            sql += " WHERE declaration_id=?"
            params = (declaration_id,)
        sql += " ORDER BY seq ASC"
        return [dict(row) for row in self._query(sql, params)]

    def event_chain_head(self) -> Dict[str, Any]:
        rows = self._query(
            "SELECT COUNT(*) AS cnt, "
            "(SELECT entry_hash FROM declaration_events ORDER BY seq DESC LIMIT 1) AS head "
            "FROM declaration_events"
        )
        return {"entries": rows[0]["cnt"], "head_entry_hash": rows[0]["head"]}

    # ============================================================
    # Metrics and Health
    # ============================================================

    def get_stats(self) -> Dict[str, int]:
        """Get database statistics for monitoring."""
        stats = {}
        for status in DeclarationStatus:
            rows = self._query("SELECT COUNT(*) AS cnt FROM declarations WHERE status=?", (status.value,))
            stats[f"{status.value}_count"] = rows[0]["cnt"]
        stats["events_count"] = self._query("SELECT COUNT(*) AS cnt FROM declaration_events")[0]["cnt"]
        return stats

    def close(self) -> None:
        """Close every connection this store opened."""
        with self._conn_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
