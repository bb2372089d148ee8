"""
AMLChain Declaration Store

Abstract persistence for declarations. Implementations must provide two
atomic primitives and no other mutation path:

- ``create``: unique insert keyed by nonce. A colliding nonce raises
  DuplicateNonce from the storage layer itself, never from a read-then-write
  check.
- ``transition``: compare-and-set from ``pending`` into a terminal status.
  Losing the race raises AlreadyFinalized carrying the stored record.

Reads are not required to be linearizable with in-flight writes.
"""

import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from .errors import AlreadyFinalized, DuplicateNonce, NotFound
from .models import Declaration, DeclarationKey, DeclarationStatus, utc_now



def generate_id() -> str:
    """Opaque 32-hex-character declaration id."""
    return secrets.token_hex(16)


class DeclarationStore(ABC):

    @abstractmethod
    def create(self, declaration: Declaration) -> str:
        """
        Insert a new pending declaration and return its id.

        Raises:
            DuplicateNonce: the nonce already exists
            StoreUnavailable: the backing store cannot be reached
        """
        pass

    @abstractmethod
    def find_by_id(self, declaration_id: str) -> Optional[Declaration]:
        pass

    @abstractmethod
    def find_by_nonce(self, nonce: str) -> Optional[Declaration]:
        pass

    @abstractmethod
    def list_by_owner(self, owner: str, status: Optional[DeclarationStatus] = None) -> List[Declaration]:
        """Declarations of one owner, newest first."""
        pass

    @abstractmethod
    def list_unsettled(self, limit: int = 100) -> List[Declaration]:
        """Pending declarations that already carry a tx hash, oldest first."""
        pass

    @abstractmethod
    def attach_tx(self, key: DeclarationKey, tx_hash: str) -> Declaration:
        """
        Record a tx hash on a pending declaration without changing status.

        Raises:
            NotFound: no declaration for the key
            AlreadyFinalized: the declaration is terminal
        """
        pass

    @abstractmethod
    def transition(
        self,
        key: DeclarationKey,
        to_status: DeclarationStatus,
        tx_hash: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Declaration:
        """
        Atomically move a pending declaration to a terminal status.

        ``executed_at`` is set only when moving into ``executed``.

        Raises:
            NotFound: no declaration for the key
            AlreadyFinalized: the declaration was not pending
        """
        pass

    def find(self, key: DeclarationKey) -> Optional[Declaration]:
        if key.field == "id":
            return self.find_by_id(key.value)
        return self.find_by_nonce(key.value)

    def get(self, key: DeclarationKey) -> Declaration:
        found = self.find(key)
        if found is None:
            raise NotFound(key)
        return found

    def close(self) -> None:
        """Release resources held by the store."""
        pass


class InMemoryDeclarationStore(DeclarationStore):
    """
    In-memory store for development and testing.

    WARNING: Not suitable for production.
    - Not persistent across restarts
    - Atomic only within one process
    """

    def __init__(self):
        self._by_id: Dict[str, Declaration] = {}
        self._nonces: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, declaration: Declaration) -> str:
        if declaration.status is not DeclarationStatus.PENDING:
            raise ValueError("declarations are created pending")
        with self._lock:
            if declaration.nonce in self._nonces:
                raise DuplicateNonce(declaration.nonce)
            declaration_id = declaration.id or generate_id()
            self._by_id[declaration_id] = replace(declaration, id=declaration_id)
            self._nonces[declaration.nonce] = declaration_id
            return declaration_id

    def find_by_id(self, declaration_id: str) -> Optional[Declaration]:
        with self._lock:
            return self._by_id.get(declaration_id)

    def find_by_nonce(self, nonce: str) -> Optional[Declaration]:
        with self._lock:
            declaration_id = self._nonces.get(nonce)
            return self._by_id.get(declaration_id) if declaration_id else None

    def list_by_owner(self, owner: str, status: Optional[DeclarationStatus] = None) -> List[Declaration]:
        owner = owner.lower()
        with self._lock:
            records = [d for d in self._by_id.values() if d.owner == owner]
        if status is not None:
            records = [d for d in records if d.status is status]
        return sorted(records, key=lambda d: d.created_at, reverse=True)

    def list_unsettled(self, limit: int = 100) -> List[Declaration]:
        with self._lock:
            records = [
                d for d in self._by_id.values()
                if d.status is DeclarationStatus.PENDING and d.tx_hash
            ]
        return sorted(records, key=lambda d: d.created_at)[:limit]

    def _locate(self, key: DeclarationKey) -> Declaration:
        if key.field == "id":
            current = self._by_id.get(key.value)
        else:
            declaration_id = self._nonces.get(key.value)
            current = self._by_id.get(declaration_id) if declaration_id else None
        if current is None:
            raise NotFound(key)
        return current

    def attach_tx(self, key: DeclarationKey, tx_hash: str) -> Declaration:
        with self._lock:
            current = self._locate(key)
            if current.is_terminal:
                raise AlreadyFinalized(current)
            updated = replace(current, tx_hash=tx_hash)
            self._by_id[updated.id] = updated
            return updated

    def transition(self, key, to_status, tx_hash=None, at=None) -> Declaration:
        if not to_status.terminal:
            raise ValueError("transition target must be terminal")
        with self._lock:
            current = self._locate(key)
            if current.is_terminal:
                raise AlreadyFinalized(current)
            updated = current.finalized(to_status, tx_hash, at or utc_now())
            self._by_id[updated.id] = updated
            return updated
