"""
AMLChain Declaration Model

A Declaration is the only persistent entity: an owner's signed
authorization to move a fixed amount to a destination, keyed by a globally
unique nonce.

Lifecycle:
    pending --(observed success)--> executed
    pending --(observed failure)--> failed

``executed`` and ``failed`` are terminal. Expiry is never stored: it is
derived at read time as ``pending and deadline < now``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class DeclarationStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not DeclarationStatus.PENDING


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(ts: Optional[datetime]) -> Optional[str]:
    """Render a UTC timestamp as ISO-8601 with a Z suffix."""
    if ts is None:
        return None
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DeclarationKey:
    """Addresses a single declaration by store id or by nonce."""
    field: str
    value: str

    @classmethod
    def by_id(cls, declaration_id: str) -> "DeclarationKey":
        return cls("id", declaration_id)

    @classmethod
    def by_nonce(cls, nonce: str) -> "DeclarationKey":
        return cls("nonce", nonce)

    def __post_init__(self):
        if self.field not in ("id", "nonce"):
            raise ValueError(f"Unsupported declaration key: {self.field}")

    def __str__(self) -> str:
        return f"{self.field}={self.value}"


@dataclass(frozen=True)
class Declaration:
    owner: str
    destination: str
    amount: str
    nonce: str
    deadline: int
    payload_commitment: str
    signature: str
    id: Optional[str] = None
    declaration_text_hash: Optional[str] = None
    status: DeclarationStatus = DeclarationStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    executed_at: Optional[datetime] = None
    tx_hash: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.terminal

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Read-time expiry: still pending with the deadline in the past."""
        now = now or utc_now()
        return self.status is DeclarationStatus.PENDING and self.deadline < int(now.timestamp())

    def finalized(self, status: DeclarationStatus, tx_hash: Optional[str], at: datetime) -> "Declaration":
        """Copy of this pending record moved into a terminal status."""
        return replace(
            self,
            status=status,
            tx_hash=tx_hash or self.tx_hash,
            executed_at=at if status is DeclarationStatus.EXECUTED else None,
        )

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Export shape shared by every read path."""
        return {
            "id": self.id,
            "owner": self.owner,
            "destination": self.destination,
            "amount": self.amount,
            "nonce": self.nonce,
            "deadline": self.deadline,
            "status": self.status.value,
            "expired": self.is_expired(now),
            "payloadCommitment": self.payload_commitment,
            "declarationTextHash": self.declaration_text_hash,
            "signature": self.signature,
            "createdAt": isoformat(self.created_at),
            "executedAt": isoformat(self.executed_at),
            "txHash": self.tx_hash,
        }
