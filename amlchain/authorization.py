"""
AMLChain Authorization Service

Two-step flow:

    authorize(owner, destination, amount)      -> signing parameters
        (wallet signs the canonical payload externally)
    submit(owner, destination, amount, nonce,
           deadline, signature)                -> pending declaration id

``submit`` validates in a fixed order and stops at the first failure:

    1. required fields present
    2. owner and destination addresses
    3. signature format
    4. nonce format for the active nonce strategy
    5. amount is a positive smallest-unit integer
    6. deadline inside the allowed window
    7. payload commitment recomputed server-side
    8. atomic unique insert (DuplicateNonce on a consumed nonce)

No side effect happens unless every step passes.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .codec import (
    CanonicalPayload,
    PayloadCodec,
    CURRENT_TEXT_VERSION,
    DECLARATION_TEXTS,
    declaration_text_hash,
    payload_commitment,
)
from .errors import ValidationError
from .models import Declaration, DeclarationStatus, utc_now
from .nonce import NonceGenerator
from .store import DeclarationStore
from .units import DEFAULT_DECIMALS, from_smallest_unit, to_smallest_unit
from .validation import (
    optional_address,
    require_fields,
    validate_address,
    validate_amount_units,
    validate_deadline,
    validate_nonce,
    validate_signature,
)

DEFAULT_DEADLINE_SECONDS = 30 * 24 * 60 * 60


@dataclass
class AuthorizationPolicy:
    """Deployment-level knobs for the authorization flow."""
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    vault_address: Optional[str] = None
    commit_destination: bool = False
    token_decimals: int = DEFAULT_DECIMALS
    max_clock_skew_seconds: int = 300


@dataclass
class SigningParams:
    owner: str
    destination: str
    amount: str
    nonce: str
    deadline: int
    declaration_text: str
    text_version: str
    payload: CanonicalPayload
    target: str
    amount_display: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "to": self.destination,
            "amount": self.amount,
            "amountDisplay": self.amount_display,
            "nonce": self.nonce,
            "deadline": self.deadline,
            "message": self.declaration_text,
            "textVersion": self.text_version,
            "declarationTextHash": declaration_text_hash(self.declaration_text),
            "payload": self.payload.to_dict(),
            "target": self.target,
        }


@dataclass
class SubmitResult:
    declaration: Declaration

    @property
    def id(self) -> str:
        return self.declaration.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.declaration.id,
            "status": self.declaration.status.value,
            "payloadCommitment": self.declaration.payload_commitment,
        }


class AuthorizationService:

    def __init__(
        self,
        store: DeclarationStore,
        codec: PayloadCodec,
        nonce_generator: NonceGenerator,
        policy: Optional[AuthorizationPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if codec.requires_numeric_nonce and not nonce_generator.numeric:
            raise ValueError(f"{codec.encoding} encoding requires a numeric nonce strategy")
        self.store = store
        self.codec = codec
        self.nonce_generator = nonce_generator
        self.policy = policy or AuthorizationPolicy()
        self._clock = clock

    def _now_epoch(self) -> int:
        return int(self._clock().timestamp())

    def _resolve_destination(self, destination: Optional[str]) -> str:
        vault = self.policy.vault_address
        if vault:
            supplied = optional_address(destination, "destination")
            if supplied is not None and supplied != vault.lower():
                raise ValidationError("destination", "must be the configured vault address")
            return vault.lower()
        return validate_address(destination, "destination")

    def _text_for(self, text_version: Optional[str]) -> str:
        version = text_version or CURRENT_TEXT_VERSION
        if version not in DECLARATION_TEXTS:
            raise ValidationError("text_version", f"unknown declaration text version '{version}'")
        return DECLARATION_TEXTS[version]

    def authorize(
        self,
        owner: str,
        destination: Optional[str],
        amount: str,
        text_version: Optional[str] = None,
    ) -> SigningParams:
        """
        Issue signing parameters for a human-readable amount ("100.50").

        Nothing is persisted: the nonce is only consumed by ``submit``.
        """
        require_fields({"owner": owner, "amount": amount}, ("owner", "amount"))
        owner = validate_address(owner, "owner")
        destination = self._resolve_destination(destination)
        units = validate_amount_units(to_smallest_unit(amount, self.policy.token_decimals))

        version = text_version or CURRENT_TEXT_VERSION
        text = self._text_for(version)
        nonce = self.nonce_generator.generate()
        deadline = self._now_epoch() + self.policy.deadline_seconds

        payload = self.codec.build_message(owner, destination, units, nonce, deadline, text)
        return SigningParams(
            owner=owner,
            destination=destination,
            amount=units,
            amount_display=from_smallest_unit(units, self.policy.token_decimals),
            nonce=nonce,
            deadline=deadline,
            declaration_text=text,
            text_version=version,
            payload=payload,
            target=self.codec.target,
        )

    def submit(
        self,
        owner: str,
        destination: Optional[str],
        amount: str,
        nonce: str,
        deadline: Optional[int],
        signature: str,
        text_version: Optional[str] = None,
    ) -> SubmitResult:
        now_epoch = self._now_epoch()

        # 1. presence; the typed payload signs the deadline so it must come from the client
        required = {"owner": owner, "amount": amount, "signature": signature, "nonce": nonce}
        if not self.policy.vault_address:
            required["destination"] = destination
        if not self.codec.requires_numeric_nonce:
            required["deadline"] = deadline
        require_fields(required, required.keys())

        # 2. addresses
        owner = validate_address(owner, "owner")
        destination = self._resolve_destination(destination)

        # 3. signature
        signature = validate_signature(signature)

        # 4. nonce
        nonce = validate_nonce(nonce, self.nonce_generator)

        # 5. amount
        amount = validate_amount_units(amount)

        # 6. deadline
        if deadline is None:
            deadline = now_epoch + self.policy.deadline_seconds
        else:
            window = self.policy.deadline_seconds + self.policy.max_clock_skew_seconds
            deadline = validate_deadline(deadline, now_epoch, window)

        text = self._text_for(text_version)

        # 7. commitment
        commitment = payload_commitment(
            owner,
            amount,
            deadline,
            destination if self.policy.commit_destination else None,
        )

        # 8. atomic unique insert
        record = Declaration(
            owner=owner,
            destination=destination,
            amount=amount,
            nonce=nonce,
            deadline=deadline,
            payload_commitment=commitment,
            signature=signature,
            declaration_text_hash=declaration_text_hash(text),
            status=DeclarationStatus.PENDING,
            created_at=self._clock(),
        )
        declaration_id = self.store.create(record)
        stored = self.store.find_by_id(declaration_id)
        if stored is None:
            # reads may lag the insert on some backends
            stored = replace(record, id=declaration_id)
        return SubmitResult(declaration=stored)
