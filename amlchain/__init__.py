"""
AMLChain Declaration Protocol

Replay-safe off-chain authorization for token transfers.

A wallet holder signs an AML declaration authorizing a transfer; the signed
declaration is stored under a single-use nonce and later reconciled with its
on-chain execution exactly once.

Usage:
    from amlchain import (
        AuthorizationService,
        ReconciliationService,
        InMemoryDeclarationStore,
        TypedDataCodec,
        TypedDataDomain,
        RandomIdNonceGenerator,
        DeclarationKey,
    )

    store = InMemoryDeclarationStore()
    codec = TypedDataCodec(TypedDataDomain("Asset Manager AML Declaration", "1", 1))
    auth = AuthorizationService(store, codec, RandomIdNonceGenerator())

    params = auth.authorize(owner, vault, "100.50")
    # wallet signs params.payload.data with eth_signTypedData_v4
    result = auth.submit(owner, vault, params.amount, params.nonce,
                         params.deadline, signature)

    recon = ReconciliationService(store)
    recon.attach_pending_tx(DeclarationKey.by_id(result.id), tx_hash)
    recon.finalize(DeclarationKey.by_id(result.id), tx_hash, success=True)
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    DeclarationError,
    ValidationError,
    DuplicateNonce,
    NotFound,
    AlreadyFinalized,
    Expired,
    StoreUnavailable,
    LedgerUnavailable,
    NonceGenerationError,
)

# Model
from .models import (
    Declaration,
    DeclarationKey,
    DeclarationStatus,
)

# Nonces
from .nonce import (
    NonceGenerator,
    RandomIdNonceGenerator,
    TimestampNonceGenerator,
    get_nonce_generator,
)

# Payload encoding
from .codec import (
    CanonicalPayload,
    PayloadCodec,
    TypedDataCodec,
    TypedDataDomain,
    PackedCodec,
    get_codec,
    payload_commitment,
    declaration_text_hash,
    get_declaration_text,
    transfer_call_args,
)

# Amounts
from .units import to_smallest_unit, from_smallest_unit

# Store
from .store import DeclarationStore, InMemoryDeclarationStore

# Services
from .authorization import (
    AuthorizationPolicy,
    AuthorizationService,
    SigningParams,
    SubmitResult,
)
from .reconciliation import (
    FinalizeResult,
    LedgerObserver,
    ReconciliationService,
    TxOutcome,
)
