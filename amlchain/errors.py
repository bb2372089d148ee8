"""
AMLChain error taxonomy.

Every failure the protocol core can raise derives from DeclarationError and
carries a stable ``code``. Validation and duplicate-nonce errors carry an
actionable message; infrastructure errors deliberately do not.
"""

from typing import Any, Optional


class DeclarationError(Exception):
    """Base class for all declaration protocol errors."""
    code = "DECLARATION_ERROR"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(DeclarationError):
    """Raised when input validation fails. Rejected before any store access."""
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class DuplicateNonce(DeclarationError):
    """The nonce has already been consumed by another declaration."""
    code = "DUPLICATE_NONCE"

    def __init__(self, nonce: str):
        self.nonce = nonce
        super().__init__("Nonce already used - please request new signing parameters")


class NotFound(DeclarationError):
    code = "NOT_FOUND"

    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"Declaration not found: {key}")


class AlreadyFinalized(DeclarationError):
    """
    A transition was attempted on a terminal declaration.

    The reconciliation service treats this as a benign no-op; it only
    surfaces to callers that explicitly ask for conflict detection.
    """
    code = "ALREADY_FINALIZED"

    def __init__(self, declaration: Any):
        self.declaration = declaration
        status = getattr(getattr(declaration, "status", None), "value", None)
        super().__init__(f"Declaration already {status or 'finalized'}")


class Expired(DeclarationError):
    """A still-pending declaration whose deadline has passed."""
    code = "EXPIRED"

    def __init__(self, declaration: Any):
        self.declaration = declaration
        super().__init__("Declaration has expired. Deadline has passed.")


class StoreUnavailable(DeclarationError):
    code = "STORE_UNAVAILABLE"
    retryable = True

    def __init__(self, message: str = "Declaration store unavailable", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class LedgerUnavailable(DeclarationError):
    code = "LEDGER_UNAVAILABLE"
    retryable = True

    def __init__(self, message: str = "Ledger observer unavailable", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class NonceGenerationError(DeclarationError):
    """The secure random source is unavailable. There is no weak fallback."""
    code = "NONCE_GENERATION_FAILED"

    def __init__(self, message: str = "Secure random source unavailable"):
        super().__init__(message)
