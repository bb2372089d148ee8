"""
Input validation for declaration fields.

Every check raises ValidationError naming the offending field, before any
store access happens.
"""

import re
from typing import Any, Dict, Iterable, Optional

from .errors import ValidationError
from .hashing import UINT256_MAX
from .nonce import NonceGenerator

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
SIGNATURE_PATTERN = re.compile(r"^0x[a-fA-F0-9]{130}$")
TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")
DECLARATION_ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")
UNITS_PATTERN = re.compile(r"^[0-9]+$")


def require_fields(values: Dict[str, Any], fields: Iterable[str]) -> None:
    """Fail on the first field that is missing or empty."""
    for name in fields:
        value = values.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(name, "is required")


def validate_address(value: Any, field: str) -> str:
    """Validate a 20-byte hex account address and lowercase it."""
    if not isinstance(value, str) or not ADDRESS_PATTERN.match(value):
        raise ValidationError(field, "must be a 0x-prefixed 40 hex character address")
    return value.lower()


def validate_signature(value: Any) -> str:
    """
    Validate a 65-byte ECDSA signature (r || s || v).

    Returned unchanged: the signature is stored verbatim and verified by the
    contract at execution time, never here.
    """
    if not isinstance(value, str) or not SIGNATURE_PATTERN.match(value):
        raise ValidationError("signature", "must be 0x followed by 130 hex characters")
    return value


def validate_tx_hash(value: Any, field: str = "txHash") -> str:
    if not isinstance(value, str) or not TX_HASH_PATTERN.match(value):
        raise ValidationError(field, "must be 0x followed by 64 hex characters")
    return value.lower()


def validate_nonce(value: Any, generator: NonceGenerator) -> str:
    if not generator.is_valid(value):
        if generator.numeric:
            raise ValidationError("nonce", "must be a uint256 decimal string")
        raise ValidationError("nonce", "has an invalid format")
    return value


def validate_amount_units(value: Any, field: str = "amount") -> str:
    """Positive integer in the asset's smallest unit, as a decimal string."""
    if not isinstance(value, str) or not UNITS_PATTERN.match(value):
        raise ValidationError(field, "must be an integer string in the asset's smallest unit")
    n = int(value)
    if n <= 0:
        raise ValidationError(field, "must be greater than 0")
    if n > UINT256_MAX:
        raise ValidationError(field, "exceeds uint256")
    return str(n)


def validate_deadline(value: Any, now_epoch: int, max_window_seconds: int) -> int:
    """Deadline must lie in the future and within the allowed window."""
    if isinstance(value, bool):
        raise ValidationError("deadline", "must be an integer Unix timestamp")
    try:
        deadline = int(value)
    except (TypeError, ValueError):
        raise ValidationError("deadline", "must be an integer Unix timestamp")
    if isinstance(value, float) and value != deadline:
        raise ValidationError("deadline", "must be an integer Unix timestamp")
    if deadline <= now_epoch:
        raise ValidationError("deadline", "has already passed")
    if deadline > now_epoch + max_window_seconds:
        raise ValidationError("deadline", f"must be within {max_window_seconds} seconds")
    return deadline


def validate_declaration_id(value: Any) -> str:
    if not isinstance(value, str) or not DECLARATION_ID_PATTERN.match(value):
        raise ValidationError("id", "must be 32 lowercase hex characters")
    return value


def optional_address(value: Optional[str], field: str) -> Optional[str]:
    if value is None or value == "":
        return None
    return validate_address(value, field)
