"""
Security module for the AMLChain declaration service.

Operator bearer-token checks, client identification for rate limiting
and log sanitization.
"""

import re
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from .util import constant_time_compare

REQUEST_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,64}$')

SENSITIVE_FIELDS = ["signature", "token", "authorization", "operator_api_token", "secret"]


# ============================================================
# Operator Authentication
# ============================================================

def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_operator(authorization: Optional[str], expected_token: str) -> None:
    """
    Authenticate an operator callback.

    Raises:
        HTTPException(500): no operator token is configured
        HTTPException(401): missing or wrong bearer token
    """
    if not expected_token:
        raise HTTPException(500, "OPERATOR_TOKEN_NOT_CONFIGURED")
    token = parse_bearer(authorization)
    if token is None or not constant_time_compare(token, expected_token):
        raise HTTPException(401, "UNAUTHORIZED", headers={"WWW-Authenticate": "Bearer"})


# ============================================================
# Request Identification
# ============================================================

def clean_request_id(value: Optional[str]) -> Optional[str]:
    """Accept a caller supplied X-Request-ID only when it is well formed."""
    if value and REQUEST_ID_PATTERN.match(value):
        return value
    return None


def extract_client_id(headers: Dict[str, str], fallback: Optional[str] = None) -> str:
    """
    Extract a client identifier from request headers for rate limiting.
    Falls back to the peer address, then to a shared default.
    """
    api_key = headers.get("x-api-key", "")
    if api_key:
        return f"api:{api_key[:8]}"

    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    if fallback:
        return f"ip:{fallback}"

    return "anonymous"


# ============================================================
# Audit Logging Helpers
# ============================================================

def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: List[str] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    result = {}
    for key, value in data.items():
        if key.lower() in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = value[:4] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result
