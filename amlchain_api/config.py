"""
Configuration module for the AMLChain declaration service.

Centralizes all configuration with environment variable support and
validation. Module-level constants are read once at import; ``Settings``
carries them into ``create_app`` so tests can build an app with explicit
values instead of mutating the environment.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from amlchain.validation import ADDRESS_PATTERN


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("AMLCHAIN_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("AMLCHAIN_DB_PATH", "data/amlchain.db")

# Payload encoding (typed|packed) and nonce strategy (random_id|timestamp)
ENCODING = os.getenv("AMLCHAIN_ENCODING", "typed")
NONCE_STRATEGY = os.getenv(
    "AMLCHAIN_NONCE_STRATEGY",
    "timestamp" if ENCODING == "packed" else "random_id",
)

# EIP-712 domain
CHAIN_ID = int(os.getenv("AMLCHAIN_CHAIN_ID", "1"))
DOMAIN_NAME = os.getenv("AMLCHAIN_DOMAIN_NAME", "Asset Manager AML Declaration")
DOMAIN_VERSION = os.getenv("AMLCHAIN_DOMAIN_VERSION", "1")
CONTRACT_ADDRESS = os.getenv("AMLCHAIN_CONTRACT_ADDRESS", "")

# Declaration terms
VAULT_ADDRESS = os.getenv("AMLCHAIN_VAULT_ADDRESS", "")
TOKEN_DECIMALS = int(os.getenv("AMLCHAIN_TOKEN_DECIMALS", "6"))
DEADLINE_DAYS = int(os.getenv("AMLCHAIN_DEADLINE_DAYS", "30"))
COMMIT_DESTINATION = _env_bool("AMLCHAIN_COMMIT_DESTINATION")

# Operator callback
OPERATOR_API_TOKEN = os.getenv("OPERATOR_API_TOKEN", "")

# Ledger observer
LEDGER_RPC_URL = os.getenv("LEDGER_RPC_URL", "")
LEDGER_MIN_CONFIRMATIONS = int(os.getenv("LEDGER_MIN_CONFIRMATIONS", "1"))
LEDGER_RPC_TIMEOUT = float(os.getenv("LEDGER_RPC_TIMEOUT", "10"))

# Rate limits (requests per minute)
SIGN_PARAMS_RPM = int(os.getenv("SIGN_PARAMS_RPM", "120"))
SUBMIT_RPM = int(os.getenv("SUBMIT_RPM", "120"))
RECONCILE_RPM = int(os.getenv("RECONCILE_RPM", "120"))

# Lifecycle event trail
EVENT_LOG_BACKEND = os.getenv("EVENT_LOG_BACKEND", "sqlite_hash_chain")
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_PREFIX = os.getenv("S3_PREFIX", "amlchain/declaration-events/")
S3_RETENTION_DAYS = int(os.getenv("S3_RETENTION_DAYS", "365"))
S3_LEGAL_HOLD = os.getenv("S3_LEGAL_HOLD", "OFF")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _env_bool("LOG_JSON", "true")


@dataclass
class Settings:
    env: str = ENV
    db_path: str = DB_PATH
    encoding: str = ENCODING
    nonce_strategy: str = NONCE_STRATEGY
    chain_id: int = CHAIN_ID
    domain_name: str = DOMAIN_NAME
    domain_version: str = DOMAIN_VERSION
    contract_address: str = CONTRACT_ADDRESS
    vault_address: str = VAULT_ADDRESS
    token_decimals: int = TOKEN_DECIMALS
    deadline_days: int = DEADLINE_DAYS
    commit_destination: bool = COMMIT_DESTINATION
    operator_api_token: str = OPERATOR_API_TOKEN
    ledger_rpc_url: str = LEDGER_RPC_URL
    ledger_min_confirmations: int = LEDGER_MIN_CONFIRMATIONS
    ledger_rpc_timeout: float = LEDGER_RPC_TIMEOUT
    sign_params_rpm: int = SIGN_PARAMS_RPM
    submit_rpm: int = SUBMIT_RPM
    reconcile_rpm: int = RECONCILE_RPM
    event_log_backend: str = EVENT_LOG_BACKEND
    s3_bucket: str = S3_BUCKET
    s3_prefix: str = S3_PREFIX
    s3_retention_days: int = S3_RETENTION_DAYS
    s3_legal_hold: str = S3_LEGAL_HOLD
    log_level: str = LOG_LEVEL
    log_json: bool = LOG_JSON

    @property
    def deadline_seconds(self) -> int:
        return self.deadline_days * 24 * 60 * 60

    @property
    def vault(self) -> Optional[str]:
        return self.vault_address.lower() if self.vault_address else None


def load_settings(**overrides) -> Settings:
    """Settings from the environment, with explicit overrides applied."""
    return Settings(**overrides)


# ============================================================
# Validation
# ============================================================

def validate_config(settings: Settings) -> Dict[str, bool]:
    """
    Validate the settings that can be checked without network access.
    Returns dict of setting -> usable.
    """
    checks = {
        "encoding": settings.encoding in ("typed", "packed"),
        "nonce_strategy": settings.nonce_strategy in ("random_id", "timestamp")
        and not (settings.encoding == "packed" and settings.nonce_strategy != "timestamp"),
        "contract_address": not settings.contract_address
        or bool(ADDRESS_PATTERN.match(settings.contract_address)),
        "vault_address": not settings.vault_address
        or bool(ADDRESS_PATTERN.match(settings.vault_address)),
        "operator_api_token": bool(settings.operator_api_token),
        "ledger_rpc_url": bool(settings.ledger_rpc_url),
        "db_dir": Path(settings.db_path).parent.exists() or not Path(settings.db_path).parent.parts,
    }
    if settings.event_log_backend == "s3_object_lock":
        checks["s3_bucket"] = bool(settings.s3_bucket)
    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production(settings: Optional[Settings] = None) -> bool:
    """Check if running in production mode."""
    return (settings.env if settings else ENV) == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("AMLCHAIN_DEBUG", "").lower() in ("1", "true", "yes")
