"""
nftstake Configuration

Deployment defaults for staking pools, read from the environment once at
import time. Every variable is optional; malformed values raise
ConfigurationError instead of silently falling back.
"""

from __future__ import annotations

import logging
import os
from enum import Enum

logger = logging.getLogger(__name__)


class NetworkType(Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    """Read an integer setting, enforcing a lower bound."""
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{env_var} must be >= {minimum}, got {value}")
    return value


def _get_bool(env_var: str, default: bool) -> bool:
    raw = os.getenv(env_var, "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{env_var} must be a boolean flag, got {raw!r}")


def _get_network(env_var: str) -> NetworkType:
    raw = os.getenv(env_var, "testnet").strip().lower()  # Default to testnet for safety
    try:
        return NetworkType(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be 'testnet' or 'mainnet', got {raw!r}") from exc


NETWORK = _get_network("NFTSTAKE_NETWORK")

LOG_LEVEL = os.getenv("NFTSTAKE_LOG_LEVEL", "INFO").strip().upper() or "INFO"
if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
    raise ConfigurationError(f"NFTSTAKE_LOG_LEVEL has unknown level {LOG_LEVEL!r}")
LOG_FILE = os.getenv("NFTSTAKE_LOG_FILE", "").strip() or None
LOG_ENVIRONMENT = "production" if NETWORK is NetworkType.MAINNET else "development"

# Reward units emitted per second when a factory caller does not pass a rate
DEFAULT_EMISSION_RATE = _get_int("NFTSTAKE_DEFAULT_EMISSION_RATE", 10**18, minimum=1)

# Whether freshly initialized pools accept claims before the admin flips the flag
CLAIMS_ENABLED_ON_INIT = _get_bool("NFTSTAKE_CLAIMS_ENABLED_ON_INIT", False)

if NETWORK is NetworkType.MAINNET and CLAIMS_ENABLED_ON_INIT:
    logger.warning(
        "Pools will accept claims immediately after initialization on mainnet",
        extra={"event": "config.claims_enabled_on_init"},
    )
