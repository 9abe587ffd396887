from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

from .constants import (
    CHAINS,
    DEFAULT_APPROVE_GAS_LIMIT,
    DEFAULT_BRIDGE_GAS_LIMIT,
    ETHEREUM_CHAIN_ID,
    INDEXER_BASE_URL,
    PULSECHAIN_CHAIN_ID,
    RECEIPT_POLL_INTERVAL,
    STATUS_POLL_INTERVAL,
)

# Environment keys
ETHEREUM_RPC_ENV = "OMNIBRIDGE_ETHEREUM_RPC_URL"
PULSECHAIN_RPC_ENV = "OMNIBRIDGE_PULSECHAIN_RPC_URL"
INDEXER_URL_ENV = "OMNIBRIDGE_INDEXER_URL"
PRIVATE_KEY_ENV = "OMNIBRIDGE_PRIVATE_KEY"
BRIDGE_GAS_LIMIT_ENV = "OMNIBRIDGE_BRIDGE_GAS_LIMIT"
APPROVE_GAS_LIMIT_ENV = "OMNIBRIDGE_APPROVE_GAS_LIMIT"
RECEIPT_POLL_INTERVAL_ENV = "OMNIBRIDGE_RECEIPT_POLL_INTERVAL"
STATUS_POLL_INTERVAL_ENV = "OMNIBRIDGE_STATUS_POLL_INTERVAL"
STOP_ON_FAILED_ENV = "OMNIBRIDGE_STOP_ON_FAILED"
HTTP_TIMEOUT_ENV = "OMNIBRIDGE_HTTP_TIMEOUT"

DEFAULT_ENV_FILE = Path.cwd() / ".env"

_RPC_ENVS: Dict[int, str] = {
    ETHEREUM_CHAIN_ID: ETHEREUM_RPC_ENV,
    PULSECHAIN_CHAIN_ID: PULSECHAIN_RPC_ENV,
}


@dataclass
class BridgeConfig:
    rpc_urls: Dict[int, str]
    indexer_url: str = INDEXER_BASE_URL
    private_key: Optional[str] = None
    bridge_gas_limit: int = DEFAULT_BRIDGE_GAS_LIMIT
    approve_gas_limit: int = DEFAULT_APPROVE_GAS_LIMIT
    receipt_poll_interval: float = RECEIPT_POLL_INTERVAL
    status_poll_interval: float = STATUS_POLL_INTERVAL
    stop_on_failed: bool = True
    http_timeout: float = 30.0
    warnings: List[str] = field(default_factory=list)

    def rpc_url(self, chain_id: int) -> str:
        return self.rpc_urls[chain_id]


def _parse_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value, 0)
    except ValueError:
        return None


def _parse_float(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or not value.strip():
        return None
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return None


def load_env_file(path: Optional[Path] = None) -> bool:
    """Load ``.env`` into the process environment without overriding existing values."""
    return load_dotenv(path or DEFAULT_ENV_FILE, override=False)


def load_bridge_config(
    *, require_private_key: bool = False, env_file: Optional[Path] = None
) -> Tuple[Optional[BridgeConfig], Optional[str]]:
    """Build a :class:`BridgeConfig` from the environment.

    Returns ``(config, None)`` on success or ``(None, message)`` listing every
    setting that needs attention.
    """

    load_env_file(env_file)

    problems: List[str] = []
    warnings: List[str] = []

    rpc_urls: Dict[int, str] = {}
    for chain_id, chain in CHAINS.items():
        rpc_urls[chain_id] = os.getenv(_RPC_ENVS[chain_id]) or chain.rpc_url

    private_key = os.getenv(PRIVATE_KEY_ENV)
    if require_private_key and not private_key:
        problems.append(PRIVATE_KEY_ENV)

    def _int_setting(env_name: str, default: int) -> int:
        raw = os.getenv(env_name)
        parsed = _parse_int(raw)
        if raw and (parsed is None or parsed <= 0):
            problems.append(f"{env_name} (expected a positive integer, got {raw!r})")
            return default
        return parsed if parsed is not None else default

    def _float_setting(env_name: str, default: float) -> float:
        raw = os.getenv(env_name)
        parsed = _parse_float(raw)
        if raw and (parsed is None or parsed <= 0):
            problems.append(f"{env_name} (expected a positive number, got {raw!r})")
            return default
        return parsed if parsed is not None else default

    bridge_gas_limit = _int_setting(BRIDGE_GAS_LIMIT_ENV, DEFAULT_BRIDGE_GAS_LIMIT)
    approve_gas_limit = _int_setting(APPROVE_GAS_LIMIT_ENV, DEFAULT_APPROVE_GAS_LIMIT)
    receipt_interval = _float_setting(RECEIPT_POLL_INTERVAL_ENV, RECEIPT_POLL_INTERVAL)
    status_interval = _float_setting(STATUS_POLL_INTERVAL_ENV, STATUS_POLL_INTERVAL)
    http_timeout = _float_setting(HTTP_TIMEOUT_ENV, 30.0)

    stop_raw = os.getenv(STOP_ON_FAILED_ENV)
    stop_on_failed = _parse_bool(stop_raw)
    if stop_raw and stop_on_failed is None:
        warnings.append(f"Unable to parse `{STOP_ON_FAILED_ENV}` = {stop_raw}; polling stops on failed.")

    if problems:
        return None, "Configure the following settings before continuing: " + ", ".join(problems)

    indexer_url = os.getenv(INDEXER_URL_ENV) or INDEXER_BASE_URL
    if not indexer_url.endswith("/"):
        indexer_url += "/"

    return (
        BridgeConfig(
            rpc_urls=rpc_urls,
            indexer_url=indexer_url,
            private_key=private_key,
            bridge_gas_limit=bridge_gas_limit,
            approve_gas_limit=approve_gas_limit,
            receipt_poll_interval=receipt_interval,
            status_poll_interval=status_interval,
            stop_on_failed=True if stop_on_failed is None else stop_on_failed,
            http_timeout=http_timeout,
            warnings=warnings,
        ),
        None,
    )
