from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Optional, Tuple

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ETHEREUM_CHAIN_ID = 1
PULSECHAIN_CHAIN_ID = 369

BRIDGE_MANAGER_ADDRESS = "0x1715a3E4A142d8b698131108995174F37aEBA10D"
BRIDGE_MANAGER_NATIVE_ADDRESS = "0x8AC4ae65b3656e26dC4e0e69108B392283350f55"

INDEXER_BASE_URL = "https://pt-quote-api.vercel.app/exchange/omnibridge/"
REVOKE_URL = "https://revoke.cash"

# Polling cadences in seconds.
RECEIPT_POLL_INTERVAL = 1.0
STATUS_POLL_INTERVAL = 7.0

# 96 blocks at 12 seconds each.
PROGRESS_WINDOW_SECONDS = 96 * 12

# 1e18 tokens at 18 decimals; large enough that later bridges never re-approve.
DEFAULT_APPROVAL_AMOUNT = 10**36

DEFAULT_BRIDGE_GAS_LIMIT = 300_000
DEFAULT_APPROVE_GAS_LIMIT = 100_000
GAS_ESTIMATE_BUFFER_NUM = 12
GAS_ESTIMATE_BUFFER_DEN = 10

# Native ETH bridges must send strictly more than this.
MIN_NATIVE_ETH_AMOUNT = Decimal("0.018")

# Tokens that revert approve() when moving a non-zero allowance to another non-zero value.
LEGACY_APPROVAL_TOKENS: FrozenSet[Tuple[int, str]] = frozenset(
    {
        (ETHEREUM_CHAIN_ID, "0xdac17f958d2ee523a2206206994597c13d831ec7"),  # USDT
    }
)

STATUS_PENDING = "pending"
STATUS_EXECUTED = "executed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = frozenset({STATUS_EXECUTED, STATUS_FAILED})


@dataclass(frozen=True)
class ChainInfo:
    chain_id: int
    name: str
    symbol: str
    rpc_url: str
    explorer_url: str
    block_time: float

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)

    def tx_explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"

    def wallet_params(self, rpc_url: Optional[str] = None) -> Dict[str, Any]:
        """Payload for ``wallet_addEthereumChain``."""
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.name,
            "nativeCurrency": {"name": self.name, "symbol": self.symbol, "decimals": 18},
            "rpcUrls": [rpc_url or self.rpc_url],
            "blockExplorerUrls": [self.explorer_url],
        }


ETHEREUM = ChainInfo(
    chain_id=ETHEREUM_CHAIN_ID,
    name="Ethereum",
    symbol="ETH",
    rpc_url="https://ethereum-rpc.publicnode.com",
    explorer_url="https://etherscan.io",
    block_time=12.0,
)

PULSECHAIN = ChainInfo(
    chain_id=PULSECHAIN_CHAIN_ID,
    name="PulseChain",
    symbol="PLS",
    rpc_url="https://rpc.pulsechain.com",
    explorer_url="https://scan.pulsechain.com",
    block_time=3.0,
)

CHAINS: Dict[int, ChainInfo] = {
    ETHEREUM.chain_id: ETHEREUM,
    PULSECHAIN.chain_id: PULSECHAIN,
}

ERC20_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "address", "name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "spender", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

BRIDGE_MANAGER_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "address", "name": "_receiver", "type": "address"},
            {"internalType": "uint256", "name": "_value", "type": "uint256"},
        ],
        "name": "relayTokens",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

BRIDGE_MANAGER_NATIVE_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "_receiver", "type": "address"}],
        "name": "wrapAndRelayTokens",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]


__all__ = [
    "BRIDGE_MANAGER_ABI",
    "BRIDGE_MANAGER_ADDRESS",
    "BRIDGE_MANAGER_NATIVE_ABI",
    "BRIDGE_MANAGER_NATIVE_ADDRESS",
    "CHAINS",
    "ChainInfo",
    "DEFAULT_APPROVAL_AMOUNT",
    "DEFAULT_APPROVE_GAS_LIMIT",
    "DEFAULT_BRIDGE_GAS_LIMIT",
    "ERC20_ABI",
    "ETHEREUM",
    "ETHEREUM_CHAIN_ID",
    "GAS_ESTIMATE_BUFFER_DEN",
    "GAS_ESTIMATE_BUFFER_NUM",
    "INDEXER_BASE_URL",
    "LEGACY_APPROVAL_TOKENS",
    "MIN_NATIVE_ETH_AMOUNT",
    "PROGRESS_WINDOW_SECONDS",
    "PULSECHAIN",
    "PULSECHAIN_CHAIN_ID",
    "RECEIPT_POLL_INTERVAL",
    "REVOKE_URL",
    "STATUS_EXECUTED",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "STATUS_POLL_INTERVAL",
    "TERMINAL_STATUSES",
    "ZERO_ADDRESS",
]
