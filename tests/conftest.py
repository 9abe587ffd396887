"""
Pytest configuration and shared fakes.

Nothing here touches the network: chain reads are served by ``FakeGateway``,
the wallet by ``FakeWallet`` and the indexer by a ``MagicMock``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from web3 import Web3

from omnibridge.approval import ApprovalManager
from omnibridge.confirmation import ConfirmationPoller
from omnibridge.constants import ETHEREUM_CHAIN_ID, PULSECHAIN_CHAIN_ID, ZERO_ADDRESS
from omnibridge.gateway import ChainGateway
from omnibridge.indexer import IndexerClient
from omnibridge.models import BridgeToken, BridgeTransaction
from omnibridge.orchestrator import BridgeOrchestrator
from omnibridge.submitter import BridgeSubmitter
from omnibridge.tokens import TokenRegistry
from omnibridge.tracker import StatusTracker
from omnibridge.wallet import (
    CHAIN_CHANGED,
    UNRECOGNIZED_CHAIN_CODE,
    EventEmitter,
    ProviderRpcError,
)

OWNER = Web3.to_checksum_address("0x742d35cc6634c0532925a3b844bc454e4438f44e")
APPROVE_SELECTOR = "0x095ea7b3"

USDT_ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
DAI_ADDRESS = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
PLS_DAI_ADDRESS = "0xefd766ccb38eaf1dfd701853bfce31359239f305"

ETH = BridgeToken(name="Ether", symbol="ETH", decimals=18, address=ZERO_ADDRESS, chain_id=ETHEREUM_CHAIN_ID)
USDT = BridgeToken(name="Tether USD", symbol="USDT", decimals=6, address=USDT_ADDRESS, chain_id=ETHEREUM_CHAIN_ID)
DAI = BridgeToken(name="Dai Stablecoin", symbol="DAI", decimals=18, address=DAI_ADDRESS, chain_id=ETHEREUM_CHAIN_ID)
PLS_DAI = BridgeToken(
    name="Dai Stablecoin from Ethereum",
    symbol="DAI",
    decimals=18,
    address=PLS_DAI_ADDRESS,
    chain_id=PULSECHAIN_CHAIN_ID,
)


def make_token(symbol: str, chain_id: int, address: Optional[str] = None, decimals: int = 18) -> BridgeToken:
    if address is None:
        seed = f"{symbol}:{chain_id}".encode()
        address = Web3.to_checksum_address("0x" + Web3.keccak(seed).hex()[-40:])
    return BridgeToken(name=symbol, symbol=symbol, decimals=decimals, address=address, chain_id=chain_id)


def tx_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": "42",
        "messageId": "0xmessage",
        "userAddress": OWNER,
        "sourceChainId": ETHEREUM_CHAIN_ID,
        "targetChainId": PULSECHAIN_CHAIN_ID,
        "sourceTxHash": "0x" + "ab" * 32,
        "targetTxHash": None,
        "tokenAddress": ZERO_ADDRESS,
        "tokenSymbol": "ETH",
        "tokenDecimals": 18,
        "amount": "1000000000000000000",
        "status": "pending",
        "sourceTimestamp": "2024-05-01T12:00:00Z",
        "targetTimestamp": None,
        "encodedData": None,
        "createdAt": "2024-05-01T12:00:00Z",
        "updatedAt": "2024-05-01T12:00:00Z",
    }
    payload.update(overrides)
    return payload


def make_tx(status: str = "pending", **overrides: Any) -> BridgeTransaction:
    return BridgeTransaction.from_api(tx_payload(status=status, **overrides))


def tx_hash_for(index: int) -> str:
    return "0x" + f"{index:064x}"


class FakeWallet(EventEmitter):
    """In-memory EIP-1193 wallet: knows a set of chains and records every request."""

    def __init__(self, address: str = OWNER, chain_id: int = ETHEREUM_CHAIN_ID, known_chains=None) -> None:
        super().__init__()
        self.address = address
        self.chain_id = chain_id
        self.known_chains = set(known_chains or (ETHEREUM_CHAIN_ID, PULSECHAIN_CHAIN_ID))
        self.calls: List[Tuple[str, Any]] = []

    async def request(self, method: str, params=None) -> Any:
        self.calls.append((method, params))
        if method == "eth_accounts":
            return [self.address] if self.address else []
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "wallet_switchEthereumChain":
            chain_id = int(params[0]["chainId"], 16)
            if chain_id not in self.known_chains:
                raise ProviderRpcError(UNRECOGNIZED_CHAIN_CODE, "Unrecognized chain.")
            self.chain_id = chain_id
            self.emit(CHAIN_CHANGED, hex(chain_id))
            return None
        if method == "wallet_addEthereumChain":
            self.known_chains.add(int(params[0]["chainId"], 16))
            return None
        raise ProviderRpcError(4200, f"Unsupported method {method}")

    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]


class FakeGateway(ChainGateway):
    """ChainGateway with scripted reads and an in-memory send.

    Sent approvals update the stored allowance so repeat calls see the new value.
    """

    def __init__(
        self,
        wallet=None,
        *,
        allowance: int = 0,
        receipts: Optional[List[Optional[Dict[str, Any]]]] = None,
        gas_estimate: Optional[int] = None,
    ) -> None:
        super().__init__({ETHEREUM_CHAIN_ID: "http://eth.invalid", PULSECHAIN_CHAIN_ID: "http://pls.invalid"}, wallet)
        self._offline = Web3()
        self.default_allowance = allowance
        self.allowances: Dict[Tuple[str, str], int] = {}
        self.balances: Dict[Tuple[int, str], int] = {}
        self.receipts = list(receipts or [])
        self.gas_estimate = gas_estimate
        self.sent: List[Dict[str, Any]] = []
        self.send_error: Optional[Exception] = None
        self.allowance_calls = 0
        self.receipt_calls = 0

    def contract(self, chain_id: int, address: str, abi):
        return self._offline.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def get_allowance(self, chain_id: int, token_address: str, owner: str, spender: str) -> int:
        self.allowance_calls += 1
        return self.allowances.get((token_address.lower(), spender.lower()), self.default_allowance)

    async def get_balance(self, chain_id: int, token_address: str, account: str) -> int:
        return self.balances.get((chain_id, token_address.lower()), 0)

    async def estimate_gas(self, chain_id: int, tx, fallback: int) -> int:
        return fallback if self.gas_estimate is None else self.gas_estimate

    async def get_transaction_receipt(self, chain_id: int, tx_hash: str):
        self.receipt_calls += 1
        if self.receipts:
            return self.receipts.pop(0)
        return {"status": 1, "transactionHash": tx_hash}

    async def send_transaction(self, tx) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(dict(tx))
        data = tx["data"]
        if data.startswith(APPROVE_SELECTOR):
            spender = "0x" + data[34:74]
            self.allowances[(tx["to"].lower(), spender.lower())] = int(data[74:138], 16)
        return tx_hash_for(len(self.sent))


def approve_amount(data: str) -> int:
    return int(data[74:138], 16)


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def gateway(wallet: FakeWallet) -> FakeGateway:
    return FakeGateway(wallet)


@pytest.fixture
def poller(gateway: FakeGateway) -> ConfirmationPoller:
    return ConfirmationPoller(gateway, interval=0)


@pytest.fixture
def indexer() -> MagicMock:
    return MagicMock(spec=IndexerClient)


@pytest.fixture
def tracker(indexer: MagicMock) -> StatusTracker:
    return StatusTracker(indexer, interval=0.01)


@pytest.fixture
async def orchestrator(gateway: FakeGateway, poller: ConfirmationPoller, tracker: StatusTracker, indexer: MagicMock):
    orch = BridgeOrchestrator(
        gateway,
        ApprovalManager(gateway, poller),
        BridgeSubmitter(gateway),
        poller,
        tracker,
        indexer=indexer,
        tokens=TokenRegistry(indexer),
    )
    yield orch
    orch.stop_polling()


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
