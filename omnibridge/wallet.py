"""Wallet provider boundary.

Writes go through an EIP-1193 style ``request(method, params)`` call. The
orchestrator only ever sees :class:`WalletProvider`; account shapes are
normalised to :class:`~omnibridge.models.Account` here and nowhere else.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from eth_account import Account as EthAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .logging_utils import get_logger
from .models import Account, normalize_account

logger = get_logger("wallet")

USER_REJECTED_CODE = 4001
UNRECOGNIZED_CHAIN_CODE = 4902
CHAIN_CHANGED = "chainChanged"
ACCOUNTS_CHANGED = "accountsChanged"

Listener = Callable[[Any], None]


class ProviderRpcError(Exception):
    """EIP-1193 provider error carrying a numeric ``code``."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.data = data
        super().__init__(message)


class WalletProvider(Protocol):
    async def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        ...

    def on(self, event: str, listener: Listener) -> None:
        ...

    def remove_listener(self, event: str, listener: Listener) -> None:
        ...


async def get_account(wallet: WalletProvider) -> Optional[Account]:
    return normalize_account(await wallet.request("eth_accounts", []))


async def get_chain_id(wallet: WalletProvider) -> int:
    raw = await wallet.request("eth_chainId", [])
    return int(raw, 16) if isinstance(raw, str) else int(raw)


async def ensure_chain(
    wallet: WalletProvider,
    chain_id: int,
    *,
    chain_params: Optional[Mapping[str, Any]] = None,
) -> None:
    """Switch the wallet to ``chain_id``, registering the chain first if the wallet does not know it."""
    if await get_chain_id(wallet) == chain_id:
        return
    try:
        await wallet.request("wallet_switchEthereumChain", [{"chainId": hex(chain_id)}])
    except ProviderRpcError as exc:
        if exc.code != UNRECOGNIZED_CHAIN_CODE or chain_params is None:
            raise
        logger.info("Wallet does not know chain %s; adding it.", chain_id)
        await wallet.request("wallet_addEthereumChain", [dict(chain_params)])
        await wallet.request("wallet_switchEthereumChain", [{"chainId": hex(chain_id)}])


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    return int(value)


class EventEmitter:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s raised an error.", event)


class LocalAccountProvider(EventEmitter):
    """A :class:`WalletProvider` that signs with a local private key.

    Used by scripts and tests in place of a browser wallet. Unknown methods are
    forwarded to the active chain's RPC endpoint.
    """

    def __init__(
        self,
        private_key: str,
        rpc_urls: Mapping[int, str],
        chain_id: int,
        *,
        priority_fee_gwei: int = 1,
        max_fee_gwei: Optional[int] = None,
        clients: Optional[Mapping[int, Any]] = None,
    ) -> None:
        super().__init__()
        if chain_id not in rpc_urls:
            raise ValueError(f"No RPC URL configured for chain {chain_id}.")
        try:
            self._account = EthAccount.from_key(private_key)
        except ValueError as exc:
            raise ValueError("Private key could not be parsed.") from exc
        self._rpc_urls: Dict[int, str] = dict(rpc_urls)
        self._clients: Dict[int, Any] = dict(clients or {})
        self._chain_id = chain_id
        self._priority_fee_gwei = priority_fee_gwei
        self._max_fee_gwei = max_fee_gwei
        self._last_nonce: Dict[Tuple[int, str], int] = {}

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def _client(self, chain_id: Optional[int] = None) -> Any:
        cid = self._chain_id if chain_id is None else chain_id
        client = self._clients.get(cid)
        if client is None:
            client = AsyncWeb3(AsyncHTTPProvider(self._rpc_urls[cid]))
            self._clients[cid] = client
        return client

    async def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        params = list(params or [])
        if method in ("eth_accounts", "eth_requestAccounts"):
            return [self._account.address]
        if method == "eth_chainId":
            return hex(self._chain_id)
        if method == "wallet_switchEthereumChain":
            return self._switch_chain(_to_int(params[0]["chainId"]))
        if method == "wallet_addEthereumChain":
            return self._add_chain(params[0])
        if method == "eth_sendTransaction":
            return await self._send_transaction(dict(params[0]))
        response = await self._client().provider.make_request(method, params)
        if "error" in response:
            err = response["error"]
            code = err.get("code", -32603) if isinstance(err, dict) else -32603
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise ProviderRpcError(code, f"{method} failed: {message}")
        return response.get("result")

    def _switch_chain(self, chain_id: int) -> None:
        if chain_id not in self._rpc_urls:
            raise ProviderRpcError(UNRECOGNIZED_CHAIN_CODE, f"Unrecognized chain ID {hex(chain_id)}.")
        if chain_id != self._chain_id:
            self._chain_id = chain_id
            logger.info("Local wallet switched to chain %s.", chain_id)
            self.emit(CHAIN_CHANGED, hex(chain_id))
        return None

    def _add_chain(self, params: Mapping[str, Any]) -> None:
        chain_id = _to_int(params["chainId"])
        rpc_urls = params.get("rpcUrls") or []
        if not rpc_urls:
            raise ProviderRpcError(-32602, "wallet_addEthereumChain requires rpcUrls.")
        self._rpc_urls.setdefault(chain_id, str(rpc_urls[0]))
        return None

    async def _next_nonce(self, w3: Any) -> int:
        """Pending nonce plus a local monotonic bump for back-to-back sends."""
        address = self._account.address
        try:
            pending = await w3.eth.get_transaction_count(address, "pending")
        except Exception:
            pending = await w3.eth.get_transaction_count(address)
        key = (self._chain_id, address.lower())
        last = self._last_nonce.get(key)
        if last is not None and pending <= last:
            pending = last + 1
        self._last_nonce[key] = pending
        return pending

    async def _fee_params(self, w3: Any) -> Dict[str, int]:
        """EIP-1559 fees when the chain reports a base fee; legacy gasPrice otherwise."""
        try:
            latest = await w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
        except Exception:
            base_fee = None
        if base_fee is None:
            return {"gasPrice": int(await w3.eth.gas_price)}
        prio = Web3.to_wei(self._priority_fee_gwei, "gwei")
        max_fee = int(base_fee) * 2 + prio
        if self._max_fee_gwei is not None:
            max_fee = Web3.to_wei(self._max_fee_gwei, "gwei")
        return {"maxFeePerGas": max_fee, "maxPriorityFeePerGas": prio}

    async def _send_transaction(self, request: Dict[str, Any]) -> str:
        sender = request.get("from")
        if sender and sender.lower() != self._account.address.lower():
            raise ProviderRpcError(USER_REJECTED_CODE, f"Account {sender} is not managed by this wallet.")
        w3 = self._client()
        tx: Dict[str, Any] = {
            "from": self._account.address,
            "to": Web3.to_checksum_address(request["to"]),
            "data": request.get("data", "0x"),
            "value": _to_int(request.get("value", 0)),
            "chainId": self._chain_id,
            "nonce": await self._next_nonce(w3),
        }
        if "gas" in request:
            tx["gas"] = _to_int(request["gas"])
        else:
            tx["gas"] = int(await w3.eth.estimate_gas({k: tx[k] for k in ("from", "to", "data", "value")}))
        tx.update(await self._fee_params(w3))

        signed = self._account.sign_transaction(tx)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise ProviderRpcError(-32603, "Signed transaction missing raw_transaction.")
        try:
            tx_hash = await w3.eth.send_raw_transaction(raw_tx)
        except Exception as exc:
            text = str(exc)
            if "already known" in text:
                return Web3.to_hex(Web3.keccak(raw_tx))
            raise ProviderRpcError(-32000, text) from exc
        return Web3.to_hex(tx_hash)
