"""Chain Gateway: read calls against public RPC endpoints, writes through the wallet."""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Mapping, Optional, Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from .constants import ERC20_ABI, GAS_ESTIMATE_BUFFER_DEN, GAS_ESTIMATE_BUFFER_NUM
from .errors import (
    RpcError,
    SubmissionFailure,
    TransientRpcError,
    UserRejected,
    WalletNotConnected,
)
from .logging_utils import get_logger
from .models import Account, is_native_address
from .wallet import USER_REJECTED_CODE, ProviderRpcError, WalletProvider, get_account

logger = get_logger("gateway")

_REJECTION_MARKERS = ("user rejected", "user denied", "rejected by user", "user cancelled")


def encode_contract_call(contract: Any, fn_name: str, args: Sequence[Any] | None = None) -> str:
    """Encode a contract function call, compatible with web3.py v6 and v7."""
    call_args = list(args or [])

    def _try_encode(method_name: str) -> Optional[str]:
        encode_fn = getattr(contract, method_name, None)
        if not callable(encode_fn):
            return None
        try:
            return encode_fn(fn_name, args=call_args)
        except TypeError:
            pass
        for key in ("fn_name", "abi_element_identifier"):
            try:
                return encode_fn(**{key: fn_name, "args": call_args})
            except TypeError:
                continue
        return None

    for candidate in ("encode_abi", "encodeABI"):
        encoded = _try_encode(candidate)
        if encoded is not None:
            return encoded

    fn = getattr(contract.functions, fn_name)(*call_args)
    encode_tx = getattr(fn, "_encode_transaction_data", None)
    if callable(encode_tx):
        return encode_tx()
    raise AttributeError(f"Unable to encode contract call for '{fn_name}'.")


def format_balance(balance_wei: int, decimals: int, places: int = 6) -> str:
    """Render a base-unit balance with a fixed number of decimal places, truncating."""
    if balance_wei == 0:
        return "0.00"
    value = Decimal(balance_wei) / (Decimal(10) ** decimals)
    quant = Decimal(1).scaleb(-places)
    return str(value.quantize(quant, rounding=ROUND_DOWN))


def is_user_rejection(exc: BaseException) -> bool:
    if isinstance(exc, ProviderRpcError) and exc.code == USER_REJECTED_CODE:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _REJECTION_MARKERS)


class ChainGateway:
    """Per-chain read access plus wallet-backed writes.

    ``clients`` may pre-seed the ``AsyncWeb3`` instances used for reads; any
    chain without one gets a client on first use from ``rpc_urls``.
    """

    def __init__(
        self,
        rpc_urls: Mapping[int, str],
        wallet: Optional[WalletProvider] = None,
        *,
        clients: Optional[Mapping[int, Any]] = None,
    ) -> None:
        self._rpc_urls: Dict[int, str] = dict(rpc_urls)
        self._clients: Dict[int, Any] = dict(clients or {})
        self._wallet = wallet

    @property
    def wallet(self) -> Optional[WalletProvider]:
        return self._wallet

    def set_wallet(self, wallet: Optional[WalletProvider]) -> None:
        self._wallet = wallet

    def client(self, chain_id: int) -> Any:
        client = self._clients.get(chain_id)
        if client is None:
            try:
                rpc_url = self._rpc_urls[chain_id]
            except KeyError as exc:
                raise RpcError(f"No RPC URL configured for chain {chain_id}.") from exc
            client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
            self._clients[chain_id] = client
        return client

    def contract(self, chain_id: int, address: str, abi: list[Dict[str, Any]]) -> Any:
        return self.client(chain_id).eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    # Reads

    async def get_native_balance(self, chain_id: int, account: str) -> int:
        try:
            return int(await self.client(chain_id).eth.get_balance(Web3.to_checksum_address(account)))
        except RpcError:
            raise
        except Exception as exc:
            raise RpcError(f"eth_getBalance failed on chain {chain_id}: {exc}") from exc

    async def get_token_balance(self, chain_id: int, token_address: str, account: str) -> int:
        token = self.contract(chain_id, token_address, ERC20_ABI)
        try:
            return int(await token.functions.balanceOf(Web3.to_checksum_address(account)).call())
        except Exception as exc:
            raise RpcError(f"balanceOf failed for {token_address} on chain {chain_id}: {exc}") from exc

    async def get_balance(self, chain_id: int, token_address: str, account: str) -> int:
        if is_native_address(token_address):
            return await self.get_native_balance(chain_id, account)
        return await self.get_token_balance(chain_id, token_address, account)

    async def get_allowance(self, chain_id: int, token_address: str, owner: str, spender: str) -> int:
        token = self.contract(chain_id, token_address, ERC20_ABI)
        try:
            allowance = await token.functions.allowance(
                Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
            ).call()
        except Exception as exc:
            raise RpcError(f"allowance failed for {token_address} on chain {chain_id}: {exc}") from exc
        return int(allowance)

    async def estimate_gas(self, chain_id: int, tx: Mapping[str, Any], fallback: int) -> int:
        """Node estimate plus a 20% buffer; ``fallback`` when the node cannot estimate."""
        call = {k: v for k, v in tx.items() if k in ("from", "to", "data", "value")}
        try:
            estimate = await self.client(chain_id).eth.estimate_gas(call)
        except Exception as exc:
            logger.warning(
                "Gas estimation failed on chain %s (%s); using fallback gas limit %s.", chain_id, exc, fallback
            )
            return fallback
        return int(estimate) * GAS_ESTIMATE_BUFFER_NUM // GAS_ESTIMATE_BUFFER_DEN

    async def _fetch_receipt(self, chain_id: int, tx_hash: str) -> Any:
        try:
            return await self.client(chain_id).eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as exc:
            raise TransientRpcError(str(exc)) from exc
        except Exception as exc:
            if "not found" in str(exc).lower():
                raise TransientRpcError(str(exc)) from exc
            raise RpcError(f"eth_getTransactionReceipt failed on chain {chain_id}: {exc}") from exc

    async def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[Mapping[str, Any]]:
        """Return the receipt, or ``None`` while the node has not indexed the transaction."""
        try:
            receipt = await self._fetch_receipt(chain_id, tx_hash)
        except TransientRpcError:
            return None
        return receipt

    # Writes

    async def wallet_account(self) -> Account:
        if self._wallet is None:
            raise WalletNotConnected("No wallet provider found. Please connect your wallet.")
        account = await get_account(self._wallet)
        if account is None:
            raise WalletNotConnected("Wallet has no connected account.")
        return account

    async def build_transaction(
        self,
        chain_id: int,
        *,
        sender: str,
        to: str,
        data: str,
        value: int = 0,
        fallback_gas: int,
    ) -> Dict[str, Any]:
        tx: Dict[str, Any] = {
            "from": Web3.to_checksum_address(sender),
            "to": Web3.to_checksum_address(to),
            "data": data,
            "value": value,
        }
        tx["gas"] = await self.estimate_gas(chain_id, tx, fallback_gas)
        return tx

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        """Submit through the wallet and return the hash once the node accepts it."""
        if self._wallet is None:
            raise WalletNotConnected("No wallet provider found. Please connect your wallet.")
        request = dict(tx)
        request["value"] = hex(int(request.get("value", 0)))
        if "gas" in request:
            request["gas"] = hex(int(request["gas"]))
        try:
            tx_hash = await self._wallet.request("eth_sendTransaction", [request])
        except Exception as exc:
            if is_user_rejection(exc):
                raise UserRejected() from exc
            raise SubmissionFailure(f"Transaction submission failed: {exc}") from exc
        if not tx_hash:
            raise SubmissionFailure("Wallet returned no transaction hash.")
        return tx_hash if isinstance(tx_hash, str) else Web3.to_hex(tx_hash)
