from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import Web3
from web3.exceptions import TransactionNotFound

from conftest import DAI, OWNER, FakeWallet
from omnibridge.constants import BRIDGE_MANAGER_ADDRESS, ERC20_ABI, ETHEREUM_CHAIN_ID, ZERO_ADDRESS
from omnibridge.errors import RpcError, SubmissionFailure, UserRejected, WalletNotConnected
from omnibridge.gateway import ChainGateway, encode_contract_call, format_balance, is_user_rejection
from omnibridge.wallet import ProviderRpcError

TX_HASH = "0x" + "aa" * 32


def _client() -> MagicMock:
    client = MagicMock()
    client.eth.get_balance = AsyncMock(return_value=2 * 10**18)
    client.eth.estimate_gas = AsyncMock(return_value=100_000)
    client.eth.get_transaction_receipt = AsyncMock(return_value={"status": 1})
    return client


def _gateway(client=None, wallet=None) -> ChainGateway:
    return ChainGateway({ETHEREUM_CHAIN_ID: "http://eth.invalid"}, wallet, clients={ETHEREUM_CHAIN_ID: client or _client()})


async def test_native_balance():
    gateway = _gateway()
    assert await gateway.get_balance(ETHEREUM_CHAIN_ID, ZERO_ADDRESS, OWNER) == 2 * 10**18


async def test_token_balance_and_allowance_use_erc20_calls():
    client = _client()
    contract = client.eth.contract.return_value
    contract.functions.balanceOf.return_value.call = AsyncMock(return_value=7)
    contract.functions.allowance.return_value.call = AsyncMock(return_value=11)
    gateway = _gateway(client)

    assert await gateway.get_balance(ETHEREUM_CHAIN_ID, DAI.address, OWNER) == 7
    assert await gateway.get_allowance(ETHEREUM_CHAIN_ID, DAI.address, OWNER, BRIDGE_MANAGER_ADDRESS) == 11
    contract.functions.allowance.assert_called_once_with(OWNER, BRIDGE_MANAGER_ADDRESS)
    client.eth.contract.assert_called_with(address=DAI.address, abi=ERC20_ABI)


async def test_read_failures_become_rpc_errors():
    client = _client()
    client.eth.get_balance.side_effect = ConnectionError("connection reset")
    client.eth.contract.return_value.functions.allowance.return_value.call = AsyncMock(
        side_effect=ValueError("execution reverted")
    )
    gateway = _gateway(client)

    with pytest.raises(RpcError):
        await gateway.get_native_balance(ETHEREUM_CHAIN_ID, OWNER)
    with pytest.raises(RpcError):
        await gateway.get_allowance(ETHEREUM_CHAIN_ID, DAI.address, OWNER, BRIDGE_MANAGER_ADDRESS)


def test_unknown_chain_has_no_client():
    with pytest.raises(RpcError):
        ChainGateway({}).client(999)


async def test_gas_estimate_gets_a_buffer():
    gateway = _gateway()
    assert await gateway.estimate_gas(ETHEREUM_CHAIN_ID, {"from": OWNER, "to": OWNER}, 300_000) == 120_000


async def test_gas_estimate_falls_back():
    client = _client()
    client.eth.estimate_gas.side_effect = ValueError("execution reverted")
    assert await _gateway(client).estimate_gas(ETHEREUM_CHAIN_ID, {}, 300_000) == 300_000


async def test_missing_receipt_is_none():
    client = _client()
    client.eth.get_transaction_receipt.side_effect = TransactionNotFound(f"Transaction with hash {TX_HASH} not found.")
    assert await _gateway(client).get_transaction_receipt(ETHEREUM_CHAIN_ID, TX_HASH) is None


async def test_not_found_message_is_treated_as_missing():
    client = _client()
    client.eth.get_transaction_receipt.side_effect = ValueError("transaction not found")
    assert await _gateway(client).get_transaction_receipt(ETHEREUM_CHAIN_ID, TX_HASH) is None


async def test_other_receipt_errors_propagate():
    client = _client()
    client.eth.get_transaction_receipt.side_effect = ConnectionError("boom")
    with pytest.raises(RpcError):
        await _gateway(client).get_transaction_receipt(ETHEREUM_CHAIN_ID, TX_HASH)


async def test_build_transaction_checksums_and_estimates():
    tx = await _gateway().build_transaction(
        ETHEREUM_CHAIN_ID, sender=OWNER.lower(), to=DAI.address.lower(), data="0x", value=5, fallback_gas=1
    )
    assert tx == {"from": OWNER, "to": DAI.address, "data": "0x", "value": 5, "gas": 120_000}


async def test_send_transaction_hexes_quantities():
    wallet = MagicMock()
    wallet.request = AsyncMock(return_value=TX_HASH)
    gateway = _gateway(wallet=wallet)

    assert await gateway.send_transaction({"from": OWNER, "to": DAI.address, "data": "0x", "value": 10, "gas": 21000}) == TX_HASH

    method, params = wallet.request.call_args.args
    assert method == "eth_sendTransaction"
    assert params[0]["value"] == "0xa"
    assert params[0]["gas"] == "0x5208"


@pytest.mark.parametrize(
    "error",
    [ProviderRpcError(4001, "User rejected the request."), ValueError("MetaMask Tx Signature: User denied transaction signature.")],
)
async def test_wallet_rejection_maps_to_user_rejected(error):
    wallet = MagicMock()
    wallet.request = AsyncMock(side_effect=error)
    with pytest.raises(UserRejected):
        await _gateway(wallet=wallet).send_transaction({"to": DAI.address, "data": "0x"})


async def test_other_wallet_errors_are_submission_failures():
    wallet = MagicMock()
    wallet.request = AsyncMock(side_effect=ProviderRpcError(-32000, "insufficient funds"))
    with pytest.raises(SubmissionFailure):
        await _gateway(wallet=wallet).send_transaction({"to": DAI.address, "data": "0x"})


async def test_writes_need_a_wallet():
    gateway = _gateway()
    with pytest.raises(WalletNotConnected):
        await gateway.send_transaction({"to": DAI.address, "data": "0x"})
    with pytest.raises(WalletNotConnected):
        await gateway.wallet_account()


async def test_wallet_account_is_normalised():
    gateway = _gateway(wallet=FakeWallet(address=OWNER.lower()))
    account = await gateway.wallet_account()
    assert account.address == OWNER


async def test_wallet_without_accounts():
    with pytest.raises(WalletNotConnected):
        await _gateway(wallet=FakeWallet(address="")).wallet_account()


def test_encode_contract_call_matches_selector():
    token = Web3().eth.contract(address=DAI.address, abi=ERC20_ABI)
    data = encode_contract_call(token, "approve", [BRIDGE_MANAGER_ADDRESS, 1])
    assert data.startswith("0x095ea7b3")
    assert data.endswith("1".rjust(64, "0"))


@pytest.mark.parametrize(
    "wei, decimals, expected",
    [(0, 18, "0.00"), (10**18, 18, "1.000000"), (1_234_567_891, 6, "1234.567891"), (19, 1, "1.900000")],
)
def test_format_balance(wei, decimals, expected):
    assert format_balance(wei, decimals) == expected


def test_is_user_rejection():
    assert is_user_rejection(ProviderRpcError(4001, "denied"))
    assert not is_user_rejection(ProviderRpcError(-32000, "nonce too low"))
