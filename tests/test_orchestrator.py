from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from conftest import (
    APPROVE_SELECTOR,
    DAI,
    ETH,
    OWNER,
    PLS_DAI,
    USDT,
    FakeGateway,
    FakeWallet,
    approve_amount,
    make_tx,
)
from omnibridge.approval import ApprovalManager
from omnibridge.confirmation import ConfirmationPoller
from omnibridge.constants import (
    BRIDGE_MANAGER_ADDRESS,
    BRIDGE_MANAGER_NATIVE_ADDRESS,
    DEFAULT_APPROVAL_AMOUNT,
    ETHEREUM_CHAIN_ID,
    PULSECHAIN_CHAIN_ID,
)
from omnibridge.errors import (
    ApprovalResetRequired,
    ConfirmationCancelled,
    IndexerError,
    InvalidIntent,
    UserRejected,
)
from omnibridge.models import BridgeEstimate, BridgeIntent
from omnibridge.orchestrator import BridgeOrchestrator
from omnibridge.progress import ProgressStep
from omnibridge.submitter import BridgeSubmitter
from omnibridge.tracker import StatusTracker


def _build(gateway, indexer):
    poller = ConfirmationPoller(gateway, interval=0)
    return BridgeOrchestrator(
        gateway,
        ApprovalManager(gateway, poller),
        BridgeSubmitter(gateway),
        poller,
        StatusTracker(indexer, interval=0.01),
        indexer=indexer,
    )


def _intent(token, amount, receiver=OWNER):
    return BridgeIntent(
        from_chain_id=token.chain_id,
        to_chain_id=PULSECHAIN_CHAIN_ID if token.chain_id == ETHEREUM_CHAIN_ID else ETHEREUM_CHAIN_ID,
        token=token,
        amount=amount,
        receiver=receiver,
    )


def _estimate(token, estimated_wei, supported=True):
    return BridgeEstimate(
        token_address=token.address,
        network_id=token.chain_id,
        amount=Decimal(estimated_wei),
        estimated_amount=Decimal(estimated_wei),
        fee=Decimal(0),
        fee_percentage=Decimal("0.3"),
        is_supported=supported,
    )


async def test_native_eth_bridge_end_to_end(orchestrator, gateway, indexer):
    indexer.register_transaction.return_value = make_tx("pending")
    indexer.get_transaction.side_effect = [make_tx("pending"), make_tx("executed")]

    result = await orchestrator.submit_bridge(_intent(ETH, "1.0"))

    assert gateway.allowance_calls == 0
    assert len(gateway.sent) == 1
    sent = gateway.sent[0]
    assert sent["to"] == BRIDGE_MANAGER_NATIVE_ADDRESS
    assert sent["value"] == 10**18
    assert sent["gas"] == 300_000
    assert result.transaction_hash == orchestrator.state.transaction_hash
    assert result.transaction_explorer == f"https://etherscan.io/tx/{result.transaction_hash}"
    assert result.approval_tx_hash is None
    assert gateway.receipt_calls == 1
    indexer.register_transaction.assert_called_once_with(result.transaction_hash, ETHEREUM_CHAIN_ID, OWNER)

    await asyncio.wait_for(orchestrator.tracker.handle.wait(), timeout=2)
    assert indexer.get_transaction.call_count == 2
    assert orchestrator.state.bridge_transaction.status == "executed"
    assert orchestrator.state.progress() is ProgressStep.FINISHED
    assert orchestrator.state.is_bridging is False
    assert orchestrator.state.is_polling is False


async def test_usdt_with_partial_allowance_requires_reset(orchestrator, gateway, indexer):
    gateway.default_allowance = 5 * 10**6

    with pytest.raises(ApprovalResetRequired):
        await orchestrator.submit_bridge(_intent(USDT, "100"))

    assert gateway.sent == []
    assert orchestrator.state.is_bridging is False
    assert orchestrator.state.approval.in_flight is False
    assert "revoke.cash" in orchestrator.state.error
    indexer.register_transaction.assert_not_called()


async def test_dai_with_zero_allowance_approves_then_bridges(orchestrator, gateway, indexer):
    indexer.register_transaction.return_value = make_tx("pending", tokenAddress=DAI.address)
    indexer.get_transaction.return_value = make_tx("pending", tokenAddress=DAI.address)
    approvals = []
    orchestrator.subscribe(lambda state: approvals.append(state.approval))

    result = await orchestrator.submit_bridge(_intent(DAI, "50"))

    assert len(gateway.sent) == 2
    approve, bridge = gateway.sent
    assert approve["to"] == DAI.address
    assert approve["data"].startswith(APPROVE_SELECTOR)
    assert approve_amount(approve["data"]) == DEFAULT_APPROVAL_AMOUNT
    assert bridge["to"] == BRIDGE_MANAGER_ADDRESS
    assert bridge["value"] == 0
    assert not bridge["data"].startswith(APPROVE_SELECTOR)
    assert result.approval_tx_hash is not None
    assert result.approval_tx_hash != result.transaction_hash
    assert orchestrator.state.approval_tx_hash == result.approval_tx_hash
    assert any(state.in_flight for state in approvals)
    assert orchestrator.state.approval.in_flight is False
    assert gateway.receipt_calls == 2


async def test_registration_failure_is_only_a_warning(orchestrator, gateway, indexer):
    indexer.register_transaction.side_effect = IndexerError("HTTP 502", status_code=502)

    result = await orchestrator.submit_bridge(_intent(ETH, "1"))

    assert len(gateway.sent) == 1
    assert result.bridge_transaction is None
    assert "HTTP 502" in result.tracking_warning
    assert orchestrator.state.tracking_warning == result.tracking_warning
    assert orchestrator.state.error is None
    assert orchestrator.tracker.handle is None


async def test_user_rejection_clears_bridging_flag(orchestrator, gateway, indexer):
    gateway.send_error = UserRejected()

    with pytest.raises(UserRejected):
        await orchestrator.submit_bridge(_intent(ETH, "1"))

    assert orchestrator.state.is_bridging is False
    assert orchestrator.state.error == "Transaction was rejected in the wallet."
    indexer.register_transaction.assert_not_called()


async def test_wallet_is_switched_to_the_source_chain(indexer):
    wallet = FakeWallet(chain_id=PULSECHAIN_CHAIN_ID)
    gateway = FakeGateway(wallet)
    orchestrator = _build(gateway, indexer)
    indexer.register_transaction.side_effect = IndexerError("offline")

    await orchestrator.submit_bridge(_intent(ETH, "1"))

    assert wallet.chain_id == ETHEREUM_CHAIN_ID
    assert "wallet_switchEthereumChain" in wallet.methods()
    orchestrator.close()


async def test_unknown_chain_is_added_before_switching(indexer):
    wallet = FakeWallet(chain_id=PULSECHAIN_CHAIN_ID, known_chains={PULSECHAIN_CHAIN_ID})
    gateway = FakeGateway(wallet)
    orchestrator = _build(gateway, indexer)
    indexer.register_transaction.side_effect = IndexerError("offline")

    await orchestrator.submit_bridge(_intent(ETH, "1"))

    methods = wallet.methods()
    assert methods.index("wallet_addEthereumChain") < len(methods) - 1
    added = dict(wallet.calls)["wallet_addEthereumChain"][0]
    assert added["chainId"] == "0x1"
    assert wallet.chain_id == ETHEREUM_CHAIN_ID
    orchestrator.close()


async def test_chain_change_restarts_status_polling_on_a_new_handle(orchestrator, wallet, indexer):
    indexer.register_transaction.return_value = make_tx("pending")
    indexer.get_transaction.return_value = make_tx("pending")

    await orchestrator.submit_bridge(_intent(ETH, "1"))
    handle = orchestrator.tracker.handle
    await asyncio.sleep(0.02)
    assert handle.active

    wallet.emit("chainChanged", hex(PULSECHAIN_CHAIN_ID))

    assert handle.cancelled
    restarted = orchestrator.tracker.handle
    assert restarted is not None and restarted is not handle
    assert orchestrator.state.is_polling is True

    indexer.get_transaction.return_value = make_tx("executed")
    await asyncio.wait_for(restarted.wait(), timeout=2)
    assert orchestrator.state.bridge_transaction.is_executed
    assert orchestrator.state.has_pending_transfer is False
    assert orchestrator.state.is_polling is False


async def test_chain_change_leaves_finished_transfers_alone(orchestrator, wallet, indexer):
    indexer.register_transaction.return_value = make_tx("executed")
    await orchestrator.submit_bridge(_intent(ETH, "1"))

    wallet.emit("chainChanged", hex(PULSECHAIN_CHAIN_ID))

    assert orchestrator.tracker.handle is None
    assert orchestrator.state.is_polling is False
    indexer.get_transaction.assert_not_called()


async def _until(condition, limit=10_000):
    for _ in range(limit):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


async def test_chain_change_cancels_approval_confirmation(orchestrator, gateway, wallet, indexer):
    gateway.receipts = [None] * 1_000_000
    task = asyncio.create_task(orchestrator.submit_bridge(_intent(DAI, "50")))
    await _until(lambda: gateway.receipt_calls > 3)
    assert orchestrator.state.approval.in_flight is True

    wallet.emit("chainChanged", hex(PULSECHAIN_CHAIN_ID))

    with pytest.raises(ConfirmationCancelled):
        await asyncio.wait_for(task, timeout=2)
    calls = gateway.receipt_calls
    await asyncio.sleep(0.02)
    assert gateway.receipt_calls == calls
    assert len(gateway.sent) == 1
    assert orchestrator.state.is_bridging is False
    assert orchestrator.state.approval.in_flight is False
    indexer.register_transaction.assert_not_called()


async def test_reset_cancels_approval_confirmation(orchestrator, gateway):
    gateway.receipts = [None] * 1_000_000
    task = asyncio.create_task(orchestrator.submit_bridge(_intent(DAI, "50")))
    await _until(lambda: gateway.receipt_calls > 0)

    orchestrator.reset()

    with pytest.raises(ConfirmationCancelled):
        await asyncio.wait_for(task, timeout=2)
    assert orchestrator.state.is_bridging is False


async def test_cancelled_submission_clears_in_flight_flags(orchestrator, gateway, indexer):
    indexer.register_transaction.return_value = make_tx("pending")
    indexer.get_transaction.return_value = make_tx("pending")
    gateway.receipts = [None] * 1_000_000
    task = asyncio.create_task(orchestrator.submit_bridge(_intent(DAI, "50")))
    await _until(lambda: gateway.receipt_calls > 0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert orchestrator.state.is_bridging is False
    assert orchestrator.state.approval.in_flight is False
    calls = gateway.receipt_calls
    await asyncio.sleep(0.02)
    assert gateway.receipt_calls == calls

    gateway.receipts = []
    result = await orchestrator.submit_bridge(_intent(DAI, "50"))
    assert result.transaction_hash == orchestrator.state.transaction_hash


async def test_pending_transfer_blocks_a_new_submission(orchestrator, gateway, indexer):
    indexer.register_transaction.return_value = make_tx("pending")
    indexer.get_transaction.return_value = make_tx("pending")
    await orchestrator.submit_bridge(_intent(ETH, "1"))

    with pytest.raises(InvalidIntent):
        await orchestrator.submit_bridge(_intent(ETH, "2"))
    assert len(gateway.sent) == 1


@pytest.mark.parametrize("amount", ["0.01", "0.018"])
async def test_small_native_eth_is_rejected(orchestrator, gateway, amount):
    with pytest.raises(InvalidIntent):
        await orchestrator.submit_bridge(_intent(ETH, amount))
    assert gateway.sent == []
    assert orchestrator.state.is_bridging is False


async def test_unsupported_estimate_is_rejected(orchestrator, gateway):
    orchestrator.select_token(DAI)
    orchestrator._update(estimate=_estimate(DAI, 10**18, supported=False))
    with pytest.raises(InvalidIntent):
        await orchestrator.submit_bridge(_intent(DAI, "1"))
    assert gateway.sent == []


async def test_invalid_intent_touches_nothing(orchestrator, gateway, wallet):
    bad = BridgeIntent(
        from_chain_id=ETHEREUM_CHAIN_ID,
        to_chain_id=PULSECHAIN_CHAIN_ID,
        token=DAI,
        amount="1.0000000000000000001",
        receiver=OWNER,
    )
    with pytest.raises(InvalidIntent):
        await orchestrator.submit_bridge(bad)
    assert gateway.sent == []
    assert wallet.calls == []


async def test_check_approval(orchestrator, gateway):
    assert (await orchestrator.check_approval(_intent(DAI, "10"))).required is True
    assert orchestrator.state.approval.required is True

    gateway.default_allowance = 10 * 10**18
    assert (await orchestrator.check_approval(_intent(DAI, "10"))).required is False

    calls = gateway.allowance_calls
    assert (await orchestrator.check_approval(_intent(ETH, "10"))).required is False
    assert gateway.allowance_calls == calls
    assert gateway.sent == []


async def test_fetch_activity(orchestrator, indexer):
    history = [make_tx("executed"), make_tx("pending", id="43")]
    indexer.list_transactions.return_value = history

    assert await orchestrator.fetch_activity() == history
    indexer.list_transactions.assert_called_once_with(OWNER, 50, 0)


async def test_get_balance(orchestrator, gateway):
    gateway.balances[(ETHEREUM_CHAIN_ID, DAI.address.lower())] = 1_500_000_000_000_000_000
    orchestrator.select_token(DAI)

    assert await orchestrator.get_balance() == "1.500000"
    assert orchestrator.state.balance == "1.500000"
    assert await orchestrator.get_balance(ETH) == "0.00"


async def test_swap_chains_carries_token_and_estimate(orchestrator, indexer):
    indexer.get_currencies.side_effect = lambda chain_id, verified: {
        ETHEREUM_CHAIN_ID: [ETH, DAI],
        PULSECHAIN_CHAIN_ID: [PLS_DAI],
    }[chain_id]
    indexer.get_estimate.return_value = _estimate(DAI, 49_850_000_000_000_000_000)
    await orchestrator.load_tokens()
    orchestrator.select_token(DAI)
    orchestrator.set_amount("50")
    await orchestrator.refresh_estimate()

    orchestrator.swap_chains()

    state = orchestrator.state
    assert (state.from_chain_id, state.to_chain_id) == (PULSECHAIN_CHAIN_ID, ETHEREUM_CHAIN_ID)
    assert state.selected_token == PLS_DAI
    assert state.amount == "49.850000"

    orchestrator.select_token(PLS_DAI)
    orchestrator.swap_chains()
    assert orchestrator.state.selected_token == DAI
    assert orchestrator.state.amount == ""


async def test_swap_chains_drops_unpaired_token(orchestrator):
    orchestrator.select_token(USDT)
    orchestrator.swap_chains()
    assert orchestrator.state.selected_token is None
    assert orchestrator.state.from_chain_id == PULSECHAIN_CHAIN_ID


async def test_reset_clears_transfer_and_form(orchestrator, indexer):
    indexer.register_transaction.return_value = make_tx("pending")
    indexer.get_transaction.return_value = make_tx("pending")
    orchestrator.select_token(ETH)
    orchestrator.set_amount("1")
    await orchestrator.submit_bridge(orchestrator.intent(OWNER))
    handle = orchestrator.tracker.handle

    orchestrator.reset()

    state = orchestrator.state
    assert handle.cancelled
    assert state.transaction_hash is None
    assert state.bridge_transaction is None
    assert state.selected_token is None
    assert state.amount == ""
    assert state.error is None
    assert state.is_bridging is False


async def test_close_detaches_from_the_wallet(orchestrator, wallet, indexer):
    orchestrator.close()
    wallet.emit("chainChanged", "0x171")
    assert orchestrator._gateway.wallet is None
    indexer.close.assert_called_once_with()
