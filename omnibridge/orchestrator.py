"""Bridge session: ties approval, submission and both confirmation channels together."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Any, Callable, Dict, List, Optional

from . import polling
from .approval import ApprovalManager
from .config import BridgeConfig
from .confirmation import ConfirmationPoller
from .constants import (
    CHAINS,
    ETHEREUM_CHAIN_ID,
    MIN_NATIVE_ETH_AMOUNT,
    PULSECHAIN_CHAIN_ID,
)
from .errors import (
    BridgeError,
    ConfirmationCancelled,
    IndexerSubmissionFailure,
    InvalidIntent,
)
from .gateway import ChainGateway, format_balance
from .indexer import DEFAULT_ACTIVITY_LIMIT, IndexerClient
from .logging_utils import compose_log, get_logger
from .models import (
    ApprovalState,
    BridgeEstimate,
    BridgeIntent,
    BridgeResult,
    BridgeToken,
    BridgeTransaction,
    parse_amount,
)
from .polling import PollHandle
from .progress import ProgressStep, project_step
from .submitter import BridgeSubmitter, bridge_manager_for
from .tokens import TokenCatalog, TokenRegistry, counterpart_token
from .tracker import StatusTracker
from .wallet import CHAIN_CHANGED, WalletProvider, ensure_chain

logger = get_logger("orchestrator")

StateListener = Callable[["BridgeState"], None]


@dataclass(frozen=True)
class BridgeState:
    from_chain_id: int = ETHEREUM_CHAIN_ID
    to_chain_id: int = PULSECHAIN_CHAIN_ID
    selected_token: Optional[BridgeToken] = None
    amount: str = ""
    estimate: Optional[BridgeEstimate] = None
    balance: str = ""
    approval: ApprovalState = field(default_factory=ApprovalState)
    is_bridging: bool = False
    transaction_hash: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    bridge_transaction: Optional[BridgeTransaction] = None
    is_polling: bool = False
    polling_error: Optional[str] = None
    error: Optional[str] = None
    tracking_warning: Optional[str] = None

    def progress(self, now: Optional[datetime] = None) -> Optional[ProgressStep]:
        tx = self.bridge_transaction
        if tx is None:
            return None
        return project_step(tx.status, tx.created_at, now)

    @property
    def has_pending_transfer(self) -> bool:
        return self.bridge_transaction is not None and self.bridge_transaction.is_pending


class BridgeOrchestrator:
    """One bridging session for one wallet.

    All collaborators are passed in; :meth:`from_config` wires the default
    set. Background pollers are owned here and stopped on :meth:`reset`,
    :meth:`close` and whenever the wallet reports a chain change.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        approvals: ApprovalManager,
        submitter: BridgeSubmitter,
        confirmations: ConfirmationPoller,
        tracker: StatusTracker,
        *,
        indexer: Optional[IndexerClient] = None,
        tokens: Optional[TokenRegistry] = None,
        rpc_urls: Optional[Dict[int, str]] = None,
    ) -> None:
        self._gateway = gateway
        self._approvals = approvals
        self._submitter = submitter
        self._confirmations = confirmations
        self._tracker = tracker
        self._indexer = indexer
        self._tokens = tokens
        self._rpc_urls = dict(rpc_urls or {})
        self._receipt_handle: Optional[PollHandle] = None
        self._listeners: List[StateListener] = []
        self.state = BridgeState()
        self._unsubscribe_tracker = tracker.subscribe(self._on_snapshot)
        self._wallet: Optional[WalletProvider] = None
        self.attach_wallet(gateway.wallet)

    @classmethod
    def from_config(cls, config: BridgeConfig, wallet: Optional[WalletProvider] = None) -> "BridgeOrchestrator":
        gateway = ChainGateway(config.rpc_urls, wallet)
        confirmations = ConfirmationPoller(gateway, interval=config.receipt_poll_interval)
        indexer = IndexerClient(config.indexer_url, timeout=config.http_timeout)
        return cls(
            gateway,
            ApprovalManager(gateway, confirmations, gas_limit=config.approve_gas_limit),
            BridgeSubmitter(gateway, gas_limit=config.bridge_gas_limit),
            confirmations,
            StatusTracker(
                indexer, interval=config.status_poll_interval, stop_on_failed=config.stop_on_failed
            ),
            indexer=indexer,
            tokens=TokenRegistry(indexer),
            rpc_urls=config.rpc_urls,
        )

    # State

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _update(self, **changes: Any) -> None:
        self.state = replace(self.state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:
                logger.exception("State listener raised an error.")

    def _on_snapshot(self, snapshot: Optional[BridgeTransaction]) -> None:
        error = self._tracker.polling_error
        self._update(
            bridge_transaction=snapshot,
            is_polling=self._tracker.is_polling,
            polling_error=str(error) if error is not None else None,
        )

    @property
    def progress(self) -> Optional[ProgressStep]:
        return self.state.progress()

    @property
    def tracker(self) -> StatusTracker:
        return self._tracker

    @property
    def catalog(self) -> TokenCatalog:
        return self._tokens.catalog if self._tokens is not None else TokenCatalog()

    # Wallet

    def attach_wallet(self, wallet: Optional[WalletProvider]) -> None:
        """Set (or clear, with ``None``) the wallet used for writes."""
        if self._wallet is not None:
            self._wallet.remove_listener(CHAIN_CHANGED, self._on_chain_changed)
        self._wallet = wallet
        self._gateway.set_wallet(wallet)
        if wallet is not None:
            wallet.on(CHAIN_CHANGED, self._on_chain_changed)

    def _on_chain_changed(self, chain_id: Any) -> None:
        logger.info("Wallet switched to chain %s; stopping active pollers.", chain_id)
        snapshot = self._tracker.snapshot
        self.stop_polling()
        if snapshot is not None and snapshot.is_pending:
            self._resume_tracking(snapshot)

    def _resume_tracking(self, snapshot: BridgeTransaction) -> None:
        # Indexer status does not depend on the wallet chain; restart it on a fresh handle.
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; status tracking for %s is paused.", snapshot.message_id)
            return
        self._tracker.track(snapshot)

    def stop_polling(self) -> None:
        polling.stop(self._receipt_handle)
        self._receipt_handle = None
        self._tracker.stop()
        if self.state.is_polling:
            self._update(is_polling=False)

    # Selection

    async def load_tokens(self) -> TokenCatalog:
        if self._tokens is None:
            raise BridgeError("No token registry configured.")
        return await self._tokens.load()

    def select_token(self, token: Optional[BridgeToken]) -> None:
        self._update(selected_token=token, estimate=None)

    def set_amount(self, amount: str) -> None:
        self._update(amount=amount, estimate=None)

    def set_chains(self, from_chain_id: int, to_chain_id: int) -> None:
        if from_chain_id == to_chain_id:
            raise InvalidIntent("Source and destination chains must differ.")
        changes: Dict[str, Any] = {"from_chain_id": from_chain_id, "to_chain_id": to_chain_id}
        if from_chain_id != self.state.from_chain_id:
            changes.update(selected_token=None, amount="", estimate=None)
        self._update(**changes)

    def swap_chains(self) -> None:
        """Flip direction, carrying the selected token over to its counterpart.

        The amount becomes the last estimate's output when one is known and is
        cleared otherwise.
        """
        state = self.state
        token = state.selected_token
        if token is not None:
            token = counterpart_token(self.catalog.pairs, token, state.to_chain_id)

        amount = ""
        if state.estimate is not None and state.estimate.estimated_amount and token is not None:
            human = state.estimate.estimated_amount / (Decimal(10) ** token.decimals)
            amount = f"{human.quantize(Decimal('0.000001'), rounding=ROUND_DOWN):f}"

        self._update(
            from_chain_id=state.to_chain_id,
            to_chain_id=state.from_chain_id,
            selected_token=token,
            amount=amount,
            estimate=None,
        )

    async def refresh_estimate(self) -> Optional[BridgeEstimate]:
        state = self.state
        if self._tokens is None or state.selected_token is None or not state.amount:
            return None
        _, amount_wei = parse_amount(state.amount, state.selected_token.decimals)
        estimate = await self._tokens.estimate(state.selected_token, state.from_chain_id, amount_wei)
        self._update(estimate=estimate)
        return estimate

    async def get_balance(self, token: Optional[BridgeToken] = None) -> str:
        """Connected account's balance of ``token`` (default: the selected token), six decimals."""
        token = token or self.state.selected_token
        if token is None:
            raise InvalidIntent("Select a token first.")
        account = await self._gateway.wallet_account()
        balance_wei = await self._gateway.get_balance(token.chain_id, token.address, account.address)
        balance = format_balance(balance_wei, token.decimals)
        if token == self.state.selected_token:
            self._update(balance=balance)
        return balance

    # Bridging

    def intent(self, receiver: Optional[str] = None) -> BridgeIntent:
        """Build an intent from the current selection."""
        state = self.state
        if state.selected_token is None:
            raise InvalidIntent("Select a token first.")
        if receiver is None:
            raise InvalidIntent("Receiver address is required.")
        return BridgeIntent(
            from_chain_id=state.from_chain_id,
            to_chain_id=state.to_chain_id,
            token=state.selected_token,
            amount=state.amount,
            receiver=receiver,
        )

    def _preflight(self, intent: BridgeIntent) -> int:
        if self.state.is_bridging:
            raise InvalidIntent("A bridge transaction is already in progress.")
        if self.state.has_pending_transfer:
            raise InvalidIntent("Wait for the current bridge transfer to finish first.")
        intent.validate()
        amount_dec, amount_wei = parse_amount(intent.amount, intent.token.decimals)
        if intent.is_native and intent.from_chain_id == ETHEREUM_CHAIN_ID and amount_dec <= MIN_NATIVE_ETH_AMOUNT:
            raise InvalidIntent(f"Native ETH bridges must be larger than {MIN_NATIVE_ETH_AMOUNT} ETH.")
        estimate = self.state.estimate
        if estimate is not None and not estimate.is_supported:
            raise InvalidIntent(f"{intent.token.symbol} is not supported by the bridge.")
        return amount_wei

    async def check_approval(self, intent: BridgeIntent) -> ApprovalState:
        """Refresh ``state.approval`` for ``intent`` without sending anything."""
        if intent.is_native:
            approval = ApprovalState(required=False)
        else:
            account = await self._gateway.wallet_account()
            approval = await self._approvals.check(
                intent.token.address,
                bridge_manager_for(intent.from_chain_id, intent.token.address),
                intent.amount_wei,
                intent.from_chain_id,
                account.address,
            )
        self._update(approval=approval)
        return approval

    def _on_approval_started(self, tx_hash: str) -> None:
        self._update(
            approval=ApprovalState(required=True, in_flight=True, tx_hash=tx_hash),
            approval_tx_hash=tx_hash,
        )

    async def _wait_for_receipt(self, chain_id: int, tx_hash: str) -> Any:
        handle = self._confirmations.start(chain_id, tx_hash)
        self._receipt_handle = handle
        try:
            return await handle.wait()
        except asyncio.CancelledError:
            if handle.cancelled:
                raise ConfirmationCancelled(f"Stopped waiting for {tx_hash}.") from None
            raise
        finally:
            if self._receipt_handle is handle:
                self._receipt_handle = None

    def _abort(self, error: str) -> None:
        polling.stop(self._receipt_handle)
        self._receipt_handle = None
        self._update(
            is_bridging=False,
            approval=replace(self.state.approval, in_flight=False),
            error=error,
        )

    async def submit_bridge(
        self,
        intent: BridgeIntent,
        *,
        log: Optional[Callable[[str], None]] = None,
    ) -> BridgeResult:
        """Run one transfer end to end.

        Approves if needed, sends the bridge call, waits for its receipt,
        registers it with the indexer and starts status tracking. Failing to
        register is reported through ``tracking_warning``; the transfer is
        already on-chain by then.
        """
        _log = compose_log(logger, log)
        amount_wei = self._preflight(intent)
        chain_id = intent.from_chain_id
        chain = CHAINS.get(chain_id)
        self._update(
            is_bridging=True,
            error=None,
            tracking_warning=None,
            transaction_hash=None,
            approval_tx_hash=None,
            approval=ApprovalState(),
        )

        approval_tx_hash: Optional[str] = None
        try:
            account = await self._gateway.wallet_account()
            if self._wallet is not None:
                params = chain.wallet_params(self._rpc_urls.get(chain_id)) if chain is not None else None
                await ensure_chain(self._wallet, chain_id, chain_params=params)

            if not intent.is_native:
                spender = bridge_manager_for(chain_id, intent.token.address)
                approval = await self._approvals.ensure(
                    intent.token.address,
                    spender,
                    amount_wei,
                    chain_id,
                    account.address,
                    on_start=self._on_approval_started,
                    wait_for_receipt=self._wait_for_receipt,
                    log=log,
                )
                approval_tx_hash = approval.tx_hash
                self._update(approval=approval, approval_tx_hash=approval_tx_hash)

            tx_hash = await self._submitter.submit(
                chain_id=chain_id,
                token_address=intent.token.address,
                amount_wei=amount_wei,
                receiver=intent.receiver,
                sender=account.address,
                log=log,
            )
            self._update(transaction_hash=tx_hash)
            _log("Waiting for the bridge transaction to be mined…")
            await self._wait_for_receipt(chain_id, tx_hash)
        except BridgeError as exc:
            self._abort(str(exc))
            raise
        except asyncio.CancelledError:
            self._abort("Bridge cancelled.")
            raise
        self._update(is_bridging=False)

        bridge_tx: Optional[BridgeTransaction] = None
        warning: Optional[str] = None
        try:
            bridge_tx = await self._tracker.register(tx_hash, chain_id, account.address)
        except IndexerSubmissionFailure as exc:
            warning = str(exc)
            logger.warning("Bridge transaction %s sent but not registered: %s", tx_hash, exc)
            self._update(tracking_warning=warning)
        else:
            _log(f"Indexer is tracking message {bridge_tx.message_id}.")
            self._tracker.track(bridge_tx)

        return BridgeResult(
            transaction_hash=tx_hash,
            transaction_explorer=chain.tx_explorer_url(tx_hash) if chain is not None else None,
            approval_tx_hash=approval_tx_hash,
            approval_tx_explorer=(
                chain.tx_explorer_url(approval_tx_hash) if chain is not None and approval_tx_hash else None
            ),
            bridge_transaction=bridge_tx,
            tracking_warning=warning,
        )

    # Activity

    async def fetch_activity(self, limit: int = DEFAULT_ACTIVITY_LIMIT, offset: int = 0) -> List[BridgeTransaction]:
        if self._indexer is None:
            raise BridgeError("No indexer configured.")
        account = await self._gateway.wallet_account()
        return await asyncio.to_thread(self._indexer.list_transactions, account.address, limit, offset)

    # Lifecycle

    def reset(self) -> None:
        """Stop pollers and clear everything tied to the last transfer and the current form."""
        self.stop_polling()
        self._tracker.clear()
        self._update(
            selected_token=None,
            amount="",
            estimate=None,
            is_bridging=False,
            transaction_hash=None,
            approval_tx_hash=None,
            approval=ApprovalState(),
            error=None,
            tracking_warning=None,
        )

    def close(self) -> None:
        self.stop_polling()
        self.attach_wallet(None)
        self._unsubscribe_tracker()
        if self._indexer is not None:
            self._indexer.close()
