"""Approval Manager: allowance checks and the approve() transaction ahead of an ERC-20 bridge."""
from __future__ import annotations

from typing import AbstractSet, Any, Awaitable, Callable, Mapping, Optional, Tuple

from web3 import Web3

from .confirmation import ConfirmationPoller
from .constants import (
    DEFAULT_APPROVAL_AMOUNT,
    DEFAULT_APPROVE_GAS_LIMIT,
    ERC20_ABI,
    LEGACY_APPROVAL_TOKENS,
)
from .errors import ApprovalResetRequired, InvalidIntent
from .gateway import ChainGateway, encode_contract_call
from .logging_utils import compose_log, get_logger
from .models import ApprovalState, is_native_address

logger = get_logger("approval")


class ApprovalManager:
    def __init__(
        self,
        gateway: ChainGateway,
        poller: ConfirmationPoller,
        *,
        approval_amount: int = DEFAULT_APPROVAL_AMOUNT,
        gas_limit: int = DEFAULT_APPROVE_GAS_LIMIT,
        legacy_tokens: AbstractSet[Tuple[int, str]] = LEGACY_APPROVAL_TOKENS,
    ) -> None:
        self._gateway = gateway
        self._poller = poller
        self.approval_amount = approval_amount
        self.gas_limit = gas_limit
        self._legacy_tokens = frozenset((cid, addr.lower()) for cid, addr in legacy_tokens)

    def requires_reset(self, chain_id: int, token_address: str) -> bool:
        return (chain_id, token_address.lower()) in self._legacy_tokens

    async def check(
        self,
        token_address: str,
        spender_address: str,
        required_amount_wei: int,
        chain_id: int,
        owner_address: str,
    ) -> ApprovalState:
        """Compare the on-chain allowance against ``required_amount_wei``. No side effects."""
        if is_native_address(token_address):
            return ApprovalState(required=False)
        allowance = await self._gateway.get_allowance(chain_id, token_address, owner_address, spender_address)
        return ApprovalState(required=allowance < required_amount_wei)

    async def ensure(
        self,
        token_address: str,
        spender_address: str,
        required_amount_wei: int,
        chain_id: int,
        owner_address: str,
        *,
        on_start: Optional[Callable[[str], None]] = None,
        wait_for_receipt: Optional[Callable[[int, str], Awaitable[Mapping[str, Any]]]] = None,
        log: Optional[Callable[[str], None]] = None,
    ) -> ApprovalState:
        """Make sure ``spender_address`` may move ``required_amount_wei``.

        Sends at most one approval and waits for its receipt before returning.
        ``on_start`` receives the approval hash as soon as the wallet returns it.
        ``wait_for_receipt`` replaces the poller wait so the caller can own
        (and stop) the confirmation task.
        """
        _log = compose_log(logger, log)
        if is_native_address(token_address):
            return ApprovalState(required=False)
        if required_amount_wei <= 0:
            raise InvalidIntent("Invalid approval amount.")

        allowance = await self._gateway.get_allowance(chain_id, token_address, owner_address, spender_address)
        if allowance >= required_amount_wei:
            _log("Existing allowance sufficient; skipping approval.")
            return ApprovalState(required=False)

        if allowance > 0 and self.requires_reset(chain_id, token_address):
            raise ApprovalResetRequired(token_address, allowance)

        _log("Allowance insufficient; building approval transaction…")
        token = self._gateway.contract(chain_id, token_address, ERC20_ABI)
        data = encode_contract_call(
            token, "approve", [Web3.to_checksum_address(spender_address), self.approval_amount]
        )
        tx = await self._gateway.build_transaction(
            chain_id,
            sender=owner_address,
            to=token_address,
            data=data,
            fallback_gas=self.gas_limit,
        )
        tx_hash = await self._gateway.send_transaction(tx)
        _log(f"Approval submitted in tx {tx_hash}. Waiting for confirmation…")
        if on_start is not None:
            on_start(tx_hash)

        if wait_for_receipt is not None:
            await wait_for_receipt(chain_id, tx_hash)
        else:
            await self._poller.wait(chain_id, tx_hash)
        _log(f"Approval confirmed in tx {tx_hash}.")
        return ApprovalState(required=False, in_flight=False, tx_hash=tx_hash)
