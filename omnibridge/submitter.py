"""Bridge Submitter: builds and sends the Omnibridge transfer call on the source chain."""
from __future__ import annotations

from typing import Callable, Optional

from web3 import Web3

from .constants import (
    BRIDGE_MANAGER_ABI,
    BRIDGE_MANAGER_ADDRESS,
    BRIDGE_MANAGER_NATIVE_ABI,
    BRIDGE_MANAGER_NATIVE_ADDRESS,
    DEFAULT_BRIDGE_GAS_LIMIT,
    ETHEREUM_CHAIN_ID,
)
from .errors import InvalidIntent
from .gateway import ChainGateway, encode_contract_call
from .logging_utils import compose_log, get_logger
from .models import is_native_address

logger = get_logger("submitter")


def bridge_manager_for(chain_id: int, token_address: str) -> str:
    """Spender/target contract for a transfer of ``token_address`` from ``chain_id``."""
    if chain_id == ETHEREUM_CHAIN_ID and is_native_address(token_address):
        return BRIDGE_MANAGER_NATIVE_ADDRESS
    return BRIDGE_MANAGER_ADDRESS


class BridgeSubmitter:
    def __init__(
        self,
        gateway: ChainGateway,
        *,
        gas_limit: int = DEFAULT_BRIDGE_GAS_LIMIT,
    ) -> None:
        self._gateway = gateway
        self.gas_limit = gas_limit

    async def submit(
        self,
        *,
        chain_id: int,
        token_address: str,
        amount_wei: int,
        receiver: str,
        sender: str,
        log: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Send the bridge transfer and return the source-chain hash on node acceptance.

        ERC-20 transfers need the bridge manager approved beforehand.
        """
        _log = compose_log(logger, log)
        if amount_wei <= 0:
            raise InvalidIntent("Amount must be greater than zero.")
        if not Web3.is_address(receiver):
            raise InvalidIntent("Receiver address is invalid.")
        manager_address = bridge_manager_for(chain_id, token_address)

        if is_native_address(token_address):
            _log("Building wrapAndRelayTokens transaction…")
            manager = self._gateway.contract(chain_id, manager_address, BRIDGE_MANAGER_NATIVE_ABI)
            data = encode_contract_call(manager, "wrapAndRelayTokens", [Web3.to_checksum_address(receiver)])
            value = amount_wei
        else:
            _log("Building relayTokens transaction…")
            manager = self._gateway.contract(chain_id, manager_address, BRIDGE_MANAGER_ABI)
            data = encode_contract_call(
                manager,
                "relayTokens",
                [Web3.to_checksum_address(token_address), Web3.to_checksum_address(receiver), amount_wei],
            )
            value = 0

        tx = await self._gateway.build_transaction(
            chain_id,
            sender=sender,
            to=manager_address,
            data=data,
            value=value,
            fallback_gas=self.gas_limit,
        )
        _log("Broadcasting bridge transaction…")
        tx_hash = await self._gateway.send_transaction(tx)
        _log(f"Bridge transaction accepted: {tx_hash}.")
        return tx_hash
