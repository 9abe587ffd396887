"""Bridgeable token lists and the cross-chain pairing between them."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .constants import ETHEREUM_CHAIN_ID, PULSECHAIN_CHAIN_ID
from .indexer import IndexerClient
from .logging_utils import get_logger
from .models import BridgeEstimate, BridgeToken, TokenPair

logger = get_logger("tokens")

WETH_SYMBOLS = ("WETH", "Wrapped Ether")
WPLS_SYMBOLS = ("WPLS", "Wrapped Pulse")
_EXCLUDED_ETHEREUM = frozenset(("ETH",) + WETH_SYMBOLS + WPLS_SYMBOLS)
_EXCLUDED_PULSECHAIN = frozenset(("PLS",) + WPLS_SYMBOLS)


def _first(tokens: Iterable[BridgeToken], symbols: Sequence[str], *, native: bool = False) -> Optional[BridgeToken]:
    for token in tokens:
        if token.symbol in symbols and (not native or token.is_native):
            return token
    return None


def build_token_pairs(
    ethereum_tokens: Sequence[BridgeToken], pulsechain_tokens: Sequence[BridgeToken]
) -> List[TokenPair]:
    """Pair Ethereum tokens (``from_token``) with their PulseChain twins (``to_token``).

    Native ETH maps to WETH on PulseChain and WPLS maps to WPLS; these come
    first. Everything else pairs by exact symbol, in Ethereum list order.
    """
    pairs: List[TokenPair] = []

    eth = _first(ethereum_tokens, ("ETH",), native=True)
    weth = _first(ethereum_tokens, WETH_SYMBOLS)
    if eth is not None and weth is not None:
        pairs.append(TokenPair(from_token=eth, to_token=_first(pulsechain_tokens, WETH_SYMBOLS) or weth))

    wpls_eth = _first(ethereum_tokens, WPLS_SYMBOLS)
    wpls = _first(pulsechain_tokens, WPLS_SYMBOLS)
    if wpls_eth is not None and wpls is not None:
        pairs.append(TokenPair(from_token=wpls_eth, to_token=wpls))

    others = [token for token in pulsechain_tokens if token.symbol not in _EXCLUDED_PULSECHAIN]
    for token in ethereum_tokens:
        if token.symbol in _EXCLUDED_ETHEREUM:
            continue
        match = next((candidate for candidate in others if candidate.symbol == token.symbol), None)
        if match is not None:
            pairs.append(TokenPair(from_token=token, to_token=match))
    return pairs


def find_pair(pairs: Sequence[TokenPair], symbol: str) -> Optional[TokenPair]:
    """First declared pair containing ``symbol`` on either side."""
    for pair in pairs:
        if pair.contains_symbol(symbol):
            return pair
    return None


def counterpart_token(pairs: Sequence[TokenPair], token: BridgeToken, chain_id: int) -> Optional[BridgeToken]:
    """The token standing for ``token`` on ``chain_id``, if any pair knows it."""
    pair = find_pair(pairs, token.symbol)
    if pair is None:
        return None
    return pair.token_on(chain_id)


@dataclass
class TokenCatalog:
    ethereum_tokens: List[BridgeToken] = field(default_factory=list)
    pulsechain_tokens: List[BridgeToken] = field(default_factory=list)
    pairs: List[TokenPair] = field(default_factory=list)

    @property
    def tokens(self) -> List[BridgeToken]:
        return [*self.ethereum_tokens, *self.pulsechain_tokens]

    def tokens_on(self, chain_id: int) -> List[BridgeToken]:
        return [token for token in self.tokens if token.chain_id == chain_id]

    def find(self, chain_id: int, symbol_or_address: str) -> Optional[BridgeToken]:
        needle = symbol_or_address.lower()
        for token in self.tokens_on(chain_id):
            if token.symbol.lower() == needle or token.address.lower() == needle:
                return token
        return None


class TokenRegistry:
    def __init__(self, indexer: IndexerClient, *, verified: bool = True) -> None:
        self._indexer = indexer
        self.verified = verified
        self.catalog = TokenCatalog()

    async def load(self) -> TokenCatalog:
        """Fetch both chains' token lists concurrently and rebuild the pairs."""
        ethereum_tokens, pulsechain_tokens = await asyncio.gather(
            asyncio.to_thread(self._indexer.get_currencies, ETHEREUM_CHAIN_ID, self.verified),
            asyncio.to_thread(self._indexer.get_currencies, PULSECHAIN_CHAIN_ID, self.verified),
        )
        self.catalog = TokenCatalog(
            ethereum_tokens=list(ethereum_tokens),
            pulsechain_tokens=list(pulsechain_tokens),
            pairs=build_token_pairs(ethereum_tokens, pulsechain_tokens),
        )
        logger.info(
            "Loaded %s Ethereum and %s PulseChain tokens (%s pairs).",
            len(ethereum_tokens),
            len(pulsechain_tokens),
            len(self.catalog.pairs),
        )
        return self.catalog

    async def estimate(self, token: BridgeToken, network_id: int, amount_wei: int) -> BridgeEstimate:
        return await asyncio.to_thread(self._indexer.get_estimate, token.address, network_id, str(amount_wei))
