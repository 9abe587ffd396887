"""REST client for the bridge indexer.

Every endpoint answers ``{"success": bool, "data": ..., "message": str}``.
Calls are blocking; async callers run them through ``asyncio.to_thread``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from .constants import INDEXER_BASE_URL
from .errors import IndexerError
from .logging_utils import get_logger
from .models import BridgeEstimate, BridgeToken, BridgeTransaction

logger = get_logger("indexer")

DEFAULT_ACTIVITY_LIMIT = 50


class IndexerClient:
    def __init__(
        self,
        base_url: str = INDEXER_BASE_URL,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("Content-Type", "application/json")

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        action: str,
    ) -> Any:
        url = self._url(path)
        try:
            response = self._session.request(method, url, params=params, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise IndexerError(f"Error contacting bridge indexer ({action}): {exc}") from exc

        if response.status_code != 200:
            body = ""
            try:
                text_body = response.text
                body = f" body={text_body[:200]}" if text_body else ""
            except Exception:
                body = ""
            raise IndexerError(
                f"Bridge indexer returned HTTP {response.status_code} ({action}){body}",
                status_code=response.status_code,
            )

        try:
            envelope = response.json()
        except ValueError as exc:
            raise IndexerError(f"Bridge indexer returned invalid JSON ({action}).") from exc
        if not isinstance(envelope, dict) or not envelope.get("success"):
            message = envelope.get("message") if isinstance(envelope, dict) else None
            raise IndexerError(message or f"Failed to {action}.", status_code=response.status_code)
        return envelope.get("data")

    def _transaction(self, data: Any, action: str) -> BridgeTransaction:
        if isinstance(data, list):
            if not data:
                raise IndexerError(f"Bridge indexer returned no transaction ({action}).")
            data = data[0]
        if not isinstance(data, dict):
            raise IndexerError(f"Bridge indexer returned an unexpected payload ({action}).")
        try:
            return BridgeTransaction.from_api(data)
        except ValueError as exc:
            raise IndexerError(str(exc)) from exc

    def register_transaction(self, tx_hash: str, network_id: int, user_address: str) -> BridgeTransaction:
        """POST a confirmed source transaction so the indexer starts following it."""
        data = self._request(
            "POST",
            "transaction",
            payload={"txHash": tx_hash, "networkId": network_id, "userAddress": user_address},
            action="submit bridge transaction",
        )
        tx = self._transaction(data, "submit bridge transaction")
        logger.info("Indexer registered %s as message %s.", tx_hash, tx.message_id)
        return tx

    def get_transaction(self, message_id: str) -> BridgeTransaction:
        data = self._request("GET", f"transaction/{message_id}", action="fetch bridge transaction status")
        return self._transaction(data, "fetch bridge transaction status")

    def list_transactions(
        self, user_address: str, limit: int = DEFAULT_ACTIVITY_LIMIT, offset: int = 0
    ) -> List[BridgeTransaction]:
        data = self._request(
            "GET",
            "transactions",
            params={"userAddress": user_address, "limit": limit, "offset": offset},
            action="fetch user transactions",
        )
        transactions: List[BridgeTransaction] = []
        for entry in data or []:
            try:
                transactions.append(BridgeTransaction.from_api(entry))
            except ValueError as exc:
                logger.warning("Skipping malformed activity entry: %s", exc)
        return transactions

    def get_currencies(self, chain_id: int, verified: bool = True) -> List[BridgeToken]:
        data = self._request(
            "GET",
            "currencies",
            params={"chainId": chain_id, "verified": "true" if verified else "false"},
            action="fetch tokens",
        )
        tokens: List[BridgeToken] = []
        for entry in data or []:
            try:
                tokens.append(BridgeToken.from_api(entry))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed token entry on chain %s: %s", chain_id, exc)
        return tokens

    def get_estimate(self, token_address: str, network_id: int, amount: str) -> BridgeEstimate:
        data = self._request(
            "GET",
            "estimate",
            params={"tokenAddress": token_address, "networkId": network_id, "amount": amount},
            action="fetch bridge estimate",
        )
        try:
            return BridgeEstimate.from_api(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise IndexerError(f"Malformed bridge estimate payload: {exc}") from exc
