"""Error taxonomy for the bridge orchestrator."""
from __future__ import annotations

from typing import Optional

from .constants import REVOKE_URL


class BridgeError(Exception):
    """Raised when a bridge operation cannot complete."""


class ConfigError(BridgeError):
    """Raised when required settings are missing or malformed."""


class InvalidIntent(BridgeError):
    """Raised when a bridge request fails validation before touching the chain."""


class WalletNotConnected(BridgeError):
    """Raised when a write is attempted without a connected wallet account."""


class RpcError(BridgeError):
    """Raised when a read-only RPC call fails."""


class TransientRpcError(RpcError):
    """The node has not indexed the transaction yet; polling should continue."""


class UserRejected(BridgeError):
    """The wallet declined to sign the request."""

    def __init__(self, message: str = "Transaction was rejected in the wallet.") -> None:
        super().__init__(message)


class ApprovalResetRequired(BridgeError):
    """The token rejects changing a non-zero allowance to another non-zero value."""

    def __init__(self, token_address: str, current_allowance: int) -> None:
        self.token_address = token_address
        self.current_allowance = current_allowance
        super().__init__(
            "There is a problem with the token unlock. This token requires its existing "
            f"allowance ({current_allowance}) to be revoked first. Revoke the previous "
            f"approval on {REVOKE_URL} and try again."
        )


class SubmissionFailure(BridgeError):
    """The node rejected the transaction or it reverted on-chain."""

    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(message)


class ConfirmationCancelled(BridgeError):
    """Receipt polling was stopped by the caller."""


class ConfirmationTimeout(BridgeError):
    """Receipt polling hit its optional attempt ceiling."""


class IndexerError(BridgeError):
    """Raised when the indexer API returns an error or an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class IndexerSubmissionFailure(IndexerError):
    """Registering a sent transfer with the indexer failed; the transfer itself went through."""


class PollingFailure(IndexerError):
    """A status poll failed; the last good snapshot remains valid."""


__all__ = [
    "ApprovalResetRequired",
    "BridgeError",
    "ConfigError",
    "ConfirmationCancelled",
    "ConfirmationTimeout",
    "IndexerError",
    "IndexerSubmissionFailure",
    "InvalidIntent",
    "PollingFailure",
    "RpcError",
    "SubmissionFailure",
    "TransientRpcError",
    "UserRejected",
    "WalletNotConnected",
]
