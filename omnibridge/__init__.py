"""
Omnibridge orchestrator package.

Moves tokens between Ethereum and PulseChain through the Omnibridge contracts:
allowance management, bridge submission, receipt polling and indexer status
tracking, with a progress projection for display.
"""
from __future__ import annotations

from .approval import ApprovalManager
from .config import BridgeConfig, load_bridge_config
from .confirmation import ConfirmationPoller
from .errors import (
    ApprovalResetRequired,
    BridgeError,
    IndexerSubmissionFailure,
    PollingFailure,
    SubmissionFailure,
    UserRejected,
)
from .gateway import ChainGateway
from .indexer import IndexerClient
from .models import ApprovalState, BridgeIntent, BridgeResult, BridgeToken, BridgeTransaction
from .orchestrator import BridgeOrchestrator, BridgeState
from .polling import PollHandle, stop
from .progress import ProgressStep, project_step
from .submitter import BridgeSubmitter
from .tokens import TokenRegistry, build_token_pairs
from .tracker import StatusTracker
from .wallet import LocalAccountProvider, WalletProvider

__all__ = [
    "ApprovalManager",
    "ApprovalResetRequired",
    "ApprovalState",
    "BridgeConfig",
    "BridgeError",
    "BridgeIntent",
    "BridgeOrchestrator",
    "BridgeResult",
    "BridgeState",
    "BridgeSubmitter",
    "BridgeToken",
    "BridgeTransaction",
    "ChainGateway",
    "ConfirmationPoller",
    "IndexerClient",
    "IndexerSubmissionFailure",
    "LocalAccountProvider",
    "PollHandle",
    "PollingFailure",
    "ProgressStep",
    "StatusTracker",
    "SubmissionFailure",
    "TokenRegistry",
    "UserRejected",
    "WalletProvider",
    "build_token_pairs",
    "load_bridge_config",
    "project_step",
    "stop",
]
