"""Confirmation Poller: waits for a source-chain receipt on a fixed cadence."""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from . import polling
from .constants import RECEIPT_POLL_INTERVAL
from .errors import ConfirmationCancelled, ConfirmationTimeout, SubmissionFailure
from .gateway import ChainGateway
from .logging_utils import get_logger
from .polling import PollHandle

logger = get_logger("confirmation")


def receipt_status(receipt: Mapping[str, Any]) -> Optional[int]:
    status = receipt.get("status")
    if status is None:
        return None
    return int(status, 16) if isinstance(status, str) else int(status)


class ConfirmationPoller:
    """Polls the source chain for a receipt on a fixed cadence.

    There is no attempt ceiling unless ``max_attempts`` is given; block
    inclusion time is not predictable, so cancelling is the caller's job.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        *,
        interval: float = RECEIPT_POLL_INTERVAL,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._gateway = gateway
        self.interval = interval
        self.max_attempts = max_attempts

    async def wait(
        self,
        chain_id: int,
        tx_hash: str,
        *,
        handle: Optional[PollHandle] = None,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> Mapping[str, Any]:
        """Block until the receipt exists and return it.

        Raises :class:`SubmissionFailure` for a reverted receipt,
        :class:`ConfirmationCancelled` when ``handle`` is stopped and
        :class:`ConfirmationTimeout` after ``max_attempts`` empty polls.
        """
        attempt = 0
        while True:
            if handle is not None and handle.cancelled:
                raise ConfirmationCancelled(f"Stopped waiting for {tx_hash}.")
            attempt += 1
            if on_attempt is not None:
                on_attempt(attempt)
            receipt = await self._gateway.get_transaction_receipt(chain_id, tx_hash)
            if receipt is not None:
                if receipt_status(receipt) == 0:
                    raise SubmissionFailure(f"Transaction {tx_hash} reverted on-chain.", tx_hash=tx_hash)
                logger.info("Transaction confirmed: %s (attempt %s).", tx_hash, attempt)
                return receipt
            if self.max_attempts is not None and attempt >= self.max_attempts:
                raise ConfirmationTimeout(f"No receipt for {tx_hash} after {attempt} attempts.")
            if await polling.sleep_or_cancel(handle, self.interval):
                raise ConfirmationCancelled(f"Stopped waiting for {tx_hash}.")

    def start(self, chain_id: int, tx_hash: str) -> PollHandle:
        """Run :meth:`wait` in the background; ``await handle.wait()`` yields the receipt."""
        return polling.start(
            f"receipt:{tx_hash}", lambda handle: self.wait(chain_id, tx_hash, handle=handle)
        )
