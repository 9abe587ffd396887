"""Status Tracker: indexer registration and status polling for a sent transfer."""
from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from . import polling
from .constants import STATUS_EXECUTED, STATUS_FAILED, STATUS_PENDING, STATUS_POLL_INTERVAL
from .errors import IndexerError, IndexerSubmissionFailure, PollingFailure
from .indexer import IndexerClient
from .logging_utils import get_logger
from .models import BridgeTransaction
from .polling import PollHandle

logger = get_logger("tracker")

SnapshotListener = Callable[[Optional[BridgeTransaction]], None]


class StatusTracker:
    """Registers transfers with the indexer and follows one of them at a time.

    The cached snapshot is always the last good indexer response, replaced
    wholesale. A failed poll sets :attr:`polling_error` and leaves the
    snapshot alone.
    """

    def __init__(
        self,
        indexer: IndexerClient,
        *,
        interval: float = STATUS_POLL_INTERVAL,
        stop_on_failed: bool = True,
    ) -> None:
        self._indexer = indexer
        self.interval = interval
        self.stop_on_failed = stop_on_failed
        self._snapshot: Optional[BridgeTransaction] = None
        self._polling_error: Optional[PollingFailure] = None
        self._handle: Optional[PollHandle] = None
        self._polling = False
        self._listeners: List[SnapshotListener] = []

    @property
    def snapshot(self) -> Optional[BridgeTransaction]:
        return self._snapshot

    @property
    def polling_error(self) -> Optional[PollingFailure]:
        return self._polling_error

    @property
    def is_polling(self) -> bool:
        return self._polling

    @property
    def handle(self) -> Optional[PollHandle]:
        return self._handle

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception:
                logger.exception("Status listener raised an error.")

    def _should_continue(self, tx: BridgeTransaction) -> bool:
        if tx.status == STATUS_EXECUTED:
            return False
        if tx.status == STATUS_FAILED:
            return not self.stop_on_failed
        return True

    async def register(self, tx_hash: str, chain_id: int, user_address: str) -> BridgeTransaction:
        """Hand a sent transfer to the indexer and cache the record it returns."""
        try:
            tx = await asyncio.to_thread(self._indexer.register_transaction, tx_hash, chain_id, user_address)
        except IndexerError as exc:
            raise IndexerSubmissionFailure(
                f"Failed to submit bridge transaction to the indexer: {exc}", status_code=exc.status_code
            ) from exc
        self._snapshot = tx
        self._polling_error = None
        self._notify()
        return tx

    def track(self, tx: BridgeTransaction) -> Optional[PollHandle]:
        """Follow ``tx`` until it leaves ``pending``.

        Any earlier polling task is stopped first. Returns ``None`` when ``tx``
        is already past ``pending`` and there is nothing to follow.
        """
        self.stop()
        self._snapshot = tx
        self._polling_error = None
        if tx.status != STATUS_PENDING:
            self._notify()
            return None
        self._polling = True
        self._notify()
        handle = polling.start(f"status:{tx.message_id}", lambda h: self._poll(h, tx.message_id))
        self._handle = handle
        return handle

    async def _poll(self, handle: PollHandle, message_id: str) -> Optional[BridgeTransaction]:
        try:
            while not handle.cancelled:
                try:
                    tx = await asyncio.to_thread(self._indexer.get_transaction, message_id)
                except IndexerError as exc:
                    if handle.cancelled:
                        return None
                    logger.warning("Status poll for %s failed: %s", message_id, exc)
                    self._polling_error = PollingFailure(str(exc), status_code=exc.status_code)
                    self._notify()
                else:
                    if handle.cancelled:
                        return None
                    self._snapshot = tx
                    self._polling_error = None
                    if not self._should_continue(tx):
                        logger.info("Bridge message %s reached status %s.", message_id, tx.status)
                        self._polling = False
                        self._notify()
                        return tx
                    self._notify()
                if await polling.sleep_or_cancel(handle, self.interval):
                    return None
            return None
        finally:
            if self._handle is handle:
                self._polling = False

    def stop(self) -> None:
        polling.stop(self._handle)
        self._handle = None
        self._polling = False

    def clear(self) -> None:
        self.stop()
        self._snapshot = None
        self._polling_error = None
        self._notify()
