"""Payment status polling."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .config import config
from .logging_utils import get_logger

logger = get_logger(__name__)

PAID = "paid"


@dataclass
class PollerHandle:
    """Token for one polling loop. Every scheduled step checks ``active``."""

    transaction_id: str
    on_paid: Callable[[], None] = field(repr=False)
    active: bool = True
    queries: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class PaymentStatusPoller:
    """Queries charge status at a fixed interval until paid or stopped.

    Query failures are logged and the loop keeps going; they never stop the
    wait for payment.
    """

    def __init__(
        self,
        check_status: Callable[[str], Awaitable[str]],
        interval: Optional[float] = None,
    ):
        """Initialize the poller.

        Args:
            check_status: Returns the backend status string for a transaction.
            interval: Seconds between queries. Defaults to config.
        """
        self._check_status = check_status
        self.interval = interval or config.poll_interval_seconds
        self._handle: Optional[PollerHandle] = None

    @property
    def is_running(self) -> bool:
        return self._handle is not None and self._handle.active

    def start(self, transaction_id: str, on_paid: Callable[[], None]) -> PollerHandle:
        """Start polling ``transaction_id``; ``on_paid`` runs at most once.

        A live loop for the same transaction is reused; a loop for another
        transaction is stopped first.
        """
        current = self._handle
        if current is not None and current.active:
            if current.transaction_id == transaction_id:
                logger.debug(f"Poller already running for {transaction_id}")
                return current
            self.stop(current)

        loop = asyncio.get_running_loop()
        handle = PollerHandle(transaction_id=transaction_id, on_paid=on_paid)
        handle.task = loop.create_task(self._run(handle))
        self._handle = handle
        logger.info(f"Polling status of {transaction_id} every {self.interval}s")
        return handle

    def stop(self, handle: Optional[PollerHandle] = None) -> None:
        """Stop polling. Idempotent."""
        handle = handle or self._handle
        if handle is None:
            return
        handle.active = False
        if handle.task is not None and not handle.task.done() and handle.task is not asyncio.current_task():
            handle.task.cancel()
        if self._handle is handle:
            self._handle = None

    async def _run(self, handle: PollerHandle) -> None:
        while handle.active:
            await asyncio.sleep(self.interval)
            if not handle.active:
                return

            handle.queries += 1
            try:
                status = await self._check_status(handle.transaction_id)
            except Exception as e:
                logger.warning(f"Status check for {handle.transaction_id} failed, retrying: {e}")
                continue

            # Stopped while the query was in flight
            if not handle.active:
                return

            if status == PAID:
                logger.info(f"Payment confirmed for {handle.transaction_id}")
                handle.active = False
                if self._handle is handle:
                    self._handle = None
                handle.on_paid()
                return
