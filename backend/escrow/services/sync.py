"""Polling watcher that keeps one party's view in step with the other party's actions."""
import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union
from escrow.config import settings
from escrow.errors import EscrowError, StoreUnavailable
from escrow.models.api import TransactionView
from escrow.models.transaction import Transaction
from escrow.services.protocol import allowed_actions, project_step
from escrow.services.roles import assignment_for
from escrow.storage.base import TransactionStore
from escrow.utils.timestamp import utc_now

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[TransactionView], Union[None, Awaitable[None]]]
ViewFunction = Callable[[Transaction, str], TransactionView]


def project_view(transaction: Transaction, user_id: str) -> TransactionView:
    """Role, step and next actions for ``user_id``, without rendering a payment code."""
    assignment = assignment_for(transaction, user_id)
    now = utc_now()
    return TransactionView(
        transaction=transaction,
        role=assignment,
        step=project_step(transaction, assignment.role, now),
        allowed_actions=allowed_actions(transaction, assignment.role, now),
    )


class TransactionWatcher:
    """
    Polls the store for a transaction and reports changes.

    Local-only records are never polled. Polling ends when the transaction
    reaches a terminal status, when the store turns out to be unprovisioned,
    or when stop() is called. Any other failed poll counts as "no update"
    for that tick.
    """

    def __init__(
        self,
        store: TransactionStore,
        transaction: Transaction,
        user_id: str,
        on_change: ChangeCallback,
        interval: Optional[float] = None,
        view: Optional[ViewFunction] = None,
    ):
        self.store = store
        self.transaction = transaction
        self.user_id = user_id
        self.on_change = on_change
        self.interval = interval if interval is not None else settings.poll_interval_seconds
        self.view = view or project_view
        self._stopped = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if not self.running:
            self._stopped.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self) -> None:
        self._stopped.set()

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def run(self) -> None:
        if self.transaction.is_local:
            logger.info("Transaction %s is local only, not polling", self.transaction.transaction_id)
            return

        while not (self._stopped.is_set() or self.transaction.is_terminal or self.transaction.is_local):
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            if not await self.poll_once():
                break
        logger.debug("Stopped watching transaction %s", self.transaction.transaction_id)

    async def poll_once(self) -> bool:
        """
        Fetch the transaction once and report it if it changed.

        Returns:
            False when polling should end, True otherwise
        """
        if self.transaction.is_local:
            return False
        try:
            latest = await self.store.get(self.transaction.id)
        except StoreUnavailable as e:
            logger.warning("Transactions table not found, stopped polling %s: %s",
                           self.transaction.transaction_id, e.message)
            return False
        except EscrowError as e:
            logger.warning("Polling %s failed, no update this tick: %s", self.transaction.transaction_id, e)
            return True

        if latest is None:
            return True

        changed = (
            latest.status is not self.transaction.status
            or latest.updated_at != self.transaction.updated_at
        )
        self.transaction = latest
        if changed:
            logger.info("Transaction %s is now %s", latest.transaction_id, latest.status.value)
            result = self.on_change(self.view(latest, self.user_id))
            if inspect.isawaitable(result):
                await result
        if latest.is_local:
            logger.info("Transaction %s went local only as %s, not polling", latest.transaction_id, latest.id)
            return False
        return not latest.is_terminal
