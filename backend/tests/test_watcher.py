"""Tests for the transaction watcher."""
import asyncio
import pytest
from escrow.errors import UpstreamFailure
from escrow.models.role import Role
from escrow.models.transaction import Step, TransactionStatus
from escrow.services.sync import TransactionWatcher, project_view
from escrow.storage.fallback import FallbackTransactionStore
from escrow.storage.memory import InMemoryTransactionStore
from conftest import BUYER, SELLER, START, make_transaction

S = TransactionStatus


class FlakyStore(InMemoryTransactionStore):
    """Fails the first ``failures`` reads with a network error."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def get(self, record_id):
        if self.failures:
            self.failures -= 1
            raise UpstreamFailure("connection reset")
        return await super().get(record_id)


@pytest.mark.asyncio
async def test_poll_reports_status_change(memory_store):
    txn = await memory_store.create(make_transaction())
    views = []
    watcher = TransactionWatcher(memory_store, txn, SELLER, views.append, interval=0.01)

    assert await watcher.poll_once()
    assert views == []

    await memory_store.update(txn.id, {"status": S.PAID, "updated_at": START})
    assert await watcher.poll_once()

    assert len(views) == 1
    assert views[0].transaction.status is S.PAID
    assert views[0].role.role is Role.SELLER
    assert views[0].step is Step.WORK


@pytest.mark.asyncio
async def test_watcher_stops_at_terminal_status(memory_store):
    txn = await memory_store.create(make_transaction())
    views = []
    watcher = TransactionWatcher(memory_store, txn, BUYER, views.append, interval=0.01)
    task = watcher.start()

    await memory_store.update(txn.id, {"status": S.CANCELLED})
    await asyncio.wait_for(task, timeout=2)

    assert not watcher.running
    assert views[-1].step is Step.CANCELLED


@pytest.mark.asyncio
async def test_async_callback_is_awaited(memory_store):
    txn = await memory_store.create(make_transaction())
    seen = []

    async def on_change(view):
        seen.append(view.transaction.status)

    watcher = TransactionWatcher(memory_store, txn, BUYER, on_change, interval=0.01)
    await memory_store.update(txn.id, {"status": S.PAID})
    await watcher.poll_once()

    assert seen == [S.PAID]


@pytest.mark.asyncio
async def test_local_transactions_are_not_polled(memory_store):
    txn = make_transaction(id="local-abc")
    watcher = TransactionWatcher(memory_store, txn, BUYER, lambda view: None, interval=0.01)

    await asyncio.wait_for(watcher.run(), timeout=1)

    assert memory_store.calls == []


@pytest.mark.asyncio
async def test_unavailable_store_stops_polling():
    store = InMemoryTransactionStore(provisioned=False)
    watcher = TransactionWatcher(store, make_transaction(), BUYER, lambda view: None, interval=0.01)

    assert not await watcher.poll_once()
    await asyncio.wait_for(watcher.run(), timeout=1)


@pytest.mark.asyncio
async def test_failed_poll_means_no_update():
    store = FlakyStore(failures=1)
    txn = await store.create(make_transaction())
    await store.update(txn.id, {"status": S.PAID})
    views = []
    watcher = TransactionWatcher(store, txn, BUYER, views.append, interval=0.01)

    assert await watcher.poll_once()
    assert views == []
    assert await watcher.poll_once()
    assert views[0].step is Step.AWAITING_WORK


@pytest.mark.asyncio
async def test_stop_ends_promptly(memory_store):
    txn = await memory_store.create(make_transaction())
    watcher = TransactionWatcher(memory_store, txn, BUYER, lambda view: None, interval=60)
    task = watcher.start()
    await asyncio.sleep(0)

    watcher.stop()
    await asyncio.wait_for(task, timeout=1)
    assert memory_store.calls == ["create"]


def test_project_view_has_no_payment_code():
    view = project_view(make_transaction(status=S.WORK_SUBMITTED), BUYER)
    assert view.step is Step.VERIFY
    assert view.payment_code is None


@pytest.mark.asyncio
async def test_record_that_went_local_stops_polling(memory_store):
    store = FallbackTransactionStore(memory_store)
    txn = await store.create(make_transaction())
    views = []
    watcher = TransactionWatcher(store, txn, SELLER, views.append, interval=0.01)

    memory_store.provisioned = False
    await store.update(txn.id, {"status": S.PAID})

    assert not await watcher.poll_once()
    assert watcher.transaction.is_local
    assert views[-1].transaction.status is S.PAID

    calls = len(memory_store.calls)
    await asyncio.wait_for(watcher.run(), timeout=1)
    assert len(memory_store.calls) == calls
