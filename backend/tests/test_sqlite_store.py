"""Tests for the SQLite transaction store."""
import threading
from datetime import timedelta
from decimal import Decimal
import pytest
from escrow.errors import NotFound, StoreConflict, StoreUnavailable
from escrow.models.transaction import OPEN_STATUSES, TransactionStatus
from escrow.storage.database import SqliteTransactionStore, pair_key
from conftest import BUYER, OUTSIDER, SELLER, START, make_transaction


@pytest.fixture
def db(tmp_path):
    return SqliteTransactionStore(str(tmp_path / "escrow.db"))


def test_pair_key_is_order_independent():
    assert pair_key("a", "b") == pair_key("b", "a")


@pytest.mark.asyncio
async def test_create_and_get_round_trip(db):
    txn = make_transaction(amount=Decimal("12.50"), work_artifacts=["file:///x"], buyer_feedback=None)
    created = await db.create(txn)

    assert created == txn
    fetched = await db.get(txn.id)
    assert fetched.amount == Decimal("12.50")
    assert fetched.created_at == START
    assert fetched.work_artifacts == ["file:///x"]
    assert await db.get("missing") is None


@pytest.mark.asyncio
async def test_find_matches_either_orientation(db):
    await db.create(make_transaction(status=TransactionStatus.CANCELLED))
    await db.create(
        make_transaction(
            id="rec-2",
            transaction_id="TXN20240116-000002",
            created_at=START + timedelta(days=1),
        )
    )

    latest = await db.find(SELLER, BUYER)
    assert latest.id == "rec-2"
    open_one = await db.find(BUYER, SELLER, statuses=OPEN_STATUSES)
    assert open_one.id == "rec-2"
    cancelled = await db.find(BUYER, SELLER, statuses=[TransactionStatus.CANCELLED])
    assert cancelled.id == "rec-1"
    assert await db.find(BUYER, OUTSIDER) is None
    assert await db.find(BUYER, SELLER, post_id="post-2") is None


@pytest.mark.asyncio
async def test_second_open_transaction_for_pair_is_rejected(db):
    await db.create(make_transaction())
    with pytest.raises(StoreConflict):
        await db.create(make_transaction(id="rec-2", transaction_id="TXN20240115-000002"))


@pytest.mark.asyncio
async def test_closed_transaction_frees_the_pair(db):
    await db.create(make_transaction())
    await db.update("rec-1", {"status": TransactionStatus.CANCELLED})
    created = await db.create(make_transaction(id="rec-2", transaction_id="TXN20240115-000002"))
    assert created.status is TransactionStatus.PAYMENT_PENDING


@pytest.mark.asyncio
async def test_duplicate_transaction_id_is_rejected(db):
    await db.create(make_transaction(status=TransactionStatus.APPROVED))
    with pytest.raises(StoreConflict):
        await db.create(make_transaction(id="rec-2", status=TransactionStatus.APPROVED))


@pytest.mark.asyncio
async def test_update_with_expected_status(db):
    await db.create(make_transaction())
    updated = await db.update(
        "rec-1",
        {"status": TransactionStatus.PAID, "payment_proof": "file:///proof.png", "updated_at": START},
        expected_status=TransactionStatus.PAYMENT_PENDING,
    )
    assert updated.status is TransactionStatus.PAID
    assert updated.payment_proof == "file:///proof.png"

    with pytest.raises(StoreConflict):
        await db.update(
            "rec-1",
            {"status": TransactionStatus.CANCELLED},
            expected_status=TransactionStatus.PAYMENT_PENDING,
        )
    assert (await db.get("rec-1")).status is TransactionStatus.PAID


@pytest.mark.asyncio
async def test_update_missing_record(db):
    with pytest.raises(NotFound):
        await db.update("missing", {"status": TransactionStatus.PAID})


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(db):
    await db.create(make_transaction())
    with pytest.raises(ValueError):
        await db.update("rec-1", {"pair_key": "x"})


@pytest.mark.asyncio
async def test_find_by_transaction_id(db):
    await db.create(make_transaction())
    assert (await db.find_by_transaction_id("TXN20240115-000001")).id == "rec-1"
    assert await db.find_by_transaction_id("TXN20240115-999999") is None


@pytest.mark.asyncio
async def test_unprovisioned_table_is_unavailable(tmp_path):
    db = SqliteTransactionStore(str(tmp_path / "empty.db"), create_tables=False)
    with pytest.raises(StoreUnavailable):
        await db.create(make_transaction())
    with pytest.raises(StoreUnavailable):
        await db.get("rec-1")


@pytest.mark.asyncio
async def test_queries_run_off_the_event_loop(db, monkeypatch):
    loop_thread = threading.get_ident()
    threads = []
    select_one = db._select_one

    def recording_select(query, params):
        threads.append(threading.get_ident())
        return select_one(query, params)

    monkeypatch.setattr(db, "_select_one", recording_select)
    await db.create(make_transaction())

    assert (await db.get("rec-1")).id == "rec-1"
    assert (await db.find(BUYER, SELLER)).id == "rec-1"
    assert len(threads) == 2
    assert loop_thread not in threads
