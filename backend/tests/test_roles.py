"""Tests for role resolution."""
import pytest
from escrow.errors import UpstreamFailure
from escrow.models.role import PostContext, Role, RoleSource
from escrow.models.transaction import TransactionStatus
from escrow.services.roles import RoleResolver, role_from_context
from escrow.storage.memory import InMemoryTransactionStore
from conftest import BUYER, OUTSIDER, SELLER, START, make_transaction


class FailingStore(InMemoryTransactionStore):
    async def find(self, *args, **kwargs):
        raise UpstreamFailure("permission denied for table transactions")


@pytest.mark.asyncio
async def test_open_transaction_decides_role(memory_store):
    await memory_store.create(make_transaction(status=TransactionStatus.PAID))
    resolver = RoleResolver(memory_store)

    # Context says the opposite, the transaction wins
    flipped = PostContext(post_author_id=SELLER, conversation_initiator_id=BUYER)
    buyer = await resolver.resolve(BUYER, SELLER, flipped)
    seller = await resolver.resolve(SELLER, BUYER, flipped)

    assert buyer.role is Role.BUYER and buyer.source is RoleSource.TRANSACTION
    assert seller.role is Role.SELLER and seller.is_seller


@pytest.mark.asyncio
async def test_history_used_when_nothing_is_open(memory_store):
    await memory_store.create(make_transaction(status=TransactionStatus.APPROVED))
    resolver = RoleResolver(memory_store)

    assignment = await resolver.resolve(SELLER, BUYER)
    assert assignment.role is Role.SELLER
    assert assignment.source is RoleSource.HISTORY


@pytest.mark.asyncio
async def test_latest_history_wins(memory_store):
    await memory_store.create(make_transaction(status=TransactionStatus.CANCELLED))
    await memory_store.create(
        make_transaction(
            id="rec-2",
            transaction_id="TXN20240116-000002",
            buyer_id=SELLER,
            seller_id=BUYER,
            status=TransactionStatus.APPROVED,
            created_at=START.replace(day=16),
        )
    )
    assignment = await RoleResolver(memory_store).resolve(BUYER, SELLER)
    assert assignment.role is Role.SELLER


@pytest.mark.asyncio
async def test_context_used_without_history(memory_store, post_context):
    resolver = RoleResolver(memory_store)

    buyer = await resolver.resolve(BUYER, SELLER, post_context)
    seller = await resolver.resolve(SELLER, BUYER, post_context)

    assert buyer.role is Role.BUYER and buyer.source is RoleSource.CONTEXT
    assert seller.role is Role.SELLER and seller.source is RoleSource.CONTEXT


@pytest.mark.asyncio
async def test_unknown_without_any_signal(memory_store):
    assignment = await RoleResolver(memory_store).resolve(BUYER, SELLER)
    assert assignment.role is Role.UNKNOWN
    assert assignment.source is RoleSource.NONE
    assert not assignment.is_buyer and not assignment.is_seller


@pytest.mark.asyncio
async def test_same_user_is_unknown(memory_store, post_context):
    assignment = await RoleResolver(memory_store).resolve(BUYER, BUYER, post_context)
    assert assignment.role is Role.UNKNOWN


@pytest.mark.asyncio
async def test_store_failure_reads_as_unknown(post_context):
    assignment = await RoleResolver(FailingStore()).resolve(BUYER, SELLER, post_context)
    assert assignment.role is Role.UNKNOWN


def test_role_from_context(post_context):
    assert role_from_context(BUYER, post_context) is Role.BUYER
    assert role_from_context(SELLER, post_context) is Role.SELLER
    assert role_from_context(OUTSIDER, post_context) is Role.UNKNOWN
    assert role_from_context(BUYER, None) is Role.UNKNOWN


def test_for_transaction(memory_store):
    resolver = RoleResolver(memory_store)
    txn = make_transaction()
    assert resolver.for_transaction(txn, BUYER).role is Role.BUYER
    assert resolver.for_transaction(txn, SELLER).source is RoleSource.TRANSACTION
    assert resolver.for_transaction(txn, OUTSIDER).role is Role.UNKNOWN
