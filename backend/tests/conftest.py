"""Shared fixtures."""
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import pytest
from escrow.models.artifact import ArtifactUpload
from escrow.models.role import PostContext
from escrow.models.transaction import Transaction, TransactionStatus
from escrow.services.escrow import EscrowService
from escrow.services.payment import PaymentInstrumentGenerator
from escrow.storage.fallback import FallbackArtifactStore, FallbackTransactionStore
from escrow.storage.memory import InMemoryTransactionStore

BUYER = "user_poster"
SELLER = "user_helper"
OUTSIDER = "user_other"
START = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)


class Clock:
    """Controllable clock for expiry tests."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_transaction(status=TransactionStatus.PAYMENT_PENDING, **overrides) -> Transaction:
    data = dict(
        id="rec-1",
        transaction_id="TXN20240115-000001",
        buyer_id=BUYER,
        seller_id=SELLER,
        post_id="post-1",
        amount=Decimal("500"),
        currency="INR",
        status=status,
        payee_identifier="helper@bank",
        payment_request_payload="upi://pay?pa=helper@bank&am=500&cu=INR&tn=SVIP-TXN20240115-000001",
        created_at=START,
        updated_at=START,
        expires_at=START + timedelta(hours=24),
    )
    data.update(overrides)
    return Transaction(**data)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def post_context():
    return PostContext(post_id="post-1", post_author_id=BUYER, conversation_initiator_id=SELLER)


@pytest.fixture
def proof():
    return ArtifactUpload(filename="receipt.png", content_type="image/png", content=b"\x89PNG proof")


@pytest.fixture
def work_files():
    return [
        ArtifactUpload(filename="essay.pdf", content_type="application/pdf", content=b"%PDF-1.4 essay"),
        ArtifactUpload(filename="notes.txt", content_type="text/plain", content=b"notes"),
    ]


@pytest.fixture
def memory_store():
    return InMemoryTransactionStore()


@pytest.fixture
def store(memory_store):
    return FallbackTransactionStore(memory_store)


@pytest.fixture
def service(store, clock):
    return EscrowService(
        store,
        FallbackArtifactStore(None),
        generator=PaymentInstrumentGenerator(currency="INR", memo_prefix="SVIP", qr_scale=2, qr_border=1),
        expiry_hours=24,
        clock=clock,
        rng=random.Random(7),
    )
