"""Identifier generation."""
import random
import uuid
from datetime import datetime
from escrow.models.transaction import LOCAL_ID_PREFIX


def generate_transaction_id(now: datetime, rng: random.Random = None) -> str:
    """Human readable id, e.g. TXN20240115-042917."""
    rng = rng or random
    return f"TXN{now:%Y%m%d}-{rng.randrange(1_000_000):06d}"


def generate_record_id() -> str:
    return str(uuid.uuid4())


def generate_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"
