from .privacy import mask_payee, describe_reference
from .timestamp import parse_timestamp, utc_now
from .ids import generate_transaction_id, generate_local_id

__all__ = [
    "mask_payee",
    "describe_reference",
    "parse_timestamp",
    "utc_now",
    "generate_transaction_id",
    "generate_local_id",
]
