from .payment import PaymentInstrumentGenerator, build_payment_payload, parse_payment_payload
from .protocol import allowed_actions, authorize, project_step
from .roles import RoleResolver
from .escrow import EscrowService
from .sync import TransactionWatcher

__all__ = [
    "PaymentInstrumentGenerator",
    "build_payment_payload",
    "parse_payment_payload",
    "allowed_actions",
    "authorize",
    "project_step",
    "RoleResolver",
    "EscrowService",
    "TransactionWatcher",
]
