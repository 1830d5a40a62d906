"""Escrow error codes and exceptions."""
from enum import Enum


class ErrorCode(str, Enum):
    # Input
    INVALID_INPUT = "invalid_input"
    INVALID_PAYEE_FORMAT = "invalid_payee_format"
    INVALID_AMOUNT = "invalid_amount"
    EMPTY_REASON = "empty_reason"
    INVALID_PAYLOAD = "invalid_payload"

    # Authorization
    UNAUTHORIZED = "unauthorized"

    # State
    INVALID_TRANSITION = "invalid_transition"
    EXPIRED = "expired"
    ALREADY_ACTIVE = "already_active"
    NOT_FOUND = "not_found"

    # Store
    STORE_UNAVAILABLE = "store_unavailable"
    STORE_CONFLICT = "store_conflict"
    UPSTREAM_FAILURE = "upstream_failure"


class EscrowError(Exception):
    """Base class for every error raised by the escrow service."""

    code = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, code: ErrorCode = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidInput(EscrowError):
    """Malformed caller input (payee, amount, reason, payload)."""

    code = ErrorCode.INVALID_INPUT


class InvalidPayeeFormat(InvalidInput):
    code = ErrorCode.INVALID_PAYEE_FORMAT


class InvalidAmount(InvalidInput):
    code = ErrorCode.INVALID_AMOUNT


class EmptyReason(InvalidInput):
    code = ErrorCode.EMPTY_REASON


class Unauthorized(EscrowError):
    """The actor does not hold the role the action requires."""

    code = ErrorCode.UNAUTHORIZED


class InvalidTransition(EscrowError):
    """The action is not legal from the transaction's current status."""

    code = ErrorCode.INVALID_TRANSITION


class AlreadyActive(EscrowError):
    """The pair already has an open transaction."""

    code = ErrorCode.ALREADY_ACTIVE


class NotFound(EscrowError):
    code = ErrorCode.NOT_FOUND


class StoreUnavailable(EscrowError):
    """The backing table or bucket is not provisioned.

    Absorbed by the fallback adapters; never reaches API callers.
    """

    code = ErrorCode.STORE_UNAVAILABLE


class UpstreamFailure(EscrowError):
    """Any store or network failure other than an absent store."""

    code = ErrorCode.UPSTREAM_FAILURE


class StoreConflict(UpstreamFailure):
    """Constraint violation or compare-and-set mismatch."""

    code = ErrorCode.STORE_CONFLICT
