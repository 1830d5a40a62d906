"""Escrow protocol engine: transition table, authorization and step projection."""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from escrow.errors import ErrorCode, InvalidTransition, Unauthorized
from escrow.models.role import Role
from escrow.models.transaction import Action, Step, Transaction, TransactionStatus

S = TransactionStatus

BUYER_ONLY = frozenset({Role.BUYER})
SELLER_ONLY = frozenset({Role.SELLER})
EITHER_PARTY = frozenset({Role.BUYER, Role.SELLER})


@dataclass(frozen=True)
class Transition:
    source: TransactionStatus
    action: Action
    target: TransactionStatus


# Who may perform each action, independent of state.
ACTION_ACTORS: Dict[Action, FrozenSet[Role]] = {
    Action.INITIATE: BUYER_ONLY,
    Action.SUBMIT_PAYMENT_PROOF: BUYER_ONLY,
    Action.SUBMIT_WORK: SELLER_ONLY,
    Action.APPROVE: BUYER_ONLY,
    Action.DISPUTE: BUYER_ONLY,
    Action.CANCEL: EITHER_PARTY,
}

TRANSITIONS: Dict[Tuple[TransactionStatus, Action], Transition] = {
    (t.source, t.action): t
    for t in (
        Transition(S.UNINITIATED, Action.INITIATE, S.PAYMENT_PENDING),
        Transition(S.PAYMENT_PENDING, Action.SUBMIT_PAYMENT_PROOF, S.PAID),
        Transition(S.PAID, Action.SUBMIT_WORK, S.WORK_SUBMITTED),
        Transition(S.WORK_SUBMITTED, Action.APPROVE, S.APPROVED),
        Transition(S.WORK_SUBMITTED, Action.DISPUTE, S.DISPUTED),
        Transition(S.PAYMENT_PENDING, Action.CANCEL, S.CANCELLED),
        Transition(S.PAID, Action.CANCEL, S.CANCELLED),
        Transition(S.WORK_SUBMITTED, Action.CANCEL, S.CANCELLED),
    )
}

# Actions that stay legal on an expired payment_pending transaction.
_ALLOWED_WHEN_EXPIRED = frozenset({Action.CANCEL})


def current_status(transaction: Optional[Transaction]) -> TransactionStatus:
    if transaction is None:
        return S.UNINITIATED
    return transaction.status.canonical


def authorize(
    transaction: Optional[Transaction],
    action: Action,
    role: Role,
    now: datetime,
) -> Transition:
    """
    Check that ``role`` may perform ``action`` on ``transaction`` right now.

    Role is checked before state, so an actor who never performs an action
    gets Unauthorized whatever the status is.

    Returns:
        The transition to apply

    Raises:
        Unauthorized: role does not perform this action
        InvalidTransition: action not legal from the current status, or expired
    """
    if role not in ACTION_ACTORS[action]:
        raise Unauthorized(f"A {role.value} may not {action.value.replace('_', ' ')}")

    status = current_status(transaction)
    transition = TRANSITIONS.get((status, action))
    if transition is None:
        raise InvalidTransition(f"Cannot {action.value.replace('_', ' ')} a transaction that is {status.value}")

    if transaction is not None and transaction.is_expired(now) and action not in _ALLOWED_WHEN_EXPIRED:
        raise InvalidTransition(
            f"Transaction {transaction.transaction_id} expired at {transaction.expires_at.isoformat()}",
            ErrorCode.EXPIRED,
        )
    return transition


def allowed_actions(transaction: Optional[Transaction], role: Role, now: datetime) -> List[Action]:
    """Actions ``role`` may take next, in table order. Empty for an unknown role."""
    if role is Role.UNKNOWN:
        return []
    status = current_status(transaction)
    expired = transaction is not None and transaction.is_expired(now)
    actions = []
    for (source, action) in TRANSITIONS:
        if source is not status or role not in ACTION_ACTORS[action]:
            continue
        if expired and action not in _ALLOWED_WHEN_EXPIRED:
            continue
        actions.append(action)
    return actions


def project_step(transaction: Optional[Transaction], role: Role, now: datetime) -> Step:
    """What the given party should see; a pure function of status and role."""
    if role is Role.UNKNOWN:
        return Step.NONE

    status = current_status(transaction)
    is_buyer = role is Role.BUYER

    if status is S.UNINITIATED:
        return Step.INITIATE if is_buyer else Step.NONE
    if status is S.PAYMENT_PENDING:
        if transaction.is_expired(now):
            return Step.EXPIRED
        return Step.PAYMENT if is_buyer else Step.AWAITING_PAYMENT
    if status is S.PAID:
        return Step.AWAITING_WORK if is_buyer else Step.WORK
    if status is S.WORK_SUBMITTED:
        return Step.VERIFY if is_buyer else Step.AWAITING_REVIEW
    if status is S.APPROVED:
        return Step.COMPLETE
    if status is S.DISPUTED:
        return Step.DISPUTED
    if status is S.REFUNDED:
        return Step.REFUNDED
    return Step.CANCELLED
