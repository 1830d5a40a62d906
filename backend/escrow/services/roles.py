"""Role resolution: who is the buyer and who is the seller between two users."""
import logging
from typing import Optional
from escrow.errors import UpstreamFailure
from escrow.models.role import PostContext, Role, RoleAssignment, RoleSource
from escrow.models.transaction import OPEN_STATUSES, Transaction
from escrow.storage.base import TransactionStore

logger = logging.getLogger(__name__)


def role_for(transaction: Transaction, user_id: str) -> Role:
    """Role of ``user_id`` in a known transaction."""
    if user_id == transaction.buyer_id:
        return Role.BUYER
    if user_id == transaction.seller_id:
        return Role.SELLER
    return Role.UNKNOWN


def role_from_context(user_id: str, post_context: Optional[PostContext]) -> Role:
    """Post author pays (buyer); whoever started the conversation helps (seller)."""
    if post_context is None:
        return Role.UNKNOWN
    if post_context.post_author_id and user_id == post_context.post_author_id:
        return Role.BUYER
    if post_context.conversation_initiator_id and user_id == post_context.conversation_initiator_id:
        return Role.SELLER
    return Role.UNKNOWN


class RoleResolver:
    """Derives a user's role towards a counterpart.

    Precedence: open transaction for the pair, then the most recent
    (closed) transaction, then post/conversation context, else unknown.
    The result is recomputed on every call, never cached.
    """

    def __init__(self, store: TransactionStore):
        self.store = store

    async def resolve(
        self,
        user_id: str,
        counterpart_id: str,
        post_context: Optional[PostContext] = None,
    ) -> RoleAssignment:
        if not user_id or not counterpart_id or user_id == counterpart_id:
            return RoleAssignment()

        try:
            active = await self.store.find(user_id, counterpart_id, statuses=OPEN_STATUSES)
            if active is not None:
                return RoleAssignment(role=role_for(active, user_id), source=RoleSource.TRANSACTION)

            latest = await self.store.find(user_id, counterpart_id)
        except UpstreamFailure as e:
            logger.warning("Could not load transactions for role check: %s", e.message)
            return RoleAssignment()

        if latest is not None:
            return RoleAssignment(role=role_for(latest, user_id), source=RoleSource.HISTORY)

        role = role_from_context(user_id, post_context)
        if role is Role.UNKNOWN:
            return RoleAssignment()
        return RoleAssignment(role=role, source=RoleSource.CONTEXT)

    def for_transaction(self, transaction: Optional[Transaction], user_id: str) -> RoleAssignment:
        """Role for a transaction already in hand (e.g. after a poll)."""
        return assignment_for(transaction, user_id)


def assignment_for(transaction: Optional[Transaction], user_id: str) -> RoleAssignment:
    if transaction is None:
        return RoleAssignment()
    role = role_for(transaction, user_id)
    if role is Role.UNKNOWN:
        return RoleAssignment()
    source = RoleSource.TRANSACTION if transaction.is_open else RoleSource.HISTORY
    return RoleAssignment(role=role, source=source)
