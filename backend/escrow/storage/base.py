"""Base store interfaces."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional
from escrow.models.artifact import ArtifactUpload
from escrow.models.transaction import Transaction, TransactionStatus


class TransactionStore(ABC):
    """Abstract base class for transaction persistence.

    Implementations raise StoreUnavailable when the backing table is not
    provisioned, StoreConflict on constraint violations or a failed
    compare-and-set, and UpstreamFailure for anything else.
    """

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        """
        Persist a new transaction.

        At most one open transaction may exist per pair of users; a second
        one is rejected with StoreConflict.
        """
        pass

    @abstractmethod
    async def update(
        self,
        record_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TransactionStatus] = None,
    ) -> Transaction:
        """
        Apply ``changes`` to a transaction.

        Args:
            record_id: Storage key of the transaction
            changes: Field name -> new value
            expected_status: If given, the update only applies while the
                persisted status still equals it (compare-and-set)

        Returns:
            The updated transaction

        Raises:
            NotFound: no such record
            StoreConflict: persisted status differs from expected_status
        """
        pass

    @abstractmethod
    async def get(self, record_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def find(
        self,
        user_id: str,
        counterpart_id: str,
        post_id: Optional[str] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> Optional[Transaction]:
        """
        Most recent transaction between two users, in either buyer/seller
        orientation, optionally restricted to a post and a set of statuses.
        """
        pass

    @abstractmethod
    async def find_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class ArtifactStore(ABC):
    """Abstract base class for blob storage of payment proofs and work files."""

    @abstractmethod
    async def upload(self, path: str, artifact: ArtifactUpload) -> str:
        """
        Store an artifact.

        Args:
            path: Object path inside the bucket, e.g. "payment-proofs/<id>.png"
            artifact: The uploaded file

        Returns:
            A retrievable reference (URL or equivalent)
        """
        pass

    async def close(self) -> None:
        return None


def apply_changes(transaction: Transaction, changes: Dict[str, Any]) -> Transaction:
    """Return a validated copy of ``transaction`` with ``changes`` applied."""
    return Transaction.model_validate({**transaction.model_dump(), **changes})


def is_between(transaction: Transaction, user_id: str, counterpart_id: str) -> bool:
    return {transaction.buyer_id, transaction.seller_id} == {user_id, counterpart_id}
