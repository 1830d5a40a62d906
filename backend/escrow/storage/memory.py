"""In-memory transaction store for tests and the "memory" backend."""
from typing import Any, Dict, Iterable, List, Optional
from escrow.errors import NotFound, StoreConflict, StoreUnavailable
from escrow.models.transaction import Transaction, TransactionStatus
from escrow.storage.base import TransactionStore, apply_changes, is_between


class InMemoryTransactionStore(TransactionStore):
    """Dictionary-backed store with the same semantics as the database stores.

    Built with ``provisioned=False`` it behaves like a backend whose
    transactions table was never created.
    """

    def __init__(self, provisioned: bool = True):
        self.provisioned = provisioned
        self._records: Dict[str, Transaction] = {}
        self.calls: List[str] = []

    def _check(self, operation: str):
        self.calls.append(operation)
        if not self.provisioned:
            raise StoreUnavailable("relation \"transactions\" does not exist")

    async def create(self, transaction: Transaction) -> Transaction:
        self._check("create")
        if transaction.id in self._records:
            raise StoreConflict(f"Duplicate record id {transaction.id}")
        if any(t.transaction_id == transaction.transaction_id for t in self._records.values()):
            raise StoreConflict(f"Duplicate transaction id {transaction.transaction_id}")
        if transaction.is_open:
            for existing in self._records.values():
                if existing.is_open and is_between(existing, transaction.buyer_id, transaction.seller_id):
                    raise StoreConflict(
                        f"Pair already has open transaction {existing.transaction_id}"
                    )
        self._records[transaction.id] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True)

    async def update(
        self,
        record_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TransactionStatus] = None,
    ) -> Transaction:
        self._check("update")
        current = self._records.get(record_id)
        if current is None:
            raise NotFound(f"Transaction {record_id} not found")
        if expected_status is not None and current.status is not expected_status:
            raise StoreConflict(
                f"Transaction {current.transaction_id} is {current.status.value}, "
                f"expected {expected_status.value}"
            )
        updated = apply_changes(current, changes)
        self._records[record_id] = updated
        return updated.model_copy(deep=True)

    async def get(self, record_id: str) -> Optional[Transaction]:
        self._check("get")
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def find(
        self,
        user_id: str,
        counterpart_id: str,
        post_id: Optional[str] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> Optional[Transaction]:
        self._check("find")
        wanted = set(statuses) if statuses is not None else None
        matches = [
            t for t in self._records.values()
            if is_between(t, user_id, counterpart_id)
            and (post_id is None or t.post_id == post_id)
            and (wanted is None or t.status in wanted)
        ]
        if not matches:
            return None
        latest = max(matches, key=lambda t: t.created_at)
        return latest.model_copy(deep=True)

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        self._check("find_by_transaction_id")
        for record in self._records.values():
            if record.transaction_id == transaction_id:
                return record.model_copy(deep=True)
        return None
