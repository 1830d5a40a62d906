"""Fallback adapters: keep the escrow flow working when a store is not provisioned."""
import base64
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional
from escrow.errors import NotFound, StoreConflict, StoreUnavailable
from escrow.models.artifact import ArtifactUpload
from escrow.models.transaction import LOCAL_ID_PREFIX, Transaction, TransactionStatus
from escrow.storage.base import ArtifactStore, TransactionStore, apply_changes, is_between
from escrow.utils.ids import generate_local_id

logger = logging.getLogger(__name__)


class FallbackTransactionStore(TransactionStore):
    """
    Wraps a transaction store and absorbs StoreUnavailable.

    - create: on an absent store, the transaction is kept in session memory
      under a "local-" id
    - update: "local-" records are updated in memory and never reach the
      backing store; an absent store during an update keeps the change local
    - get/find: an absent store reads as "no record", and local records
      held by this session are searched as well

    Every other error (conflicts, permission denials, network failures)
    propagates unchanged.
    """

    def __init__(self, primary: TransactionStore, seen_limit: int = 1024):
        self.primary = primary
        self.seen_limit = seen_limit
        self._local: Dict[str, Transaction] = {}
        # store id -> local id, for records that went local after creation
        self._aliases: Dict[str, str] = {}
        # last version of each stored record handed out, used to go local on update
        self._seen: "OrderedDict[str, Transaction]" = OrderedDict()

    def _remember(self, transaction: Optional[Transaction]) -> Optional[Transaction]:
        if transaction is not None and not transaction.is_local:
            self._seen[transaction.id] = transaction.model_copy(deep=True)
            self._seen.move_to_end(transaction.id)
            while len(self._seen) > self.seen_limit:
                self._seen.popitem(last=False)
        return transaction

    def _go_local(self, transaction: Transaction) -> Transaction:
        local = transaction.model_copy(update={"id": generate_local_id()}, deep=True)
        self._local[local.id] = local
        if not transaction.is_local:
            self._aliases[transaction.id] = local.id
        return local

    @property
    def local_records(self) -> List[Transaction]:
        return list(self._local.values())

    def _local_conflict(self, transaction: Transaction) -> Optional[Transaction]:
        if not transaction.is_open:
            return None
        for existing in self._local.values():
            if existing.is_open and is_between(existing, transaction.buyer_id, transaction.seller_id):
                return existing
        return None

    async def create(self, transaction: Transaction) -> Transaction:
        existing = self._local_conflict(transaction)
        if existing is not None:
            raise StoreConflict(f"Pair already has open local transaction {existing.transaction_id}")
        try:
            return self._remember(await self.primary.create(transaction))
        except StoreUnavailable as e:
            local = self._go_local(transaction)
            logger.warning(
                "Transactions table not found (%s). Transaction %s kept locally as %s and won't be saved.",
                e.message, local.transaction_id, local.id,
            )
            return local.model_copy(deep=True)

    async def update(
        self,
        record_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TransactionStatus] = None,
    ) -> Transaction:
        record_id = self._aliases.get(record_id, record_id)
        if record_id in self._local:
            return self._update_local(record_id, changes, expected_status)
        if record_id.startswith(LOCAL_ID_PREFIX):
            raise NotFound(f"Local transaction {record_id} is not held by this session")
        try:
            return self._remember(await self.primary.update(record_id, changes, expected_status))
        except StoreUnavailable as e:
            last_seen = self._seen.pop(record_id, None)
            if last_seen is None:
                raise NotFound(
                    f"Transaction {record_id} cannot be updated, its store is unavailable: {e.message}"
                )
            local = self._go_local(last_seen)
            logger.warning(
                "Transactions table not found (%s). Continuing transaction %s locally as %s.",
                e.message, local.transaction_id, local.id,
            )
            return self._update_local(local.id, changes, expected_status)

    def _update_local(
        self,
        record_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TransactionStatus],
    ) -> Transaction:
        current = self._local[record_id]
        if expected_status is not None and current.status is not expected_status:
            raise StoreConflict(
                f"Transaction {current.transaction_id} is {current.status.value}, "
                f"expected {expected_status.value}"
            )
        updated = apply_changes(current, changes)
        self._local[record_id] = updated
        logger.info("Updated local transaction %s -> %s", updated.transaction_id, updated.status.value)
        return updated.model_copy(deep=True)

    async def get(self, record_id: str) -> Optional[Transaction]:
        record_id = self._aliases.get(record_id, record_id)
        if record_id in self._local:
            return self._local[record_id].model_copy(deep=True)
        if record_id.startswith(LOCAL_ID_PREFIX):
            return None
        try:
            return self._remember(await self.primary.get(record_id))
        except StoreUnavailable as e:
            logger.warning("Transactions table not found while reading %s: %s", record_id, e.message)
            return None

    async def find(
        self,
        user_id: str,
        counterpart_id: str,
        post_id: Optional[str] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> Optional[Transaction]:
        wanted = set(statuses) if statuses is not None else None
        candidates = [
            t for t in self._local.values()
            if is_between(t, user_id, counterpart_id)
            and (post_id is None or t.post_id == post_id)
            and (wanted is None or t.status in wanted)
        ]
        try:
            stored = self._remember(await self.primary.find(user_id, counterpart_id, post_id, wanted))
        except StoreUnavailable as e:
            logger.warning("Transactions table not found while searching: %s", e.message)
            stored = None
        if stored is not None and stored.id not in self._aliases:
            candidates.append(stored)
        if not candidates:
            return None
        return max(candidates, key=lambda t: t.created_at).model_copy(deep=True)

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        for record in self._local.values():
            if record.transaction_id == transaction_id:
                return record.model_copy(deep=True)
        try:
            return await self.primary.find_by_transaction_id(transaction_id)
        except StoreUnavailable:
            return None

    async def close(self) -> None:
        await self.primary.close()


def to_data_url(artifact: ArtifactUpload) -> str:
    encoded = base64.b64encode(artifact.content).decode("ascii")
    return f"data:{artifact.content_type};base64,{encoded}"


class FallbackArtifactStore(ArtifactStore):
    """Uploads to the primary bucket, or inlines the file as a data URL when the bucket is absent."""

    def __init__(self, primary: Optional[ArtifactStore]):
        self.primary = primary

    async def upload(self, path: str, artifact: ArtifactUpload) -> str:
        if self.primary is None:
            return to_data_url(artifact)
        try:
            return await self.primary.upload(path, artifact)
        except StoreUnavailable as e:
            logger.warning("Storage bucket not found (%s). Using data URL for %s.", e.message, path)
            return to_data_url(artifact)

    async def close(self) -> None:
        if self.primary is not None:
            await self.primary.close()
