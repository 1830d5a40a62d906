"""Escrow service: the caller-facing operations of the payment escrow flow."""
import logging
import random
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Tuple
from escrow.config import settings
from escrow.errors import (
    AlreadyActive,
    EmptyReason,
    ErrorCode,
    InvalidInput,
    InvalidTransition,
    NotFound,
    StoreConflict,
    Unauthorized,
    UpstreamFailure,
)
from escrow.models.api import TransactionView
from escrow.models.artifact import ArtifactUpload
from escrow.models.role import PostContext, Role, RoleAssignment
from escrow.models.transaction import OPEN_STATUSES, Action, Transaction, TransactionStatus
from escrow.services.payment import PaymentInstrumentGenerator, validate_amount, validate_payee
from escrow.services.protocol import Transition, allowed_actions, authorize, project_step
from escrow.services.roles import RoleResolver, role_for
from escrow.storage.base import ArtifactStore, TransactionStore
from escrow.utils.ids import generate_record_id, generate_transaction_id
from escrow.utils.privacy import describe_reference, mask_payee
from escrow.utils.timestamp import utc_now

logger = logging.getLogger(__name__)


class EscrowService:
    """Runs the buyer/seller escrow protocol against a transaction store.

    Every mutating call re-reads the persisted transaction, authorizes the
    actor against it, and writes with a compare-and-set on the status it
    read, so the persisted status stays authoritative across both parties.
    """

    def __init__(
        self,
        store: TransactionStore,
        artifacts: ArtifactStore,
        generator: PaymentInstrumentGenerator = None,
        expiry_hours: int = None,
        clock: Callable[[], datetime] = None,
        rng: random.Random = None,
        id_attempts: int = 5,
    ):
        self.store = store
        self.artifacts = artifacts
        self.generator = generator or PaymentInstrumentGenerator()
        self.roles = RoleResolver(store)
        self.expiry = timedelta(hours=expiry_hours or settings.payment_expiry_hours)
        self.clock = clock or utc_now
        self.rng = rng or random.Random()
        self.id_attempts = id_attempts

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_transaction(
        self,
        actor_id: str,
        counterpart_id: str,
        payee_identifier: str,
        amount,
        post_context: Optional[PostContext] = None,
        work_description: Optional[str] = None,
    ) -> Transaction:
        """
        Open an escrow transaction as the buyer.

        Args:
            actor_id: The buyer (post owner)
            counterpart_id: The seller (helper)
            payee_identifier: Seller's UPI handle
            amount: Amount to pay
            post_context: Originating post/conversation, used for the role
                when the pair has no transaction history
            work_description: Free text carried from the post

        Returns:
            A payment_pending transaction; the pair's existing one when the
            same request is repeated while payment is still pending

        Raises:
            InvalidPayeeFormat, InvalidAmount, InvalidInput: bad input
            Unauthorized: the actor is not the buyer for this pair
            AlreadyActive: the pair has another open transaction
        """
        payee = validate_payee(payee_identifier)
        value = validate_amount(amount)
        if not actor_id or not counterpart_id or actor_id == counterpart_id:
            raise InvalidInput("A transaction needs two different users")

        assignment = await self.roles.resolve(actor_id, counterpart_id, post_context)
        now = self.clock()
        authorize(None, Action.INITIATE, assignment.role, now)

        existing = await self.store.find(actor_id, counterpart_id, statuses=OPEN_STATUSES)
        if existing is not None:
            reused = await self._settle_open(existing, actor_id, payee, value, now)
            if reused is not None:
                return reused

        transaction_id = await self._new_transaction_id(now)
        transaction = Transaction(
            id=generate_record_id(),
            transaction_id=transaction_id,
            buyer_id=actor_id,
            seller_id=counterpart_id,
            post_id=post_context.post_id if post_context else None,
            work_description=work_description,
            amount=value,
            currency=self.generator.currency,
            status=TransactionStatus.PAYMENT_PENDING,
            payee_identifier=payee,
            payment_request_payload=self.generator.build_payload(payee, value, transaction_id),
            created_at=now,
            updated_at=now,
            expires_at=now + self.expiry,
        )

        try:
            created = await self.store.create(transaction)
        except StoreConflict:
            # Another initiate for the pair won the race
            existing = await self.store.find(actor_id, counterpart_id, statuses=OPEN_STATUSES)
            if existing is None:
                raise
            reused = await self._settle_open(existing, actor_id, payee, value, now)
            if reused is None:
                raise AlreadyActive(f"Transaction {existing.transaction_id} is already open for this pair")
            return reused

        logger.info(
            "Created transaction %s (%s) for %s %s to %s%s",
            created.transaction_id, created.id, created.amount, created.currency,
            mask_payee(payee), " [local only]" if created.is_local else "",
        )
        return created

    async def _settle_open(
        self,
        existing: Transaction,
        actor_id: str,
        payee: str,
        amount,
        now: datetime,
    ) -> Optional[Transaction]:
        """
        Decide what an initiate does with the pair's open transaction.

        Returns the transaction to hand back for a repeated request, or None
        when a fresh transaction may be created (the open one has expired
        and was cancelled).
        """
        pending = existing.status.canonical is TransactionStatus.PAYMENT_PENDING
        if pending and existing.is_expired(now):
            try:
                await self.store.update(
                    existing.id,
                    {"status": TransactionStatus.CANCELLED, "updated_at": now},
                    expected_status=existing.status,
                )
            except StoreConflict:
                raise AlreadyActive(f"Transaction {existing.transaction_id} changed while being replaced")
            logger.info("Cancelled expired transaction %s before starting a new one", existing.transaction_id)
            return None

        same_request = (
            existing.buyer_id == actor_id
            and existing.payee_identifier == payee
            and existing.amount == amount
        )
        if pending and same_request:
            logger.info("Reusing pending transaction %s for repeated initiate", existing.transaction_id)
            return existing

        raise AlreadyActive(
            f"Transaction {existing.transaction_id} is already {existing.status.value} for this pair"
        )

    async def _new_transaction_id(self, now: datetime) -> str:
        for _ in range(self.id_attempts):
            candidate = generate_transaction_id(now, self.rng)
            try:
                clash = await self.store.find_by_transaction_id(candidate)
            except UpstreamFailure as e:
                logger.warning("Could not check transaction id uniqueness: %s", e.message)
                return candidate
            if clash is None:
                return candidate
        raise UpstreamFailure(f"Could not allocate a unique transaction id after {self.id_attempts} attempts")

    # ------------------------------------------------------------------
    # Transitions on an existing transaction
    # ------------------------------------------------------------------

    async def _load(self, actor_id: str, record_id: str) -> Tuple[Transaction, Role]:
        transaction = await self.store.get(record_id)
        if transaction is None:
            raise NotFound(f"Transaction {record_id} not found")
        role = role_for(transaction, actor_id)
        if role is Role.UNKNOWN:
            raise Unauthorized(f"User {actor_id} is not a party to transaction {transaction.transaction_id}")
        return transaction, role

    async def _commit(
        self,
        transaction: Transaction,
        transition: Transition,
        changes: Dict[str, Any],
    ) -> Transaction:
        changes = {**changes, "status": transition.target, "updated_at": self.clock()}
        try:
            updated = await self.store.update(transaction.id, changes, expected_status=transaction.status)
        except StoreConflict as e:
            logger.info("Rejected %s on %s: %s", transition.action.value, transaction.transaction_id, e.message)
            raise InvalidTransition(
                f"Transaction {transaction.transaction_id} changed before {transition.action.value} "
                f"could be applied: {e.message}"
            )
        logger.info(
            "Transaction %s: %s -> %s (%s)",
            updated.transaction_id, transaction.status.value, updated.status.value, transition.action.value,
        )
        return updated

    async def _authorized(self, actor_id: str, record_id: str, action: Action) -> Tuple[Transaction, Transition]:
        transaction, role = await self._load(actor_id, record_id)
        try:
            transition = authorize(transaction, action, role, self.clock())
        except (Unauthorized, InvalidTransition) as e:
            logger.info("Rejected %s by %s on %s: %s", action.value, actor_id, transaction.transaction_id, e.message)
            raise
        return transaction, transition

    def _stamp(self) -> int:
        return int(self.clock().timestamp() * 1000)

    async def submit_payment_proof(
        self,
        actor_id: str,
        record_id: str,
        artifact: ArtifactUpload,
    ) -> Transaction:
        """Buyer uploads proof of the off-band payment: payment_pending -> paid."""
        if artifact is None or not artifact.content:
            raise InvalidInput("Payment proof file is required")
        transaction, transition = await self._authorized(actor_id, record_id, Action.SUBMIT_PAYMENT_PROOF)

        path = f"payment-proofs/{transaction.id}-payment-proof-{self._stamp()}.{artifact.extension}"
        reference = await self.artifacts.upload(path, artifact)
        logger.info("Payment proof for %s stored as %s", transaction.transaction_id, describe_reference(reference))
        return await self._commit(transaction, transition, {"payment_proof": reference})

    async def submit_work(
        self,
        actor_id: str,
        record_id: str,
        artifacts: List[ArtifactUpload],
        preview: Optional[str] = None,
    ) -> Transaction:
        """Seller delivers work files (and an optional preview link): paid -> work_submitted."""
        if not artifacts:
            raise InvalidInput("At least one work file is required")
        preview = (preview or "").strip() or None
        if preview and not preview.startswith(("http://", "https://")):
            raise InvalidInput(f"Preview must be an http(s) link, got {preview!r}")
        transaction, transition = await self._authorized(actor_id, record_id, Action.SUBMIT_WORK)

        references = []
        stamp = self._stamp()
        for index, artifact in enumerate(artifacts):
            name = PurePosixPath(artifact.filename.replace("\\", "/")).name or f"file.{artifact.extension}"
            path = f"work-files/{transaction.id}-work-{stamp}-{index}-{name}"
            references.append(await self.artifacts.upload(path, artifact))

        return await self._commit(
            transaction,
            transition,
            {"work_artifacts": references, "work_preview_reference": preview},
        )

    async def approve_work(
        self,
        actor_id: str,
        record_id: str,
        feedback: Optional[str] = None,
    ) -> Transaction:
        """Buyer accepts the work; payment counts as released: work_submitted -> approved."""
        transaction, transition = await self._authorized(actor_id, record_id, Action.APPROVE)
        now = self.clock()
        return await self._commit(
            transaction,
            transition,
            {
                "buyer_approved": True,
                "buyer_feedback": feedback,
                "approved_at": now,
                "released_at": now,
            },
        )

    async def file_dispute(self, actor_id: str, record_id: str, reason: str) -> Transaction:
        """Buyer rejects the work with a mandatory reason: work_submitted -> disputed."""
        if reason is None or not reason.strip():
            raise EmptyReason("A reason is required to raise a dispute")
        transaction, transition = await self._authorized(actor_id, record_id, Action.DISPUTE)
        return await self._commit(transaction, transition, {"dispute_reason": reason})

    async def cancel_transaction(self, actor_id: str, record_id: str) -> Transaction:
        """Either party calls the transaction off before approval."""
        transaction, transition = await self._authorized(actor_id, record_id, Action.CANCEL)
        return await self._commit(transaction, transition, {})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_transaction(self, actor_id: str, record_id: str) -> Transaction:
        transaction, _ = await self._load(actor_id, record_id)
        return transaction

    async def payment_code(self, actor_id: str, record_id: str) -> bytes:
        """PNG QR code of the payment request, while payment is still due."""
        transaction, _ = await self._load(actor_id, record_id)
        if transaction.status.canonical is not TransactionStatus.PAYMENT_PENDING:
            raise InvalidTransition(
                f"Transaction {transaction.transaction_id} is {transaction.status.value}, no payment is due"
            )
        if transaction.is_expired(self.clock()):
            raise InvalidTransition(
                f"Transaction {transaction.transaction_id} expired at {transaction.expires_at.isoformat()}",
                ErrorCode.EXPIRED,
            )
        return self.generator.render_png(transaction.payment_request_payload)

    async def resolve_role(
        self,
        actor_id: str,
        counterpart_id: str,
        post_context: Optional[PostContext] = None,
    ) -> RoleAssignment:
        return await self.roles.resolve(actor_id, counterpart_id, post_context)

    async def pair_view(
        self,
        actor_id: str,
        counterpart_id: str,
        post_context: Optional[PostContext] = None,
    ) -> TransactionView:
        """View of the pair's current transaction (open first, else most recent)."""
        assignment = await self.roles.resolve(actor_id, counterpart_id, post_context)
        transaction = None
        if assignment.role is not Role.UNKNOWN:
            transaction = await self.store.find(actor_id, counterpart_id, statuses=OPEN_STATUSES)
            if transaction is None:
                transaction = await self.store.find(actor_id, counterpart_id)
        if transaction is not None and not transaction.is_open:
            # A closed transaction leaves the pair free to start again
            transaction_view = self.view(transaction, actor_id)
            if assignment.role is Role.BUYER:
                transaction_view.allowed_actions = [Action.INITIATE]
            return transaction_view
        if transaction is not None:
            return self.view(transaction, actor_id)

        now = self.clock()
        return TransactionView(
            transaction=None,
            role=assignment,
            step=project_step(None, assignment.role, now),
            allowed_actions=allowed_actions(None, assignment.role, now),
        )

    def view(self, transaction: Transaction, actor_id: str) -> TransactionView:
        """Project a transaction for one party; recomputed on every call."""
        assignment = self.roles.for_transaction(transaction, actor_id)
        now = self.clock()
        payment_code = None
        if (
            assignment.role is Role.BUYER
            and transaction.status.canonical is TransactionStatus.PAYMENT_PENDING
            and not transaction.is_expired(now)
        ):
            payment_code = self.generator.render_data_uri(transaction.payment_request_payload)
        return TransactionView(
            transaction=transaction,
            role=assignment,
            step=project_step(transaction, assignment.role, now),
            allowed_actions=allowed_actions(transaction, assignment.role, now),
            payment_code=payment_code,
        )
