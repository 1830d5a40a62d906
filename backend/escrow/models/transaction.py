"""Transaction data models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

LOCAL_ID_PREFIX = "local-"


class TransactionStatus(str, Enum):
    """Escrow protocol status, the single source of truth for protocol state."""

    UNINITIATED = "uninitiated"
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    WORK_IN_PROGRESS = "work_in_progress"
    WORK_SUBMITTED = "work_submitted"
    APPROVED = "approved"
    RELEASED = "released"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def canonical(self) -> "TransactionStatus":
        """Status used for authorization (synonyms folded)."""
        return _SYNONYMS.get(self, self)

    @property
    def is_terminal(self) -> bool:
        return self.canonical in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        """True while the pair may not start another transaction."""
        return self.canonical not in CLOSED_STATUSES and self is not TransactionStatus.UNINITIATED


_SYNONYMS = {
    TransactionStatus.PENDING: TransactionStatus.PAYMENT_PENDING,
    TransactionStatus.WORK_IN_PROGRESS: TransactionStatus.PAID,
    TransactionStatus.RELEASED: TransactionStatus.APPROVED,
}

TERMINAL_STATUSES = frozenset({
    TransactionStatus.APPROVED,
    TransactionStatus.DISPUTED,
    TransactionStatus.CANCELLED,
    TransactionStatus.REFUNDED,
})

# Terminal statuses after which the pair may start a fresh transaction.
# Disputed is terminal but still blocks the pair until resolved externally.
CLOSED_STATUSES = frozenset({
    TransactionStatus.APPROVED,
    TransactionStatus.CANCELLED,
    TransactionStatus.REFUNDED,
})

OPEN_STATUSES = frozenset(
    s for s in TransactionStatus
    if s is not TransactionStatus.UNINITIATED and s.canonical not in CLOSED_STATUSES
)


class Action(str, Enum):
    """Protocol actions a party can take."""

    INITIATE = "initiate"
    SUBMIT_PAYMENT_PROOF = "submit_payment_proof"
    SUBMIT_WORK = "submit_work"
    APPROVE = "approve"
    DISPUTE = "dispute"
    CANCEL = "cancel"


class Step(str, Enum):
    """What a party should be shown for a transaction (derived, never stored)."""

    NONE = "none"
    INITIATE = "initiate"
    PAYMENT = "payment"
    AWAITING_PAYMENT = "awaiting_payment"
    WORK = "work"
    AWAITING_WORK = "awaiting_work"
    VERIFY = "verify"
    AWAITING_REVIEW = "awaiting_review"
    EXPIRED = "expired"
    COMPLETE = "complete"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Transaction(BaseModel):
    """Escrow transaction between a buyer (post owner) and a seller (helper)."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "4b1f2c0e-5d8a-4a51-9a3e-0f7c9d2b6e11",
                "transaction_id": "TXN20240115-042917",
                "buyer_id": "user_poster",
                "seller_id": "user_helper",
                "amount": "500",
                "currency": "INR",
                "status": "payment_pending",
                "payee_identifier": "helper@bank",
                "payment_request_payload": "upi://pay?pa=helper@bank&am=500&cu=INR&tn=SVIP-TXN20240115-042917",
            }
        }
    )

    id: str = Field(..., description="Storage key; 'local-' prefix for session-only records")
    transaction_id: str = Field(..., description="Human readable transaction id")
    buyer_id: str = Field(..., description="Post owner, the payer")
    seller_id: str = Field(..., description="Helper, the payee")
    post_id: Optional[str] = None
    work_description: Optional[str] = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: str = Field(default="INR", description="Currency code")
    status: TransactionStatus = TransactionStatus.PAYMENT_PENDING
    payee_identifier: str = Field(..., description="UPI handle of the seller")
    payment_request_payload: str = Field(..., description="Exact string encoded in the payment code")
    payment_proof: Optional[str] = Field(None, description="Reference to the uploaded payment proof")
    work_artifacts: List[str] = Field(default_factory=list, description="References to submitted work files")
    work_preview_reference: Optional[str] = None
    buyer_approved: bool = False
    buyer_feedback: Optional[str] = None
    dispute_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    approved_at: Optional[datetime] = None
    released_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_parties(self) -> "Transaction":
        if self.buyer_id == self.seller_id:
            raise ValueError("buyer and seller must be different users")
        return self

    @property
    def is_local(self) -> bool:
        return self.id.startswith(LOCAL_ID_PREFIX)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    def is_expired(self, now: datetime) -> bool:
        """Only an unpaid transaction can expire."""
        return self.status.canonical is TransactionStatus.PAYMENT_PENDING and now > self.expires_at
