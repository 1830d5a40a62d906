"""Request and response models for the HTTP API."""
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
from escrow.models.role import PostContext, RoleAssignment
from escrow.models.transaction import Action, Step, Transaction


class InitiateRequest(BaseModel):
    """Request from the buyer to open a transaction with a helper."""

    counterpart_id: str = Field(..., description="The seller (helper)")
    amount: Decimal = Field(..., description="Amount to pay")
    payee_identifier: str = Field(..., description="Seller UPI handle, e.g. name@bank")
    post_context: Optional[PostContext] = None
    work_description: Optional[str] = None


class ApproveRequest(BaseModel):
    feedback: Optional[str] = Field(None, description="Optional note for the helper")


class DisputeRequest(BaseModel):
    reason: str = Field(..., description="Why the work is not acceptable")


class TransactionView(BaseModel):
    """A transaction as seen by one of its parties."""

    transaction: Optional[Transaction] = None
    role: RoleAssignment
    step: Step
    allowed_actions: List[Action] = Field(default_factory=list)
    payment_code: Optional[str] = Field(None, description="QR code as a PNG data URI, while payment is pending")


class ErrorResponse(BaseModel):
    detail: str
    code: str
