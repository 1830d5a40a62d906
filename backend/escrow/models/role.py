"""Role models (derived per user/counterpart pair, never stored)."""
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, computed_field


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    UNKNOWN = "unknown"


class RoleSource(str, Enum):
    """Which signal decided the role."""

    TRANSACTION = "transaction"
    HISTORY = "history"
    CONTEXT = "context"
    NONE = "none"


class PostContext(BaseModel):
    """Conversation/post metadata used when the pair has no transaction yet."""

    post_id: Optional[str] = Field(None, description="Originating post")
    post_author_id: Optional[str] = Field(None, description="User who created the post (buyer)")
    conversation_initiator_id: Optional[str] = Field(None, description="User who messaged about the post (seller)")


class RoleAssignment(BaseModel):
    """Resolved role of a user towards a counterpart."""

    role: Role = Role.UNKNOWN
    source: RoleSource = RoleSource.NONE

    @computed_field
    @property
    def is_buyer(self) -> bool:
        return self.role is Role.BUYER

    @computed_field
    @property
    def is_seller(self) -> bool:
        return self.role is Role.SELLER
