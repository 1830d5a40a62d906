from .transaction import (
    LOCAL_ID_PREFIX,
    Action,
    Step,
    Transaction,
    TransactionStatus,
)
from .role import PostContext, Role, RoleAssignment, RoleSource
from .artifact import ArtifactUpload
from .api import (
    ApproveRequest,
    DisputeRequest,
    ErrorResponse,
    InitiateRequest,
    TransactionView,
)

__all__ = [
    "LOCAL_ID_PREFIX",
    "Action",
    "Step",
    "Transaction",
    "TransactionStatus",
    "PostContext",
    "Role",
    "RoleAssignment",
    "RoleSource",
    "ArtifactUpload",
    "ApproveRequest",
    "DisputeRequest",
    "ErrorResponse",
    "InitiateRequest",
    "TransactionView",
]
