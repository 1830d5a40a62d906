from .base import ArtifactStore, TransactionStore
from .database import SqliteTransactionStore
from .memory import InMemoryTransactionStore
from .rest import RestArtifactStore, RestTransactionStore
from .artifacts import LocalArtifactStore
from .fallback import FallbackArtifactStore, FallbackTransactionStore
from .factory import get_artifact_store, get_transaction_store

__all__ = [
    "ArtifactStore",
    "TransactionStore",
    "SqliteTransactionStore",
    "InMemoryTransactionStore",
    "RestArtifactStore",
    "RestTransactionStore",
    "LocalArtifactStore",
    "FallbackArtifactStore",
    "FallbackTransactionStore",
    "get_artifact_store",
    "get_transaction_store",
]
