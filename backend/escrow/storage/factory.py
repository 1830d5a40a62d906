"""Factory for creating stores from settings."""
from escrow.config import Settings, settings as default_settings
from escrow.storage.artifacts import LocalArtifactStore
from escrow.storage.base import ArtifactStore, TransactionStore
from escrow.storage.database import SqliteTransactionStore
from escrow.storage.fallback import FallbackArtifactStore, FallbackTransactionStore
from escrow.storage.memory import InMemoryTransactionStore
from escrow.storage.rest import RestArtifactStore, RestTransactionStore


def get_transaction_store(settings: Settings = None) -> FallbackTransactionStore:
    """
    Create the transaction store selected by ``settings.store_backend``.

    The store is always wrapped in the fallback adapter, so an unprovisioned
    backend degrades to session-local transactions.

    Args:
        settings: Application settings (defaults to the global settings)

    Returns:
        FallbackTransactionStore around "sqlite", "rest" or "memory"
    """
    settings = settings or default_settings
    backend = settings.store_backend.lower()
    if backend == "sqlite":
        primary: TransactionStore = SqliteTransactionStore(
            settings.database_path,
            create_tables=settings.create_tables,
        )
    elif backend == "rest":
        primary = RestTransactionStore(
            settings.rest_url,
            api_key=settings.rest_api_key,
            table=settings.rest_table,
            timeout=settings.rest_timeout_seconds,
        )
    elif backend == "memory":
        primary = InMemoryTransactionStore()
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")
    return FallbackTransactionStore(primary)


def get_artifact_store(settings: Settings = None) -> FallbackArtifactStore:
    """Create the artifact store selected by ``settings.artifact_backend``."""
    settings = settings or default_settings
    backend = settings.artifact_backend.lower()
    if backend == "local":
        primary: ArtifactStore = LocalArtifactStore(settings.artifact_root, settings.artifact_bucket)
    elif backend == "rest":
        primary = RestArtifactStore(
            settings.rest_url,
            api_key=settings.rest_api_key,
            bucket=settings.artifact_bucket,
        )
    elif backend == "inline":
        primary = None
    else:
        raise ValueError(f"Unknown artifact backend: {settings.artifact_backend}")
    return FallbackArtifactStore(primary)
