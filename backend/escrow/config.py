"""Configuration settings for the application."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "Student Services Escrow API"
    debug: bool = False

    # Transaction store: "sqlite", "rest" or "memory"
    store_backend: str = "sqlite"
    database_path: str = "escrow.db"
    create_tables: bool = True

    # PostgREST-style backend (used when store_backend/artifact_backend is "rest")
    rest_url: str = ""
    rest_api_key: str = ""
    rest_table: str = "transactions"
    rest_timeout_seconds: float = 10.0

    # Artifact (payment proof / work file) storage: "local", "rest" or "inline"
    artifact_backend: str = "local"
    artifact_root: str = "./storage"
    artifact_bucket: str = "transaction-files"

    # Payment request
    currency: str = "INR"
    memo_prefix: str = "SVIP"
    payment_expiry_hours: int = 24
    qr_scale: int = 10
    qr_border: int = 2

    # Synchronization
    poll_interval_seconds: float = 3.0

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
