"""Configuration management for the email event extractor.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from email_event_extractor.extraction.prompt import PROMPT_VERSION


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the EVENT_EXTRACTOR_ prefix (e.g., EVENT_EXTRACTOR_LOOKBACK_DAYS).
    """

    model_config = SettingsConfigDict(
        env_prefix="EVENT_EXTRACTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Run configuration
    scraper_identity: str = Field(
        default="me",
        description="Identity of the mailbox owner; namespaces the ignore ledger",
    )
    lookback_days: int = Field(
        default=60,
        ge=1,
        description="Only messages received within this many days are candidates",
    )
    max_root_depth: int = Field(
        default=64,
        ge=1,
        description="Maximum number of reply hops followed when resolving a thread root",
    )

    # Ollama Configuration
    ollama_host: str = Field(
        default="http://localhost:11434",
        description="Ollama API host URL",
    )
    screening_model: str = Field(
        default="llama3.1:8b",
        description="Cheap model deciding whether a message announces an event at all",
    )
    extraction_model: str = Field(
        default="llama3.1:70b",
        description="Model used to extract structured events from a message",
    )
    ollama_timeout: int = Field(
        default=60,
        description="Timeout for Ollama API requests in seconds",
    )
    max_retries: int = Field(
        default=2,
        description="Maximum number of retries for failed Ollama requests",
    )
    max_body_chars: int = Field(
        default=20_000,
        description="Message bodies are truncated to this many characters in prompts",
    )

    # Embeddings / Qdrant
    embedding_model: str = Field(
        default="all-minilm",
        description="Ollama embedding model used for event titles",
    )
    embedding_dimensions: int = Field(
        default=384,
        description="Vector size produced by the embedding model",
    )
    allow_deterministic_vectors: bool = Field(
        default=False,
        description=(
            "Use hash-seeded vectors instead of Ollama embeddings. "
            "Not semantically meaningful; for development only."
        ),
    )
    qdrant_location: str | None = Field(
        default=None,
        description="Qdrant local-mode location (':memory:' or a path). Overrides host/port.",
    )
    qdrant_host: str = Field(default="localhost", description="Qdrant server host")
    qdrant_port: int = Field(default=6333, description="Qdrant server port")
    qdrant_collection: str = Field(
        default="event_titles",
        description="Collection holding one point per distinct event title",
    )
    neighbor_count: int = Field(
        default=3,
        ge=1,
        description="Number of nearest title neighbours inspected when merging events",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API credentials file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access",
    )
    gmail_page_size: int = Field(
        default=500,
        description="Page size used when listing candidate messages",
    )

    # Store
    database_path: Path = Field(
        default=Path("events.sqlite3"),
        description="Path to the SQLite database holding messages, events and the ignore ledger",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @property
    def extractor_version(self) -> str:
        """Tag stored on processed messages.

        Changing the prompt contract or either model produces a new tag, so
        messages processed by an older extractor are rebuilt on the next run.
        """
        return f"{PROMPT_VERSION}:{self.screening_model}:{self.extraction_model}"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
