"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    log_level: str = "INFO"

    # HTTP API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Relational store (ledger, collections, data rows, bills)
    database_url: str = Field(
        default="sqlite:///./dataset_ingest.db",
        description="SQLAlchemy database URL",
    )

    # LLM
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="Default completion model")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for the LLM API. Leave empty to use OpenAI cloud. "
            "Set to any OpenAI-compatible endpoint for self-hosted models."
        ),
    )
    llm_max_context: int = 16000
    llm_max_response: int = 4000

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_max_tokens: int = 512
    embedding_dimension: int = 384

    # Vector store; the first configured backend wins:
    # VECTOR_BACKEND override, then QDRANT_URL, then chroma.
    vector_backend: str = Field(default="", description="Force one of: qdrant, chroma")
    qdrant_url: str = ""
    qdrant_api_key: str = ""
    qdrant_collection: str = "dataset_vectors"
    chroma_host: str = ""
    chroma_port: int = 8000
    chroma_path: str = ""
    chroma_collection: str = "dataset_vectors"

    # Vector count cache
    vector_count_cache_ttl: int = Field(default=30 * 60, description="Seconds a team vector count stays cached")
    vector_count_delete_debounce: float = Field(
        default=30.0, description="Window in seconds that coalesces cache invalidations after deletes"
    )

    # Training ledger / workers
    training_retry_count: int = 5
    parse_lease_minutes: int = 20
    chunk_lease_minutes: int = 5
    index_enhance_lease_minutes: int = 10
    claim_retry_delay: float = Field(default=0.5, description="Back-off in seconds after a failed claim")
    max_tasks_per_run: int = Field(default=100, description="Upper bound of tasks one worker invocation handles")
    worker_poll_interval: float = 5.0

    # Processing
    team_max_dataset_index: int = Field(default=0, description="Per-team vector quota (0 = unlimited)")
    paragraph_ai_enabled: bool = False
    default_auto_indexes_size: int = 3
    max_enhance_batch: int = 100
    upload_dir: str = "./uploads"
    image_expire_hours: int = 24

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: entry points only; library code receives settings explicitly.
settings = Settings()
