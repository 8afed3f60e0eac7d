"""Build the configured vector backend."""

from __future__ import annotations

import logging

from dataset_ingest.config import Settings
from dataset_ingest.vector.base import VectorStoreBase
from dataset_ingest.vector.controller import VectorStoreAdapter

logger = logging.getLogger(__name__)


def resolve_backend(settings: Settings) -> str:
    """VECTOR_BACKEND override → QDRANT_URL → chroma."""
    if settings.vector_backend:
        backend = settings.vector_backend.strip().lower()
        if backend not in {"qdrant", "chroma"}:
            raise ValueError(f"Unknown vector backend: {settings.vector_backend!r}")
        return backend
    if settings.qdrant_url:
        return "qdrant"
    return "chroma"


def create_vector_store(settings: Settings) -> VectorStoreBase:
    backend = resolve_backend(settings)
    logger.info("Using %s vector backend", backend)

    if backend == "qdrant":
        from dataset_ingest.vector.qdrant_store import QdrantVectorStore

        return QdrantVectorStore(
            settings.qdrant_collection,
            vector_size=settings.embedding_dimension,
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
        )

    from dataset_ingest.vector.chroma_store import ChromaVectorStore

    return ChromaVectorStore(
        settings.chroma_collection,
        host=settings.chroma_host,
        port=settings.chroma_port,
        path=settings.chroma_path,
    )


def create_vector_adapter(settings: Settings, store: VectorStoreBase | None = None) -> VectorStoreAdapter:
    return VectorStoreAdapter(
        store or create_vector_store(settings),
        count_cache_ttl=settings.vector_count_cache_ttl,
        delete_debounce=settings.vector_count_delete_debounce,
    )
