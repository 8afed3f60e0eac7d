"""
Vector: backend-agnostic vector storage with a cached team count.

Public surface
--------------
- :class:`VectorStoreAdapter`: what the rest of the pipeline calls.
- :class:`VectorStoreBase`: abstract backend (subclass for pgvector, etc.).
- :class:`ChromaVectorStore`, :class:`QdrantVectorStore`: bundled backends.
- :class:`VectorFilter`, :class:`MetadataFilter`, :class:`RecallHit`: data models.
- :func:`create_vector_adapter`: build the adapter from settings.
"""

from dataset_ingest.vector.base import VectorStoreBase
from dataset_ingest.vector.controller import InsertResult, VectorStoreAdapter
from dataset_ingest.vector.factory import create_vector_adapter, create_vector_store
from dataset_ingest.vector.models import MetadataFilter, RecallHit, StoredVector, VectorFilter

__all__ = [
    "ChromaVectorStore",
    "InsertResult",
    "MetadataFilter",
    "QdrantVectorStore",
    "RecallHit",
    "StoredVector",
    "VectorFilter",
    "VectorStoreAdapter",
    "VectorStoreBase",
    "create_vector_adapter",
    "create_vector_store",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import backends so chromadb / qdrant-client load only when used."""
    if name == "ChromaVectorStore":
        from dataset_ingest.vector.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    if name == "QdrantVectorStore":
        from dataset_ingest.vector.qdrant_store import QdrantVectorStore

        return QdrantVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
