"""Turning chunks into persisted, vector-indexed data rows."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field

from dataset_ingest.ai.caller import ModelCaller
from dataset_ingest.ai.profiles import EmbeddingProfile, LLMProfile, get_embedding_profile, get_llm_profile
from dataset_ingest.chunking.splitter import split_text
from dataset_ingest.config import Settings
from dataset_ingest.db.schema import Dataset
from dataset_ingest.models import IndexEntry, IndexType
from dataset_ingest.vector.controller import VectorStoreAdapter
from dataset_ingest.vector.models import VectorFilter

logger = logging.getLogger(__name__)


def hash_raw_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def resolve_profiles(settings: Settings, dataset: Dataset) -> tuple[LLMProfile, EmbeddingProfile]:
    return (
        get_llm_profile(settings, dataset.agent_model),
        get_embedding_profile(settings, dataset.vector_model),
    )


def default_index_texts(q: str, a: str, index_size: int | None) -> list[str]:
    """The chunk's own text, split into pieces no longer than *index_size*."""
    text = f"{q}\n{a}" if a else q
    if not text.strip():
        return []
    if not index_size or len(text) <= index_size:
        return [text]
    return split_text(text, chunk_size=index_size, overlap_ratio=0.0)


def index_candidates(q: str, a: str, extra: Iterable[str], index_size: int | None) -> list[IndexEntry]:
    """Default indexes first, then custom ones; exact duplicates dropped."""
    entries: list[IndexEntry] = []
    seen: set[str] = set()
    for kind, texts in (
        (IndexType.default, default_index_texts(q, a, index_size)),
        (IndexType.custom, list(extra)),
    ):
        for text in texts:
            text = text.strip()
            if not text or text in seen:
                continue
            seen.add(text)
            entries.append(IndexEntry(type=kind, text=text))
    return entries


class EmbeddedIndexes(BaseModel):
    indexes: list[IndexEntry] = Field(default_factory=list)
    tokens: int = 0

    @property
    def vector_ids(self) -> list[str]:
        return [entry.data_id for entry in self.indexes if entry.data_id]

    def as_json(self) -> list[dict]:
        return [entry.model_dump(mode="json") for entry in self.indexes]


def embed_indexes(
    vectors: VectorStoreAdapter,
    model_caller: ModelCaller,
    candidates: Iterable[IndexEntry],
    *,
    model: str | None,
    team_id: str,
    dataset_id: str,
    collection_id: str,
    log_prefix: str = "",
) -> EmbeddedIndexes:
    """Embed and insert each candidate; failures are logged and skipped."""
    result = EmbeddedIndexes()
    for candidate in candidates:
        try:
            inserted = vectors.insert_text(
                candidate.text,
                model_caller=model_caller,
                model=model,
                team_id=team_id,
                dataset_id=dataset_id,
                collection_id=collection_id,
            )
        except Exception:
            logger.exception("%s Failed to embed index %r", log_prefix, candidate.text[:50])
            continue
        result.indexes.append(candidate.model_copy(update={"data_id": inserted.insert_id}))
        result.tokens += inserted.tokens
    return result


def discard_vectors(vectors: VectorStoreAdapter, team_id: str, vector_ids: list[str]) -> None:
    """Best-effort removal of vectors whose data row never got written."""
    if not vector_ids:
        return
    try:
        vectors.delete(VectorFilter(team_id=team_id, ids=vector_ids))
    except Exception:
        logger.exception("Failed to remove %d orphaned vectors", len(vector_ids))
