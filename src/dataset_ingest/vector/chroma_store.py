"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

import chromadb

from dataset_ingest.vector.base import VectorStoreBase
from dataset_ingest.vector.models import (
    COLLECTION_KEY,
    DATASET_KEY,
    TEAM_KEY,
    MetadataFilter,
    RecallHit,
    StoredVector,
    VectorFilter,
)

logger = logging.getLogger(__name__)

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    client:
        A ready Chroma client. When omitted one is built from *host* /
        *path*: HTTP when *host* is set, persistent when *path* is set,
        in-process ephemeral otherwise.
    host, port:
        Chroma server address.
    path:
        Directory for a local persistent store.
    """

    supports_relabel = True
    supports_export = True

    def __init__(
        self,
        collection_name: str,
        *,
        client: Any | None = None,
        host: str = "",
        port: int = 8000,
        path: str = "",
    ) -> None:
        super().__init__(collection_name)
        if client is None:
            if host:
                client = chromadb.HttpClient(host=host, port=port)
            elif path:
                client = chromadb.PersistentClient(path=path)
            else:
                client = chromadb.EphemeralClient()
        self._client = client
        self._collection = self._client.get_or_create_collection(
            collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    # -- VectorStoreBase overrides --------------------------------------------

    def insert(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_id: str,
        collection_id: str,
        vector_id: str | None = None,
    ) -> str:
        vector_id = vector_id or uuid4().hex
        self._collection.add(
            ids=[vector_id],
            embeddings=[vector],
            metadatas=[{TEAM_KEY: team_id, DATASET_KEY: dataset_id, COLLECTION_KEY: collection_id}],
        )
        return vector_id

    def delete(self, where: VectorFilter) -> None:
        self._collection.delete(
            ids=where.ids or None,
            where=_build_chroma_where(where.to_metadata_filters()),
        )

    def recall(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_ids: list[str],
        limit: int = 10,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RecallHit]:
        scope = VectorFilter(team_id=team_id, dataset_ids=dataset_ids).to_metadata_filters()
        results = self._collection.query(
            query_embeddings=[vector],
            n_results=limit,
            where=_build_chroma_where(scope + list(filters or [])),
            include=["metadatas", "distances"],
        )

        ids = results.get("ids", [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        hits: list[RecallHit] = []
        for vector_id, meta, dist in zip(ids, metas, distances):
            meta = meta or {}
            # cosine space: distance = 1 - similarity
            hits.append(
                RecallHit(
                    id=vector_id,
                    score=1.0 - dist,
                    team_id=meta.get(TEAM_KEY),
                    dataset_id=meta.get(DATASET_KEY),
                    collection_id=meta.get(COLLECTION_KEY),
                    metadata=dict(meta),
                )
            )
        return hits

    def count(
        self,
        *,
        team_id: str | None = None,
        dataset_id: str | None = None,
        collection_id: str | None = None,
    ) -> int:
        filters = [
            MetadataFilter.equals(key, value)
            for key, value in ((TEAM_KEY, team_id), (DATASET_KEY, dataset_id), (COLLECTION_KEY, collection_id))
            if value is not None
        ]
        if not filters:
            return self._collection.count()
        result = self._collection.get(where=_build_chroma_where(filters), include=[])
        return len(result.get("ids", []))

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- optional capabilities ------------------------------------------------

    def relabel_team(self, old_team_id: str, new_team_id: str, dataset_ids: list[str]) -> int:
        where = VectorFilter(team_id=old_team_id, dataset_ids=dataset_ids)
        found = self._collection.get(
            where=_build_chroma_where(where.to_metadata_filters()),
            include=["metadatas"],
        )
        ids = found.get("ids", [])
        if not ids:
            return 0
        metadatas = [{**(meta or {}), TEAM_KEY: new_team_id} for meta in found.get("metadatas", [])]
        self._collection.update(ids=ids, metadatas=metadatas)
        return len(ids)

    def export(self, where: VectorFilter) -> list[StoredVector]:
        found = self._collection.get(
            ids=where.ids or None,
            where=_build_chroma_where(where.to_metadata_filters()),
            include=["metadatas", "embeddings"],
        )
        return [
            StoredVector(
                id=vector_id,
                vector=list(embedding),
                team_id=meta[TEAM_KEY],
                dataset_id=meta[DATASET_KEY],
                collection_id=meta[COLLECTION_KEY],
            )
            for vector_id, meta, embedding in zip(found["ids"], found["metadatas"], found["embeddings"])
        ]
