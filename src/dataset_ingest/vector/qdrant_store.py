"""Qdrant implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    HasIdCondition,
    MatchAny,
    MatchExcept,
    MatchValue,
    PointStruct,
    Range,
    VectorParams,
)

from dataset_ingest.vector.base import VectorStoreBase
from dataset_ingest.vector.models import (
    COLLECTION_KEY,
    DATASET_KEY,
    TEAM_KEY,
    MetadataFilter,
    RecallHit,
    VectorFilter,
)

logger = logging.getLogger(__name__)

_RANGE_OPS = {"gt", "gte", "lt", "lte"}


def _condition(f: MetadataFilter) -> FieldCondition:
    if f.operator == "eq":
        return FieldCondition(key=f.field, match=MatchValue(value=f.value))
    if f.operator == "in":
        return FieldCondition(key=f.field, match=MatchAny(any=list(f.value)))
    if f.operator == "nin":
        return FieldCondition(key=f.field, match=MatchExcept(**{"except": list(f.value)}))
    if f.operator in _RANGE_OPS:
        return FieldCondition(key=f.field, range=Range(**{f.operator: f.value}))
    raise ValueError(f"Unsupported filter operator: {f.operator!r}")


def _build_qdrant_filter(filters: list[MetadataFilter], ids: list[str] | None = None) -> Filter | None:
    """Convert :class:`MetadataFilter` objects to a Qdrant ``Filter``.

    ``ne`` is expressed as a ``must_not`` equality.
    """
    must: list[Any] = []
    must_not: list[Any] = []
    for f in filters:
        if f.operator == "ne":
            must_not.append(FieldCondition(key=f.field, match=MatchValue(value=f.value)))
        else:
            must.append(_condition(f))
    if ids:
        must.append(HasIdCondition(has_id=list(ids)))
    if not must and not must_not:
        return None
    return Filter(must=must or None, must_not=must_not or None)


class QdrantVectorStore(VectorStoreBase):
    """Qdrant-backed vector store.

    Payload carries the three ownership ids; relabel is an in-place
    ``set_payload``.

    Parameters
    ----------
    collection_name:
        Qdrant collection, created on first use with cosine distance.
    vector_size:
        Dimension used when the collection has to be created.
    client:
        A ready :class:`QdrantClient`; built from *url* / *api_key* otherwise.
    """

    supports_relabel = True

    def __init__(
        self,
        collection_name: str,
        *,
        vector_size: int,
        client: QdrantClient | None = None,
        url: str = "",
        api_key: str = "",
    ) -> None:
        super().__init__(collection_name)
        if client is None:
            client = QdrantClient(url=url or None, api_key=api_key or None)
        self._client = client
        if not self._client.collection_exists(collection_name):
            logger.info("Creating Qdrant collection %s (dim=%d)", collection_name, vector_size)
            self._client.create_collection(
                collection_name=collection_name,
                vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
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
        point_id = vector_id or str(uuid4())
        self._client.upsert(
            collection_name=self.collection_name,
            points=[
                PointStruct(
                    id=point_id,
                    vector=vector,
                    payload={TEAM_KEY: team_id, DATASET_KEY: dataset_id, COLLECTION_KEY: collection_id},
                )
            ],
        )
        return point_id

    def delete(self, where: VectorFilter) -> None:
        self._client.delete(
            collection_name=self.collection_name,
            points_selector=FilterSelector(
                filter=_build_qdrant_filter(where.to_metadata_filters(), where.ids),
            ),
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
        response = self._client.query_points(
            collection_name=self.collection_name,
            query=vector,
            query_filter=_build_qdrant_filter(scope + list(filters or [])),
            limit=limit,
            with_payload=True,
        )
        hits: list[RecallHit] = []
        for point in response.points:
            payload = point.payload or {}
            hits.append(
                RecallHit(
                    id=str(point.id),
                    score=point.score,
                    team_id=payload.get(TEAM_KEY),
                    dataset_id=payload.get(DATASET_KEY),
                    collection_id=payload.get(COLLECTION_KEY),
                    metadata=dict(payload),
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
        result = self._client.count(
            collection_name=self.collection_name,
            count_filter=_build_qdrant_filter(filters),
            exact=True,
        )
        return result.count

    def health_check(self) -> bool:
        try:
            self._client.get_collections()
            return True
        except Exception:
            logger.warning("Qdrant health-check failed", exc_info=True)
            return False

    # -- optional capabilities ------------------------------------------------

    def relabel_team(self, old_team_id: str, new_team_id: str, dataset_ids: list[str]) -> int:
        selector = _build_qdrant_filter(
            VectorFilter(team_id=old_team_id, dataset_ids=dataset_ids).to_metadata_filters()
        )
        moved = self._client.count(
            collection_name=self.collection_name,
            count_filter=selector,
            exact=True,
        ).count
        if moved:
            self._client.set_payload(
                collection_name=self.collection_name,
                payload={TEAM_KEY: new_team_id},
                points=selector,
            )
        return moved
