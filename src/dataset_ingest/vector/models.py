"""Value objects exchanged with vector-store backends."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

TEAM_KEY = "team_id"
DATASET_KEY = "dataset_id"
COLLECTION_KEY = "collection_id"


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"collection_id"``).
    operator:
        Comparison operator: one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class VectorFilter(BaseModel):
    """Ownership filter used by delete / relabel.

    ``team_id`` is always required; the optional lists narrow the match.
    An empty list is treated the same as ``None``.
    """

    team_id: str
    dataset_ids: list[str] | None = None
    collection_ids: list[str] | None = None
    ids: list[str] | None = None

    def to_metadata_filters(self) -> list[MetadataFilter]:
        filters = [MetadataFilter.equals(TEAM_KEY, self.team_id)]
        if self.dataset_ids:
            filters.append(MetadataFilter.one_of(DATASET_KEY, self.dataset_ids))
        if self.collection_ids:
            filters.append(MetadataFilter.one_of(COLLECTION_KEY, self.collection_ids))
        return filters


class RecallHit(BaseModel):
    """One ranked match returned by :meth:`VectorStoreBase.recall`."""

    id: str
    score: float
    team_id: str | None = None
    dataset_id: str | None = None
    collection_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StoredVector(BaseModel):
    """A vector read back from a backend, used for relabel emulation."""

    id: str
    vector: list[float]
    team_id: str
    dataset_id: str
    collection_id: str
