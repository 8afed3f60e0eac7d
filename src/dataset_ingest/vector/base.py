"""Abstract base class for vector-store backends.

Adding a new backend (pgvector, Milvus, …) only requires subclassing
:class:`VectorStoreBase` and implementing the abstract methods. Callers go
through :class:`~dataset_ingest.vector.controller.VectorStoreAdapter` and
never see which backend is active.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from dataset_ingest.vector.models import MetadataFilter, RecallHit, StoredVector, VectorFilter


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Every stored vector carries ``team_id``, ``dataset_id`` and
    ``collection_id`` metadata.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    #: Backend can change ``team_id`` on stored vectors without re-inserting.
    supports_relabel: bool = False
    #: Backend can list stored vectors (needed to emulate relabel).
    supports_export: bool = False

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def insert(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_id: str,
        collection_id: str,
        vector_id: str | None = None,
    ) -> str:
        """Store one vector and return its id.

        The backend issues the id unless *vector_id* is given.
        """
        ...

    @abstractmethod
    def delete(self, where: VectorFilter) -> None:
        """Delete every vector matching *where*."""
        ...

    @abstractmethod
    def recall(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_ids: list[str],
        limit: int = 10,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RecallHit]:
        """Return up to *limit* matches, best first."""
        ...

    @abstractmethod
    def count(
        self,
        *,
        team_id: str | None = None,
        dataset_id: str | None = None,
        collection_id: str | None = None,
    ) -> int:
        """Count vectors matching every given id."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def relabel_team(self, old_team_id: str, new_team_id: str, dataset_ids: list[str]) -> int:
        """Move vectors to another team in place. Optional: raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support relabel")

    def export(self, where: VectorFilter) -> list[StoredVector]:
        """Return every vector matching *where*. Optional: raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support export")
