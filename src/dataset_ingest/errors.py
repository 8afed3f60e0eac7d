"""Exception hierarchy for the ingestion pipeline."""

from __future__ import annotations


class DatasetIngestError(Exception):
    """Base class for every error raised on purpose by this package."""


class QuotaExceededError(DatasetIngestError):
    """The team would exceed its vector index quota."""

    def __init__(self, team_id: str, used: int, requested: int, limit: int) -> None:
        super().__init__(
            f"Team {team_id} index quota exceeded: {used} used + {requested} requested > {limit}"
        )
        self.team_id = team_id
        self.used = used
        self.requested = requested
        self.limit = limit


class SourceConfigError(DatasetIngestError):
    """A collection's source descriptor is missing the fields needed to read it."""


class SourceReadError(DatasetIngestError):
    """The raw-text reader could not produce content for a source."""


class CollectionNotFoundError(DatasetIngestError):
    pass


class DatasetNotFoundError(DatasetIngestError):
    pass


class DatasetHierarchyError(DatasetIngestError):
    """Cycle or excessive depth in the dataset parent chain."""


class ModelNotFoundError(DatasetIngestError):
    pass
