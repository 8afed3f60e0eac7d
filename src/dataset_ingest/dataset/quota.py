"""Team vector-index quota checks.

The check is advisory: it reads the (possibly cached) team count before
enqueueing, so concurrent enqueues may overshoot the limit slightly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from dataset_ingest.errors import QuotaExceededError
from dataset_ingest.models import Chunk
from dataset_ingest.vector.controller import VectorStoreAdapter

logger = logging.getLogger(__name__)


def predict_insert_count(chunks: Iterable[Chunk], *, auto_indexes_size: int = 0) -> int:
    """Vectors a chunk list will produce: one default index plus its extra indexes.

    *auto_indexes_size* is added per chunk when generated indexes are still
    to come (auto indexing done later by a worker).
    """
    return sum(1 + len(chunk.indexes) + auto_indexes_size for chunk in chunks)


def check_team_index_limit(
    vectors: VectorStoreAdapter,
    team_id: str,
    insert_len: int,
    limit: int,
) -> None:
    """Raise :class:`QuotaExceededError` if *insert_len* more vectors would exceed *limit*.

    A non-positive *limit* means unlimited.
    """
    if limit <= 0 or insert_len <= 0:
        return
    used = vectors.count_by_team(team_id)
    if used + insert_len > limit:
        logger.info("Team %s over index quota (%d + %d > %d)", team_id, used, insert_len, limit)
        raise QuotaExceededError(team_id, used, insert_len, limit)
