"""Vector store adapter: the one entry point the pipeline uses for vectors.

Wraps a :class:`VectorStoreBase` backend and adds:

* embedding of text before insert (with bounded retry);
* a per-team count cache (TTL) that is bumped in place on insert and
  dropped through a throttle after deletes;
* relabel emulation for backends that cannot update ownership in place.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable

from cachetools import TTLCache
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from dataset_ingest.ai.caller import ModelCaller
from dataset_ingest.utils.throttle import Throttle
from dataset_ingest.vector.base import VectorStoreBase
from dataset_ingest.vector.models import MetadataFilter, RecallHit, VectorFilter

logger = logging.getLogger(__name__)

COUNT_CACHE_MAXSIZE = 10_000


class InsertResult(BaseModel):
    insert_id: str
    tokens: int = 0


class VectorStoreAdapter:
    """Backend-independent vector operations with a cached team count.

    Parameters
    ----------
    store:
        The active backend.
    count_cache_ttl:
        Seconds a cached team count stays valid.
    delete_debounce:
        Window coalescing cache invalidations caused by deletes.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        *,
        count_cache_ttl: float = 30 * 60,
        delete_debounce: float = 30.0,
    ) -> None:
        self._store = store
        self._cache: TTLCache[str, int] = TTLCache(maxsize=COUNT_CACHE_MAXSIZE, ttl=count_cache_ttl)
        self._cache_lock = threading.Lock()
        self._invalidate = Throttle(self._drop_count, delete_debounce)

    @property
    def store(self) -> VectorStoreBase:
        return self._store

    # -- count cache ------------------------------------------------------------

    def _drop_count(self, team_id: Hashable) -> None:
        with self._cache_lock:
            self._cache.pop(team_id, None)

    def _bump_count(self, team_id: str, delta: int = 1) -> None:
        with self._cache_lock:
            if team_id in self._cache:
                self._cache[team_id] = self._cache[team_id] + delta

    def cached_count(self, team_id: str) -> int | None:
        with self._cache_lock:
            return self._cache.get(team_id)

    # -- writes ---------------------------------------------------------------

    def insert(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_id: str,
        collection_id: str,
    ) -> str:
        insert_id = self._store.insert(
            vector, team_id=team_id, dataset_id=dataset_id, collection_id=collection_id
        )
        self._bump_count(team_id)
        return insert_id

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.5, max=4), reraise=True)
    def insert_text(
        self,
        text: str,
        *,
        model_caller: ModelCaller,
        model: str | None,
        team_id: str,
        dataset_id: str,
        collection_id: str,
    ) -> InsertResult:
        """Embed *text* and store the vector; returns the id and tokens used."""
        embedding = model_caller.embed(text, model)
        insert_id = self.insert(
            embedding.vector, team_id=team_id, dataset_id=dataset_id, collection_id=collection_id
        )
        return InsertResult(insert_id=insert_id, tokens=embedding.tokens)

    def delete(self, where: VectorFilter) -> None:
        self._store.delete(where)
        self._invalidate(where.team_id)

    def relabel_team(self, old_team_id: str, new_team_id: str, dataset_ids: list[str]) -> int:
        """Move vectors of *dataset_ids* from one team to another.

        Returns the number migrated; ``0`` with a warning when the backend
        can neither relabel nor export.
        """
        if not dataset_ids:
            return 0

        if self._store.supports_relabel:
            moved = self._store.relabel_team(old_team_id, new_team_id, dataset_ids)
        elif self._store.supports_export:
            moved = self._relabel_by_reinsert(old_team_id, new_team_id, dataset_ids)
        else:
            logger.warning(
                "Vector backend %s cannot relabel; %d dataset(s) left under team %s",
                type(self._store).__name__,
                len(dataset_ids),
                old_team_id,
            )
            return 0

        self._drop_count(old_team_id)
        self._drop_count(new_team_id)
        return moved

    def _relabel_by_reinsert(self, old_team_id: str, new_team_id: str, dataset_ids: list[str]) -> int:
        where = VectorFilter(team_id=old_team_id, dataset_ids=dataset_ids)
        stored = self._store.export(where)
        if not stored:
            return 0
        self._store.delete(VectorFilter(team_id=old_team_id, ids=[v.id for v in stored]))
        for v in stored:
            self._store.insert(
                v.vector,
                team_id=new_team_id,
                dataset_id=v.dataset_id,
                collection_id=v.collection_id,
                vector_id=v.id,
            )
        return len(stored)

    # -- reads ----------------------------------------------------------------

    def recall(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_ids: list[str],
        limit: int = 10,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RecallHit]:
        return self._store.recall(
            vector, team_id=team_id, dataset_ids=dataset_ids, limit=limit, filters=filters
        )

    def count_by_team(self, team_id: str) -> int:
        cached = self.cached_count(team_id)
        if cached is not None:
            return cached
        count = self._store.count(team_id=team_id)
        with self._cache_lock:
            self._cache[team_id] = count
        return count

    def count_by_dataset(self, dataset_id: str) -> int:
        return self._store.count(dataset_id=dataset_id)

    def count_by_collection(self, collection_id: str) -> int:
        return self._store.count(collection_id=collection_id)

    def health_check(self) -> bool:
        return self._store.health_check()

    def close(self) -> None:
        """Run pending cache invalidations."""
        self._invalidate.flush()
