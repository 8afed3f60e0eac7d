"""Training task ledger: the persisted work queue behind every worker.

A worker wins a task with a single conditional ``UPDATE``: the row must
still match ``mode``, ``retry_count > 0`` and ``lock_time <= now - lease``
at the moment of the write. Whoever's update touches the row owns it
until the lease runs out; everyone else sees ``rowcount == 0``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from dataset_ingest.db.schema import FAR_FUTURE, TrainingTask, utcnow
from dataset_ingest.db.session import transaction
from dataset_ingest.models import Chunk, TrainingMode

logger = logging.getLogger(__name__)

DEFAULT_LEASES: dict[TrainingMode, timedelta] = {
    TrainingMode.parse: timedelta(minutes=20),
    TrainingMode.chunk: timedelta(minutes=5),
    TrainingMode.index_enhance: timedelta(minutes=10),
}
FAILED_LOCK_OFFSET = timedelta(minutes=1)


class ClaimConflict(Exception):
    """Another worker leased the candidate row first."""


class TrainingLedger:
    """Enqueue, claim and settle :class:`TrainingTask` rows.

    Parameters
    ----------
    session_factory:
        Opens sessions for operations that are not given one.
    retry_count:
        Attempts a new task gets; each claim uses one.
    leases:
        Per-mode lease windows.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        retry_count: int = 5,
        leases: Mapping[TrainingMode, timedelta] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.retry_count = retry_count
        self.leases = {**DEFAULT_LEASES, **(leases or {})}

    # -- enqueue ---------------------------------------------------------------

    def push_data_list(
        self,
        session: Session,
        *,
        team_id: str,
        dataset_id: str,
        collection_id: str,
        bill_id: str | None,
        chunks: Sequence[Chunk],
        index_size: int | None = None,
        auto_indexes: bool = False,
        auto_indexes_model: str | None = None,
        auto_indexes_size: int | None = None,
    ) -> int:
        """Add one ``chunk`` task per chunk; list position becomes ``chunk_index``.

        Chunks with neither text nor an image are skipped (their position
        is still consumed so ordering stays stable).
        """
        rows = [
            TrainingTask(
                team_id=team_id,
                dataset_id=dataset_id,
                collection_id=collection_id,
                bill_id=bill_id,
                mode=TrainingMode.chunk.value,
                q=chunk.q,
                a=chunk.a,
                chunk_index=position,
                indexes=list(chunk.indexes),
                image_id=chunk.image_id,
                index_size=index_size,
                auto_indexes=auto_indexes,
                auto_indexes_model=auto_indexes_model,
                auto_indexes_size=auto_indexes_size,
                retry_count=self.retry_count,
            )
            for position, chunk in enumerate(chunks)
            if chunk.q.strip() or chunk.image_id
        ]
        session.add_all(rows)
        session.flush()
        return len(rows)

    def push_parse_task(
        self,
        session: Session,
        *,
        team_id: str,
        dataset_id: str,
        collection_id: str,
        bill_id: str | None,
        auto_indexes: bool = False,
        auto_indexes_model: str | None = None,
        auto_indexes_size: int | None = None,
    ) -> str:
        task = TrainingTask(
            team_id=team_id,
            dataset_id=dataset_id,
            collection_id=collection_id,
            bill_id=bill_id,
            mode=TrainingMode.parse.value,
            auto_indexes=auto_indexes,
            auto_indexes_model=auto_indexes_model,
            auto_indexes_size=auto_indexes_size,
            retry_count=self.retry_count,
        )
        session.add(task)
        session.flush()
        return task.id

    def push_index_enhance_tasks(
        self,
        session: Session,
        *,
        team_id: str,
        dataset_id: str,
        collection_id: str,
        bill_id: str | None,
        data_ids: Sequence[str],
        model: str | None,
        size: int,
    ) -> int:
        """One ``indexEnhance`` task per data row."""
        session.add_all(
            TrainingTask(
                team_id=team_id,
                dataset_id=dataset_id,
                collection_id=collection_id,
                bill_id=bill_id,
                mode=TrainingMode.index_enhance.value,
                data_ids=[data_id],
                auto_indexes_model=model,
                auto_indexes_size=size,
                retry_count=self.retry_count,
            )
            for data_id in data_ids
        )
        session.flush()
        return len(data_ids)

    # -- claim -----------------------------------------------------------------

    def _try_lease(self, session: Session, task_id: str, mode: TrainingMode, threshold: datetime, now: datetime) -> bool:
        result = session.execute(
            update(TrainingTask)
            .where(
                TrainingTask.id == task_id,
                TrainingTask.mode == mode.value,
                TrainingTask.retry_count > 0,
                TrainingTask.lock_time <= threshold,
            )
            .values(lock_time=now, retry_count=TrainingTask.retry_count - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def claim(
        self,
        mode: TrainingMode,
        lease: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> TrainingTask | None:
        """Lease the oldest claimable task of *mode*.

        Returns ``None`` when nothing is claimable.

        Raises
        ------
        ClaimConflict
            The candidate was leased by someone else between select and update.
        """
        now = now or utcnow()
        threshold = now - (lease or self.leases[mode])

        with self._session_factory.begin() as session:
            candidate = session.scalar(
                select(TrainingTask.id)
                .where(
                    TrainingTask.mode == mode.value,
                    TrainingTask.retry_count > 0,
                    TrainingTask.lock_time <= threshold,
                )
                .order_by(TrainingTask.create_time, TrainingTask.chunk_index)
                .limit(1)
            )
            if candidate is None:
                return None
            if not self._try_lease(session, candidate, mode, threshold, now):
                raise ClaimConflict(candidate)
            return session.get(TrainingTask, candidate)

    # -- settle ----------------------------------------------------------------

    def delete(self, task_id: str, session: Session | None = None) -> None:
        with transaction(self._session_factory, session) as s:
            s.execute(delete(TrainingTask).where(TrainingTask.id == task_id))

    def mark_failed(self, task_id: str, error_msg: str, *, now: datetime | None = None) -> None:
        """Record the error and rewind the lease by a minute so the task is retried early."""
        self._park(task_id, error_msg, (now or utcnow()) - FAILED_LOCK_OFFSET)

    def lock_forever(self, task_id: str, error_msg: str) -> None:
        """Record the error and park the task until an operator intervenes."""
        self._park(task_id, error_msg, FAR_FUTURE)

    def _park(self, task_id: str, error_msg: str, lock_time: datetime) -> None:
        with transaction(self._session_factory) as session:
            session.execute(
                update(TrainingTask)
                .where(TrainingTask.id == task_id)
                .values(error_msg=error_msg, lock_time=lock_time)
            )

    def delete_for_collections(self, session: Session, team_id: str, collection_ids: Sequence[str]) -> int:
        result = session.execute(
            delete(TrainingTask)
            .where(TrainingTask.team_id == team_id, TrainingTask.collection_id.in_(list(collection_ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def delete_for_datasets(self, session: Session, team_id: str, dataset_ids: Sequence[str]) -> int:
        result = session.execute(
            delete(TrainingTask)
            .where(TrainingTask.team_id == team_id, TrainingTask.dataset_id.in_(list(dataset_ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # -- inspect ---------------------------------------------------------------

    def list_for_collection(self, collection_id: str) -> list[TrainingTask]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(TrainingTask)
                    .where(TrainingTask.collection_id == collection_id)
                    .order_by(TrainingTask.mode, TrainingTask.chunk_index)
                )
            )

    def count_for_collection(self, collection_id: str) -> int:
        with self._session_factory() as session:
            return session.scalar(
                select(func.count()).select_from(TrainingTask).where(TrainingTask.collection_id == collection_id)
            ) or 0
