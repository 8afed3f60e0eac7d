"""Dataset tree traversal, time propagation and dataset-level deletion."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update

from dataset_ingest.dataset.collection import CollectionService, DeletePlan
from dataset_ingest.dataset.images import collection_image_paths
from dataset_ingest.db.schema import Collection, Dataset, DatasetData, DatasetImage, TrainingTask, utcnow
from dataset_ingest.db.session import transaction
from dataset_ingest.errors import DatasetHierarchyError, DatasetNotFoundError

if TYPE_CHECKING:
    from dataset_ingest.services import Services

logger = logging.getLogger(__name__)

MAX_PARENT_DEPTH = 50


class DatasetService:
    """Operations that span a dataset and everything below it.

    Parameters
    ----------
    services:
        Shared collaborators.
    collections:
        Used for the deletion fan-out; built from *services* when omitted.
    """

    def __init__(self, services: Services, collections: CollectionService | None = None) -> None:
        self.services = services
        self.collections = collections or CollectionService(services)

    def get_dataset(self, dataset_id: str, team_id: str | None = None) -> Dataset:
        with self.services.session_factory() as session:
            dataset = session.get(Dataset, dataset_id)
        if dataset is None or (team_id and dataset.team_id != team_id):
            raise DatasetNotFoundError(dataset_id)
        return dataset

    def find_dataset_and_all_children(self, team_id: str, dataset_id: str) -> list[Dataset]:
        """The dataset followed by every descendant, breadth first.

        Each dataset appears once even if the parent links form a cycle.
        """
        root = self.get_dataset(dataset_id, team_id)
        found = [root]
        visited = {root.id}
        frontier = [root.id]
        with self.services.session_factory() as session:
            while frontier:
                children = session.scalars(
                    select(Dataset).where(Dataset.team_id == team_id, Dataset.parent_id.in_(frontier))
                ).all()
                frontier = []
                for child in children:
                    if child.id in visited:
                        continue
                    visited.add(child.id)
                    found.append(child)
                    frontier.append(child.id)
        return found

    def update_dataset_update_time(self, dataset_id: str, *, max_depth: int = MAX_PARENT_DEPTH) -> int:
        """Touch ``update_time`` on the dataset and each of its ancestors.

        Returns the number of datasets updated.

        Raises
        ------
        DatasetHierarchyError
            The parent chain loops back on itself or is deeper than *max_depth*.
        """
        now = utcnow()
        chain: list[str] = []
        seen: set[str] = set()
        with transaction(self.services.session_factory) as session:
            current: str | None = dataset_id
            while current:
                if current in seen:
                    raise DatasetHierarchyError(f"Cycle in dataset parents at {current}")
                if len(chain) >= max_depth:
                    raise DatasetHierarchyError(f"Dataset {dataset_id} is nested deeper than {max_depth}")
                seen.add(current)
                row = session.get(Dataset, current)
                if row is None:
                    if not chain:
                        raise DatasetNotFoundError(dataset_id)
                    break
                chain.append(current)
                current = row.parent_id
            if chain:
                session.execute(update(Dataset).where(Dataset.id.in_(chain)).values(update_time=now))
        return len(chain)

    def delete_dataset_relevant_data(self, team_id: str, dataset_ids: Sequence[str]) -> int:
        """Remove every collection, task, data row, vector, image and file of the datasets.

        The dataset rows themselves are left to the caller. Returns the
        number of collections removed.
        """
        dataset_ids = list(dict.fromkeys(dataset_ids))
        if not dataset_ids:
            return 0
        with self.services.session_factory() as session:
            collections = session.execute(
                select(Collection.id, Collection.file_id, Collection.related_img_id).where(
                    Collection.team_id == team_id, Collection.dataset_id.in_(dataset_ids)
                )
            ).all()
            collection_ids = [row.id for row in collections]
            related_img_ids = [row.related_img_id for row in collections if row.related_img_id]
            image_paths = collection_image_paths(
                session, team_id=team_id, collection_ids=collection_ids, related_ids=related_img_ids
            )

        self.collections.purge(
            DeletePlan(
                team_id=team_id,
                dataset_ids=dataset_ids,
                collection_ids=collection_ids,
                file_ids=[row.file_id for row in collections if row.file_id],
                related_img_ids=related_img_ids,
                image_paths=image_paths,
                whole_datasets=True,
            )
        )
        logger.info("Cleared %d datasets of team %s", len(dataset_ids), team_id)
        return len(collections)

    def delete_dataset(self, team_id: str, dataset_id: str) -> int:
        """Delete a dataset, its descendants and all their content."""
        datasets = self.find_dataset_and_all_children(team_id, dataset_id)
        ids = [d.id for d in datasets]
        removed = self.delete_dataset_relevant_data(team_id, ids)
        with transaction(self.services.session_factory) as session:
            session.execute(delete(Dataset).where(Dataset.team_id == team_id, Dataset.id.in_(ids)))
        logger.info("Deleted dataset %s with %d descendants", dataset_id, len(ids) - 1)
        return removed

    def relabel_team(self, dataset_ids: Sequence[str], *, old_team_id: str, new_team_id: str) -> int:
        """Move datasets (rows and vectors) from one team to another."""
        dataset_ids = list(dataset_ids)
        moved = self.services.vectors.relabel_team(old_team_id, new_team_id, dataset_ids)
        with transaction(self.services.session_factory) as session:
            session.execute(
                update(Dataset)
                .where(Dataset.team_id == old_team_id, Dataset.id.in_(dataset_ids))
                .values(team_id=new_team_id)
            )
            for model in (Collection, DatasetData, TrainingTask, DatasetImage):
                session.execute(
                    update(model)
                    .where(model.team_id == old_team_id, model.dataset_id.in_(dataset_ids))
                    .values(team_id=new_team_id)
                )
        return moved
