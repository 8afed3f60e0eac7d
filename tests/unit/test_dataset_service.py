"""Unit tests for dataset tree traversal, time propagation and deletion."""

from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select

from dataset_ingest.dataset.collection import CollectionService, CreateCollectionRequest
from dataset_ingest.dataset.dataset import DatasetService
from dataset_ingest.db.schema import Collection, Dataset, DatasetImage, TrainingTask
from dataset_ingest.db.session import transaction
from dataset_ingest.errors import DatasetHierarchyError, DatasetNotFoundError

TEAM = "team-1"
OLD = datetime(2020, 1, 1)


@pytest.fixture()
def datasets(services) -> DatasetService:
    return DatasetService(services)


@pytest.fixture()
def make_dataset(services):
    def make(name: str, parent_id: str | None = None, team_id: str = TEAM) -> Dataset:
        with transaction(services.session_factory) as session:
            row = Dataset(team_id=team_id, name=name, parent_id=parent_id, vector_model="fake-embed", update_time=OLD)
            session.add(row)
        return row

    return make


@pytest.fixture()
def tree(make_dataset) -> dict[str, Dataset]:
    root = make_dataset("root")
    child = make_dataset("child", root.id)
    grandchild = make_dataset("grandchild", child.id)
    sibling = make_dataset("sibling", root.id)
    unrelated = make_dataset("unrelated")
    return {"root": root, "child": child, "grandchild": grandchild, "sibling": sibling, "unrelated": unrelated}


def _set_parent(services, dataset_id: str, parent_id: str) -> None:
    with transaction(services.session_factory) as session:
        session.get(Dataset, dataset_id).parent_id = parent_id


def _count(services, model) -> int:
    with services.session_factory() as session:
        return session.scalar(select(func.count()).select_from(model))


def _fill(services, dataset: Dataset) -> str:
    """Create a backup collection with two queued chunk tasks."""
    result = CollectionService(services).create_collection_and_insert_data(
        CreateCollectionRequest(
            team_id=dataset.team_id,
            dataset_id=dataset.id,
            name="faq.csv",
            raw_text="q1,a1\nq2,a2",
            process={"training_type": "backup"},
        )
    )
    return result.collection_id


class TestFindChildren:
    def test_breadth_first_from_the_root(self, datasets, tree) -> None:
        found = datasets.find_dataset_and_all_children(TEAM, tree["root"].id)
        names = [d.name for d in found]
        assert names[0] == "root"
        assert sorted(names[1:3]) == ["child", "sibling"]
        assert names[3] == "grandchild"
        assert "unrelated" not in names

    def test_cycle_terminates(self, services, datasets, tree) -> None:
        _set_parent(services, tree["root"].id, tree["grandchild"].id)
        found = datasets.find_dataset_and_all_children(TEAM, tree["root"].id)
        assert sorted(d.name for d in found) == ["child", "grandchild", "root", "sibling"]

    def test_other_team(self, datasets, tree) -> None:
        with pytest.raises(DatasetNotFoundError):
            datasets.find_dataset_and_all_children("team-2", tree["root"].id)


class TestUpdateTime:
    def test_touches_the_dataset_and_its_ancestors(self, services, datasets, tree) -> None:
        assert datasets.update_dataset_update_time(tree["grandchild"].id) == 3
        with services.session_factory() as session:
            times = {d.name: d.update_time for d in session.scalars(select(Dataset))}
        assert times["grandchild"] > OLD
        assert times["child"] == times["grandchild"] == times["root"]
        assert times["sibling"] == OLD
        assert times["unrelated"] == OLD

    def test_cycle_is_rejected(self, services, datasets, tree) -> None:
        _set_parent(services, tree["root"].id, tree["grandchild"].id)
        with pytest.raises(DatasetHierarchyError, match="Cycle"):
            datasets.update_dataset_update_time(tree["child"].id)
        with services.session_factory() as session:
            assert session.get(Dataset, tree["child"].id).update_time == OLD

    def test_depth_limit(self, datasets, tree) -> None:
        with pytest.raises(DatasetHierarchyError, match="deeper"):
            datasets.update_dataset_update_time(tree["grandchild"].id, max_depth=2)

    def test_dangling_parent_stops_the_walk(self, services, datasets, tree) -> None:
        _set_parent(services, tree["root"].id, "deleted-parent")
        assert datasets.update_dataset_update_time(tree["child"].id) == 2

    def test_unknown_dataset(self, datasets) -> None:
        with pytest.raises(DatasetNotFoundError):
            datasets.update_dataset_update_time("missing")


class TestDeleteDataset:
    def test_removes_the_subtree_and_its_content(self, services, datasets, tree, vector_store) -> None:
        for name in ("root", "grandchild", "unrelated"):
            _fill(services, tree[name])
        vector_store.insert([0.1], team_id=TEAM, dataset_id=tree["child"].id, collection_id="c-x")
        vector_store.insert([0.2], team_id=TEAM, dataset_id=tree["unrelated"].id, collection_id="c-y")

        removed = datasets.delete_dataset(TEAM, tree["root"].id)

        assert removed == 2
        with services.session_factory() as session:
            assert [d.name for d in session.scalars(select(Dataset))] == ["unrelated"]
            assert {c.dataset_id for c in session.scalars(select(Collection))} == {tree["unrelated"].id}
            assert {t.dataset_id for t in session.scalars(select(TrainingTask))} == {tree["unrelated"].id}
        assert [row["dataset_id"] for row in vector_store.rows.values()] == [tree["unrelated"].id]

    def test_relevant_data_keeps_dataset_rows(self, services, datasets, tree) -> None:
        _fill(services, tree["child"])
        assert datasets.delete_dataset_relevant_data(TEAM, [tree["child"].id]) == 1
        assert _count(services, Collection) == 0
        assert _count(services, Dataset) == 5

    def test_image_files_are_removed(self, services, datasets, tree) -> None:
        collections = CollectionService(services)
        image_id = collections.upload_image(TEAM, "scan.png", b"img")
        collections.create_collection_and_insert_data(
            CreateCollectionRequest(team_id=TEAM, dataset_id=tree["child"].id, name="scans", image_ids=[image_id])
        )
        with services.session_factory() as session:
            image_path = services.files.root / session.get(DatasetImage, image_id).path

        datasets.delete_dataset(TEAM, tree["root"].id)

        assert not image_path.exists()
        assert _count(services, DatasetImage) == 0

    def test_empty_list(self, datasets) -> None:
        assert datasets.delete_dataset_relevant_data(TEAM, []) == 0


def test_relabel_moves_rows_and_vectors(services, datasets, tree, vector_store) -> None:
    collection_id = _fill(services, tree["child"])
    vector_id = vector_store.insert([0.3], team_id=TEAM, dataset_id=tree["child"].id, collection_id=collection_id)

    moved = datasets.relabel_team([tree["child"].id], old_team_id=TEAM, new_team_id="team-2")

    assert moved == 1
    assert vector_store.rows[vector_id]["team_id"] == "team-2"
    with services.session_factory() as session:
        assert session.get(Dataset, tree["child"].id).team_id == "team-2"
        assert session.get(Collection, collection_id).team_id == "team-2"
        assert {t.team_id for t in session.scalars(select(TrainingTask))} == {"team-2"}
