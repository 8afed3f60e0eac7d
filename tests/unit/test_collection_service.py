"""Unit tests for collection creation, sync processing, deletion and enhance requests."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from dataset_ingest.dataset.collection import CollectionService, CreateCollectionRequest, next_sync_time
from dataset_ingest.db.schema import (
    Collection,
    Dataset,
    DatasetData,
    DatasetImage,
    TrainingTask,
    UsageBill,
    UsageItem,
    utcnow,
)
from dataset_ingest.errors import (
    CollectionNotFoundError,
    DatasetNotFoundError,
    ModelNotFoundError,
    QuotaExceededError,
    SourceReadError,
)
from dataset_ingest.models import CollectionType, RawTextResult, TrainingMode
from dataset_ingest.training import ChunkWorker

BACKUP_CSV = "q1,a1\nq2,a2\nq3,a3"


@pytest.fixture()
def service(services) -> CollectionService:
    return CollectionService(services)


def _request(dataset, **fields) -> CreateCollectionRequest:
    return CreateCollectionRequest(team_id=dataset.team_id, dataset_id=dataset.id, name="notes.txt", **fields)


def _count(services, model, *where) -> int:
    with services.session_factory() as session:
        return session.scalar(select(func.count()).select_from(model).where(*where))


def _tasks(services) -> list[TrainingTask]:
    with services.session_factory() as session:
        return list(session.scalars(select(TrainingTask).order_by(TrainingTask.chunk_index)))


# ── Create ──────────────────────────────────────────────────────────────


class TestCreateCollection:
    def test_raw_text_enqueues_chunk_tasks(self, services, service, dataset) -> None:
        result = service.create_collection_and_insert_data(
            _request(dataset, raw_text=BACKUP_CSV, process={"training_type": "backup"})
        )

        assert result.insert_len == 3
        assert result.parse_task_id is None
        tasks = _tasks(services)
        assert [(t.q, t.a, t.chunk_index) for t in tasks] == [("q1", "a1", 0), ("q2", "a2", 1), ("q3", "a3", 2)]
        assert all(t.bill_id == result.bill_id for t in tasks)
        collection = service.get_collection(result.collection_id, dataset.team_id)
        assert collection.process_config["training_type"] == "backup"
        assert collection.raw_text_length == len(BACKUP_CSV)

    def test_file_without_text_queues_a_parse_task(self, services, service, dataset) -> None:
        result = service.create_collection_and_insert_data(
            _request(dataset, type=CollectionType.file, file_id="team-1/notes.txt")
        )

        [task] = _tasks(services)
        assert task.id == result.parse_task_id
        assert task.mode == TrainingMode.parse.value
        assert result.insert_len == 0

    def test_virtual_collection_without_text_queues_nothing(self, services, service, dataset) -> None:
        result = service.create_collection_and_insert_data(_request(dataset))
        assert result.parse_task_id is None
        assert _tasks(services) == []
        assert _count(services, Collection) == 1

    def test_existing_bill_is_reused(self, services, service, dataset) -> None:
        result = service.create_collection_and_insert_data(_request(dataset, raw_text="hello", bill_id="bill-42"))
        assert result.bill_id == "bill-42"
        assert _count(services, UsageBill) == 0

    def test_auto_alias_defers_indexes_to_the_chunk_worker(self, services, service, dataset) -> None:
        result = service.create_collection_and_insert_data(
            _request(dataset, raw_text="Kubeflow runs pipelines.", process={"training_type": "auto"})
        )

        [task] = _tasks(services)
        assert task.auto_indexes is True
        assert task.auto_indexes_model == services.settings.llm_model_name
        assert task.auto_indexes_size == services.settings.default_auto_indexes_size
        config = service.get_collection(result.collection_id).process_config
        assert (config["training_type"], config["auto_indexes"]) == ("chunk", True)

    def test_sync_auto_indexes_generates_before_enqueue(self, services, service, dataset, model_caller) -> None:
        model_caller.answers = ['["Who runs pipelines?"]']
        result = service.create_collection_and_insert_data(
            _request(
                dataset,
                raw_text="Kubeflow runs pipelines.",
                process={"training_type": "chunk", "auto_indexes": True, "auto_indexes_size": 1},
                sync_auto_indexes=True,
            )
        )

        [task] = _tasks(services)
        assert task.indexes == ["Who runs pipelines?"]
        assert task.auto_indexes is False
        with services.session_factory() as session:
            modes = [i.mode for i in session.scalars(select(UsageItem).where(UsageItem.bill_id == result.bill_id))]
        assert modes == ["autoIndexes"]

    def test_image_ids_become_image_chunks(self, services, service, dataset) -> None:
        image_ids = [service.upload_image(dataset.team_id, f"page{i}.png", b"img") for i in range(2)]

        result = service.create_collection_and_insert_data(_request(dataset, image_ids=image_ids))

        assert [t.image_id for t in _tasks(services)] == image_ids
        with services.session_factory() as session:
            images = list(session.scalars(select(DatasetImage)))
        assert all(i.expired_at is None and i.collection_id == result.collection_id for i in images)

    def test_other_teams_images_keep_their_expiry(self, services, service, dataset) -> None:
        foreign_id = service.upload_image("team-2", "private.png", b"img")

        service.create_collection_and_insert_data(_request(dataset, image_ids=[foreign_id]))

        with services.session_factory() as session:
            image = session.get(DatasetImage, foreign_id)
        assert image.team_id == "team-2"
        assert image.collection_id is None
        assert image.expired_at is not None

    def test_quota_is_checked_before_any_write(self, services, service, dataset) -> None:
        services.settings.team_max_dataset_index = 2
        with pytest.raises(QuotaExceededError):
            service.create_collection_and_insert_data(
                _request(dataset, raw_text=BACKUP_CSV, process={"training_type": "backup"})
            )
        assert _count(services, Collection) == 0
        assert _tasks(services) == []

    def test_deferred_auto_indexes_count_towards_the_quota(self, services, service, dataset) -> None:
        services.settings.team_max_dataset_index = 3
        with pytest.raises(QuotaExceededError):
            service.create_collection_and_insert_data(
                _request(
                    dataset,
                    raw_text="one chunk",
                    process={"training_type": "chunk", "auto_indexes": True, "auto_indexes_size": 3},
                )
            )

    def test_unknown_dataset(self, service, dataset) -> None:
        request = CreateCollectionRequest(team_id=dataset.team_id, dataset_id="missing", name="x")
        with pytest.raises(DatasetNotFoundError):
            service.create_collection_and_insert_data(request)

    def test_other_teams_dataset_is_not_found(self, service, dataset) -> None:
        request = CreateCollectionRequest(team_id="team-2", dataset_id=dataset.id, name="x")
        with pytest.raises(DatasetNotFoundError):
            service.create_collection_and_insert_data(request)

    def test_joins_the_callers_session(self, services, service, dataset) -> None:
        session = services.session_factory()
        try:
            result = service.create_collection_and_insert_data(
                _request(dataset, raw_text=BACKUP_CSV, process={"training_type": "backup"}), session=session
            )
            assert session.get(Collection, result.collection_id) is not None
            session.rollback()
        finally:
            session.close()

        assert _count(services, Collection) == 0
        assert _tasks(services) == []
        assert _count(services, UsageBill) == 0


class TestNextSyncTime:
    def test_link_resyncs_daily(self) -> None:
        when = next_sync_time(CollectionType.link, Dataset(type="dataset", auto_sync=False))
        assert timedelta(hours=23) < when - utcnow() <= timedelta(days=1)

    def test_file_never_resyncs(self) -> None:
        assert next_sync_time(CollectionType.file, Dataset(type="dataset", auto_sync=True)) is None

    def test_website_dataset_needs_auto_sync(self) -> None:
        assert next_sync_time(CollectionType.link, Dataset(type="websiteDataset", auto_sync=False)) is None
        assert next_sync_time(CollectionType.link, Dataset(type="websiteDataset", auto_sync=True)) is not None


def test_upload_image_expires_unless_claimed(services, service, dataset) -> None:
    image_id = service.upload_image(dataset.team_id, "scan.png", b"png", dataset_id=dataset.id)
    with services.session_factory() as session:
        image = session.get(DatasetImage, image_id)
    assert image.expired_at > utcnow()
    assert (services.files.root / image.path).read_bytes() == b"png"


# ── Sync processing ────────────────────────────────────────────────────


class TestProcessCollectionDataSync:
    def test_reads_embeds_and_persists(self, services, service, collection, vector_store) -> None:
        with services.session_factory.begin() as session:
            bill_id = services.usage.create_bill(session, team_id=collection.team_id, app_name="sync")

        result = service.process_collection_data_sync(collection.id, bill_id=bill_id)

        assert result.insert_len == 1
        assert result.total_tokens == 20
        [row] = result.data_ids
        with services.session_factory() as session:
            data = session.get(DatasetData, row)
            stored = session.get(Collection, collection.id)
            usage = list(session.scalars(select(UsageItem).where(UsageItem.bill_id == bill_id)))
        assert set(data.vector_ids()) == set(vector_store.rows)
        assert stored.raw_text_hash is not None
        assert [(u.mode, u.input_tokens) for u in usage] == [("embedding", 20)]
        assert _tasks(services) == []

    def test_empty_source_is_an_error(self, service, collection, reader) -> None:
        reader.read.return_value = RawTextResult(raw_text="   ")
        with pytest.raises(SourceReadError):
            service.process_collection_data_sync(collection.id)

    def test_unembeddable_chunk_is_skipped(self, service, make_collection, reader, model_caller) -> None:
        collection = make_collection(process_config={"training_type": "backup"})
        reader.read.return_value = RawTextResult(raw_text="good,one\nbad,two")
        model_caller.fail_on.add("bad\ntwo")

        result = service.process_collection_data_sync(collection.id)

        assert result.insert_len == 1

    def test_unknown_collection(self, service) -> None:
        with pytest.raises(CollectionNotFoundError):
            service.process_collection_data_sync("missing")


# ── Delete ──────────────────────────────────────────────────────────────


class TestDeleteCollections:
    def _create(self, services, service, dataset) -> str:
        file_id = services.files.save(dataset.team_id, "faq.csv", BACKUP_CSV.encode())
        return service.create_collection_and_insert_data(
            _request(
                dataset,
                type=CollectionType.file,
                file_id=file_id,
                raw_text=BACKUP_CSV,
                process={"training_type": "backup"},
            )
        ).collection_id

    def test_removes_tasks_data_vectors_and_file(self, services, service, dataset, vector_store) -> None:
        collection_id = self._create(services, service, dataset)
        ChunkWorker(services).run_once(max_tasks=1)
        assert len(_tasks(services)) == 2
        assert _count(services, DatasetData) == 1
        assert vector_store.rows
        file_id = service.get_collection(collection_id).file_id

        assert service.delete_collections(dataset.team_id, [collection_id]) == 1

        assert _tasks(services) == []
        assert _count(services, DatasetData) == 0
        assert _count(services, Collection) == 0
        assert vector_store.rows == {}
        assert not (services.files.root / file_id).exists()

    def test_source_file_can_be_kept(self, services, service, dataset) -> None:
        collection_id = self._create(services, service, dataset)
        file_id = service.get_collection(collection_id).file_id

        service.delete_collections(dataset.team_id, [collection_id], del_related_source=False)

        assert (services.files.root / file_id).exists()

    def test_other_collections_are_untouched(self, services, service, dataset) -> None:
        doomed = self._create(services, service, dataset)
        kept = self._create(services, service, dataset)

        service.delete_collections(dataset.team_id, [doomed])

        assert {t.collection_id for t in _tasks(services)} == {kept}

    def test_unknown_collection_deletes_nothing(self, service, dataset) -> None:
        assert service.delete_collections(dataset.team_id, ["missing"]) == 0

    def test_transient_failure_is_retried(self, services, service, dataset, monkeypatch) -> None:
        collection_id = self._create(services, service, dataset)
        real_delete = services.files.delete
        calls: list[list[str]] = []

        def flaky_delete(file_ids):
            calls.append(list(file_ids))
            if len(calls) == 1:
                raise OSError("storage unavailable")
            return real_delete(file_ids)

        monkeypatch.setattr(services.files, "delete", flaky_delete)

        assert service.delete_collections(dataset.team_id, [collection_id]) == 1
        assert _count(services, Collection) == 0
        assert len(calls) >= 2

    def test_image_files_survive_a_failed_vector_delete(
        self, services, service, dataset, vector_store, monkeypatch
    ) -> None:
        image_id = service.upload_image(dataset.team_id, "page.png", b"img")
        collection_id = service.create_collection_and_insert_data(
            _request(dataset, image_ids=[image_id])
        ).collection_id
        with services.session_factory() as session:
            image_path = services.files.root / session.get(DatasetImage, image_id).path
        real_delete = vector_store.delete
        calls: list[object] = []

        def flaky_delete(where):
            calls.append(where)
            if len(calls) == 1:
                raise ConnectionError("vector backend unavailable")
            return real_delete(where)

        monkeypatch.setattr(vector_store, "delete", flaky_delete)

        assert service.delete_collections(dataset.team_id, [collection_id]) == 1

        assert len(calls) == 2
        assert not image_path.exists()
        assert _count(services, DatasetImage) == 0


# ── Index enhance requests ─────────────────────────────────────────────


class TestEnhanceRequests:
    @pytest.fixture()
    def synced(self, service, make_collection, reader):
        collection = make_collection(process_config={"training_type": "backup"})
        reader.read.return_value = RawTextResult(raw_text=BACKUP_CSV)
        result = service.process_collection_data_sync(collection.id)
        return collection, result.data_ids

    def test_collection_request_queues_one_task_per_row(self, services, service, synced) -> None:
        collection, data_ids = synced
        result = service.enhance_collection_indexes(collection.id, team_id=collection.team_id, size=2)

        assert result.task_count == 3
        tasks = _tasks(services)
        assert all(t.mode == TrainingMode.index_enhance.value for t in tasks)
        assert sorted(d for t in tasks for d in t.data_ids) == sorted(data_ids)
        assert {t.auto_indexes_size for t in tasks} == {2}
        with services.session_factory() as session:
            assert session.get(UsageBill, result.bill_id).app_name == "Index enhance - notes.txt"

    def test_data_request_dedupes_and_caps(self, services, service, synced) -> None:
        collection, data_ids = synced
        services.settings.max_enhance_batch = 2
        result = service.enhance_data_indexes(
            [data_ids[0], data_ids[0], *data_ids], team_id=collection.team_id, model="fake-llm", size=1
        )
        assert result.task_count == 2

    def test_rows_of_other_teams_are_ignored(self, service, synced) -> None:
        _, data_ids = synced
        assert service.enhance_data_indexes(data_ids, team_id="team-2").task_count == 0

    def test_missing_model(self, services, service, synced) -> None:
        collection, _ = synced
        services.settings.llm_model_name = ""
        with pytest.raises(ModelNotFoundError):
            service.enhance_collection_indexes(collection.id, team_id=collection.team_id)

    def test_unknown_collection(self, service, dataset) -> None:
        with pytest.raises(CollectionNotFoundError):
            service.enhance_collection_indexes("missing", team_id=dataset.team_id)
