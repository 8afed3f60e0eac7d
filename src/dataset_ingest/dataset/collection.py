"""Collection orchestration: create + enqueue, inline sync processing, deletion.

Every "one transaction" step below is one SQLAlchemy session transaction;
model and embedding calls always happen before it is opened.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from sqlalchemy import ColumnElement, delete, select, update
from sqlalchemy.orm import Session
from tenacity import before_sleep_log, retry, stop_after_attempt, wait_fixed

from dataset_ingest.chunking.engine import raw_text_to_chunks
from dataset_ingest.dataset.data import (
    discard_vectors,
    embed_indexes,
    hash_raw_text,
    index_candidates,
    resolve_profiles,
)
from dataset_ingest.dataset.images import (
    collection_image_paths,
    delete_collection_images,
    register_image,
    remove_image_expiry,
)
from dataset_ingest.dataset.process_config import (
    ChunkProcessConfig,
    build_process_config,
    load_process_config,
)
from dataset_ingest.dataset.quota import check_team_index_limit, predict_insert_count
from dataset_ingest.dataset.sources import build_source_descriptor
from dataset_ingest.db.schema import Collection, Dataset, DatasetData, utcnow
from dataset_ingest.db.session import transaction
from dataset_ingest.errors import (
    CollectionNotFoundError,
    DatasetNotFoundError,
    ModelNotFoundError,
    SourceReadError,
)
from dataset_ingest.models import Chunk, CollectionType, DatasetType
from dataset_ingest.vector.models import VectorFilter

if TYPE_CHECKING:
    from dataset_ingest.services import Services

logger = logging.getLogger(__name__)

SYNC_PREFIX = "[Sync Processing]"
NEXT_SYNC_DELAY = timedelta(days=1)
SYNCABLE_TYPES = (CollectionType.link, CollectionType.api_file)
READABLE_TYPES = (
    CollectionType.file,
    CollectionType.link,
    CollectionType.api_file,
    CollectionType.external_file,
)
DELETE_ATTEMPTS = 3


# ── Request / result schemas ──────────────────────────────────────────
class CreateCollectionRequest(BaseModel):
    """Everything needed to create a collection and queue its ingestion.

    ``raw_text`` or ``image_ids`` are chunked right away; otherwise a
    readable source field (``file_id``, ``raw_link`` ...) is required and a
    ``parse`` task fetches it later.
    """

    team_id: str
    dataset_id: str
    name: str
    type: CollectionType = CollectionType.virtual
    parent_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    process: dict[str, Any] = Field(default_factory=dict)

    raw_text: str | None = None
    image_ids: list[str] | None = None

    file_id: str | None = None
    raw_link: str | None = None
    api_file_id: str | None = None
    external_file_id: str | None = None
    external_file_url: str | None = None
    related_img_id: str | None = None
    web_page_selector: str | None = None

    bill_id: str | None = None
    # generate auto indexes now instead of in the chunk worker
    sync_auto_indexes: bool = False


class CreateCollectionResult(BaseModel):
    collection_id: str
    bill_id: str
    insert_len: int = 0
    parse_task_id: str | None = None


class SyncProcessResult(BaseModel):
    insert_len: int = 0
    total_tokens: int = 0
    data_ids: list[str] = Field(default_factory=list)


class EnhanceRequestResult(BaseModel):
    task_count: int = 0
    bill_id: str = ""


class DeletePlan(BaseModel):
    """Plain identifiers captured before deletion so a retry can replay it."""

    team_id: str
    dataset_ids: list[str]
    collection_ids: list[str]
    file_ids: list[str] = Field(default_factory=list)
    related_img_ids: list[str] = Field(default_factory=list)
    image_paths: list[str] = Field(default_factory=list)
    whole_datasets: bool = False


def next_sync_time(collection_type: CollectionType, dataset: Dataset) -> datetime | None:
    """Link / API-file collections re-sync daily, except unsynced website datasets."""
    if dataset.type == DatasetType.website and not dataset.auto_sync:
        return None
    if collection_type in SYNCABLE_TYPES:
        return utcnow() + NEXT_SYNC_DELAY
    return None


class CollectionService:
    """Creates, processes and deletes collections.

    Parameters
    ----------
    services:
        Shared collaborators built by :func:`~dataset_ingest.services.build_services`.
    """

    def __init__(self, services: Services) -> None:
        self.services = services

    # -- lookups -------------------------------------------------------------

    def _get_dataset(self, session: Session, team_id: str, dataset_id: str) -> Dataset:
        dataset = session.get(Dataset, dataset_id)
        if dataset is None or dataset.team_id != team_id:
            raise DatasetNotFoundError(dataset_id)
        return dataset

    def get_collection(self, collection_id: str, team_id: str | None = None) -> Collection:
        """Load a collection, scoped to *team_id* when given."""
        with self.services.session_factory() as session:
            collection = session.get(Collection, collection_id)
        if collection is None or (team_id and collection.team_id != team_id):
            raise CollectionNotFoundError(collection_id)
        return collection

    def upload_image(self, team_id: str, filename: str, data: bytes, *, dataset_id: str | None = None) -> str:
        """Store an uploaded image; it expires unless a collection claims it."""
        path = self.services.files.save(team_id, filename, data)
        with transaction(self.services.session_factory) as session:
            return register_image(
                session,
                team_id=team_id,
                path=path,
                expire_hours=self.services.settings.image_expire_hours,
                dataset_id=dataset_id,
            )

    # -- create --------------------------------------------------------------

    def create_collection_and_insert_data(
        self,
        request: CreateCollectionRequest,
        *,
        session: Session | None = None,
    ) -> CreateCollectionResult:
        """Create a collection and queue its ingestion in one transaction.

        A caller-supplied *session* is joined and left uncommitted.

        Raises
        ------
        DatasetNotFoundError
            The dataset does not exist for this team.
        QuotaExceededError
            The predicted insert count would push the team over its quota.
        """
        services = self.services
        settings = services.settings

        if session is not None:
            dataset = self._get_dataset(session, request.team_id, request.dataset_id)
        else:
            with services.session_factory() as read:
                dataset = self._get_dataset(read, request.team_id, request.dataset_id)

        llm, embedding = resolve_profiles(settings, dataset)
        config = build_process_config(
            request.process,
            llm=llm,
            embedding=embedding,
            default_auto_indexes_size=settings.default_auto_indexes_size,
        )
        auto_indexes = isinstance(config, ChunkProcessConfig) and config.auto_indexes
        auto_model = (config.auto_indexes_model if auto_indexes else None) or settings.llm_model_name

        # 1. chunks from text, one chunk per image, or nothing yet
        if request.raw_text:
            chunks = raw_text_to_chunks(
                request.raw_text,
                **config.chunk_options(),
                backup_parse=config.backup_parse,
                filename=request.name,
            )
        elif request.image_ids:
            chunks = [Chunk(image_id=image_id) for image_id in request.image_ids]
        else:
            chunks = []

        # 2. quota against the predicted insert count
        deferred_auto = auto_indexes and not request.sync_auto_indexes
        check_team_index_limit(
            services.vectors,
            request.team_id,
            predict_insert_count(
                chunks,
                auto_indexes_size=config.auto_indexes_size if deferred_auto else 0,
            ),
            settings.team_max_dataset_index,
        )

        # 3. inline auto indexes, before any write
        enhanced = None
        if auto_indexes and request.sync_auto_indexes and chunks:
            enhanced = services.enhancer.enhance_chunks(
                chunks, target_size=config.auto_indexes_size, model=auto_model
            )

        # 4. one transaction
        with transaction(services.session_factory, session) as s:
            collection = Collection(
                team_id=request.team_id,
                dataset_id=dataset.id,
                parent_id=request.parent_id,
                name=request.name,
                type=request.type.value,
                file_id=request.file_id,
                raw_link=request.raw_link,
                api_file_id=request.api_file_id,
                external_file_id=request.external_file_id,
                external_file_url=request.external_file_url,
                related_img_id=request.related_img_id,
                web_page_selector=request.web_page_selector,
                process_config=config.model_dump(mode="json"),
                tags=list(request.tags),
                raw_text_hash=hash_raw_text(request.raw_text) if request.raw_text else None,
                raw_text_length=len(request.raw_text) if request.raw_text else None,
                next_sync_time=next_sync_time(request.type, dataset),
            )
            s.add(collection)
            s.flush()

            bill_id = request.bill_id or services.usage.create_bill(
                s, team_id=request.team_id, app_name=request.name
            )
            if enhanced is not None:
                services.usage.push_usage(
                    bill_id,
                    mode="autoIndexes",
                    model=auto_model,
                    input_tokens=enhanced.input_tokens,
                    output_tokens=enhanced.output_tokens,
                    session=s,
                )

            insert_len = 0
            parse_task_id = None
            if request.raw_text or request.image_ids:
                insert_len = services.ledger.push_data_list(
                    s,
                    team_id=request.team_id,
                    dataset_id=dataset.id,
                    collection_id=collection.id,
                    bill_id=bill_id,
                    chunks=chunks,
                    index_size=config.index_size,
                    auto_indexes=deferred_auto,
                    auto_indexes_model=auto_model if deferred_auto else None,
                    auto_indexes_size=config.auto_indexes_size if deferred_auto else None,
                )
            elif request.type in READABLE_TYPES:
                parse_task_id = services.ledger.push_parse_task(
                    s,
                    team_id=request.team_id,
                    dataset_id=dataset.id,
                    collection_id=collection.id,
                    bill_id=bill_id,
                    auto_indexes=auto_indexes,
                    auto_indexes_model=auto_model if auto_indexes else None,
                    auto_indexes_size=config.auto_indexes_size if auto_indexes else None,
                )

            remove_image_expiry(
                s,
                team_id=request.team_id,
                collection_id=collection.id,
                image_ids=request.image_ids,
                related_id=request.related_img_id,
            )
            collection_id = collection.id

        logger.info(
            "Created collection %s (%s): %d chunk tasks%s",
            collection_id,
            config.training_type,
            insert_len,
            ", parse queued" if parse_task_id else "",
        )
        return CreateCollectionResult(
            collection_id=collection_id,
            bill_id=bill_id,
            insert_len=insert_len,
            parse_task_id=parse_task_id,
        )

    # -- synchronous processing ------------------------------------------------

    def process_collection_data_sync(
        self,
        collection_id: str,
        *,
        bill_id: str | None = None,
    ) -> SyncProcessResult:
        """Read, chunk, embed and persist a collection inline, bypassing the ledger.

        A chunk whose indexes all fail to embed is logged and skipped.
        """
        services = self.services
        settings = services.settings
        collection = self.get_collection(collection_id)
        dataset = collection.dataset

        logger.info("%s Start processing collection: %s", SYNC_PREFIX, collection.id)

        source = build_source_descriptor(collection, dataset)
        result = services.reader.read(source)
        raw_text = result.raw_text
        if not raw_text or not raw_text.strip():
            raise SourceReadError(f"Failed to read raw text for collection {collection.id}")

        config = load_process_config(collection.process_config)
        chunks = raw_text_to_chunks(
            raw_text,
            **config.chunk_options(),
            backup_parse=config.backup_parse,
            filename=collection.name,
        )
        logger.info("%s Generated %d chunks for collection: %s", SYNC_PREFIX, len(chunks), collection.id)
        if not chunks:
            return SyncProcessResult()

        check_team_index_limit(
            services.vectors,
            collection.team_id,
            predict_insert_count(chunks),
            settings.team_max_dataset_index,
        )

        rows: list[DatasetData] = []
        total_tokens = 0
        for position, chunk in enumerate(chunks):
            candidates = index_candidates(chunk.q, chunk.a, chunk.indexes, config.index_size)
            embedded = embed_indexes(
                services.vectors,
                services.model_caller,
                candidates,
                model=dataset.vector_model,
                team_id=collection.team_id,
                dataset_id=dataset.id,
                collection_id=collection.id,
                log_prefix=SYNC_PREFIX,
            )
            if candidates and not embedded.indexes:
                logger.error("%s Skip chunk %d of collection %s: no index embedded", SYNC_PREFIX, position, collection.id)
                continue
            total_tokens += embedded.tokens
            rows.append(
                DatasetData(
                    team_id=collection.team_id,
                    dataset_id=dataset.id,
                    collection_id=collection.id,
                    chunk_index=position,
                    q=chunk.q,
                    a=chunk.a,
                    indexes=embedded.as_json(),
                )
            )

        try:
            with transaction(services.session_factory) as session:
                values: dict[str, Any] = {
                    "raw_text_length": len(raw_text),
                    "raw_text_hash": hash_raw_text(raw_text),
                    "update_time": utcnow(),
                }
                if result.title and collection.type == CollectionType.link:
                    values["name"] = result.title
                session.execute(update(Collection).where(Collection.id == collection.id).values(**values))
                session.add_all(rows)
                session.flush()
                data_ids = [row.id for row in rows]
        except Exception:
            discard_vectors(
                services.vectors,
                collection.team_id,
                [vector_id for row in rows for vector_id in row.vector_ids()],
            )
            raise

        services.usage.push_usage(
            bill_id,
            mode="embedding",
            model=dataset.vector_model or settings.embedding_model,
            input_tokens=total_tokens,
        )
        logger.info(
            "%s Completed collection: %s, %d chunks with %d tokens",
            SYNC_PREFIX,
            collection.id,
            len(rows),
            total_tokens,
        )
        return SyncProcessResult(insert_len=len(rows), total_tokens=total_tokens, data_ids=data_ids)

    # -- delete ----------------------------------------------------------------

    def delete_collections(
        self,
        team_id: str,
        collection_ids: Sequence[str],
        *,
        del_related_source: bool = True,
    ) -> int:
        """Delete collections with their tasks, data, vectors, images and files.

        Returns the number of collections removed.
        """
        with self.services.session_factory() as session:
            collections = list(
                session.scalars(
                    select(Collection).where(
                        Collection.team_id == team_id,
                        Collection.id.in_(list(collection_ids)),
                    )
                )
            )
            if not collections:
                return 0
            collection_ids = [c.id for c in collections]
            related_img_ids = [c.related_img_id for c in collections if c.related_img_id]
            image_paths = collection_image_paths(
                session, team_id=team_id, collection_ids=collection_ids, related_ids=related_img_ids
            )

        plan = DeletePlan(
            team_id=team_id,
            dataset_ids=sorted({c.dataset_id for c in collections}),
            collection_ids=collection_ids,
            file_ids=[c.file_id for c in collections if c.file_id] if del_related_source else [],
            related_img_ids=related_img_ids,
            image_paths=image_paths,
        )
        self.purge(plan)
        return len(collections)

    @retry(
        stop=stop_after_attempt(DELETE_ATTEMPTS),
        wait=wait_fixed(0.5),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def purge(self, plan: DeletePlan) -> None:
        """Fan out the deletion across the vector store, file store and database.

        Every step is idempotent so a failed attempt is replayed whole.
        """
        services = self.services
        where = VectorFilter(
            team_id=plan.team_id,
            dataset_ids=plan.dataset_ids,
            collection_ids=None if plan.whole_datasets else plan.collection_ids,
        )

        with ThreadPoolExecutor(max_workers=2) as pool:
            vector_job = pool.submit(services.vectors.delete, where)
            file_job = pool.submit(services.files.delete, [*plan.file_ids, *plan.image_paths])

            with transaction(services.session_factory) as session:
                if plan.whole_datasets:
                    tasks = services.ledger.delete_for_datasets(session, plan.team_id, plan.dataset_ids)
                else:
                    tasks = services.ledger.delete_for_collections(session, plan.team_id, plan.collection_ids)
                data = session.execute(
                    delete(DatasetData)
                    .where(DatasetData.team_id == plan.team_id, self._data_scope(plan))
                    .execution_options(synchronize_session=False)
                ).rowcount
                images = delete_collection_images(
                    session,
                    team_id=plan.team_id,
                    collection_ids=plan.collection_ids,
                    related_ids=plan.related_img_ids,
                )
                session.execute(
                    delete(Collection)
                    .where(Collection.team_id == plan.team_id, Collection.id.in_(plan.collection_ids))
                    .execution_options(synchronize_session=False)
                )

            vector_job.result()
            file_job.result()

        logger.info(
            "Deleted %d collections of team %s: %d tasks, %d data rows, %d images",
            len(plan.collection_ids),
            plan.team_id,
            tasks,
            data or 0,
            images,
        )

    @staticmethod
    def _data_scope(plan: DeletePlan) -> ColumnElement[bool]:
        if plan.whole_datasets:
            return DatasetData.dataset_id.in_(plan.dataset_ids)
        return DatasetData.collection_id.in_(plan.collection_ids)

    # -- index enhancement requests ------------------------------------------

    def _resolve_enhance_model(self, model: str | None) -> str:
        model = model or self.services.settings.llm_model_name
        if not model:
            raise ModelNotFoundError("No LLM model available for index enhancement")
        return model

    def enhance_collection_indexes(
        self,
        collection_id: str,
        *,
        team_id: str,
        model: str | None = None,
        size: int | None = None,
    ) -> EnhanceRequestResult:
        """Queue index enhancement for the first persisted rows of a collection."""
        services = self.services
        model = self._resolve_enhance_model(model)
        size = size or services.settings.default_auto_indexes_size
        collection = self.get_collection(collection_id, team_id)

        with services.session_factory() as session:
            data_ids = list(
                session.scalars(
                    select(DatasetData.id)
                    .where(DatasetData.team_id == team_id, DatasetData.collection_id == collection.id)
                    .order_by(DatasetData.chunk_index)
                    .limit(services.settings.max_enhance_batch)
                )
            )
        if not data_ids:
            return EnhanceRequestResult()

        with transaction(services.session_factory) as session:
            bill_id = services.usage.create_bill(
                session, team_id=team_id, app_name=f"Index enhance - {collection.name}"
            )
            count = services.ledger.push_index_enhance_tasks(
                session,
                team_id=team_id,
                dataset_id=collection.dataset_id,
                collection_id=collection.id,
                bill_id=bill_id,
                data_ids=data_ids,
                model=model,
                size=size,
            )
        logger.info("Queued %d index enhance tasks for collection %s", count, collection.id)
        return EnhanceRequestResult(task_count=count, bill_id=bill_id)

    def enhance_data_indexes(
        self,
        data_ids: Sequence[str],
        *,
        team_id: str,
        model: str | None = None,
        size: int | None = None,
    ) -> EnhanceRequestResult:
        """Queue index enhancement for explicit data rows (capped per request)."""
        services = self.services
        model = self._resolve_enhance_model(model)
        size = size or services.settings.default_auto_indexes_size
        wanted = list(dict.fromkeys(data_ids))[: services.settings.max_enhance_batch]
        if not wanted:
            return EnhanceRequestResult()

        with services.session_factory() as session:
            rows = session.execute(
                select(DatasetData.id, DatasetData.dataset_id, DatasetData.collection_id).where(
                    DatasetData.team_id == team_id, DatasetData.id.in_(wanted)
                )
            ).all()
        if not rows:
            return EnhanceRequestResult()

        grouped: dict[tuple[str, str], list[str]] = {}
        for data_id, dataset_id, collection_id in rows:
            grouped.setdefault((dataset_id, collection_id), []).append(data_id)

        count = 0
        with transaction(services.session_factory) as session:
            bill_id = services.usage.create_bill(session, team_id=team_id, app_name="Index enhance")
            for (dataset_id, collection_id), ids in grouped.items():
                count += services.ledger.push_index_enhance_tasks(
                    session,
                    team_id=team_id,
                    dataset_id=dataset_id,
                    collection_id=collection_id,
                    bill_id=bill_id,
                    data_ids=ids,
                    model=model,
                    size=size,
                )
        return EnhanceRequestResult(task_count=count, bill_id=bill_id)
