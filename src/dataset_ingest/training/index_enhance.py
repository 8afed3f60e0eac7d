"""Index-enhance worker: add generated questions to already persisted data."""

from __future__ import annotations

import logging

from sqlalchemy import select

from dataset_ingest.dataset.data import EmbeddedIndexes, discard_vectors, embed_indexes
from dataset_ingest.db.schema import DatasetData, TrainingTask, utcnow
from dataset_ingest.db.session import transaction
from dataset_ingest.models import IndexEntry, IndexType, TrainingMode
from dataset_ingest.training.base import BaseWorker

logger = logging.getLogger(__name__)


class IndexEnhanceWorker(BaseWorker):
    """Generates, embeds and appends new indexes; never chains to another stage."""

    mode = TrainingMode.index_enhance
    queue_name = "Index Enhance Queue"

    def process(self, task: TrainingTask) -> None:
        owners = self.load_owners(task)
        if owners is None:
            return
        dataset, collection = owners
        services = self.services

        with services.session_factory() as session:
            rows = list(
                session.scalars(
                    select(DatasetData).where(
                        DatasetData.team_id == task.team_id,
                        DatasetData.id.in_(list(task.data_ids or [])),
                    )
                )
            )
        if not rows:
            logger.warning("%s Data not found, delete task %s", self.prefix, task.id)
            services.ledger.delete(task.id)
            return

        model = task.auto_indexes_model or services.settings.llm_model_name
        target_size = task.auto_indexes_size or services.settings.default_auto_indexes_size

        additions: dict[str, EmbeddedIndexes] = {}
        input_tokens = output_tokens = 0
        for row in rows:
            logger.info("%s Start enhancing data %s", self.prefix, row.id)
            generated = services.enhancer.generate(
                row.q,
                target_size=target_size,
                model=model,
                existing_indexes=[entry["text"] for entry in row.indexes or []],
            )
            input_tokens += generated.input_tokens
            output_tokens += generated.output_tokens
            if not generated.indexes:
                continue
            additions[row.id] = embed_indexes(
                services.vectors,
                services.model_caller,
                [IndexEntry(type=IndexType.custom, text=text) for text in generated.indexes],
                model=dataset.vector_model,
                team_id=task.team_id,
                dataset_id=dataset.id,
                collection_id=collection.id,
                log_prefix=self.prefix,
            )

        services.usage.push_usage(
            task.bill_id,
            mode="indexEnhance",
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

        vanished: list[str] = []
        try:
            with transaction(services.session_factory) as session:
                for data_id, embedded in additions.items():
                    row = session.get(DatasetData, data_id, with_for_update=True)
                    if row is None:
                        vanished.extend(embedded.vector_ids)
                        continue
                    row.indexes = [*(row.indexes or []), *embedded.as_json()]
                    row.update_time = utcnow()
                services.ledger.delete(task.id, session)
        except Exception:
            for embedded in additions.values():
                discard_vectors(services.vectors, task.team_id, embedded.vector_ids)
            raise
        # data deleted while its questions were generated
        discard_vectors(services.vectors, task.team_id, vanished)

        added = sum(len(e.indexes) for e in additions.values())
        logger.info("%s Enhanced %d indexes for task %s", self.prefix, added, task.id)
