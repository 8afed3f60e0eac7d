"""Chunk worker: embed one chunk's indexes and persist it as a data row."""

from __future__ import annotations

import logging

from dataset_ingest.dataset.data import discard_vectors, embed_indexes, index_candidates
from dataset_ingest.db.schema import DatasetData, TrainingTask
from dataset_ingest.db.session import transaction
from dataset_ingest.errors import DatasetIngestError
from dataset_ingest.models import Chunk, TrainingMode
from dataset_ingest.training.base import BaseWorker

logger = logging.getLogger(__name__)


class ChunkWorker(BaseWorker):
    mode = TrainingMode.chunk
    queue_name = "Chunk Queue"

    def process(self, task: TrainingTask) -> None:
        owners = self.load_owners(task)
        if owners is None:
            return
        dataset, collection = owners
        services = self.services

        extra_indexes = list(task.indexes or [])
        if task.auto_indexes and task.q.strip():
            model = task.auto_indexes_model or services.settings.llm_model_name
            chunk = Chunk(q=task.q, a=task.a, indexes=extra_indexes)
            enhanced = services.enhancer.enhance_chunks(
                [chunk],
                target_size=task.auto_indexes_size or services.settings.default_auto_indexes_size,
                model=model,
            )
            extra_indexes = chunk.indexes
            services.usage.push_usage(
                task.bill_id,
                mode="autoIndexes",
                model=model,
                input_tokens=enhanced.input_tokens,
                output_tokens=enhanced.output_tokens,
            )

        candidates = index_candidates(task.q, task.a, extra_indexes, task.index_size)
        embedded = embed_indexes(
            services.vectors,
            services.model_caller,
            candidates,
            model=dataset.vector_model,
            team_id=task.team_id,
            dataset_id=dataset.id,
            collection_id=collection.id,
            log_prefix=self.prefix,
        )
        if candidates and not embedded.indexes:
            raise DatasetIngestError(f"No index of chunk {task.chunk_index} could be embedded")

        try:
            with transaction(services.session_factory) as session:
                session.add(
                    DatasetData(
                        team_id=task.team_id,
                        dataset_id=dataset.id,
                        collection_id=collection.id,
                        chunk_index=task.chunk_index,
                        q=task.q,
                        a=task.a,
                        indexes=embedded.as_json(),
                        image_id=task.image_id,
                    )
                )
                services.ledger.delete(task.id, session)
        except Exception:
            discard_vectors(services.vectors, task.team_id, embedded.vector_ids)
            raise

        services.usage.push_usage(
            task.bill_id,
            mode="embedding",
            model=dataset.vector_model or services.settings.embedding_model,
            input_tokens=embedded.tokens,
        )
        logger.debug(
            "%s Chunk %d of collection %s stored with %d indexes",
            self.prefix,
            task.chunk_index,
            collection.id,
            len(embedded.indexes),
        )
