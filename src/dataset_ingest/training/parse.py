"""Parse worker: fetch a collection's source and fan it out into chunk tasks."""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel
from sqlalchemy import update

from dataset_ingest.ai.caller import ModelCaller
from dataset_ingest.ai.prompts import build_paragraph_prompt
from dataset_ingest.chunking.engine import raw_text_to_chunks
from dataset_ingest.dataset.data import hash_raw_text
from dataset_ingest.dataset.images import remove_image_expiry
from dataset_ingest.dataset.process_config import load_process_config
from dataset_ingest.dataset.quota import check_team_index_limit, predict_insert_count
from dataset_ingest.dataset.sources import build_source_descriptor
from dataset_ingest.db.schema import Collection, TrainingTask, utcnow
from dataset_ingest.db.session import transaction
from dataset_ingest.models import CollectionType, ParagraphChunkAIMode, TrainingMode
from dataset_ingest.training.base import BaseWorker

logger = logging.getLogger(__name__)

_MARKDOWN_HEADING = re.compile(r"^(#+)\s")


class ParagraphResult(BaseModel):
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


def restructure_paragraphs(
    model_caller: ModelCaller,
    raw_text: str,
    *,
    mode: ParagraphChunkAIMode,
    enabled: bool,
    model: str | None,
) -> ParagraphResult:
    """Ask the LLM to add markdown headings to *raw_text*.

    Skipped (text returned unchanged) when the feature is disabled, in
    ``forbid`` mode, or in ``auto`` mode for text that already starts with
    a heading.
    """
    if not enabled or mode == ParagraphChunkAIMode.forbid:
        return ParagraphResult(text=raw_text)
    if mode == ParagraphChunkAIMode.auto and _MARKDOWN_HEADING.match(raw_text):
        return ParagraphResult(text=raw_text)

    completion = model_caller.complete(build_paragraph_prompt(raw_text), model)
    return ParagraphResult(
        text=completion.text or raw_text,
        input_tokens=completion.input_tokens,
        output_tokens=completion.output_tokens,
    )


class ParseWorker(BaseWorker):
    """Reads the source, chunks it and enqueues one ``chunk`` task per chunk.

    The collection update, the enqueue, the parse-task deletion and the
    image-expiry removal commit together.
    """

    mode = TrainingMode.parse
    queue_name = "Parse Queue"

    def process(self, task: TrainingTask) -> None:
        owners = self.load_owners(task)
        if owners is None:
            return
        dataset, collection = owners
        services = self.services
        settings = services.settings

        logger.info("%s Start collection %s", self.prefix, collection.id)

        # 1. read source
        source = build_source_descriptor(collection, dataset)
        result = services.reader.read(source)

        # 2. optional LLM paragraph pass
        config = load_process_config(collection.process_config)
        paragraph_mode = getattr(config, "paragraph_chunk_ai_mode", ParagraphChunkAIMode.forbid)
        paragraph = restructure_paragraphs(
            services.model_caller,
            result.raw_text,
            mode=paragraph_mode,
            enabled=settings.paragraph_ai_enabled,
            model=dataset.agent_model,
        )
        services.usage.push_usage(
            task.bill_id,
            mode="paragraph",
            model=dataset.agent_model or settings.llm_model_name,
            input_tokens=paragraph.input_tokens,
            output_tokens=paragraph.output_tokens,
        )
        raw_text = paragraph.text

        # 3. chunk
        chunks = raw_text_to_chunks(
            raw_text,
            **config.chunk_options(),
            backup_parse=config.backup_parse,
            filename=collection.name,
        )

        # 4. optional auto indexes
        if task.auto_indexes and chunks:
            model = task.auto_indexes_model or settings.llm_model_name
            enhanced = services.enhancer.enhance_chunks(
                chunks,
                target_size=task.auto_indexes_size or settings.default_auto_indexes_size,
                model=model,
            )
            services.usage.push_usage(
                task.bill_id,
                mode="autoIndexes",
                model=model,
                input_tokens=enhanced.input_tokens,
                output_tokens=enhanced.output_tokens,
            )

        # 5. quota
        check_team_index_limit(
            services.vectors,
            task.team_id,
            predict_insert_count(chunks),
            settings.team_max_dataset_index,
        )

        # 6. commit
        index_size = config.index_size
        with transaction(services.session_factory) as session:
            values: dict = {
                "raw_text_length": len(raw_text),
                "raw_text_hash": hash_raw_text(raw_text),
                "update_time": utcnow(),
            }
            if result.title and collection.type == CollectionType.link:
                values["name"] = result.title
            session.execute(update(Collection).where(Collection.id == collection.id).values(**values))

            inserted = services.ledger.push_data_list(
                session,
                team_id=task.team_id,
                dataset_id=dataset.id,
                collection_id=collection.id,
                bill_id=task.bill_id,
                chunks=chunks,
                index_size=index_size,
            )
            services.ledger.delete(task.id, session)
            if collection.related_img_id:
                remove_image_expiry(
                    session,
                    team_id=collection.team_id,
                    collection_id=collection.id,
                    related_id=collection.related_img_id,
                )

        logger.info("%s Finish collection %s: %d chunk tasks", self.prefix, collection.id, inserted)
