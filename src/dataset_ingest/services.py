"""Explicit wiring of every collaborator, built once per process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from dataset_ingest.ai.caller import LangChainModelCaller, ModelCaller
from dataset_ingest.config import Settings
from dataset_ingest.dataset.files import LocalFileStore
from dataset_ingest.dataset.sources import SourceReader
from dataset_ingest.dataset.usage import SqlUsageLedger, UsageLedger
from dataset_ingest.db.session import init_db, make_engine, make_session_factory
from dataset_ingest.indexing.generator import IndexEnhancer
from dataset_ingest.models import TrainingMode
from dataset_ingest.training.ledger import TrainingLedger
from dataset_ingest.vector.base import VectorStoreBase
from dataset_ingest.vector.controller import VectorStoreAdapter
from dataset_ingest.vector.factory import create_vector_adapter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the orchestrator, workers and API share."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    vectors: VectorStoreAdapter
    model_caller: ModelCaller
    enhancer: IndexEnhancer
    ledger: TrainingLedger
    usage: UsageLedger
    files: LocalFileStore
    reader: SourceReader

    def close(self) -> None:
        self.vectors.close()
        self.engine.dispose()


def build_services(
    settings: Settings,
    *,
    engine: Engine | None = None,
    vector_store: VectorStoreBase | None = None,
    model_caller: ModelCaller | None = None,
    reader: SourceReader | None = None,
) -> Services:
    """Construct all collaborators from *settings*.

    Keyword overrides let tests inject in-memory fakes.
    """
    engine = engine or make_engine(settings.database_url)
    init_db(engine)
    session_factory = make_session_factory(engine)

    model_caller = model_caller or LangChainModelCaller(settings)
    files = LocalFileStore(settings.upload_dir)

    ledger = TrainingLedger(
        session_factory,
        retry_count=settings.training_retry_count,
        leases={
            TrainingMode.parse: timedelta(minutes=settings.parse_lease_minutes),
            TrainingMode.chunk: timedelta(minutes=settings.chunk_lease_minutes),
            TrainingMode.index_enhance: timedelta(minutes=settings.index_enhance_lease_minutes),
        },
    )

    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        vectors=create_vector_adapter(settings, vector_store),
        model_caller=model_caller,
        enhancer=IndexEnhancer(model_caller, settings.llm_model_name),
        ledger=ledger,
        usage=SqlUsageLedger(session_factory),
        files=files,
        reader=reader or SourceReader(files),
    )
