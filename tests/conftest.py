"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import BaseMessage

from dataset_ingest.ai.caller import CompletionResult, EmbeddingResult, ModelCaller
from dataset_ingest.config import Settings
from dataset_ingest.dataset.collection import CollectionService
from dataset_ingest.dataset.sources import SourceReader
from dataset_ingest.db.schema import Collection, Dataset
from dataset_ingest.db.session import transaction
from dataset_ingest.models import RawTextResult
from dataset_ingest.services import Services, build_services
from dataset_ingest.vector.base import VectorStoreBase
from dataset_ingest.vector.controller import VectorStoreAdapter
from dataset_ingest.vector.models import MetadataFilter, RecallHit, StoredVector, VectorFilter

TEAM = "team-1"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


class FakeVectorStore(VectorStoreBase):
    """In-memory backend keyed by vector id; supports export, not relabel."""

    supports_export = True

    def __init__(self) -> None:
        super().__init__("test-vectors")
        self.rows: dict[str, dict[str, Any]] = {}
        self.count_calls = 0
        self.fail_inserts = 0

    def insert(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_id: str,
        collection_id: str,
        vector_id: str | None = None,
    ) -> str:
        if self.fail_inserts:
            self.fail_inserts -= 1
            raise ConnectionError("vector backend unavailable")
        vector_id = vector_id or uuid.uuid4().hex
        self.rows[vector_id] = {
            "vector": list(vector),
            "team_id": team_id,
            "dataset_id": dataset_id,
            "collection_id": collection_id,
        }
        return vector_id

    def _matches(self, vector_id: str, row: dict[str, Any], where: VectorFilter) -> bool:
        if row["team_id"] != where.team_id:
            return False
        if where.dataset_ids and row["dataset_id"] not in where.dataset_ids:
            return False
        if where.collection_ids and row["collection_id"] not in where.collection_ids:
            return False
        return not where.ids or vector_id in where.ids

    def delete(self, where: VectorFilter) -> None:
        for vector_id in [k for k, row in self.rows.items() if self._matches(k, row, where)]:
            del self.rows[vector_id]

    def recall(
        self,
        vector: list[float],
        *,
        team_id: str,
        dataset_ids: list[str],
        limit: int = 10,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RecallHit]:
        hits = [
            RecallHit(
                id=vector_id,
                score=sum(a * b for a, b in zip(vector, row["vector"])),
                team_id=row["team_id"],
                dataset_id=row["dataset_id"],
                collection_id=row["collection_id"],
            )
            for vector_id, row in self.rows.items()
            if row["team_id"] == team_id and row["dataset_id"] in dataset_ids
        ]
        return sorted(hits, key=lambda h: h.score, reverse=True)[:limit]

    def count(
        self,
        *,
        team_id: str | None = None,
        dataset_id: str | None = None,
        collection_id: str | None = None,
    ) -> int:
        self.count_calls += 1
        return sum(
            1
            for row in self.rows.values()
            if (team_id is None or row["team_id"] == team_id)
            and (dataset_id is None or row["dataset_id"] == dataset_id)
            and (collection_id is None or row["collection_id"] == collection_id)
        )

    def health_check(self) -> bool:
        return True

    def export(self, where: VectorFilter) -> list[StoredVector]:
        return [
            StoredVector(
                id=vector_id,
                vector=row["vector"],
                team_id=row["team_id"],
                dataset_id=row["dataset_id"],
                collection_id=row["collection_id"],
            )
            for vector_id, row in self.rows.items()
            if self._matches(vector_id, row, where)
        ]


class FakeModelCaller(ModelCaller):
    """Deterministic embeddings; completions replay queued answers."""

    def __init__(self, answers: list[str] | None = None) -> None:
        self.answers = list(answers or [])
        self.embedded: list[str] = []
        self.prompts: list[list[BaseMessage]] = []
        self.fail_on: set[str] = set()

    def embed(self, text: str, model: str | None = None) -> EmbeddingResult:
        if text in self.fail_on:
            raise RuntimeError(f"cannot embed {text!r}")
        self.embedded.append(text)
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return EmbeddingResult(vector=[b / 255 for b in digest[:8]], tokens=len(text.split()))

    def complete(
        self,
        messages: list[BaseMessage],
        model: str | None = None,
        *,
        temperature: float = 0.0,
    ) -> CompletionResult:
        self.prompts.append(messages)
        text = self.answers.pop(0) if self.answers else "[]"
        return CompletionResult(text=text, input_tokens=10, output_tokens=5)


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _no_retry_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tenacity retries run without waiting."""
    monkeypatch.setattr(VectorStoreAdapter.insert_text.retry, "sleep", lambda _seconds: None)
    monkeypatch.setattr(CollectionService.purge.retry, "sleep", lambda _seconds: None)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        upload_dir=str(tmp_path / "uploads"),
        vector_count_delete_debounce=0.01,
        claim_retry_delay=0.0,
        max_tasks_per_run=50,
        team_max_dataset_index=0,
    )


@pytest.fixture()
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture()
def model_caller() -> FakeModelCaller:
    return FakeModelCaller()


@pytest.fixture()
def reader() -> MagicMock:
    mock = MagicMock(spec=SourceReader)
    mock.read.return_value = RawTextResult(title=None, raw_text="Hello world. " * 10)
    return mock


@pytest.fixture()
def services(
    settings: Settings,
    vector_store: FakeVectorStore,
    model_caller: FakeModelCaller,
    reader: MagicMock,
) -> Iterator[Services]:
    built = build_services(settings, vector_store=vector_store, model_caller=model_caller, reader=reader)
    yield built
    built.close()


@pytest.fixture()
def dataset(services: Services) -> Dataset:
    with transaction(services.session_factory) as session:
        row = Dataset(team_id=TEAM, name="docs", vector_model="fake-embed", agent_model="fake-llm")
        session.add(row)
    return row


@pytest.fixture()
def make_collection(services: Services, dataset: Dataset) -> Callable[..., Collection]:
    """Insert collection rows directly, bypassing the orchestrator."""

    def make(**fields: Any) -> Collection:
        values: dict[str, Any] = {
            "team_id": dataset.team_id,
            "dataset_id": dataset.id,
            "name": "notes.txt",
            "type": "file",
            "file_id": "team-1/notes.txt",
            "process_config": {"training_type": "chunk", "chunk_size": 200, "index_size": 512},
        }
        values.update(fields)
        with transaction(services.session_factory) as session:
            row = Collection(**values)
            session.add(row)
        return row

    return make


@pytest.fixture()
def collection(make_collection: Callable[..., Collection]) -> Collection:
    return make_collection()
