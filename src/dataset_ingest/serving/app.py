"""FastAPI application exposing collection orchestration as a REST API."""

from __future__ import annotations

import logging
import threading
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dataset_ingest.config import settings
from dataset_ingest.dataset.collection import (
    CollectionService,
    CreateCollectionRequest,
    CreateCollectionResult,
    EnhanceRequestResult,
    SyncProcessResult,
)
from dataset_ingest.dataset.dataset import DatasetService
from dataset_ingest.errors import (
    CollectionNotFoundError,
    DatasetHierarchyError,
    DatasetIngestError,
    DatasetNotFoundError,
    ModelNotFoundError,
    QuotaExceededError,
    SourceConfigError,
    SourceReadError,
)
from dataset_ingest.services import Services, build_services

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[DatasetIngestError], int] = {
    CollectionNotFoundError: 404,
    DatasetNotFoundError: 404,
    DatasetHierarchyError: 409,
    SourceConfigError: 422,
    SourceReadError: 422,
    ModelNotFoundError: 422,
    QuotaExceededError: 429,
}

_services_lock = threading.Lock()


# ── Request / Response schemas ────────────────────────────────────────
class SyncCollectionRequest(BaseModel):
    """Process an existing collection inline."""

    team_id: str
    collection_id: str
    bill_id: str | None = None


class EnhanceCollectionRequest(BaseModel):
    team_id: str
    auto_indexes_model: str | None = None
    auto_indexes_size: int | None = Field(default=None, ge=1, le=20)


class EnhanceDataRequest(EnhanceCollectionRequest):
    data_ids: list[str]


class DeleteResponse(BaseModel):
    deleted: int


class TrainingTaskView(BaseModel):
    id: str
    mode: str
    chunk_index: int
    retry_count: int
    error_msg: str | None = None


class TrainingStatus(BaseModel):
    collection_id: str
    total: int
    tasks: list[TrainingTaskView]


# ── Dependencies ──────────────────────────────────────────────────────
def get_services(request: Request) -> Services:
    """The app's service container, built from settings on first use."""
    state = request.app.state
    if getattr(state, "services", None) is None:
        with _services_lock:
            if getattr(state, "services", None) is None:
                state.services = build_services(settings)
    return state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def get_collection_service(services: ServicesDep) -> CollectionService:
    return CollectionService(services)


def get_dataset_service(services: ServicesDep) -> DatasetService:
    return DatasetService(services)


CollectionsDep = Annotated[CollectionService, Depends(get_collection_service)]
DatasetsDep = Annotated[DatasetService, Depends(get_dataset_service)]


# ── Application ───────────────────────────────────────────────────────
def create_app(services: Services | None = None) -> FastAPI:
    """Build the API; pass *services* to bypass the settings-based container."""
    app = FastAPI(
        title="Dataset Ingest API",
        version="0.1.0",
        description="Create, process and delete dataset collections.",
    )
    app.state.services = services

    @app.exception_handler(DatasetIngestError)
    async def handle_ingest_error(request: Request, exc: DatasetIngestError) -> JSONResponse:
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
        logger.info("%s %s -> %d: %s", request.method, request.url.path, status, exc)
        return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/health/ready")
    def ready(services: ServicesDep) -> JSONResponse:
        """Readiness check: the vector backend answers."""
        ok = services.vectors.health_check()
        return JSONResponse(status_code=200 if ok else 503, content={"vector_store": ok})

    @app.post("/collections", response_model=CreateCollectionResult, status_code=201)
    def create_collection(request: CreateCollectionRequest, collections: CollectionsDep) -> CreateCollectionResult:
        """Create a collection and queue its ingestion."""
        return collections.create_collection_and_insert_data(request)

    @app.post("/collections/sync", response_model=SyncProcessResult)
    def sync_collection(request: SyncCollectionRequest, collections: CollectionsDep) -> SyncProcessResult:
        """Read, chunk and embed a collection without the training queue."""
        collections.get_collection(request.collection_id, request.team_id)
        return collections.process_collection_data_sync(request.collection_id, bill_id=request.bill_id)

    @app.delete("/collections/{collection_id}", response_model=DeleteResponse)
    def delete_collection(
        collection_id: str,
        collections: CollectionsDep,
        team_id: str = Query(...),
    ) -> DeleteResponse:
        deleted = collections.delete_collections(team_id, [collection_id])
        if not deleted:
            raise CollectionNotFoundError(collection_id)
        return DeleteResponse(deleted=deleted)

    @app.post("/collections/{collection_id}/enhance-index", response_model=EnhanceRequestResult)
    def enhance_collection(
        collection_id: str,
        request: EnhanceCollectionRequest,
        collections: CollectionsDep,
    ) -> EnhanceRequestResult:
        """Queue index enhancement for a collection's persisted data."""
        return collections.enhance_collection_indexes(
            collection_id,
            team_id=request.team_id,
            model=request.auto_indexes_model,
            size=request.auto_indexes_size,
        )

    @app.post("/data/enhance-index", response_model=EnhanceRequestResult)
    def enhance_data(request: EnhanceDataRequest, collections: CollectionsDep) -> EnhanceRequestResult:
        return collections.enhance_data_indexes(
            request.data_ids,
            team_id=request.team_id,
            model=request.auto_indexes_model,
            size=request.auto_indexes_size,
        )

    @app.delete("/datasets/{dataset_id}", response_model=DeleteResponse)
    def delete_dataset(dataset_id: str, datasets: DatasetsDep, team_id: str = Query(...)) -> DeleteResponse:
        """Delete a dataset, its children and everything they contain."""
        return DeleteResponse(deleted=datasets.delete_dataset(team_id, dataset_id))

    @app.get("/collections/{collection_id}/training", response_model=TrainingStatus)
    def training_status(
        collection_id: str,
        services: ServicesDep,
        collections: CollectionsDep,
        team_id: str = Query(...),
    ) -> TrainingStatus:
        """Pending tasks of a collection with their last error."""
        collections.get_collection(collection_id, team_id)
        tasks = services.ledger.list_for_collection(collection_id)
        return TrainingStatus(
            collection_id=collection_id,
            total=services.ledger.count_for_collection(collection_id),
            tasks=[
                TrainingTaskView(
                    id=task.id,
                    mode=task.mode,
                    chunk_index=task.chunk_index,
                    retry_count=task.retry_count,
                    error_msg=task.error_msg,
                )
                for task in tasks
            ],
        )

    return app


app = create_app()


def main() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
