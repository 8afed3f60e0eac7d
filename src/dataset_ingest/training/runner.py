"""Worker process entry point: ``python -m dataset_ingest.training``."""

from __future__ import annotations

import argparse
import logging
import time

from dataset_ingest.config import Settings
from dataset_ingest.dataset.images import purge_expired_images
from dataset_ingest.db.session import transaction
from dataset_ingest.models import TrainingMode
from dataset_ingest.services import Services, build_services
from dataset_ingest.training.base import BaseWorker
from dataset_ingest.training.chunk import ChunkWorker
from dataset_ingest.training.index_enhance import IndexEnhanceWorker
from dataset_ingest.training.parse import ParseWorker

logger = logging.getLogger(__name__)

WORKERS: dict[TrainingMode, type[BaseWorker]] = {
    TrainingMode.parse: ParseWorker,
    TrainingMode.chunk: ChunkWorker,
    TrainingMode.index_enhance: IndexEnhanceWorker,
}


def build_workers(services: Services, modes: list[TrainingMode] | None = None) -> list[BaseWorker]:
    return [WORKERS[mode](services) for mode in (modes or list(WORKERS))]


def clean_expired_images(services: Services) -> int:
    with transaction(services.session_factory) as session:
        paths = purge_expired_images(session)
    if paths:
        services.files.delete(paths)
        logger.info("Removed %d expired images", len(paths))
    return len(paths)


def run_cycle(workers: list[BaseWorker]) -> int:
    """One pass over every worker; returns how many tasks were handled."""
    return sum(worker.run_once() for worker in workers)


def run_forever(services: Services, workers: list[BaseWorker]) -> None:
    poll = services.settings.worker_poll_interval
    while True:
        handled = run_cycle(workers)
        clean_expired_images(services)
        if handled == 0:
            time.sleep(poll)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run dataset training workers")
    parser.add_argument(
        "--mode",
        action="append",
        choices=[m.value for m in TrainingMode],
        help="Only run workers for this mode (repeatable)",
    )
    parser.add_argument("--once", action="store_true", help="Drain claimable tasks once and exit")
    args = parser.parse_args(argv)

    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    services = build_services(settings)
    workers = build_workers(services, [TrainingMode(m) for m in args.mode] if args.mode else None)
    logger.info("Starting workers: %s", ", ".join(w.queue_name for w in workers))
    try:
        if args.once:
            handled = run_cycle(workers)
            clean_expired_images(services)
            logger.info("Handled %d tasks", handled)
        else:
            run_forever(services, workers)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        services.close()
