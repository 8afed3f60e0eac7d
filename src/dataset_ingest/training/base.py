"""Shared claim loop and failure policy for pipeline workers."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, ClassVar

from sqlalchemy.exc import SQLAlchemyError

from dataset_ingest.db.schema import Collection, Dataset, TrainingTask
from dataset_ingest.errors import QuotaExceededError, SourceConfigError
from dataset_ingest.models import TrainingMode
from dataset_ingest.training.ledger import ClaimConflict

if TYPE_CHECKING:
    from dataset_ingest.services import Services

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """Claims tasks of one mode and runs :meth:`process` on each.

    Failure policy, applied to every subclass:

    * missing/invalid source configuration → task deleted;
    * quota exceeded → task parked far in the future with the error;
    * anything else → error recorded, lease reset one minute into the past
      so the next claim (while ``retry_count`` lasts) can pick it up.

    Parameters
    ----------
    services:
        Shared collaborators.
    sleep:
        Back-off function (tests pass a no-op).
    """

    mode: ClassVar[TrainingMode]
    queue_name: ClassVar[str]

    def __init__(self, services: Services, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self.services = services
        self.ledger = services.ledger
        self._sleep = sleep

    @property
    def prefix(self) -> str:
        return f"[{self.queue_name}]"

    def run_once(self, max_tasks: int | None = None) -> int:
        """Process claimable tasks until none is left or *max_tasks* attempts are used.

        Returns the number of tasks handled (successfully or not).
        """
        budget = max_tasks or self.services.settings.max_tasks_per_run
        handled = 0
        for _ in range(budget):
            try:
                task = self.ledger.claim(self.mode)
            except (ClaimConflict, SQLAlchemyError) as exc:
                logger.warning("%s Claim failed, retrying: %s", self.prefix, exc)
                self._sleep(self.services.settings.claim_retry_delay)
                continue
            if task is None:
                break
            self.handle(task)
            handled += 1
        return handled

    def handle(self, task: TrainingTask) -> None:
        try:
            self.process(task)
        except SourceConfigError as exc:
            logger.warning("%s Unreadable source, delete task %s: %s", self.prefix, task.id, exc)
            self.ledger.delete(task.id)
        except QuotaExceededError as exc:
            logger.warning("%s Check dataset limit failed, lock task %s", self.prefix, task.id)
            self.ledger.lock_forever(task.id, str(exc))
        except Exception as exc:
            logger.exception("%s Error on task %s", self.prefix, task.id)
            self.ledger.mark_failed(task.id, str(exc) or type(exc).__name__)

    def load_owners(self, task: TrainingTask) -> tuple[Dataset, Collection] | None:
        """Dataset and collection of *task*, or ``None`` (after deleting the task) if either is gone."""
        with self.services.session_factory() as session:
            dataset = session.get(Dataset, task.dataset_id)
            collection = session.get(Collection, task.collection_id)
        if dataset is None or collection is None:
            logger.warning("%s Data not found, delete orphaned task %s", self.prefix, task.id)
            self.ledger.delete(task.id)
            return None
        return dataset, collection

    @abstractmethod
    def process(self, task: TrainingTask) -> None:
        """Run one pipeline stage for a leased *task*."""
        ...
