"""Usage ledger: training bills and per-step token usage."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy.orm import Session, sessionmaker

from dataset_ingest.db.schema import UsageBill, UsageItem
from dataset_ingest.db.session import transaction

logger = logging.getLogger(__name__)


class UsageLedger(ABC):
    """Records what a training run cost.

    ``create_bill`` joins the caller's transaction so a collection and its
    bill appear together. ``push_usage`` is fire-and-forget.
    """

    @abstractmethod
    def create_bill(self, session: Session, *, team_id: str, app_name: str, source: str = "training") -> str:
        ...

    @abstractmethod
    def push_usage(
        self,
        bill_id: str | None,
        *,
        mode: str,
        model: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        session: Session | None = None,
    ) -> None:
        """Record one usage line; a given *session* is joined instead of a new one."""
        ...


class SqlUsageLedger(UsageLedger):
    """Stores bills in ``usage_bills`` and their line items in ``usage_items``."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def create_bill(self, session: Session, *, team_id: str, app_name: str, source: str = "training") -> str:
        bill = UsageBill(team_id=team_id, app_name=app_name, source=source)
        session.add(bill)
        session.flush()
        return bill.id

    def push_usage(
        self,
        bill_id: str | None,
        *,
        mode: str,
        model: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        session: Session | None = None,
    ) -> None:
        if not bill_id or (input_tokens <= 0 and output_tokens <= 0):
            return
        try:
            with transaction(self._session_factory, session) as s:
                s.add(
                    UsageItem(
                        bill_id=bill_id,
                        mode=mode,
                        model=model,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                    )
                )
        except Exception:
            logger.exception("Failed to push %s usage to bill %s", mode, bill_id)
