"""
DB: SQLAlchemy tables and transaction helpers.
"""

from dataset_ingest.db.schema import (
    FAR_FUTURE,
    Base,
    Collection,
    Dataset,
    DatasetData,
    DatasetImage,
    TrainingTask,
    UsageBill,
    UsageItem,
    new_id,
    utcnow,
)
from dataset_ingest.db.session import init_db, make_engine, make_session_factory, transaction

__all__ = [
    "FAR_FUTURE",
    "Base",
    "Collection",
    "Dataset",
    "DatasetData",
    "DatasetImage",
    "TrainingTask",
    "UsageBill",
    "UsageItem",
    "init_db",
    "make_engine",
    "make_session_factory",
    "new_id",
    "transaction",
    "utcnow",
]
