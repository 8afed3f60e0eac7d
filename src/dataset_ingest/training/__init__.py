"""
Training: the task ledger and the workers that drain it.

Public surface
--------------
- :class:`TrainingLedger`: enqueue / claim / settle tasks.
- :class:`ParseWorker`, :class:`ChunkWorker`, :class:`IndexEnhanceWorker`.
"""

from dataset_ingest.training.ledger import ClaimConflict, TrainingLedger

__all__ = [
    "ChunkWorker",
    "ClaimConflict",
    "IndexEnhanceWorker",
    "ParseWorker",
    "TrainingLedger",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import workers; they depend on the service container."""
    if name == "ParseWorker":
        from dataset_ingest.training.parse import ParseWorker

        return ParseWorker
    if name == "ChunkWorker":
        from dataset_ingest.training.chunk import ChunkWorker

        return ChunkWorker
    if name == "IndexEnhanceWorker":
        from dataset_ingest.training.index_enhance import IndexEnhanceWorker

        return IndexEnhanceWorker
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
