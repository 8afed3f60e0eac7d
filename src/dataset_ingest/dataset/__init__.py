"""
Dataset: collection orchestration and the helpers it composes.

Public surface
--------------
- :class:`CollectionService`: create / sync-process / delete collections.
- :class:`DatasetService`: dataset tree, time propagation, dataset deletion.
- :func:`build_process_config`: request payload → per-type config.
"""

from dataset_ingest.dataset.process_config import ProcessConfig, build_process_config, load_process_config

__all__ = [
    "CollectionService",
    "CreateCollectionRequest",
    "DatasetService",
    "ProcessConfig",
    "build_process_config",
    "load_process_config",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import services; they depend on the service container."""
    if name in ("CollectionService", "CreateCollectionRequest"):
        from dataset_ingest.dataset import collection

        return getattr(collection, name)
    if name == "DatasetService":
        from dataset_ingest.dataset.dataset import DatasetService

        return DatasetService
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
