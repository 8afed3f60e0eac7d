"""Small shared helpers."""

from dataset_ingest.utils.throttle import Throttle

__all__ = ["Throttle"]
