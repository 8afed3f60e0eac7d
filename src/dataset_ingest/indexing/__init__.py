"""Index enhancement generator."""

from dataset_ingest.indexing.generator import (
    EnhanceResult,
    IndexEnhancer,
    clamp_target_size,
    parse_generated_questions,
)

__all__ = ["EnhanceResult", "IndexEnhancer", "clamp_target_size", "parse_generated_questions"]
