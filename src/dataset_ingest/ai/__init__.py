"""
AI: completion / embedding access, model limits and prompt templates.

Public API
----------
- :class:`ModelCaller`: the opaque ``embed`` / ``complete`` interface.
- :class:`LangChainModelCaller`: default implementation.
- :func:`get_llm_max_chunk_size`: sizing helper for the chunking engine.
"""

from dataset_ingest.ai.caller import (
    CompletionResult,
    EmbeddingResult,
    LangChainModelCaller,
    ModelCaller,
    estimate_tokens,
)
from dataset_ingest.ai.profiles import (
    EmbeddingProfile,
    LLMProfile,
    get_embedding_profile,
    get_llm_max_chunk_size,
    get_llm_profile,
)

__all__ = [
    "CompletionResult",
    "EmbeddingProfile",
    "EmbeddingResult",
    "LLMProfile",
    "LangChainModelCaller",
    "ModelCaller",
    "estimate_tokens",
    "get_embedding_profile",
    "get_llm_max_chunk_size",
    "get_llm_profile",
]
