"""Model limits used to size chunks and indexes."""

from __future__ import annotations

from pydantic import BaseModel

from dataset_ingest.config import Settings

MIN_LLM_CHUNK_SIZE = 2000
DEFAULT_LLM_CHUNK_SIZE = 8000


class LLMProfile(BaseModel):
    name: str
    max_context: int
    max_response: int


class EmbeddingProfile(BaseModel):
    name: str
    max_tokens: int
    default_index_size: int = 512


def get_llm_profile(settings: Settings, name: str | None = None) -> LLMProfile:
    return LLMProfile(
        name=name or settings.llm_model_name,
        max_context=settings.llm_max_context,
        max_response=settings.llm_max_response,
    )


def get_embedding_profile(settings: Settings, name: str | None = None) -> EmbeddingProfile:
    return EmbeddingProfile(
        name=name or settings.embedding_model,
        max_tokens=settings.embedding_max_tokens,
        default_index_size=min(512, settings.embedding_max_tokens),
    )


def get_llm_max_chunk_size(profile: LLMProfile | None) -> int:
    """Largest chunk the completion model can take alongside its answer."""
    if profile is None:
        return DEFAULT_LLM_CHUNK_SIZE
    return max(profile.max_context - profile.max_response, MIN_LLM_CHUNK_SIZE)
