"""LLM and embedding initialisation: single place to swap providers.

Supports two completion modes:

1. **OpenAI cloud** (default): set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint**: set ``LLM_BASE_URL`` (vLLM, Ollama,
   LiteLLM, …). ``ChatOpenAI`` works unchanged against these.

Embedding models named ``text-embedding-*`` go to OpenAI; anything else is
loaded locally through sentence-transformers.
"""

from __future__ import annotations

import logging

from langchain_core.embeddings import Embeddings
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from dataset_ingest.config import Settings

logger = logging.getLogger(__name__)


def get_llm(settings: Settings, model: str | None = None, temperature: float = 0.0) -> ChatOpenAI:
    """Return a chat model for *model* (defaults to ``settings.llm_model_name``).

    When ``settings.llm_base_url`` is set the client is pointed at that
    endpoint instead of the OpenAI cloud API. A dummy API key
    (``"EMPTY"``) is used because self-hosted servers rarely need one.
    """
    kwargs: dict = {
        "model": model or settings.llm_model_name,
        "temperature": temperature,
    }

    if settings.llm_base_url:
        logger.debug("Using OpenAI-compatible endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
        # LangChain requires a non-empty value.
        kwargs["api_key"] = settings.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = settings.openai_api_key

    return ChatOpenAI(**kwargs)


def get_embedding_function(settings: Settings, model: str | None = None) -> Embeddings:
    """Return the embedding function for *model*."""
    name = model or settings.embedding_model
    if name.startswith("text-embedding-"):
        kwargs: dict = {"model": name, "api_key": settings.openai_api_key or "EMPTY"}
        if settings.llm_base_url:
            kwargs["base_url"] = settings.llm_base_url
        return OpenAIEmbeddings(**kwargs)

    from langchain_huggingface import HuggingFaceEmbeddings

    return HuggingFaceEmbeddings(model_name=name)
