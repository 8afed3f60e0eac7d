"""Embedding / completion calls behind one opaque interface.

The pipeline never talks to a provider SDK directly; it goes through a
:class:`ModelCaller` so tests (and alternative providers) can inject their
own implementation.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from pydantic import BaseModel

from dataset_ingest.ai.llm import get_embedding_function, get_llm
from dataset_ingest.config import Settings

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings
    from langchain_core.messages import BaseMessage
    from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count (≈4 chars/token) for providers that omit usage."""
    if not text:
        return 0
    return max(len(text) // 4, 1)


class EmbeddingResult(BaseModel):
    vector: list[float]
    tokens: int = 0


class CompletionResult(BaseModel):
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class ModelCaller(ABC):
    """Opaque request/response access to embedding and completion models."""

    @abstractmethod
    def embed(self, text: str, model: str | None = None) -> EmbeddingResult:
        """Embed *text* with *model* (``None`` → configured default)."""
        ...

    @abstractmethod
    def complete(
        self,
        messages: list[BaseMessage],
        model: str | None = None,
        *,
        temperature: float = 0.0,
    ) -> CompletionResult:
        """Run one chat completion and return its text and token usage."""
        ...


class LangChainModelCaller(ModelCaller):
    """:class:`ModelCaller` backed by LangChain chat / embedding clients.

    Clients are created lazily and reused per model name.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._lock = threading.Lock()
        self._llms: dict[tuple[str, float], ChatOpenAI] = {}
        self._embedders: dict[str, Embeddings] = {}

    def _llm(self, model: str | None, temperature: float) -> ChatOpenAI:
        key = (model or self._settings.llm_model_name, temperature)
        with self._lock:
            if key not in self._llms:
                self._llms[key] = get_llm(self._settings, model=key[0], temperature=temperature)
            return self._llms[key]

    def _embedder(self, model: str | None) -> Embeddings:
        name = model or self._settings.embedding_model
        with self._lock:
            if name not in self._embedders:
                self._embedders[name] = get_embedding_function(self._settings, name)
            return self._embedders[name]

    def embed(self, text: str, model: str | None = None) -> EmbeddingResult:
        vector = self._embedder(model).embed_query(text)
        return EmbeddingResult(vector=list(vector), tokens=estimate_tokens(text))

    def complete(
        self,
        messages: list[BaseMessage],
        model: str | None = None,
        *,
        temperature: float = 0.0,
    ) -> CompletionResult:
        response = self._llm(model, temperature).invoke(messages)
        text = response.content if isinstance(response.content, str) else str(response.content)

        usage = getattr(response, "usage_metadata", None) or {}
        input_tokens = usage.get("input_tokens") or sum(
            estimate_tokens(str(m.content)) for m in messages
        )
        output_tokens = usage.get("output_tokens") or estimate_tokens(text)
        return CompletionResult(text=text, input_tokens=input_tokens, output_tokens=output_tokens)
