"""Per-training-type processing configuration.

Each training type has its own variant carrying only the fields that make
sense for it; :func:`build_process_config` is the single pure mapping
from a loose request payload to a variant.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from dataset_ingest.ai.profiles import EmbeddingProfile, LLMProfile, get_llm_max_chunk_size
from dataset_ingest.indexing.generator import clamp_target_size
from dataset_ingest.models import ChunkTriggerType, ParagraphChunkAIMode, TrainingType

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_TRIGGER_MIN_SIZE = 1000
DEFAULT_PARAGRAPH_MIN_SIZE = 100
CHUNK_OVERLAP_RATIO = 0.2


class _ProcessConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    index_size: int = 512

    @property
    def overlap_ratio(self) -> float:
        return 0.0

    @property
    def backup_parse(self) -> bool:
        return False


class _SplittingConfig(_ProcessConfigBase):
    chunk_trigger_type: ChunkTriggerType = ChunkTriggerType.min_size
    chunk_trigger_min_size: int = DEFAULT_TRIGGER_MIN_SIZE
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_size: int | None = None
    paragraph_chunk_deep: int = 0
    paragraph_chunk_min_size: int = DEFAULT_PARAGRAPH_MIN_SIZE
    paragraph_chunk_ai_mode: ParagraphChunkAIMode = ParagraphChunkAIMode.forbid
    custom_reg: tuple[str, ...] = ()

    def chunk_options(self) -> dict[str, Any]:
        """Keyword arguments for :func:`~dataset_ingest.chunking.raw_text_to_chunks`."""
        return {
            "chunk_trigger_type": self.chunk_trigger_type,
            "chunk_trigger_min_size": self.chunk_trigger_min_size,
            "chunk_size": self.chunk_size,
            "max_size": self.max_size,
            "overlap_ratio": self.overlap_ratio,
            "paragraph_chunk_deep": self.paragraph_chunk_deep,
            "paragraph_chunk_min_size": self.paragraph_chunk_min_size,
            "custom_reg": self.custom_reg,
        }


class ChunkProcessConfig(_SplittingConfig):
    training_type: Literal["chunk"] = "chunk"
    auto_indexes: bool = False
    auto_indexes_model: str | None = None
    auto_indexes_size: int = 3

    @property
    def overlap_ratio(self) -> float:
        return CHUNK_OVERLAP_RATIO


class QAProcessConfig(_SplittingConfig):
    training_type: Literal["qa"] = "qa"
    qa_prompt: str | None = None


class BackupProcessConfig(_ProcessConfigBase):
    training_type: Literal["backup"] = "backup"

    @property
    def backup_parse(self) -> bool:
        return True

    def chunk_options(self) -> dict[str, Any]:
        return {}


class TemplateProcessConfig(BackupProcessConfig):
    training_type: Literal["template"] = "template"  # type: ignore[assignment]


ProcessConfig = Annotated[
    Union[ChunkProcessConfig, QAProcessConfig, BackupProcessConfig, TemplateProcessConfig],
    Field(discriminator="training_type"),
]

_adapter: TypeAdapter[ProcessConfig] = TypeAdapter(ProcessConfig)


def load_process_config(data: Mapping[str, Any] | None) -> ProcessConfig:
    """Rebuild a variant from its stored ``model_dump()``."""
    return _adapter.validate_python(dict(data or {"training_type": "chunk"}))


def build_process_config(
    raw: Mapping[str, Any],
    *,
    llm: LLMProfile | None,
    embedding: EmbeddingProfile,
    default_auto_indexes_size: int = 3,
) -> ProcessConfig:
    """Map a loose request payload to the variant for its training type.

    ``auto`` is accepted as an alias of ``chunk`` with auto indexes on.
    Sizes are clamped to what the completion and embedding models accept.
    """
    training_type = TrainingType(raw.get("training_type") or TrainingType.chunk)
    auto_indexes = bool(raw.get("auto_indexes"))
    if training_type == TrainingType.auto:
        training_type = TrainingType.chunk
        auto_indexes = True

    index_size = min(
        raw.get("index_size") or embedding.default_index_size,
        embedding.max_tokens,
    )

    if training_type in (TrainingType.backup, TrainingType.template):
        cls = BackupProcessConfig if training_type == TrainingType.backup else TemplateProcessConfig
        return cls(index_size=index_size)

    llm_max_chunk = get_llm_max_chunk_size(llm)
    chunk_size = min(raw.get("chunk_size") or DEFAULT_CHUNK_SIZE, llm_max_chunk)
    if training_type == TrainingType.qa:
        chunk_size = min(raw.get("chunk_size") or llm_max_chunk, llm_max_chunk)

    common: dict[str, Any] = {
        "index_size": index_size,
        "chunk_trigger_type": raw.get("chunk_trigger_type") or ChunkTriggerType.min_size,
        "chunk_trigger_min_size": raw.get("chunk_trigger_min_size") or DEFAULT_TRIGGER_MIN_SIZE,
        "chunk_size": chunk_size,
        "max_size": llm_max_chunk,
        "paragraph_chunk_deep": raw.get("paragraph_chunk_deep") or 0,
        "paragraph_chunk_min_size": raw.get("paragraph_chunk_min_size") or DEFAULT_PARAGRAPH_MIN_SIZE,
        "paragraph_chunk_ai_mode": raw.get("paragraph_chunk_ai_mode") or ParagraphChunkAIMode.forbid,
        "custom_reg": tuple(raw.get("custom_reg") or ()),
    }

    if training_type == TrainingType.qa:
        return QAProcessConfig(qa_prompt=raw.get("qa_prompt"), **common)

    return ChunkProcessConfig(
        auto_indexes=auto_indexes,
        auto_indexes_model=raw.get("auto_indexes_model") if auto_indexes else None,
        auto_indexes_size=clamp_target_size(raw.get("auto_indexes_size"), default_auto_indexes_size),
        **common,
    )
