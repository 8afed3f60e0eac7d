"""Domain enums and value objects shared across the pipeline."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class TrainingMode(str, Enum):
    """Which worker may claim a ledger row."""

    parse = "parse"
    chunk = "chunk"
    index_enhance = "indexEnhance"


class TrainingType(str, Enum):
    """How a collection's content is turned into data rows."""

    chunk = "chunk"
    qa = "qa"
    backup = "backup"
    template = "template"
    # Deprecated alias: chunk + auto indexes.
    auto = "auto"


class ChunkTriggerType(str, Enum):
    min_size = "minSize"
    max_size = "maxSize"
    force_chunk = "forceChunk"


class ParagraphChunkAIMode(str, Enum):
    forbid = "forbid"
    auto = "auto"
    force = "force"


class CollectionType(str, Enum):
    folder = "folder"
    virtual = "virtual"
    file = "file"
    link = "link"
    api_file = "apiFile"
    external_file = "externalFile"


class DatasetType(str, Enum):
    folder = "folder"
    dataset = "dataset"
    website = "websiteDataset"


class IndexType(str, Enum):
    default = "default"
    custom = "custom"


class SourceReadType(str, Enum):
    file_local = "fileLocal"
    link = "link"
    api_file = "apiFile"
    external_file = "externalFile"


class Chunk(BaseModel):
    """One unit produced by the chunking engine.

    Attributes
    ----------
    q:
        Main text (question / content).
    a:
        Optional answer or supplementary content.
    indexes:
        Extra index texts supplied up front (backup columns, generated
        questions).
    image_id:
        Set for image-only chunks created from an uploaded image list.
    image_id_list:
        Images referenced by a text chunk.
    """

    q: str = ""
    a: str = ""
    indexes: list[str] = Field(default_factory=list)
    image_id: str | None = None
    image_id_list: list[str] | None = None


class IndexEntry(BaseModel):
    """A searchable string attached to a data row and its vector id."""

    type: IndexType = IndexType.custom
    text: str
    data_id: str | None = None


class SourceDescriptor(BaseModel):
    """Everything the raw-text reader needs to (re)fetch a collection's content."""

    type: SourceReadType
    source_id: str
    selector: str | None = None
    external_file_id: str | None = None
    api_server: dict | None = None


class RawTextResult(BaseModel):
    title: str | None = None
    raw_text: str
