"""Chunking engine: raw text → ordered chunks under the configured policy.

Policies are applied in priority order:

1. backup CSV (``backup_parse``): one chunk per row;
2. spreadsheet file names: one chunk per worksheet row, ignoring all
   size settings;
3. trigger gating: ``maxSize`` and ``minSize`` may return the whole text
   as a single chunk;
4. general splitting via :func:`~dataset_ingest.chunking.splitter.split_text`.

The output is a pure function of the arguments; re-syncing the same
source with the same settings yields the same chunk sequence.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence

from dataset_ingest.chunking.splitter import split_text
from dataset_ingest.chunking.spreadsheet import is_spreadsheet, worksheet_rows_to_chunks
from dataset_ingest.models import Chunk, ChunkTriggerType

MAX_SIZE_TRIGGER_RATIO = 0.7
DEFAULT_MAX_SIZE_TRIGGER = 16000


def parse_backup_to_chunks(raw_text: str, image_id_list: list[str] | None = None) -> list[Chunk]:
    """Parse a ``q,a[,index...]`` CSV export.

    A leading ``q,a`` header row is skipped; rows whose q and a are both
    empty are dropped.
    """
    rows = list(csv.reader(io.StringIO(raw_text)))
    if rows and [c.strip().lower() for c in rows[0][:2]] == ["q", "a"]:
        rows = rows[1:]

    chunks: list[Chunk] = []
    for row in rows:
        q = row[0] if len(row) > 0 else ""
        a = row[1] if len(row) > 1 else ""
        if not q and not a:
            continue
        chunks.append(
            Chunk(
                q=q,
                a=a,
                indexes=[cell.strip() for cell in row[2:] if cell.strip()],
                image_id_list=image_id_list,
            )
        )
    return chunks


def raw_text_to_chunks(
    raw_text: str,
    *,
    chunk_trigger_type: ChunkTriggerType = ChunkTriggerType.min_size,
    chunk_trigger_min_size: int = 1000,
    chunk_size: int = 512,
    max_size: int | None = None,
    overlap_ratio: float = 0.2,
    paragraph_chunk_deep: int = 0,
    paragraph_chunk_min_size: int = 100,
    custom_reg: Sequence[str] = (),
    backup_parse: bool = False,
    filename: str | None = None,
    image_id_list: list[str] | None = None,
) -> list[Chunk]:
    """Split *raw_text* into chunks.

    Parameters
    ----------
    raw_text:
        Full source text.
    chunk_trigger_type:
        ``minSize`` / ``maxSize`` / ``forceChunk`` gating policy.
    chunk_trigger_min_size:
        Texts shorter than this (trimmed) stay whole unless ``forceChunk``.
    chunk_size:
        Target chunk length for general splitting.
    max_size:
        Largest chunk the completion model can handle; under ``maxSize``
        texts shorter than 70 % of it stay whole.
    overlap_ratio:
        Window overlap for general splitting.
    paragraph_chunk_deep, paragraph_chunk_min_size:
        Markdown heading boundaries (see :func:`split_text`).
    custom_reg:
        Custom split patterns.
    backup_parse:
        Treat the text as a backup CSV.
    filename:
        Used to detect spreadsheet sources.
    image_id_list:
        Images attached to every produced chunk.
    """
    raw_text = raw_text or ""

    if backup_parse:
        return parse_backup_to_chunks(raw_text, image_id_list)

    if is_spreadsheet(filename):
        return worksheet_rows_to_chunks(raw_text, image_id_list)

    text_length = len(raw_text.strip())
    if chunk_trigger_type == ChunkTriggerType.max_size:
        limit = max_size * MAX_SIZE_TRIGGER_RATIO if max_size else DEFAULT_MAX_SIZE_TRIGGER
        if text_length < limit:
            return [Chunk(q=raw_text, a="", image_id_list=image_id_list)]

    if chunk_trigger_type != ChunkTriggerType.force_chunk and text_length < chunk_trigger_min_size:
        return [Chunk(q=raw_text, a="", image_id_list=image_id_list)]

    pieces = split_text(
        raw_text,
        chunk_size=chunk_size,
        overlap_ratio=overlap_ratio,
        paragraph_chunk_deep=paragraph_chunk_deep,
        paragraph_chunk_min_size=paragraph_chunk_min_size,
        custom_reg=custom_reg,
    )
    return [Chunk(q=piece, a="", indexes=[], image_id_list=image_id_list) for piece in pieces]
