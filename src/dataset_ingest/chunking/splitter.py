"""General-purpose text splitting."""

from __future__ import annotations

import re
from collections.abc import Sequence

from langchain_text_splitters import RecursiveCharacterTextSplitter

DEFAULT_SEPARATORS = ["\n\n", "\n", "。", ". ", "！", "! ", "？", "? ", "；", "; ", " ", ""]


def _split_by_custom_patterns(text: str, patterns: Sequence[str]) -> list[str]:
    pieces = [text]
    for pattern in patterns:
        if not pattern:
            continue
        regex = re.compile(pattern)
        next_pieces: list[str] = []
        for piece in pieces:
            next_pieces.extend(p for p in regex.split(piece) if p and p.strip())
        pieces = next_pieces
    return pieces


def _split_markdown_sections(text: str, depth: int, min_size: int) -> list[str]:
    """Cut *text* before every markdown heading of level ``<= depth``.

    Sections shorter than *min_size* are merged into the section that
    follows them so headings are never left on their own.
    """
    heading = re.compile(rf"^#{{1,{depth}}}\s", re.MULTILINE)
    starts = [m.start() for m in heading.finditer(text)]
    if not starts:
        return [text]
    if starts[0] != 0:
        starts.insert(0, 0)
    bounds = starts + [len(text)]
    sections = [text[bounds[i] : bounds[i + 1]] for i in range(len(starts))]

    merged: list[str] = []
    pending = ""
    for section in sections:
        pending += section
        if len(pending.strip()) >= min_size:
            merged.append(pending)
            pending = ""
    if pending.strip():
        if merged:
            merged[-1] += pending
        else:
            merged.append(pending)
    return merged


def split_text(
    text: str,
    *,
    chunk_size: int = 512,
    overlap_ratio: float = 0.2,
    paragraph_chunk_deep: int = 0,
    paragraph_chunk_min_size: int = 100,
    custom_reg: Sequence[str] = (),
) -> list[str]:
    """Split *text* into ordered, possibly overlapping chunks.

    Parameters
    ----------
    text:
        Raw text to split.
    chunk_size:
        Maximum number of characters per chunk.
    overlap_ratio:
        Fraction of ``chunk_size`` shared between consecutive chunks.
    paragraph_chunk_deep:
        Markdown heading depth treated as hard boundaries (0 disables).
    paragraph_chunk_min_size:
        Minimum section length before a heading boundary is honoured.
    custom_reg:
        Regular expressions whose matches are hard split points.

    Returns
    -------
    list[str]
        Non-empty chunks, in source order.
    """
    if not text or not text.strip():
        return []

    chunk_size = max(int(chunk_size), 1)
    overlap = min(int(chunk_size * overlap_ratio), chunk_size - 1) if chunk_size > 1 else 0
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=max(overlap, 0),
        length_function=len,
        separators=DEFAULT_SEPARATORS,
    )

    chunks: list[str] = []
    for piece in _split_by_custom_patterns(text, custom_reg):
        sections = (
            _split_markdown_sections(piece, paragraph_chunk_deep, paragraph_chunk_min_size)
            if paragraph_chunk_deep > 0
            else [piece]
        )
        for section in sections:
            section = section.strip()
            if not section:
                continue
            if len(section) <= chunk_size:
                chunks.append(section)
            else:
                chunks.extend(c.strip() for c in splitter.split_text(section) if c.strip())
    return chunks
