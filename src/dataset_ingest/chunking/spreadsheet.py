"""Row-per-chunk handling for spreadsheet sources.

The raw-text reader renders a workbook as one text block per worksheet,
joined by :data:`CUSTOM_SPLIT_SIGN`::

    === Sheet: Prices ===
    --- Row 1 ---
    product: apple
    price: 3

    --- Row 2 ---
    product: pear
    price: 4

Each ``--- Row N ---`` block becomes exactly one chunk.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from dataset_ingest.models import Chunk

CUSTOM_SPLIT_SIGN = "-----CUSTOM_SPLIT_SIGN-----"
SHEET_SEPARATOR = f"\n\n{CUSTOM_SPLIT_SIGN}\n\n"
SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")

_SHEET_NAME = re.compile(r"=== Sheet: (.+?) ===")
_ROW = re.compile(r"--- Row (\d+) ---\n(.*?)(?=\n--- Row \d+ ---|\Z)", re.DOTALL)


def is_spreadsheet(filename: str | None) -> bool:
    return bool(filename) and filename.lower().endswith(SPREADSHEET_EXTENSIONS)


def worksheet_rows_to_chunks(raw_text: str, image_id_list: list[str] | None = None) -> list[Chunk]:
    """Turn every non-empty row block of every worksheet into a chunk."""
    chunks: list[Chunk] = []
    for worksheet in raw_text.split(SHEET_SEPARATOR):
        if not worksheet.strip():
            continue
        name_match = _SHEET_NAME.search(worksheet)
        sheet_name = name_match.group(1) if name_match else "Unknown sheet"

        for match in _ROW.finditer(worksheet):
            row_number, row_content = match.group(1), match.group(2).strip()
            if not row_content:
                continue
            chunks.append(
                Chunk(
                    q=f"Sheet: {sheet_name}\nRow {row_number}:\n{row_content}",
                    a="",
                    indexes=[],
                    image_id_list=image_id_list,
                )
            )
    return chunks


def _cell_text(cell: Any) -> str:
    return "" if cell is None else str(cell).strip()


def _format_sheet(name: str, grid: Sequence[Sequence[Any]]) -> str | None:
    rows = [list(row) for row in grid if row and any(_cell_text(c) for c in row)]
    if not rows:
        return None
    header = [re.sub(r"\s+", " ", _cell_text(c)) for c in rows[0]]
    if not any(header):
        return None

    blocks: list[str] = []
    for row_number, row in enumerate(rows[1:], start=1):
        pairs: list[str] = []
        for col, key in enumerate(header):
            value = _cell_text(row[col]) if col < len(row) else ""
            if not key or not value:
                continue
            value = re.sub(r"[\r\n]+", " | ", value).replace("\t", " ")
            pairs.append(f"{key}: {value}")
        if pairs:
            blocks.append(f"--- Row {row_number} ---\n" + "\n".join(pairs))

    if not blocks:
        return None
    return f"=== Sheet: {name} ===\n" + "\n\n".join(blocks)


def format_worksheets(sheets: Mapping[str, Sequence[Sequence[Any]]]) -> str:
    """Render parsed worksheets (name → cell grid) in the row-block format.

    The first non-empty row of each sheet is its header; sheets without a
    header or without data rows are left out.
    """
    rendered = [text for name, grid in sheets.items() if (text := _format_sheet(name, grid))]
    return SHEET_SEPARATOR.join(rendered)
