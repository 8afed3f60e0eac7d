"""
Chunking: turns raw source text into the ordered chunks that become data rows.
"""

from dataset_ingest.chunking.engine import parse_backup_to_chunks, raw_text_to_chunks
from dataset_ingest.chunking.splitter import split_text
from dataset_ingest.chunking.spreadsheet import (
    CUSTOM_SPLIT_SIGN,
    format_worksheets,
    is_spreadsheet,
    worksheet_rows_to_chunks,
)

__all__ = [
    "CUSTOM_SPLIT_SIGN",
    "format_worksheets",
    "is_spreadsheet",
    "parse_backup_to_chunks",
    "raw_text_to_chunks",
    "split_text",
    "worksheet_rows_to_chunks",
]
