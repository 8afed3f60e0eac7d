"""Unit tests for the chunking engine, splitter and spreadsheet helpers."""

from __future__ import annotations

import pytest

from dataset_ingest.chunking import (
    CUSTOM_SPLIT_SIGN,
    format_worksheets,
    parse_backup_to_chunks,
    raw_text_to_chunks,
    split_text,
)
from dataset_ingest.models import ChunkTriggerType

LONG_TEXT = "\n\n".join(
    f"Paragraph {i}. " + "Kubeflow orchestrates machine learning workflows on Kubernetes. " * 6
    for i in range(12)
)


# ── Trigger gating ──────────────────────────────────────────────────────


class TestTriggerGating:
    def test_short_text_under_min_size_is_one_chunk(self) -> None:
        text = "x" * 500
        chunks = raw_text_to_chunks(
            text,
            chunk_trigger_type=ChunkTriggerType.min_size,
            chunk_trigger_min_size=1000,
            chunk_size=100,
        )
        assert len(chunks) == 1
        assert chunks[0].q == text
        assert chunks[0].a == ""

    def test_force_chunk_ignores_min_size(self) -> None:
        text = "word " * 200
        chunks = raw_text_to_chunks(
            text,
            chunk_trigger_type=ChunkTriggerType.force_chunk,
            chunk_trigger_min_size=100_000,
            chunk_size=200,
        )
        assert len(chunks) > 1

    def test_max_size_keeps_text_below_seventy_percent(self) -> None:
        text = "y " * 400
        chunks = raw_text_to_chunks(
            text,
            chunk_trigger_type=ChunkTriggerType.max_size,
            chunk_trigger_min_size=10,
            chunk_size=100,
            max_size=2000,
        )
        assert [c.q for c in chunks] == [text]

    def test_long_text_is_split_below_chunk_size(self) -> None:
        chunks = raw_text_to_chunks(LONG_TEXT, chunk_trigger_min_size=100, chunk_size=400)
        assert len(chunks) > 1
        assert all(len(c.q) <= 400 for c in chunks)
        assert all(c.a == "" and c.indexes == [] for c in chunks)

    def test_image_ids_attach_to_every_chunk(self) -> None:
        chunks = raw_text_to_chunks("short", image_id_list=["img-1"])
        assert chunks[0].image_id_list == ["img-1"]


# ── Backup CSV ──────────────────────────────────────────────────────────


class TestBackupParse:
    def test_two_rows_with_extra_indexes(self) -> None:
        chunks = raw_text_to_chunks("q1,a1\nq2,a2,extra1,extra2", backup_parse=True)
        assert len(chunks) == 2
        assert (chunks[0].q, chunks[0].a, chunks[0].indexes) == ("q1", "a1", [])
        assert chunks[1].indexes == ["extra1", "extra2"]

    def test_header_row_is_skipped(self) -> None:
        chunks = parse_backup_to_chunks("Q,A,index\nwhat,that,alt\n")
        assert [(c.q, c.a, c.indexes) for c in chunks] == [("what", "that", ["alt"])]

    def test_empty_rows_are_dropped(self) -> None:
        chunks = parse_backup_to_chunks('q1,a1\n,\n"",""\nq2,\n')
        assert [c.q for c in chunks] == ["q1", "q2"]

    def test_backup_wins_over_spreadsheet_name(self) -> None:
        chunks = raw_text_to_chunks("q1,a1", backup_parse=True, filename="export.xlsx")
        assert chunks[0].a == "a1"


# ── Spreadsheets ────────────────────────────────────────────────────────


class TestSpreadsheet:
    @pytest.fixture()
    def workbook_text(self) -> str:
        return format_worksheets(
            {
                "Prices": [["product", "price"], ["apple", 3], [None, None], ["pear", 4]],
                "Empty": [[None], []],
                "Stock": [["item", "qty"], ["apple", "10\n12"]],
            }
        )

    def test_format_skips_sheets_without_rows(self, workbook_text: str) -> None:
        assert "=== Sheet: Prices ===" in workbook_text
        assert "=== Sheet: Empty ===" not in workbook_text
        assert workbook_text.count(CUSTOM_SPLIT_SIGN) == 1
        assert "qty: 10 | 12" in workbook_text

    def test_one_chunk_per_row_ignoring_size_settings(self, workbook_text: str) -> None:
        chunks = raw_text_to_chunks(
            workbook_text,
            filename="Inventory.XLSX",
            chunk_size=5,
            chunk_trigger_type=ChunkTriggerType.force_chunk,
        )
        assert [c.q for c in chunks] == [
            "Sheet: Prices\nRow 1:\nproduct: apple\nprice: 3",
            "Sheet: Prices\nRow 2:\nproduct: pear\nprice: 4",
            "Sheet: Stock\nRow 1:\nitem: apple\nqty: 10 | 12",
        ]

    def test_non_spreadsheet_name_uses_general_rules(self, workbook_text: str) -> None:
        chunks = raw_text_to_chunks(workbook_text, filename="inventory.txt", chunk_trigger_min_size=100_000)
        assert len(chunks) == 1


# ── Splitter ────────────────────────────────────────────────────────────


class TestSplitText:
    def test_deterministic(self) -> None:
        kwargs = {"chunk_size": 300, "overlap_ratio": 0.2, "paragraph_chunk_deep": 2}
        assert split_text(LONG_TEXT, **kwargs) == split_text(LONG_TEXT, **kwargs)

    def test_engine_is_deterministic(self) -> None:
        first = raw_text_to_chunks(LONG_TEXT, chunk_trigger_min_size=10, chunk_size=250)
        second = raw_text_to_chunks(LONG_TEXT, chunk_trigger_min_size=10, chunk_size=250)
        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]

    def test_custom_pattern_is_a_hard_boundary(self) -> None:
        pieces = split_text("alpha===beta===gamma", chunk_size=1000, custom_reg=["==="])
        assert pieces == ["alpha", "beta", "gamma"]

    def test_markdown_headings_start_new_chunks(self) -> None:
        text = "# One\n" + "a" * 120 + "\n# Two\n" + "b" * 120
        pieces = split_text(text, chunk_size=1000, overlap_ratio=0, paragraph_chunk_deep=1, paragraph_chunk_min_size=50)
        assert len(pieces) == 2
        assert pieces[0].startswith("# One")
        assert pieces[1].startswith("# Two")
