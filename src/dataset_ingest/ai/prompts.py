"""Prompt templates used by the ingestion pipeline.

Every step that calls the LLM uses a dedicated prompt from this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

# ── 1. Index enhancement ──────────────────────────────────────────────

INDEX_ENHANCE_SYSTEM = """\
You are a question-generation assistant for a search index.

Given a passage of text, write the questions a user would type to find it.

Requirements:
1. Every question must be closely related to the passage.
2. Keep questions short and atomic so they work as search queries.
3. Cover different aspects of the passage.
4. Write the questions in the same language as the passage.
5. Decide how many questions the passage deserves, up to {target_size}.
   Short or simple passages need fewer questions.
6. Output a JSON array of strings and nothing else.\
"""

INDEX_ENHANCE_EXISTING = """
7. Do not repeat any of the existing indexes below.

Existing indexes:
{existing}\
"""


def build_index_enhance_prompt(
    text: str,
    target_size: int,
    existing_indexes: list[str] | None = None,
) -> list[BaseMessage]:
    """Build the prompt asking for up to *target_size* search questions."""
    system = INDEX_ENHANCE_SYSTEM.format(target_size=target_size)
    if existing_indexes:
        existing = "\n".join(f"- {item}" for item in existing_indexes)
        system += INDEX_ENHANCE_EXISTING.format(existing=existing)
    return [
        SystemMessage(content=system),
        HumanMessage(
            content=(
                f'Passage:\n"""\n{text}\n"""\n\n'
                f"Generate up to {target_size} questions for this passage."
            )
        ),
    ]


# ── 2. Paragraph restructuring ────────────────────────────────────────

PARAGRAPH_SYSTEM = """\
You restructure plain documents into markdown so they can be split by heading.

Rules:
- Keep every sentence of the original text; do not summarise or translate.
- Insert markdown headings (#, ##, ###) where the topic changes.
- Fix broken line wraps inside paragraphs.
- Respond with the markdown document only.\
"""


def build_paragraph_prompt(raw_text: str) -> list[BaseMessage]:
    """Build the prompt for LLM paragraph restructuring."""
    return [
        SystemMessage(content=PARAGRAPH_SYSTEM),
        HumanMessage(content=raw_text),
    ]
