"""Index enhancement: LLM-generated search questions for a chunk.

One completion request per chunk asks for up to *N* short paraphrase
questions as a JSON array. Parsing is lenient: a strict JSON array between
the first ``[`` and the last ``]`` is preferred, and numbered / bulleted
lines are accepted otherwise. A failure for one chunk is logged and
yields no indexes; it never aborts the batch.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable

from pydantic import BaseModel, Field

from dataset_ingest.ai.caller import ModelCaller
from dataset_ingest.ai.prompts import build_index_enhance_prompt
from dataset_ingest.models import Chunk

logger = logging.getLogger(__name__)

MIN_TARGET_SIZE = 1
MAX_TARGET_SIZE = 20
ENHANCE_TEMPERATURE = 0.3

_LEADING_GLYPHS = re.compile(r"^[\s\d\.\)\-\*•]*")


class EnhanceResult(BaseModel):
    indexes: list[str] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0


def clamp_target_size(size: int | None, default: int = 3) -> int:
    return max(MIN_TARGET_SIZE, min(MAX_TARGET_SIZE, size or default))


def _parse_json_array(answer: str) -> list[str] | None:
    start, end = answer.find("["), answer.rfind("]")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(answer[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, list):
        return None
    return [item.strip() for item in parsed if isinstance(item, str) and item.strip()]


def _parse_lines(answer: str) -> list[str]:
    lines: list[str] = []
    for raw in answer.split("\n"):
        line = _LEADING_GLYPHS.sub("", raw).strip()
        if not line or line.startswith("[") or line.startswith("]"):
            continue
        line = line.rstrip(",").strip().strip('"').strip()
        if line:
            lines.append(line)
    return lines


def parse_generated_questions(
    answer: str,
    target_size: int,
    existing: Iterable[str] = (),
) -> list[str]:
    """Extract at most *target_size* new questions from an LLM answer.

    Texts already in *existing* and repeats within the answer are dropped.
    """
    if not answer:
        return []
    candidates = _parse_json_array(answer)
    if candidates is None:
        candidates = _parse_lines(answer)

    seen = {text.strip() for text in existing}
    questions: list[str] = []
    for text in candidates:
        if text in seen:
            continue
        seen.add(text)
        questions.append(text)
        if len(questions) >= target_size:
            break
    return questions


class IndexEnhancer:
    """Generates extra question indexes through a :class:`ModelCaller`.

    Parameters
    ----------
    model_caller:
        Completion access.
    default_model:
        Model used when a request does not name one.
    """

    def __init__(self, model_caller: ModelCaller, default_model: str | None = None) -> None:
        self._caller = model_caller
        self.default_model = default_model

    def generate(
        self,
        text: str,
        *,
        target_size: int,
        model: str | None = None,
        existing_indexes: list[str] | None = None,
    ) -> EnhanceResult:
        """Return up to *target_size* new questions for *text*.

        Any error is logged and reported as an empty result.
        """
        if not text or not text.strip():
            return EnhanceResult()

        target_size = clamp_target_size(target_size)
        existing = existing_indexes or []
        try:
            completion = self._caller.complete(
                build_index_enhance_prompt(text, target_size, existing),
                model or self.default_model,
                temperature=ENHANCE_TEMPERATURE,
            )
        except Exception:
            logger.warning("Auto index generation failed for chunk %r", text[:50], exc_info=True)
            return EnhanceResult()

        return EnhanceResult(
            indexes=parse_generated_questions(completion.text, target_size, existing),
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )

    def enhance_chunks(
        self,
        chunks: list[Chunk],
        *,
        target_size: int,
        model: str | None = None,
    ) -> EnhanceResult:
        """Append generated questions to each chunk's ``indexes`` in place.

        Returns the summed token usage; ``indexes`` of the result is the
        flat list of everything added.
        """
        total = EnhanceResult()
        for chunk in chunks:
            if not chunk.q or not chunk.q.strip():
                continue
            result = self.generate(
                chunk.q,
                target_size=target_size,
                model=model,
                existing_indexes=list(chunk.indexes),
            )
            chunk.indexes.extend(result.indexes)
            total.indexes.extend(result.indexes)
            total.input_tokens += result.input_tokens
            total.output_tokens += result.output_tokens
        return total
