"""Unit tests for LLM-generated question indexes."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

from dataset_ingest.ai.caller import ModelCaller
from dataset_ingest.indexing import IndexEnhancer, clamp_target_size, parse_generated_questions
from dataset_ingest.models import Chunk


class TestParseGeneratedQuestions:
    def test_json_array_is_capped_at_target(self) -> None:
        answer = json.dumps([f"Question {i}?" for i in range(10)])
        assert parse_generated_questions(answer, 3) == ["Question 0?", "Question 1?", "Question 2?"]

    def test_json_array_inside_prose(self) -> None:
        answer = 'Sure, here you go:\n["What is Kubeflow?", "How do pipelines run?"]\nHope this helps.'
        assert parse_generated_questions(answer, 5) == ["What is Kubeflow?", "How do pipelines run?"]

    def test_existing_and_repeated_questions_are_dropped(self) -> None:
        answer = json.dumps(["What is KServe?", "What is Kubeflow?", "What is KServe?", "Who serves models?"])
        result = parse_generated_questions(answer, 5, existing=["What is Kubeflow?"])
        assert result == ["What is KServe?", "Who serves models?"]

    def test_numbered_lines_fallback(self) -> None:
        answer = "1. What is a pipeline?\n2) How are steps cached?\n- Where do artifacts live?\n"
        assert parse_generated_questions(answer, 5) == [
            "What is a pipeline?",
            "How are steps cached?",
            "Where do artifacts live?",
        ]

    def test_broken_json_falls_back_to_lines(self) -> None:
        answer = '[\n"What is a run?",\n"What is an experiment?"\n'
        assert parse_generated_questions(answer, 5) == ["What is a run?", "What is an experiment?"]

    def test_empty_answer(self) -> None:
        assert parse_generated_questions("", 3) == []


def test_clamp_target_size() -> None:
    assert clamp_target_size(None) == 3
    assert clamp_target_size(0) == 3
    assert clamp_target_size(50) == 20
    assert clamp_target_size(-4) == 1
    assert clamp_target_size(7) == 7


class TestIndexEnhancer:
    def test_generate_reports_usage(self, model_caller) -> None:
        caller = model_caller
        caller.answers = ['["What is A?", "What is B?"]']
        result = IndexEnhancer(caller, default_model="fake-llm").generate("A and B are things.", target_size=2)
        assert result.indexes == ["What is A?", "What is B?"]
        assert (result.input_tokens, result.output_tokens) == (10, 5)
        assert len(caller.prompts) == 1

    def test_model_error_yields_empty_result(self) -> None:
        caller = MagicMock(spec=ModelCaller)
        caller.complete.side_effect = TimeoutError("model timed out")
        result = IndexEnhancer(caller).generate("Some text", target_size=3)
        assert result.indexes == []
        assert result.input_tokens == 0

    def test_blank_text_skips_the_model(self) -> None:
        caller = MagicMock(spec=ModelCaller)
        assert IndexEnhancer(caller).generate("   ", target_size=3).indexes == []
        caller.complete.assert_not_called()

    def test_enhance_chunks_appends_in_place(self, model_caller) -> None:
        caller = model_caller
        caller.answers = ['["Old?", "New one?"]', '["Second?"]']
        chunks = [
            Chunk(q="first chunk", a="", indexes=["Old?"]),
            Chunk(q="  ", a=""),
            Chunk(q="second chunk", a=""),
        ]
        total = IndexEnhancer(caller).enhance_chunks(chunks, target_size=2)
        assert chunks[0].indexes == ["Old?", "New one?"]
        assert chunks[1].indexes == []
        assert chunks[2].indexes == ["Second?"]
        assert total.indexes == ["New one?", "Second?"]
        assert total.input_tokens == 20

    def test_one_failing_chunk_does_not_abort_the_batch(self) -> None:
        caller = MagicMock(spec=ModelCaller)
        good = MagicMock(text='["Fine?"]', input_tokens=3, output_tokens=1)
        caller.complete.side_effect = [RuntimeError("boom"), good]
        chunks = [Chunk(q="one", a=""), Chunk(q="two", a="")]
        total = IndexEnhancer(caller).enhance_chunks(chunks, target_size=1)
        assert chunks[0].indexes == []
        assert chunks[1].indexes == ["Fine?"]
        assert total.output_tokens == 1
