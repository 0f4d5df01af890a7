"""
Unit Tests for Response Parser

Tests JSON extraction from conversational / fenced model output.
"""

import json
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "teach_me_engine", "src"))

from teach_me_engine.errors import MalformedModelOutputError
from teach_me_engine.models import STEP_ADAPTER, MultipleChoiceStep, ValidationResult
from teach_me_engine.response_parser import extract_json_text, parse_json


class TestExtractJsonText:
    """Test suite for extract_json_text."""

    def test_fenced_block_after_preamble(self):
        raw = 'Sure! ```json\n{"a":1}\n```'
        assert extract_json_text(raw) == '{"a":1}'

    def test_fence_without_language(self):
        assert extract_json_text('```\n[1, 2]\n```') == '[1, 2]'

    def test_unterminated_fence(self):
        assert extract_json_text('```json\n{"a": 1}') == '{"a": 1}'

    def test_object_inside_prose(self):
        raw = 'Here is the result: {"a": {"b": 2}} Hope this helps!'
        assert extract_json_text(raw) == '{"a": {"b": 2}}'

    def test_backticks_inside_string_value(self):
        raw = json.dumps({"question_text": "What does ```print(x)``` output?", "correct_answer": "x"})
        assert extract_json_text(raw) == raw

    def test_fenced_json_with_backticks_inside(self):
        body = json.dumps({"question_text": "Explain ```a``` here", "correct_answer": "a"})
        assert extract_json_text("```json\n" + body + "\n```") == body

    def test_fence_followed_by_trailing_prose(self):
        raw = 'Here you go:\n```json\n{"a": 1}\n```\nHope this helps!'
        assert extract_json_text(raw) == '{"a": 1}'

    def test_plain_json_untouched(self):
        assert extract_json_text('  {"a": 1}  ') == '{"a": 1}'


class TestParseJson:
    """Test suite for parse_json."""

    def test_conversational_preamble_with_fence(self):
        assert parse_json('Sure! ```json\n{"a":1}\n```', ["a"]) == {"a": 1}

    def test_extra_fields_tolerated(self):
        assert parse_json('{"a": 1, "b": 2}', ["a"]) == {"a": 1, "b": 2}

    def test_missing_required_field(self):
        with pytest.raises(MalformedModelOutputError) as exc_info:
            parse_json('{"a": 1}', ["a", "question_text"])

        assert "question_text" in exc_info.value.message

    def test_invalid_json(self):
        with pytest.raises(MalformedModelOutputError) as exc_info:
            parse_json('{"a": 1,,}', ["a"])

        assert exc_info.value.raw_content == '{"a": 1,,}'

    def test_empty_output(self):
        with pytest.raises(MalformedModelOutputError):
            parse_json("   ")

    def test_array_when_object_required(self):
        with pytest.raises(MalformedModelOutputError):
            parse_json("[1, 2, 3]", ["a"])

    def test_validates_into_model(self):
        raw = """```json
{"is_correct": true, "feedback_type": "WRITING_ISSUE", "feedback_message": "ok",
 "score_percentage": 72.5, "exam_relevance": "2 marks"}
```"""
        result = parse_json(raw, ["is_correct"], schema=ValidationResult)

        assert isinstance(result, ValidationResult)
        assert result.feedback_type.value == "writing-issue"
        assert result.score_percentage == 72

    def test_unknown_feedback_type_is_malformed(self):
        raw = ('{"is_correct": false, "feedback_type": "spelling-issue", "feedback_message": "x",'
               ' "score_percentage": 10, "exam_relevance": ""}')
        with pytest.raises(MalformedModelOutputError):
            parse_json(raw, schema=ValidationResult)

    def test_validates_with_type_adapter(self):
        raw = ('{"step_number": 5, "step_type": "application", "question_type": "multiple-choice",'
               ' "question_text": "Which organelle?", "correct_answer": "B",'
               ' "options": ["A. a", "B. b", "C. c", "D. d"]}')
        step = parse_json(raw, schema=STEP_ADAPTER)

        assert isinstance(step, MultipleChoiceStep)
        assert len(step.options) == 4

    def test_unsupported_schema_type(self):
        with pytest.raises(TypeError):
            parse_json('{"a": 1}', schema=dict)

    def test_code_question_survives_parsing(self):
        raw = json.dumps({"question_text": "What does ```print(x)``` output?", "correct_answer": "x"})

        data = parse_json(raw, ["question_text", "correct_answer"])

        assert data["question_text"] == "What does ```print(x)``` output?"

    def test_fenced_code_question_survives_parsing(self):
        body = json.dumps({"question_text": "Fix ```a = 1``` please", "correct_answer": "a"})

        data = parse_json("```json\n" + body + "\n```", ["question_text"])

        assert data["question_text"] == "Fix ```a = 1``` please"
