import asyncio
import json

import pytest

from fakes import FakeLLM
from issue_summary.backends.llm import LLMResponse
from issue_summary.errors import ExtractionError
from issue_summary.extract import (
    ExtractionResult,
    Extractor,
    build_extraction_prompt,
    parse_extraction_json,
)
from issue_summary.models import Document, Extraction

_DOC = Document(id="paper-7", title="Group counseling outcomes", text="BODY-p7 the full text")


class _StaticLLM:
    def __init__(self, content):
        self.content = content

    async def generate(self, prompt, response_format=None, label=None):
        return LLMResponse(self.content, input_tokens=40, output_tokens=10, model="gpt-4o-mini")


def test_parse_json_inside_markdown_fence() -> None:
    content = '```json\n{"research_topic": "grief", "methodology_type": "qualitative"}\n```'
    assert parse_extraction_json(content) == {"research_topic": "grief", "methodology_type": "qualitative"}


def test_parse_json_with_surrounding_prose() -> None:
    content = 'Here you go:\n{"key_findings": "works"}\nHope this helps.'
    assert parse_extraction_json(content) == {"key_findings": "works"}


def test_parse_rejects_output_without_object() -> None:
    with pytest.raises(ValueError):
        parse_extraction_json("I could not read the paper.")


def test_prompt_truncates_text_and_mentions_field() -> None:
    prompt = build_extraction_prompt("x" * 100, field_context="family therapy", max_chars=10)
    assert prompt.endswith("x" * 10)
    assert "x" * 11 not in prompt
    assert "family therapy" in prompt


def test_extractor_success_keeps_document_identity_and_tokens() -> None:
    payload = {"paper_id": "hallucinated", "title": "Other", "research_topic": "grief"}
    extractor = Extractor(_StaticLLM(json.dumps(payload)))

    outcome = asyncio.run(extractor.extract(_DOC))

    assert isinstance(outcome, ExtractionResult)
    assert outcome.extraction.paper_id == "paper-7"
    assert outcome.extraction.title == "Group counseling outcomes"
    assert outcome.extraction.research_topic == "grief"
    assert outcome.tokens_used == 50


def test_extractor_returns_error_for_malformed_output() -> None:
    outcome = asyncio.run(Extractor(_StaticLLM("not json at all")).extract(_DOC))

    assert isinstance(outcome, ExtractionError)
    assert outcome.document_id == "paper-7"
    assert "malformed" in outcome.cause


def test_extractor_returns_error_when_call_fails() -> None:
    extractor = Extractor(FakeLLM(fail={"BODY-p7"}))

    outcome = asyncio.run(extractor.extract(_DOC))

    assert isinstance(outcome, ExtractionError)
    assert "boom" in outcome.cause


def test_unknown_enum_values_become_absent() -> None:
    extraction = Extraction.model_validate({
        "paper_id": "1",
        "title": "t",
        "methodology_type": "Quantitative ",
        "statistical_sophistication": "expert",
        "research_subjects": {"type": "teachers", "sample_size": "n=120"},
        "data_collection": "survey",
    })

    assert extraction.methodology_type == "quantitative"
    assert extraction.statistical_sophistication is None
    assert extraction.research_subjects.sample_size == 120
    assert extraction.data_collection == ["survey"]


@pytest.mark.parametrize("raw, expected", [
    ("120 (60 male, 60 female)", 120),
    ("n=120, p<.05", 120),
    ("about 1,300 students", 1300),
    ("not reported", None),
])
def test_sample_size_takes_the_first_number(raw, expected) -> None:
    extraction = Extraction.model_validate({
        "paper_id": "1",
        "title": "t",
        "research_subjects": {"type": "adolescents", "sample_size": raw},
    })
    assert extraction.research_subjects.sample_size == expected
