"""
Per-document structured extraction.

One model call per document. The Extractor never raises: any failure comes
back as an ExtractionError value so the coordinator decides what to do.
"""

import json
import logging
from dataclasses import dataclass
from json import JSONDecodeError
from typing import Optional, Union

from pydantic import ValidationError

from issue_summary.errors import ExtractionError
from issue_summary.models import Document, Extraction
from issue_summary.pricing import TokenUsage

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Analyze the following academic paper and extract its key information as JSON.

Respond ONLY with a JSON object in exactly this shape (no other text):

{{
  "research_topic": "main research topic or question",
  "research_subjects": {{
    "type": "type of participants (e.g. university students, adolescents, counselors)",
    "sample_size": number or null
  }},
  "methodology_type": "qualitative" | "quantitative" | "mixed",
  "data_collection": ["data collection methods"],
  "statistical_methods": ["statistical analyses used"] or null,
  "statistical_sophistication": "basic" | "intermediate" | "advanced" | null,
  "key_findings": "core findings in 1-2 sentences"
}}

Statistical sophistication levels:
- basic: t-test, frequency analysis, chi-square, correlation
- intermediate: ANOVA, regression, factor analysis
- advanced: SEM, HLM, multilevel models, latent growth models
{field_line}
Paper:
"""


@dataclass(frozen=True)
class ExtractionResult:
    """A successful extraction with the tokens it was billed."""
    extraction: Extraction
    usage: TokenUsage
    model: Optional[str] = None

    @property
    def tokens_used(self) -> int:
        return self.usage.total


ExtractionOutcome = Union[ExtractionResult, ExtractionError]


def build_extraction_prompt(text: str, field_context: Optional[str] = None, max_chars: int = 60000) -> str:
    field_line = f"\nRead it as an expert in {field_context}.\n" if field_context else ""
    return EXTRACTION_PROMPT.format(field_line=field_line) + text[:max_chars]


def parse_extraction_json(content: str) -> dict:
    """
    Parse possibly noisy model output into a JSON object.

    Handles markdown fences and prose around the object.
    """
    text = content.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(line for line in lines[1:] if not line.strip().startswith("```"))

    try:
        parsed = json.loads(text)
    except JSONDecodeError:
        parsed = _first_json_object(text)

    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object from the model")
    return parsed


def _first_json_object(text: str) -> dict:
    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char != "{":
            continue
        try:
            candidate, _ = decoder.raw_decode(text[index:])
        except JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    raise ValueError("Could not find a JSON object in model output")


class Extractor:
    """Turns one Document into an Extraction via a single model call."""

    def __init__(self, llm_client, max_text_chars: int = 60000):
        self.llm_client = llm_client
        self.max_text_chars = max_text_chars

    async def extract(self, document: Document, field_context: Optional[str] = None) -> ExtractionOutcome:
        prompt = build_extraction_prompt(document.text, field_context, self.max_text_chars)
        try:
            response = await self.llm_client.generate(
                prompt=prompt,
                response_format={"type": "json_object"},
                label=f"extracting {document.title[:50]}",
            )
            data = parse_extraction_json(response.content)
            # identity always comes from the document
            data.update(paper_id=document.id, title=document.title)
            extraction = Extraction.model_validate(data)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Unusable extraction output for {document.id}: {e}")
            return ExtractionError(document.id, f"malformed response: {e}")
        except Exception as e:
            logger.warning(f"Extraction call failed for {document.id}: {e}")
            return ExtractionError(document.id, str(e) or type(e).__name__)

        usage = TokenUsage(response.input_tokens, response.output_tokens)
        return ExtractionResult(extraction=extraction, usage=usage, model=response.model)
