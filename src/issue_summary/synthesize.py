"""
Trend synthesis: one model call over every successful extraction.

The prompt is the instruction (default or caller-supplied), the
quantitative overview, and the numbered paper list. Numbers in the list
are the citation numbers the narrative must use.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from issue_summary.citations import build_citation_map
from issue_summary.errors import SynthesisError
from issue_summary.models import Extraction, IssueStatistics
from issue_summary.pricing import TokenUsage
from issue_summary.statistics import compute_statistics, format_statistics_for_prompt

logger = logging.getLogger(__name__)


def default_synthesis_prompt(
    journal_name: str,
    issue_info: str,
    article_count: int,
    field_context: Optional[str] = None,
) -> str:
    """Render the default synthesis instruction. Makes no model call."""
    expert_line = f"You are an expert in {field_context}.\n\n" if field_context else ""
    return f"""{expert_line}Below are structured extractions and a quantitative overview for the {article_count} papers published in {journal_name} {issue_info}.

Interpret the research trends of this issue from these angles:

1. **Topic trends**: shared themes and newly emerging interests
2. **Research subjects**: which populations are studied and what that implies
3. **Methodology**: methodological tendencies, quoting the statistics provided (e.g. "quantitative studies dominate at X%...")
4. **Statistical sophistication**: how advanced the analyses are and what the use of advanced techniques means

## Citation rules (very important)
- Cite specific papers with bracketed numbers: [1], [2], [3]
- Cite several papers inline with no line breaks: [1][3][5]
- Keep citations outside markdown emphasis
  - Right: **quantitative studies make up 67%**[2][3][7]
  - Wrong: **quantitative studies make up 67%[2][3][7]**
- Every major claim should cite the papers it rests on

Quote the numbers from the quantitative overview directly.
Explain the overall patterns rather than listing papers one by one.
Write in an academic but accessible tone.""".strip()


def format_paper_entry(number: int, extraction: Extraction) -> str:
    subjects = extraction.research_subjects
    subject_text = (subjects.type if subjects and subjects.type else None) or "N/A"
    if subjects and subjects.sample_size:
        subject_text += f" (n={subjects.sample_size})"
    return (
        f"[{number}] {extraction.title}\n"
        f"    - Topic: {extraction.research_topic or 'N/A'}\n"
        f"    - Subjects: {subject_text}\n"
        f"    - Method: {extraction.methodology_type or 'N/A'}\n"
        f"    - Findings: {extraction.key_findings or 'N/A'}"
    )


def build_synthesis_prompt(
    extractions: List[Extraction],
    journal_name: str,
    issue_info: str,
    custom_prompt: Optional[str] = None,
    field_context: Optional[str] = None,
    statistics: Optional[IssueStatistics] = None,
) -> str:
    """Full prompt text sent to the model; list numbering matches build_citation_map."""
    instruction = custom_prompt or default_synthesis_prompt(
        journal_name, issue_info, len(extractions), field_context
    )
    if statistics is None:
        statistics = compute_statistics(extractions)
    citation_map = build_citation_map(extractions)
    papers = [format_paper_entry(int(n), e) for n, e in zip(citation_map, extractions)]
    papers_text = "## Papers (cite by number)\n\n" + "\n\n".join(papers)
    return instruction + "\n\n" + format_statistics_for_prompt(statistics) + "\n\n" + papers_text


@dataclass(frozen=True)
class SynthesisResult:
    summary: str
    usage: TokenUsage
    model_used: str

    @property
    def tokens_synthesis(self) -> int:
        return self.usage.total


class Synthesizer:
    """Merges all extractions into one cited narrative."""

    def __init__(self, llm_client):
        self.llm_client = llm_client

    async def synthesize(
        self,
        extractions: List[Extraction],
        journal_name: str,
        issue_info: str,
        custom_prompt: Optional[str] = None,
        field_context: Optional[str] = None,
        statistics: Optional[IssueStatistics] = None,
    ) -> SynthesisResult:
        prompt = build_synthesis_prompt(
            extractions, journal_name, issue_info, custom_prompt, field_context, statistics
        )
        logger.info(f"Synthesizing trends from {len(extractions)} extractions ({len(prompt)} chars)")

        try:
            response = await self.llm_client.generate(prompt=prompt, label="synthesizing issue trends")
        except Exception as e:
            raise SynthesisError("Synthesis call failed", details=str(e)) from e

        summary = (response.content or "").strip()
        if not summary:
            raise SynthesisError("Synthesis returned empty content")

        model_used = getattr(response, "model", None) or getattr(self.llm_client, "model_used", "unknown")
        return SynthesisResult(
            summary=summary,
            usage=TokenUsage(response.input_tokens, response.output_tokens),
            model_used=model_used,
        )
