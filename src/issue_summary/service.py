"""
Issue summary service: the boundary the web layer calls.

Resolves an issue's documents from a DocumentSource, runs a fresh
pipeline, persists the result in a SummaryStore, and shapes responses for
the synchronous and the server-sent-event transports.
"""

import logging
from contextlib import aclosing
from typing import AsyncIterator, Callable, List, Optional, Tuple

from issue_summary.backends.llm import build_llm_client
from issue_summary.citations import build_citation_map, citation_map_from_dict
from issue_summary.config import PipelineConfig
from issue_summary.errors import IssueSummaryError, PreconditionError
from issue_summary.events import format_sse
from issue_summary.models import Document, Extraction, IssueInfo, PipelineResult, citation_map_to_dict
from issue_summary.pipeline import IssueSummaryPipeline
from issue_summary.sources import DocumentSource
from issue_summary.statistics import compute_statistics
from issue_summary.storage import SummaryStore, persist_result, summary_record
from issue_summary.synthesize import default_synthesis_prompt

logger = logging.getLogger(__name__)


class IssueSummaryService:
    """Generate, stream, fetch and preview issue summaries."""

    def __init__(
        self,
        source: DocumentSource,
        store: SummaryStore,
        config: Optional[PipelineConfig] = None,
        pipeline_factory: Optional[Callable[[], IssueSummaryPipeline]] = None,
    ):
        self.source = source
        self.store = store
        self.config = config or PipelineConfig()
        self.pipeline_factory = pipeline_factory or self._default_pipeline

    def _default_pipeline(self) -> IssueSummaryPipeline:
        return IssueSummaryPipeline(build_llm_client(self.config), self.config)

    def _resolve(self, scraper_key: str, issue_id: str) -> Tuple[str, IssueInfo, List[Document]]:
        source_name = self.source.source_name(scraper_key)
        if source_name is None:
            raise PreconditionError(f"Scraper '{scraper_key}' not found", status=404)

        issue = self.source.get_issue(scraper_key, issue_id)
        if issue is None:
            raise PreconditionError("Issue not found in cache. Please load the issue first.", status=404)
        if not issue.article_ids:
            raise PreconditionError("No articles found in cache for this issue.", status=404)

        documents = self.source.get_documents(scraper_key, issue_id)
        if not documents:
            raise PreconditionError(
                "No papers with full text found for this issue. Please scrape papers first.", status=400
            )
        return issue.journal_name or source_name, issue.issue_info, documents

    async def generate(
        self,
        scraper_key: str,
        issue_id: str,
        custom_prompt: Optional[str] = None,
        user_id: Optional[str] = None,
        field_context: Optional[str] = None,
    ) -> Tuple[int, dict]:
        """Synchronous mode: (status, body) with the full result or an error payload."""
        try:
            journal_name, issue_info, documents = self._resolve(scraper_key, issue_id)
        except PreconditionError as e:
            logger.warning(f"Cannot summarize {scraper_key}/{issue_id}: {e.message}")
            return e.status, e.to_payload()

        logger.info(f"Generating issue summary for {scraper_key}/{issue_id}: {len(documents)} papers")
        try:
            pipeline = self.pipeline_factory()
            result = await pipeline.run(
                documents, journal_name, issue_info,
                custom_prompt=custom_prompt, field_context=field_context,
            )
        except IssueSummaryError as e:
            logger.error(f"Generate issue summary error: {e.message}")
            details = f"{e.message}: {e.details}" if e.details else e.message
            return 500, {"error": "Failed to generate issue summary", "details": details}
        except Exception as e:
            logger.exception(f"Generate issue summary error: {e}")
            return 500, {"error": "Failed to generate issue summary", "details": str(e) or "Unknown"}

        saved = persist_result(
            self.store,
            summary_record(result, scraper_key, issue_id, user_id, custom_prompt, field_context),
        )
        body = result.to_dict()
        body["id"] = saved.id if saved else None
        return 200, body

    async def stream(
        self,
        scraper_key: str,
        issue_id: str,
        custom_prompt: Optional[str] = None,
        user_id: Optional[str] = None,
        field_context: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Streaming mode: SSE frames, ending with exactly one complete or error frame."""
        try:
            journal_name, issue_info, documents = self._resolve(scraper_key, issue_id)
            pipeline = self.pipeline_factory()
        except IssueSummaryError as e:
            yield format_sse("error", {"message": e.message})
            return

        def save(result: PipelineResult) -> None:
            persist_result(
                self.store,
                summary_record(result, scraper_key, issue_id, user_id, custom_prompt, field_context),
            )

        # the producer saves, even after the client has disconnected
        events = pipeline.stream(
            documents, journal_name, issue_info,
            custom_prompt=custom_prompt, field_context=field_context, on_result=save,
        )
        async with aclosing(events):
            async for event in events:
                yield event.to_sse()

    def get_summary(self, scraper_key: str, issue_id: str, user_id: Optional[str] = None) -> dict:
        """Stored summary for an issue/viewer, with statistics recomputed from its extractions."""
        row = self.store.get(scraper_key, issue_id, user_id)
        if row is None:
            return {"exists": False, "summary": None}

        extractions = [Extraction.model_validate(e) for e in row.extractions or []]
        statistics = compute_statistics(extractions).to_dict() if extractions else None

        # rows saved before citation maps were stored fall back to extraction order
        citation_map = citation_map_from_dict(row.citation_map)
        if citation_map is None and extractions:
            citation_map = build_citation_map(extractions)

        return {
            "exists": True,
            "summary": {
                "id": row.id,
                "content": row.summary_content,
                "paperCount": row.paper_count,
                "extractions": row.extractions,
                "statistics": statistics,
                "citationMap": citation_map_to_dict(citation_map) if citation_map else None,
                "fieldContext": row.field_context,
                "customPrompt": row.custom_prompt,
                "modelExtraction": row.model_extraction,
                "modelSynthesis": row.model_synthesis,
                "tokensExtraction": row.tokens_used_extraction,
                "tokensSynthesis": row.tokens_used_synthesis,
                "costEstimate": row.cost_estimate,
                "createdAt": row.created_at.isoformat() if row.created_at else None,
            },
        }

    def default_prompt(self, scraper_key: str, issue_id: str, field_context: Optional[str] = None) -> dict:
        """Preview the default synthesis instruction without calling a model."""
        source_name = self.source.source_name(scraper_key)
        if source_name is None:
            raise PreconditionError(f"Scraper '{scraper_key}' not found", status=404)

        issue = self.source.get_issue(scraper_key, issue_id)
        journal_name = (issue.journal_name if issue else None) or source_name
        issue_info = (issue.issue_info if issue else IssueInfo()).describe()
        article_count = len(issue.article_ids) if issue else 0
        return {
            "defaultPrompt": default_synthesis_prompt(journal_name, issue_info, article_count, field_context),
            "journalName": journal_name,
            "issueInfo": issue_info,
            "articleCount": article_count,
        }
