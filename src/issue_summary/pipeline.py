"""
Issue Summary Pipeline

Runs the pipeline: extract -> index citations -> aggregate statistics -> synthesize (aka orchestrator)
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Set, Union

from issue_summary.citations import build_citation_map
from issue_summary.config import PipelineConfig
from issue_summary.coordinate import ProgressCallback, run_extraction
from issue_summary.errors import NoSuccessfulExtractionsError, PreconditionError
from issue_summary.events import EventChannel, PipelineEvent
from issue_summary.extract import Extractor
from issue_summary.models import Document, IssueInfo, PipelineResult
from issue_summary.pricing import TokenUsage, total_cost
from issue_summary.statistics import compute_statistics
from issue_summary.synthesize import Synthesizer

logger = logging.getLogger(__name__)

SYNTHESIS_PROGRESS_TITLE = "Synthesizing trends..."

# producers outlive a disconnected consumer; hold a reference until they finish
_background_tasks: Set[asyncio.Task] = set()


class PipelineState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    INDEXING = "indexing"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    ERROR = "error"


StateCallback = Callable[[PipelineState], object]
ResultCallback = Callable[[PipelineResult], object]


def _describe(issue_info: Union[str, IssueInfo]) -> str:
    return issue_info.describe() if isinstance(issue_info, IssueInfo) else issue_info


class IssueSummaryPipeline:
    """Wires together all the pipeline stages. Use one instance per request."""

    def __init__(
        self,
        llm_client=None,
        config: Optional[PipelineConfig] = None,
        extractor: Optional[Extractor] = None,
        synthesizer: Optional[Synthesizer] = None,
    ):
        self.config = config or PipelineConfig()
        if llm_client is None and (extractor is None or synthesizer is None):
            raise ValueError("llm_client is required unless both extractor and synthesizer are given")
        self.llm_client = llm_client
        self.extractor = extractor or Extractor(llm_client, max_text_chars=self.config.max_text_chars)
        self.synthesizer = synthesizer or Synthesizer(llm_client)
        self.state = PipelineState.IDLE

    async def _enter(self, state: PipelineState, on_state: Optional[StateCallback]) -> None:
        logger.info(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state
        if on_state:
            result = on_state(state)
            if inspect.isawaitable(result):
                await result

    async def run(
        self,
        documents: List[Document],
        journal_name: str,
        issue_info: Union[str, IssueInfo],
        custom_prompt: Optional[str] = None,
        field_context: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_state: Optional[StateCallback] = None,
    ) -> PipelineResult:
        """Run every stage and return the result; raises on any fatal failure."""
        issue_text = _describe(issue_info)
        try:
            if not documents:
                raise PreconditionError("No documents to summarize", status=400)

            # --- Step 1: Extract ---
            await self._enter(PipelineState.EXTRACTING, on_state)
            batch = await run_extraction(
                self.extractor,
                documents,
                field_context=field_context,
                on_progress=on_progress,
                concurrency=self.config.concurrency,
                timeout=self.config.extraction_timeout,
                citation_order=self.config.citation_order,
            )
            if not batch.extractions:
                reasons = "; ".join(f"{f.paper_id}: {f.reason}" for f in batch.failed)
                raise NoSuccessfulExtractionsError("All paper extractions failed", details=reasons)

            # --- Step 2: Index citations + aggregate ---
            await self._enter(PipelineState.INDEXING, on_state)
            citation_map = build_citation_map(batch.extractions)
            statistics = compute_statistics(batch.extractions)

            # --- Step 3: Synthesize ---
            await self._enter(PipelineState.SYNTHESIZING, on_state)
            synthesis = await self.synthesizer.synthesize(
                batch.extractions,
                journal_name,
                issue_text,
                custom_prompt=custom_prompt,
                field_context=field_context,
                statistics=statistics,
            )
        except Exception:
            self.state = PipelineState.ERROR
            raise

        extraction_usage = TokenUsage(batch.input_tokens, batch.output_tokens)
        result = PipelineResult(
            summary=synthesis.summary,
            extractions=list(batch.extractions),
            citation_map=citation_map,
            statistics=statistics,
            paper_count=len(batch.extractions),
            failed_papers=list(batch.failed),
            model_used=synthesis.model_used,
            tokens_extraction=batch.tokens_extraction,
            tokens_synthesis=synthesis.tokens_synthesis,
            cost_estimate=total_cost(synthesis.model_used, extraction_usage, synthesis.usage),
            model_extraction=batch.model_used or synthesis.model_used,
        )
        await self._enter(PipelineState.DONE, on_state)
        logger.info(
            f"Issue summary done: {result.paper_count} papers, {len(result.failed_papers)} failed, "
            f"tokens={result.tokens_extraction}+{result.tokens_synthesis}, cost=${result.cost_estimate:.4f}"
        )
        return result

    async def stream(
        self,
        documents: List[Document],
        journal_name: str,
        issue_info: Union[str, IssueInfo],
        custom_prompt: Optional[str] = None,
        field_context: Optional[str] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> AsyncIterator[PipelineEvent]:
        """
        Run the pipeline, yielding start/progress events and one terminal event.

        on_result runs in the producer before the complete event is queued, so
        it sees the result even if the consumer has already gone. If the
        consumer stops early, in-flight model calls still finish but nothing
        more is delivered.
        """
        channel = EventChannel()
        task = asyncio.create_task(
            self._produce(channel, documents, journal_name, issue_info, custom_prompt, field_context, on_result)
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        try:
            async for event in channel:
                yield event
        finally:
            channel.close()

    async def _produce(
        self,
        channel: EventChannel,
        documents: List[Document],
        journal_name: str,
        issue_info: Union[str, IssueInfo],
        custom_prompt: Optional[str],
        field_context: Optional[str],
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        total = len(documents)

        async def on_progress(current: int, of: int, title: str) -> None:
            await channel.send("progress", {"current": current, "total": of, "paperTitle": title})

        async def on_state(state: PipelineState) -> None:
            if state is PipelineState.SYNTHESIZING:
                await channel.send(
                    "progress", {"current": total, "total": total, "paperTitle": SYNTHESIS_PROGRESS_TITLE}
                )

        try:
            if documents:
                await channel.send("start", {"total": total})
            result = await self.run(
                documents,
                journal_name,
                issue_info,
                custom_prompt=custom_prompt,
                field_context=field_context,
                on_progress=on_progress,
                on_state=on_state,
            )
            if on_result:
                await _deliver(on_result, result)
            await channel.send("complete", complete_payload(result), result=result)
        except Exception as e:
            logger.error(f"Stream error: {e}")
            await channel.send("error", {"message": getattr(e, "message", None) or str(e) or "Unknown error"})
        finally:
            channel.close()


def complete_payload(result: PipelineResult) -> dict:
    return {
        "summary": result.summary,
        "paperCount": result.paper_count,
        "failedPapers": [f.to_dict() for f in result.failed_papers],
        "costEstimate": result.cost_estimate,
        "statistics": result.statistics.to_dict(),
        "citationMap": result.citation_map_dict(),
    }


async def _deliver(on_result: ResultCallback, result: PipelineResult) -> None:
    # the result is already computed; a failing hook must not turn it into an error event
    try:
        outcome = on_result(result)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as e:
        logger.error(f"Result hook failed: {e}")
