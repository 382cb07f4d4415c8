"""
Extraction fan-out.

Runs the Extractor over a document batch with at most `concurrency` calls
in flight. Every document is tried once; failures are recorded and the
batch always runs to completion. Progress is reported once per finished
document, in the order completions are observed.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from issue_summary.errors import ExtractionError
from issue_summary.extract import ExtractionOutcome, ExtractionResult, Extractor
from issue_summary.models import Document, Extraction, ExtractionBatch, FailedPaper
from issue_summary.pricing import TokenUsage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], Union[None, Awaitable[None]]]


async def run_extraction(
    extractor: Extractor,
    documents: List[Document],
    field_context: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    concurrency: int = 3,
    timeout: float = 90.0,
    citation_order: str = "input",
) -> ExtractionBatch:
    """
    Extract every document and collect the outcomes.

    citation_order="input" returns successful extractions in document order;
    "completion" returns them first-completed, first-listed.
    """
    total = len(documents)
    semaphore = asyncio.Semaphore(concurrency)
    lock = asyncio.Lock()
    completed = 0
    usage = TokenUsage()
    model_used: Optional[str] = None
    successes: List[Tuple[int, Extraction]] = []
    failures: List[Tuple[int, FailedPaper]] = []

    logger.info(f"Extracting {total} documents (concurrency={concurrency}, timeout={timeout:.0f}s)")

    async def process_one(index: int, document: Document) -> None:
        nonlocal completed, usage, model_used

        async with semaphore:
            outcome = await _extract_once(extractor, document, field_context, timeout)

        async with lock:
            completed += 1
            if isinstance(outcome, ExtractionResult):
                successes.append((index, outcome.extraction))
                usage = usage + outcome.usage
                model_used = outcome.model or model_used
                logger.info(f"[{completed}/{total}] extracted {document.id} ({outcome.tokens_used} tokens)")
            else:
                failures.append((index, FailedPaper(document.id, document.title, outcome.cause)))
                logger.warning(f"[{completed}/{total}] failed {document.id}: {outcome.cause}")
            if on_progress:
                await _report(on_progress, completed, total, document.title)

    tasks = [asyncio.create_task(process_one(i, doc)) for i, doc in enumerate(documents)]
    await asyncio.gather(*tasks)

    if citation_order == "input":
        successes.sort(key=lambda pair: pair[0])
    failures.sort(key=lambda pair: pair[0])

    logger.info(f"Extraction done: {len(successes)} succeeded, {len(failures)} failed, {usage.total} tokens")
    return ExtractionBatch(
        extractions=[e for _, e in successes],
        failed=[f for _, f in failures],
        tokens_extraction=usage.total,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        model_used=model_used,
    )


async def _extract_once(
    extractor: Extractor,
    document: Document,
    field_context: Optional[str],
    timeout: float,
) -> ExtractionOutcome:
    try:
        return await asyncio.wait_for(extractor.extract(document, field_context), timeout)
    except asyncio.TimeoutError:
        return ExtractionError(document.id, f"timed out after {timeout:.0f}s")
    except Exception as e:
        logger.error(f"Extractor raised for {document.id}: {e}")
        return ExtractionError(document.id, str(e) or type(e).__name__)


async def _report(on_progress: ProgressCallback, current: int, total: int, title: str) -> None:
    # progress is advisory; a broken listener must not sink the batch
    try:
        result = on_progress(current, total, title)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Progress callback failed at {current}/{total}: {e}")
