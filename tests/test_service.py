import asyncio
import json
from unittest.mock import MagicMock

import pytest

from fakes import FakeLLM
from issue_summary.config import PipelineConfig
from issue_summary.errors import PersistenceError, PreconditionError
from issue_summary.models import IssueInfo
from issue_summary.pipeline import IssueSummaryPipeline, _background_tasks
from issue_summary.service import IssueSummaryService
from issue_summary.sources import InMemoryDocumentSource, IssueRecord, PaperRecord
from issue_summary.storage import InMemorySummaryStore, StoredSummary

SCRAPER = "counselors"
ISSUE = "2024-3"


def _source(with_text=True):
    source = InMemoryDocumentSource()
    source.add_source(SCRAPER, "Korean Journal of Counseling")
    source.add_issue(IssueRecord(
        scraper_key=SCRAPER,
        issue_id=ISSUE,
        journal_name=None,
        issue_info=IssueInfo(volume="25", issue="3", year="2024"),
        article_ids=["ext-1", "ext-2", "ext-3"],
    ))
    for i in (1, 2, 3):
        source.add_paper(SCRAPER, PaperRecord(
            id=f"p{i}",
            external_id=f"ext-{i}",
            title=f"Paper {i}",
            full_text=f"BODY-p{i} text" if with_text else None,
            # only one paper falls back to its abstract
            abstract=f"BODY-p{i} abstract" if with_text or i == 1 else None,
        ))
    return source


def _service(llm=None, source=None, store=None):
    llm = llm or FakeLLM()
    return IssueSummaryService(
        source or _source(),
        store if store is not None else InMemorySummaryStore(),
        config=PipelineConfig(),
        pipeline_factory=lambda: IssueSummaryPipeline(llm),
    )


def _frames(service, **kwargs):
    async def collect():
        return [f async for f in service.stream(SCRAPER, ISSUE, **kwargs)]
    frames = asyncio.run(collect())
    parsed = []
    for frame in frames:
        event_line, data_line, _, _ = frame.split("\n")
        parsed.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return parsed


def test_generate_returns_result_and_persists() -> None:
    store = InMemorySummaryStore()
    status, body = asyncio.run(_service(store=store).generate(SCRAPER, ISSUE, field_context="grief"))

    assert status == 200
    assert body["paper_count"] == 3
    assert body["id"] == store.rows[0].id
    assert store.rows[0].field_context == "grief"
    assert set(body["citationMap"]) == {"1", "2", "3"}


def test_generate_uses_source_name_when_issue_has_no_journal() -> None:
    llm = FakeLLM()
    asyncio.run(_service(llm=llm).generate(SCRAPER, ISSUE))
    assert "Korean Journal of Counseling Vol. 25, No. 3 (2024)" in llm.synthesis_prompts[0]


def test_generate_unknown_scraper_is_404() -> None:
    status, body = asyncio.run(_service().generate("nope", ISSUE))
    assert status == 404
    assert body == {"error": "Scraper 'nope' not found"}


def test_generate_unknown_issue_is_404() -> None:
    status, body = asyncio.run(_service().generate(SCRAPER, "missing"))
    assert status == 404
    assert "Issue not found" in body["error"]


def test_generate_without_text_is_400() -> None:
    source = _source(with_text=False)
    source.papers[SCRAPER]["ext-1"] = PaperRecord("p1", "ext-1", "Paper 1")
    status, body = asyncio.run(_service(source=source).generate(SCRAPER, ISSUE))
    assert status == 400
    assert "No papers with full text" in body["error"]


def test_papers_without_full_text_fall_back_to_abstract() -> None:
    documents = _source(with_text=False).get_documents(SCRAPER, ISSUE)
    assert [d.id for d in documents] == ["p1"]
    assert documents[0].text == "BODY-p1 abstract"


def test_generate_pipeline_failure_returns_error_payload() -> None:
    llm = FakeLLM(fail={"BODY-p1", "BODY-p2", "BODY-p3"})
    status, body = asyncio.run(_service(llm=llm).generate(SCRAPER, ISSUE))

    assert status == 500
    assert body["error"] == "Failed to generate issue summary"
    assert body["details"].startswith("All paper extractions failed")


def test_save_failure_does_not_lose_the_result() -> None:
    store = MagicMock()
    store.save.side_effect = PersistenceError("db offline")

    status, body = asyncio.run(_service(store=store).generate(SCRAPER, ISSUE))

    assert status == 200
    assert body["id"] is None
    assert body["summary"]


def test_stream_persists_then_completes() -> None:
    store = InMemorySummaryStore()
    events = _frames(_service(llm=FakeLLM(fail={"BODY-p2"}), store=store), user_id="u1")

    assert [name for name, _ in events] == ["start", "progress", "progress", "progress", "progress", "complete"]
    complete = events[-1][1]
    assert complete["paperCount"] == 2
    assert complete["failedPapers"][0]["paper_id"] == "p2"
    assert store.get(SCRAPER, ISSUE, "u1").citation_map == complete["citationMap"]


def test_stream_precondition_failure_is_single_error_frame() -> None:
    service = _service()
    events = asyncio.run(_collect_unknown(service))
    assert events == ['event: error\ndata: {"message": "Scraper \'nope\' not found"}\n\n']


async def _collect_unknown(service):
    return [f async for f in service.stream("nope", ISSUE)]


def test_regenerating_without_viewer_keeps_one_row() -> None:
    store = InMemorySummaryStore()
    service = _service(store=store)

    asyncio.run(service.generate(SCRAPER, ISSUE))
    asyncio.run(service.generate(SCRAPER, ISSUE))

    assert len([r for r in store.rows if r.user_id is None]) == 1


def test_get_summary_missing() -> None:
    assert _service().get_summary(SCRAPER, ISSUE) == {"exists": False, "summary": None}


def test_get_summary_recomputes_statistics_and_backfills_citations() -> None:
    store = InMemorySummaryStore()
    store.save(StoredSummary(
        scraper_key=SCRAPER,
        issue_id=ISSUE,
        summary_content="Old narrative [1]",
        extractions=[
            {"paper_id": "p9", "title": "Legacy", "methodology_type": "mixed"},
            {"paper_id": "p4", "title": "Other"},
        ],
        citation_map=None,
        paper_count=2,
    ))

    body = _service(store=store).get_summary(SCRAPER, ISSUE)

    assert body["exists"] is True
    assert body["summary"]["citationMap"] == {
        "1": {"paper_id": "p9", "title": "Legacy"},
        "2": {"paper_id": "p4", "title": "Other"},
    }
    assert body["summary"]["statistics"]["methodology"]["mixed"] == 1


def test_get_summary_without_extractions_has_no_statistics() -> None:
    store = InMemorySummaryStore()
    store.save(StoredSummary(SCRAPER, ISSUE, "text", [], None, 0))

    summary = _service(store=store).get_summary(SCRAPER, ISSUE)["summary"]

    assert summary["statistics"] is None
    assert summary["citationMap"] is None


def test_default_prompt_preview_makes_no_model_call() -> None:
    llm = FakeLLM()
    preview = _service(llm=llm).default_prompt(SCRAPER, ISSUE, field_context="school counseling")

    assert preview["journalName"] == "Korean Journal of Counseling"
    assert preview["issueInfo"] == "Vol. 25, No. 3 (2024)"
    assert preview["articleCount"] == 3
    assert preview["defaultPrompt"].startswith("You are an expert in school counseling.")
    assert llm.extraction_prompts == [] and llm.synthesis_prompts == []


def test_default_prompt_unknown_scraper() -> None:
    with pytest.raises(PreconditionError):
        _service().default_prompt("nope", ISSUE)


def test_stream_saves_result_after_client_disconnects() -> None:
    store = InMemorySummaryStore()
    llm = FakeLLM(delays={"BODY-p1": 0.02, "BODY-p2": 0.02, "BODY-p3": 0.02})
    service = _service(llm=llm, store=store)

    async def scenario():
        frames = service.stream(SCRAPER, ISSUE, user_id="u1")
        first = await frames.__anext__()
        await frames.aclose()
        loop = asyncio.get_running_loop()
        await asyncio.gather(*[t for t in list(_background_tasks) if t.get_loop() is loop])
        return first

    first = asyncio.run(scenario())

    assert first.startswith("event: start")
    assert len(llm.synthesis_prompts) == 1
    assert len(store.rows) == 1
    assert store.get(SCRAPER, ISSUE, "u1").paper_count == 3
