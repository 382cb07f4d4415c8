"""
Document sources: where an issue's articles come from.

A DocumentSource is passed to the service explicitly. The in-memory
implementation joins an issue's cached article ids against a paper table,
the same shape a database-backed source would have.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from issue_summary.errors import PreconditionError
from issue_summary.models import Document, IssueInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueRecord:
    """A cached issue: journal, descriptor and the external ids of its articles."""
    scraper_key: str
    issue_id: str
    journal_name: Optional[str]
    issue_info: IssueInfo
    article_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PaperRecord:
    """A stored paper; only papers with text can be summarized."""
    id: str
    external_id: str
    title: str
    full_text: Optional[str] = None
    abstract: Optional[str] = None

    def to_document(self) -> Optional[Document]:
        text = (self.full_text or self.abstract or "").strip()
        if not text:
            return None
        return Document(id=self.id, title=self.title, text=text)


class DocumentSource(Protocol):
    def source_name(self, scraper_key: str) -> Optional[str]:
        """Display name of a registered source, None when unknown."""

    def get_issue(self, scraper_key: str, issue_id: str) -> Optional[IssueRecord]:
        ...

    def get_documents(self, scraper_key: str, issue_id: str) -> List[Document]:
        """Documents with extractable text for the issue (possibly empty)."""


class InMemoryDocumentSource:
    """Dict-backed DocumentSource for the CLI and tests."""

    def __init__(self):
        self.sources: Dict[str, str] = {}
        self.issues: Dict[Tuple[str, str], IssueRecord] = {}
        self.papers: Dict[str, Dict[str, PaperRecord]] = {}

    def add_source(self, scraper_key: str, name: str) -> None:
        self.sources[scraper_key] = name
        self.papers.setdefault(scraper_key, {})

    def add_issue(self, issue: IssueRecord) -> None:
        self.issues[(issue.scraper_key, issue.issue_id)] = issue

    def add_paper(self, scraper_key: str, paper: PaperRecord) -> None:
        self.papers.setdefault(scraper_key, {})[paper.external_id] = paper

    def source_name(self, scraper_key: str) -> Optional[str]:
        return self.sources.get(scraper_key)

    def get_issue(self, scraper_key: str, issue_id: str) -> Optional[IssueRecord]:
        return self.issues.get((scraper_key, issue_id))

    def get_documents(self, scraper_key: str, issue_id: str) -> List[Document]:
        issue = self.get_issue(scraper_key, issue_id)
        if issue is None:
            return []
        papers = self.papers.get(scraper_key, {})
        documents = []
        for article_id in issue.article_ids:
            paper = papers.get(article_id)
            document = paper.to_document() if paper else None
            if document:
                documents.append(document)
        skipped = len(issue.article_ids) - len(documents)
        if skipped:
            logger.info(f"{scraper_key}/{issue_id}: {skipped} articles have no text, skipped")
        return documents


def load_issue_file(path: str) -> Tuple[str, IssueInfo, List[Document]]:
    """
    Read an issue from a JSON file.

    Expected keys: journal_name, issue_info {volume, issue, year}, and
    documents [{id, title, text | full_text | abstract}].
    """
    with open(Path(path), encoding="utf-8") as f:
        data = json.load(f)

    documents = []
    for i, item in enumerate(data.get("documents", [])):
        paper = PaperRecord(
            id=str(item.get("id", i + 1)),
            external_id=str(item.get("id", i + 1)),
            title=item.get("title", ""),
            full_text=item.get("text") or item.get("full_text"),
            abstract=item.get("abstract"),
        )
        document = paper.to_document()
        if document:
            documents.append(document)

    if not documents:
        raise PreconditionError(f"No documents with text in {path}", status=400)
    return data.get("journal_name", ""), IssueInfo.from_dict(data.get("issue_info")), documents
