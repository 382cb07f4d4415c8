"""
Summary persistence.

Rows are unique on (scraper_key, issue_id, user_id), but a missing user_id
never conflicts with another missing user_id (SQL NULL semantics), so an
upsert cannot replace the shared summary. Saving without a user therefore
clears that (scraper_key, issue_id) slot and inserts fresh.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from issue_summary.errors import PersistenceError
from issue_summary.models import PipelineResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredSummary:
    """One persisted issue summary row."""
    scraper_key: str
    issue_id: str
    summary_content: str
    extractions: List[dict]
    citation_map: Optional[Dict[str, dict]]
    paper_count: int
    user_id: Optional[str] = None
    custom_prompt: Optional[str] = None
    field_context: Optional[str] = None
    model_extraction: Optional[str] = None
    model_synthesis: Optional[str] = None
    tokens_used_extraction: int = 0
    tokens_used_synthesis: int = 0
    cost_estimate: float = 0.0
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def key(self):
        return (self.scraper_key, self.issue_id, self.user_id)


def summary_record(
    result: PipelineResult,
    scraper_key: str,
    issue_id: str,
    user_id: Optional[str] = None,
    custom_prompt: Optional[str] = None,
    field_context: Optional[str] = None,
) -> StoredSummary:
    return StoredSummary(
        scraper_key=scraper_key,
        issue_id=issue_id,
        summary_content=result.summary,
        extractions=[e.model_dump() for e in result.extractions],
        citation_map=result.citation_map_dict(),
        paper_count=result.paper_count,
        user_id=user_id or None,
        custom_prompt=custom_prompt or None,
        field_context=field_context or None,
        model_extraction=result.model_extraction or result.model_used,
        model_synthesis=result.model_used,
        tokens_used_extraction=result.tokens_extraction,
        tokens_used_synthesis=result.tokens_synthesis,
        cost_estimate=result.cost_estimate,
    )


class SummaryStore(Protocol):
    def save(self, record: StoredSummary) -> StoredSummary:
        ...

    def get(self, scraper_key: str, issue_id: str, user_id: Optional[str] = None) -> Optional[StoredSummary]:
        ...

    def list_for_user(self, user_id: str) -> List[StoredSummary]:
        ...


class InMemorySummaryStore:
    """List-backed store with the same conflict rules as the relational table."""

    def __init__(self):
        self.rows: List[StoredSummary] = []

    def insert(self, record: StoredSummary) -> StoredSummary:
        if record.user_id is not None and any(r.key == record.key for r in self.rows):
            raise PersistenceError(f"Duplicate summary for {record.key}")
        row = replace(record, id=str(uuid.uuid4()), created_at=datetime.now(timezone.utc))
        self.rows.append(row)
        return row

    def upsert(self, record: StoredSummary) -> StoredSummary:
        # a NULL user_id never matches, so this degrades to a plain insert
        for i, existing in enumerate(self.rows):
            if record.user_id is not None and existing.key == record.key:
                row = replace(record, id=existing.id, created_at=datetime.now(timezone.utc))
                self.rows[i] = row
                return row
        return self.insert(record)

    def delete(self, scraper_key: str, issue_id: str, user_id: Optional[str] = None) -> int:
        keep = [r for r in self.rows if r.key != (scraper_key, issue_id, user_id)]
        removed = len(self.rows) - len(keep)
        self.rows = keep
        return removed

    def save(self, record: StoredSummary) -> StoredSummary:
        if record.user_id:
            return self.upsert(record)
        removed = self.delete(record.scraper_key, record.issue_id, None)
        if removed:
            logger.info(f"Replaced {removed} shared summary row(s) for {record.scraper_key}/{record.issue_id}")
        return self.insert(record)

    def get(self, scraper_key: str, issue_id: str, user_id: Optional[str] = None) -> Optional[StoredSummary]:
        for row in self.rows:
            if row.key == (scraper_key, issue_id, user_id or None):
                return row
        return None

    def list_for_user(self, user_id: str) -> List[StoredSummary]:
        rows = [r for r in self.rows if r.user_id == user_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)


def persist_result(store: SummaryStore, record: StoredSummary) -> Optional[StoredSummary]:
    """Save a summary; failures are logged and reported as None, never raised."""
    try:
        return store.save(record)
    except Exception as e:
        logger.error(f"Failed to save summary for {record.scraper_key}/{record.issue_id}: {e}")
        return None
