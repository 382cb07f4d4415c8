"""
Citation indexing: number extractions 1..N in the order given.
"""

from typing import Dict, List, Optional

from issue_summary.models import CitationEntry, CitationMap, Extraction


def build_citation_map(extractions: List[Extraction]) -> CitationMap:
    """Map "1", "2", ... to the identity of each extraction, in list order."""
    return {
        str(number): CitationEntry(paper_id=e.paper_id, title=e.title)
        for number, e in enumerate(extractions, start=1)
    }


def citation_map_from_dict(data: Optional[Dict[str, dict]]) -> Optional[CitationMap]:
    """Rebuild a stored citation map; None when nothing was stored."""
    if not data:
        return None
    return {
        str(number): CitationEntry(paper_id=entry["paper_id"], title=entry.get("title", ""))
        for number, entry in data.items()
    }
