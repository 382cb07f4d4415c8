"""
Data models for the pipeline.

The data structures used throughout the issue summary pipeline.
Model-produced payloads are pydantic models so partial output is validated
at the boundary; everything else is a plain dataclass.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


@dataclass(frozen=True)
class Document:
    """A full-text article belonging to one issue."""
    id: str
    title: str
    text: str


@dataclass(frozen=True)
class IssueInfo:
    """Volume/number/year of a journal issue."""
    volume: Optional[str] = None
    issue: Optional[str] = None
    year: Optional[str] = None

    def describe(self) -> str:
        """Human-readable issue descriptor, e.g. 'Vol. 12, No. 3 (2024)'."""
        return f"Vol. {self.volume or ''}, No. {self.issue or ''} ({self.year or ''})"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IssueInfo":
        data = data or {}
        return cls(
            volume=_str_or_none(data.get("volume")),
            issue=_str_or_none(data.get("issue")),
            year=_str_or_none(data.get("year")),
        )


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# --- Model-produced payloads ---

METHODOLOGY_TYPES = ("qualitative", "quantitative", "mixed")
SOPHISTICATION_LEVELS = ("basic", "intermediate", "advanced")

_FIRST_NUMBER = re.compile(r"\d[\d,]*")


class ResearchSubjects(BaseModel):
    """Who was studied, and how many."""
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    sample_size: Optional[int] = None

    @field_validator("sample_size", mode="before")
    @classmethod
    def _coerce_sample_size(cls, value):
        # models sometimes answer "n=120", "about 1,300" or "120 (60 male, 60 female)"
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value)
        match = _FIRST_NUMBER.search(str(value))
        return int(match.group().replace(",", "")) if match else None


class Extraction(BaseModel):
    """
    Structured summary of a single document.

    paper_id and title always come from the Document, never from the model.
    Every other field may be absent (None); absence is not zero.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    paper_id: str
    title: str
    research_topic: Optional[str] = None
    research_subjects: Optional[ResearchSubjects] = None
    methodology_type: Optional[Literal["qualitative", "quantitative", "mixed"]] = None
    data_collection: Optional[List[str]] = None
    statistical_methods: Optional[List[str]] = None
    statistical_sophistication: Optional[Literal["basic", "intermediate", "advanced"]] = None
    key_findings: Optional[str] = None

    @field_validator("methodology_type", "statistical_sophistication", mode="before")
    @classmethod
    def _normalize_enum(cls, value, info):
        if value is None:
            return None
        allowed = METHODOLOGY_TYPES if info.field_name == "methodology_type" else SOPHISTICATION_LEVELS
        normalized = str(value).strip().lower()
        return normalized if normalized in allowed else None

    @field_validator("data_collection", "statistical_methods", mode="before")
    @classmethod
    def _normalize_list(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return None
        return [str(v).strip() for v in value if v is not None and str(v).strip()]

    @field_validator("research_subjects", mode="before")
    @classmethod
    def _wrap_subjects(cls, value):
        if isinstance(value, str):
            return {"type": value}
        return value


# --- Pipeline records ---

@dataclass(frozen=True)
class FailedPaper:
    """A document whose extraction did not succeed."""
    paper_id: str
    title: str
    reason: str

    def to_dict(self) -> dict:
        return {"paper_id": self.paper_id, "title": self.title, "reason": self.reason}


@dataclass(frozen=True)
class CitationEntry:
    """Identity behind one citation number."""
    paper_id: str
    title: str


CitationMap = Dict[str, CitationEntry]


@dataclass(frozen=True)
class ExtractionBatch:
    """What the extraction coordinator hands back."""
    extractions: List[Extraction]
    failed: List[FailedPaper]
    tokens_extraction: int
    input_tokens: int = 0
    output_tokens: int = 0
    model_used: Optional[str] = None


@dataclass(frozen=True)
class PipelineResult:
    """
    Final output of one pipeline run.

    Immutable once returned; this is the unit handed to persistence.
    """
    summary: str
    extractions: List[Extraction]
    citation_map: CitationMap
    statistics: "IssueStatistics"
    paper_count: int
    failed_papers: List[FailedPaper]
    model_used: str
    tokens_extraction: int
    tokens_synthesis: int
    cost_estimate: float
    model_extraction: Optional[str] = None

    def citation_map_dict(self) -> Dict[str, dict]:
        return citation_map_to_dict(self.citation_map)

    def to_dict(self) -> dict:
        """Serializable dict (the synchronous response payload)."""
        return {
            "summary": self.summary,
            "extractions": [e.model_dump() for e in self.extractions],
            "citationMap": self.citation_map_dict(),
            "statistics": self.statistics.to_dict(),
            "paper_count": self.paper_count,
            "failed_papers": [f.to_dict() for f in self.failed_papers],
            "model_used": self.model_used,
            "model_extraction": self.model_extraction,
            "tokens_extraction": self.tokens_extraction,
            "tokens_synthesis": self.tokens_synthesis,
            "cost_estimate": self.cost_estimate,
        }


def citation_map_to_dict(citation_map: CitationMap) -> Dict[str, dict]:
    return {
        number: {"paper_id": entry.paper_id, "title": entry.title}
        for number, entry in citation_map.items()
    }


# --- Statistics ---

@dataclass(frozen=True)
class CountShare:
    """A labelled count with its share of all papers (percent, rounded)."""
    label: str
    count: int
    percentage: int


@dataclass(frozen=True)
class SampleSizeSummary:
    count: int = 0
    mean: int = 0
    min: int = 0
    max: int = 0
    total: int = 0


@dataclass(frozen=True)
class IssueStatistics:
    """Issue-level aggregate metrics over successful extractions."""
    total_papers: int = 0
    methodology: Dict[str, int] = field(
        default_factory=lambda: {m: 0 for m in METHODOLOGY_TYPES}
    )
    data_collection: List[CountShare] = field(default_factory=list)
    statistical_methods: List[CountShare] = field(default_factory=list)
    sophistication: Dict[str, int] = field(
        default_factory=lambda: {**{s: 0 for s in SOPHISTICATION_LEVELS}, "unknown": 0}
    )
    sample_size: SampleSizeSummary = field(default_factory=SampleSizeSummary)
    research_subjects: List[CountShare] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Wire shape used by the streaming 'complete' event."""
        return {
            "totalPapers": self.total_papers,
            "methodology": dict(self.methodology),
            "dataCollection": [
                {"method": c.label, "count": c.count, "percentage": c.percentage}
                for c in self.data_collection
            ],
            "statisticalMethods": [
                {"method": c.label, "count": c.count, "percentage": c.percentage}
                for c in self.statistical_methods
            ],
            "sophistication": dict(self.sophistication),
            "sampleSize": {
                "count": self.sample_size.count,
                "mean": self.sample_size.mean,
                "min": self.sample_size.min,
                "max": self.sample_size.max,
                "total": self.sample_size.total,
            },
            "researchSubjects": [
                {"type": c.label, "count": c.count, "percentage": c.percentage}
                for c in self.research_subjects
            ],
        }
