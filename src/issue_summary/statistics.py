"""
Statistics aggregation: reduce extractions into issue-level metrics.

1. Methodology and sophistication distributions
2. Frequency of data collection methods, statistical methods, subject types
3. Sample size summary over papers that report one

Absent fields are not counted. Output does not depend on extraction order.
"""

import logging
import math
from typing import Dict, Iterable, List

from issue_summary.models import (
    METHODOLOGY_TYPES,
    SOPHISTICATION_LEVELS,
    CountShare,
    Extraction,
    IssueStatistics,
    SampleSizeSummary,
)

logger = logging.getLogger(__name__)

TOP_N = 10


def _percent(count: int, total: int) -> int:
    if total <= 0:
        return 0
    return math.floor(count / total * 100 + 0.5)


def _ranked(counts: Dict[str, int], total: int) -> List[CountShare]:
    # count desc, then label asc so ties are stable across input orderings
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [CountShare(label, count, _percent(count, total)) for label, count in ordered[:TOP_N]]


def _tally(values: Iterable[str], counts: Dict[str, int]) -> None:
    for value in values:
        counts[value] = counts.get(value, 0) + 1


def compute_statistics(extractions: List[Extraction]) -> IssueStatistics:
    """Aggregate metrics over extractions; the neutral value for an empty list."""
    total = len(extractions)
    if total == 0:
        return IssueStatistics()

    methodology = {m: 0 for m in METHODOLOGY_TYPES}
    sophistication = {s: 0 for s in SOPHISTICATION_LEVELS}
    sophistication["unknown"] = 0
    data_collection: Dict[str, int] = {}
    stat_methods: Dict[str, int] = {}
    subjects: Dict[str, int] = {}
    sample_sizes: List[int] = []

    for e in extractions:
        if e.methodology_type:
            methodology[e.methodology_type] += 1

        if e.statistical_sophistication:
            sophistication[e.statistical_sophistication] += 1
        else:
            sophistication["unknown"] += 1

        # a method listed twice in one paper still counts once for that paper
        _tally({m.strip().lower() for m in e.data_collection or [] if m.strip()}, data_collection)
        _tally({m.strip().lower() for m in e.statistical_methods or [] if m.strip()}, stat_methods)

        if e.research_subjects:
            subject_type = (e.research_subjects.type or "").strip()
            if subject_type:
                _tally([subject_type], subjects)
            size = e.research_subjects.sample_size
            if size is not None and size > 0:
                sample_sizes.append(size)

    if sample_sizes:
        sample_size = SampleSizeSummary(
            count=len(sample_sizes),
            mean=math.floor(sum(sample_sizes) / len(sample_sizes) + 0.5),
            min=min(sample_sizes),
            max=max(sample_sizes),
            total=sum(sample_sizes),
        )
    else:
        sample_size = SampleSizeSummary()

    stats = IssueStatistics(
        total_papers=total,
        methodology=methodology,
        data_collection=_ranked(data_collection, total),
        statistical_methods=_ranked(stat_methods, total),
        sophistication=sophistication,
        sample_size=sample_size,
        research_subjects=_ranked(subjects, total),
    )
    logger.info(f"Computed statistics over {total} extractions: methodology={methodology}")
    return stats


def format_statistics_for_prompt(stats: IssueStatistics) -> str:
    """Render statistics as the quantitative block of the synthesis prompt."""
    total = stats.total_papers
    lines = [f"## Quantitative overview ({total} papers)", ""]

    lines.append("### Methodology")
    for label, key in (("Quantitative", "quantitative"), ("Qualitative", "qualitative"), ("Mixed", "mixed")):
        count = stats.methodology.get(key, 0)
        lines.append(f"- {label}: {count} papers ({_percent(count, total)}%)")
    lines.append("")

    if stats.data_collection:
        lines.append("### Data collection (papers may use several)")
        for c in stats.data_collection[:5]:
            lines.append(f"- {c.label}: {c.count} papers ({c.percentage}%)")
        lines.append("")

    soph = stats.sophistication
    if soph.get("basic", 0) + soph.get("intermediate", 0) + soph.get("advanced", 0) > 0:
        lines.append("### Statistical sophistication")
        for label, key in (
            ("Advanced (SEM, HLM, multilevel)", "advanced"),
            ("Intermediate (regression, ANOVA, factor analysis)", "intermediate"),
            ("Basic (t-test, correlation, frequencies)", "basic"),
        ):
            if soph.get(key, 0) > 0:
                lines.append(f"- {label}: {soph[key]} papers ({_percent(soph[key], total)}%)")
        lines.append("")

    if stats.statistical_methods:
        lines.append("### Main statistical methods (papers may use several)")
        for c in stats.statistical_methods[:5]:
            lines.append(f"- {c.label}: {c.count} papers")
        lines.append("")

    if stats.sample_size.count > 0:
        s = stats.sample_size
        lines.append("### Sample size")
        lines.append(f"- Papers reporting a sample: {s.count}")
        lines.append(f"- Mean sample size: {s.mean}")
        lines.append(f"- Range: {s.min} to {s.max}")
        lines.append("")

    if stats.research_subjects:
        lines.append("### Research subjects")
        for c in stats.research_subjects[:5]:
            lines.append(f"- {c.label}: {c.count} papers ({c.percentage}%)")

    return "\n".join(lines).rstrip()
