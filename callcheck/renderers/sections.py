"""
Report layout shared by the Markdown and PDF renderers.

``report_sections`` turns a stored analysis into an ordered list of sections
made of simple blocks. Both renderers walk the same list, so the two formats
always carry the same sections in the same order. Nothing here reads the clock.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..schemas import AdvancedChecklistReport, ChecklistReport, Manager, ObjectionsReport, StoredAnalysis

STATUS_LABELS = {"passed": "Passed", "failed": "Failed", "uncertain": "Uncertain"}
TYPE_LABELS = {"mandatory": "Mandatory", "recommended": "Recommended", "prohibited": "Prohibited"}
HANDLING_LABELS = {"handled": "Handled", "partial": "Partially handled", "unhandled": "Not handled"}
LEVEL_LABELS = {"max": "MAX", "mid": "MID", "min": "MIN", None: "Not achieved"}
SOURCE_LABELS = {"call": "Call", "correspondence": "Correspondence"}


class Block(BaseModel):
    kind: Literal["meta", "paragraph", "quote", "table", "bullets", "subheading"]
    text: str = ""
    headers: List[str] = Field(default_factory=list)
    rows: List[List[str]] = Field(default_factory=list)
    items: List[str] = Field(default_factory=list)


class Section(BaseModel):
    key: str
    title: str
    blocks: List[Block] = Field(default_factory=list)


def format_timestamp(seconds: Optional[float]) -> str:
    """Format seconds as mm:ss, or h:mm:ss past the hour"""
    if seconds is None:
        return ""
    total = int(max(0, seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def _timestamp_label(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return format_timestamp(float(value))
    except ValueError:
        return value


def _score(value: float) -> str:
    return f"{value:.2f}"


def _points(value: float) -> str:
    return f"{value:g}"


def _header_section(analysis: StoredAnalysis, manager: Optional[Manager]) -> Section:
    meta = [
        ["Analysis ID", analysis.id],
        ["Date", analysis.analyzed_at.strftime("%Y-%m-%d %H:%M UTC")],
        ["Checklist", analysis.checklist_name or "Checklist"],
        ["Source", SOURCE_LABELS.get(analysis.source, analysis.source)],
        ["Language", analysis.language],
    ]
    if manager is not None:
        manager_label = manager.name
        if manager.department:
            manager_label += f" ({manager.department})"
        meta.append(["Manager", manager_label])

    report_meta = None
    if analysis.checklist_report is not None:
        report_meta = analysis.checklist_report.meta
    elif analysis.advanced_report is not None:
        report_meta = analysis.advanced_report.meta
    if report_meta is not None and report_meta.duration:
        meta.append(["Duration", format_timestamp(report_meta.duration)])
    meta.append(["Transcript length", f"{len(analysis.transcript)} characters"])

    if analysis.advanced_report is not None:
        report = analysis.advanced_report
        meta.append(["Score", f"{_points(report.total_score)} / {_points(report.max_possible_score)} ({report.percentage}%)"])

    return Section(
        key="title",
        title=f"Analysis report: {analysis.checklist_name or 'Checklist'}",
        blocks=[Block(kind="meta", rows=meta)],
    )


def _summary_section(summary: str) -> Section:
    return Section(key="summary", title="Summary", blocks=[Block(kind="quote", text=summary)])


def _simple_sections(report: ChecklistReport) -> List[Section]:
    counts = {status: 0 for status in STATUS_LABELS}
    for item in report.items:
        counts[item.status] += 1
    total = len(report.items)
    pass_rate = round(counts["passed"] / total * 100) if total else 0
    average = sum(item.score for item in report.items) / total if total else 0.0

    statistics = Section(key="statistics", title="Statistics", blocks=[Block(kind="bullets", items=[
        f"Passed: {counts['passed']}",
        f"Failed: {counts['failed']}",
        f"Uncertain: {counts['uncertain']}",
        f"Pass rate: {pass_rate}%",
        f"Average confidence: {_score(average)}",
    ])])

    table = Block(
        kind="table",
        headers=["#", "Item", "Type", "Status", "Score", "Comment"],
        rows=[
            [str(i), item.title, TYPE_LABELS.get(item.type, item.type), STATUS_LABELS[item.status],
             _score(item.score), item.comment or ""]
            for i, item in enumerate(report.items, start=1)
        ],
    )
    items = Section(key="items", title="Checklist items", blocks=[table])

    evidence_blocks = []
    for item in report.items:
        if not item.evidence:
            continue
        evidence_blocks.append(Block(kind="subheading", text=item.title))
        for quote in item.evidence:
            stamp = format_timestamp(quote.start)
            evidence_blocks.append(Block(kind="quote", text=f"[{stamp}] {quote.text}" if stamp else quote.text))
    if not evidence_blocks:
        evidence_blocks.append(Block(kind="paragraph", text="No evidence quotes were recorded."))
    evidence = Section(key="evidence", title="Evidence", blocks=evidence_blocks)

    return [statistics, items, evidence]


def _objections_section(report: ObjectionsReport) -> Section:
    blocks = [
        Block(kind="subheading", text="Conversation essence"),
        Block(kind="paragraph", text=report.conversation_essence),
        Block(kind="subheading", text="Outcome"),
        Block(kind="paragraph", text=report.outcome),
    ]
    if report.topics:
        blocks.append(Block(kind="subheading", text="Topics"))
        blocks.append(Block(kind="bullets", items=list(report.topics)))

    blocks.append(Block(kind="subheading", text="Objections"))
    if report.objections:
        blocks.append(Block(
            kind="table",
            headers=["Category", "Client", "Manager reply", "Handling", "Advice"],
            rows=[
                [o.category, o.client_phrase, o.manager_reply or "", HANDLING_LABELS[o.handling], o.advice or ""]
                for o in report.objections
            ],
        ))
    else:
        blocks.append(Block(kind="paragraph", text="No objections were identified."))

    return Section(key="objections", title="Objections analysis", blocks=blocks)


def _advanced_sections(report: AdvancedChecklistReport) -> List[Section]:
    levels = {key: 0 for key in LEVEL_LABELS}
    criteria = [c for stage in report.stages for c in stage.criteria]
    for criterion in criteria:
        levels[criterion.achieved_level] += 1

    statistics = Section(key="statistics", title="Statistics", blocks=[Block(kind="bullets", items=[
        f"Total score: {_points(report.total_score)} of {_points(report.max_possible_score)}",
        f"Percentage: {report.percentage}%",
        f"Criteria at MAX: {levels['max']}",
        f"Criteria at MID: {levels['mid']}",
        f"Criteria at MIN: {levels['min']}",
        f"Criteria not achieved: {levels[None]}",
    ])])

    stage_blocks = []
    for stage in report.stages:
        stage_total = sum(c.score for c in stage.criteria)
        stage_max = sum(c.max_score for c in stage.criteria)
        stage_blocks.append(Block(kind="subheading", text=f"{stage.stage_name} ({_points(stage_total)} / {_points(stage_max)})"))
        stage_blocks.append(Block(
            kind="table",
            headers=["No.", "Criterion", "Level", "Score", "Comment"],
            rows=[
                [c.number, c.title, LEVEL_LABELS[c.achieved_level],
                 f"{_points(c.score)} / {_points(c.max_score)}", c.comment]
                for c in stage.criteria
            ],
        ))
    items = Section(key="items", title="Criteria", blocks=stage_blocks)

    evidence_blocks = []
    for criterion in criteria:
        if not criterion.evidence:
            continue
        evidence_blocks.append(Block(kind="subheading", text=f"{criterion.number} {criterion.title}"))
        for quote in criterion.evidence:
            stamp = _timestamp_label(quote.timestamp)
            evidence_blocks.append(Block(kind="quote", text=f"[{stamp}] {quote.text}" if stamp else quote.text))
    if not evidence_blocks:
        evidence_blocks.append(Block(kind="paragraph", text="No evidence quotes were recorded."))
    evidence = Section(key="evidence", title="Evidence", blocks=evidence_blocks)

    return [statistics, items, evidence]


def report_sections(analysis: StoredAnalysis, manager: Optional[Manager] = None) -> List[Section]:
    sections = [_header_section(analysis, manager)]

    if analysis.advanced_report is not None:
        sections.append(_summary_section(analysis.advanced_report.summary))
        sections.extend(_advanced_sections(analysis.advanced_report))
    elif analysis.checklist_report is not None:
        sections.append(_summary_section(analysis.checklist_report.summary))
        sections.extend(_simple_sections(analysis.checklist_report))

    if analysis.objections_report is not None:
        sections.append(_objections_section(analysis.objections_report))

    sections.append(Section(key="footer", title="", blocks=[
        Block(kind="paragraph", text=f"Generated by CallCheck for analysis {analysis.id}.")
    ]))
    return sections
