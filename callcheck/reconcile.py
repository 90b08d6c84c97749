"""
Reconciliation of provider output against the checklist that was asked about.

The provider's JSON is untrusted: top-level shapes are validated with pydantic,
individual fields are coerced one by one, and the result always covers the
checklist exactly, in checklist order.
"""

import re
import json
import math
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .errors import ResponseFormatError
from .schemas import (
    AdvancedChecklist, AdvancedChecklistReport, Checklist, ChecklistReport, ChecklistReportItem,
    CriterionEvidence, CriterionReport, Evidence, Objection, ObjectionsReport, ReportMeta,
    StageReport, HANDLING_VALUES, ITEM_STATUSES, LEVEL_NAMES
)

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Analysis completed."
DEFAULT_ESSENCE = "The essence of the conversation could not be determined."
DEFAULT_OUTCOME = "No outcome recorded."
DEFAULT_OBJECTION_CATEGORY = "Other"

FENCE_PATTERN = re.compile(r'^```(?:json|JSON)?\s*(.*?)\s*```$', re.DOTALL)


class ChecklistPayload(BaseModel):
    items: List[Any]
    summary: Optional[Any] = None


class ProviderItem(BaseModel):
    id: Union[str, int]
    status: Optional[Any] = None
    score: Optional[Any] = None
    evidence: Optional[Any] = None
    comment: Optional[Any] = None


class ObjectionsPayload(BaseModel):
    topics: Optional[Any] = None
    objections: Optional[Any] = None
    conversation_essence: Optional[Any] = None
    outcome: Optional[Any] = None


class AdvancedPayload(BaseModel):
    stages: List[Any]
    summary: Optional[Any] = None


def parse_provider_json(content: Optional[str]) -> Dict[str, Any]:
    """Parse provider output into a JSON object, raising ResponseFormatError otherwise"""
    if content is None or not content.strip():
        raise ResponseFormatError("Empty response from LLM provider")

    content = content.strip()
    fenced = FENCE_PATTERN.match(content)
    if fenced:
        content = fenced.group(1)

    try:
        result = json.loads(content)
    except json.JSONDecodeError:
        # Models sometimes wrap the object in prose
        start, end = content.find("{"), content.rfind("}")
        if start == -1 or end <= start:
            raise ResponseFormatError("LLM response is not valid JSON")
        try:
            result = json.loads(content[start:end + 1])
        except json.JSONDecodeError as e:
            raise ResponseFormatError(f"LLM response is not valid JSON: {e.msg}")

    if not isinstance(result, dict):
        raise ResponseFormatError("LLM response is not a JSON object")
    return result


def _validate(model, payload: Dict[str, Any], what: str):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ResponseFormatError(f"LLM response does not match the {what} schema ({fields})")


def _is_number(value: Any) -> bool:
    """True for finite ints and floats; bools, NaN and infinities are rejected"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _opt_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _opt_float(value: Any) -> Optional[float]:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def coerce_status(value: Any) -> str:
    status = str(value).strip().lower() if isinstance(value, str) else ""
    return status if status in ITEM_STATUSES else "uncertain"


def coerce_score(value: Any) -> float:
    if not _is_number(value):
        return 0.0
    return clamp(float(value), 0.0, 1.0)


def coerce_evidence(value: Any) -> List[Evidence]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, list):
        return []

    evidence = []
    for entry in value:
        if isinstance(entry, str) and entry.strip():
            evidence.append(Evidence(text=entry.strip()))
        elif isinstance(entry, dict) and _opt_text(entry.get("text")):
            evidence.append(Evidence(
                text=_opt_text(entry.get("text")),
                start=_opt_float(entry.get("start")),
                end=_opt_float(entry.get("end")),
            ))
    return evidence


def default_report_item(item) -> ChecklistReportItem:
    return ChecklistReportItem(
        id=item.id, title=item.title, type=item.type,
        status="uncertain", score=0.0, evidence=[], comment=None,
    )


def reconcile_checklist(checklist: Checklist, payload: Dict[str, Any], meta: ReportMeta) -> ChecklistReport:
    """Align provider items with the checklist: one report item per checklist item"""
    parsed = _validate(ChecklistPayload, payload, "checklist report")

    by_id = {}
    for raw in parsed.items:
        try:
            entry = ProviderItem.model_validate(raw)
        except PydanticValidationError:
            logger.warning(f"Skipping malformed checklist item in LLM response: {str(raw)[:200]}")
            continue
        key = str(entry.id).strip()
        if key and key not in by_id:
            by_id[key] = entry

    known = {item.id for item in checklist.items}
    unknown = [key for key in by_id if key not in known]
    if unknown:
        logger.info(f"Ignoring {len(unknown)} item(s) not in checklist {checklist.id}: {unknown}")

    items = []
    for item in checklist.items:
        entry = by_id.get(item.id)
        if entry is None:
            items.append(default_report_item(item))
            continue
        items.append(ChecklistReportItem(
            id=item.id,
            title=item.title,
            type=item.type,
            status=coerce_status(entry.status),
            score=coerce_score(entry.score),
            evidence=coerce_evidence(entry.evidence),
            comment=_opt_text(entry.comment),
        ))

    missing = len(checklist.items) - sum(1 for item in checklist.items if item.id in by_id)
    if missing:
        logger.info(f"LLM response omitted {missing} checklist item(s); filled as uncertain")

    return ChecklistReport(meta=meta, items=items, summary=_opt_text(parsed.summary) or DEFAULT_SUMMARY)


def reconcile_objections(payload: Dict[str, Any]) -> ObjectionsReport:
    parsed = _validate(ObjectionsPayload, payload, "objections report")

    topics = []
    if isinstance(parsed.topics, list):
        topics = [t for t in (_opt_text(topic) for topic in parsed.topics) if t]

    objections = []
    raw_objections = parsed.objections if isinstance(parsed.objections, list) else []
    for raw in raw_objections:
        if not isinstance(raw, dict):
            continue
        handling = str(raw.get("handling") or "").strip().lower()
        objections.append(Objection(
            category=_opt_text(raw.get("category")) or DEFAULT_OBJECTION_CATEGORY,
            client_phrase=_opt_text(raw.get("client_phrase")) or "",
            manager_reply=_opt_text(raw.get("manager_reply")),
            handling=handling if handling in HANDLING_VALUES else "unhandled",
            advice=_opt_text(raw.get("advice")),
        ))

    return ObjectionsReport(
        topics=topics,
        objections=objections,
        conversation_essence=_opt_text(parsed.conversation_essence) or DEFAULT_ESSENCE,
        outcome=_opt_text(parsed.outcome) or DEFAULT_OUTCOME,
    )


def coerce_level(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    level = value.strip().lower()
    return level if level in LEVEL_NAMES else None


def _criterion_evidence(value: Any) -> List[CriterionEvidence]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, list):
        return []

    evidence = []
    for entry in value:
        if isinstance(entry, str) and entry.strip():
            evidence.append(CriterionEvidence(text=entry.strip()))
        elif isinstance(entry, dict) and _opt_text(entry.get("text")):
            timestamp = entry.get("timestamp", entry.get("start"))
            if isinstance(timestamp, (bool, int, float)) and not _is_number(timestamp):
                timestamp = None
            evidence.append(CriterionEvidence(
                text=_opt_text(entry.get("text")),
                timestamp=_opt_text(timestamp),
            ))
    return evidence


def _criterion_score(criterion, raw: Dict[str, Any], level: Optional[str]) -> float:
    score = raw.get("score")
    if criterion.binary:
        done = score > 0 if _is_number(score) else level == "max"
        return criterion.weight if done else 0.0
    if _is_number(score):
        return clamp(float(score), 0.0, criterion.weight)
    if level is not None and criterion.level(level) is not None:
        return criterion.level(level).score
    return 0.0


def compute_percentage(total: float, max_possible: float) -> int:
    """Share of the maximum score, rounded half up; 0 when nothing can be scored"""
    if not max_possible or max_possible <= 0:
        return 0
    return int(math.floor(total / max_possible * 100 + 0.5))


def aggregate_scores(report: AdvancedChecklistReport) -> AdvancedChecklistReport:
    """Recompute total and percentage from the per-criterion scores"""
    total = round(sum(c.score for stage in report.stages for c in stage.criteria), 4)
    return report.model_copy(update={
        "total_score": total,
        "percentage": compute_percentage(total, report.max_possible_score),
    })


def reconcile_advanced(checklist: AdvancedChecklist, payload: Dict[str, Any], meta: Optional[ReportMeta] = None) -> AdvancedChecklistReport:
    parsed = _validate(AdvancedPayload, payload, "advanced checklist report")

    by_id = {}
    by_number = {}
    for raw_stage in parsed.stages:
        if not isinstance(raw_stage, dict) or not isinstance(raw_stage.get("criteria"), list):
            continue
        for raw in raw_stage["criteria"]:
            if not isinstance(raw, dict):
                continue
            criterion_id = _opt_text(raw.get("id"))
            number = _opt_text(raw.get("number"))
            if criterion_id and criterion_id not in by_id:
                by_id[criterion_id] = raw
            if number and number not in by_number:
                by_number[number] = raw

    stages = []
    for stage in checklist.stages:
        criteria = []
        for criterion in stage.criteria:
            raw = by_id.get(criterion.id) or by_number.get(criterion.number)
            if raw is None:
                criteria.append(CriterionReport(
                    id=criterion.id, number=criterion.number, title=criterion.title,
                    description=criterion.description or None, achieved_level=None,
                    score=0.0, max_score=criterion.weight, evidence=[], comment="",
                ))
                continue

            level = coerce_level(raw.get("achievedLevel", raw.get("achieved_level")))
            criteria.append(CriterionReport(
                id=criterion.id,
                number=criterion.number,
                title=criterion.title,
                description=criterion.description or None,
                achieved_level=level,
                score=_criterion_score(criterion, raw, level),
                max_score=criterion.weight,
                evidence=_criterion_evidence(raw.get("evidence")),
                comment=_opt_text(raw.get("comment")) or "",
            ))
        stages.append(StageReport(stage_name=stage.name, criteria=criteria))

    report = AdvancedChecklistReport(
        checklist_id=checklist.id,
        max_possible_score=checklist.total_score,
        stages=stages,
        summary=_opt_text(parsed.summary) or DEFAULT_SUMMARY,
        meta=meta,
    )
    return aggregate_scores(report)
