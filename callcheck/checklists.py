"""
Checklist normalization.

Checklists arrive from the editor form, JSON imports and parsed uploads with
varying completeness. Everything goes through ``normalize_checklist`` before it
is stored or sent to the analyzer, so downstream code can rely on the canonical
shape in ``schemas``.
"""

import math
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .schemas import (
    AdvancedChecklist, AnyChecklist, Checklist, ChecklistItem, ChecklistStage,
    Criterion, CriterionLevel, ItemCriteria, ITEM_TYPES, LEVEL_NAMES
)

DEFAULT_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_ITEM_TYPE = "recommended"
DEFAULT_CHECKLIST_NAME = "Checklist"
DEFAULT_VERSION = "1.0"
WEIGHT_TOLERANCE = 1e-6


def is_advanced_payload(data: Dict[str, Any]) -> bool:
    return data.get("type") == "advanced" or "stages" in data


def normalize_checklist(data: Any) -> AnyChecklist:
    """Validate raw checklist input and return the canonical simple or advanced model"""
    if isinstance(data, (Checklist, AdvancedChecklist)):
        return data
    if not isinstance(data, dict):
        raise ValidationError("Checklist must be a JSON object")
    if is_advanced_payload(data):
        return normalize_advanced_checklist(data)
    return normalize_simple_checklist(data)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _checklist_identity(data: Dict[str, Any]) -> Dict[str, str]:
    checklist_id = _text(data.get("id")) or f"checklist-{uuid.uuid4().hex[:8]}"
    name = _text(data.get("name")) or _text(data.get("title")) or DEFAULT_CHECKLIST_NAME
    version = _text(data.get("version")) or DEFAULT_VERSION
    return {"id": checklist_id, "name": name, "version": version}


def _patterns(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(";")
    if not isinstance(value, (list, tuple)):
        return []
    return [str(p).strip() for p in value if p is not None and str(p).strip()]


def _threshold(value: Any, item_id: str) -> float:
    if value is None or value == "":
        return DEFAULT_CONFIDENCE_THRESHOLD
    try:
        threshold = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Item '{item_id}': confidence_threshold must be a number")
    if math.isnan(threshold) or threshold < 0 or threshold > 1:
        raise ValidationError(f"Item '{item_id}': confidence_threshold must be between 0 and 1")
    return threshold


def normalize_item(raw: Any, index: int) -> ChecklistItem:
    if not isinstance(raw, dict):
        raise ValidationError(f"Item {index + 1} must be an object")

    item_id = _text(raw.get("id"))
    title = _text(raw.get("title"))
    if not item_id and not title:
        raise ValidationError(f"Item {index + 1} must have an id or a title")

    item_id = item_id or f"item-{index + 1}"
    title = title or item_id

    item_type = _text(raw.get("type")).lower()
    if item_type not in ITEM_TYPES:
        item_type = DEFAULT_ITEM_TYPE

    criteria = raw.get("criteria") if isinstance(raw.get("criteria"), dict) else {}
    llm_hint = _text(criteria.get("llm_hint")) or _text(raw.get("llm_hint")) or title

    return ChecklistItem(
        id=item_id,
        title=title,
        type=item_type,
        criteria=ItemCriteria(
            positive_patterns=_patterns(criteria.get("positive_patterns", raw.get("positive_patterns"))),
            negative_patterns=_patterns(criteria.get("negative_patterns", raw.get("negative_patterns"))),
            llm_hint=llm_hint,
        ),
        confidence_threshold=_threshold(raw.get("confidence_threshold"), item_id),
    )


def normalize_simple_checklist(data: Dict[str, Any]) -> Checklist:
    items = data.get("items")
    if not isinstance(items, list):
        raise ValidationError("Checklist must contain an items array")
    if not items:
        raise ValidationError("Checklist must contain at least one item")

    normalized = [normalize_item(raw, i) for i, raw in enumerate(items)]
    _ensure_unique([item.id for item in normalized], "item")

    return Checklist(items=normalized, **_checklist_identity(data))


def _ensure_unique(ids: List[str], label: str):
    seen = set()
    for value in ids:
        if value in seen:
            raise ValidationError(f"Duplicate {label} id '{value}'")
        seen.add(value)


def _number(value: Any, field: str, owner: str) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{owner}: {field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{owner}: {field} must be a number")
    if math.isnan(number) or number < 0:
        raise ValidationError(f"{owner}: {field} must be a non-negative number")
    return number


def _level(raw: Any, name: str, owner: str) -> Optional[CriterionLevel]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return CriterionLevel(description="", score=_number(raw, f"{name}.score", owner))
    if not isinstance(raw, dict):
        raise ValidationError(f"{owner}: level '{name}' must be an object with description and score")
    score = _number(raw.get("score"), f"{name}.score", owner)
    if score is None:
        raise ValidationError(f"{owner}: level '{name}' is missing a score")
    return CriterionLevel(description=_text(raw.get("description")), score=score)


def normalize_criterion(raw: Any, stage_order: int, index: int) -> Criterion:
    if not isinstance(raw, dict):
        raise ValidationError(f"Stage {stage_order}: criterion {index + 1} must be an object")

    number = _text(raw.get("number")) or f"{stage_order}.{index + 1}"
    criterion_id = _text(raw.get("id")) or f"criterion-{number}"
    owner = f"Criterion '{criterion_id}'"

    title = _text(raw.get("title"))
    if not title:
        raise ValidationError(f"{owner} must have a title")

    levels = {name: _level(raw.get(name), name, owner) for name in LEVEL_NAMES}
    weight = _number(raw.get("weight"), "weight", owner)
    if weight is None:
        if levels["max"] is None:
            raise ValidationError(f"{owner} must have a weight")
        weight = levels["max"].score

    for name, level in levels.items():
        if level is not None and level.score > weight + WEIGHT_TOLERANCE:
            raise ValidationError(f"{owner}: level '{name}' scores more than the criterion weight")

    is_binary = raw.get("isBinary", raw.get("is_binary"))
    return Criterion(
        id=criterion_id,
        number=number,
        title=title,
        description=_text(raw.get("description")),
        weight=weight,
        is_binary=bool(is_binary) if is_binary is not None else None,
        **levels,
    )


def normalize_advanced_checklist(data: Dict[str, Any]) -> AdvancedChecklist:
    stages = data.get("stages")
    if not isinstance(stages, list) or not stages:
        raise ValidationError("Advanced checklist must contain a non-empty stages array")

    normalized_stages = []
    for i, raw_stage in enumerate(stages):
        if not isinstance(raw_stage, dict):
            raise ValidationError(f"Stage {i + 1} must be an object")
        order = raw_stage.get("order")
        order = int(order) if isinstance(order, (int, float)) and not isinstance(order, bool) else i + 1
        name = _text(raw_stage.get("name")) or f"Stage {order}"
        raw_criteria = raw_stage.get("criteria")
        if not isinstance(raw_criteria, list) or not raw_criteria:
            raise ValidationError(f"Stage '{name}' must contain at least one criterion")

        normalized_stages.append(ChecklistStage(
            id=_text(raw_stage.get("id")) or f"stage-{order}",
            name=name,
            order=order,
            criteria=[normalize_criterion(c, order, j) for j, c in enumerate(raw_criteria)],
        ))

    normalized_stages.sort(key=lambda stage: stage.order)
    _ensure_unique([stage.id for stage in normalized_stages], "stage")
    _ensure_unique([c.id for stage in normalized_stages for c in stage.criteria], "criterion")

    weight_sum = sum(c.weight for stage in normalized_stages for c in stage.criteria)
    declared = _number(data.get("totalScore", data.get("total_score")), "totalScore", "Checklist")
    if declared is None:
        declared = weight_sum
    elif abs(declared - weight_sum) > WEIGHT_TOLERANCE:
        raise ValidationError(
            f"Criterion weights sum to {weight_sum:g} but the checklist declares totalScore {declared:g}"
        )

    try:
        return AdvancedChecklist(
            total_score=declared,
            stages=normalized_stages,
            **_checklist_identity(data),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid advanced checklist: {e}")
