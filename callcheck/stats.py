from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .schemas import Manager, StoredAnalysis

RECENT_DAYS = 30


def analysis_score(analysis: StoredAnalysis) -> Optional[float]:
    """Overall score in [0, 1]: mean item score, or percentage for staged checklists"""
    if analysis.advanced_report is not None:
        return analysis.advanced_report.percentage / 100.0
    if analysis.checklist_report is not None and analysis.checklist_report.items:
        items = analysis.checklist_report.items
        return sum(item.score for item in items) / len(items)
    return None


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 4)


def build_stats(analyses: List[StoredAnalysis], managers: List[Manager], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    recent_cutoff = now - timedelta(days=RECENT_DAYS)
    manager_names = {m.id: m.name for m in managers}

    sources = Counter(a.source for a in analyses)
    languages = Counter(a.language for a in analyses)

    scores = []
    per_manager = defaultdict(list)
    per_manager_count = Counter()
    for analysis in analyses:
        score = analysis_score(analysis)
        if score is not None:
            scores.append(score)
        if analysis.manager_id:
            per_manager_count[analysis.manager_id] += 1
            if score is not None:
                per_manager[analysis.manager_id].append(score)

    manager_stats = [
        {
            "managerId": manager_id,
            "name": manager_names.get(manager_id, manager_id),
            "analyses": count,
            "avgScore": _mean(per_manager[manager_id]),
        }
        for manager_id, count in per_manager_count.most_common()
    ]

    return {
        "totalAnalyses": len(analyses),
        "callAnalyses": sources.get("call", 0),
        "correspondenceAnalyses": sources.get("correspondence", 0),
        "advancedAnalyses": sum(1 for a in analyses if a.kind == "advanced"),
        "languageStats": dict(languages),
        "managerStats": manager_stats,
        "overallAvgScore": _mean(scores),
        "recentAnalyses": sum(1 for a in analyses if a.analyzed_at >= recent_cutoff),
    }
