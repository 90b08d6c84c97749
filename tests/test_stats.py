from datetime import datetime, timedelta, timezone

from callcheck.schemas import (
    AdvancedChecklistReport, ChecklistReport, ChecklistReportItem, Manager, ReportMeta, StoredAnalysis
)
from callcheck.stats import analysis_score, build_stats

NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)


def simple(analysis_id, scores, manager_id=None, source="call", days_ago=0):
    meta = ReportMeta(source=source, language="ru", analyzed_at="2025-03-31T12:00:00Z")
    items = [ChecklistReportItem(id=f"i{i}", title=f"Item {i}", score=s) for i, s in enumerate(scores)]
    return StoredAnalysis(
        id=analysis_id,
        manager_id=manager_id,
        source=source,
        language="ru",
        transcript="text",
        checklist_report=ChecklistReport(meta=meta, items=items, summary=""),
        analyzed_at=NOW - timedelta(days=days_ago),
    )


def advanced(analysis_id, percentage):
    return StoredAnalysis(
        id=analysis_id,
        kind="advanced",
        language="en",
        transcript="text",
        advanced_report=AdvancedChecklistReport(
            checklist_id="script", max_possible_score=10, percentage=percentage, stages=[], summary="",
        ),
        analyzed_at=NOW,
    )


class TestStats:
    def test_empty_store(self):
        stats = build_stats([], [], now=NOW)
        assert stats["totalAnalyses"] == 0
        assert stats["overallAvgScore"] is None
        assert stats["managerStats"] == []

    def test_aggregates(self):
        manager = Manager(id="mgr-1", name="Anna", created_at=NOW, updated_at=NOW)
        analyses = [
            simple("an-1", [1.0, 0.5], manager_id="mgr-1"),
            simple("an-2", [0.5], manager_id="mgr-1", source="correspondence", days_ago=45),
            advanced("an-3", 80),
        ]

        stats = build_stats(analyses, [manager], now=NOW)

        assert stats["totalAnalyses"] == 3
        assert stats["callAnalyses"] == 2
        assert stats["correspondenceAnalyses"] == 1
        assert stats["advancedAnalyses"] == 1
        assert stats["languageStats"] == {"ru": 2, "en": 1}
        assert stats["recentAnalyses"] == 2
        assert stats["managerStats"] == [{"managerId": "mgr-1", "name": "Anna", "analyses": 2, "avgScore": 0.625}]
        assert stats["overallAvgScore"] == round((0.75 + 0.5 + 0.8) / 3, 4)

    def test_score_of_analysis_without_items(self):
        analysis = simple("an-1", [])
        assert analysis_score(analysis) is None
