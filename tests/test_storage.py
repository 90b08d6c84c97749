from datetime import datetime, timedelta, timezone

import pytest

from callcheck.checklists import normalize_checklist
from callcheck.defaults import DEFAULT_CHECKLISTS, seed_default_checklists
from callcheck.errors import ValidationError
from callcheck.schemas import (
    ChecklistReport, ChecklistReportItem, ManagerInput, ObjectionsReport, ReportMeta, StoredAnalysis, Transcript
)
from callcheck.storage.factory import create_storage
from callcheck.storage.memory import MemoryStorage
from callcheck.storage.sql import SqlStorage
from callcheck.config import Settings

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_transcript(transcript_id="tr-1", digest=None):
    return Transcript(
        id=transcript_id,
        language="en",
        text="Manager: Hello",
        content_hash=digest,
        created_at=BASE_TIME,
    )


def make_analysis(analysis_id, checklist_id=None, manager_id=None, transcript_id=None, minutes=0):
    meta = ReportMeta(source="call", language="en", analyzed_at="2025-03-01T12:00:00Z", volume=14)
    return StoredAnalysis(
        id=analysis_id,
        checklist_id=checklist_id,
        checklist_name="Greeting check",
        manager_id=manager_id,
        transcript_id=transcript_id,
        language="en",
        transcript="Manager: Hello",
        checklist_report=ChecklistReport(
            meta=meta,
            items=[ChecklistReportItem(id="greet", title="Greeting", status="passed", score=0.9)],
            summary="Fine.",
        ),
        objections_report=ObjectionsReport(),
        analyzed_at=BASE_TIME + timedelta(minutes=minutes),
    )


class StorageContract:
    """Behaviour every storage backend shares"""

    def make_storage(self):
        raise NotImplementedError

    def setup_method(self):
        self.storage = self.make_storage()
        self.checklist = normalize_checklist({
            "id": "greet-check", "name": "Greeting check", "items": [{"id": "greet", "title": "Greeting"}]
        })

    def teardown_method(self):
        self.storage.close()

    def test_checklist_crud(self):
        self.storage.create_checklist(self.checklist)
        assert self.storage.get_checklist("greet-check") == self.checklist

        renamed = self.checklist.model_copy(update={"name": "Renamed"})
        assert self.storage.update_checklist("greet-check", renamed).name == "Renamed"
        assert self.storage.get_checklist("greet-check").name == "Renamed"
        assert [c.id for c in self.storage.list_checklists()] == ["greet-check"]

        assert self.storage.delete_checklist("greet-check") is True
        assert self.storage.get_checklist("greet-check") is None
        assert self.storage.delete_checklist("greet-check") is False
        assert self.storage.update_checklist("greet-check", renamed) is None

    def test_duplicate_checklist_rejected(self):
        self.storage.create_checklist(self.checklist)
        with pytest.raises(ValidationError):
            self.storage.create_checklist(self.checklist)

    def test_advanced_checklist_round_trip(self):
        checklist = normalize_checklist({
            "id": "script", "name": "Script",
            "stages": [{"name": "Opening", "criteria": [{"title": "Greeting", "weight": 2, "isBinary": True}]}],
        })
        self.storage.create_checklist(checklist)
        assert self.storage.get_checklist("script") == checklist

    def test_manager_crud(self):
        manager = self.storage.create_manager(ManagerInput(name="Anna", department="Sales"))
        assert manager.id.startswith("mgr-")
        assert self.storage.get_manager(manager.id).name == "Anna"

        updated = self.storage.update_manager(manager.id, ManagerInput(name="Anna K.", team_lead="Boris"))
        assert updated.name == "Anna K."
        assert updated.team_lead == "Boris"
        assert updated.created_at == manager.created_at

        assert self.storage.update_manager("mgr-missing", ManagerInput(name="X")) is None
        assert self.storage.delete_manager(manager.id) is True
        assert self.storage.get_manager(manager.id) is None

    def test_analysis_with_transcript_is_stored_together(self):
        self.storage.create_checklist(self.checklist)
        manager = self.storage.create_manager(ManagerInput(name="Anna"))
        transcript = make_transcript()

        analysis = make_analysis("an-1", "greet-check", manager.id, transcript.id)
        self.storage.create_analysis(analysis, transcript=transcript)

        stored = self.storage.get_analysis("an-1")
        assert stored.checklist_report.items[0].score == 0.9
        assert stored.analyzed_at == analysis.analyzed_at
        assert self.storage.get_transcript("tr-1").text == "Manager: Hello"

    def test_invalid_references_write_nothing(self):
        transcript = make_transcript()
        analysis = make_analysis("an-1", checklist_id="nope", manager_id="mgr-nope", transcript_id=transcript.id)

        with pytest.raises(ValidationError) as exc:
            self.storage.create_analysis(analysis, transcript=transcript)

        assert "checklist 'nope'" in exc.value.message
        assert self.storage.get_analysis("an-1") is None
        assert self.storage.get_transcript("tr-1") is None

    def test_unknown_transcript_reference_rejected(self):
        with pytest.raises(ValidationError):
            self.storage.create_analysis(make_analysis("an-1", transcript_id="tr-missing"))

    def test_list_analyses_newest_first(self):
        manager = self.storage.create_manager(ManagerInput(name="Anna"))
        self.storage.create_analysis(make_analysis("an-old", minutes=0))
        self.storage.create_analysis(make_analysis("an-new", manager_id=manager.id, minutes=5))
        self.storage.create_analysis(make_analysis("an-mid", minutes=2))

        assert [a.id for a in self.storage.list_analyses()] == ["an-new", "an-mid", "an-old"]
        assert [a.id for a in self.storage.list_analyses(limit=1)] == ["an-new"]
        assert [a.id for a in self.storage.list_analyses(manager_id=manager.id)] == ["an-new"]

    def test_deleting_references_detaches_analyses(self):
        self.storage.create_checklist(self.checklist)
        manager = self.storage.create_manager(ManagerInput(name="Anna"))
        self.storage.create_analysis(make_analysis("an-1", "greet-check", manager.id))

        self.storage.delete_checklist("greet-check")
        self.storage.delete_manager(manager.id)

        stored = self.storage.get_analysis("an-1")
        assert stored.checklist_id is None
        assert stored.manager_id is None

    def test_transcript_lookup_by_hash(self):
        self.storage.create_transcript(make_transcript("tr-a", digest="abc"))

        assert self.storage.find_transcript_by_hash("abc").id == "tr-a"
        assert self.storage.find_transcript_by_hash("def") is None

    def test_seed_only_into_empty_store(self):
        assert seed_default_checklists(self.storage) == len(DEFAULT_CHECKLISTS)
        assert seed_default_checklists(self.storage) == 0
        assert len(self.storage.list_checklists()) == len(DEFAULT_CHECKLISTS)


class TestMemoryStorage(StorageContract):
    def make_storage(self):
        return MemoryStorage()


class TestSqlStorage(StorageContract):
    def make_storage(self):
        return SqlStorage.from_url("sqlite://")


class TestCreateStorage:
    def test_falls_back_to_memory_when_database_is_unreachable(self, tmp_path):
        settings = Settings(database_url=f"sqlite:///{tmp_path}/missing-dir/nested/callcheck.db")
        storage = create_storage(settings)
        assert isinstance(storage, MemoryStorage)

    def test_uses_local_sqlite_file(self, tmp_path):
        settings = Settings(local_database_path=str(tmp_path / "callcheck.db"))
        storage = create_storage(settings)
        assert isinstance(storage, SqlStorage)
        storage.close()
