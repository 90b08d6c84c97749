from typing import Dict, List, Optional

from ..errors import ValidationError
from ..schemas import AnyChecklist, Manager, ManagerInput, StoredAnalysis, Transcript
from .base import StorageBackend, build_manager, check_references


class MemoryStorage(StorageBackend):
    """Process-local store. Complete for the pipeline, lost on restart."""

    name = "memory"

    def __init__(self):
        self._checklists: Dict[str, AnyChecklist] = {}
        self._managers: Dict[str, Manager] = {}
        self._transcripts: Dict[str, Transcript] = {}
        self._analyses: Dict[str, StoredAnalysis] = {}

    def list_checklists(self) -> List[AnyChecklist]:
        return list(self._checklists.values())

    def get_checklist(self, checklist_id: str) -> Optional[AnyChecklist]:
        return self._checklists.get(checklist_id)

    def create_checklist(self, checklist: AnyChecklist) -> AnyChecklist:
        if checklist.id in self._checklists:
            raise ValidationError(f"Checklist with id '{checklist.id}' already exists")
        self._checklists[checklist.id] = checklist
        return checklist

    def update_checklist(self, checklist_id: str, checklist: AnyChecklist) -> Optional[AnyChecklist]:
        if checklist_id not in self._checklists:
            return None
        checklist = checklist.model_copy(update={"id": checklist_id})
        self._checklists[checklist_id] = checklist
        return checklist

    def delete_checklist(self, checklist_id: str) -> bool:
        if self._checklists.pop(checklist_id, None) is None:
            return False
        self._detach("checklist_id", checklist_id)
        return True

    def list_managers(self) -> List[Manager]:
        return sorted(self._managers.values(), key=lambda m: m.name.lower())

    def get_manager(self, manager_id: str) -> Optional[Manager]:
        return self._managers.get(manager_id)

    def create_manager(self, data: ManagerInput) -> Manager:
        manager = build_manager(data)
        self._managers[manager.id] = manager
        return manager

    def update_manager(self, manager_id: str, data: ManagerInput) -> Optional[Manager]:
        existing = self._managers.get(manager_id)
        if existing is None:
            return None
        manager = build_manager(data, manager_id=manager_id, created_at=existing.created_at)
        self._managers[manager_id] = manager
        return manager

    def delete_manager(self, manager_id: str) -> bool:
        if self._managers.pop(manager_id, None) is None:
            return False
        self._detach("manager_id", manager_id)
        return True

    def create_transcript(self, transcript: Transcript) -> Transcript:
        self._transcripts[transcript.id] = transcript
        return transcript

    def get_transcript(self, transcript_id: str) -> Optional[Transcript]:
        return self._transcripts.get(transcript_id)

    def find_transcript_by_hash(self, digest: str) -> Optional[Transcript]:
        for transcript in self._transcripts.values():
            if transcript.content_hash == digest:
                return transcript
        return None

    def create_analysis(self, analysis: StoredAnalysis, transcript: Optional[Transcript] = None) -> StoredAnalysis:
        check_references(
            analysis, transcript,
            has_checklist=lambda i: i in self._checklists,
            has_manager=lambda i: i in self._managers,
            has_transcript=lambda i: i in self._transcripts,
        )
        if transcript is not None:
            self._transcripts[transcript.id] = transcript
        self._analyses[analysis.id] = analysis
        return analysis

    def get_analysis(self, analysis_id: str) -> Optional[StoredAnalysis]:
        return self._analyses.get(analysis_id)

    def list_analyses(self, manager_id: Optional[str] = None, limit: Optional[int] = None) -> List[StoredAnalysis]:
        analyses = [a for a in self._analyses.values() if manager_id is None or a.manager_id == manager_id]
        analyses.sort(key=lambda a: a.analyzed_at, reverse=True)
        return analyses[:limit] if limit else analyses

    def delete_analysis(self, analysis_id: str) -> bool:
        return self._analyses.pop(analysis_id, None) is not None

    def _detach(self, field: str, value: str):
        for analysis_id, analysis in list(self._analyses.items()):
            if getattr(analysis, field) == value:
                self._analyses[analysis_id] = analysis.model_copy(update={field: None})
