import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..errors import ValidationError
from ..schemas import AnyChecklist, Manager, ManagerInput, StoredAnalysis, Transcript


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def build_manager(data: ManagerInput, manager_id: Optional[str] = None, created_at: Optional[datetime] = None) -> Manager:
    now = utcnow()
    return Manager(
        id=manager_id or new_id("mgr"),
        created_at=created_at or now,
        updated_at=now,
        **data.model_dump(exclude={"id", "created_at", "updated_at"}),
    )


def check_references(
    analysis: StoredAnalysis,
    transcript: Optional[Transcript],
    has_checklist: Callable[[str], bool],
    has_manager: Callable[[str], bool],
    has_transcript: Callable[[str], bool],
):
    """Raise ValidationError when the analysis points at rows that do not exist"""
    errors = []
    if analysis.checklist_id and not has_checklist(analysis.checklist_id):
        errors.append(f"checklist '{analysis.checklist_id}' does not exist")
    if analysis.manager_id and not has_manager(analysis.manager_id):
        errors.append(f"manager '{analysis.manager_id}' does not exist")
    if transcript is not None:
        if analysis.transcript_id != transcript.id:
            errors.append("analysis transcriptId does not match the transcript being stored")
    elif analysis.transcript_id and not has_transcript(analysis.transcript_id):
        errors.append(f"transcript '{analysis.transcript_id}' does not exist")

    if errors:
        raise ValidationError("Invalid analysis references: " + "; ".join(errors))


class StorageBackend(ABC):
    """Persistence for checklists, managers, transcripts and analyses.

    Lookups and updates of missing ids return None, deletes return False.
    """

    name = "base"

    # Checklists

    @abstractmethod
    def list_checklists(self) -> List[AnyChecklist]:
        ...

    @abstractmethod
    def get_checklist(self, checklist_id: str) -> Optional[AnyChecklist]:
        ...

    @abstractmethod
    def create_checklist(self, checklist: AnyChecklist) -> AnyChecklist:
        ...

    @abstractmethod
    def update_checklist(self, checklist_id: str, checklist: AnyChecklist) -> Optional[AnyChecklist]:
        ...

    @abstractmethod
    def delete_checklist(self, checklist_id: str) -> bool:
        ...

    # Managers

    @abstractmethod
    def list_managers(self) -> List[Manager]:
        ...

    @abstractmethod
    def get_manager(self, manager_id: str) -> Optional[Manager]:
        ...

    @abstractmethod
    def create_manager(self, data: ManagerInput) -> Manager:
        ...

    @abstractmethod
    def update_manager(self, manager_id: str, data: ManagerInput) -> Optional[Manager]:
        ...

    @abstractmethod
    def delete_manager(self, manager_id: str) -> bool:
        ...

    # Transcripts

    @abstractmethod
    def create_transcript(self, transcript: Transcript) -> Transcript:
        ...

    @abstractmethod
    def get_transcript(self, transcript_id: str) -> Optional[Transcript]:
        ...

    @abstractmethod
    def find_transcript_by_hash(self, digest: str) -> Optional[Transcript]:
        ...

    # Analyses

    @abstractmethod
    def create_analysis(self, analysis: StoredAnalysis, transcript: Optional[Transcript] = None) -> StoredAnalysis:
        """Store an analysis, and its transcript when given, in one write"""
        ...

    @abstractmethod
    def get_analysis(self, analysis_id: str) -> Optional[StoredAnalysis]:
        ...

    @abstractmethod
    def list_analyses(self, manager_id: Optional[str] = None, limit: Optional[int] = None) -> List[StoredAnalysis]:
        """Newest first"""
        ...

    @abstractmethod
    def delete_analysis(self, analysis_id: str) -> bool:
        ...

    def close(self):
        pass
