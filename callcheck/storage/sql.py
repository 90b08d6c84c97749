import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import StorageError, ValidationError
from ..schemas import (
    AdvancedChecklist, AdvancedChecklistReport, AnyChecklist, Checklist, ChecklistReport,
    Manager, ManagerInput, ObjectionsReport, StoredAnalysis, Transcript
)
from .base import StorageBackend, build_manager, check_references, utcnow
from .models import AnalysisRow, Base, ChecklistRow, ManagerRow, TranscriptRow

logger = logging.getLogger(__name__)

IN_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _checklist_from_body(body: dict) -> AnyChecklist:
    if body.get("type") == "advanced":
        return AdvancedChecklist.model_validate(body)
    return Checklist.model_validate(body)


def _manager_from_row(row: ManagerRow) -> Manager:
    return Manager(
        id=row.id,
        name=row.name,
        phone=row.phone,
        email=row.email,
        team_lead=row.team_lead,
        department=row.department,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _transcript_from_row(row: TranscriptRow) -> Transcript:
    return Transcript(
        id=row.id,
        source=row.source,
        language=row.language,
        text=row.text,
        audio_file_name=row.audio_file_name,
        duration=row.duration,
        segments=row.segments or [],
        content_hash=row.content_hash,
        created_at=_aware(row.created_at),
    )


def _transcript_row(transcript: Transcript) -> TranscriptRow:
    return TranscriptRow(
        id=transcript.id,
        source=transcript.source,
        language=transcript.language,
        text=transcript.text,
        audio_file_name=transcript.audio_file_name,
        duration=transcript.duration,
        segments=[s.to_wire() for s in transcript.segments],
        content_hash=transcript.content_hash,
        created_at=transcript.created_at,
    )


def _analysis_from_row(row: AnalysisRow) -> StoredAnalysis:
    return StoredAnalysis(
        id=row.id,
        kind=row.kind,
        checklist_id=row.checklist_id,
        checklist_name=row.checklist_name or "",
        manager_id=row.manager_id,
        transcript_id=row.transcript_id,
        source=row.source,
        language=row.language,
        transcript=row.transcript,
        checklist_report=ChecklistReport.model_validate(row.checklist_report) if row.checklist_report else None,
        objections_report=ObjectionsReport.model_validate(row.objections_report) if row.objections_report else None,
        advanced_report=AdvancedChecklistReport.model_validate(row.advanced_report) if row.advanced_report else None,
        analyzed_at=_aware(row.analyzed_at),
    )


class SqlStorage(StorageBackend):
    """SQLAlchemy-backed store (PostgreSQL in production, SQLite locally)"""

    name = "sql"

    def __init__(self, engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> "SqlStorage":
        """Connect and create missing tables; raises SQLAlchemyError when unreachable"""
        kwargs = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in IN_MEMORY_SQLITE_URLS:
                kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        Base.metadata.create_all(engine)
        return cls(engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise StorageError(f"Database operation failed: {e.__class__.__name__}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Checklists

    def list_checklists(self) -> List[AnyChecklist]:
        with self._session() as session:
            rows = session.execute(select(ChecklistRow).order_by(ChecklistRow.created_at)).scalars().all()
            return [_checklist_from_body(row.body) for row in rows]

    def get_checklist(self, checklist_id: str) -> Optional[AnyChecklist]:
        with self._session() as session:
            row = session.get(ChecklistRow, checklist_id)
            return _checklist_from_body(row.body) if row else None

    def create_checklist(self, checklist: AnyChecklist) -> AnyChecklist:
        with self._session() as session:
            if session.get(ChecklistRow, checklist.id) is not None:
                raise ValidationError(f"Checklist with id '{checklist.id}' already exists")
            now = utcnow()
            session.add(ChecklistRow(
                id=checklist.id,
                name=checklist.name,
                version=checklist.version,
                kind=checklist.type,
                body=checklist.to_wire(),
                created_at=now,
                updated_at=now,
            ))
        return checklist

    def update_checklist(self, checklist_id: str, checklist: AnyChecklist) -> Optional[AnyChecklist]:
        checklist = checklist.model_copy(update={"id": checklist_id})
        with self._session() as session:
            row = session.get(ChecklistRow, checklist_id)
            if row is None:
                return None
            row.name = checklist.name
            row.version = checklist.version
            row.kind = checklist.type
            row.body = checklist.to_wire()
            row.updated_at = utcnow()
        return checklist

    def delete_checklist(self, checklist_id: str) -> bool:
        with self._session() as session:
            row = session.get(ChecklistRow, checklist_id)
            if row is None:
                return False
            session.execute(
                update(AnalysisRow).where(AnalysisRow.checklist_id == checklist_id).values(checklist_id=None)
            )
            session.delete(row)
            return True

    # Managers

    def list_managers(self) -> List[Manager]:
        with self._session() as session:
            rows = session.execute(select(ManagerRow).order_by(ManagerRow.name)).scalars().all()
            return [_manager_from_row(row) for row in rows]

    def get_manager(self, manager_id: str) -> Optional[Manager]:
        with self._session() as session:
            row = session.get(ManagerRow, manager_id)
            return _manager_from_row(row) if row else None

    def create_manager(self, data: ManagerInput) -> Manager:
        manager = build_manager(data)
        with self._session() as session:
            session.add(ManagerRow(
                id=manager.id,
                name=manager.name,
                phone=manager.phone,
                email=manager.email,
                team_lead=manager.team_lead,
                department=manager.department,
                created_at=manager.created_at,
                updated_at=manager.updated_at,
            ))
        return manager

    def update_manager(self, manager_id: str, data: ManagerInput) -> Optional[Manager]:
        with self._session() as session:
            row = session.get(ManagerRow, manager_id)
            if row is None:
                return None
            manager = build_manager(data, manager_id=manager_id, created_at=_aware(row.created_at))
            row.name = manager.name
            row.phone = manager.phone
            row.email = manager.email
            row.team_lead = manager.team_lead
            row.department = manager.department
            row.updated_at = manager.updated_at
        return manager

    def delete_manager(self, manager_id: str) -> bool:
        with self._session() as session:
            row = session.get(ManagerRow, manager_id)
            if row is None:
                return False
            session.execute(
                update(AnalysisRow).where(AnalysisRow.manager_id == manager_id).values(manager_id=None)
            )
            session.delete(row)
            return True

    # Transcripts

    def create_transcript(self, transcript: Transcript) -> Transcript:
        with self._session() as session:
            session.add(_transcript_row(transcript))
        return transcript

    def get_transcript(self, transcript_id: str) -> Optional[Transcript]:
        with self._session() as session:
            row = session.get(TranscriptRow, transcript_id)
            return _transcript_from_row(row) if row else None

    def find_transcript_by_hash(self, digest: str) -> Optional[Transcript]:
        with self._session() as session:
            row = session.execute(
                select(TranscriptRow)
                .where(TranscriptRow.content_hash == digest)
                .order_by(TranscriptRow.created_at)
                .limit(1)
            ).scalars().first()
            return _transcript_from_row(row) if row else None

    # Analyses

    def create_analysis(self, analysis: StoredAnalysis, transcript: Optional[Transcript] = None) -> StoredAnalysis:
        with self._session() as session:
            check_references(
                analysis, transcript,
                has_checklist=lambda i: session.get(ChecklistRow, i) is not None,
                has_manager=lambda i: session.get(ManagerRow, i) is not None,
                has_transcript=lambda i: session.get(TranscriptRow, i) is not None,
            )
            if transcript is not None:
                session.add(_transcript_row(transcript))
                session.flush()
            session.add(AnalysisRow(
                id=analysis.id,
                kind=analysis.kind,
                checklist_id=analysis.checklist_id,
                checklist_name=analysis.checklist_name,
                manager_id=analysis.manager_id,
                transcript_id=analysis.transcript_id,
                source=analysis.source,
                language=analysis.language,
                transcript=analysis.transcript,
                checklist_report=analysis.checklist_report.to_wire() if analysis.checklist_report else None,
                objections_report=analysis.objections_report.to_wire() if analysis.objections_report else None,
                advanced_report=analysis.advanced_report.to_wire() if analysis.advanced_report else None,
                analyzed_at=analysis.analyzed_at,
            ))
        return analysis

    def get_analysis(self, analysis_id: str) -> Optional[StoredAnalysis]:
        with self._session() as session:
            row = session.get(AnalysisRow, analysis_id)
            return _analysis_from_row(row) if row else None

    def list_analyses(self, manager_id: Optional[str] = None, limit: Optional[int] = None) -> List[StoredAnalysis]:
        query = select(AnalysisRow).order_by(AnalysisRow.analyzed_at.desc())
        if manager_id is not None:
            query = query.where(AnalysisRow.manager_id == manager_id)
        if limit:
            query = query.limit(limit)
        with self._session() as session:
            return [_analysis_from_row(row) for row in session.execute(query).scalars().all()]

    def delete_analysis(self, analysis_id: str) -> bool:
        with self._session() as session:
            row = session.get(AnalysisRow, analysis_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def close(self):
        self.engine.dispose()
