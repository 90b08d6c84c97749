"""
Relational schema for the report store
"""
from sqlalchemy import Column, DateTime, Float, ForeignKey, JSON, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ChecklistRow(Base, TimestampMixin):
    """Simple or advanced checklist; the canonical JSON lives in body"""
    __tablename__ = "checklists"

    id = Column(String(128), primary_key=True)
    name = Column(String(255), nullable=False)
    version = Column(String(32), nullable=False, default="1.0")
    kind = Column(String(16), nullable=False, default="simple")  # simple | advanced
    body = Column(JSON, nullable=False)


class ManagerRow(Base, TimestampMixin):
    __tablename__ = "managers"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(64), nullable=True)
    email = Column(String(255), nullable=True)
    team_lead = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)

    analyses = relationship("AnalysisRow", back_populates="manager")


class TranscriptRow(Base):
    __tablename__ = "transcripts"

    id = Column(String(64), primary_key=True)
    source = Column(String(32), nullable=False)
    language = Column(String(16), nullable=False)
    text = Column(Text, nullable=False)
    audio_file_name = Column(String(512), nullable=True)
    duration = Column(Float, nullable=True)
    segments = Column(JSON, nullable=False, default=list)
    # Indexed, not unique: concurrent uploads of the same audio may both insert
    content_hash = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class AnalysisRow(Base):
    __tablename__ = "analyses"

    id = Column(String(64), primary_key=True)
    kind = Column(String(16), nullable=False, default="simple")
    checklist_id = Column(String(128), ForeignKey("checklists.id", ondelete="SET NULL"), nullable=True)
    checklist_name = Column(String(255), nullable=False, default="")
    manager_id = Column(String(64), ForeignKey("managers.id", ondelete="SET NULL"), nullable=True, index=True)
    transcript_id = Column(String(64), ForeignKey("transcripts.id"), nullable=True)
    source = Column(String(32), nullable=False)
    language = Column(String(16), nullable=False)
    transcript = Column(Text, nullable=False)
    checklist_report = Column(JSON, nullable=True)
    objections_report = Column(JSON, nullable=True)
    advanced_report = Column(JSON, nullable=True)
    analyzed_at = Column(DateTime(timezone=True), nullable=False, index=True)

    manager = relationship("ManagerRow", back_populates="analyses")
