from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any, Literal, Union, Iterator
from datetime import datetime


ItemType = Literal["mandatory", "recommended", "prohibited"]
ItemStatus = Literal["passed", "failed", "uncertain"]
Handling = Literal["handled", "partial", "unhandled"]
Source = Literal["call", "correspondence"]
LevelName = Literal["max", "mid", "min"]

ITEM_TYPES = ("mandatory", "recommended", "prohibited")
ITEM_STATUSES = ("passed", "failed", "uncertain")
HANDLING_VALUES = ("handled", "partial", "unhandled")
LEVEL_NAMES = ("max", "mid", "min")


class WireModel(BaseModel):
    """Models accept both snake_case and camelCase names and serialize to camelCase aliases"""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)


# Checklists

class ItemCriteria(WireModel):
    positive_patterns: List[str] = Field(default_factory=list, description="Phrases suggesting the item was done")
    negative_patterns: List[str] = Field(default_factory=list, description="Phrases suggesting a violation")
    llm_hint: str = Field("", description="What the model should look for")


class ChecklistItem(WireModel):
    id: str = Field(..., min_length=1, description="Item id, unique within the checklist")
    title: str = Field(..., min_length=1, description="Human readable item title")
    type: ItemType = Field("recommended", description="mandatory, recommended or prohibited")
    criteria: ItemCriteria = Field(default_factory=ItemCriteria)
    confidence_threshold: float = Field(0.6, ge=0, le=1, description="Minimum confidence to trust a verdict")


class Checklist(WireModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., description="Checklist display name")
    version: str = Field("1.0")
    type: Literal["simple"] = "simple"
    items: List[ChecklistItem] = Field(..., min_length=1)


class CriterionLevel(WireModel):
    description: str = Field("", description="What this level looks like in a conversation")
    score: float = Field(..., ge=0, description="Points awarded at this level")


class Criterion(WireModel):
    id: str = Field(..., min_length=1)
    number: str = Field(..., description="Display number such as 1.2")
    title: str = Field(..., min_length=1)
    description: str = Field("")
    weight: float = Field(..., ge=0, description="Maximum points for this criterion")
    max: Optional[CriterionLevel] = None
    mid: Optional[CriterionLevel] = None
    min: Optional[CriterionLevel] = None
    is_binary: Optional[bool] = Field(None, alias="isBinary")

    def level(self, name: str) -> Optional[CriterionLevel]:
        if name not in LEVEL_NAMES:
            return None
        return getattr(self, name)

    @property
    def binary(self) -> bool:
        if self.is_binary is not None:
            return self.is_binary
        return self.max is None and self.mid is None and self.min is None


class ChecklistStage(WireModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    order: int = Field(1)
    criteria: List[Criterion] = Field(..., min_length=1)


class AdvancedChecklist(WireModel):
    id: str = Field(..., min_length=1)
    name: str
    version: str = Field("1.0")
    type: Literal["advanced"] = "advanced"
    total_score: float = Field(..., ge=0, alias="totalScore")
    stages: List[ChecklistStage] = Field(..., min_length=1)

    def iter_criteria(self) -> Iterator[Criterion]:
        for stage in self.stages:
            for criterion in stage.criteria:
                yield criterion


AnyChecklist = Union[Checklist, AdvancedChecklist]


# Transcripts

class TranscriptSegment(WireModel):
    start: Optional[float] = None
    end: Optional[float] = None
    speaker: Optional[str] = None
    text: str = ""


class TranscriptPayload(WireModel):
    """Structured transcript as returned by /api/transcribe"""

    segments: List[TranscriptSegment] = Field(default_factory=list)
    language: Optional[str] = None
    duration: Optional[float] = None


class Transcript(WireModel):
    id: str
    source: Source = "call"
    language: str
    text: str
    audio_file_name: Optional[str] = Field(None, alias="audioFileName")
    duration: Optional[float] = None
    segments: List[TranscriptSegment] = Field(default_factory=list)
    content_hash: Optional[str] = Field(None, alias="contentHash", description="SHA-256 of the source audio")
    created_at: datetime = Field(..., alias="createdAt")


# Simple checklist reports

class Evidence(WireModel):
    text: str
    start: Optional[float] = None
    end: Optional[float] = None


class ChecklistReportItem(WireModel):
    id: str
    title: str
    type: ItemType = "recommended"
    status: ItemStatus = "uncertain"
    score: float = Field(0.0, ge=0, le=1)
    evidence: List[Evidence] = Field(default_factory=list)
    comment: Optional[str] = None


class ReportMeta(WireModel):
    source: Source
    language: str
    analyzed_at: str = Field(..., description="UTC ISO timestamp of the analysis")
    duration: Optional[float] = None
    volume: Optional[int] = Field(None, description="Transcript length in characters")


class ChecklistReport(WireModel):
    meta: ReportMeta
    items: List[ChecklistReportItem]
    summary: str


class Objection(WireModel):
    category: str = "Other"
    client_phrase: str = ""
    manager_reply: Optional[str] = None
    handling: Handling = "unhandled"
    advice: Optional[str] = None


class ObjectionsReport(WireModel):
    topics: List[str] = Field(default_factory=list)
    objections: List[Objection] = Field(default_factory=list)
    conversation_essence: str = ""
    outcome: str = ""


class AnalysisReport(WireModel):
    checklist_report: ChecklistReport = Field(..., alias="checklistReport")
    objections_report: ObjectionsReport = Field(..., alias="objectionsReport")


# Advanced checklist reports

class CriterionEvidence(WireModel):
    text: str
    timestamp: Optional[str] = None


class CriterionReport(WireModel):
    id: str
    number: str
    title: str
    description: Optional[str] = None
    achieved_level: Optional[LevelName] = Field(None, alias="achievedLevel")
    score: float = Field(0.0, ge=0)
    max_score: float = Field(..., ge=0, alias="maxScore")
    evidence: List[CriterionEvidence] = Field(default_factory=list)
    comment: str = ""


class StageReport(WireModel):
    stage_name: str = Field(..., alias="stageName")
    criteria: List[CriterionReport]


class AdvancedChecklistReport(WireModel):
    checklist_id: str = Field(..., alias="checklistId")
    total_score: float = Field(0.0, alias="totalScore")
    max_possible_score: float = Field(..., alias="maxPossibleScore")
    percentage: int = 0
    stages: List[StageReport]
    summary: str
    meta: Optional[ReportMeta] = None


# Persistence

class StoredAnalysis(WireModel):
    id: str
    kind: Literal["simple", "advanced"] = "simple"
    checklist_id: Optional[str] = Field(None, alias="checklistId")
    checklist_name: str = Field("", alias="checklistName")
    manager_id: Optional[str] = Field(None, alias="managerId")
    transcript_id: Optional[str] = Field(None, alias="transcriptId")
    source: Source = "call"
    language: str
    transcript: str
    checklist_report: Optional[ChecklistReport] = Field(None, alias="checklistReport")
    objections_report: Optional[ObjectionsReport] = Field(None, alias="objectionsReport")
    advanced_report: Optional[AdvancedChecklistReport] = Field(None, alias="advancedReport")
    analyzed_at: datetime = Field(..., alias="analyzedAt")

    def report_payload(self) -> Dict[str, Any]:
        """Report body returned by /api/analyze: the report fields plus the stored id"""
        if self.kind == "advanced" and self.advanced_report is not None:
            payload = self.advanced_report.to_wire()
        else:
            payload = {
                "checklistReport": self.checklist_report.to_wire() if self.checklist_report else None,
                "objectionsReport": self.objections_report.to_wire() if self.objections_report else None,
            }
        payload["id"] = self.id
        return payload


class ManagerInput(WireModel):
    name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    email: Optional[str] = None
    team_lead: Optional[str] = Field(None, alias="teamLead")
    department: Optional[str] = None


class Manager(ManagerInput):
    id: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


# Requests

class AnalyzeRequest(WireModel):
    transcript: Optional[Union[str, TranscriptPayload]] = Field(None, description="Plain text or a transcribed payload")
    checklist: Optional[Dict[str, Any]] = Field(None, description="Inline checklist, simple or advanced")
    checklist_id: Optional[str] = Field(None, alias="checklistId", description="Stored checklist to use")
    language: Optional[str] = None
    source: Source = "call"
    manager_id: Optional[str] = Field(None, alias="managerId")
    transcript_id: Optional[str] = Field(None, alias="transcriptId", description="Previously stored transcript")
