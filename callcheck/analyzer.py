import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from .errors import CallCheckError, ResponseFormatError, ValidationError
from .prompts import build_advanced_prompt, build_checklist_prompt, build_objections_prompt
from .provider import LLMProvider
from .reconcile import parse_provider_json, reconcile_advanced, reconcile_checklist, reconcile_objections
from .retry import RetryPolicy, call_with_retry
from .schemas import (
    AdvancedChecklist, AdvancedChecklistReport, AnalysisReport, Checklist,
    ReportMeta, TranscriptPayload
)

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    PENDING = "pending"
    PROMPT_BUILT = "prompt_built"
    PROVIDER_CALLED = "provider_called"
    RESPONSE_PARSED = "response_parsed"
    PARSE_FAILED = "parse_failed"
    RECONCILED = "reconciled"
    PERSISTED = "persisted"
    FAILED = "failed"


TERMINAL_STATES = (RunState.PERSISTED, RunState.FAILED)


class AnalysisRun:
    """Tracks one analysis request through its states"""

    def __init__(self, run_id: Optional[str] = None):
        self.id = run_id or uuid.uuid4().hex[:12]
        self.state = RunState.PENDING
        self.attempts = 0
        self.error: Optional[str] = None

    def advance(self, state: RunState):
        if self.state in TERMINAL_STATES:
            return
        logger.info(f"Analysis {self.id}: {self.state.value} -> {state.value}")
        self.state = state

    def record_attempt(self, attempt: int):
        self.attempts += 1
        if attempt > 1:
            logger.info(f"Analysis {self.id}: provider attempt {attempt}")

    def fail(self, error: Exception):
        self.error = str(error)
        if isinstance(error, ResponseFormatError) and self.state == RunState.PROVIDER_CALLED:
            self.advance(RunState.PARSE_FAILED)
        self.advance(RunState.FAILED)


def transcript_text(transcript: Union[str, TranscriptPayload]) -> str:
    """Flatten a transcript payload into prompt text, one segment per line"""
    if isinstance(transcript, str):
        return transcript.strip()

    lines = []
    for segment in transcript.segments:
        text = segment.text.strip()
        if not text:
            continue
        lines.append(f"{segment.speaker}: {text}" if segment.speaker else text)
    return "\n".join(lines)


def transcript_duration(transcript: Union[str, TranscriptPayload]) -> Optional[float]:
    if isinstance(transcript, TranscriptPayload):
        return transcript.duration
    return None


class Analyzer:
    """Runs checklist analysis against an injected LLM provider"""

    def __init__(self, provider: LLMProvider, retry_policy: Optional[RetryPolicy] = None):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()

    def _request(self, system_prompt: str, user_prompt: str, run: AnalysisRun, description: str) -> dict:
        run.advance(RunState.PROVIDER_CALLED)
        content = call_with_retry(
            lambda: self.provider.complete_json(system_prompt, user_prompt),
            self.retry_policy,
            description=description,
            on_attempt=run.record_attempt,
        )
        payload = parse_provider_json(content)
        run.advance(RunState.RESPONSE_PARSED)
        return payload

    def _meta(self, text: str, source: str, language: str, duration: Optional[float]) -> ReportMeta:
        return ReportMeta(
            source=source,
            language=language,
            analyzed_at=datetime.now(timezone.utc).isoformat(timespec='seconds').replace('+00:00', 'Z'),
            duration=duration,
            volume=len(text),
        )

    def analyze(
        self,
        transcript: Union[str, TranscriptPayload],
        checklist: Checklist,
        source: str = "call",
        language: str = "ru",
        run: Optional[AnalysisRun] = None,
    ) -> AnalysisReport:
        """Evaluate a transcript against a simple checklist and analyze objections"""
        run = run or AnalysisRun()
        text = transcript_text(transcript)
        if not text:
            run.fail(ValidationError("Transcript is empty"))
            raise ValidationError("Transcript is empty")

        try:
            system_prompt, user_prompt = build_checklist_prompt(text, checklist, source, language)
            objections_system, objections_user = build_objections_prompt(text, source, language)
            run.advance(RunState.PROMPT_BUILT)

            checklist_payload = self._request(system_prompt, user_prompt, run, "checklist analysis")
            objections_payload = self._request(objections_system, objections_user, run, "objections analysis")

            meta = self._meta(text, source, language, transcript_duration(transcript))
            report = AnalysisReport(
                checklist_report=reconcile_checklist(checklist, checklist_payload, meta),
                objections_report=reconcile_objections(objections_payload),
            )
            run.advance(RunState.RECONCILED)
            return report
        except CallCheckError as e:
            run.fail(e)
            raise

    def analyze_advanced(
        self,
        transcript: Union[str, TranscriptPayload],
        checklist: AdvancedChecklist,
        source: str = "call",
        language: str = "ru",
        run: Optional[AnalysisRun] = None,
    ) -> AdvancedChecklistReport:
        """Score a transcript against a staged checklist"""
        run = run or AnalysisRun()
        text = transcript_text(transcript)
        if not text:
            run.fail(ValidationError("Transcript is empty"))
            raise ValidationError("Transcript is empty")

        try:
            system_prompt, user_prompt = build_advanced_prompt(text, checklist, source, language)
            run.advance(RunState.PROMPT_BUILT)

            payload = self._request(system_prompt, user_prompt, run, "advanced checklist analysis")
            meta = self._meta(text, source, language, transcript_duration(transcript))
            report = reconcile_advanced(checklist, payload, meta)
            run.advance(RunState.RECONCILED)
            return report
        except CallCheckError as e:
            run.fail(e)
            raise
