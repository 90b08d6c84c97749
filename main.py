"""
FastAPI service for CallCheck - call and correspondence checklist analysis
"""

import os
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, File, Form, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
import uvicorn

from callcheck.analyzer import AnalysisRun, Analyzer, RunState
from callcheck.checklists import normalize_checklist
from callcheck.config import SERVICE_NAME, Settings
from callcheck.defaults import seed_default_checklists
from callcheck.errors import CallCheckError, NotFoundError, StorageError, ValidationError
from callcheck.importers.uploads import parse_checklist_upload
from callcheck.provider import LLMProvider, OpenAIProvider
from callcheck.renderers.markdown import render_markdown
from callcheck.renderers.pdf import render_pdf
from callcheck.retry import RetryPolicy
from callcheck.schemas import AdvancedChecklist, AnalyzeRequest, ManagerInput, StoredAnalysis, TranscriptPayload
from callcheck.security import AuthGuard, cors_options
from callcheck.stats import build_stats
from callcheck.storage.base import StorageBackend, new_id
from callcheck.storage.factory import create_storage
from callcheck.transcription import Transcriber

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _attachment(filename: str) -> Dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


def _read_upload(file: UploadFile, limit: int, label: str) -> bytes:
    data = file.file.read()
    if len(data) > limit:
        raise ValidationError(f"{label} is too large. Maximum size is {limit // (1024 * 1024)} MB")
    return data


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[StorageBackend] = None,
    provider: Optional[LLMProvider] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> FastAPI:
    """Build the API. Storage and provider can be injected; otherwise they come from settings."""
    settings = settings or Settings.from_env()
    provider = provider or OpenAIProvider.from_settings(settings)
    retry_policy = retry_policy or RetryPolicy.from_settings(settings)
    owns_storage = storage is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.storage is None:
            app.state.storage = create_storage(settings)
        if settings.seed_default_checklists:
            seed_default_checklists(app.state.storage)
        logger.info(f"{SERVICE_NAME} {settings.service_version} started ({settings.environment})")
        yield
        if owns_storage and app.state.storage is not None:
            app.state.storage.close()

    app = FastAPI(
        title="CallCheck - Conversation Checklist Analysis API",
        description="LLM-powered checklist and objection analysis for sales and support conversations",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage
    app.state.analyzer = Analyzer(provider, retry_policy)
    app.state.provider = provider
    app.state.retry_policy = retry_policy

    def get_storage() -> StorageBackend:
        if app.state.storage is None:
            raise StorageError("Storage is not initialized")
        return app.state.storage

    def get_transcriber() -> Transcriber:
        return Transcriber(provider, storage=get_storage(), retry_policy=retry_policy)

    # Middleware: the last one added runs first
    guard = AuthGuard.from_settings(settings)

    @app.middleware("http")
    async def auth_guard(request: Request, call_next):
        if not guard.allows(request.method, request.url.path, request.headers, request.cookies):
            return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})
        return await call_next(request)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.info(f"{request.method} {request.url.path} {response.status_code} in {elapsed}ms")
        return response

    if settings.cors_origins:
        app.add_middleware(CORSMiddleware, **cors_options(settings.cors_origins))

    # Error handlers

    @app.exception_handler(CallCheckError)
    async def callcheck_error_handler(request: Request, exc: CallCheckError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    # Health

    @app.get("/", tags=["Health"])
    async def root():
        """Root endpoint"""
        return {
            "message": "CallCheck Conversation Analysis API",
            "status": "healthy",
            "version": settings.service_version
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "environment": settings.environment
        }

    @app.get("/healthz", tags=["Health"])
    async def healthz():
        """Liveness probe"""
        return {"status": "ok"}

    @app.get("/version", tags=["Health"])
    async def version():
        return {"service": SERVICE_NAME, "version": settings.service_version}

    # Transcription and analysis

    @app.post("/api/transcribe", tags=["Analysis"])
    def transcribe(file: UploadFile = File(...), language: Optional[str] = Form(None)):
        """
        Transcribe an uploaded audio file. Re-uploading the same audio returns the stored transcript.
        """
        data = _read_upload(file, settings.max_audio_bytes, "Audio file")
        transcript, cached = get_transcriber().transcribe_audio(
            data,
            file.filename,
            content_type=file.content_type,
            language=language or settings.default_language,
        )
        payload = TranscriptPayload(
            segments=transcript.segments,
            language=transcript.language,
            duration=transcript.duration,
        )
        return {
            "id": transcript.id,
            "transcript": payload.to_wire(),
            "language": transcript.language,
            "text": transcript.text,
            "cached": cached,
        }

    @app.post("/api/analyze", tags=["Analysis"])
    def analyze(request: AnalyzeRequest):
        """
        Analyze a transcript against an inline or stored checklist and persist the report
        """
        store = get_storage()

        if request.checklist is not None:
            checklist = normalize_checklist(request.checklist)
            stored_checklist_id = checklist.id if store.get_checklist(checklist.id) is not None else None
        elif request.checklist_id:
            checklist = store.get_checklist(request.checklist_id)
            if checklist is None:
                raise NotFoundError(f"Checklist '{request.checklist_id}' not found")
            stored_checklist_id = checklist.id
        else:
            raise ValidationError("Either checklist or checklistId is required")

        if request.manager_id and store.get_manager(request.manager_id) is None:
            raise ValidationError(f"Manager '{request.manager_id}' does not exist")

        # A stored transcript, when referenced, is what gets analyzed
        new_transcript = None
        if request.transcript_id:
            stored_transcript = store.get_transcript(request.transcript_id)
            if stored_transcript is None:
                raise ValidationError(f"Transcript '{request.transcript_id}' does not exist")
            if stored_transcript.segments:
                transcript_input = TranscriptPayload(
                    segments=stored_transcript.segments,
                    language=stored_transcript.language,
                    duration=stored_transcript.duration,
                )
            else:
                transcript_input = stored_transcript.text
            language = request.language or stored_transcript.language or settings.default_language
            transcript_id = stored_transcript.id
            stored_text = stored_transcript.text
        elif request.transcript is not None:
            transcript_input = request.transcript
            language = request.language
            if not language and isinstance(transcript_input, TranscriptPayload):
                language = transcript_input.language
            language = language or settings.default_language
            new_transcript = get_transcriber().from_text(transcript_input, request.source, language)
            transcript_id = new_transcript.id
            stored_text = new_transcript.text
        else:
            raise ValidationError("Either transcript or transcriptId is required")

        run = AnalysisRun(new_id("an"))
        analyzer: Analyzer = app.state.analyzer

        if isinstance(checklist, AdvancedChecklist):
            report = analyzer.analyze_advanced(transcript_input, checklist, request.source, language, run=run)
            reports: Dict[str, Any] = {"advanced_report": report}
            analyzed_at = report.meta.analyzed_at
            kind = "advanced"
        else:
            result = analyzer.analyze(transcript_input, checklist, request.source, language, run=run)
            reports = {"checklist_report": result.checklist_report, "objections_report": result.objections_report}
            analyzed_at = result.checklist_report.meta.analyzed_at
            kind = "simple"

        analysis = StoredAnalysis(
            id=run.id,
            kind=kind,
            checklist_id=stored_checklist_id,
            checklist_name=checklist.name,
            manager_id=request.manager_id,
            transcript_id=transcript_id,
            source=request.source,
            language=language,
            transcript=stored_text,
            analyzed_at=datetime.fromisoformat(analyzed_at.replace("Z", "+00:00")),
            **reports,
        )
        try:
            analysis = store.create_analysis(analysis, transcript=new_transcript)
        except CallCheckError as e:
            run.fail(e)
            raise
        run.advance(RunState.PERSISTED)
        return analysis.report_payload()

    # Checklists

    @app.get("/api/checklists", tags=["Checklists"])
    def list_checklists():
        return [c.to_wire() for c in get_storage().list_checklists()]

    @app.get("/api/checklists/{checklist_id}", tags=["Checklists"])
    def get_checklist(checklist_id: str):
        checklist = get_storage().get_checklist(checklist_id)
        if checklist is None:
            raise NotFoundError(f"Checklist '{checklist_id}' not found")
        return checklist.to_wire()

    @app.post("/api/checklists", tags=["Checklists"], status_code=status.HTTP_201_CREATED)
    def create_checklist(payload: Dict[str, Any] = Body(...)):
        """Create a checklist from the simple or the staged form"""
        checklist = normalize_checklist(payload)
        return get_storage().create_checklist(checklist).to_wire()

    @app.post("/api/checklists/upload", tags=["Checklists"], status_code=status.HTTP_201_CREATED)
    def upload_checklist(file: UploadFile = File(...)):
        """
        Import a checklist from .txt, .md, .json, .csv, .xlsx or .xls
        """
        data = _read_upload(file, settings.max_checklist_bytes, "Checklist file")
        checklist = parse_checklist_upload(file.filename or "", data)
        logger.info(f"Imported checklist '{checklist.name}' from {file.filename}")
        return get_storage().create_checklist(checklist).to_wire()

    @app.put("/api/checklists/{checklist_id}", tags=["Checklists"])
    def update_checklist(checklist_id: str, payload: Dict[str, Any] = Body(...)):
        checklist = normalize_checklist({**payload, "id": checklist_id})
        updated = get_storage().update_checklist(checklist_id, checklist)
        if updated is None:
            raise NotFoundError(f"Checklist '{checklist_id}' not found")
        return updated.to_wire()

    @app.delete("/api/checklists/{checklist_id}", tags=["Checklists"])
    def delete_checklist(checklist_id: str):
        if not get_storage().delete_checklist(checklist_id):
            raise NotFoundError(f"Checklist '{checklist_id}' not found")
        return {"success": True}

    # Analyses

    def _get_analysis(analysis_id: str) -> StoredAnalysis:
        analysis = get_storage().get_analysis(analysis_id)
        if analysis is None:
            raise NotFoundError(f"Analysis '{analysis_id}' not found")
        return analysis

    def _analysis_manager(analysis: StoredAnalysis):
        if not analysis.manager_id:
            return None
        return get_storage().get_manager(analysis.manager_id)

    @app.get("/api/analyses", tags=["Analyses"])
    def list_analyses(managerId: Optional[str] = None, limit: Optional[int] = None):
        """List stored analyses, newest first"""
        if limit is not None and limit < 1:
            raise ValidationError("limit must be a positive integer")
        return [a.to_wire() for a in get_storage().list_analyses(manager_id=managerId, limit=limit)]

    @app.get("/api/analyses/{analysis_id}", tags=["Analyses"])
    def get_analysis(analysis_id: str):
        return _get_analysis(analysis_id).to_wire()

    @app.delete("/api/analyses/{analysis_id}", tags=["Analyses"])
    def delete_analysis(analysis_id: str):
        if not get_storage().delete_analysis(analysis_id):
            raise NotFoundError(f"Analysis '{analysis_id}' not found")
        return {"success": True}

    @app.get("/api/analyses/{analysis_id}/markdown", tags=["Analyses"])
    def export_markdown(analysis_id: str):
        """Download the report as Markdown"""
        analysis = _get_analysis(analysis_id)
        content = render_markdown(analysis, _analysis_manager(analysis))
        return Response(
            content=content,
            media_type="text/markdown; charset=utf-8",
            headers=_attachment(f"analysis-{analysis.id}.md"),
        )

    @app.get("/api/analyses/{analysis_id}/pdf", tags=["Analyses"])
    def export_pdf(analysis_id: str):
        """Download the report as PDF"""
        analysis = _get_analysis(analysis_id)
        content = render_pdf(analysis, _analysis_manager(analysis), font_path=settings.pdf_font_path)
        return Response(
            content=content,
            media_type="application/pdf",
            headers=_attachment(f"analysis-{analysis.id}.pdf"),
        )

    # Managers

    @app.get("/api/managers", tags=["Managers"])
    def list_managers():
        return [m.to_wire() for m in get_storage().list_managers()]

    @app.get("/api/managers/{manager_id}", tags=["Managers"])
    def get_manager(manager_id: str):
        manager = get_storage().get_manager(manager_id)
        if manager is None:
            raise NotFoundError(f"Manager '{manager_id}' not found")
        return manager.to_wire()

    @app.post("/api/managers", tags=["Managers"], status_code=status.HTTP_201_CREATED)
    def create_manager(payload: ManagerInput):
        return get_storage().create_manager(payload).to_wire()

    @app.put("/api/managers/{manager_id}", tags=["Managers"])
    def update_manager(manager_id: str, payload: ManagerInput):
        manager = get_storage().update_manager(manager_id, payload)
        if manager is None:
            raise NotFoundError(f"Manager '{manager_id}' not found")
        return manager.to_wire()

    @app.delete("/api/managers/{manager_id}", tags=["Managers"])
    def delete_manager(manager_id: str):
        if not get_storage().delete_manager(manager_id):
            raise NotFoundError(f"Manager '{manager_id}' not found")
        return {"success": True}

    # Statistics

    @app.get("/api/stats", tags=["Statistics"])
    def stats():
        """Aggregate counts and scores across stored analyses"""
        store = get_storage()
        return build_stats(store.list_analyses(), store.list_managers())

    return app


app = create_app()


if __name__ == "__main__":
    # For local development
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        log_level="info"
    )
