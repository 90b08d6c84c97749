import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()

SERVICE_NAME = "callcheck-api"
DEFAULT_VERSION = "1.0.0"

DEFAULT_PUBLIC_ROUTES = ["/", "/health", "/healthz", "/version", "/docs", "/openapi.json", "/redoc"]
DEFAULT_PUBLIC_PREFIXES = ["/assets/", "/static/", "/favicon", "/robots.txt"]
DEFAULT_PROTECTED_PREFIXES = ["/api/admin/", "/api/internal/"]
DEFAULT_PROTECTED_METHODS = ["POST", "PUT", "PATCH", "DELETE"]
DEFAULT_AUTH_HEADERS = ["authorization"]
DEFAULT_AUTH_COOKIES = ["auth_token", "token", "access_token", "session", "sessionid", "jwt", "jwt_token"]


def _env_list(name: str, default: Optional[List[str]] = None) -> List[str]:
    """Read a comma separated environment variable"""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default or [])
    return [part.strip() for part in raw.split(",") if part.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Process configuration, read once at bootstrap"""

    database_url: Optional[str] = Field(None, description="SQLAlchemy URL of the relational store")
    local_database_path: str = Field("callcheck.db", description="SQLite file used when no DATABASE_URL is set")

    openai_api_key: Optional[str] = Field(None, description="LLM provider API key")
    llm_model: str = Field("gpt-4o-mini", description="Model used for checklist analysis")
    transcription_model: str = Field("whisper-1", description="Model used for speech-to-text")
    llm_temperature: float = Field(0.1, description="Sampling temperature for analysis calls")
    llm_max_tokens: int = Field(4000, description="Completion token limit for analysis calls")

    provider_timeout: float = Field(30.0, description="Per-attempt provider timeout in seconds")
    provider_max_attempts: int = Field(3, ge=1, description="Attempt cap for retryable provider failures")
    provider_backoff_base: float = Field(0.5, ge=0, description="First backoff delay in seconds")

    default_language: str = Field("ru", description="Language assumed when a request omits it")
    cors_origins: List[str] = Field(default_factory=list, description="Exact origins, *.domain patterns or *")
    service_version: str = Field(DEFAULT_VERSION, description="Reported by /version")
    environment: str = Field("development", description="Deployment environment name")
    seed_default_checklists: bool = Field(True, description="Seed built-in checklists into an empty store")
    pdf_font_path: Optional[str] = Field(None, description="TTF font used by the PDF renderer")
    max_audio_bytes: int = Field(50 * 1024 * 1024, description="Audio upload size limit")
    max_checklist_bytes: int = Field(5 * 1024 * 1024, description="Checklist upload size limit")

    auth_guard_enabled: bool = Field(True, description="Gate protected routes behind credentials")
    auth_public_routes: List[str] = Field(default_factory=lambda: list(DEFAULT_PUBLIC_ROUTES))
    auth_public_prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_PUBLIC_PREFIXES))
    auth_protected_routes: List[str] = Field(default_factory=list)
    auth_protected_prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_PROTECTED_PREFIXES))
    auth_protected_methods: List[str] = Field(default_factory=lambda: list(DEFAULT_PROTECTED_METHODS))
    auth_header_names: List[str] = Field(default_factory=lambda: list(DEFAULT_AUTH_HEADERS))
    auth_cookie_names: List[str] = Field(default_factory=lambda: list(DEFAULT_AUTH_COOKIES))

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.local_database_path}"

    @classmethod
    def from_env(cls) -> "Settings":
        guard_enabled = _env_bool("AUTH_GUARD_ENABLED", True)
        if _env_bool("AUTH_GUARD_DISABLED", False):
            guard_enabled = False

        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            local_database_path=os.getenv("LOCAL_DATABASE_PATH", "callcheck.db"),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            llm_model=os.getenv("DEFAULT_LLM_MODEL", "gpt-4o-mini"),
            transcription_model=os.getenv("TRANSCRIPTION_MODEL", "whisper-1"),
            llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.1")),
            llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4000")),
            provider_timeout=int(os.getenv("LLM_TIMEOUT_MS", "30000")) / 1000.0,
            provider_max_attempts=int(os.getenv("LLM_MAX_ATTEMPTS", "3")),
            provider_backoff_base=int(os.getenv("LLM_BACKOFF_BASE_MS", "500")) / 1000.0,
            default_language=os.getenv("DEFAULT_LANGUAGE", "ru"),
            cors_origins=_env_list("CORS_ORIGINS"),
            service_version=os.getenv("SERVICE_VERSION", DEFAULT_VERSION),
            environment=os.getenv("ENVIRONMENT", "development"),
            seed_default_checklists=_env_bool("SEED_DEFAULT_CHECKLISTS", True),
            pdf_font_path=os.getenv("PDF_FONT_PATH") or None,
            max_audio_bytes=int(os.getenv("MAX_AUDIO_MB", "50")) * 1024 * 1024,
            max_checklist_bytes=int(os.getenv("MAX_CHECKLIST_MB", "5")) * 1024 * 1024,
            auth_guard_enabled=guard_enabled,
            auth_public_routes=_env_list("AUTH_PUBLIC_ROUTES", DEFAULT_PUBLIC_ROUTES),
            auth_public_prefixes=_env_list("AUTH_PUBLIC_PREFIXES", DEFAULT_PUBLIC_PREFIXES),
            auth_protected_routes=_env_list("AUTH_PROTECTED_ROUTES"),
            auth_protected_prefixes=_env_list("AUTH_PROTECTED_PREFIXES", DEFAULT_PROTECTED_PREFIXES),
            auth_protected_methods=[m.upper() for m in _env_list("AUTH_PROTECTED_METHODS", DEFAULT_PROTECTED_METHODS)],
            auth_header_names=[h.lower() for h in _env_list("AUTH_HEADER_NAMES", DEFAULT_AUTH_HEADERS)],
            auth_cookie_names=_env_list("AUTH_COOKIE_NAMES", DEFAULT_AUTH_COOKIES),
        )
