import hashlib
import logging
import os
import tempfile
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

from .analyzer import transcript_text
from .errors import ProviderError, TranscriptionError, ValidationError
from .prompts import TRANSCRIPTION_PROMPT
from .provider import LLMProvider
from .retry import RetryPolicy, call_with_retry
from .schemas import Transcript, TranscriptPayload, TranscriptSegment

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".ogg", ".flac", ".webm")
AUDIO_MIME_TYPES = (
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/x-wav", "audio/wave",
    "audio/mp4", "audio/x-m4a", "audio/m4a", "audio/ogg", "audio/flac",
    "audio/x-flac", "audio/webm",
)


def is_supported_audio(filename: Optional[str], content_type: Optional[str]) -> bool:
    suffix = Path(filename or "").suffix.lower()
    if suffix in AUDIO_EXTENSIONS:
        return True
    mime = (content_type or "").split(";")[0].strip().lower()
    return mime in AUDIO_MIME_TYPES or mime.startswith("audio/")


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@contextmanager
def uploaded_temp_file(data: bytes, suffix: str = "") -> Iterator[Path]:
    """Write upload bytes to a temp file and remove it however the block exits"""
    handle, name = tempfile.mkstemp(suffix=suffix, prefix="callcheck-")
    path = Path(name)
    try:
        with os.fdopen(handle, 'wb') as f:
            f.write(data)
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up temp file {path}: {e}")


def new_transcript_id() -> str:
    return f"tr-{uuid.uuid4().hex}"


class Transcriber:
    """Turns audio uploads or pasted text into Transcript records"""

    def __init__(self, provider: LLMProvider, storage=None, retry_policy: Optional[RetryPolicy] = None):
        self.provider = provider
        self.storage = storage
        self.retry_policy = retry_policy or RetryPolicy()

    def transcribe_audio(
        self,
        data: bytes,
        filename: Optional[str],
        content_type: Optional[str] = None,
        language: str = "ru",
    ) -> Tuple[Transcript, bool]:
        """Transcribe audio bytes; returns (transcript, served_from_cache)"""
        if not is_supported_audio(filename, content_type):
            raise ValidationError(
                f"Unsupported audio file '{filename}'. Supported formats: {', '.join(AUDIO_EXTENSIONS)}"
            )
        if not data:
            raise ValidationError("Audio file is empty")

        digest = content_hash(data)
        if self.storage is not None:
            existing = self.storage.find_transcript_by_hash(digest)
            if existing is not None:
                logger.info(f"Transcript cache hit for {filename} ({digest[:12]})")
                return existing, True

        suffix = Path(filename or "").suffix.lower() or ".mp3"
        with uploaded_temp_file(data, suffix=suffix) as path:
            try:
                raw = call_with_retry(
                    lambda: self.provider.transcribe(path, language, TRANSCRIPTION_PROMPT),
                    self.retry_policy,
                    description="transcription",
                )
            except ProviderError as e:
                raise TranscriptionError(f"Transcription failed: {e.message}") from e

        transcript = self._build_transcript(raw, filename, language, digest)
        if self.storage is not None:
            transcript = self.storage.create_transcript(transcript)
        logger.info(f"Transcribed {filename}: {len(transcript.text)} chars, {len(transcript.segments)} segments")
        return transcript, False

    def _build_transcript(self, raw: dict, filename: Optional[str], language: str, digest: str) -> Transcript:
        if not isinstance(raw, dict):
            raise TranscriptionError("Transcription provider returned an unexpected payload")

        segments = []
        for segment in raw.get("segments") or []:
            text = (segment.get("text") or "").strip()
            if text:
                segments.append(TranscriptSegment(
                    start=segment.get("start"),
                    end=segment.get("end"),
                    speaker=segment.get("speaker"),
                    text=text,
                ))

        text = (raw.get("text") or "").strip() or " ".join(s.text for s in segments)
        if not text:
            raise TranscriptionError("Transcription provider returned an empty transcript")

        duration = raw.get("duration")
        if not segments:
            segments = [TranscriptSegment(start=0.0, end=duration, text=text)]

        return Transcript(
            id=new_transcript_id(),
            source="call",
            language=raw.get("language") or language,
            text=text,
            audio_file_name=filename,
            duration=duration,
            segments=segments,
            content_hash=digest,
            created_at=datetime.now(timezone.utc),
        )

    def from_text(
        self,
        transcript: Union[str, TranscriptPayload],
        source: str = "call",
        language: str = "ru",
    ) -> Transcript:
        """Build an unsaved Transcript from pasted text or a transcribed payload"""
        text = transcript_text(transcript or "")
        if isinstance(transcript, TranscriptPayload):
            segments = transcript.segments
            duration = transcript.duration
            language = transcript.language or language
        else:
            segments = []
            duration = None

        if not text:
            raise ValidationError("Transcript is empty")

        return Transcript(
            id=new_transcript_id(),
            source=source,
            language=language,
            text=text,
            duration=duration,
            segments=segments,
            created_at=datetime.now(timezone.utc),
        )
