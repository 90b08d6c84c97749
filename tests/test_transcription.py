import pytest

from callcheck.errors import ProviderCallError, TranscriptionError, ValidationError
from callcheck.schemas import TranscriptPayload, TranscriptSegment
from callcheck.storage.memory import MemoryStorage
from callcheck.transcription import Transcriber, content_hash, is_supported_audio, uploaded_temp_file

from stubs import StubProvider, fast_policy

WHISPER_RESULT = {
    "text": "Hello, my name is Anna. How can I help?",
    "language": "en",
    "duration": 4.2,
    "segments": [
        {"start": 0.0, "end": 2.0, "text": " Hello, my name is Anna."},
        {"start": 2.0, "end": 4.2, "text": " How can I help?"},
    ],
}


class TestUploadedTempFile:
    def test_file_removed_after_use(self):
        with uploaded_temp_file(b"audio", suffix=".mp3") as path:
            assert path.exists()
            assert path.read_bytes() == b"audio"
        assert not path.exists()

    def test_file_removed_on_error(self):
        with pytest.raises(RuntimeError):
            with uploaded_temp_file(b"audio", suffix=".wav") as path:
                raise RuntimeError("boom")
        assert not path.exists()


class TestTranscriber:
    def setup_method(self):
        self.storage = MemoryStorage()

    def test_transcribes_and_caches_by_content(self):
        provider = StubProvider(transcription=WHISPER_RESULT)
        transcriber = Transcriber(provider, storage=self.storage, retry_policy=fast_policy())

        transcript, cached = transcriber.transcribe_audio(b"fake-audio", "call.mp3", language="en")

        assert cached is False
        assert transcript.id.startswith("tr-")
        assert transcript.text == WHISPER_RESULT["text"]
        assert [s.text for s in transcript.segments] == ["Hello, my name is Anna.", "How can I help?"]
        assert transcript.content_hash == content_hash(b"fake-audio")
        assert provider.transcribe_calls[0]["existed"] is True
        assert not provider.transcribe_calls[0]["path"].exists()

        again, cached = transcriber.transcribe_audio(b"fake-audio", "copy.mp3", language="en")
        assert cached is True
        assert again.id == transcript.id
        assert len(provider.transcribe_calls) == 1

    def test_unsupported_file_rejected(self):
        provider = StubProvider(transcription=WHISPER_RESULT)
        transcriber = Transcriber(provider, storage=self.storage, retry_policy=fast_policy())

        with pytest.raises(ValidationError):
            transcriber.transcribe_audio(b"data", "notes.pdf", content_type="application/pdf")
        assert provider.transcribe_calls == []

    def test_empty_provider_output(self):
        provider = StubProvider(transcription={"text": "  ", "segments": []})
        transcriber = Transcriber(provider, storage=self.storage, retry_policy=fast_policy())

        with pytest.raises(TranscriptionError):
            transcriber.transcribe_audio(b"silence", "silence.wav")
        assert self.storage.find_transcript_by_hash(content_hash(b"silence")) is None

    def test_provider_rejection_is_a_transcription_error(self):
        provider = StubProvider(transcription=ProviderCallError("unsupported codec", status_code=400))
        transcriber = Transcriber(provider, storage=self.storage, retry_policy=fast_policy())

        with pytest.raises(TranscriptionError):
            transcriber.transcribe_audio(b"data", "call.ogg")

    def test_provider_outage_is_a_transcription_error(self):
        provider = StubProvider(transcription=ProviderCallError("down", status_code=500))
        transcriber = Transcriber(provider, storage=self.storage, retry_policy=fast_policy())

        with pytest.raises(TranscriptionError) as exc:
            transcriber.transcribe_audio(b"data", "call.mp3")

        assert exc.value.status_code == 500
        assert len(provider.transcribe_calls) == 3
        assert not any(call["path"].exists() for call in provider.transcribe_calls)
        assert self.storage.find_transcript_by_hash(content_hash(b"data")) is None

    def test_from_text_payload(self):
        transcriber = Transcriber(StubProvider())
        payload = TranscriptPayload(
            segments=[TranscriptSegment(start=0, end=1, speaker="Client", text="Hi")],
            language="de",
            duration=1.0,
        )

        transcript = transcriber.from_text(payload, source="correspondence", language="ru")

        assert transcript.text == "Client: Hi"
        assert transcript.language == "de"
        assert transcript.source == "correspondence"

    def test_from_text_rejects_empty(self):
        with pytest.raises(ValidationError):
            Transcriber(StubProvider()).from_text("   ")


class TestAudioDetection:
    def test_by_extension_or_mime(self):
        assert is_supported_audio("call.M4A", None)
        assert is_supported_audio("blob", "audio/mpeg")
        assert not is_supported_audio("notes.txt", "text/plain")
