import pytest

from callcheck.analyzer import AnalysisRun, Analyzer, RunState, transcript_text
from callcheck.checklists import normalize_checklist
from callcheck.errors import ProviderCallError, ProviderUnavailableError, ResponseFormatError, ValidationError
from callcheck.schemas import TranscriptPayload, TranscriptSegment

from stubs import GREET_CHECKLIST, GREET_RESPONSE, OBJECTIONS_RESPONSE, StubProvider, fast_policy


class TestAnalyzer:
    def setup_method(self):
        self.checklist = normalize_checklist(GREET_CHECKLIST)

    def test_greeting_scenario(self):
        provider = StubProvider([GREET_RESPONSE, OBJECTIONS_RESPONSE])
        analyzer = Analyzer(provider, fast_policy())
        run = AnalysisRun("an-test")

        report = analyzer.analyze("Manager: Hello, my name is Anna", self.checklist, "call", "en", run=run)

        assert len(report.checklist_report.items) == 1
        item = report.checklist_report.items[0]
        assert item.id == "greet"
        assert item.status == "passed"
        assert item.score == 0.9
        assert report.objections_report.objections[0].handling == "handled"
        assert report.checklist_report.meta.language == "en"
        assert report.checklist_report.meta.analyzed_at.endswith("Z")
        assert len(provider.calls) == 2
        assert run.state == RunState.RECONCILED

    def test_empty_transcript_never_reaches_provider(self):
        provider = StubProvider([GREET_RESPONSE, OBJECTIONS_RESPONSE])
        analyzer = Analyzer(provider, fast_policy())
        run = AnalysisRun()

        with pytest.raises(ValidationError):
            analyzer.analyze("   \n ", self.checklist, run=run)

        assert provider.calls == []
        assert run.state == RunState.FAILED

    def test_prompt_contains_checklist_and_transcript(self):
        provider = StubProvider([GREET_RESPONSE, OBJECTIONS_RESPONSE])
        Analyzer(provider, fast_policy()).analyze("Hello there", self.checklist, "correspondence", "en")

        system_prompt, user_prompt = provider.calls[0]
        assert "greet" in user_prompt
        assert "Hello there" in user_prompt

    def test_unparseable_response_fails_the_run(self):
        provider = StubProvider(["definitely not json"])
        run = AnalysisRun()

        with pytest.raises(ResponseFormatError):
            Analyzer(provider, fast_policy()).analyze("Hello", self.checklist, run=run)

        assert run.state == RunState.FAILED
        assert run.error

    def test_provider_outage_is_surfaced(self):
        failure = ProviderCallError("unavailable", status_code=503)
        provider = StubProvider([failure, failure, failure])
        run = AnalysisRun()

        with pytest.raises(ProviderUnavailableError):
            Analyzer(provider, fast_policy()).analyze("Hello", self.checklist, run=run)

        assert run.attempts == 3
        assert len(provider.calls) == 3

    def test_advanced_checklist(self):
        checklist = normalize_checklist({
            "id": "script",
            "name": "Script",
            "stages": [{"name": "Opening", "criteria": [{"title": "Greeting", "weight": 4, "isBinary": True}]}],
        })
        provider = StubProvider([{"stages": [{"criteria": [{"number": "1.1", "score": 1}]}], "summary": "Fine."}])

        report = Analyzer(provider, fast_policy()).analyze_advanced("Hello", checklist, "call", "en")

        assert report.total_score == 4
        assert report.percentage == 100
        assert report.meta.volume == len("Hello")
        assert len(provider.calls) == 1

    def test_advanced_recovers_after_transient_failures(self):
        checklist = normalize_checklist({
            "id": "script",
            "name": "Script",
            "stages": [{"name": "Opening", "criteria": [{"title": "Greeting", "weight": 4, "isBinary": True}]}],
        })
        failure = ProviderCallError("unavailable", status_code=503)
        provider = StubProvider([failure, failure, {"stages": [{"criteria": [{"number": "1.1", "score": 1}]}]}])
        run = AnalysisRun()

        report = Analyzer(provider, fast_policy()).analyze_advanced("Hello", checklist, "call", "en", run=run)

        assert run.attempts == 3
        assert run.state == RunState.RECONCILED
        assert run.error is None
        assert report.total_score == 4
        assert report.percentage == 100
        assert len(provider.calls) == 3


class TestTranscriptText:
    def test_segments_are_joined_with_speakers(self):
        payload = TranscriptPayload(segments=[
            TranscriptSegment(start=0, end=1, speaker="Manager", text="Hello"),
            TranscriptSegment(start=1, end=2, text=" "),
            TranscriptSegment(start=2, end=3, text="Hi"),
        ])
        assert transcript_text(payload) == "Manager: Hello\nHi"

    def test_plain_text_is_stripped(self):
        assert transcript_text("  Hello  ") == "Hello"
