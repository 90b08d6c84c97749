import json
from pathlib import Path

from callcheck.provider import LLMProvider
from callcheck.retry import RetryPolicy

GREET_CHECKLIST = {
    "id": "greet-check",
    "name": "Greeting check",
    "items": [{"id": "greet", "title": "Greeting", "type": "mandatory"}],
}

GREET_RESPONSE = {
    "items": [{
        "id": "greet",
        "status": "passed",
        "score": 0.9,
        "evidence": [{"text": "Hello, my name is Anna", "start": 1.5}],
        "comment": "Greeted the client",
    }],
    "summary": "Polite opening.",
}

OBJECTIONS_RESPONSE = {
    "topics": ["pricing"],
    "objections": [{
        "category": "Price",
        "client_phrase": "It is too expensive",
        "manager_reply": "We can offer a discount",
        "handling": "handled",
        "advice": "Anchor on value first",
    }],
    "conversation_essence": "Client asked about pricing.",
    "outcome": "Follow-up call scheduled.",
}


def fast_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, base_delay=0, timeout=None)


class StubProvider(LLMProvider):
    """Replays canned responses; exceptions in the queue are raised instead"""

    name = "stub"

    def __init__(self, responses=None, transcription=None):
        self.responses = list(responses or [])
        self.transcription = transcription
        self.calls = []
        self.transcribe_calls = []

    def complete_json(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if not self.responses:
            raise AssertionError("Unexpected provider call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response

    def transcribe(self, file_path, language, prompt):
        path = Path(file_path)
        self.transcribe_calls.append({"path": path, "existed": path.exists(), "language": language})
        if isinstance(self.transcription, Exception):
            raise self.transcription
        return self.transcription
