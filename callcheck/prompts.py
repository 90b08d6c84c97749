import json
from typing import Any, Dict, List, Tuple

from .schemas import AdvancedChecklist, Checklist

LANGUAGE_NAMES = {
    "ru": "Russian",
    "en": "English",
    "uk": "Ukrainian",
    "kk": "Kazakh",
    "de": "German",
    "es": "Spanish",
    "fr": "French",
}

TRANSCRIPTION_PROMPT = (
    "Transcribe the conversation verbatim as plain text. "
    "When speakers can be told apart, prefix each turn with a speaker label such as "
    "'Manager:' or 'Client:'. Do not summarize or translate."
)

CHECKLIST_SYSTEM_PROMPT = """You are an expert in evaluating the work quality of sales and support managers.
Analyze the conversation and check every item of the checklist.

For each checklist item determine:
1. status: "passed", "failed" or "uncertain"
2. score: a number from 0 to 1, your confidence in the verdict
3. evidence: quotes from the conversation supporting the verdict (with timestamps when available)
4. comment: a short comment on how the item was handled

Rules:
- "mandatory" items require clear fulfilment
- "recommended" items are judged more leniently
- "prohibited" items pass only when no violation occurred
- Use positive_patterns and negative_patterns as hints
- Use the hint to understand what exactly to check

Respond ONLY with valid JSON, no additional text."""

OBJECTIONS_SYSTEM_PROMPT = """You are an expert in negotiation analysis and objection handling.
Analyze the conversation and identify:
1. Key discussion topics (topics)
2. Every client objection (objections) with:
   - category (price, timing, quality, trust, competitor, functionality, other)
   - client_phrase: what the client said
   - manager_reply: how the manager answered
   - handling: "handled", "partial" or "unhandled"
   - advice: a recommendation for improvement
3. The essence of the conversation in 1-3 sentences (conversation_essence)
4. The outcome and agreed next steps (outcome)

Respond ONLY with valid JSON, no additional text."""

ADVANCED_SYSTEM_PROMPT = """You are an expert in evaluating the work quality of sales managers.
For EVERY criterion of the staged checklist determine:
1. achievedLevel: "max" (done perfectly), "mid" (partially or with flaws), "min" (minimally or with serious problems) or null (not applicable or not done)
2. score: points for that level, as given by the level descriptions
3. evidence: quotes from the conversation, with a timestamp when possible
4. comment: a short comment

Use the max/mid/min descriptions of each criterion to choose the level.
If a criterion has no levels (only a weight) score it as binary: done = weight points, not done = 0.

Respond ONLY with valid JSON, no additional text."""


def language_name(language: str) -> str:
    return LANGUAGE_NAMES.get((language or "").lower(), language or "the conversation's language")


def _compact(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _source_label(source: str) -> str:
    return "phone call" if source == "call" else "written correspondence"


def build_checklist_prompt(transcript: str, checklist: Checklist, source: str, language: str) -> Tuple[str, str]:
    """Returns (system prompt, user prompt) for evaluating a simple checklist"""
    items: List[Dict[str, Any]] = []
    for item in checklist.items:
        entry = {"id": item.id, "title": item.title, "type": item.type, "hint": item.criteria.llm_hint}
        if item.criteria.positive_patterns:
            entry["positive_patterns"] = item.criteria.positive_patterns
        if item.criteria.negative_patterns:
            entry["negative_patterns"] = item.criteria.negative_patterns
        entry["threshold"] = item.confidence_threshold
        items.append(entry)

    user_prompt = f"""Conversation type: {_source_label(source)}

Conversation to analyze:
\"\"\"
{transcript}
\"\"\"

Checklist:
{_compact(items)}

Return the result in exactly this format, with one entry per checklist id:
{{
  "items": [
    {{
      "id": "checklist item id",
      "status": "passed|failed|uncertain",
      "score": 0.85,
      "evidence": [{{"text": "quote from the conversation", "start": 12.5, "end": 15.3}}],
      "comment": "short comment"
    }}
  ],
  "summary": "short overall summary of checklist fulfilment (2-3 sentences)"
}}

Write comments and the summary in {language_name(language)}."""

    return CHECKLIST_SYSTEM_PROMPT, user_prompt


def build_objections_prompt(transcript: str, source: str, language: str) -> Tuple[str, str]:
    user_prompt = f"""Conversation type: {_source_label(source)}

Conversation to analyze:
\"\"\"
{transcript}
\"\"\"

Return the result in exactly this format:
{{
  "topics": ["topic 1", "topic 2"],
  "objections": [
    {{
      "category": "price",
      "client_phrase": "what the client said",
      "manager_reply": "how the manager replied",
      "handling": "handled|partial|unhandled",
      "advice": "recommendation for improvement"
    }}
  ],
  "conversation_essence": "essence of the conversation in 1-3 sentences",
  "outcome": "outcome: what was agreed, next steps"
}}

Write all text values in {language_name(language)}."""

    return OBJECTIONS_SYSTEM_PROMPT, user_prompt


def build_advanced_prompt(transcript: str, checklist: AdvancedChecklist, source: str, language: str) -> Tuple[str, str]:
    stages = []
    for stage in checklist.stages:
        criteria = []
        for criterion in stage.criteria:
            entry = {
                "id": criterion.id,
                "number": criterion.number,
                "title": criterion.title,
                "weight": criterion.weight,
            }
            if criterion.description:
                entry["description"] = criterion.description
            for level_name in ("max", "mid", "min"):
                level = criterion.level(level_name)
                if level is not None:
                    entry[level_name] = {"description": level.description, "score": level.score}
            if criterion.binary:
                entry["isBinary"] = True
            criteria.append(entry)
        stages.append({"name": stage.name, "criteria": criteria})

    user_prompt = f"""Conversation type: {_source_label(source)}

Conversation to analyze:
\"\"\"
{transcript}
\"\"\"

Checklist "{checklist.name}" (maximum score {checklist.total_score:g}):
{_compact(stages)}

Return the result in exactly this format:
{{
  "stages": [
    {{
      "stageName": "stage name",
      "criteria": [
        {{
          "id": "criterion id",
          "number": "1.1",
          "achievedLevel": "max|mid|min|null",
          "score": 5,
          "evidence": [{{"text": "quote from the conversation", "timestamp": "12.5"}}],
          "comment": "short comment"
        }}
      ]
    }}
  ],
  "summary": "overall summary across all stages (2-3 sentences)"
}}

Write comments and the summary in {language_name(language)}."""

    return ADVANCED_SYSTEM_PROMPT, user_prompt
