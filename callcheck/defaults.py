import logging
from typing import List

from .checklists import normalize_checklist
from .errors import ValidationError
from .schemas import AnyChecklist

logger = logging.getLogger(__name__)

DEFAULT_CHECKLISTS = [
    {
        "id": "b2b-sales-basic",
        "name": "B2B sales - basic",
        "version": "1.0",
        "items": [
            {
                "id": "greeting",
                "title": "Greeting and introduction",
                "type": "mandatory",
                "criteria": {
                    "positive_patterns": ["good afternoon", "hello", "my name is", "company"],
                    "llm_hint": "Check that the manager greeted the client and introduced themselves and the company.",
                },
                "confidence_threshold": 0.6,
            },
            {
                "id": "needs",
                "title": "Needs discovery",
                "type": "mandatory",
                "criteria": {
                    "positive_patterns": ["what tasks", "what matters", "what goals", "tell me about"],
                    "llm_hint": "Check whether questions were asked to understand the client's tasks.",
                },
                "confidence_threshold": 0.65,
            },
            {
                "id": "presentation",
                "title": "Solution presentation",
                "type": "mandatory",
                "criteria": {
                    "positive_patterns": ["we can offer", "our solution", "this will help you"],
                    "llm_hint": "Check whether the manager presented a solution tied to the client's needs.",
                },
                "confidence_threshold": 0.6,
            },
            {
                "id": "objections",
                "title": "Objection handling",
                "type": "recommended",
                "criteria": {
                    "llm_hint": "Evaluate how the manager handled client objections, if there were any.",
                },
                "confidence_threshold": 0.65,
            },
            {
                "id": "next-steps",
                "title": "Agreed next steps",
                "type": "mandatory",
                "criteria": {
                    "positive_patterns": ["next step", "when shall we meet", "i will send", "we will get in touch"],
                    "llm_hint": "Check whether concrete next steps were agreed.",
                },
                "confidence_threshold": 0.7,
            },
            {
                "id": "promises-without-basis",
                "title": "Promises without basis",
                "type": "prohibited",
                "criteria": {
                    "negative_patterns": ["i guarantee", "it will definitely work", "i promise", "100%"],
                    "llm_hint": "Detect unfounded promises or guarantees made without confirmation.",
                },
                "confidence_threshold": 0.7,
            },
        ],
    },
    {
        "id": "support-quality",
        "name": "Customer support quality",
        "version": "1.0",
        "items": [
            {
                "id": "greeting-support",
                "title": "Polite greeting",
                "type": "mandatory",
                "criteria": {
                    "positive_patterns": ["good afternoon", "hello", "how can i help"],
                    "llm_hint": "Check that the greeting was polite and professional.",
                },
                "confidence_threshold": 0.6,
            },
            {
                "id": "problem-understanding",
                "title": "Problem understanding",
                "type": "mandatory",
                "criteria": {
                    "positive_patterns": ["do i understand correctly", "could you clarify", "please explain"],
                    "llm_hint": "Evaluate whether the manager asked clarifying questions to understand the problem.",
                },
                "confidence_threshold": 0.65,
            },
            {
                "id": "solution",
                "title": "Solution offered",
                "type": "mandatory",
                "criteria": {
                    "llm_hint": "Check whether a concrete solution to the problem was offered.",
                },
                "confidence_threshold": 0.7,
            },
            {
                "id": "empathy",
                "title": "Empathy",
                "type": "recommended",
                "criteria": {
                    "positive_patterns": ["i understand", "i'm sorry", "we will help you sort it out"],
                    "llm_hint": "Evaluate whether the manager showed empathy for the client's problem.",
                },
                "confidence_threshold": 0.6,
            },
            {
                "id": "rude-language",
                "title": "Rudeness or unprofessional behaviour",
                "type": "prohibited",
                "criteria": {
                    "negative_patterns": ["not my problem", "your own fault", "i don't know"],
                    "llm_hint": "Detect rude or unprofessional statements.",
                },
                "confidence_threshold": 0.8,
            },
        ],
    },
]


def default_checklists() -> List[AnyChecklist]:
    return [normalize_checklist(data) for data in DEFAULT_CHECKLISTS]


def seed_default_checklists(storage) -> int:
    """Store the built-in checklists when the store has none; returns how many were added"""
    if storage.list_checklists():
        return 0

    added = 0
    for checklist in default_checklists():
        try:
            storage.create_checklist(checklist)
            added += 1
        except ValidationError as e:
            # Another worker seeded first
            logger.info(f"Skipping default checklist {checklist.id}: {e.message}")
    logger.info(f"Seeded {added} default checklist(s)")
    return added
