"""Demo catalog and demo learner loaded on first start."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List

import db

logger = logging.getLogger(__name__)

DEMO_USER_ID = "demo-user-1"

DEMO_USER: Dict[str, Any] = {
    "user_id": DEMO_USER_ID,
    "username": "sarah.adams",
    "name": "Sarah Adams",
    "email": "sarah.adams@example.com",
    "role": "care_worker",
    "skill_levels": {
        "empathy": 85,
        "communication": 72,
        "professionalism": 80,
        "problem_solving": 68,
    },
    "preferences": {"difficulty_preference": "adaptive"},
    "total_scenarios": 12,
    "weekly_streak": 5,
    "total_time": 138,
}

DEMO_SCENARIOS: List[Dict[str, Any]] = [
    {
        "id": "scenario-1",
        "title": "Supporting Someone with Dementia Distress",
        "description": "Practice calming techniques and empathetic communication when a resident becomes agitated.",
        "category": "dementia_care",
        "difficulty": "intermediate",
        "estimated_time": 15,
        "priority": "high",
        "context": (
            "Mrs. Johnson, a resident with dementia, has become agitated and is asking repeatedly for her "
            "deceased husband. She's becoming increasingly distressed and other residents are getting worried."
        ),
        "learning_objectives": [
            "Practice validation techniques",
            "Develop empathetic responses",
            "Learn redirection strategies",
        ],
    },
    {
        "id": "scenario-2",
        "title": "Family Conflict Resolution",
        "description": "Handle disagreements between family members about care decisions.",
        "category": "family_communication",
        "difficulty": "intermediate",
        "estimated_time": 15,
        "priority": "high",
        "context": (
            "Two siblings are arguing about their mother's care plan. One wants aggressive treatment while "
            "the other prefers comfort care."
        ),
        "learning_objectives": [
            "Navigate family dynamics",
            "Facilitate difficult conversations",
            "Find common ground",
        ],
    },
    {
        "id": "scenario-3",
        "title": "Medication Refusal",
        "description": "Support someone who is refusing to take their prescribed medication.",
        "category": "medication_management",
        "difficulty": "beginner",
        "estimated_time": 12,
        "priority": "medium",
        "context": "Mr. Thompson has been refusing his blood pressure medication, saying it makes him feel dizzy.",
        "learning_objectives": [
            "Understand medication concerns",
            "Build trust",
            "Find solutions together",
        ],
    },
    {
        "id": "scenario-4",
        "title": "End of Life Conversation",
        "description": "Provide comfort and support during difficult end-of-life discussions.",
        "category": "end_of_life",
        "difficulty": "advanced",
        "estimated_time": 20,
        "priority": "medium",
        "context": "A resident has received a terminal diagnosis and wants to discuss their fears about dying.",
        "learning_objectives": [
            "Provide emotional support",
            "Listen actively",
            "Offer appropriate comfort",
        ],
    },
    {
        "id": "dem-001",
        "title": "Sundowning and Evening Agitation",
        "description": "Help a person with dementia who becomes increasingly agitated as evening approaches.",
        "category": "dementia_care",
        "difficulty": "intermediate",
        "estimated_time": 12,
        "priority": "high",
        "context": (
            "Mr. Thompson has dementia and every evening around 5 PM he becomes restless, confused, and "
            "agitated. He keeps asking for his wife who passed away 5 years ago and wants to 'go home' even "
            "though he's been living in the care facility for 2 years."
        ),
        "learning_objectives": [
            "Understand sundowning syndrome in dementia",
            "Practice de-escalation techniques for agitated residents",
            "Learn validation therapy approaches",
        ],
    },
    {
        "id": "dem-002",
        "title": "Memory Care: Repeated Questions",
        "description": "Support someone with dementia who asks the same questions repeatedly throughout the day.",
        "category": "dementia_care",
        "difficulty": "beginner",
        "estimated_time": 10,
        "priority": "medium",
        "context": (
            "Mrs. Davies has moderate dementia and asks 'When is my daughter coming?' approximately every "
            "10 minutes. Her daughter visits weekly on Sundays, but Mrs. Davies cannot retain this information."
        ),
        "learning_objectives": [
            "Practice patient responses to repetitive questions",
            "Learn memory care communication techniques",
            "Understand the emotional needs behind repeated questions",
        ],
    },
    {
        "id": "dem-003",
        "title": "Personal Care Resistance",
        "description": "Navigate care assistance when a person with dementia refuses personal hygiene help.",
        "category": "dementia_care",
        "difficulty": "advanced",
        "estimated_time": 15,
        "priority": "high",
        "context": (
            "Mr. Foster has dementia and hasn't bathed in a week. When care staff approach him about washing, "
            "he becomes defensive, saying he 'just had a bath' and doesn't need help."
        ),
        "learning_objectives": [
            "Preserve dignity while providing necessary care",
            "Learn gentle persuasion techniques",
            "Understand resistance as communication",
        ],
    },
    {
        "id": "dem-004",
        "title": "Wandering and Safety Concerns",
        "description": "Manage a situation where someone with dementia is trying to leave the facility unsupervised.",
        "category": "dementia_care",
        "difficulty": "intermediate",
        "estimated_time": 12,
        "priority": "high",
        "context": (
            "Mrs. Chen has dementia and believes she needs to pick up her children from school. She's found "
            "by the exit door with her coat on, looking distressed and saying she's 'late for the children'."
        ),
        "learning_objectives": [
            "Practice safe redirection techniques",
            "Learn to validate emotional needs",
            "Understand wandering triggers",
        ],
    },
]

_SEED_LOCK = threading.Lock()
_SEEDED = False


def ensure_seed_data() -> None:
    """Populate the demo catalog and demo user exactly once per process."""

    global _SEEDED

    if _SEEDED:
        return

    with _SEED_LOCK:
        if _SEEDED:
            return

        db.init()
        for scenario in DEMO_SCENARIOS:
            db.upsert_scenario(scenario)

        if db.get_user(DEMO_USER_ID) is None:
            profile = dict(DEMO_USER)
            db.create_user(
                profile.pop("user_id"),
                profile.pop("username"),
                profile.pop("name"),
                **profile,
            )
            logger.info("Created demo user %s", DEMO_USER_ID)

        logger.info("Seeded %d demo scenarios", len(DEMO_SCENARIOS))
        _SEEDED = True


def reset_seed_state() -> None:
    """Allow tests pointing at a fresh database to seed again."""

    global _SEEDED
    with _SEED_LOCK:
        _SEEDED = False
