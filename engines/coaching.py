"""Per-turn advisory functions that coach the learner during a roleplay."""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

from engines.base import BaseEngine, format_transcript
from llm_client import LLMCallError
from schemas import (
    AlternativeResponse,
    ConversationAnalysis,
    ConversationTurn,
    LearningHint,
    coerce_fields,
    coerce_items,
)

logger = logging.getLogger(__name__)

HINT_SCENARIO_CHARS = 300
ANALYSIS_SCENARIO_CHARS = 200
ALTERNATIVES_SCENARIO_CHARS = 200
TIPS_BACKGROUND_CHARS = 150
HINT_WINDOW = 3
ALTERNATIVES_WINDOW = 2
MAX_HINTS = 2
MAX_TIPS = 4
ALTERNATIVE_CATEGORIES = ("empathetic", "professional", "problem-solving")


def _recent(history: Sequence[ConversationTurn], window: int) -> List[ConversationTurn]:
    return list(history)[-window:] if window else []


class ConversationCoach(BaseEngine):
    """Read-only helpers; every failure collapses to a neutral result."""

    def _ask(self, prompt_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        try:
            return self.request_json(prompt_id, fields)
        except (LLMCallError, ValueError) as exc:
            logger.warning("%s failed: %s", prompt_id, exc)
        except Exception:
            logger.error("Unexpected error in %s", prompt_id, exc_info=True)
        return None

    def generate_learning_hints(
        self,
        user_response: str,
        scenario_context: str,
        history: Sequence[ConversationTurn],
        patient_sentiment: str,
    ) -> List[LearningHint]:
        payload = self._ask(
            "learning_hints",
            {
                "scenario": scenario_context[:HINT_SCENARIO_CHARS],
                "patient_sentiment": patient_sentiment,
                "user_response": user_response,
                "transcript": format_transcript(_recent(history, HINT_WINDOW)),
            },
        )
        if payload is None:
            return []
        return coerce_items(LearningHint, payload.get("hints"), limit=MAX_HINTS)

    def analyze_conversation_flow(
        self,
        history: Sequence[ConversationTurn],
        scenario_context: str,
    ) -> ConversationAnalysis:
        payload = self._ask(
            "conversation_flow",
            {
                "scenario": scenario_context[:ANALYSIS_SCENARIO_CHARS],
                "transcript": format_transcript(history),
            },
        )
        return coerce_fields(ConversationAnalysis, payload or {})

    def generate_alternative_responses(
        self,
        user_response: str,
        scenario_context: str,
        history: Sequence[ConversationTurn],
    ) -> List[AlternativeResponse]:
        payload = self._ask(
            "alternative_responses",
            {
                "scenario": scenario_context[:ALTERNATIVES_SCENARIO_CHARS],
                "user_response": user_response,
                "transcript": format_transcript(_recent(history, ALTERNATIVES_WINDOW)),
            },
        )
        if payload is None:
            return []
        by_category: dict[str, AlternativeResponse] = {}
        for alternative in coerce_items(AlternativeResponse, payload.get("alternatives")):
            by_category.setdefault(alternative.category, alternative)
        return [by_category[category] for category in ALTERNATIVE_CATEGORIES if category in by_category]

    def generate_communication_tips(
        self,
        scenario_type: str,
        patient_background: str,
        current_issue: str,
    ) -> List[str]:
        payload = self._ask(
            "communication_tips",
            {
                "scenario_type": scenario_type,
                "patient_background": patient_background[:TIPS_BACKGROUND_CHARS],
                "current_issue": current_issue,
            },
        )
        if payload is None:
            return []
        tips = payload.get("tips")
        if not isinstance(tips, list):
            return []
        cleaned = [tip.strip() for tip in tips if isinstance(tip, str) and tip.strip()]
        return cleaned[:MAX_TIPS]
