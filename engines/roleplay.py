"""Care-recipient persona replies and assessment of the learner's responses."""

from __future__ import annotations

import logging
from typing import Sequence

from engines.base import BaseEngine, format_transcript
from llm_client import LLMCallError
from schemas import ConversationResponse, ConversationTurn, FeedbackAnalysis, coerce_fields

logger = logging.getLogger(__name__)

ROLEPLAY_SCENARIO_CHARS = 200
TRANSCRIPT_WINDOW = 2
OPENING_MESSAGE = "Start the conversation as the patient. Introduce your concern or situation."


class RoleplayError(RuntimeError):
    """Raised when the persona could not produce a reply."""


def _exchange(history: Sequence[ConversationTurn]) -> str:
    return format_transcript(
        list(history)[-TRANSCRIPT_WINDOW:],
        user_label="Worker",
        character_label="Patient",
    )


class RoleplayEngine(BaseEngine):
    def generate_conversation_response(
        self,
        scenario_context: str,
        history: Sequence[ConversationTurn],
        character_type: str,
    ) -> ConversationResponse:
        """Reply in character. Unlike the coaching helpers this one raises."""
        fields = {
            "character_type": character_type,
            "scenario": scenario_context[:ROLEPLAY_SCENARIO_CHARS],
            "transcript": _exchange(history),
        }
        try:
            payload = self.request_json(
                "roleplay_reply",
                fields,
                user_message=None if history else OPENING_MESSAGE,
            )
        except (LLMCallError, ValueError) as exc:
            logger.error("Error generating conversation response: %s", exc)
            raise RoleplayError("Failed to generate conversation response") from exc
        return coerce_fields(ConversationResponse, payload)

    def analyze_feedback(
        self,
        user_message: str,
        scenario_context: str,
        history: Sequence[ConversationTurn],
    ) -> FeedbackAnalysis:
        fields = {
            "scenario": scenario_context,
            "transcript": _exchange(history),
            "user_message": user_message,
        }
        try:
            payload = self.request_json("response_feedback", fields)
        except (LLMCallError, ValueError) as exc:
            logger.warning("Error analyzing feedback: %s", exc)
            return FeedbackAnalysis()
        except Exception:
            logger.error("Unexpected error analyzing feedback", exc_info=True)
            return FeedbackAnalysis()
        return coerce_fields(FeedbackAnalysis, payload)
