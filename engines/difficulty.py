"""Model-backed difficulty recommendation for the next scenarios."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import db
from engines.base import BaseEngine, json_log
from engines.performance import PerformanceAggregator
from llm_client import LLMCallError, LLMClient
from schemas import DifficultyRecommendation, PerformanceProfile, SpecificAdjustments, coerce_fields

logger = logging.getLogger(__name__)

PROMPT_ID = "difficulty_recommendation"
FALLBACK_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE = 0.7
FALLBACK_REASONING = "Unable to analyze performance data. Defaulting to intermediate difficulty."


def fallback_recommendation() -> DifficultyRecommendation:
    """Recommendation used when the model could not be consulted at all."""
    return DifficultyRecommendation(
        recommended_difficulty="intermediate",
        confidence=FALLBACK_CONFIDENCE,
        reasoning=FALLBACK_REASONING,
        specific_adjustments=SpecificAdjustments(),
    )


def _reported_difficulty(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in ("recommendedDifficulty", "recommended_difficulty"):
        value = payload.get(key)
        if isinstance(value, str):
            return value.strip().lower()
    return None


def recommendation_from_payload(payload: Any) -> DifficultyRecommendation:
    """Per-field defaults for anything the model left out or got wrong.

    A defaulted difficulty never carries more than the default confidence, so
    it cannot clear the preference threshold.
    """
    recommendation = coerce_fields(DifficultyRecommendation, payload)
    if (
        _reported_difficulty(payload) != recommendation.recommended_difficulty
        and recommendation.confidence > DEFAULT_CONFIDENCE
    ):
        recommendation = recommendation.model_copy(update={"confidence": DEFAULT_CONFIDENCE})
    return recommendation


def prompt_fields(
    profile: PerformanceProfile,
    stats: Dict[str, Any],
    user: Optional[Dict[str, Any]],
    current_content_type: Optional[str],
) -> Dict[str, Any]:
    preferences = (user or {}).get("preferences") or {}
    return {
        "average_score": round(profile.average_score, 1),
        "consistency_percent": int(round(profile.consistency_score * 100)),
        "improvement_trend": profile.improvement_trend,
        "completed_scenarios": int(stats.get("completed_scenarios") or 0),
        "total_time": int(stats.get("total_time") or 0),
        "engagement_level": profile.engagement_level,
        "strength_areas": ", ".join(profile.strength_areas),
        "challenge_areas": ", ".join(profile.challenge_areas),
        "current_preference": preferences.get("difficulty_preference") or "adaptive",
        "current_content_type": current_content_type or "not specified",
    }


class RecommendationRequester(BaseEngine):
    def __init__(
        self,
        llm_client: LLMClient,
        db_module=db,
        aggregator: Optional[PerformanceAggregator] = None,
    ) -> None:
        super().__init__(llm_client)
        self._db = db_module
        self.aggregator = aggregator or PerformanceAggregator(db_module)

    def recommend(
        self,
        user_id: str,
        current_content_type: Optional[str] = None,
        *,
        profile: Optional[PerformanceProfile] = None,
    ) -> DifficultyRecommendation:
        """Never raises. Call or decode failures give the 0.5-confidence fallback."""
        try:
            if profile is None:
                profile = self.aggregator.compute_profile(user_id)
            user = self._db.get_user(user_id)
            stats = self._db.get_user_stats(user_id)
            fields = prompt_fields(profile, stats or {}, user, current_content_type)
            payload = self.request_json(PROMPT_ID, fields, user_id=user_id)
        except (LLMCallError, ValueError) as exc:
            logger.warning("Difficulty recommendation unavailable for %s: %s", user_id, exc)
            return fallback_recommendation()
        except Exception:
            logger.error("Error generating difficulty recommendation for %s", user_id, exc_info=True)
            return fallback_recommendation()

        recommendation = recommendation_from_payload(payload)
        json_log(
            logger,
            "difficulty_recommendation",
            {
                "user_id": user_id,
                "recommended_difficulty": recommendation.recommended_difficulty,
                "confidence": recommendation.confidence,
                "current_content_type": current_content_type,
            },
        )
        return recommendation
