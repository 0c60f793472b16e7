"""Confidence-gated write-back of recommendations to user preferences."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import db
from engines.base import json_log
from engines.difficulty import RecommendationRequester
from env_validation import get_env_float

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
UPDATE_REASON = "performance_analysis"


class PreferenceUpdater:
    def __init__(
        self,
        requester: RecommendationRequester,
        db_module=db,
        *,
        threshold: Optional[float] = None,
    ) -> None:
        self.requester = requester
        self._db = db_module
        if threshold is None:
            threshold = get_env_float("PREFERENCE_CONFIDENCE_THRESHOLD", DEFAULT_CONFIDENCE_THRESHOLD)
        self.threshold = threshold

    def apply_recommendation(self, user_id: str) -> bool:
        """Persist the recommended difficulty when confidence clears the threshold.

        Returns ``True`` only when a write happened. Low confidence and unknown
        users are no-ops; storage errors are logged and dropped.
        """
        try:
            recommendation = self.requester.recommend(user_id)
            user = self._db.get_user(user_id)
            if not user:
                logger.info("Skipping preference update for unknown user %s", user_id)
                return False

            applied = recommendation.confidence > self.threshold
            json_log(
                logger,
                "difficulty_preference_decision",
                {
                    "user_id": user_id,
                    "recommended_difficulty": recommendation.recommended_difficulty,
                    "confidence": recommendation.confidence,
                    "threshold": self.threshold,
                    "applied": applied,
                },
            )
            if not applied:
                return False

            preferences = dict(user.get("preferences") or {})
            preferences.update(
                {
                    "difficulty_preference": recommendation.recommended_difficulty,
                    "last_difficulty_update": datetime.now(timezone.utc).isoformat(),
                    "adaptive_recommendations": {
                        "last_recommendation": recommendation.model_dump(),
                        "update_reason": UPDATE_REASON,
                    },
                }
            )
            self._db.update_user(user_id, {"preferences": preferences})
        except Exception:
            logger.error("Error updating adaptive difficulty for %s", user_id, exc_info=True)
            return False

        logger.info(
            "Updated difficulty preference for user %s to %s",
            user_id,
            recommendation.recommended_difficulty,
        )
        return True
