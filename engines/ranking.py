"""Heuristic ranking of the scenario catalog against a recommendation."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Set

import db
from engines.difficulty import RecommendationRequester
from engines.performance import PerformanceAggregator
from schemas import DifficultyRecommendation, PerformanceProfile, RankedContentItem, Scenario

logger = logging.getLogger(__name__)

EXACT_DIFFICULTY_POINTS = 50
ADJACENT_DIFFICULTY_POINTS = 25
CHALLENGE_POINTS = 30
SUGGESTION_POINTS = 40
PRIORITY_POINTS = {"high": 20, "medium": 10, "low": 0}

# Challenge area -> keyword looked for in the scenario category.
CHALLENGE_KEYWORDS = {
    "empathy": "emotional",
    "communication": "communication",
    "problem_solving": "complex",
}


def _normalise(text: Any) -> str:
    return str(text or "").lower().replace("_", " ")


def difficulty_points(scenario_difficulty: str, recommended: str) -> int:
    if scenario_difficulty == recommended:
        return EXACT_DIFFICULTY_POINTS
    # Only pairs involving exactly one "intermediate" count as adjacent.
    if (scenario_difficulty == "intermediate") != (recommended == "intermediate"):
        return ADJACENT_DIFFICULTY_POINTS
    return 0


def score_scenario(
    scenario: Scenario,
    recommendation: DifficultyRecommendation,
    profile: PerformanceProfile,
) -> int:
    score = difficulty_points(scenario.difficulty, recommendation.recommended_difficulty)

    category = scenario.category.lower()
    for area in profile.challenge_areas:
        keyword = CHALLENGE_KEYWORDS.get(area)
        if keyword and keyword in category:
            score += CHALLENGE_POINTS

    title = _normalise(scenario.title)
    category_text = _normalise(scenario.category)
    for suggestion in recommendation.next_scenario_suggestions:
        needle = _normalise(suggestion).strip()
        if needle and (needle in title or needle in category_text):
            score += SUGGESTION_POINTS
            break

    score += PRIORITY_POINTS.get(scenario.priority, 0)
    return score


def rank_scenarios(
    scenarios: Iterable[Scenario],
    completed_ids: Set[str],
    recommendation: DifficultyRecommendation,
    profile: PerformanceProfile,
    limit: int,
) -> List[RankedContentItem]:
    """Pure ranking step; ties keep catalog order because ``sorted`` is stable."""

    candidates = [
        scenario for scenario in scenarios
        if scenario.is_active and scenario.id not in completed_ids
    ]
    scored = [(score_scenario(scenario, recommendation, profile), scenario) for scenario in candidates]
    ordered = sorted(scored, key=lambda pair: pair[0], reverse=True)
    return [
        RankedContentItem(**scenario.model_dump(), recommendation_score=float(score), rank=position)
        for position, (score, scenario) in enumerate(ordered[: max(0, limit)], start=1)
    ]


def unranked_listing(scenarios: Sequence[Scenario], limit: int) -> List[RankedContentItem]:
    active = [scenario for scenario in scenarios if scenario.is_active]
    return [
        RankedContentItem(**scenario.model_dump(), recommendation_score=None, rank=position)
        for position, scenario in enumerate(active[: max(0, limit)], start=1)
    ]


def _completed_ids(attempts: Iterable[Mapping[str, Any]]) -> Set[str]:
    return {str(attempt["scenario_id"]) for attempt in attempts if attempt.get("progress") == 100}


class ContentRanker:
    def __init__(
        self,
        requester: RecommendationRequester,
        aggregator: Optional[PerformanceAggregator] = None,
        db_module=db,
    ) -> None:
        self.requester = requester
        self.aggregator = aggregator or requester.aggregator
        self._db = db_module

    def _catalog(self) -> List[Scenario]:
        return [Scenario.model_validate(row) for row in self._db.list_scenarios(active_only=True)]

    def rank(self, user_id: str, limit: int = 5) -> List[RankedContentItem]:
        """Never raises; degrades to the unranked catalog listing."""
        try:
            profile = self.aggregator.compute_profile(user_id)
            recommendation = self.requester.recommend(user_id, profile=profile)
            catalog = self._catalog()
            completed = _completed_ids(self._db.list_user_scenarios(user_id) or [])
            return rank_scenarios(catalog, completed, recommendation, profile, limit)
        except Exception:
            logger.error("Error getting personalized recommendations for %s", user_id, exc_info=True)

        try:
            return unranked_listing(self._catalog(), limit)
        except Exception:
            logger.error("Scenario catalog unavailable; returning no recommendations", exc_info=True)
            return []
