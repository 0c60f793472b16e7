"""Reduce a learner's scenario history into a performance profile."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

import db
from env_validation import get_env_float
from schemas import SKILLS, PerformanceProfile, SkillFeedback

logger = logging.getLogger(__name__)

MIN_COMPLETED_ATTEMPTS = 2
DEFAULT_AVERAGE_SCORE = 75.0
DEFAULT_CONSISTENCY_SPREAD = 50.0
TREND_WINDOW = 3
TREND_MARGIN = 5.0
STRENGTH_THRESHOLD = 4.0
CHALLENGE_THRESHOLD = 3.0
# Minutes per completed scenario at which the time component saturates.
TIME_SATURATION = 300.0


def cold_start_profile() -> PerformanceProfile:
    return PerformanceProfile(
        average_score=DEFAULT_AVERAGE_SCORE,
        consistency_score=0.5,
        improvement_trend="stable",
        strength_areas=["engagement"],
        challenge_areas=["experience_needed"],
        engagement_level=5,
    )


def _completed(attempts: Sequence[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return [attempt for attempt in attempts if attempt.get("progress") == 100]


def _positive_scores(attempts: Sequence[Mapping[str, Any]]) -> List[float]:
    scores: List[float] = []
    for attempt in attempts:
        try:
            score = float(attempt.get("score") or 0)
        except (TypeError, ValueError):
            continue
        if score > 0:
            scores.append(score)
    return scores


def consistency_score(scores: Sequence[float], spread: float = DEFAULT_CONSISTENCY_SPREAD) -> float:
    """``1 - stddev/spread`` clamped at zero; population variance."""
    if len(scores) < 2:
        return 1.0
    mean = sum(scores) / len(scores)
    variance = sum((score - mean) ** 2 for score in scores) / len(scores)
    return max(0.0, 1.0 - math.sqrt(variance) / spread)


def classify_trend(scores: Sequence[float]) -> str:
    if len(scores) < TREND_WINDOW:
        return "stable"
    earlier = scores[:-TREND_WINDOW]
    recent_mean = sum(scores[-TREND_WINDOW:]) / TREND_WINDOW
    # An empty earlier window counts as a mean of zero.
    earlier_mean = sum(earlier) / max(1, len(earlier))
    if recent_mean > earlier_mean + TREND_MARGIN:
        return "improving"
    if recent_mean < earlier_mean - TREND_MARGIN:
        return "declining"
    return "stable"


def _feedback_records(attempts: Sequence[Mapping[str, Any]]) -> List[SkillFeedback]:
    records: List[SkillFeedback] = []
    for attempt in attempts:
        for response in attempt.get("responses") or []:
            if not isinstance(response, Mapping):
                continue
            feedback = response.get("feedback")
            if isinstance(feedback, Mapping) and feedback:
                records.append(SkillFeedback.model_validate(feedback))
    return records


def skill_averages(attempts: Sequence[Mapping[str, Any]]) -> Dict[str, float]:
    records = _feedback_records(attempts)
    if not records:
        return {skill: SkillFeedback().score_for(skill) for skill in SKILLS}
    return {
        skill: sum(record.score_for(skill) for record in records) / len(records)
        for skill in SKILLS
    }


def engagement_level(
    completed_attempts: int,
    total_attempts: int,
    stats: Mapping[str, Any],
) -> int:
    completion_rate = completed_attempts / total_attempts if total_attempts else 0.0
    total_time = float(stats.get("total_time") or 0)
    completed_scenarios = int(stats.get("completed_scenarios") or 0)
    weekly_streak = float(stats.get("weekly_streak") or 0)
    avg_time = total_time / max(1, completed_scenarios)
    raw = (
        completion_rate * 5
        + min(avg_time / TIME_SATURATION, 1.0) * 3
        + weekly_streak * 0.5
    )
    return max(1, int(round(min(10.0, max(0.0, raw)))))


def build_profile(
    attempts: Sequence[Mapping[str, Any]],
    stats: Mapping[str, Any],
    *,
    consistency_spread: float = DEFAULT_CONSISTENCY_SPREAD,
) -> PerformanceProfile:
    """Pure aggregation over already-loaded history."""

    completed = _completed(attempts)
    if len(completed) < MIN_COMPLETED_ATTEMPTS:
        return cold_start_profile()

    scores = _positive_scores(completed)
    average = sum(scores) / len(scores) if scores else DEFAULT_AVERAGE_SCORE

    averages = skill_averages(completed)
    strengths = [skill for skill, value in averages.items() if value >= STRENGTH_THRESHOLD]
    challenges = [skill for skill, value in averages.items() if value < CHALLENGE_THRESHOLD]

    return PerformanceProfile(
        average_score=average,
        consistency_score=consistency_score(scores, consistency_spread),
        improvement_trend=classify_trend(scores),
        strength_areas=strengths or ["basic_engagement"],
        challenge_areas=challenges or ["consistency"],
        engagement_level=engagement_level(len(completed), len(attempts), stats),
    )


class PerformanceAggregator:
    def __init__(self, db_module=db, *, consistency_spread: Optional[float] = None) -> None:
        self._db = db_module
        if consistency_spread is None:
            consistency_spread = get_env_float("CONSISTENCY_SPREAD", DEFAULT_CONSISTENCY_SPREAD)
        if consistency_spread <= 0:
            logger.warning("Non-positive consistency spread %s; using %s",
                           consistency_spread, DEFAULT_CONSISTENCY_SPREAD)
            consistency_spread = DEFAULT_CONSISTENCY_SPREAD
        self.consistency_spread = consistency_spread

    def compute_profile(self, user_id: str) -> PerformanceProfile:
        """Never raises; unreadable history yields the cold-start profile."""
        try:
            attempts = self._db.list_user_scenarios(user_id)
            stats = self._db.get_user_stats(user_id)
            return build_profile(attempts or [], stats or {}, consistency_spread=self.consistency_spread)
        except Exception:
            logger.error("Error analyzing performance patterns for %s", user_id, exc_info=True)
            return cold_start_profile()
