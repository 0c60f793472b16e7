"""Pydantic schemas for coaching outputs and helpers for tolerant model parsing."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Mapping, Type, TypeVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

__all__ = [
    "Difficulty",
    "SKILLS",
    "SkillFeedback",
    "PerformanceProfile",
    "SpecificAdjustments",
    "DifficultyRecommendation",
    "Scenario",
    "RankedContentItem",
    "ConversationTurn",
    "LearningHint",
    "ConversationAnalysis",
    "AlternativeResponse",
    "ConversationResponse",
    "FeedbackAnalysis",
    "load_json_object",
    "coerce_fields",
    "coerce_items",
]

Difficulty = Literal["beginner", "intermediate", "advanced"]
Trend = Literal["improving", "stable", "declining"]

SKILLS = ("empathy", "communication", "professionalism", "problem_solving")
NEUTRAL_SKILL_SCORE = 3.0


def _clamp_unit(value: Any) -> Any:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return value
    return min(1.0, max(0.0, number))


class SkillFeedback(BaseModel):
    """Per-response skill scores on a 1-5 scale; missing scores read as neutral."""

    empathy: float | None = None
    communication: float | None = None
    professionalism: float | None = None
    problem_solving: float | None = Field(
        default=None,
        validation_alias=AliasChoices("problem_solving", "problemSolving"),
    )

    model_config = {"extra": "ignore"}

    @field_validator("*", mode="before")
    @classmethod
    def _drop_unusable(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if number > 0 else None

    def score_for(self, skill: str) -> float:
        value = getattr(self, skill, None)
        return NEUTRAL_SKILL_SCORE if value is None else float(value)


class PerformanceProfile(BaseModel):
    average_score: float = Field(description="Mean score of completed attempts (0-100).")
    consistency_score: float = Field(ge=0.0, le=1.0)
    improvement_trend: Trend
    strength_areas: List[str]
    challenge_areas: List[str]
    engagement_level: int = Field(ge=1, le=10)


def _fold_label(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class SpecificAdjustments(BaseModel):
    pacing: Literal["slower", "normal", "faster"] = "normal"
    complexity: Literal["simplified", "standard", "enhanced"] = "standard"
    support_level: Literal["high", "medium", "low"] = Field(
        default="medium",
        validation_alias=AliasChoices("support_level", "supportLevel"),
    )

    @field_validator("pacing", "complexity", "support_level", mode="before")
    @classmethod
    def _fold_labels(cls, value: Any) -> Any:
        return _fold_label(value)


class DifficultyRecommendation(BaseModel):
    recommended_difficulty: Difficulty = Field(
        default="intermediate",
        validation_alias=AliasChoices("recommended_difficulty", "recommendedDifficulty"),
    )
    confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Model-reported or locally assigned confidence; values above 0.7 may update preferences.",
    )
    reasoning: str = "Based on current performance metrics and learning progression"
    specific_adjustments: SpecificAdjustments = Field(
        default_factory=SpecificAdjustments,
        validation_alias=AliasChoices("specific_adjustments", "specificAdjustments"),
    )
    next_scenario_suggestions: List[str] = Field(
        default_factory=lambda: ["dementia_care", "communication_skills", "family_support"],
        validation_alias=AliasChoices("next_scenario_suggestions", "nextScenarioSuggestions"),
    )

    @field_validator("recommended_difficulty", mode="before")
    @classmethod
    def _fold_difficulty(cls, value: Any) -> Any:
        return _fold_label(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("confidence must be numeric")
        return _clamp_unit(value)

    @field_validator("next_scenario_suggestions", mode="before")
    @classmethod
    def _clean_suggestions(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [str(item).strip() for item in value if isinstance(item, str) and item.strip()]


class Scenario(BaseModel):
    id: str
    title: str
    description: str = ""
    category: str
    difficulty: str
    estimated_time: int = 15
    priority: str = "medium"
    context: str = ""
    learning_objectives: List[str] = Field(default_factory=list)
    is_active: bool = True


class RankedContentItem(Scenario):
    recommendation_score: float | None = Field(
        default=None,
        description="Additive heuristic total; None when the list is the unranked fallback.",
    )
    rank: int = Field(ge=1, description="1-based position in the returned list.")


class ConversationTurn(BaseModel):
    role: Literal["user", "character"]
    message: str


class LearningHint(BaseModel):
    type: Literal["empathy", "communication", "problem-solving", "professional", "active-listening"]
    message: str = Field(min_length=1)
    timing: Literal["immediate", "after-response", "mid-conversation"] = "immediate"
    priority: Literal["low", "medium", "high"] = "medium"


class ConversationAnalysis(BaseModel):
    tone_shift: Literal["improving", "declining", "stable"] = Field(
        default="stable", validation_alias=AliasChoices("tone_shift", "toneShift")
    )
    engagement_level: int = Field(
        default=5, ge=1, le=10, validation_alias=AliasChoices("engagement_level", "engagementLevel")
    )
    missed_opportunities: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("missed_opportunities", "missedOpportunities"),
    )
    strong_moments: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("strong_moments", "strongMoments")
    )
    suggested_direction: str = Field(
        default="Continue building rapport",
        validation_alias=AliasChoices("suggested_direction", "suggestedDirection"),
    )
    emotional_state: Literal["distressed", "calm", "agitated", "confused", "responsive"] = Field(
        default="calm", validation_alias=AliasChoices("emotional_state", "emotionalState")
    )

    @field_validator("engagement_level", mode="before")
    @classmethod
    def _round_engagement(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(round(min(10.0, max(1.0, float(value)))))
        return value


class AlternativeResponse(BaseModel):
    category: Literal["empathetic", "professional", "problem-solving"]
    text: str = Field(min_length=1)
    explanation: str = ""
    skill_focus: str = Field(default="", validation_alias=AliasChoices("skill_focus", "skillFocus"))


class ConversationResponse(BaseModel):
    message: str = "I don't know what to say..."
    sentiment: Literal["positive", "neutral", "negative", "distressed"] = "neutral"
    should_continue: bool = Field(
        default=True, validation_alias=AliasChoices("should_continue", "shouldContinue")
    )


class FeedbackAnalysis(BaseModel):
    empathy: int = Field(default=3, ge=1, le=5)
    communication: int = Field(default=3, ge=1, le=5)
    professionalism: int = Field(default=3, ge=1, le=5)
    problem_solving: int = Field(
        default=3, ge=1, le=5, validation_alias=AliasChoices("problem_solving", "problemSolving")
    )
    summary: str = (
        "Your response demonstrates professional engagement and care awareness. To strengthen your "
        "approach, focus on explicitly acknowledging the person's emotional state and use thoughtful "
        "questioning to understand their unique perspective before moving to practical solutions."
    )
    strengths: List[str] = Field(
        default_factory=lambda: [
            "Maintained professional boundaries and respectful tone",
            "Demonstrated engagement with the care situation",
        ]
    )
    improvements: List[str] = Field(
        default_factory=lambda: [
            "Use empathetic validation phrases such as 'I can understand this must be challenging for you'",
            "Ask open-ended questions that invite the person to share more about their specific needs and feelings",
        ]
    )
    quick_summary: str = Field(
        default="Begin conversations by acknowledging emotions before moving to problem-solving",
        validation_alias=AliasChoices("quick_summary", "quickSummary"),
    )
    key_insights: List[str] = Field(
        default_factory=lambda: [
            "Effective care communication balances emotional support with practical problem-solving",
            "Understanding the person's perspective is essential before offering solutions",
        ],
        validation_alias=AliasChoices("key_insights", "keyInsights"),
    )
    next_steps: List[str] = Field(
        default_factory=lambda: [
            "Practice using reflective listening techniques to validate feelings",
            "Develop a repertoire of open-ended questions that encourage deeper sharing",
        ],
        validation_alias=AliasChoices("next_steps", "nextSteps"),
    )

    @field_validator("empathy", "communication", "professionalism", "problem_solving", mode="before")
    @classmethod
    def _round_score(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(round(value))
        return value

    def skill_scores(self) -> Dict[str, int]:
        return {skill: getattr(self, skill) for skill in SKILLS}


_T = TypeVar("_T", bound=BaseModel)
_MISSING = object()


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{" and (idx == 0 or text[idx - 1] != "\\"):
                depth += 1
            elif char == "}" and (idx == 0 or text[idx - 1] != "\\"):
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except ValueError:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def load_json_object(text: str | None) -> Dict[str, Any]:
    """Decode a model reply into a JSON object.

    Empty replies decode to ``{}`` so callers fall back field by field. A reply
    wrapped in prose or code fences is accepted when exactly one object can be
    extracted from it. Anything else raises ``ValueError``.
    """

    if text is None or not text.strip():
        return {}
    try:
        payload = json.loads(text)
    except ValueError:
        snippet, _, _ = _find_first_json_object(text)
        payload = json.loads(snippet)
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def _field_keys(name: str, field: Any) -> List[str]:
    alias = field.validation_alias
    if isinstance(alias, AliasChoices):
        keys = [choice for choice in alias.choices if isinstance(choice, str)]
    elif isinstance(alias, str):
        keys = [alias]
    else:
        keys = []
    if name not in keys:
        keys.insert(0, name)
    return keys


def coerce_fields(model: Type[_T], payload: Any, **overrides: Any) -> _T:
    """Build ``model`` from ``payload`` keeping every field that validates.

    Each field is validated on its own; a missing or invalid value falls back
    to the model default instead of rejecting the whole payload. Nested models
    are coerced the same way. ``overrides`` replace the default of a field
    that ends up missing. Every field of ``model`` must have a default.
    """

    data: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}
    values: Dict[str, Any] = {}
    for name, field in model.model_fields.items():
        raw = _MISSING
        for key in _field_keys(name, field):
            if key in data and data[key] is not None:
                raw = data[key]
                break
        if raw is _MISSING:
            if name in overrides:
                values[name] = overrides[name]
            continue

        annotation = field.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            values[name] = coerce_fields(annotation, raw)
            continue

        try:
            probe = model.model_validate({name: raw})
        except ValidationError:
            if name in overrides:
                values[name] = overrides[name]
            continue
        values[name] = getattr(probe, name)
    return model.model_validate(values)


def coerce_items(model: Type[_T], raw_items: Any, *, limit: int | None = None) -> List[_T]:
    """Validate a list of objects, dropping the entries that do not fit ``model``."""

    if not isinstance(raw_items, list):
        return []
    items: List[_T] = []
    for raw in raw_items:
        if not isinstance(raw, Mapping):
            continue
        try:
            items.append(model.model_validate(raw))
        except ValidationError:
            continue
        if limit is not None and len(items) >= limit:
            break
    return items
