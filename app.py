# app.py — CareCoach adaptive training service
# - Difficulty recommendation, personalised scenario ranking, preference write-back
# - Per-turn coaching helpers and roleplay persona replies

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

import db
import seed
from engines.coaching import ConversationCoach
from engines.difficulty import RecommendationRequester
from engines.performance import PerformanceAggregator
from engines.preferences import PreferenceUpdater
from engines.ranking import ContentRanker
from engines.roleplay import RoleplayEngine, RoleplayError
from env_validation import get_env_bool
from llm_client import ChatCompletionsClient, LLMClient
from schemas import (
    SKILLS,
    ConversationAnalysis,
    ConversationTurn,
    DifficultyRecommendation,
    PerformanceProfile,
    RankedContentItem,
    SkillFeedback,
)

logger = logging.getLogger(__name__)

DEFAULT_CHARACTER_TYPE = "care recipient"


@dataclass
class Services:
    """Engines sharing one model client and one history store."""

    aggregator: PerformanceAggregator
    requester: RecommendationRequester
    ranker: ContentRanker
    updater: PreferenceUpdater
    coach: ConversationCoach
    roleplay: RoleplayEngine


def build_services(llm_client: LLMClient, db_module=db) -> Services:
    aggregator = PerformanceAggregator(db_module)
    requester = RecommendationRequester(llm_client, db_module, aggregator=aggregator)
    return Services(
        aggregator=aggregator,
        requester=requester,
        ranker=ContentRanker(requester, aggregator, db_module),
        updater=PreferenceUpdater(requester, db_module),
        coach=ConversationCoach(llm_client),
        roleplay=RoleplayEngine(llm_client),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(ChatCompletionsClient())


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        db.init()
        if get_env_bool("SEED_DEMO_DATA", True):
            seed.ensure_seed_data()
        services = get_services()
        if isinstance(services.requester.llm, ChatCompletionsClient):
            logger.info("Model endpoint: %s | models: %s",
                        services.requester.llm.api_url, services.requester.llm.models)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="CareCoach", version="1.0.0", lifespan=_lifespan)


# -------------- request bodies --------------
class StartScenarioBody(BaseModel):
    user_id: str


class ConversationBody(BaseModel):
    message: str = Field(min_length=1)
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    user_id: Optional[str] = None
    character_type: str = DEFAULT_CHARACTER_TYPE


class CompleteScenarioBody(BaseModel):
    user_id: str
    score: Optional[int] = Field(default=None, ge=0, le=100)
    total_time: Optional[int] = Field(default=None, ge=0)


class HintsBody(BaseModel):
    user_response: str
    scenario_context: str
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    patient_sentiment: str = "neutral"


class AnalysisBody(BaseModel):
    scenario_context: str
    conversation_history: List[ConversationTurn] = Field(default_factory=list)


class AlternativesBody(BaseModel):
    user_response: str
    scenario_context: str
    conversation_history: List[ConversationTurn] = Field(default_factory=list)


class TipsBody(BaseModel):
    scenario_type: str
    patient_background: str = ""
    current_issue: str = ""


# -------------- helpers --------------
def _require_user(user_id: str) -> dict:
    user = db.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="user not found")
    return user


def _require_scenario(scenario_id: str) -> dict:
    scenario = db.get_scenario(scenario_id)
    if not scenario:
        raise HTTPException(status_code=404, detail="scenario not found")
    return scenario


def _score_from_feedback(responses: List[Any]) -> Optional[int]:
    """Mean skill score over recorded feedback, rescaled from 1-5 to 0-100."""
    values: List[float] = []
    for response in responses:
        feedback = response.get("feedback") if isinstance(response, dict) else None
        if not isinstance(feedback, dict) or not feedback:
            continue
        record = SkillFeedback.model_validate(feedback)
        values.extend(record.score_for(skill) for skill in SKILLS)
    if not values:
        return None
    return int(round(sum(values) / len(values) / 5 * 100))


# -------------- users & catalog --------------
@app.get("/users/{user_id}")
def get_user(user_id: str):
    return _require_user(user_id)


@app.get("/scenarios")
def list_scenarios():
    return db.list_scenarios(active_only=True)


@app.get("/scenarios/{scenario_id}")
def get_scenario(scenario_id: str):
    return _require_scenario(scenario_id)


@app.get("/users/{user_id}/scenarios")
def list_user_scenarios(user_id: str):
    _require_user(user_id)
    return db.list_user_scenarios(user_id)


# -------------- adaptive difficulty --------------
@app.get("/users/{user_id}/performance", response_model=PerformanceProfile)
def get_performance(user_id: str, services: Services = Depends(get_services)):
    return services.aggregator.compute_profile(user_id)


@app.get("/users/{user_id}/recommendation", response_model=DifficultyRecommendation)
def get_recommendation(
    user_id: str,
    current_content_type: Optional[str] = None,
    services: Services = Depends(get_services),
):
    return services.requester.recommend(user_id, current_content_type)


@app.get("/users/{user_id}/recommended-scenarios", response_model=List[RankedContentItem])
def get_recommended_scenarios(
    user_id: str,
    limit: int = Query(default=5, ge=1, le=50),
    services: Services = Depends(get_services),
):
    return services.ranker.rank(user_id, limit)


@app.post("/users/{user_id}/recommendation/apply", status_code=202)
def apply_recommendation(
    user_id: str,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    background_tasks.add_task(services.updater.apply_recommendation, user_id)
    return {"status": "accepted"}


# -------------- scenario lifecycle --------------
@app.post("/scenarios/{scenario_id}/start")
def start_scenario(scenario_id: str, body: StartScenarioBody):
    _require_scenario(scenario_id)
    _require_user(body.user_id)
    attempt = db.get_user_scenario(body.user_id, scenario_id)
    if attempt and attempt["status"] != "completed":
        return db.update_user_scenario(attempt["id"], {"status": "in_progress"})
    return db.create_user_scenario(body.user_id, scenario_id)


@app.post("/scenarios/{scenario_id}/conversation")
def scenario_conversation(
    scenario_id: str,
    body: ConversationBody,
    services: Services = Depends(get_services),
):
    scenario = _require_scenario(scenario_id)
    try:
        reply = services.roleplay.generate_conversation_response(
            scenario["context"], body.conversation_history, body.character_type
        )
    except RoleplayError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    feedback = services.roleplay.analyze_feedback(
        body.message, scenario["context"], body.conversation_history
    )

    if body.user_id:
        attempt = db.get_user_scenario(body.user_id, scenario_id)
        if attempt and attempt["status"] != "completed":
            db.append_attempt_response(
                attempt["id"],
                {
                    "message": body.message,
                    "ai_response": reply.message,
                    "sentiment": reply.sentiment,
                    "feedback": feedback.skill_scores(),
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
            )

    return {"ai_response": reply.model_dump(), "feedback": feedback.model_dump()}


@app.post("/scenarios/{scenario_id}/complete")
def complete_scenario(scenario_id: str, body: CompleteScenarioBody):
    attempt = db.get_user_scenario(body.user_id, scenario_id)
    if not attempt:
        raise HTTPException(status_code=404, detail="user scenario not found")

    score = body.score
    if score is None:
        score = _score_from_feedback(attempt["responses"])
    updates = {
        "status": "completed",
        "progress": 100,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    if score is not None:
        updates["score"] = score
    if body.total_time is not None:
        updates["total_time"] = body.total_time
    completed = db.update_user_scenario(attempt["id"], updates)

    user = db.get_user(body.user_id)
    if user and attempt["status"] != "completed":
        db.update_user(
            body.user_id,
            {
                "total_scenarios": user["total_scenarios"] + 1,
                "total_time": user["total_time"] + int((completed or {}).get("total_time") or 0),
            },
        )
    return completed


# -------------- per-turn coaching --------------
@app.post("/coach/hints")
def coach_hints(body: HintsBody, services: Services = Depends(get_services)):
    hints = services.coach.generate_learning_hints(
        body.user_response,
        body.scenario_context,
        body.conversation_history,
        body.patient_sentiment,
    )
    return {"hints": [hint.model_dump() for hint in hints]}


@app.post("/coach/analysis", response_model=ConversationAnalysis)
def coach_analysis(body: AnalysisBody, services: Services = Depends(get_services)):
    return services.coach.analyze_conversation_flow(body.conversation_history, body.scenario_context)


@app.post("/coach/alternatives")
def coach_alternatives(body: AlternativesBody, services: Services = Depends(get_services)):
    alternatives = services.coach.generate_alternative_responses(
        body.user_response,
        body.scenario_context,
        body.conversation_history,
    )
    return {"alternatives": [alternative.model_dump() for alternative in alternatives]}


@app.post("/coach/tips")
def coach_tips(body: TipsBody, services: Services = Depends(get_services)):
    tips = services.coach.generate_communication_tips(
        body.scenario_type,
        body.patient_background,
        body.current_issue,
    )
    return {"tips": tips}
