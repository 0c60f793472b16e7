import asyncio
import json

import pytest

import app
import db
from conftest import FakeLLMClient
from llm_client import LLMCallError


def _request(method: str, path: str, payload: dict | None = None, query: str = "") -> tuple[int, object]:
    async def _call():
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        received_once = False

        async def receive():
            nonlocal received_once
            if not received_once:
                received_once = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        messages = []

        async def send(message):
            messages.append(message)

        headers = [(b"host", b"testserver"), (b"content-length", str(len(body)).encode())]
        if payload is not None:
            headers.append((b"content-type", b"application/json"))
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "scheme": "http",
            "query_string": query.encode(),
            "headers": headers,
            "client": ("testclient", 12345),
            "server": ("testserver", 80),
            "state": {},
        }

        await app.app(scope, receive, send)
        return messages

    messages = asyncio.run(_call())
    status = 500
    body_bytes = b""

    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")

    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, data


_FEEDBACK = {"empathy": 5, "communication": 4, "professionalism": 4, "problemSolving": 3, "summary": "Warm and clear."}


@pytest.fixture
def llm(temp_db):
    fake = FakeLLMClient(
        {
            "difficulty_recommendation": json.dumps(
                {"recommendedDifficulty": "advanced", "confidence": 0.92, "nextScenarioSuggestions": ["end_of_life"]}
            ),
            "roleplay_reply": json.dumps({"message": "Who are you?", "sentiment": "distressed"}),
            "response_feedback": json.dumps(_FEEDBACK),
            "learning_hints": LLMCallError("LLM-HTTP 503: busy"),
            "communication_tips": json.dumps({"tips": ["Use his name", "Sit at eye level"]}),
        }
    )
    app.app.dependency_overrides[app.get_services] = lambda: app.build_services(fake)
    db.create_user("u1", "learner", "Learner", preferences={"difficulty_preference": "adaptive"})
    for row in [
        {"id": "s-beg", "title": "Medication Refusal", "category": "medication_management", "difficulty": "beginner", "priority": "medium"},
        {"id": "s-adv", "title": "End of Life Conversation", "category": "end_of_life", "difficulty": "advanced", "priority": "medium"},
        {"id": "s-int", "title": "Family Conflict", "category": "family_communication", "difficulty": "intermediate", "priority": "high"},
    ]:
        db.upsert_scenario({**row, "context": f"Context for {row['title']}."})
    yield fake
    app.app.dependency_overrides.clear()


def test_recommendation_endpoint(llm):
    status, payload = _request("GET", "/users/u1/recommendation", query="current_content_type=dementia_care")

    assert status == 200
    assert payload["recommended_difficulty"] == "advanced"
    assert payload["confidence"] == pytest.approx(0.92)
    assert payload["specific_adjustments"] == {"pacing": "normal", "complexity": "standard", "support_level": "medium"}
    assert "Current Scenario Type: dementia_care" in llm.last("difficulty_recommendation").system


def test_recommended_scenarios_endpoint(llm):
    status, payload = _request("GET", "/users/u1/recommended-scenarios", query="limit=2")

    assert status == 200
    assert [item["id"] for item in payload] == ["s-adv", "s-int"]
    assert [item["rank"] for item in payload] == [1, 2]
    # 50 difficulty + 40 suggestion + 10 priority
    assert payload[0]["recommendation_score"] == 100.0


def test_performance_endpoint_returns_cold_start(llm):
    status, payload = _request("GET", "/users/u1/performance")
    assert status == 200
    assert payload["average_score"] == 75
    assert payload["strength_areas"] == ["engagement"]


def test_apply_recommendation_is_accepted_and_runs_in_background(llm):
    status, payload = _request("POST", "/users/u1/recommendation/apply")

    assert status == 202
    assert payload == {"status": "accepted"}
    assert db.get_user("u1")["preferences"]["difficulty_preference"] == "advanced"


def test_apply_recommendation_for_unknown_user_is_still_accepted(llm):
    status, payload = _request("POST", "/users/ghost/recommendation/apply")
    assert status == 202
    assert db.get_user("ghost") is None


def test_scenario_lifecycle_records_feedback_and_derives_score(llm):
    status, attempt = _request("POST", "/scenarios/s-beg/start", {"user_id": "u1"})
    assert status == 200
    assert attempt["status"] == "in_progress"

    status, payload = _request(
        "POST",
        "/scenarios/s-beg/conversation",
        {"message": "Hello Mr. Thompson, can we talk about your tablets?", "user_id": "u1"},
    )
    assert status == 200
    assert payload["ai_response"]["message"] == "Who are you?"
    assert payload["feedback"]["empathy"] == 5
    assert payload["feedback"]["summary"] == "Warm and clear."

    status, completed = _request("POST", "/scenarios/s-beg/complete", {"user_id": "u1", "total_time": 12})
    assert status == 200
    assert completed["progress"] == 100
    assert completed["status"] == "completed"
    assert completed["score"] == 80
    assert completed["responses"][0]["feedback"]["problem_solving"] == 3

    user = db.get_user("u1")
    assert user["total_scenarios"] == 1
    assert user["total_time"] == 12

    status, history = _request("GET", "/users/u1/scenarios")
    assert status == 200
    assert [row["scenario_id"] for row in history] == ["s-beg"]


def test_completed_scenarios_drop_out_of_recommendations(llm):
    _request("POST", "/scenarios/s-adv/start", {"user_id": "u1"})
    _request("POST", "/scenarios/s-adv/complete", {"user_id": "u1", "score": 90})

    status, payload = _request("GET", "/users/u1/recommended-scenarios")
    assert status == 200
    assert "s-adv" not in [item["id"] for item in payload]


def test_persona_failure_maps_to_bad_gateway(llm):
    llm.replies["roleplay_reply"] = LLMCallError("LLM timeout after 30s")
    status, payload = _request("POST", "/scenarios/s-beg/conversation", {"message": "Hello"})
    assert status == 502
    assert payload["detail"] == "Failed to generate conversation response"


def test_unknown_resources_return_not_found(llm):
    assert _request("GET", "/scenarios/nope")[0] == 404
    assert _request("GET", "/users/ghost")[0] == 404
    assert _request("POST", "/scenarios/nope/start", {"user_id": "u1"})[0] == 404
    assert _request("POST", "/scenarios/s-beg/complete", {"user_id": "u1"})[0] == 404


def test_coach_endpoints_degrade_to_neutral_results(llm):
    status, payload = _request(
        "POST",
        "/coach/hints",
        {"user_response": "Calm down.", "scenario_context": "Agitated resident", "patient_sentiment": "agitated"},
    )
    assert status == 200
    assert payload == {"hints": []}

    status, payload = _request("POST", "/coach/analysis", {"scenario_context": "Agitated resident"})
    assert status == 200
    assert payload["tone_shift"] == "stable"
    assert payload["engagement_level"] == 5

    status, payload = _request(
        "POST", "/coach/alternatives", {"user_response": "Calm down.", "scenario_context": "Agitated resident"}
    )
    assert status == 200
    assert payload == {"alternatives": []}

    status, payload = _request("POST", "/coach/tips", {"scenario_type": "dementia_care"})
    assert status == 200
    assert payload == {"tips": ["Use his name", "Sit at eye level"]}


def test_catalog_listing(llm):
    status, payload = _request("GET", "/scenarios")
    assert status == 200
    assert [row["id"] for row in payload] == ["s-beg", "s-adv", "s-int"]
