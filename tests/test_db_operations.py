"""Test cases for db operations."""

import threading

import pytest

import db
import seed


def _seed_catalog():
    for idx, difficulty in enumerate(["beginner", "intermediate", "advanced"]):
        db.upsert_scenario(
            {
                "id": f"s{idx}",
                "title": f"Scenario {idx}",
                "category": "dementia_care",
                "difficulty": difficulty,
                "learning_objectives": ["Validate feelings"],
            }
        )


def test_user_round_trip_and_partial_update(temp_db):
    db.create_user("u1", "learner", "Learner", preferences={"difficulty_preference": "beginner"}, weekly_streak=3)

    updated = db.update_user("u1", {"preferences": {"difficulty_preference": "advanced"}, "unknown": 1})

    assert updated["name"] == "Learner"
    assert updated["weekly_streak"] == 3
    assert updated["preferences"] == {"difficulty_preference": "advanced"}
    assert db.get_user("missing") is None


def test_catalog_preserves_insertion_order_and_filters_inactive(temp_db):
    _seed_catalog()
    db.upsert_scenario({"id": "s1", "title": "Renamed", "category": "dementia_care", "difficulty": "intermediate", "is_active": False})

    active = db.list_scenarios()
    everything = db.list_scenarios(active_only=False)

    assert [row["id"] for row in active] == ["s0", "s2"]
    assert [row["id"] for row in everything] == ["s0", "s1", "s2"]
    assert everything[1]["title"] == "Renamed"
    assert everything[0]["learning_objectives"] == ["Validate feelings"]
    assert everything[0]["is_active"] is True


def test_attempt_lifecycle_and_stats(temp_db):
    db.create_user("u1", "learner", "Learner", total_time=45, weekly_streak=2)
    _seed_catalog()

    first = db.create_user_scenario("u1", "s0")
    db.create_user_scenario("u1", "s1", status="completed", progress=100, score=88)
    db.append_attempt_response(first["id"], {"message": "hi", "feedback": {"empathy": 4}})
    db.append_attempt_response(first["id"], {"message": "again", "feedback": {"empathy": 5}})
    db.update_user_scenario(first["id"], {"status": "completed", "progress": 100, "score": 90})

    attempts = db.list_user_scenarios("u1")
    assert [attempt["scenario_id"] for attempt in attempts] == ["s0", "s1"]
    assert [r["message"] for r in attempts[0]["responses"]] == ["hi", "again"]
    assert db.get_user_scenario("u1", "s0")["score"] == 90
    assert db.get_user_stats("u1") == {"completed_scenarios": 2, "total_time": 45, "weekly_streak": 2}
    assert db.append_attempt_response("missing", {"message": "x"}) is None


def test_get_user_scenario_returns_latest_attempt(temp_db):
    db.create_user("u1", "learner", "Learner")
    _seed_catalog()
    db.create_user_scenario("u1", "s0", status="completed", progress=100, score=50)
    latest = db.create_user_scenario("u1", "s0")

    assert db.get_user_scenario("u1", "s0")["id"] == latest["id"]


def test_stats_for_unknown_user_are_zero(temp_db):
    assert db.get_user_stats("ghost") == {"completed_scenarios": 0, "total_time": 0, "weekly_streak": 0}


def test_attempts_require_known_user(temp_db):
    _seed_catalog()
    with pytest.raises(db.sqlite3.IntegrityError):
        db.create_user_scenario("ghost", "s0")


def test_pool_serves_concurrent_threads(temp_db):
    _seed_catalog()
    errors = []

    def reader():
        try:
            for _ in range(20):
                assert len(db.list_scenarios()) == 3
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=reader) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert errors == []


def test_seed_data_is_loaded_once(temp_db):
    seed.ensure_seed_data()
    seed.ensure_seed_data()

    assert len(db.list_scenarios()) == len(seed.DEMO_SCENARIOS)
    user = db.get_user(seed.DEMO_USER_ID)
    assert user["username"] == "sarah.adams"
    assert user["weekly_streak"] == 5
    assert user["total_time"] == 138
