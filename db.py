import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional
from uuid import uuid4

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

_USER_COLUMNS = (
    "username",
    "name",
    "email",
    "role",
    "skill_levels",
    "preferences",
    "total_scenarios",
    "weekly_streak",
    "total_time",
)
_USER_JSON_COLUMNS = {"skill_levels", "preferences"}

_SCENARIO_COLUMNS = (
    "title",
    "description",
    "category",
    "difficulty",
    "estimated_time",
    "priority",
    "context",
    "learning_objectives",
    "is_active",
)

_ATTEMPT_COLUMNS = (
    "status",
    "progress",
    "responses",
    "feedback",
    "started_at",
    "completed_at",
    "total_time",
    "score",
)
_ATTEMPT_JSON_COLUMNS = {"responses", "feedback"}


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str], default: Any = None) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS users (
              id              TEXT PRIMARY KEY,
              username        TEXT NOT NULL UNIQUE,
              name            TEXT NOT NULL,
              email           TEXT,
              role            TEXT NOT NULL DEFAULT 'care_worker',
              skill_levels    TEXT,
              preferences     TEXT,
              total_scenarios INTEGER DEFAULT 0,
              weekly_streak   INTEGER DEFAULT 0,
              total_time      INTEGER DEFAULT 0,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS scenarios (
              id                  TEXT PRIMARY KEY,
              title               TEXT NOT NULL,
              description         TEXT NOT NULL DEFAULT '',
              category            TEXT NOT NULL,
              difficulty          TEXT NOT NULL,
              estimated_time      INTEGER NOT NULL DEFAULT 15,
              priority            TEXT NOT NULL DEFAULT 'medium',
              context             TEXT NOT NULL DEFAULT '',
              learning_objectives TEXT,
              is_active           INTEGER DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS user_scenarios (
              id           TEXT PRIMARY KEY,
              user_id      TEXT NOT NULL,
              scenario_id  TEXT NOT NULL,
              status       TEXT NOT NULL DEFAULT 'not_started',
              progress     INTEGER DEFAULT 0,
              responses    TEXT,
              feedback     TEXT,
              started_at   TEXT,
              completed_at TEXT,
              total_time   INTEGER DEFAULT 0,
              score        INTEGER DEFAULT 0,
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
              FOREIGN KEY(scenario_id) REFERENCES scenarios(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_user_scenarios_user ON user_scenarios(user_id);

            CREATE TABLE IF NOT EXISTS llm_metrics (
              id             INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id        TEXT,
              model_id       TEXT NOT NULL,
              prompt_id      TEXT NOT NULL,
              prompt_version TEXT NOT NULL,
              latency_ms     INTEGER NOT NULL,
              tokens_in      INTEGER,
              tokens_out     INTEGER,
              outcome        TEXT NOT NULL DEFAULT 'ok',
              created_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        con.commit()


# -------------- users --------------
def _user_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    user = dict(row)
    user["skill_levels"] = _decode_json_field(user.get("skill_levels"), {}) or {}
    user["preferences"] = _decode_json_field(user.get("preferences"), {}) or {}
    for key in ("total_scenarios", "weekly_streak", "total_time"):
        user[key] = int(user.get(key) or 0)
    return user


def create_user(
    user_id: Optional[str],
    username: str,
    name: str,
    email: Optional[str] = None,
    role: str = "care_worker",
    *,
    skill_levels: Optional[Mapping[str, Any]] = None,
    preferences: Optional[Mapping[str, Any]] = None,
    total_scenarios: int = 0,
    weekly_streak: int = 0,
    total_time: int = 0,
) -> Dict[str, Any]:
    new_id = user_id or str(uuid4())
    _exec(
        """
        INSERT INTO users(id, username, name, email, role, skill_levels, preferences,
                          total_scenarios, weekly_streak, total_time)
        VALUES (?,?,?,?,?,?,?,?,?,?)
        """,
        (
            new_id,
            username,
            name,
            email,
            role,
            json_dumps(dict(skill_levels or {})),
            json_dumps(dict(preferences or {})),
            int(total_scenarios),
            int(weekly_streak),
            int(total_time),
        ),
    )
    return get_user(new_id)  # type: ignore[return-value]


def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM users WHERE id = ?", (user_id,))
    return _user_from_row(rows[0]) if rows else None


def update_user(user_id: str, updates: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Merge ``updates`` into the stored user; unknown keys are ignored."""
    assignments = []
    params: list[Any] = []
    for key, value in updates.items():
        if key not in _USER_COLUMNS:
            continue
        assignments.append(f"{key} = ?")
        params.append(json_dumps(value) if key in _USER_JSON_COLUMNS else value)
    if assignments:
        params.append(user_id)
        _exec(f"UPDATE users SET {', '.join(assignments)} WHERE id = ?", params)
    return get_user(user_id)


def get_user_stats(user_id: str) -> Dict[str, int]:
    """Aggregate counters consumed by the performance aggregator."""
    user_rows = _query("SELECT total_time, weekly_streak FROM users WHERE id = ?", (user_id,))
    completed = _query(
        "SELECT COUNT(*) AS n FROM user_scenarios WHERE user_id = ? AND progress = 100",
        (user_id,),
    )
    total_time = int(user_rows[0]["total_time"] or 0) if user_rows else 0
    weekly_streak = int(user_rows[0]["weekly_streak"] or 0) if user_rows else 0
    return {
        "completed_scenarios": int(completed[0]["n"] or 0),
        "total_time": total_time,
        "weekly_streak": weekly_streak,
    }


# -------------- scenarios (content catalog) --------------
def _scenario_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    scenario = dict(row)
    scenario["learning_objectives"] = _decode_json_field(scenario.get("learning_objectives"), []) or []
    scenario["is_active"] = bool(scenario.get("is_active"))
    return scenario


def upsert_scenario(scenario: Mapping[str, Any]) -> Dict[str, Any]:
    scenario_id = scenario.get("id") or str(uuid4())
    values = {
        "title": scenario["title"],
        "description": scenario.get("description", ""),
        "category": scenario["category"],
        "difficulty": scenario["difficulty"],
        "estimated_time": int(scenario.get("estimated_time", 15)),
        "priority": scenario.get("priority", "medium"),
        "context": scenario.get("context", ""),
        "learning_objectives": json_dumps(list(scenario.get("learning_objectives") or [])),
        "is_active": int(bool(scenario.get("is_active", True))),
    }
    columns = ", ".join(("id",) + _SCENARIO_COLUMNS)
    placeholders = ", ".join("?" for _ in range(len(_SCENARIO_COLUMNS) + 1))
    updates = ", ".join(f"{col} = excluded.{col}" for col in _SCENARIO_COLUMNS)
    _exec(
        f"INSERT INTO scenarios({columns}) VALUES ({placeholders}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}",
        [scenario_id] + [values[col] for col in _SCENARIO_COLUMNS],
    )
    return get_scenario(scenario_id)  # type: ignore[return-value]


def get_scenario(scenario_id: str) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM scenarios WHERE id = ?", (scenario_id,))
    return _scenario_from_row(rows[0]) if rows else None


def list_scenarios(active_only: bool = True) -> list[Dict[str, Any]]:
    """Return the catalog in insertion (catalog) order."""
    if active_only:
        rows = _query("SELECT * FROM scenarios WHERE is_active = 1 ORDER BY rowid")
    else:
        rows = _query("SELECT * FROM scenarios ORDER BY rowid")
    return [_scenario_from_row(row) for row in rows]


# -------------- user scenarios (attempts) --------------
def _attempt_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    attempt = dict(row)
    attempt["responses"] = _decode_json_field(attempt.get("responses"), []) or []
    attempt["feedback"] = _decode_json_field(attempt.get("feedback"), []) or []
    for key in ("progress", "total_time", "score"):
        attempt[key] = int(attempt.get(key) or 0)
    return attempt


def create_user_scenario(
    user_id: str,
    scenario_id: str,
    *,
    status: str = "in_progress",
    progress: int = 0,
    responses: Optional[list[Any]] = None,
    total_time: int = 0,
    score: int = 0,
    started_at: Optional[str] = None,
    completed_at: Optional[str] = None,
) -> Dict[str, Any]:
    attempt_id = str(uuid4())
    _exec(
        """
        INSERT INTO user_scenarios(id, user_id, scenario_id, status, progress, responses,
                                   feedback, started_at, completed_at, total_time, score)
        VALUES (?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            attempt_id,
            user_id,
            scenario_id,
            status,
            int(progress),
            json_dumps(list(responses or [])),
            json_dumps([]),
            started_at or _utcnow(),
            completed_at,
            int(total_time),
            int(score),
        ),
    )
    return get_user_scenario_by_id(attempt_id)  # type: ignore[return-value]


def get_user_scenario_by_id(attempt_id: str) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM user_scenarios WHERE id = ?", (attempt_id,))
    return _attempt_from_row(rows[0]) if rows else None


def get_user_scenario(user_id: str, scenario_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM user_scenarios WHERE user_id = ? AND scenario_id = ? ORDER BY rowid DESC LIMIT 1",
        (user_id, scenario_id),
    )
    return _attempt_from_row(rows[0]) if rows else None


def list_user_scenarios(user_id: str) -> list[Dict[str, Any]]:
    """Return every attempt of ``user_id`` in the order they were recorded."""
    rows = _query("SELECT * FROM user_scenarios WHERE user_id = ? ORDER BY rowid", (user_id,))
    return [_attempt_from_row(row) for row in rows]


def update_user_scenario(attempt_id: str, updates: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    assignments = []
    params: list[Any] = []
    for key, value in updates.items():
        if key not in _ATTEMPT_COLUMNS:
            continue
        assignments.append(f"{key} = ?")
        params.append(json_dumps(value) if key in _ATTEMPT_JSON_COLUMNS else value)
    if assignments:
        params.append(attempt_id)
        _exec(f"UPDATE user_scenarios SET {', '.join(assignments)} WHERE id = ?", params)
    return get_user_scenario_by_id(attempt_id)


def append_attempt_response(attempt_id: str, response: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Append one conversational turn (with its feedback) to an attempt."""
    with _conn() as con:
        row = con.execute("SELECT responses FROM user_scenarios WHERE id = ?", (attempt_id,)).fetchone()
        if row is None:
            return None
        responses = _decode_json_field(row["responses"], []) or []
        responses.append(dict(response))
        con.execute(
            "UPDATE user_scenarios SET responses = ? WHERE id = ?",
            (json_dumps(responses), attempt_id),
        )
        con.commit()
    return get_user_scenario_by_id(attempt_id)


# -------------- llm metrics --------------
def record_llm_metric(
    user_id: Optional[str],
    model_id: str,
    prompt_id: str,
    prompt_version: str,
    latency_ms: int,
    tokens_in: Optional[int],
    tokens_out: Optional[int],
    *,
    outcome: str = "ok",
) -> None:
    _exec(
        """
        INSERT INTO llm_metrics(user_id, model_id, prompt_id, prompt_version, latency_ms, tokens_in, tokens_out, outcome)
        VALUES (?,?,?,?,?,?,?,?)
        """,
        (
            user_id,
            model_id,
            prompt_id,
            prompt_version,
            int(latency_ms),
            None if tokens_in is None else int(tokens_in),
            None if tokens_out is None else int(tokens_out),
            outcome,
        ),
    )
