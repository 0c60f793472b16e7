import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db
    import seed

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Fresh pool per test so connections never outlive their database file
    pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    monkeypatch.setattr(db, "_pool", pool)
    seed.reset_seed_state()
    db.init()
    yield str(db_path)
    pool.close_all()
    seed.reset_seed_state()


class FakeLLMClient:
    """Replays canned replies per prompt id and records every submitted spec.

    A reply may be a string, an exception instance (raised on submit) or a
    list of those consumed in order.
    """

    def __init__(self, replies=None, default=""):
        self.replies = dict(replies or {})
        self.default = default
        self.calls = []

    def submit(self, spec):
        self.calls.append(spec)
        reply = self.replies.get(spec.prompt_id, self.default)
        if isinstance(reply, list):
            reply = reply.pop(0) if reply else self.default
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def last(self, prompt_id):
        for spec in reversed(self.calls):
            if spec.prompt_id == prompt_id:
                return spec
        raise AssertionError(f"no call recorded for {prompt_id}")


@pytest.fixture
def fake_llm():
    return FakeLLMClient()
