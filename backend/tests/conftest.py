import json
import os
from pathlib import Path

import pytest

# Settings are read at import time, so the environment must be in place
# before any test module imports the application.
TEST_DB = Path(__file__).resolve().parents[1] / "test_woodpecker.db"
if TEST_DB.exists():
    TEST_DB.unlink()
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ["DAILY_PLAN_TIMER_ENABLED"] = "false"
os.environ.setdefault("ENV", "dev")

from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from woodpecker import models  # noqa: E402


@pytest.fixture()
def db_session():
    """Isolated in-memory database for service level tests."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


def add_puzzle(session, puzzle_id, moves, difficulty="easy", ticks=None, tick_plies=(), solution_text=None):
    """Insert a flat-line puzzle; `tick_plies` flags plies as ticks in the tree."""
    lines = [{"san": m, "isTick": i in tick_plies} for i, m in enumerate(moves)]
    p = models.Puzzle(
        id=puzzle_id,
        difficulty=difficulty,
        fen="6k1/5ppp/8/8/8/8/5PPP/3R2K1 w - - 0 1",
        solution_json=json.dumps({"lines": lines}),
        ticks_json=json.dumps(list(ticks or [])),
        solution_text=solution_text,
    )
    session.add(p)
    session.commit()
    return p


@pytest.fixture()
def make_puzzle(db_session):
    def _make(puzzle_id, moves=("Rd8#",), **kwargs):
        return add_puzzle(db_session, puzzle_id, list(moves), **kwargs)
    return _make
