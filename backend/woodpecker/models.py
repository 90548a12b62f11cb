"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Timestamps are stored as naive UTC datetimes (SQLite drops tzinfo on the
way back, so aware values would not compare with what is read). Every
timestamp field maps to a plain `DateTime` column so no timezone check is
applied on write.
"""

import json
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from .utils.solution import Solution, parse_solution, parse_ticks

DIFFICULTIES = ("easy", "intermediate", "advanced")
CYCLE_PLANNED = "planned"
CYCLE_ACTIVE = "active"
CYCLE_REST = "rest"
CYCLE_DONE = "done"
CYCLE_STATUSES = (CYCLE_PLANNED, CYCLE_ACTIVE, CYCLE_REST, CYCLE_DONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def difficulty_rank(difficulty: str) -> int:
    """Position of `difficulty` in `DIFFICULTIES`; unknown values sort last."""
    try:
        return DIFFICULTIES.index((difficulty or "").lower())
    except ValueError:
        return len(DIFFICULTIES)


def side_to_move(fen: str) -> str:
    """Second FEN field, defaulting to white for empty or truncated FENs."""
    parts = (fen or "").split()
    return parts[1] if len(parts) >= 2 else "w"


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


class Puzzle(SQLModel, table=True):
    """A chess puzzle with its stored solution tree and tick list."""
    id: str = Field(primary_key=True)
    difficulty: str = Field(index=True)
    fen: str
    side_to_move: str = "w"
    solution_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    ticks_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    solution_text: Optional[str] = Field(default=None, sa_column=Column(Text))

    def load_solution(self) -> Solution:
        return parse_solution(self.solution_json, self.id)

    def load_ticks(self) -> tuple:
        return parse_ticks(self.ticks_json, self.id)


class PuzzleSet(SQLModel, table=True):
    """A user's collection of puzzles worked through in cycles."""
    __tablename__ = "sets"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    name: str
    description: Optional[str] = None
    difficulty_min: Optional[str] = None
    difficulty_max: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


class SetPuzzle(SQLModel, table=True):
    """Membership of a puzzle in a set, with its study order."""
    __tablename__ = "set_puzzles"
    set_id: int = Field(foreign_key="sets.id", primary_key=True)
    puzzle_id: str = Field(foreign_key="puzzle.id", primary_key=True)
    position: int


class Cycle(SQLModel, table=True):
    """One full pass through a set.

    `status` is one of `CYCLE_STATUSES`. At most one cycle per set is
    `active`; the daily plan scheduler maintains that rule.
    """
    __tablename__ = "cycles"
    id: Optional[int] = Field(default=None, primary_key=True)
    set_id: int = Field(foreign_key="sets.id", index=True)
    cycle_index: int
    target_days: int
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    ended_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    status: str = Field(default=CYCLE_PLANNED, index=True)


class TrainingSession(SQLModel, table=True):
    """A bounded solving window inside a cycle; open while `ended_at` is null."""
    __tablename__ = "sessions"
    id: Optional[int] = Field(default=None, primary_key=True)
    cycle_id: int = Field(foreign_key="cycles.id", index=True)
    started_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=Column(DateTime))
    ended_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    target_count: int


class Attempt(SQLModel, table=True):
    """A single graded puzzle attempt inside a session."""
    __tablename__ = "attempts"
    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="sessions.id", index=True)
    puzzle_id: str = Field(foreign_key="puzzle.id", index=True)
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    ended_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=Column(DateTime))
    score_first_move: int = 0
    score_ticks: int = 0
    total_points: int = 0
    time_ms: int = 0
    correct_first_move: bool = False


class Progress(SQLModel, table=True):
    """Latest attempt state for one user on one puzzle.

    Written only through `ProgressRepository.upsert`; `solved_at` is set
    once and never cleared.
    """
    __tablename__ = "progress"
    __table_args__ = (UniqueConstraint("user_id", "puzzle_id", name="uq_progress_user_puzzle"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    puzzle_id: str = Field(foreign_key="puzzle.id", index=True)
    attempts: int = 1
    score: int = 0
    solved_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    typed_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

    @property
    def last_typed(self) -> List[str]:
        return json.loads(self.typed_json) if self.typed_json else []


class DailyPlan(SQLModel, table=True):
    """The single persisted plan per user, superseded in place every day."""
    __tablename__ = "daily_plans"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True)
    active: bool = True
    plan_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    generated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

    @property
    def plan(self) -> dict:
        return json.loads(self.plan_json) if self.plan_json else {}

    @property
    def today_batch(self) -> List[str]:
        return list(self.plan.get("todayBatch", []))
