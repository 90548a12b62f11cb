"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
puzzles, sets, cycles, sessions, attempts, progress, daily plans).
Repositories return SQLModel objects and perform commits/refreshes where
appropriate. Progress and daily plan writes are single
``INSERT ... ON CONFLICT DO UPDATE`` statements so two concurrent writers
for the same user cannot create duplicate rows. That statement exists on
SQLite and PostgreSQL only; other dialects fail on the first upsert.
"""

import json
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from . import models

_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


def upsert_insert(dialect_name: str, table):
    """Dialect-specific INSERT that supports `on_conflict_do_update`."""
    try:
        return _UPSERT_INSERTS[dialect_name](table)
    except KeyError:
        raise RuntimeError(f"upserts are not supported on the {dialect_name!r} database dialect") from None


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def ids_with_sets(self) -> List[int]:
        """Ids of users owning at least one set, in ascending order."""
        stmt = select(models.PuzzleSet.user_id).distinct().order_by(models.PuzzleSet.user_id)
        return list(self.session.exec(stmt).all())


class PuzzleRepository:
    """Lookup and insert operations for `Puzzle` rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, puzzle_id: str) -> Optional[models.Puzzle]:
        return self.session.get(models.Puzzle, puzzle_id)

    def create(self, puzzle: models.Puzzle) -> models.Puzzle:
        self.session.add(puzzle)
        self.session.commit()
        self.session.refresh(puzzle)
        return puzzle

    def count(self) -> int:
        return self.session.exec(select(func.count()).select_from(models.Puzzle)).one()

    def first_by_difficulty(self, difficulty: str) -> Optional[models.Puzzle]:
        stmt = select(models.Puzzle).where(models.Puzzle.difficulty == difficulty).order_by(models.Puzzle.id)
        return self.session.exec(stmt).first()

    def list_by_difficulties(self, difficulties: Sequence[str], limit: Optional[int] = None) -> List[models.Puzzle]:
        """Puzzles whose difficulty is in `difficulties`, ordered by id."""
        stmt = select(models.Puzzle).where(models.Puzzle.difficulty.in_(list(difficulties))).order_by(models.Puzzle.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt).all())


class SetRepository:
    """Sets and their ordered puzzle membership."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, puzzle_set: models.PuzzleSet, puzzle_ids: Sequence[str] = ()) -> models.PuzzleSet:
        """Create a set and attach `puzzle_ids` at positions 1..n."""
        self.session.add(puzzle_set)
        self.session.commit()
        self.session.refresh(puzzle_set)
        for pos, pid in enumerate(puzzle_ids, start=1):
            self.session.add(models.SetPuzzle(set_id=puzzle_set.id, puzzle_id=pid, position=pos))
        self.session.commit()
        return puzzle_set

    def get(self, set_id: int) -> Optional[models.PuzzleSet]:
        return self.session.get(models.PuzzleSet, set_id)

    def list_for_user(self, user_id: int) -> List[models.PuzzleSet]:
        """All sets of a user in creation order."""
        stmt = select(models.PuzzleSet).where(models.PuzzleSet.user_id == user_id).order_by(
            models.PuzzleSet.created_at, models.PuzzleSet.id
        )
        return list(self.session.exec(stmt).all())

    def get_by_name(self, user_id: int, name: str) -> Optional[models.PuzzleSet]:
        stmt = select(models.PuzzleSet).where(models.PuzzleSet.user_id == user_id, models.PuzzleSet.name == name)
        return self.session.exec(stmt).first()

    def puzzles_in_set(self, set_id: int) -> List[models.SetPuzzle]:
        """Membership rows ordered by position."""
        stmt = select(models.SetPuzzle).where(models.SetPuzzle.set_id == set_id).order_by(
            models.SetPuzzle.position, models.SetPuzzle.puzzle_id
        )
        return list(self.session.exec(stmt).all())

    def set_ids_containing(self, user_id: int, puzzle_id: str) -> List[int]:
        stmt = (
            select(models.SetPuzzle.set_id)
            .join(models.PuzzleSet, models.PuzzleSet.id == models.SetPuzzle.set_id)
            .where(models.PuzzleSet.user_id == user_id, models.SetPuzzle.puzzle_id == puzzle_id)
            .order_by(models.SetPuzzle.set_id)
        )
        return list(self.session.exec(stmt).all())


class CycleRepository:
    """CRUD and status queries for `Cycle` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, cycle: models.Cycle) -> models.Cycle:
        self.session.add(cycle)
        self.session.commit()
        self.session.refresh(cycle)
        return cycle

    def get(self, cycle_id: int) -> Optional[models.Cycle]:
        return self.session.get(models.Cycle, cycle_id)

    def save(self, cycle: models.Cycle) -> models.Cycle:
        self.session.add(cycle)
        self.session.commit()
        self.session.refresh(cycle)
        return cycle

    def list_for_set(self, set_id: int) -> List[models.Cycle]:
        stmt = select(models.Cycle).where(models.Cycle.set_id == set_id).order_by(models.Cycle.cycle_index, models.Cycle.id)
        return list(self.session.exec(stmt).all())

    def active_for_set(self, set_id: int) -> List[models.Cycle]:
        """All cycles marked active for `set_id`, lowest index first."""
        stmt = select(models.Cycle).where(
            models.Cycle.set_id == set_id, models.Cycle.status == models.CYCLE_ACTIVE
        ).order_by(models.Cycle.cycle_index, models.Cycle.id)
        return list(self.session.exec(stmt).all())

    def get_active(self, set_id: int) -> Optional[models.Cycle]:
        active = self.active_for_set(set_id)
        return active[0] if active else None


class SessionRepository:
    """CRUD operations for `TrainingSession` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, training: models.TrainingSession) -> models.TrainingSession:
        self.session.add(training)
        self.session.commit()
        self.session.refresh(training)
        return training

    def get(self, session_id: int) -> Optional[models.TrainingSession]:
        return self.session.get(models.TrainingSession, session_id)

    def save(self, training: models.TrainingSession) -> models.TrainingSession:
        self.session.add(training)
        self.session.commit()
        self.session.refresh(training)
        return training

    def get_open(self, cycle_id: int) -> Optional[models.TrainingSession]:
        """The most recent session of `cycle_id` that has not ended."""
        stmt = select(models.TrainingSession).where(
            models.TrainingSession.cycle_id == cycle_id,
            models.TrainingSession.ended_at.is_(None),
        ).order_by(models.TrainingSession.id.desc())
        return self.session.exec(stmt).first()


class AttemptRepository:
    """Insert and query `Attempt` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, attempt: models.Attempt) -> models.Attempt:
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt

    def list_for_session(self, session_id: int) -> List[models.Attempt]:
        stmt = select(models.Attempt).where(models.Attempt.session_id == session_id).order_by(models.Attempt.id)
        return list(self.session.exec(stmt).all())


class ProgressRepository:
    """Per-user, per-puzzle progress rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int, puzzle_id: str) -> Optional[models.Progress]:
        stmt = select(models.Progress).where(
            models.Progress.user_id == user_id, models.Progress.puzzle_id == puzzle_id
        )
        return self.session.exec(stmt).first()

    def upsert(
        self,
        user_id: int,
        puzzle_id: str,
        typed: Sequence[str],
        score: int,
        solved: bool,
        now: datetime,
    ) -> models.Progress:
        """Insert the first attempt or fold a new attempt into the existing row.

        `attempts` is incremented, `score` and `typed_json` are overwritten,
        and `solved_at` keeps its first non-null value.
        """
        table = models.Progress.__table__
        stmt = upsert_insert(self.session.get_bind().dialect.name, table).values(
            user_id=user_id,
            puzzle_id=puzzle_id,
            attempts=1,
            score=score,
            solved_at=now if solved else None,
            typed_json=json.dumps(list(typed), ensure_ascii=True),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.puzzle_id],
            set_={
                "attempts": table.c.attempts + 1,
                "score": stmt.excluded.score,
                "typed_json": stmt.excluded.typed_json,
                "solved_at": func.coalesce(table.c.solved_at, stmt.excluded.solved_at),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.session.connection().execute(stmt)
        self.session.commit()
        return self.get(user_id, puzzle_id)

    def solved_puzzle_ids(self, user_id: int, puzzle_ids: Sequence[str]) -> set:
        if not puzzle_ids:
            return set()
        stmt = select(models.Progress.puzzle_id).where(
            models.Progress.user_id == user_id,
            models.Progress.puzzle_id.in_(list(puzzle_ids)),
            models.Progress.solved_at.is_not(None),
        )
        return set(self.session.exec(stmt).all())

    def updated_between(self, user_id: int, start: datetime, end: datetime) -> List[models.Progress]:
        stmt = select(models.Progress).where(
            models.Progress.user_id == user_id,
            models.Progress.updated_at >= start,
            models.Progress.updated_at < end,
        )
        return list(self.session.exec(stmt).all())


class DailyPlanRepository:
    """The single active plan row per user."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> Optional[models.DailyPlan]:
        stmt = select(models.DailyPlan).where(models.DailyPlan.user_id == user_id)
        return self.session.exec(stmt).first()

    def upsert(self, user_id: int, plan: dict, now: datetime) -> models.DailyPlan:
        """Insert the user's plan or replace its contents and timestamp."""
        table = models.DailyPlan.__table__
        stmt = upsert_insert(self.session.get_bind().dialect.name, table).values(
            user_id=user_id,
            active=True,
            plan_json=json.dumps(plan, ensure_ascii=True),
            generated_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={
                "active": True,
                "plan_json": stmt.excluded.plan_json,
                "generated_at": stmt.excluded.generated_at,
            },
        )
        self.session.connection().execute(stmt)
        self.session.commit()
        return self.get(user_id)
